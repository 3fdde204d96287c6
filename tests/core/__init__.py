"""
Core Pipeline Tests

Tests for the crop_recognition core components:
- test_processing.py: Image decoding, letterbox and normalization
- test_engine.py: ONNX Runtime model loading and evaluation
- test_decoder.py: Classification and detection output decoding
- test_nms.py: Non-Maximum Suppression
- test_config.py: pipeline.yaml loading and label tables
- test_pipeline.py: End-to-end runs against tiny ONNX models
"""

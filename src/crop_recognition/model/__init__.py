"""
Model Module - ONNX Runtime Loading and Evaluation

This module provides:
- InferenceEngine: load an ONNX model once, evaluate prepared tensors
- Model / ModelInfo: immutable handle and declared input/output metadata
"""

from crop_recognition.model.engine import (
    InferenceEngine,
    Model,
    ModelInfo,
    RawOutput,
    SessionConfig,
)

__all__ = [
    "InferenceEngine",
    "Model",
    "ModelInfo",
    "RawOutput",
    "SessionConfig",
]

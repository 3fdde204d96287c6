"""
Crop Recognition - Image to Crop Species Inference Service

This package identifies the dominant crop or vegetable in an image with a
locally evaluated ONNX model:

- processing: image decoding, letterbox, normalization
- model: ONNX Runtime model loading and evaluation
- postprocess: output decoding and Non-Maximum Suppression
- pipeline: end-to-end orchestration for one request
- api: FastAPI service exposing the pipeline over HTTP
"""

from crop_recognition.errors import (
    DecodeError,
    InferenceError,
    ModelLoadError,
    PipelineError,
    ShapeError,
)
from crop_recognition.pipeline import InferencePipeline, PipelineResult

__all__ = [
    "DecodeError",
    "InferenceError",
    "ModelLoadError",
    "PipelineError",
    "ShapeError",
    "InferencePipeline",
    "PipelineResult",
]

__version__ = "0.1.0"

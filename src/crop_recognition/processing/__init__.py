"""
Processing Module - Image Decoding and Model Input Preparation

This module turns untrusted encoded bytes into the normalized, channel-first
tensor the loaded model expects:
- decode_image: bytes → RGB uint8 [H, W, 3]
- Preprocessor: letterbox, normalize, HWC → CHW, batch of one
"""

from crop_recognition.processing.transforms import (
    decode_image,
    letterbox,
    imagenet_normalize,
    unit_normalize,
    scale_boxes,
)

from crop_recognition.processing.preprocess import Preprocessor, PreprocessResult

__all__ = [
    # Low-level transforms
    "decode_image",
    "letterbox",
    "imagenet_normalize",
    "unit_normalize",
    "scale_boxes",
    # High-level preprocessor
    "Preprocessor",
    "PreprocessResult",
]

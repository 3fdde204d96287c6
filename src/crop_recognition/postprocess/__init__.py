"""
Postprocess Module - Output Decoding and Suppression

- decoder: raw output tensors → Candidates (classification or detection)
- nms: greedy, stable Non-Maximum Suppression → ranked Candidates
- types: BoundingBox, Candidate, Prediction records
"""

from crop_recognition.postprocess.decoder import (
    ClassificationDecoder,
    DetectionDecoder,
    OutputKind,
    build_decoder,
    select_output_kind,
)
from crop_recognition.postprocess.nms import iou, suppress
from crop_recognition.postprocess.types import BoundingBox, Candidate, Prediction

__all__ = [
    "ClassificationDecoder",
    "DetectionDecoder",
    "OutputKind",
    "build_decoder",
    "select_output_kind",
    "iou",
    "suppress",
    "BoundingBox",
    "Candidate",
    "Prediction",
]

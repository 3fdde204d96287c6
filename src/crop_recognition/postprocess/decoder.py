"""Model output decoding.

Turns the raw output tensors of a forward pass into Candidates. Two output
families are supported and the decoder is chosen once, when the model is
loaded, from the declared output shape:

- Classification: [1, C] class scores. One Candidate per kept class slot.
- Detection: YOLO style rows of [cx, cy, w, h, (obj), c0 .. cN] in letterbox
  space, either [1, N, attrs] or channel-first [1, attrs, N] (YOLOv8).

Confidences are always probabilities before thresholding. Raw logits are
passed through softmax (classification) or sigmoid (detection) according
to the configured score activation.
"""

import enum
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from crop_recognition.errors import InferenceError, ModelLoadError
from crop_recognition.model.engine import ModelInfo, RawOutput
from crop_recognition.postprocess.types import BoundingBox, Candidate
from crop_recognition.processing.preprocess import PreprocessResult

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

PROBABILITY_SUM_TOLERANCE: float = 1e-3
"""How far a score vector may sum from 1.0 and still count as softmax output."""

BOX_ATTRS: int = 4


class OutputKind(enum.Enum):
    CLASSIFICATION = "classify"
    DETECTION = "detect"


# =============================================================================
# Activations
# =============================================================================

def softmax(scores: np.ndarray) -> np.ndarray:
    """Numerically stable softmax over the last axis."""
    scores = scores.astype(np.float64)
    exp_scores = np.exp(scores - np.max(scores, axis=-1, keepdims=True))
    return exp_scores / exp_scores.sum(axis=-1, keepdims=True)


def sigmoid(scores: np.ndarray) -> np.ndarray:
    """Element-wise logistic function."""
    scores = scores.astype(np.float64)
    return 0.5 * (1.0 + np.tanh(0.5 * scores))


def looks_like_probabilities(scores: np.ndarray) -> bool:
    """True when scores lie in [0, 1] and sum to 1 (already softmaxed)."""
    if scores.size == 0:
        return True
    if scores.min() < 0.0 or scores.max() > 1.0:
        return False
    return abs(float(scores.sum()) - 1.0) <= PROBABILITY_SUM_TOLERANCE


# =============================================================================
# Decoders
# =============================================================================

@dataclass(frozen=True)
class ClassificationDecoder:
    """Decoder for [1, C] class-score outputs.

    Attributes:
        score_activation: "auto", "none", "softmax" or "sigmoid"
        top_k: Number of class slots kept before thresholding
    """

    score_activation: str = "auto"
    top_k: int = 1

    kind = OutputKind.CLASSIFICATION

    def probabilities(self, scores: np.ndarray) -> np.ndarray:
        if self.score_activation == "softmax":
            return softmax(scores)
        if self.score_activation == "sigmoid":
            return sigmoid(scores)
        if self.score_activation == "auto" and not looks_like_probabilities(scores):
            return softmax(scores)
        return scores.astype(np.float64)

    def decode(
        self,
        raw: RawOutput,
        confidence_threshold: float,
        meta: Optional[PreprocessResult] = None,
    ) -> List[Candidate]:
        """Decode class scores into at most top_k candidates.

        Args:
            raw: Model outputs; the first one holds the class scores
            confidence_threshold: Minimum probability for a candidate
            meta: Unused, accepted for interface parity with DetectionDecoder

        Returns:
            Candidates without boxes, highest probability first

        Raises:
            InferenceError: If the output is not a single score vector
        """
        if not raw:
            raise InferenceError("Model returned no outputs")

        scores = np.asarray(raw[0])
        if scores.ndim == 2 and scores.shape[0] == 1:
            scores = scores[0]
        if scores.ndim != 1:
            raise InferenceError(
                f"Expected classification output [1, C], got shape {tuple(np.shape(raw[0]))}"
            )
        if scores.size == 0:
            return []

        probs = self.probabilities(scores)

        # Stable sort keeps the lowest class id first on ties
        top_indices = np.argsort(-probs, kind="stable")[: self.top_k]

        return [
            Candidate(confidence=float(probs[idx]), class_id=int(idx))
            for idx in top_indices
            if probs[idx] >= confidence_threshold
        ]


@dataclass(frozen=True)
class DetectionDecoder:
    """Decoder for YOLO style detection outputs.

    Attributes:
        score_activation: "auto" applies sigmoid when any score falls outside
            [0, 1], "sigmoid" always applies it, "none" uses scores as-is
        has_objectness: Rows carry an objectness column after the box (YOLOv5)
        channel_first: Output is [1, attrs, N] (YOLOv8) rather than [1, N, attrs]
    """

    score_activation: str = "auto"
    has_objectness: bool = False
    channel_first: bool = False

    kind = OutputKind.DETECTION

    def _rows(self, output: np.ndarray) -> np.ndarray:
        preds = np.asarray(output)
        while preds.ndim > 2 and preds.shape[0] == 1:
            preds = preds[0]

        if preds.ndim != 2:
            raise InferenceError(
                f"Expected detection output [1, N, attrs] or [1, attrs, N], "
                f"got shape {tuple(np.shape(output))}"
            )

        return preds.T if self.channel_first else preds

    def probabilities(self, scores: np.ndarray) -> np.ndarray:
        """Map class and objectness columns to probabilities."""
        scores = scores.astype(np.float64)
        if self.score_activation == "sigmoid":
            return sigmoid(scores)
        if self.score_activation == "auto" and scores.size:
            if scores.min() < 0.0 or scores.max() > 1.0:
                return sigmoid(scores)
        return scores

    def decode(
        self,
        raw: RawOutput,
        confidence_threshold: float,
        meta: Optional[PreprocessResult] = None,
    ) -> List[Candidate]:
        """Decode detection rows into boxed candidates.

        Args:
            raw: Model outputs; the first one holds the detection rows
            confidence_threshold: Minimum probability for a candidate
            meta: Letterbox geometry used to map boxes to original pixels.
                Without it boxes stay in model input space.

        Returns:
            Candidates above the threshold, in row order

        Raises:
            InferenceError: If the output shape cannot hold boxes and scores
        """
        if not raw:
            raise InferenceError("Model returned no outputs")

        if np.size(raw[0]) == 0:
            return []

        preds = self._rows(raw[0])

        first_score = BOX_ATTRS + (1 if self.has_objectness else 0)
        if preds.shape[1] <= first_score:
            raise InferenceError(
                f"Detection rows have {preds.shape[1]} attributes, "
                f"need more than {first_score}"
            )

        boxes = preds[:, :BOX_ATTRS].astype(np.float64)
        # Objectness and class columns share one activation decision
        scores = self.probabilities(preds[:, BOX_ATTRS:])
        class_scores = scores[:, first_score - BOX_ATTRS:]

        class_ids = class_scores.argmax(axis=1)
        confidences = class_scores[np.arange(len(class_ids)), class_ids]

        if self.has_objectness:
            confidences = confidences * scores[:, 0]

        mask = confidences >= confidence_threshold
        if not mask.any():
            return []

        boxes = boxes[mask]
        confidences = confidences[mask]
        class_ids = class_ids[mask]

        # Center format to corner format
        corners = np.column_stack(
            [
                boxes[:, 0] - boxes[:, 2] / 2,
                boxes[:, 1] - boxes[:, 3] / 2,
                boxes[:, 0] + boxes[:, 2] / 2,
                boxes[:, 1] + boxes[:, 3] / 2,
            ]
        )

        if meta is not None:
            corners = meta.scale_boxes_to_original(corners)

        return [
            Candidate(
                confidence=float(conf),
                class_id=int(cls),
                box=BoundingBox.from_corners(*corner),
            )
            for corner, conf, cls in zip(corners, confidences, class_ids)
        ]


# =============================================================================
# Selection
# =============================================================================

def select_output_kind(info: ModelInfo, task: str = "auto") -> OutputKind:
    """Pick the output interpretation for a loaded model.

    Args:
        info: Declared model metadata
        task: "auto" infers from the first output rank, "classify" and
            "detect" force the variant

    Raises:
        ModelLoadError: If task is "auto" and the output rank is not 2 or 3
    """
    if task == OutputKind.CLASSIFICATION.value:
        return OutputKind.CLASSIFICATION
    if task == OutputKind.DETECTION.value:
        return OutputKind.DETECTION

    rank = len(info.output_shapes[0])
    if rank == 2:
        return OutputKind.CLASSIFICATION
    if rank == 3:
        return OutputKind.DETECTION

    raise ModelLoadError(
        f"Cannot infer output kind of model {info.name} from output shape "
        f"{info.output_shapes[0]}; set model.task explicitly"
    )


def is_channel_first(shape: Sequence[Optional[int]]) -> bool:
    """Whether a declared detection output shape is [1, attrs, N].

    With both dimensions static the smaller one holds the attributes. With
    one static dimension that dimension holds the attributes.
    """
    if len(shape) != 3:
        return False
    first, second = shape[1], shape[2]
    if first is not None and second is not None:
        return first < second
    return first is not None and second is None


def build_decoder(
    info: ModelInfo,
    task: str = "auto",
    score_activation: str = "auto",
    has_objectness: bool = False,
    top_k: int = 1,
):
    """Build the decoder variant for a loaded model.

    The detection layout is fixed here from the declared output shape and
    never re-inferred from runtime outputs.

    Returns:
        ClassificationDecoder or DetectionDecoder
    """
    kind = select_output_kind(info, task)

    if kind is OutputKind.CLASSIFICATION:
        logger.info(f"Model {info.name} output decoded as {kind.value}")
        return ClassificationDecoder(score_activation=score_activation, top_k=top_k)

    channel_first = is_channel_first(info.output_shapes[0])
    logger.info(
        f"Model {info.name} output decoded as {kind.value} "
        f"({'channel-first' if channel_first else 'row-major'})"
    )
    return DetectionDecoder(
        score_activation=score_activation,
        has_objectness=has_objectness,
        channel_first=channel_first,
    )


def num_classes(info: ModelInfo, kind: OutputKind, has_objectness: bool = False) -> Optional[int]:
    """Class count implied by the declared output shape, None if dynamic."""
    shape: Sequence[Optional[int]] = info.output_shapes[0]
    if kind is OutputKind.CLASSIFICATION:
        return shape[-1] if shape else None

    if len(shape) != 3:
        return None
    attrs = shape[1] if is_channel_first(shape) else shape[2]
    if attrs is None:
        return None
    return attrs - BOX_ATTRS - (1 if has_objectness else 0)

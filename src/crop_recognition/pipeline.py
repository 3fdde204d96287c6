"""Core inference pipeline.

This module orchestrates one request from encoded bytes to ranked predictions:
1. Decode image bytes (DecodeError on bad input)
2. Letterbox + normalize to the model input tensor
3. Forward pass through the shared, read-only Model
4. Decode raw outputs into Candidates and drop low-confidence ones
5. Non-Maximum Suppression and ranking
6. Attach labels

Stages run sequentially inside one call; many calls may run concurrently
on different threads against the same pipeline instance, which holds no
per-request state.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple

from crop_recognition.config import PipelineConfig
from crop_recognition.errors import ModelLoadError
from crop_recognition.labels import LabelMap
from crop_recognition.model.engine import InferenceEngine, Model, ModelSource, SessionConfig
from crop_recognition.postprocess.decoder import OutputKind, build_decoder, num_classes
from crop_recognition.postprocess.nms import suppress
from crop_recognition.postprocess.types import Prediction
from crop_recognition.processing.preprocess import Preprocessor
from crop_recognition.processing.transforms import decode_image

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    """Predictions for one image plus a timing breakdown in milliseconds.

    An empty predictions list means nothing passed the confidence threshold.
    """

    predictions: List[Prediction]
    timing: Dict[str, float] = field(default_factory=dict)

    @property
    def top(self) -> Prediction | None:
        return self.predictions[0] if self.predictions else None


class InferencePipeline:
    """Inference pipeline around a single loaded model.

    Attributes:
        engine: InferenceEngine used for forward passes
        model: Shared, immutable Model handle
        labels: Class id → label table
        config: Pipeline parameters fixed at startup
        preprocessor: Letterbox + normalize stage sized to the model input
        decoder: Output decoder variant chosen from the model's output shape
    """

    def __init__(
        self,
        engine: InferenceEngine,
        model: Model,
        labels: LabelMap,
        config: PipelineConfig,
    ) -> None:
        """Initialize the inference pipeline.

        Args:
            engine: Engine that loaded the model
            model: Loaded model handle
            labels: Label table for the model's classes
            config: Validated pipeline configuration

        Raises:
            ModelLoadError: If the model output cannot be interpreted or the
                label table does not match the model's class count
        """
        self.engine = engine
        self.model = model
        self.labels = labels
        self.config = config

        input_size = self._resolve_input_size(model, config)
        self.preprocessor = Preprocessor(
            input_size,
            normalization=config.normalization,
            fill_value=config.fill_value,
        )

        self.decoder = build_decoder(
            model.info,
            task=config.task,
            score_activation=config.score_activation,
            has_objectness=config.has_objectness,
            top_k=config.top_k,
        )

        expected = num_classes(model.info, self.kind, config.has_objectness)
        if expected is not None and expected != len(labels):
            raise ModelLoadError(
                f"Model {model.info.name} has {expected} classes but the label "
                f"table has {len(labels)} entries"
            )

        logger.info(
            f"Pipeline ready: kind={self.kind.value}, input={input_size}, "
            f"confidence={config.confidence_threshold}, iou={config.iou_threshold}, "
            f"class_aware_nms={config.class_aware_nms}"
        )

    @classmethod
    def from_paths(
        cls,
        model_source: ModelSource,
        labels_file: Path,
        config: PipelineConfig,
    ) -> "InferencePipeline":
        """Load model and labels and build the pipeline.

        Raises:
            ModelLoadError: If the model or labels cannot be loaded
        """
        engine = InferenceEngine(
            SessionConfig(
                intra_op_threads=config.intra_op_threads,
                inter_op_threads=config.inter_op_threads,
                providers=tuple(config.providers),
            )
        )
        model = engine.load(model_source)

        try:
            labels = LabelMap.from_file(labels_file, config.display_names)
        except (OSError, ValueError) as e:
            raise ModelLoadError(f"Failed to load labels: {e}") from e

        return cls(engine, model, labels, config)

    @property
    def kind(self) -> OutputKind:
        return self.decoder.kind

    @staticmethod
    def _resolve_input_size(model: Model, config: PipelineConfig) -> Tuple[int, int]:
        declared = model.info.input_size
        if declared is None:
            return config.input_size
        if declared != config.input_size:
            logger.warning(
                f"Configured input size {config.input_size} differs from model "
                f"input {declared}; using the model's"
            )
        return declared

    def warmup(self) -> None:
        """Run one forward pass so the first request does not pay session setup."""
        self.engine.evaluate(self.model, self.preprocessor.blank_tensor())
        logger.info("Warmup forward pass complete")

    def run(self, image_bytes: bytes) -> PipelineResult:
        """Run the full pipeline on one encoded image.

        Args:
            image_bytes: Raw image bytes (JPEG, PNG, etc.)

        Returns:
            PipelineResult with predictions ordered by descending confidence

        Raises:
            DecodeError: If the bytes are not a usable image
            ShapeError: If the decoded image is degenerate
            InferenceError: If the forward pass or output decoding fails
        """
        timing: Dict[str, float] = {}
        t0 = time.perf_counter()

        image = decode_image(image_bytes, self.config.max_image_dimension)
        t_decode = time.perf_counter()
        timing["decode_ms"] = (t_decode - t0) * 1000

        prepared = self.preprocessor(image)
        t_prep = time.perf_counter()
        timing["preprocess_ms"] = (t_prep - t_decode) * 1000

        raw = self.engine.evaluate(self.model, prepared.tensor)
        t_infer = time.perf_counter()
        timing["inference_ms"] = (t_infer - t_prep) * 1000

        candidates = self.decoder.decode(raw, self.config.confidence_threshold, prepared)
        kept = suppress(
            candidates,
            self.config.iou_threshold,
            class_aware=self.config.class_aware_nms,
        )[: self.config.max_detections]

        predictions = [
            Prediction(
                class_id=c.class_id,
                label=self.labels.label_for(c.class_id),
                confidence=c.confidence,
                box=c.box,
            )
            for c in kept
        ]

        t_end = time.perf_counter()
        timing["postprocess_ms"] = (t_end - t_infer) * 1000
        timing["total_ms"] = (t_end - t0) * 1000

        logger.debug(
            f"Pipeline run: {len(candidates)} candidates, {len(predictions)} kept, "
            f"{timing['total_ms']:.1f} ms"
        )

        return PipelineResult(predictions=predictions, timing=timing)

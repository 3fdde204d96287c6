"""ONNX Runtime Inference Engine.

This module loads an ONNX model once at startup and evaluates prepared
tensors against it.

Features:
- Explicit load: the service fails fast when the model cannot be used
- Immutable handle: Model is a frozen dataclass shared read-only by requests
- Thread configuration: intra_op/inter_op thread settings from pipeline.yaml
- Validation: input tensors are checked against the declared input shape

ONNX Runtime's InferenceSession.run is safe to call concurrently from many
threads, so evaluate() holds no lock around it.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import onnxruntime as ort

from crop_recognition.errors import InferenceError, ModelLoadError

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_INTRA_OP_THREADS: int = 2
"""ONNX Runtime intra-op parallelism (within single operator)."""

DEFAULT_INTER_OP_THREADS: int = 1
"""ONNX Runtime inter-op parallelism (across operators)."""

# Map ONNX dtype strings to numpy dtypes
ONNX_TO_NUMPY = {
    "tensor(float)": np.float32,
    "tensor(float16)": np.float16,
    "tensor(double)": np.float64,
    "tensor(int64)": np.int64,
    "tensor(int32)": np.int32,
    "tensor(uint8)": np.uint8,
}

ModelSource = Union[str, Path, bytes]
RawOutput = Tuple[np.ndarray, ...]
Shape = Tuple[Optional[int], ...]


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class ModelInfo:
    """Information about a loaded model.

    Dynamic (symbolic) dimensions are recorded as None.

    Attributes:
        name: Model identifier (file stem, or "<memory>")
        path: Path to ONNX file, None when loaded from bytes
        input_name: Name of input tensor
        input_shape: Declared input shape
        input_dtype: Expected input dtype
        output_names: Names of output tensors, in output order
        output_shapes: Declared output shapes, in output order
    """

    name: str
    path: Optional[Path]
    input_name: str
    input_shape: Shape
    input_dtype: np.dtype
    output_names: Tuple[str, ...]
    output_shapes: Tuple[Shape, ...]

    @property
    def input_size(self) -> Optional[Tuple[int, int]]:
        """(width, height) of a static NCHW input, None if dynamic."""
        if len(self.input_shape) != 4:
            return None
        height, width = self.input_shape[2], self.input_shape[3]
        if height is None or width is None:
            return None
        return (width, height)


@dataclass(frozen=True)
class SessionConfig:
    """Configuration for ONNX Runtime inference session.

    Attributes:
        intra_op_threads: Number of threads for intra-op parallelism
        inter_op_threads: Number of threads for inter-op parallelism
        providers: Execution providers (default: CPUExecutionProvider)
    """

    intra_op_threads: int = DEFAULT_INTRA_OP_THREADS
    inter_op_threads: int = DEFAULT_INTER_OP_THREADS
    providers: Tuple[str, ...] = field(default=("CPUExecutionProvider",))


@dataclass(frozen=True)
class Model:
    """Loaded model handle.

    Created once by InferenceEngine.load and never mutated afterwards.

    Attributes:
        info: Declared input/output metadata
        session: ONNX Runtime session used for evaluation
    """

    info: ModelInfo
    session: "ort.InferenceSession" = field(repr=False, compare=False)


# =============================================================================
# Inference Engine
# =============================================================================


def _normalize_shape(shape: Sequence) -> Shape:
    return tuple(dim if isinstance(dim, int) and dim > 0 else None for dim in shape)


class InferenceEngine:
    """Loads ONNX models and runs forward passes on prepared tensors.

    Example:
        >>> engine = InferenceEngine(SessionConfig(intra_op_threads=2))
        >>> model = engine.load(Path("models/crop_classifier.onnx"))
        >>> outputs = engine.evaluate(model, tensor)

    Attributes:
        config: Session configuration (thread settings, providers)
    """

    def __init__(self, config: SessionConfig | None = None) -> None:
        """Initialize InferenceEngine.

        Args:
            config: Session configuration (default: 2 intra-op, 1 inter-op threads)
        """
        self.config = config or SessionConfig()

        logger.info("InferenceEngine initialized")
        logger.info(f"  Intra-op threads: {self.config.intra_op_threads}")
        logger.info(f"  Inter-op threads: {self.config.inter_op_threads}")
        logger.info(f"  Providers: {list(self.config.providers)}")

    def load(self, source: ModelSource) -> Model:
        """Load a model from a file path or serialized ONNX bytes.

        Args:
            source: Path to an .onnx file, or the model bytes

        Returns:
            Immutable Model handle ready for evaluate()

        Raises:
            ModelLoadError: If the file is missing, corrupt, or uses operators
                the runtime cannot execute
        """
        if isinstance(source, (bytes, bytearray)):
            if not source:
                raise ModelLoadError("Model bytes are empty")
            model_path = None
            name = "<memory>"
            target = bytes(source)
        else:
            model_path = Path(source)
            if not model_path.is_file():
                raise ModelLoadError(f"Model file not found: {model_path}")
            name = model_path.stem
            target = str(model_path)

        logger.info(f"Loading model: {name}" + (f" from {model_path}" if model_path else ""))

        sess_options = ort.SessionOptions()
        sess_options.intra_op_num_threads = self.config.intra_op_threads
        sess_options.inter_op_num_threads = self.config.inter_op_threads

        # Disable memory pattern optimization for consistent behavior
        sess_options.enable_mem_pattern = False

        try:
            session = ort.InferenceSession(
                target,
                sess_options,
                providers=list(self.config.providers),
            )
        except Exception as e:
            # onnxruntime raises its own pybind exception types (InvalidGraph,
            # InvalidProtobuf, NotImplemented, Fail) which share no base class
            raise ModelLoadError(f"Failed to load model {name}: {e}") from e

        inputs = session.get_inputs()
        outputs = session.get_outputs()
        if len(inputs) != 1:
            raise ModelLoadError(
                f"Model {name} declares {len(inputs)} inputs, expected exactly 1"
            )
        if not outputs:
            raise ModelLoadError(f"Model {name} declares no outputs")

        input_meta = inputs[0]
        info = ModelInfo(
            name=name,
            path=model_path,
            input_name=input_meta.name,
            input_shape=_normalize_shape(input_meta.shape),
            input_dtype=np.dtype(ONNX_TO_NUMPY.get(input_meta.type, np.float32)),
            output_names=tuple(o.name for o in outputs),
            output_shapes=tuple(_normalize_shape(o.shape) for o in outputs),
        )

        logger.info(f"  ✓ Loaded {name}")
        logger.info(f"    Input: {info.input_name} {info.input_shape}")
        for out_name, out_shape in zip(info.output_names, info.output_shapes):
            logger.info(f"    Output: {out_name} {out_shape}")

        return Model(info=info, session=session)

    def evaluate(self, model: Model, tensor: np.ndarray) -> RawOutput:
        """Run one forward pass.

        Args:
            model: Handle returned by load()
            tensor: Prepared input tensor

        Returns:
            Tuple of output arrays in model output order

        Raises:
            InferenceError: If the tensor does not match the declared input
                shape, or the runtime fails during execution
        """
        info = model.info
        self._check_shape(info, tensor)

        if tensor.dtype != info.input_dtype:
            tensor = tensor.astype(info.input_dtype)

        try:
            outputs = model.session.run(None, {info.input_name: tensor})
        except Exception as e:
            raise InferenceError(f"Forward pass failed for model {info.name}: {e}") from e

        raw = tuple(np.asarray(output) for output in outputs)

        for out_name, output in zip(info.output_names, raw):
            if np.issubdtype(output.dtype, np.floating) and not np.all(np.isfinite(output)):
                raise InferenceError(
                    f"Model {info.name} produced non-finite values in output '{out_name}'"
                )

        return raw

    @staticmethod
    def _check_shape(info: ModelInfo, tensor: np.ndarray) -> None:
        expected = info.input_shape
        actual = tuple(tensor.shape)

        if len(actual) != len(expected):
            raise InferenceError(
                f"Input rank mismatch for model {info.name}: "
                f"expected {expected}, got {actual}"
            )

        for want, got in zip(expected, actual):
            if want is not None and want != got:
                raise InferenceError(
                    f"Input shape mismatch for model {info.name}: "
                    f"expected {expected}, got {actual}"
                )

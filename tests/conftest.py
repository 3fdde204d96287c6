"""
Pytest Fixtures - Shared Test Fixtures for Crop Recognition

Fixtures:
    sample_image: Landscape RGB image (480x640) for testing
    sample_image_portrait: Portrait RGB image (640x480) for letterbox tests
    jpeg_bytes / png_bytes: Encoded images for decoder tests
    classifier_model_path: Tiny ONNX classifier [1, 3, 32, 32] → [1, 3]
    detector_model_path: Tiny ONNX detector [1, 3, 64, 64] → [1, 7, 8]
    labels_file: Three class labels matching the tiny models
    pipeline_config: PipelineConfig used by pipeline and API tests
"""

import io
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from crop_recognition.config import PipelineConfig
from crop_recognition.postprocess.types import BoundingBox, Candidate

LABELS = ["Tomato", "Broccoli", "Brinjal"]

CLASSIFIER_INPUT = (1, 3, 32, 32)
DETECTOR_INPUT = (1, 3, 64, 64)

# Channel-first YOLOv8 style rows: cx, cy, w, h, then one score per class
DETECTOR_ROWS = np.array(
    [
        [20, 20, 10, 10, 0.90, 0.00, 0.00],
        [21, 21, 10, 10, 0.80, 0.00, 0.00],
        [50, 50, 8, 8, 0.00, 0.70, 0.00],
        [10, 50, 6, 6, 0.01, 0.02, 0.01],
        [30, 30, 6, 6, 0.02, 0.01, 0.01],
        [40, 10, 6, 6, 0.01, 0.01, 0.03],
        [55, 15, 6, 6, 0.00, 0.01, 0.02],
        [5, 5, 4, 4, 0.01, 0.00, 0.00],
    ],
    dtype=np.float32,
)


# =============================================================================
# Image Fixtures
# =============================================================================

@pytest.fixture
def sample_image() -> np.ndarray:
    """
    Sample landscape RGB image for testing.

    Returns:
        RGB uint8 array with shape [480, 640, 3]
    """
    rng = np.random.default_rng(42)
    return rng.integers(0, 256, (480, 640, 3), dtype=np.uint8)


@pytest.fixture
def sample_image_portrait() -> np.ndarray:
    """
    Sample portrait RGB image for testing letterbox.

    Returns:
        RGB uint8 array with shape [640, 480, 3]
    """
    rng = np.random.default_rng(44)
    return rng.integers(0, 256, (640, 480, 3), dtype=np.uint8)


def encode_image(array: np.ndarray, fmt: str) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(array).save(buffer, format=fmt)
    return buffer.getvalue()


def solid_color_jpeg(color: tuple[int, int, int], size: tuple[int, int] = (64, 64)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color=color).save(buffer, format="JPEG", quality=95)
    return buffer.getvalue()


@pytest.fixture
def jpeg_bytes() -> bytes:
    """Noisy 256x256 JPEG, large enough that truncation cuts pixel data."""
    rng = np.random.default_rng(7)
    return encode_image(rng.integers(0, 256, (256, 256, 3), dtype=np.uint8), "JPEG")


@pytest.fixture
def png_bytes() -> bytes:
    """100x60 (width x height) PNG."""
    rng = np.random.default_rng(8)
    return encode_image(rng.integers(0, 256, (60, 100, 3), dtype=np.uint8), "PNG")


@pytest.fixture
def make_jpeg():
    """Factory for solid colour JPEGs: make_jpeg(color, size=(64, 64))."""
    return solid_color_jpeg


@pytest.fixture
def red_jpeg() -> bytes:
    return solid_color_jpeg((255, 0, 0))


@pytest.fixture
def green_jpeg() -> bytes:
    return solid_color_jpeg((0, 255, 0))


# =============================================================================
# Candidate Fixtures
# =============================================================================

@pytest.fixture
def overlapping_candidates() -> list[Candidate]:
    """Two same-class candidates with IoU ~0.68."""
    return [
        Candidate(confidence=0.8, class_id=0, box=BoundingBox(1, 1, 10, 10)),
        Candidate(confidence=0.9, class_id=0, box=BoundingBox(0, 0, 10, 10)),
    ]


@pytest.fixture
def random_candidates() -> list[Candidate]:
    """Forty boxed candidates in two classes clustered in a 100x100 area."""
    rng = np.random.default_rng(123)
    candidates = []
    for _ in range(40):
        x, y = rng.uniform(0, 80, size=2)
        w, h = rng.uniform(5, 30, size=2)
        candidates.append(
            Candidate(
                confidence=float(np.round(rng.uniform(0.1, 1.0), 2)),
                class_id=int(rng.integers(0, 2)),
                box=BoundingBox(float(x), float(y), float(w), float(h)),
            )
        )
    return candidates


# =============================================================================
# ONNX Model Fixtures
# =============================================================================

def _save_model(graph, path: Path) -> Path:
    import onnx
    from onnx import helper

    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 17)])
    # IR version 9 for onnxruntime compatibility
    model.ir_version = 9
    onnx.checker.check_model(model)
    onnx.save(model, str(path))
    return path


@pytest.fixture
def classifier_model_path(tmp_path: Path) -> Path:
    """
    Three-class classifier that scores each class by its channel mean.

    GlobalAveragePool → Flatten → MatMul(10 * I) → Softmax, so a pure red
    image is class 0, green class 1, blue class 2.
    """
    pytest.importorskip("onnx")
    from onnx import TensorProto, helper, numpy_helper

    weights = numpy_helper.from_array(np.eye(3, dtype=np.float32) * 10.0, name="weights")

    x = helper.make_tensor_value_info("images", TensorProto.FLOAT, list(CLASSIFIER_INPUT))
    y = helper.make_tensor_value_info("probs", TensorProto.FLOAT, [1, 3])

    nodes = [
        helper.make_node("GlobalAveragePool", ["images"], ["pooled"]),
        helper.make_node("Flatten", ["pooled"], ["flat"], axis=1),
        helper.make_node("MatMul", ["flat", "weights"], ["logits"]),
        helper.make_node("Softmax", ["logits"], ["probs"], axis=1),
    ]
    graph = helper.make_graph(nodes, "crop_classifier", [x], [y], initializer=[weights])
    return _save_model(graph, tmp_path / "crop_classifier.onnx")


@pytest.fixture
def detector_model_path(tmp_path: Path) -> Path:
    """
    Detector that ignores its input and returns DETECTOR_ROWS channel-first.

    Output is [1, 7, 8]: 4 box attributes + 3 class scores, 8 anchors.
    """
    pytest.importorskip("onnx")
    from onnx import TensorProto, helper, numpy_helper

    rows = numpy_helper.from_array(DETECTOR_ROWS.T[np.newaxis].copy(), name="rows")
    zero = numpy_helper.from_array(np.array(0.0, dtype=np.float32), name="zero")

    x = helper.make_tensor_value_info("images", TensorProto.FLOAT, list(DETECTOR_INPUT))
    y = helper.make_tensor_value_info("output0", TensorProto.FLOAT, [1, 7, 8])

    nodes = [
        helper.make_node("ReduceMax", ["images"], ["peak"], keepdims=0),
        helper.make_node("Mul", ["peak", "zero"], ["nothing"]),
        helper.make_node("Add", ["rows", "nothing"], ["output0"]),
    ]
    graph = helper.make_graph(nodes, "crop_detector", [x], [y], initializer=[rows, zero])
    return _save_model(graph, tmp_path / "crop_detector.onnx")


@pytest.fixture
def identity_model_path(tmp_path: Path) -> Path:
    """Identity model whose 4-D output matches neither output family."""
    pytest.importorskip("onnx")
    from onnx import TensorProto, helper

    x = helper.make_tensor_value_info("input", TensorProto.FLOAT, list(CLASSIFIER_INPUT))
    y = helper.make_tensor_value_info("output", TensorProto.FLOAT, list(CLASSIFIER_INPUT))
    graph = helper.make_graph(
        [helper.make_node("Identity", ["input"], ["output"])], "identity", [x], [y]
    )
    return _save_model(graph, tmp_path / "identity.onnx")


@pytest.fixture
def labels_file(tmp_path: Path) -> Path:
    path = tmp_path / "labels.txt"
    path.write_text("\n".join(LABELS) + "\n", encoding="utf-8")
    return path


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def pipeline_config() -> PipelineConfig:
    return PipelineConfig(
        input_size=(32, 32),
        normalization="unit",
        confidence_threshold=0.25,
        iou_threshold=0.45,
        max_image_dimension=4096,
        intra_op_threads=1,
        inter_op_threads=1,
        display_names={"Tomato": "番茄", "Broccoli": "西兰花"},
    )

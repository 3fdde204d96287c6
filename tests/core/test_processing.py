"""
Unit Tests for Processing Module

This module tests:
- transforms.py: decode_image, letterbox, normalizers, scale_boxes
- preprocess.py: Preprocessor class

Test Categories:
- Decoding: valid formats, malformed / truncated / oversized input
- Shape validation: Output tensor dimensions match the model input
- Range validation: Output values within expected bounds
- Edge cases: extreme aspect ratios, tiny images
"""

import io

import numpy as np
import pytest
from PIL import Image

from crop_recognition.errors import DecodeError, ShapeError
from crop_recognition.processing.preprocess import Preprocessor, PreprocessResult
from crop_recognition.processing.transforms import (
    IMAGENET_MEAN,
    IMAGENET_STD,
    LETTERBOX_FILL,
    decode_image,
    imagenet_normalize,
    letterbox,
    scale_boxes,
    unit_normalize,
)

# =============================================================================
# Tests for decode_image
# =============================================================================


class TestDecodeImage:
    """Tests for decoding untrusted image bytes."""

    def test_decode_jpeg(self, jpeg_bytes: bytes) -> None:
        image = decode_image(jpeg_bytes)

        assert image.shape == (256, 256, 3)
        assert image.dtype == np.uint8

    def test_decode_png_keeps_orientation(self, png_bytes: bytes) -> None:
        """Shape is [H, W, 3] for a 100 wide, 60 tall PNG."""
        image = decode_image(png_bytes)

        assert image.shape == (60, 100, 3)

    def test_decode_png_is_lossless(self) -> None:
        rng = np.random.default_rng(3)
        array = rng.integers(0, 256, (12, 20, 3), dtype=np.uint8)
        buffer = io.BytesIO()
        Image.fromarray(array).save(buffer, format="PNG")

        assert np.array_equal(decode_image(buffer.getvalue()), array)

    @pytest.mark.parametrize("mode", ["L", "RGBA", "P"])
    def test_decode_converts_to_rgb(self, mode: str) -> None:
        buffer = io.BytesIO()
        Image.new(mode, (16, 8)).save(buffer, format="PNG")

        image = decode_image(buffer.getvalue())

        assert image.shape == (8, 16, 3)

    def test_decode_empty_bytes(self) -> None:
        with pytest.raises(DecodeError, match="empty"):
            decode_image(b"")

    def test_decode_garbage(self) -> None:
        with pytest.raises(DecodeError):
            decode_image(b"definitely not an image")

    def test_decode_truncated_header(self, jpeg_bytes: bytes) -> None:
        """A JPEG cut inside its header is rejected."""
        with pytest.raises(DecodeError):
            decode_image(jpeg_bytes[:20])

    def test_decode_truncated_body(self, jpeg_bytes: bytes) -> None:
        """A JPEG whose header parses but pixel data is cut is rejected."""
        with pytest.raises(DecodeError):
            decode_image(jpeg_bytes[: len(jpeg_bytes) // 2])

    def test_decode_rejects_oversized(self, png_bytes: bytes) -> None:
        with pytest.raises(DecodeError, match="exceed"):
            decode_image(png_bytes, max_dimension=50)

    def test_decode_accepts_exact_max_dimension(self, png_bytes: bytes) -> None:
        image = decode_image(png_bytes, max_dimension=100)

        assert image.shape[1] == 100


# =============================================================================
# Tests for letterbox
# =============================================================================


class TestLetterbox:
    """Tests for letterbox transform."""

    def test_letterbox_output_shape(self, sample_image: np.ndarray) -> None:
        """Letterbox should produce output of target size."""
        letterboxed, _, _ = letterbox(sample_image, (320, 320))

        assert letterboxed.shape == (320, 320, 3)

    def test_letterbox_rectangular_target(self, sample_image: np.ndarray) -> None:
        """Target size is (width, height); output array is [height, width, 3]."""
        letterboxed, _, _ = letterbox(sample_image, (320, 192))

        assert letterboxed.shape == (192, 320, 3)

    def test_letterbox_preserves_dtype(self, sample_image: np.ndarray) -> None:
        letterboxed, _, _ = letterbox(sample_image, (320, 320))

        assert letterboxed.dtype == np.uint8

    @pytest.mark.parametrize(
        "shape,expected_scale",
        [
            ((480, 640, 3), 320 / 640),  # landscape: width is limiting
            ((640, 480, 3), 320 / 640),  # portrait: height is limiting
            ((320, 320, 3), 1.0),  # square: exact fit
            ((160, 160, 3), 2.0),  # small square: upscale
        ],
    )
    def test_letterbox_scale(self, shape: tuple, expected_scale: float) -> None:
        rng = np.random.default_rng(42)
        image = rng.integers(0, 256, shape, dtype=np.uint8)

        _, scale, _ = letterbox(image, (320, 320))

        assert np.isclose(scale, expected_scale, rtol=1e-5)

    @pytest.mark.parametrize(
        "shape,expected_pad_w_zero,expected_pad_h_zero",
        [
            ((480, 640, 3), True, False),  # landscape: pad height
            ((640, 480, 3), False, True),  # portrait: pad width
            ((320, 320, 3), True, True),  # square: no padding
        ],
    )
    def test_letterbox_padding_direction(
        self,
        shape: tuple,
        expected_pad_w_zero: bool,
        expected_pad_h_zero: bool,
    ) -> None:
        rng = np.random.default_rng(42)
        image = rng.integers(0, 256, shape, dtype=np.uint8)

        _, _, (pad_w, pad_h) = letterbox(image, (320, 320))

        assert (pad_w == 0) == expected_pad_w_zero
        assert (pad_h == 0) == expected_pad_h_zero

    def test_letterbox_padding_value(self, sample_image: np.ndarray) -> None:
        """Padding should use the default letterbox fill (114)."""
        letterboxed, _, (_, pad_h) = letterbox(sample_image, (320, 320))

        assert pad_h > 0
        assert np.all(letterboxed[0, :, :] == LETTERBOX_FILL)
        assert np.all(letterboxed[-1, :, :] == LETTERBOX_FILL)

    def test_letterbox_custom_fill(self, sample_image: np.ndarray) -> None:
        letterboxed, _, _ = letterbox(sample_image, (320, 320), fill_value=0)

        assert np.all(letterboxed[0, :, :] == 0)

    def test_letterbox_extreme_aspect_ratio(self) -> None:
        """A one-pixel-tall strip still occupies at least one row."""
        image = np.full((1, 2000, 3), 200, dtype=np.uint8)

        letterboxed, _, (pad_w, pad_h) = letterbox(image, (224, 224))

        assert letterboxed.shape == (224, 224, 3)
        assert pad_w == 0
        assert np.any(letterboxed[pad_h] == 200)

    def test_letterbox_zero_size(self) -> None:
        with pytest.raises(ShapeError):
            letterbox(np.zeros((0, 10, 3), dtype=np.uint8), (32, 32))


# =============================================================================
# Tests for normalizers
# =============================================================================


class TestNormalize:
    """Tests for the fixed pixel transforms."""

    def test_unit_normalize_range(self, sample_image: np.ndarray) -> None:
        normalized = unit_normalize(sample_image)

        assert normalized.dtype == np.float32
        assert 0.0 <= normalized.min() <= normalized.max() <= 1.0

    def test_unit_normalize_white(self) -> None:
        white = np.full((4, 4, 3), 255, dtype=np.uint8)

        assert np.allclose(unit_normalize(white), 1.0)

    def test_imagenet_normalize_zero_image(self) -> None:
        """Zero image should normalize to -mean/std."""
        normalized = imagenet_normalize(np.zeros((10, 10, 3), dtype=np.uint8))

        assert np.allclose(normalized[0, 0, :], -IMAGENET_MEAN / IMAGENET_STD)

    def test_imagenet_normalize_white_image(self) -> None:
        """White image (255) should normalize to (1-mean)/std."""
        normalized = imagenet_normalize(np.full((10, 10, 3), 255, dtype=np.uint8))

        assert np.allclose(normalized[0, 0, :], (1.0 - IMAGENET_MEAN) / IMAGENET_STD)
        assert normalized.dtype == np.float32


# =============================================================================
# Tests for scale_boxes
# =============================================================================


class TestScaleBoxes:
    """Tests for bounding box coordinate conversion."""

    def test_scale_boxes_removes_padding(self) -> None:
        boxes = np.array([[100, 100, 200, 200]], dtype=np.float32)

        scaled = scale_boxes(boxes, 1.0, (50, 50), (1000, 1000))

        assert np.allclose(scaled[0], [50, 50, 150, 150])

    def test_scale_boxes_removes_scale(self) -> None:
        boxes = np.array([[100, 100, 200, 200]], dtype=np.float32)

        scaled = scale_boxes(boxes, 0.5, (0, 0), (2000, 2000))

        assert np.allclose(scaled[0], [200, 200, 400, 400])

    def test_scale_boxes_clips_to_image(self) -> None:
        boxes = np.array([[-10, -10, 700, 500]], dtype=np.float32)

        scaled = scale_boxes(boxes, 1.0, (0, 0), (480, 640))

        assert np.allclose(scaled[0], [0, 0, 640, 480])

    def test_scale_boxes_does_not_modify_input(self) -> None:
        boxes = np.array([[100, 100, 200, 200]], dtype=np.float32)
        original = boxes.copy()

        scale_boxes(boxes, 0.5, (10, 10), (1000, 1000))

        assert np.array_equal(boxes, original)

    def test_scale_boxes_empty(self) -> None:
        scaled = scale_boxes(np.zeros((0, 4), dtype=np.float32), 1.0, (0, 0), (10, 10))

        assert scaled.shape == (0, 4)

    def test_letterbox_round_trip(self, sample_image: np.ndarray) -> None:
        """A box mapped into letterbox space and back lands where it started."""
        _, scale, (pad_w, pad_h) = letterbox(sample_image, (320, 320))
        original = np.array([[64, 48, 320, 240]], dtype=np.float32)
        letterboxed = original * scale + np.array([pad_w, pad_h, pad_w, pad_h])

        restored = scale_boxes(letterboxed, scale, (pad_w, pad_h), sample_image.shape[:2])

        assert np.allclose(restored, original, atol=1e-3)


# =============================================================================
# Tests for Preprocessor
# =============================================================================


class TestPreprocessor:
    """Tests for Preprocessor class."""

    @pytest.mark.parametrize(
        "shape",
        [(480, 640, 3), (640, 480, 3), (224, 224, 3), (1, 900, 3), (900, 1, 3), (7, 5, 3)],
    )
    def test_output_shape_matches_target_for_any_aspect(self, shape: tuple) -> None:
        """Tensor shape equals the target shape regardless of aspect ratio."""
        rng = np.random.default_rng(0)
        image = rng.integers(0, 256, shape, dtype=np.uint8)

        result = Preprocessor((224, 160))(image)

        assert result.tensor.shape == (1, 3, 160, 224)

    def test_output_dtype_and_layout(self, sample_image: np.ndarray) -> None:
        result = Preprocessor((320, 320)).prepare(sample_image)

        assert isinstance(result, PreprocessResult)
        assert result.tensor.dtype == np.float32
        assert result.tensor.flags["C_CONTIGUOUS"]

    def test_unit_range(self, sample_image: np.ndarray) -> None:
        result = Preprocessor((320, 320), normalization="unit")(sample_image)

        assert 0.0 <= result.tensor.min() <= result.tensor.max() <= 1.0

    def test_imagenet_range(self, sample_image: np.ndarray) -> None:
        result = Preprocessor((224, 224), normalization="imagenet")(sample_image)

        assert -3.0 < result.tensor.min() < result.tensor.max() < 3.0

    def test_channel_first(self) -> None:
        """A pure red image has a bright first channel and dark others."""
        red = np.zeros((32, 32, 3), dtype=np.uint8)
        red[..., 0] = 255

        tensor = Preprocessor((32, 32))(red).tensor

        assert np.allclose(tensor[0, 0], 1.0)
        assert np.allclose(tensor[0, 1:], 0.0)

    def test_records_geometry(self, sample_image: np.ndarray) -> None:
        result = Preprocessor((320, 320))(sample_image)

        assert result.original_shape == (480, 640)
        assert np.isclose(result.scale, 0.5)
        assert result.padding == (0, 40)

    def test_fresh_tensor_per_call(self, sample_image: np.ndarray) -> None:
        preprocessor = Preprocessor((64, 64))

        first = preprocessor(sample_image).tensor
        second = preprocessor(sample_image).tensor

        assert first is not second
        assert np.array_equal(first, second)

    def test_blank_tensor(self) -> None:
        tensor = Preprocessor((48, 32), fill_value=114).blank_tensor()

        assert tensor.shape == (1, 3, 32, 48)
        assert np.allclose(tensor, 114 / 255.0)

    @pytest.mark.parametrize(
        "image",
        [
            np.zeros((0, 10, 3), dtype=np.uint8),
            np.zeros((10, 0, 3), dtype=np.uint8),
            np.zeros((10, 10), dtype=np.uint8),
            np.zeros((10, 10, 4), dtype=np.uint8),
            np.zeros((10, 10, 3), dtype=np.float64),
        ],
    )
    def test_rejects_degenerate_input(self, image: np.ndarray) -> None:
        with pytest.raises(ShapeError):
            Preprocessor((32, 32))(image)

    def test_rejects_unknown_normalization(self) -> None:
        with pytest.raises(ValueError, match="normalization"):
            Preprocessor((32, 32), normalization="zscore")

    def test_get_input_shape(self) -> None:
        assert Preprocessor((640, 480)).get_input_shape() == (1, 3, 480, 640)

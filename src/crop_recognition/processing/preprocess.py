"""Model Input Preprocessing.

This module provides the Preprocessor class for preparing decoded images
for ONNX Runtime inference.

Pipeline:
    1. Letterbox resize to the model input size (preserve aspect ratio)
    2. Normalize ("unit": divide by 255.0, "imagenet": mean/std)
    3. Transpose HWC → CHW (channels first for ONNX)
    4. Add batch dimension → [1, 3, H, W]

The preprocessor records the letterbox geometry so that detection outputs
can be mapped back to original image coordinates.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Tuple

import numpy as np

from crop_recognition.errors import ShapeError
from crop_recognition.processing.transforms import (
    LETTERBOX_FILL,
    imagenet_normalize,
    letterbox,
    scale_boxes,
    unit_normalize,
)

# =============================================================================
# Constants
# =============================================================================

NORMALIZERS: Dict[str, Callable[[np.ndarray], np.ndarray]] = {
    "unit": unit_normalize,
    "imagenet": imagenet_normalize,
}
"""Fixed linear pixel transforms, selected once at startup."""


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class PreprocessResult:
    """Result container for preprocessing.

    Attributes:
        tensor: Preprocessed image tensor [1, 3, H, W], float32
        scale: Scale factor applied during letterbox (for coordinate conversion)
        padding: (pad_w, pad_h) pixels added during letterbox
        original_shape: (height, width) of input image
    """

    tensor: np.ndarray
    scale: float
    padding: Tuple[int, int]
    original_shape: Tuple[int, int]

    def scale_boxes_to_original(self, boxes: np.ndarray) -> np.ndarray:
        """Convert boxes from model input space to original image coordinates.

        Args:
            boxes: Detection boxes [N, 4+] with [x1, y1, x2, y2, ...] in letterbox space

        Returns:
            Boxes with coordinates in original image space
        """
        return scale_boxes(boxes, self.scale, self.padding, self.original_shape)


# =============================================================================
# Preprocessor Class
# =============================================================================


class Preprocessor:
    """Letterbox + normalize preprocessor for channel-first ONNX models.

    Attributes:
        input_size: Target (width, height)
        normalization: Name of the pixel transform ("unit" or "imagenet")
        fill_value: Letterbox padding gray level

    Example:
        >>> preprocessor = Preprocessor((640, 640))
        >>> image = np.random.randint(0, 256, (1080, 1920, 3), dtype=np.uint8)
        >>> result = preprocessor(image)
        >>> result.tensor.shape
        (1, 3, 640, 640)
        >>> result.tensor.dtype
        dtype('float32')
    """

    def __init__(
        self,
        input_size: Tuple[int, int],
        normalization: str = "unit",
        fill_value: int = LETTERBOX_FILL,
    ) -> None:
        """Initialize Preprocessor.

        Args:
            input_size: Target (width, height) for model input
            normalization: "unit" or "imagenet"
            fill_value: Gray level for letterbox padding (default: 114)

        Raises:
            ValueError: If normalization is unknown or input_size is not positive
        """
        if normalization not in NORMALIZERS:
            raise ValueError(
                f"Unknown normalization '{normalization}'. "
                f"Available: {list(NORMALIZERS)}"
            )
        if len(input_size) != 2 or min(input_size) <= 0:
            raise ValueError(f"Invalid input size: {input_size}")

        self.input_size = (int(input_size[0]), int(input_size[1]))
        self.normalization = normalization
        self.fill_value = fill_value
        self._normalize = NORMALIZERS[normalization]

    def __call__(self, image: np.ndarray) -> PreprocessResult:
        return self.prepare(image)

    def prepare(self, image: np.ndarray) -> PreprocessResult:
        """Preprocess image for inference.

        Args:
            image: RGB uint8 array with shape [H, W, 3]

        Returns:
            PreprocessResult containing:
                - tensor: [1, 3, H, W] float32
                - scale: Scale factor for coordinate conversion
                - padding: Padding offset for coordinate conversion
                - original_shape: Input image dimensions

        Raises:
            ShapeError: If image has invalid shape or zero width/height
        """
        self._validate_input(image)

        original_shape = (image.shape[0], image.shape[1])

        # Step 1: Letterbox resize
        letterboxed, scale, padding = letterbox(image, self.input_size, self.fill_value)

        # Step 2: Normalize
        normalized = self._normalize(letterboxed)

        # Step 3: Transpose HWC → CHW
        transposed = normalized.transpose(2, 0, 1)

        # Step 4: Add batch dimension
        batched = np.expand_dims(transposed, axis=0)

        # Ensure contiguous memory layout for ONNX Runtime
        tensor = np.ascontiguousarray(batched, dtype=np.float32)

        return PreprocessResult(
            tensor=tensor,
            scale=scale,
            padding=padding,
            original_shape=original_shape,
        )

    def blank_tensor(self) -> np.ndarray:
        """Tensor of a fully padded canvas, used to warm up a session."""
        width, height = self.input_size
        canvas = np.full((height, width, 3), self.fill_value, dtype=np.uint8)
        return self.prepare(canvas).tensor

    def get_input_shape(self) -> Tuple[int, int, int, int]:
        """Get the produced tensor shape.

        Returns:
            Tuple of (batch, channels, height, width)
        """
        width, height = self.input_size
        return (1, 3, height, width)

    def _validate_input(self, image: np.ndarray) -> None:
        if not isinstance(image, np.ndarray):
            raise ShapeError(f"Expected numpy array, got {type(image)}")

        if image.ndim != 3:
            raise ShapeError(f"Expected 3D array [H, W, C], got {image.ndim}D")

        if image.shape[2] != 3:
            raise ShapeError(f"Expected 3 channels, got {image.shape[2]}")

        if image.shape[0] < 1 or image.shape[1] < 1:
            raise ShapeError(f"Invalid image dimensions: {image.shape[:2]}")

        if image.dtype != np.uint8:
            raise ShapeError(f"Expected uint8 dtype, got {image.dtype}")

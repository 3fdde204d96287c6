"""
Low-Level Image Transforms

This module contains the atomic transformation functions used by
Preprocessor and the detection decoder.

Functions:
    decode_image: Decode untrusted image bytes as an RGB numpy array
    letterbox: Resize with aspect ratio preservation and padding
    unit_normalize: Scale pixels to [0, 1]
    imagenet_normalize: Apply ImageNet mean/std normalization
    scale_boxes: Convert coordinates from letterboxed to original space

Constants:
    IMAGENET_MEAN: ImageNet dataset channel means [R, G, B]
    IMAGENET_STD: ImageNet dataset channel standard deviations [R, G, B]
"""

import io
from typing import Tuple

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from crop_recognition.errors import DecodeError, ShapeError


# =============================================================================
# Constants
# =============================================================================

# ImageNet normalization constants
# Reference: https://pytorch.org/vision/stable/models.html
IMAGENET_MEAN: np.ndarray = np.array([0.485, 0.456, 0.406], dtype=np.float32)
IMAGENET_STD: np.ndarray = np.array([0.229, 0.224, 0.225], dtype=np.float32)

# Default letterbox padding value (gray, matches Ultralytics default)
LETTERBOX_FILL: int = 114

DEFAULT_MAX_DIMENSION: int = 8192


# =============================================================================
# Image Decoding
# =============================================================================

def decode_image(
    image_bytes: bytes,
    max_dimension: int = DEFAULT_MAX_DIMENSION,
) -> np.ndarray:
    """
    Decode image bytes as an RGB numpy array.

    The header is parsed first so oversized images are rejected before any
    pixel data is decoded. Decoding then forces a full read, which surfaces
    truncated files instead of returning a partially grey image.

    Args:
        image_bytes: Raw encoded image bytes (JPEG, PNG, WebP, BMP, ...)
        max_dimension: Largest accepted width or height in pixels

    Returns:
        RGB uint8 array with shape [H, W, 3]

    Raises:
        DecodeError: If bytes are empty, malformed, truncated, unsupported,
            or the image exceeds max_dimension

    Example:
        >>> with open("leaf.jpg", "rb") as f:
        ...     image = decode_image(f.read())
        >>> image.shape
        (1080, 1920, 3)
    """
    if not image_bytes:
        raise DecodeError("Failed to decode image from bytes: empty input")

    try:
        with Image.open(io.BytesIO(image_bytes)) as pil_image:
            width, height = pil_image.size
            if width > max_dimension or height > max_dimension:
                raise DecodeError(
                    f"Image dimensions {width}x{height} exceed the maximum "
                    f"of {max_dimension} pixels"
                )

            pil_image.load()
            pil_image = ImageOps.exif_transpose(pil_image)
            rgb = np.asarray(pil_image.convert("RGB"), dtype=np.uint8)

    except UnidentifiedImageError as e:
        raise DecodeError("Failed to decode image from bytes: unrecognised format") from e
    except Image.DecompressionBombError as e:
        raise DecodeError(f"Failed to decode image from bytes: {e}") from e
    except (OSError, SyntaxError, ValueError) as e:
        # Pillow reports truncated streams and broken headers as OSError/SyntaxError
        raise DecodeError(f"Failed to decode image from bytes: {e}") from e

    if rgb.ndim != 3 or rgb.shape[0] == 0 or rgb.shape[1] == 0:
        raise DecodeError(f"Decoded image has invalid shape {rgb.shape}")

    return np.ascontiguousarray(rgb)


# =============================================================================
# Geometric Transforms
# =============================================================================

def letterbox(
    image: np.ndarray,
    target_size: Tuple[int, int],
    fill_value: int = LETTERBOX_FILL,
) -> Tuple[np.ndarray, float, Tuple[int, int]]:
    """
    Fit an image into the model input without distorting it.

    The image is scaled by the largest factor that keeps both sides inside
    the target, then centered on a canvas of fill_value gray.
    Crops keep their proportions.

    Args:
        image: RGB uint8 array with shape [H, W, 3]
        target_size: (width, height) of the output canvas
        fill_value: Gray level used for padding (default: 114)

    Returns:
        (canvas, scale, (pad_w, pad_h)): the [height, width, 3] canvas, the
        resize factor and the offset of the resized image inside the canvas

    Raises:
        ShapeError: If the image has zero width or height

    Example:
        >>> photo = np.zeros((600, 800, 3), dtype=np.uint8)
        >>> canvas, scale, padding = letterbox(photo, (224, 224))
        >>> canvas.shape
        (224, 224, 3)
        >>> scale, padding
        (0.28, (0, 28))
    """
    height, width = image.shape[:2]
    target_w, target_h = target_size

    if height == 0 or width == 0:
        raise ShapeError(f"Cannot letterbox image with shape {image.shape}")

    # Calculate scale to fit within target size
    scale = min(target_w / width, target_h / height)

    # New dimensions after scaling, never collapsing a thin image to zero
    new_width = min(target_w, max(1, int(width * scale)))
    new_height = min(target_h, max(1, int(height * scale)))

    if (new_width, new_height) != (width, height):
        resized = cv2.resize(
            image,
            (new_width, new_height),
            interpolation=cv2.INTER_LINEAR,
        )
    else:
        resized = image

    letterboxed = np.full(
        (target_h, target_w, image.shape[2]),
        fill_value,
        dtype=np.uint8,
    )

    # Center the resized image
    pad_w = (target_w - new_width) // 2
    pad_h = (target_h - new_height) // 2

    letterboxed[pad_h : pad_h + new_height, pad_w : pad_w + new_width] = resized

    return letterboxed, scale, (pad_w, pad_h)


def scale_boxes(
    boxes: np.ndarray,
    scale: float,
    padding: Tuple[int, int],
    original_shape: Tuple[int, int],
) -> np.ndarray:
    """
    Map corner boxes from model input space back onto the original image.

    Inverse of letterbox(): subtract the padding, divide by the scale and
    clip to the image. The input array is not modified.

    Args:
        boxes: [N, 4+] array, first four columns x1, y1, x2, y2
        scale: Resize factor returned by letterbox()
        padding: (pad_w, pad_h) returned by letterbox()
        original_shape: (height, width) of the decoded image

    Returns:
        float32 copy of boxes in original pixel coordinates

    Example:
        >>> boxes = np.array([[56, 84, 112, 140]], dtype=np.float32)
        >>> scale_boxes(boxes, 0.28, (0, 28), (600, 800))
        array([[200., 200., 400., 400.]], dtype=float32)
    """
    boxes = np.array(boxes, dtype=np.float32, copy=True)

    if boxes.size == 0:
        return boxes

    pad_w, pad_h = padding
    orig_h, orig_w = original_shape

    # Undo the letterbox: padding first, then scale
    boxes[:, [0, 2]] -= pad_w
    boxes[:, [1, 3]] -= pad_h

    boxes[:, :4] /= scale

    # Clip to the original image
    boxes[:, [0, 2]] = np.clip(boxes[:, [0, 2]], 0, orig_w)
    boxes[:, [1, 3]] = np.clip(boxes[:, [1, 3]], 0, orig_h)

    return boxes


# =============================================================================
# Intensity Transforms
# =============================================================================

def unit_normalize(image: np.ndarray) -> np.ndarray:
    """
    Scale uint8 pixels to float32 in [0, 1].

    Formula: normalized = pixel / 255.0
    """
    return image.astype(np.float32) / 255.0


def imagenet_normalize(image: np.ndarray) -> np.ndarray:
    """
    Per-channel standardization for ImageNet-pretrained classifiers.

    normalized = (pixel / 255.0 - mean) / std, giving float32 values in
    roughly [-2.1, 2.6].
    """
    normalized = unit_normalize(image)

    return ((normalized - IMAGENET_MEAN) / IMAGENET_STD).astype(np.float32)

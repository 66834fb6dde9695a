"""
Image canonicalization for fingerprint extraction.

Every image entering the pipeline is brought to the same shape before
any feature is computed: decoded to RGB uint8, then resampled to a fixed
canonical resolution. Individual extractors resample the canonical
buffer again to their own working size, always through resample() so
identical inputs give identical pixels.

Decoding and resizing are delegated to OpenCV. Corrupt input fails
loudly with ImageDecodeError; a raw buffer whose byte length does not
match its declared dimensions fails with PixelBufferError.
"""

import os
import logging
from dataclasses import dataclass
from typing import Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)

# Canonical resolution fed to the extractors. Changing it changes every
# fingerprint, so rebuild the catalog index after overriding.
CANONICAL_SIZE = int(os.environ.get("CANONICAL_SIZE", "224"))

COLOR_MODE_RGB = "rgb"
COLOR_MODE_GRAYSCALE = "grayscale"


class ImageDecodeError(ValueError):
    """Raised when encoded image bytes cannot be decoded."""


class PixelBufferError(ValueError):
    """Raised when a raw pixel buffer is unusable for its declared shape."""


@dataclass(frozen=True)
class PixelBuffer:
    """
    Raw row-major 8-bit pixels with explicit dimensions.

    Attributes:
        data: Bytes-like object or uint8 array holding the samples.
        width: Width in pixels.
        height: Height in pixels.
        channels: 3 for RGB, 1 for grayscale.
    """
    data: Union[bytes, bytearray, memoryview, np.ndarray]
    width: int
    height: int
    channels: int = 3

    def to_array(self) -> np.ndarray:
        """Return the pixels as an (h, w, 3) or (h, w) uint8 array."""
        if self.width <= 0 or self.height <= 0:
            raise PixelBufferError(
                f"Invalid dimensions {self.width}x{self.height}"
            )
        if self.channels not in (1, 3):
            raise PixelBufferError(f"Unsupported channel count {self.channels}")

        if isinstance(self.data, np.ndarray):
            flat = np.ascontiguousarray(self.data, dtype=np.uint8).reshape(-1)
        else:
            flat = np.frombuffer(bytes(self.data), dtype=np.uint8)

        expected = self.width * self.height * self.channels
        if flat.size != expected:
            raise PixelBufferError(
                f"Buffer holds {flat.size} bytes, expected {expected} for "
                f"{self.width}x{self.height}x{self.channels}"
            )

        if self.channels == 1:
            return flat.reshape(self.height, self.width)
        return flat.reshape(self.height, self.width, 3)


ImageInput = Union[PixelBuffer, np.ndarray, bytes, bytearray]


def normalize_image(image_np: np.ndarray) -> np.ndarray:
    """Ensure image is a uint8 RGB array of shape (h, w, 3)."""
    if image_np.ndim not in (2, 3) or image_np.size == 0:
        raise PixelBufferError(f"Unsupported image shape {image_np.shape}")

    if image_np.dtype != np.uint8:
        if image_np.max() <= 1.0:
            image_np = (image_np * 255).astype(np.uint8)
        else:
            image_np = np.clip(image_np, 0, 255).astype(np.uint8)

    if image_np.ndim == 2:
        return cv2.cvtColor(image_np, cv2.COLOR_GRAY2RGB)

    channels = image_np.shape[2]
    if channels == 1:
        return cv2.cvtColor(image_np, cv2.COLOR_GRAY2RGB)
    if channels == 4:
        return cv2.cvtColor(image_np, cv2.COLOR_RGBA2RGB)
    if channels != 3:
        raise PixelBufferError(f"Unsupported channel count {channels}")
    return image_np


def decode_image(data: bytes) -> np.ndarray:
    """
    Decode encoded image bytes (JPEG, PNG, WebP, ...) into an RGB array.

    Raises:
        ImageDecodeError: If OpenCV cannot decode the bytes.
    """
    if not data:
        raise ImageDecodeError("Empty image data")

    encoded = np.frombuffer(bytes(data), dtype=np.uint8)
    image = cv2.imdecode(encoded, cv2.IMREAD_COLOR)
    if image is None:
        raise ImageDecodeError("Could not decode image data")

    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def load_image(path: str) -> np.ndarray:
    """Read an image file from disk as RGB uint8."""
    image = cv2.imread(path)
    if image is None:
        raise ImageDecodeError(f"Could not read image: {path}")
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def to_rgb_array(image: ImageInput) -> np.ndarray:
    """Coerce any supported image input into an RGB uint8 array."""
    if isinstance(image, PixelBuffer):
        return normalize_image(image.to_array())
    if isinstance(image, (bytes, bytearray, memoryview)):
        return decode_image(bytes(image))
    if isinstance(image, np.ndarray):
        return normalize_image(image)
    raise PixelBufferError(f"Unsupported image input: {type(image).__name__}")


def resample(image: ImageInput,
             target_width: int,
             target_height: int,
             color_mode: str = COLOR_MODE_RGB) -> np.ndarray:
    """
    Resize an image to a fixed resolution in the requested color mode.

    Uses area interpolation, so the result depends only on the input
    pixels and the target size.

    Args:
        image: PixelBuffer, numpy array or encoded image bytes.
        target_width: Output width in pixels.
        target_height: Output height in pixels.
        color_mode: "rgb" for (h, w, 3) output, "grayscale" for (h, w).

    Returns:
        uint8 array at the target resolution.
    """
    if color_mode not in (COLOR_MODE_RGB, COLOR_MODE_GRAYSCALE):
        raise ValueError(f"Unknown color mode: {color_mode}")

    rgb = to_rgb_array(image)
    h, w = rgb.shape[:2]

    if (w, h) != (target_width, target_height):
        rgb = cv2.resize(np.ascontiguousarray(rgb),
                         (target_width, target_height),
                         interpolation=cv2.INTER_AREA)

    if color_mode == COLOR_MODE_GRAYSCALE:
        return cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY)
    return rgb


def canonicalize(image: ImageInput, size: int = None) -> np.ndarray:
    """Resample an image to the canonical square RGB buffer."""
    size = size or CANONICAL_SIZE
    canonical = resample(image, size, size, COLOR_MODE_RGB)
    logger.debug(f"Canonicalized image to {size}x{size}")
    return canonical


def to_grayscale(image: np.ndarray, size: int) -> np.ndarray:
    """Resample an RGB buffer to a size x size grayscale working buffer."""
    return resample(image, size, size, COLOR_MODE_GRAYSCALE)

"""
Histogram features: HSV color, Sobel edge strength, and LBP texture.

All three are fixed-length, count-normalized histograms computed from
resampled copies of the canonical buffer:

    color     1024 bins  (16 hue x 8 saturation x 8 value, 128x128 RGB)
    edge        16 bins  (Sobel gradient magnitude, 64x64 grayscale)
    texture    256 bins  (8-neighbour Local Binary Pattern, 64x64 grayscale)

The color histogram captures overall palette; edge and texture capture
structure that two equally colored products usually do not share.
"""

import os
import logging

import cv2
import numpy as np

from .preprocessing import resample, to_grayscale, COLOR_MODE_RGB

logger = logging.getLogger(__name__)

H_BINS = 16
S_BINS = 8
V_BINS = 8
COLOR_HIST_DIM = H_BINS * S_BINS * V_BINS

EDGE_BINS = 16
TEXTURE_BINS = 256

# Working resolutions for each histogram.
COLOR_SAMPLE_SIZE = int(os.environ.get("COLOR_SAMPLE_SIZE", "128"))
EDGE_SIZE = int(os.environ.get("EDGE_SIZE", "64"))
TEXTURE_SIZE = int(os.environ.get("TEXTURE_SIZE", "64"))


def rgb_to_hsv(rgb: np.ndarray) -> np.ndarray:
    """
    Convert RGB values in [0, 1] to HSV, all channels in [0, 1].

    Hue is taken from whichever channel holds the maximum, checking red,
    then green, then blue, and wrapped so negative angles land near 1.
    Saturation is diff / max (0 for black), value is max.

    Args:
        rgb: Float array of shape (..., 3).

    Returns:
        Float array of the same shape holding (h, s, v).
    """
    rgb = np.asarray(rgb, dtype=np.float64)
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]

    c_max = rgb.max(axis=-1)
    c_min = rgb.min(axis=-1)
    diff = c_max - c_min

    safe_diff = np.where(diff == 0, 1.0, diff)
    hue = np.select(
        [c_max == r, c_max == g],
        [((g - b) / safe_diff) % 6, (b - r) / safe_diff + 2],
        default=(r - g) / safe_diff + 4,
    )
    hue = np.where(diff == 0, 0.0, hue) / 6.0
    hue = np.where(hue < 0, hue + 1.0, hue)

    safe_max = np.where(c_max == 0, 1.0, c_max)
    saturation = np.where(c_max == 0, 0.0, diff / safe_max)

    return np.stack([hue, saturation, c_max], axis=-1)


def extract_color_histogram(image_np: np.ndarray) -> np.ndarray:
    """
    Extract a 16x8x8 HSV histogram normalized to sum to 1.

    Args:
        image_np: Canonical RGB uint8 image.

    Returns:
        Float64 vector with COLOR_HIST_DIM entries.
    """
    sample = resample(image_np, COLOR_SAMPLE_SIZE, COLOR_SAMPLE_SIZE,
                      COLOR_MODE_RGB)
    pixels = sample.reshape(-1, 3).astype(np.float64) / 255.0
    hsv = rgb_to_hsv(pixels)

    h_bin = np.minimum(np.floor(hsv[:, 0] * H_BINS), H_BINS - 1).astype(np.int64)
    s_bin = np.minimum(np.floor(hsv[:, 1] * S_BINS), S_BINS - 1).astype(np.int64)
    v_bin = np.minimum(np.floor(hsv[:, 2] * V_BINS), V_BINS - 1).astype(np.int64)
    index = h_bin * S_BINS * V_BINS + s_bin * V_BINS + v_bin

    hist = np.bincount(index, minlength=COLOR_HIST_DIM).astype(np.float64)
    return hist / len(pixels)


def sobel_magnitude(gray: np.ndarray) -> np.ndarray:
    """
    Sobel gradient magnitude with border pixels fixed at zero.

    Only interior pixels get a gradient; the one-pixel frame is left at
    magnitude 0 instead of being extrapolated.
    """
    gray = gray.astype(np.float64)
    gx = cv2.Sobel(gray, cv2.CV_64F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_64F, 0, 1, ksize=3)

    magnitude = np.zeros_like(gray)
    magnitude[1:-1, 1:-1] = np.sqrt(gx[1:-1, 1:-1] ** 2 + gy[1:-1, 1:-1] ** 2)
    return magnitude


def extract_edge_histogram(image_np: np.ndarray) -> np.ndarray:
    """
    Extract a 16-bin histogram of Sobel edge strength.

    Bins are uniform over [0, max magnitude]. Counts are divided by the
    total pixel count, border pixels included, so the zero-magnitude
    frame always contributes to bin 0 and the histogram sums to 1.

    Returns:
        Float64 vector with EDGE_BINS entries; all zeros for a flat image.
    """
    gray = to_grayscale(image_np, EDGE_SIZE)
    magnitude = sobel_magnitude(gray)

    max_edge = magnitude.max()
    if max_edge <= 0:
        return np.zeros(EDGE_BINS, dtype=np.float64)

    bins = np.minimum(np.floor(magnitude / max_edge * EDGE_BINS),
                      EDGE_BINS - 1).astype(np.int64)
    hist = np.bincount(bins.ravel(), minlength=EDGE_BINS).astype(np.float64)
    return hist / magnitude.size


def lbp_codes(gray: np.ndarray) -> np.ndarray:
    """
    Compute 8-bit Local Binary Pattern codes for every interior pixel.

    Neighbours are visited clockwise from the top-left; bit i is set when
    neighbour i is at least as bright as the centre.
    """
    gray = gray.astype(np.int32)
    center = gray[1:-1, 1:-1]
    neighbours = [
        gray[:-2, :-2],    # top-left
        gray[:-2, 1:-1],   # top
        gray[:-2, 2:],     # top-right
        gray[1:-1, 2:],    # right
        gray[2:, 2:],      # bottom-right
        gray[2:, 1:-1],    # bottom
        gray[2:, :-2],     # bottom-left
        gray[1:-1, :-2],   # left
    ]

    codes = np.zeros_like(center)
    for bit, neighbour in enumerate(neighbours):
        codes |= (neighbour >= center).astype(np.int32) << bit
    return codes


def extract_texture_histogram(image_np: np.ndarray) -> np.ndarray:
    """
    Extract a 256-bin LBP texture histogram.

    Normalized by the interior-pixel count, so the bins sum to 1.
    """
    gray = to_grayscale(image_np, TEXTURE_SIZE)
    codes = lbp_codes(gray)
    if codes.size == 0:
        raise ValueError(f"Image too small for LBP: {gray.shape}")

    hist = np.bincount(codes.ravel(), minlength=TEXTURE_BINS).astype(np.float64)
    return hist / codes.size

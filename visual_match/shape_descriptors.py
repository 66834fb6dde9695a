"""
Moment-based shape descriptor extraction.

Fills the gap where the histograms see color and texture but not the
overall form of an object. The grayscale working image is thresholded
into a binary mask and summarized by image moments:

    [0]  hu1           eta20 + eta02
    [1]  hu2           (eta20 - eta02)^2 + 4 * eta11^2
    [2]  compactness   4 * pi * area / perimeter^2
    [3]  aspect ratio  sqrt(mu20 / mu02)
    [4:7] eta20, eta11, eta02 normalized central moments

An image with no foreground pixels yields the all-zero descriptor.
"""

import os
import logging

import numpy as np

from .preprocessing import to_grayscale

logger = logging.getLogger(__name__)

SHAPE_DIM = 7
SHAPE_SIZE = int(os.environ.get("SHAPE_SIZE", "64"))
SHAPE_THRESHOLD = 128


def binary_mask(gray: np.ndarray, threshold: int = SHAPE_THRESHOLD) -> np.ndarray:
    """Foreground mask: pixels strictly brighter than the threshold."""
    return gray > threshold


def count_perimeter(mask: np.ndarray) -> int:
    """
    Count foreground pixels that touch the background.

    A pixel is on the perimeter when any of its four neighbours is
    background; positions outside the image count as background.
    """
    padded = np.pad(mask, 1, mode="constant", constant_values=False)
    interior = (
        padded[:-2, 1:-1]     # up
        & padded[1:-1, 2:]    # right
        & padded[2:, 1:-1]    # down
        & padded[1:-1, :-2]   # left
    )
    return int(np.count_nonzero(mask & ~interior))


def compute_moments(mask: np.ndarray) -> dict:
    """Raw moments m00, m10, m01, m20, m11, m02 of a binary mask."""
    ys, xs = np.nonzero(mask)
    xs = xs.astype(np.float64)
    ys = ys.astype(np.float64)
    return {
        "m00": float(len(xs)),
        "m10": float(xs.sum()),
        "m01": float(ys.sum()),
        "m20": float((xs * xs).sum()),
        "m11": float((xs * ys).sum()),
        "m02": float((ys * ys).sum()),
    }


def extract_shape_descriptor(image_np: np.ndarray) -> np.ndarray:
    """
    Extract the 7-element moment descriptor from a canonical RGB image.

    Returns:
        Float64 vector [hu1, hu2, compactness, aspect_ratio, eta20,
        eta11, eta02]; zeros when the mask is empty.
    """
    gray = to_grayscale(image_np, SHAPE_SIZE)
    mask = binary_mask(gray)
    return shape_descriptor_from_mask(mask)


def shape_descriptor_from_mask(mask: np.ndarray) -> np.ndarray:
    """Compute the moment descriptor for an already-thresholded mask."""
    m = compute_moments(mask)
    m00 = m["m00"]
    if m00 == 0:
        return np.zeros(SHAPE_DIM, dtype=np.float64)

    xc = m["m10"] / m00
    yc = m["m01"] / m00

    mu20 = m["m20"] / m00 - xc * xc
    mu11 = m["m11"] / m00 - xc * yc
    mu02 = m["m02"] / m00 - yc * yc

    area_sq = m00 ** 2
    eta20 = mu20 / area_sq
    eta11 = mu11 / area_sq
    eta02 = mu02 / area_sq

    hu1 = eta20 + eta02
    hu2 = (eta20 - eta02) ** 2 + 4 * eta11 * eta11

    perimeter = count_perimeter(mask)
    compactness = (4 * np.pi * m00) / (perimeter ** 2) if perimeter > 0 else 0.0

    # Single rows or columns have a zero second moment on one axis
    if mu20 > 0 and mu02 > 0:
        aspect_ratio = np.sqrt(mu20 / mu02)
    else:
        aspect_ratio = 1.0

    return np.array([
        hu1,
        hu2,
        compactness,
        aspect_ratio,
        eta20,
        eta11,
        eta02,
    ], dtype=np.float64)

"""
Dominant colors, brightness and contrast statistics.

Dominant colors come from a small fixed-iteration k-means over a 32x32
downsample. It is the only randomized step in fingerprinting: centroid
initialization draws from a numpy Generator owned by the caller, so
concurrent extractions never share random state and a fixed seed gives
a reproducible result.
"""

import os
import logging
from typing import Optional

import numpy as np

from .preprocessing import resample, to_grayscale, COLOR_MODE_RGB

logger = logging.getLogger(__name__)

KMEANS_CLUSTERS = 5
KMEANS_ITERATIONS = 10
DOMINANT_COLORS_DIM = KMEANS_CLUSTERS * 3
BRIGHTNESS_DIM = 3
CONTRAST_DIM = 1

DOMINANT_COLOR_SIZE = int(os.environ.get("DOMINANT_COLOR_SIZE", "32"))
BRIGHTNESS_SIZE = int(os.environ.get("BRIGHTNESS_SIZE", "64"))
CONTRAST_SIZE = int(os.environ.get("CONTRAST_SIZE", "64"))


def kmeans_colors(pixels: np.ndarray,
                  rng: np.random.Generator,
                  k: int = KMEANS_CLUSTERS,
                  iterations: int = KMEANS_ITERATIONS) -> np.ndarray:
    """
    Cluster RGB pixels with plain k-means.

    Centroids start at k pixels drawn uniformly (with replacement). Each
    of the fixed iterations assigns every pixel to its nearest centroid,
    first centroid winning ties, then moves each centroid to its cluster
    mean. A cluster that ends up empty collapses to black. There is no
    convergence check.

    Args:
        pixels: Float array of shape (n, 3).
        rng: Source of randomness for initialization.
        k: Number of clusters.
        iterations: Number of assign/update rounds.

    Returns:
        Array of shape (k, 3) with centroid colors in pixel units.
    """
    pixels = np.asarray(pixels, dtype=np.float64)
    if len(pixels) == 0:
        raise ValueError("Cannot cluster an empty pixel set")

    centroids = pixels[rng.integers(0, len(pixels), size=k)].copy()

    for _ in range(iterations):
        distances = np.linalg.norm(
            pixels[:, np.newaxis, :] - centroids[np.newaxis, :, :], axis=2
        )
        labels = np.argmin(distances, axis=1)

        updated = np.zeros_like(centroids)
        for cluster in range(k):
            members = pixels[labels == cluster]
            if len(members):
                updated[cluster] = members.mean(axis=0)
        centroids = updated

    return centroids


def extract_dominant_colors(image_np: np.ndarray,
                            rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """
    Extract 5 dominant colors as a flat 15-element vector in [0, 1].

    Args:
        image_np: Canonical RGB uint8 image.
        rng: Request-local random generator. A fresh unseeded generator
            is created when omitted.

    Returns:
        Float64 vector [r0, g0, b0, r1, ...] divided by 255.
    """
    if rng is None:
        rng = np.random.default_rng()

    sample = resample(image_np, DOMINANT_COLOR_SIZE, DOMINANT_COLOR_SIZE,
                      COLOR_MODE_RGB)
    pixels = sample.reshape(-1, 3).astype(np.float64)
    centroids = kmeans_colors(pixels, rng)
    return centroids.ravel() / 255.0


def extract_brightness(image_np: np.ndarray) -> np.ndarray:
    """
    Extract [mean / 255, variance / 255^2, skewness] of gray intensities.

    Variance is the population variance; skewness is the third
    standardized moment, 0 for a flat image.
    """
    gray = to_grayscale(image_np, BRIGHTNESS_SIZE).astype(np.float64).ravel()

    mean = gray.mean()
    deviation = gray - mean
    variance = np.mean(deviation ** 2)
    if variance > 0:
        skewness = np.mean(deviation ** 3) / variance ** 1.5
    else:
        skewness = 0.0

    return np.array([mean / 255.0, variance / (255.0 * 255.0), skewness],
                    dtype=np.float64)


def extract_contrast(image_np: np.ndarray) -> np.ndarray:
    """
    Extract the average local contrast, scaled to [0, 1].

    For every interior pixel the mean absolute difference to its four
    direct neighbours is taken; those values are averaged over the
    interior.
    """
    gray = to_grayscale(image_np, CONTRAST_SIZE).astype(np.float64)
    center = gray[1:-1, 1:-1]
    if center.size == 0:
        return np.zeros(CONTRAST_DIM, dtype=np.float64)

    local = (
        np.abs(center - gray[:-2, 1:-1])
        + np.abs(center - gray[1:-1, 2:])
        + np.abs(center - gray[2:, 1:-1])
        + np.abs(center - gray[1:-1, :-2])
    ) / 4.0

    return np.array([local.mean() / 255.0], dtype=np.float64)

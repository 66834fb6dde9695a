"""
Fingerprint extraction: run the seven extractors and combine them.

FEATURE_LAYOUT is the single source of truth for the fingerprint
format. Its entries are visited in order, each sub-vector is multiplied
by its weight, and the results are concatenated. Two fingerprints are
only comparable when they were produced with the same layout, so the
weights here are deliberately not configurable.

Extractors are fault-isolated. Each run is captured as an
ExtractionResult; a failed extractor is logged and contributes zeros of
its declared length, so the fingerprint length never varies.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import numpy as np

from .preprocessing import canonicalize, ImageInput
from .histograms import (
    extract_color_histogram, extract_edge_histogram, extract_texture_histogram,
    COLOR_HIST_DIM, EDGE_BINS, TEXTURE_BINS,
)
from .shape_descriptors import extract_shape_descriptor, SHAPE_DIM
from .color_statistics import (
    extract_dominant_colors, extract_brightness, extract_contrast,
    DOMINANT_COLORS_DIM, BRIGHTNESS_DIM, CONTRAST_DIM,
)

logger = logging.getLogger(__name__)

DEFAULT_FEATURE_WEIGHT = 0.10

# Value used to fill a fingerprint when no image could be analyzed.
FALLBACK_VALUE = 0.001


@dataclass(frozen=True)
class FeatureSpec:
    """One slot of the fingerprint layout."""
    name: str
    weight: float
    length: int
    extractor: Callable[..., np.ndarray]
    seeded: bool = False


FEATURE_LAYOUT: Tuple[FeatureSpec, ...] = (
    FeatureSpec("colorHistogram", 0.30, COLOR_HIST_DIM, extract_color_histogram),
    FeatureSpec("edgeFeatures", 0.15, EDGE_BINS, extract_edge_histogram),
    FeatureSpec("textureFeatures", 0.15, TEXTURE_BINS, extract_texture_histogram),
    FeatureSpec("shapeFeatures", 0.10, SHAPE_DIM, extract_shape_descriptor),
    FeatureSpec("dominantColors", 0.25, DOMINANT_COLORS_DIM,
                extract_dominant_colors, seeded=True),
    FeatureSpec("brightness", 0.03, BRIGHTNESS_DIM, extract_brightness),
    FeatureSpec("contrast", 0.02, CONTRAST_DIM, extract_contrast),
)

# 1024 + 16 + 256 + 7 + 15 + 3 + 1
FINGERPRINT_DIM = sum(spec.length for spec in FEATURE_LAYOUT)

_SPECS_BY_NAME = {spec.name: spec for spec in FEATURE_LAYOUT}


def feature_weight(name: str) -> float:
    """Weight for a feature name; unknown names get DEFAULT_FEATURE_WEIGHT."""
    spec = _SPECS_BY_NAME.get(name)
    return spec.weight if spec is not None else DEFAULT_FEATURE_WEIGHT


def feature_slice(name: str) -> slice:
    """Position of a layout feature inside the flattened fingerprint."""
    offset = 0
    for spec in FEATURE_LAYOUT:
        if spec.name == name:
            return slice(offset, offset + spec.length)
        offset += spec.length
    raise KeyError(f"Unknown feature: {name}")


@dataclass(frozen=True)
class ExtractionResult:
    """Outcome of a single extractor run: values on success, error otherwise."""
    name: str
    values: Optional[np.ndarray] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def resolve(self, length: int) -> np.ndarray:
        """Collapse to a vector of the given length, zeros on failure."""
        if self.ok:
            return self.values
        return np.zeros(length, dtype=np.float64)


def run_extractor(spec: FeatureSpec,
                  image_np: np.ndarray,
                  rng: np.random.Generator) -> ExtractionResult:
    """Run one extractor and capture its outcome without raising."""
    try:
        if spec.seeded:
            values = spec.extractor(image_np, rng=rng)
        else:
            values = spec.extractor(image_np)
        values = np.asarray(values, dtype=np.float64).ravel()

        if values.shape != (spec.length,):
            raise ValueError(
                f"expected {spec.length} values, got {values.size}"
            )
        if not np.all(np.isfinite(values)):
            raise ValueError("non-finite values")

        return ExtractionResult(spec.name, values=values)

    except Exception as e:
        logger.error(f"{spec.name} extraction failed: {e}")
        return ExtractionResult(spec.name, error=str(e))


def combine_features(features: Mapping[str, np.ndarray]) -> np.ndarray:
    """
    Weight and concatenate sub-vectors into one flat fingerprint vector.

    Layout features are emitted in FEATURE_LAYOUT order (a missing one
    contributes zeros). Any extra, unrecognized features follow in the
    order given, weighted by DEFAULT_FEATURE_WEIGHT.
    """
    parts = []
    for spec in FEATURE_LAYOUT:
        values = features.get(spec.name)
        if values is None:
            values = np.zeros(spec.length, dtype=np.float64)
        parts.append(np.asarray(values, dtype=np.float64) * spec.weight)

    for name, values in features.items():
        if name not in _SPECS_BY_NAME:
            parts.append(np.asarray(values, dtype=np.float64) * feature_weight(name))

    return np.concatenate(parts)


@dataclass(frozen=True, eq=False)
class Fingerprint:
    """
    Immutable image fingerprint.

    Attributes:
        vector: Weighted, concatenated feature vector used for similarity.
        brightness: Unweighted (mean, variance, skewness) of intensity,
            or None when unknown.
        contrast: Unweighted average local contrast, or None when unknown.
        failures: Names of extractors that failed and were zero-filled.
    """
    vector: np.ndarray
    brightness: Optional[Tuple[float, float, float]] = None
    contrast: Optional[float] = None
    failures: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        vector = np.array(self.vector, dtype=np.float64).ravel()
        vector.setflags(write=False)
        object.__setattr__(self, "vector", vector)

    def __len__(self) -> int:
        return len(self.vector)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Fingerprint):
            return NotImplemented
        return np.array_equal(self.vector, other.vector)

    __hash__ = None

    @property
    def mean_brightness(self) -> Optional[float]:
        return self.brightness[0] if self.brightness is not None else None

    def feature(self, name: str) -> np.ndarray:
        """Recover the unweighted sub-vector for a layout feature."""
        if len(self.vector) != FINGERPRINT_DIM:
            raise ValueError(
                f"Fingerprint has {len(self.vector)} values, "
                f"expected {FINGERPRINT_DIM}"
            )
        return self.vector[feature_slice(name)] / feature_weight(name)

    def to_list(self) -> List[float]:
        return self.vector.tolist()

    @classmethod
    def from_vector(cls, vector) -> "Fingerprint":
        """
        Rebuild a fingerprint from a stored flat vector.

        Named fields are recovered from the layout when the vector has
        the canonical length, and left empty otherwise.
        """
        fingerprint = cls(vector)
        if len(fingerprint) != FINGERPRINT_DIM:
            return fingerprint

        brightness = fingerprint.feature("brightness")
        contrast = fingerprint.feature("contrast")
        return cls(
            fingerprint.vector,
            brightness=tuple(float(v) for v in brightness),
            contrast=float(contrast[0]),
        )

    @classmethod
    def fallback(cls) -> "Fingerprint":
        """Placeholder fingerprint for an image that could not be analyzed."""
        return cls.from_vector(np.full(FINGERPRINT_DIM, FALLBACK_VALUE))


def extract_features(image: ImageInput,
                     rng: Optional[np.random.Generator] = None,
                     seed: Optional[int] = None) -> List[ExtractionResult]:
    """
    Run every layout extractor against the canonical form of an image.

    Raises:
        PixelBufferError, ImageDecodeError: If the input itself is unusable.
    """
    canonical = canonicalize(image)
    if rng is None:
        rng = np.random.default_rng(seed)
    return [run_extractor(spec, canonical, rng) for spec in FEATURE_LAYOUT]


def extract_fingerprint(image: ImageInput,
                        rng: Optional[np.random.Generator] = None,
                        seed: Optional[int] = None) -> Fingerprint:
    """
    Compute the fingerprint of an image.

    Args:
        image: PixelBuffer, RGB/grayscale array, or encoded image bytes.
        rng: Random generator for dominant-color initialization.
        seed: Seed for a fresh generator when rng is not given.

    Returns:
        Fingerprint of length FINGERPRINT_DIM.

    Raises:
        PixelBufferError, ImageDecodeError: If the input itself is unusable.
    """
    results = extract_features(image, rng=rng, seed=seed)

    features: Dict[str, np.ndarray] = {}
    for spec, result in zip(FEATURE_LAYOUT, results):
        features[spec.name] = result.resolve(spec.length)

    failures = tuple(r.name for r in results if not r.ok)
    if failures:
        logger.warning(f"Fingerprint built with zero-filled features: {failures}")

    brightness = features["brightness"]
    return Fingerprint(
        combine_features(features),
        brightness=(float(brightness[0]), float(brightness[1]), float(brightness[2])),
        contrast=float(features["contrast"][0]),
        failures=failures,
    )


def as_vector(fingerprint) -> Optional[np.ndarray]:
    """Flat float64 vector for a Fingerprint or array-like, None if absent."""
    if fingerprint is None:
        return None
    if isinstance(fingerprint, Fingerprint):
        return fingerprint.vector
    return np.asarray(fingerprint, dtype=np.float64).ravel()

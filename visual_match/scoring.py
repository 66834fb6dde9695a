"""
Fingerprint similarity and result-set confidence scoring.

Three complementary metrics are blended into one bounded score:

    cosine       angle between the vectors (ignores overall magnitude)
    euclidean    1 / (1 + L2 distance), sensitive to magnitude
    correlation  |Pearson r| over paired elements, ignores offset/scale

Incomparable inputs (missing, empty, or of different lengths) score 0
rather than raising: for ranking purposes they are simply not similar.
"""

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .fingerprint import as_vector

logger = logging.getLogger(__name__)

METRIC_WEIGHTS = {
    "cosine": 0.5,
    "euclidean": 0.3,
    "correlation": 0.2,
}

# Confidence blend: strength of the top hit, consistency, and quantity.
CONFIDENCE_WEIGHTS = {
    "top": 0.5,
    "consistency": 0.3,
    "quantity": 0.2,
}
CONFIDENCE_FULL_COUNT = 10
CONFIDENCE_VARIANCE_PENALTY = 10.0


@dataclass(frozen=True)
class SimilarityScore:
    """Combined similarity with its per-metric components."""
    score: float
    cosine: float = 0.0
    euclidean: float = 0.0
    correlation: float = 0.0

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "cosine": self.cosine,
            "euclidean": self.euclidean,
            "correlation": self.correlation,
        }


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine of the angle between a and b; 0 if either has zero norm."""
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.clip(np.dot(a, b) / (norm_a * norm_b), -1.0, 1.0))


def euclidean_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Distance mapped into (0, 1]: 1 / (1 + ||a - b||)."""
    return float(1.0 / (1.0 + np.linalg.norm(a - b)))


def correlation_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Absolute Pearson correlation; 0 if either vector is constant."""
    da = a - a.mean()
    db = b - b.mean()
    denominator = np.sqrt(np.dot(da, da) * np.dot(db, db))
    if denominator == 0:
        return 0.0
    return float(min(abs(np.dot(da, db) / denominator), 1.0))


def _comparable(a, b):
    va = as_vector(a)
    vb = as_vector(b)
    if va is None or vb is None or va.size == 0 or vb.size == 0:
        return None
    if va.size != vb.size:
        return None
    return va, vb


def similarity_breakdown(a, b) -> SimilarityScore:
    """
    Score two fingerprints and keep every metric for diagnostics.

    Args:
        a: Fingerprint or array-like.
        b: Fingerprint or array-like.

    Returns:
        SimilarityScore; all zeros when the inputs are not comparable.
    """
    pair = _comparable(a, b)
    if pair is None:
        return SimilarityScore(0.0)

    va, vb = pair
    cosine = cosine_similarity(va, vb)
    euclidean = euclidean_similarity(va, vb)
    correlation = correlation_similarity(va, vb)

    combined = (
        METRIC_WEIGHTS["cosine"] * cosine
        + METRIC_WEIGHTS["euclidean"] * euclidean
        + METRIC_WEIGHTS["correlation"] * correlation
    )

    return SimilarityScore(
        score=float(np.clip(combined, 0.0, 1.0)),
        cosine=cosine,
        euclidean=euclidean,
        correlation=correlation,
    )


def combined_similarity(a, b) -> float:
    """
    Blend cosine, euclidean and correlation similarity into [0, 1].

    Symmetric in its arguments. Returns 0 when either input is missing
    or empty, or when the lengths differ.
    """
    return similarity_breakdown(a, b).score


def compute_confidence(scores: Sequence[float]) -> float:
    """
    Estimate how trustworthy a ranked result set is.

    Combines the strength of the best score, how consistent the scores
    are (low variance), and how many results were found.

    Args:
        scores: Final scores of the result list, best first.

    Returns:
        Confidence in [0, 1]; 0 for an empty list.
    """
    if len(scores) == 0:
        return 0.0

    values = np.asarray(scores, dtype=np.float64)
    top_score = min(values[0] * 2, 1.0)
    consistency = max(0.0, 1.0 - np.var(values) * CONFIDENCE_VARIANCE_PENALTY)
    quantity = min(len(values) / CONFIDENCE_FULL_COUNT, 1.0)

    return float(
        CONFIDENCE_WEIGHTS["top"] * top_score
        + CONFIDENCE_WEIGHTS["consistency"] * consistency
        + CONFIDENCE_WEIGHTS["quantity"] * quantity
    )

"""Tests for similarity metrics and confidence scoring."""

import numpy as np
import pytest

from visual_match.fingerprint import Fingerprint
from visual_match.scoring import (
    cosine_similarity, euclidean_similarity, correlation_similarity,
    combined_similarity, similarity_breakdown, compute_confidence,
    SimilarityScore,
)


@pytest.fixture
def vectors():
    rng = np.random.RandomState(11)
    return rng.rand(50), rng.rand(50)


class TestMetrics:
    """Tests for the individual similarity metrics."""

    def test_cosine_parallel(self):
        a = np.array([1.0, 2.0, 3.0])
        assert cosine_similarity(a, a * 4) == pytest.approx(1.0)

    def test_cosine_orthogonal(self):
        assert cosine_similarity(np.array([1.0, 0.0]),
                                 np.array([0.0, 1.0])) == pytest.approx(0.0)

    def test_cosine_zero_norm(self):
        assert cosine_similarity(np.zeros(3), np.ones(3)) == 0.0

    def test_euclidean_identical(self):
        a = np.array([0.3, 0.7])
        assert euclidean_similarity(a, a) == 1.0

    def test_euclidean_range(self, vectors):
        a, b = vectors
        assert 0 < euclidean_similarity(a, b) < 1

    def test_euclidean_known_distance(self):
        # distance 5 → 1 / 6
        assert euclidean_similarity(np.array([0.0, 0.0]),
                                    np.array([3.0, 4.0])) == pytest.approx(1 / 6)

    def test_correlation_absolute(self):
        a = np.array([1.0, 2.0, 3.0, 4.0])
        assert correlation_similarity(a, -a) == pytest.approx(1.0)

    def test_correlation_constant_vector(self):
        assert correlation_similarity(np.ones(4), np.arange(4.0)) == 0.0


class TestCombinedSimilarity:
    """Tests for the blended similarity score."""

    def test_self_similarity_is_one(self, vectors):
        a, _ = vectors
        assert combined_similarity(a, a) == pytest.approx(1.0)

    def test_symmetric(self, vectors):
        a, b = vectors
        assert combined_similarity(a, b) == combined_similarity(b, a)

    def test_bounded(self, vectors):
        a, b = vectors
        assert 0 <= combined_similarity(a, b) <= 1

    def test_length_mismatch_is_zero(self):
        assert combined_similarity(np.ones(3), np.ones(4)) == 0

    def test_missing_or_empty_is_zero(self):
        assert combined_similarity(None, np.ones(3)) == 0
        assert combined_similarity(np.ones(3), None) == 0
        assert combined_similarity([], []) == 0

    def test_accepts_fingerprints(self, vectors):
        a, b = vectors
        assert combined_similarity(Fingerprint(a), b) == \
            pytest.approx(combined_similarity(a, b))

    def test_weighted_blend(self, vectors):
        a, b = vectors
        parts = similarity_breakdown(a, b)
        expected = 0.5 * parts.cosine + 0.3 * parts.euclidean + 0.2 * parts.correlation
        assert parts.score == pytest.approx(expected)

    def test_breakdown_zero_when_incomparable(self):
        assert similarity_breakdown(np.ones(2), np.ones(5)) == SimilarityScore(0.0)

    def test_closer_vector_scores_higher(self, vectors):
        a, b = vectors
        near = a + 0.01
        assert combined_similarity(a, near) > combined_similarity(a, b)


class TestComputeConfidence:
    """Tests for result-set confidence."""

    def test_empty_is_zero(self):
        assert compute_confidence([]) == 0.0

    def test_formula(self):
        scores = [0.4, 0.3, 0.2]
        variance = np.var(scores)
        expected = (0.5 * min(0.8, 1)
                    + 0.3 * max(0, 1 - 10 * variance)
                    + 0.2 * 0.3)
        assert compute_confidence(scores) == pytest.approx(expected)

    def test_saturates_at_one(self):
        assert compute_confidence([0.9] * 10) == pytest.approx(1.0)

    def test_more_results_more_confident(self):
        assert compute_confidence([0.6] * 8) > compute_confidence([0.6] * 2)

    def test_within_range(self):
        assert 0 <= compute_confidence([1.0, 0.0, 0.5]) <= 1

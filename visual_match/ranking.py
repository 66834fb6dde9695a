"""
Multi-strategy ranking of catalog candidates against a query fingerprint.

Three strategies look at the catalog from different angles and their
results are merged:

    global    best matches over the whole catalog
    category  best 2 matches inside every category, so no single
              category crowds out the rest
    price     matches restricted to the price band of the query's
              closest raw-similarity neighbours

Every strategy shares the same base match: combined similarity, plus a
boost when the category inferred from the query's brightness/contrast
matches the candidate, plus a small bonus for being close to the
average price. Scores within TIE_BAND of each other are treated as tied
and ordered by category match, then by distance from REFERENCE_PRICE.

Everything here is a pure function of its inputs.
"""

import os
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .fingerprint import Fingerprint
from .scoring import combined_similarity, compute_confidence

logger = logging.getLogger(__name__)

CATEGORY_BOOST = float(os.environ.get("CATEGORY_BOOST", "0.1"))
PRICE_RELEVANCE_WEIGHT = float(os.environ.get("PRICE_RELEVANCE_WEIGHT", "0.05"))
MIN_SIMILARITY = float(os.environ.get("MIN_SIMILARITY", "0.15"))
TIE_BAND = float(os.environ.get("TIE_BAND", "0.05"))
REFERENCE_PRICE = float(os.environ.get("REFERENCE_PRICE", "100"))
RESULT_LIMIT = int(os.environ.get("RESULT_LIMIT", "12"))

STRATEGY_GLOBAL = "global"
STRATEGY_CATEGORY = "category"
STRATEGY_PRICE = "price"

# Merge priority is the order of this tuple.
STRATEGY_ORDER = (STRATEGY_GLOBAL, STRATEGY_CATEGORY, STRATEGY_PRICE)

STRATEGY_WEIGHTS = {
    STRATEGY_GLOBAL:   float(os.environ.get("STRATEGY_GLOBAL_WEIGHT", "1.0")),
    STRATEGY_CATEGORY: float(os.environ.get("STRATEGY_CATEGORY_WEIGHT", "0.8")),
    STRATEGY_PRICE:    float(os.environ.get("STRATEGY_PRICE_WEIGHT", "0.6")),
}
UNKNOWN_STRATEGY_WEIGHT = 0.5

STRATEGY_LIMITS = {
    STRATEGY_GLOBAL:   int(os.environ.get("STRATEGY_GLOBAL_LIMIT", "8")),
    STRATEGY_CATEGORY: int(os.environ.get("STRATEGY_CATEGORY_LIMIT", "6")),
    STRATEGY_PRICE:    int(os.environ.get("STRATEGY_PRICE_LIMIT", "4")),
}

CATEGORY_PARTITION_TOP = 2
PRICE_REFERENCE_TOP = 5
PRICE_TOLERANCE = 0.5

# Coarse category heuristics over unweighted brightness mean / contrast.
BRIGHT_THRESHOLD = 0.8
LOW_CONTRAST_THRESHOLD = 0.3
DARK_THRESHOLD = 0.4
HIGH_CONTRAST_THRESHOLD = 0.6


@dataclass
class Candidate:
    """A catalog item that can be ranked against a query."""
    id: str
    fingerprint: Any
    category: str = ""
    price: float = 0.0
    name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, entry: Mapping[str, Any]) -> "Candidate":
        known = {"id", "_id", "fingerprint", "category", "price", "name"}
        item_id = entry.get("id", entry.get("_id"))
        if item_id is None:
            raise ValueError(f"Candidate has no id: {sorted(entry)}")
        return cls(
            id=str(item_id),
            fingerprint=entry.get("fingerprint"),
            category=entry.get("category") or "",
            price=float(entry.get("price") or 0.0),
            name=entry.get("name"),
            metadata={k: v for k, v in entry.items() if k not in known},
        )


@dataclass(frozen=True)
class RankedMatch:
    """
    A candidate with its ranking outcome.

    Attributes:
        candidate: The matched catalog item.
        score: Final score used for ordering.
        base_score: Similarity plus category boost, before the price bonus.
        category_match: Whether the inferred query category matched.
        strategy: Strategy that produced this match.
        original_score: Score before strategy re-weighting, once merged.
    """
    candidate: Candidate
    score: float
    base_score: float
    category_match: bool
    strategy: str = STRATEGY_GLOBAL
    original_score: Optional[float] = None

    @property
    def id(self) -> str:
        return self.candidate.id

    @property
    def price(self) -> float:
        return self.candidate.price

    @property
    def price_range(self) -> str:
        return price_range(self.candidate.price)

    def to_dict(self) -> dict:
        result = dict(self.candidate.metadata)
        result.update({
            "id": self.candidate.id,
            "name": self.candidate.name,
            "category": self.candidate.category,
            "price": self.candidate.price,
            "score": round(self.score, 4),
            "base_score": round(self.base_score, 4),
            "category_match": self.category_match,
            "price_range": self.price_range,
            "strategy": self.strategy,
        })
        if self.original_score is not None:
            result["original_score"] = round(self.original_score, 4)
        return result


@dataclass
class SearchReport:
    """Merged matches plus the summary the caller reports alongside them."""
    matches: List[RankedMatch]
    confidence: float
    strategy_counts: Dict[str, int]
    total_candidates: int

    @property
    def average_similarity(self) -> float:
        if not self.matches:
            return 0.0
        return float(np.mean([m.score for m in self.matches]))

    def to_dict(self) -> dict:
        return {
            "matches": [m.to_dict() for m in self.matches],
            "confidence": round(self.confidence, 4),
            "average_similarity": round(self.average_similarity, 4),
            "total_candidates": self.total_candidates,
            "strategies": [
                {"name": name, "results_found": count}
                for name, count in self.strategy_counts.items()
            ],
        }


def price_range(price: float) -> str:
    """Bucket a price into budget / mid-range / premium / luxury."""
    if price < 30:
        return "budget"
    if price < 100:
        return "mid-range"
    if price < 300:
        return "premium"
    return "luxury"


def average_price(prices: Sequence[float]) -> float:
    if len(prices) == 0:
        return 0.0
    return float(np.mean(prices))


def price_relevance(price: float, avg_price: float) -> float:
    """
    How close a price is to the candidate set's average, in [0, 1].

    1 at the average, falling linearly to 0 at a 100% deviation. A
    non-positive average gives no relevance.
    """
    if avg_price <= 0:
        return 0.0
    return max(0.0, 1.0 - abs(price - avg_price) / avg_price)


def _as_fingerprint(query) -> Optional[Fingerprint]:
    if query is None or isinstance(query, Fingerprint):
        return query
    return Fingerprint.from_vector(query)


def infer_category(query) -> Optional[str]:
    """
    Guess a coarse product category from a fingerprint's tonal fields.

    Bright, low-contrast images read as Electronics, dark ones as
    Fashion, and high-contrast ones as Tools. Anything else, or a
    fingerprint whose brightness/contrast is missing or failed to
    extract, gives None.
    """
    fingerprint = _as_fingerprint(query)
    if fingerprint is None:
        return None
    if {"brightness", "contrast"} & set(fingerprint.failures):
        return None

    brightness = fingerprint.mean_brightness
    contrast = fingerprint.contrast
    if brightness is None or contrast is None:
        return None

    if brightness > BRIGHT_THRESHOLD and contrast < LOW_CONTRAST_THRESHOLD:
        return "Electronics"
    if brightness < DARK_THRESHOLD:
        return "Fashion"
    if contrast > HIGH_CONTRAST_THRESHOLD:
        return "Tools"
    return None


def sort_with_tie_break(matches: Sequence[RankedMatch],
                        tie_band: float = None,
                        reference_price: float = None) -> List[RankedMatch]:
    """
    Order matches by score, resolving near-ties by category and price.

    Matches are sorted by descending score and swept into groups: each
    group starts at its highest score and takes every following match
    within tie_band of it. Inside a group, category matches come first,
    then prices closest to reference_price.
    """
    tie_band = TIE_BAND if tie_band is None else tie_band
    reference_price = REFERENCE_PRICE if reference_price is None else reference_price

    by_score = sorted(matches, key=lambda m: m.score, reverse=True)

    ordered = []
    group = []
    for match in by_score:
        if group and group[0].score - match.score > tie_band:
            ordered.extend(_order_tied(group, reference_price))
            group = []
        group.append(match)
    ordered.extend(_order_tied(group, reference_price))

    return ordered


def _order_tied(group, reference_price):
    return sorted(
        group,
        key=lambda m: (not m.category_match, abs(m.price - reference_price)),
    )


def find_similar(query,
                 candidates: Sequence[Candidate],
                 limit: int = 10,
                 category_boost: float = None,
                 strategy: str = STRATEGY_GLOBAL,
                 min_similarity: float = None,
                 similarities: Mapping[str, float] = None) -> List[RankedMatch]:
    """
    Base match: score, boost, tie-break, truncate and floor.

    Args:
        query: Query Fingerprint (or flat vector).
        candidates: Candidates to score.
        limit: Maximum number of matches to keep.
        category_boost: Added when the inferred category matches.
        strategy: Provenance tag stored on each match.
        min_similarity: Matches scoring below this are dropped.
        similarities: Optional precomputed combined similarity by id.

    Returns:
        Ranked matches, at most `limit`, none below min_similarity.
    """
    if not candidates:
        return []

    category_boost = CATEGORY_BOOST if category_boost is None else category_boost
    min_similarity = MIN_SIMILARITY if min_similarity is None else min_similarity

    query_fp = _as_fingerprint(query)
    inferred = infer_category(query_fp)
    avg_price = average_price([c.price for c in candidates])

    matches = []
    for candidate in candidates:
        if similarities is not None and candidate.id in similarities:
            similarity = similarities[candidate.id]
        else:
            similarity = combined_similarity(query_fp, candidate.fingerprint)

        category_match = (
            inferred is not None
            and (candidate.category or "").lower() == inferred.lower()
        )
        base_score = similarity + category_boost if category_match else similarity

        relevance = price_relevance(candidate.price, avg_price)
        score = min(1.0, base_score + relevance * PRICE_RELEVANCE_WEIGHT)

        matches.append(RankedMatch(
            candidate=candidate,
            score=score,
            base_score=base_score,
            category_match=category_match,
            strategy=strategy,
        ))

    ranked = sort_with_tie_break(matches)[:limit]
    return [m for m in ranked if m.score >= min_similarity]


def global_matches(query, candidates, category_boost=None, similarities=None):
    """Best matches across the whole catalog."""
    return find_similar(query, candidates,
                        limit=STRATEGY_LIMITS[STRATEGY_GLOBAL],
                        category_boost=category_boost,
                        strategy=STRATEGY_GLOBAL,
                        similarities=similarities)


def category_matches(query, candidates, category_boost=None, similarities=None):
    """Top matches of each category partition, best overall first."""
    partitions: Dict[str, List[Candidate]] = {}
    for candidate in candidates:
        partitions.setdefault(candidate.category, []).append(candidate)

    results = []
    for category, members in partitions.items():
        results.extend(find_similar(query, members,
                                    limit=CATEGORY_PARTITION_TOP,
                                    category_boost=category_boost,
                                    strategy=STRATEGY_CATEGORY,
                                    similarities=similarities))

    results.sort(key=lambda m: m.score, reverse=True)
    return results[:STRATEGY_LIMITS[STRATEGY_CATEGORY]]


def price_matches(query, candidates, category_boost=None, similarities=None):
    """
    Matches inside the price band suggested by the closest neighbours.

    The average price of the top raw-similarity candidates picks a price
    bucket; candidates in that bucket, or within PRICE_TOLERANCE of the
    average, are ranked.
    """
    if not candidates:
        return []

    scored = []
    for candidate in candidates:
        if similarities is not None and candidate.id in similarities:
            similarity = similarities[candidate.id]
        else:
            similarity = combined_similarity(query, candidate.fingerprint)
        scored.append((similarity, candidate))
    scored.sort(key=lambda pair: pair[0], reverse=True)

    top = [candidate for _, candidate in scored[:PRICE_REFERENCE_TOP]]
    avg_price = average_price([c.price for c in top])
    bucket = price_range(avg_price)

    def in_band(candidate):
        if price_range(candidate.price) == bucket:
            return True
        return avg_price > 0 and abs(candidate.price - avg_price) / avg_price < PRICE_TOLERANCE

    filtered = [c for c in candidates if in_band(c)]
    logger.debug(
        f"Price strategy: bucket={bucket} avg={avg_price:.2f} "
        f"{len(filtered)}/{len(candidates)} candidates"
    )

    return find_similar(query, filtered,
                        limit=STRATEGY_LIMITS[STRATEGY_PRICE],
                        category_boost=category_boost,
                        strategy=STRATEGY_PRICE,
                        similarities=similarities)


def merge_strategy_results(strategy_results: Sequence[Tuple[str, List[RankedMatch]]],
                           limit: int = None,
                           weights: Mapping[str, float] = None,
                           min_similarity: float = None) -> List[RankedMatch]:
    """
    Merge strategy outputs into one ranked list.

    The first occurrence of a candidate wins, in the order the strategies
    are given. Each kept score is multiplied by its strategy's weight,
    then the list is re-sorted, floored at min_similarity and truncated.
    """
    limit = RESULT_LIMIT if limit is None else limit
    weights = STRATEGY_WEIGHTS if weights is None else weights
    min_similarity = MIN_SIMILARITY if min_similarity is None else min_similarity

    seen = set()
    merged = []
    for name, matches in strategy_results:
        weight = weights.get(name, UNKNOWN_STRATEGY_WEIGHT)
        for match in matches:
            if match.id in seen:
                continue
            seen.add(match.id)
            merged.append(replace(
                match,
                score=match.score * weight,
                strategy=name,
                original_score=match.score,
            ))

    merged.sort(key=lambda m: m.score, reverse=True)
    merged = [m for m in merged if m.score >= min_similarity]
    return merged[:limit]


def search_candidates(query,
                      candidates: Sequence[Candidate],
                      limit: int = None,
                      category_boost: float = None) -> SearchReport:
    """
    Run every strategy, merge the results and score the confidence.

    Args:
        query: Query Fingerprint (or flat vector).
        candidates: Candidate objects or dicts with id, fingerprint,
            category and price; ids must be unique.
        limit: Final result size.
        category_boost: Boost for an inferred-category match.

    Returns:
        SearchReport with the merged matches and summary figures.
    """
    limit = RESULT_LIMIT if limit is None else limit
    candidates = [
        c if isinstance(c, Candidate) else Candidate.from_dict(c)
        for c in candidates
    ]

    if not candidates:
        return SearchReport(matches=[], confidence=0.0,
                            strategy_counts={name: 0 for name in STRATEGY_ORDER},
                            total_candidates=0)

    query_fp = _as_fingerprint(query)
    similarities = {
        c.id: combined_similarity(query_fp, c.fingerprint) for c in candidates
    }

    strategy_results = [
        (STRATEGY_GLOBAL, global_matches(query_fp, candidates, category_boost, similarities)),
        (STRATEGY_CATEGORY, category_matches(query_fp, candidates, category_boost, similarities)),
        (STRATEGY_PRICE, price_matches(query_fp, candidates, category_boost, similarities)),
    ]

    matches = merge_strategy_results(strategy_results, limit=limit)
    confidence = compute_confidence([m.score for m in matches])

    logger.info(
        f"Ranked {len(candidates)} candidates → {len(matches)} matches "
        f"(confidence {confidence:.3f})"
    )

    return SearchReport(
        matches=matches,
        confidence=confidence,
        strategy_counts={name: len(found) for name, found in strategy_results},
        total_candidates=len(candidates),
    )


def rank_candidates(query,
                    candidates: Sequence[Candidate],
                    limit: int = None,
                    category_boost: float = None) -> List[RankedMatch]:
    """Rank candidates against a query; see search_candidates()."""
    return search_candidates(query, candidates, limit=limit,
                             category_boost=category_boost).matches

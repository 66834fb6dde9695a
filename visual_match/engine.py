"""
Visual product search engine.

Loads a catalog index built by build_index() and answers queries:

    search()     full multi-strategy ranking with confidence
    suggest()    quick category / price-range hints from the top matches
    compare()    pairwise visual similarity between catalog items
    analytics()  category and price-range breakdown of the catalog

The query image is fingerprinted once; catalog fingerprints come from
the index. FAISS can optionally narrow the catalog to the nearest
candidate_pool fingerprints before the exact scoring runs.
"""

import os
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import faiss
import numpy as np

from .fingerprint import extract_fingerprint, Fingerprint
from .index_builder import FAISS_INDEX_FILE, FINGERPRINTS_FILE, CATALOG_FILE
from .preprocessing import ImageDecodeError, PixelBufferError
from .ranking import (
    Candidate, average_price, find_similar, search_candidates, price_range,
)
from .scoring import combined_similarity, compute_confidence

logger = logging.getLogger(__name__)

SUGGESTION_LIMIT = int(os.environ.get("SUGGESTION_LIMIT", "5"))
SUGGESTION_PREVIEW = 3

# Reported quality of an analysis that had to fall back to a placeholder.
FALLBACK_QUALITY_SCORE = 0.5


class SearchEngine:
    """
    Fingerprint-based visual product search engine.

    Loads pre-built fingerprints, FAISS index and catalog metadata from
    disk, then accepts query images and returns ranked matches.
    """

    def __init__(self, index_dir: str, nprobe: int = 20):
        """
        Load the catalog index from disk.

        Args:
            index_dir: Directory containing index files from build_index().
            nprobe: Number of IVF clusters to probe (higher = more accurate,
                    slower). Only applies to IVFFlat indexes.
        """
        self.index_dir = index_dir
        self.nprobe = nprobe

        faiss_path = os.path.join(index_dir, FAISS_INDEX_FILE)
        self.faiss_index = faiss.read_index(faiss_path)
        if hasattr(self.faiss_index, 'nprobe'):
            self.faiss_index.nprobe = nprobe

        data = np.load(os.path.join(index_dir, FINGERPRINTS_FILE))
        ids = [str(i) for i in data["ids"]]
        vectors = data["vectors"]

        with open(os.path.join(index_dir, CATALOG_FILE), 'r', encoding='utf-8') as f:
            catalog = json.load(f)
        entries = {item["id"]: item for item in catalog}

        self.candidates: List[Candidate] = []
        for item_id, vector in zip(ids, vectors):
            entry = entries.get(item_id, {})
            self.candidates.append(Candidate(
                id=item_id,
                fingerprint=vector,
                category=entry.get("category") or "",
                price=float(entry.get("price") or 0.0),
                name=entry.get("name"),
                metadata={"filename": entry.get("filename")},
            ))
        self._by_id = {c.id: c for c in self.candidates}

        logger.info(
            f"Loaded catalog: {len(self.candidates)} items, "
            f"FAISS {self.faiss_index.ntotal} vectors, {self.faiss_index.d}d"
        )

    def fingerprint(self,
                    query_image,
                    seed: Optional[int] = None,
                    fallback_on_error: bool = False):
        """
        Fingerprint a query image.

        Returns:
            Tuple of (Fingerprint, analysis_quality dict).

        Raises:
            ImageDecodeError, PixelBufferError: Unless fallback_on_error.
        """
        try:
            fingerprint = extract_fingerprint(query_image, seed=seed)
        except (ImageDecodeError, PixelBufferError) as e:
            if not fallback_on_error:
                raise
            logger.warning(f"Query analysis failed, using fallback fingerprint: {e}")
            return Fingerprint.fallback(), {
                "success": False,
                "score": FALLBACK_QUALITY_SCORE,
                "failed_features": [],
            }

        return fingerprint, {
            "success": True,
            "score": 1.0,
            "failed_features": list(fingerprint.failures),
        }

    def candidate_pool(self, fingerprint: Fingerprint,
                       size: Optional[int] = None) -> List[Candidate]:
        """
        Catalog candidates to score for a query.

        With no size (or a size covering the catalog) every item is a
        candidate; otherwise FAISS returns the nearest `size` items.
        """
        if size is None or size >= len(self.candidates):
            return self.candidates

        query = fingerprint.vector.astype(np.float32).reshape(1, -1)
        if query.shape[1] != self.faiss_index.d:
            raise ValueError(
                f"Query dimension {query.shape[1]} doesn't match "
                f"index dimension {self.faiss_index.d}"
            )

        _, indices = self.faiss_index.search(query, size)
        return [self.candidates[i] for i in indices[0]
                if 0 <= i < len(self.candidates)]

    def search(self,
               query_image,
               top_k: int = None,
               category_boost: float = None,
               candidate_pool: Optional[int] = None,
               seed: Optional[int] = None,
               fallback_on_error: bool = False) -> Dict[str, Any]:
        """
        Search for visually similar products.

        Pipeline:
            1. Fingerprint the query image
            2. Optionally narrow the catalog with FAISS
            3. Run global, per-category and price-aware strategies
            4. Merge, re-weight and score confidence

        Args:
            query_image: RGB array, PixelBuffer or encoded image bytes.
            top_k: Maximum number of results to return.
            category_boost: Boost for an inferred-category match.
            candidate_pool: Number of FAISS neighbours to score; all
                items when None.
            seed: Seed for dominant-color clustering of the query.
            fallback_on_error: Use a placeholder fingerprint instead of
                raising when the image cannot be decoded.

        Returns:
            Dict with matches, confidence, average_similarity,
            total_candidates, strategies, feature_dimensions and
            analysis_quality.
        """
        fingerprint, quality = self.fingerprint(query_image, seed=seed,
                                                fallback_on_error=fallback_on_error)
        candidates = self.candidate_pool(fingerprint, candidate_pool)

        report = search_candidates(fingerprint, candidates, limit=top_k,
                                   category_boost=category_boost)

        result = report.to_dict()
        result["feature_dimensions"] = len(fingerprint)
        result["analysis_quality"] = quality

        logger.info(
            f"Search complete: {len(candidates)} candidates → "
            f"{len(report.matches)} results"
        )
        return result

    def suggest(self,
                query_image,
                seed: Optional[int] = None,
                fallback_on_error: bool = False) -> Dict[str, Any]:
        """Quick category and price-range suggestions for a query image."""
        fingerprint, quality = self.fingerprint(query_image, seed=seed,
                                                fallback_on_error=fallback_on_error)
        quick = find_similar(fingerprint, self.candidates, limit=SUGGESTION_LIMIT)

        categories = list(dict.fromkeys(m.candidate.category for m in quick))
        price_ranges = list(dict.fromkeys(m.price_range for m in quick))

        return {
            "categories": categories,
            "price_ranges": price_ranges,
            "quick_matches": [m.to_dict() for m in quick[:SUGGESTION_PREVIEW]],
            "confidence": compute_confidence([m.score for m in quick]),
            "analysis_quality": quality,
        }

    def analytics(self) -> Dict[str, Any]:
        """
        Catalog summary: per-category and per-price-range counts with
        average prices, plus overall totals.
        """
        by_category: Dict[str, List[float]] = {}
        by_range: Dict[str, List[float]] = {}
        for candidate in self.candidates:
            by_category.setdefault(candidate.category, []).append(candidate.price)
            by_range.setdefault(price_range(candidate.price), []).append(candidate.price)

        def summarize(groups):
            return {
                key: {"count": len(prices), "avg_price": average_price(prices)}
                for key, prices in groups.items()
            }

        return {
            "category_stats": summarize(by_category),
            "price_distribution": summarize(by_range),
            "total_products": len(self.candidates),
            "avg_price": average_price([c.price for c in self.candidates]),
        }

    def compare(self, item_ids: Sequence[str]) -> Dict[str, Any]:
        """
        Pairwise visual comparison of catalog items.

        Raises:
            ValueError: If fewer than two ids are given.
            KeyError: If any id is not in the catalog.
        """
        if len(item_ids) < 2:
            raise ValueError("At least 2 item ids are required to compare")

        missing = [i for i in item_ids if i not in self._by_id]
        if missing:
            raise KeyError(f"Unknown item ids: {missing}")

        items = [self._by_id[i] for i in item_ids]
        comparisons = []
        for i in range(len(items)):
            for j in range(i + 1, len(items)):
                a, b = items[i], items[j]
                high = max(a.price, b.price)
                comparisons.append({
                    "item1": {"id": a.id, "name": a.name, "category": a.category},
                    "item2": {"id": b.id, "name": b.name, "category": b.category},
                    "visual_similarity": combined_similarity(a.fingerprint, b.fingerprint),
                    "category_match": a.category == b.category,
                    "price_ratio": min(a.price, b.price) / high if high > 0 else 1.0,
                    "price_ranges": [price_range(a.price), price_range(b.price)],
                })

        overall = float(np.mean([c["visual_similarity"] for c in comparisons]))
        return {"comparisons": comparisons, "overall_similarity": overall}

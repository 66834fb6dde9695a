"""
visual_match — Image fingerprinting and visual product ranking.

Seven closed-form feature extractors (HSV color, Sobel edges, LBP
texture, moment shape, k-means dominant colors, brightness, contrast)
are weighted into one fixed-length fingerprint. Fingerprints are
compared with blended cosine / euclidean / correlation similarity and
ranked with global, per-category and price-aware strategies.

Modules:
    preprocessing      Decoding, pixel buffers and canonical resampling
    histograms         HSV color, edge and LBP texture histograms
    shape_descriptors  Moment-based shape features
    color_statistics   Dominant colors, brightness and contrast
    fingerprint        Extractor layout, fault isolation and combination
    scoring            Similarity metrics and confidence
    ranking            Multi-strategy candidate ranking
    index_builder      Batch catalog fingerprinting
    engine             Main SearchEngine class
"""

from .fingerprint import Fingerprint, extract_fingerprint, FINGERPRINT_DIM
from .preprocessing import PixelBuffer, ImageDecodeError, PixelBufferError
from .ranking import Candidate, RankedMatch, rank_candidates, search_candidates
from .scoring import combined_similarity

__version__ = "1.0.0"

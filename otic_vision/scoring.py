"""
Token similarity scoring, ranking and the verdict policy.

The similarity between two tokens combines two signals:
    - histogram similarity: 1 - L1 / 2 over the normalized colour histograms
    - spatial agreement: fraction of the four quadrant bins that match

The weights are fixed per matcher instance so scores are reproducible
across calls. Every score lies in [0, 1], is symmetric, and a token
scored against itself is exactly 1.0.
"""

import logging
from typing import Iterable, List, Sequence

import numpy as np

from .config import RecognitionConfig
from .models import ScoredCandidate, Verdict, VisualToken

logger = logging.getLogger(__name__)

HISTOGRAM_WEIGHT = 0.8
SPATIAL_WEIGHT = 0.2


class SimilarityMatcher:
    """Stateless weighted-distance scorer for VisualTokens."""

    def __init__(self,
                 histogram_weight: float = HISTOGRAM_WEIGHT,
                 spatial_weight: float = SPATIAL_WEIGHT):
        if histogram_weight < 0 or spatial_weight < 0:
            raise ValueError("Similarity weights must be non-negative")
        if abs(histogram_weight + spatial_weight - 1.0) > 1e-9:
            raise ValueError(
                f"Similarity weights must sum to 1.0, got "
                f"{histogram_weight + spatial_weight}"
            )
        self.histogram_weight = histogram_weight
        self.spatial_weight = spatial_weight

    def score(self, a: VisualToken, b: VisualToken) -> float:
        """
        Similarity in [0, 1] between two tokens.

        Equal checksums short-circuit: identical descriptors score 1.0,
        a checksum collision between different descriptors scores 0.0.
        """
        da, db = a.descriptor, b.descriptor

        if a.checksum == b.checksum:
            return 1.0 if da == db else 0.0

        if da.n_bins != db.n_bins:
            return 0.0

        l1 = float(np.sum(np.abs(da.histogram - db.histogram)))
        hist_sim = min(1.0, max(0.0, 1.0 - l1 / 2.0))
        spatial_sim = float(np.count_nonzero(da.spatial == db.spatial)) / da.spatial.size

        score = self.histogram_weight * hist_sim + self.spatial_weight * spatial_sim
        return min(1.0, max(0.0, score))


def rank_candidates(candidates: Iterable[ScoredCandidate]) -> List[ScoredCandidate]:
    """
    Sort by score (primary, descending) and product id (tiebreaker).

    The tiebreaker keeps equal-score orderings stable across runs.
    """
    return sorted(candidates, key=lambda c: (-c.score, c.match.product_id))


def decide_verdict(scores: Sequence[float], config: RecognitionConfig):
    """
    Apply the verdict policy to scores sorted highest first.

    First match wins:
        1. no scores                               -> UNREGISTERED, 0.0
        2. best >= threshold and clear margin      -> REGISTERED
        3. best >= threshold, margin too small     -> AMBIGUOUS
        4. otherwise                               -> UNREGISTERED

    Returns:
        Tuple of (Verdict, confidence).
    """
    if not scores:
        return Verdict.UNREGISTERED, 0.0

    best = scores[0]
    second = scores[1] if len(scores) > 1 else 0.0

    if best >= config.register_threshold:
        if best - second >= config.ambiguity_margin:
            return Verdict.REGISTERED, best
        return Verdict.AMBIGUOUS, best

    return Verdict.UNREGISTERED, best

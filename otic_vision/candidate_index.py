"""
Bounded in-process cache of registered products, bucketed by colour.

Entries are grouped by a coarse locality key taken from the token's
quadrant signature, so a lookup only scans products whose dominant
colour matches the query's. The cache holds at most `capacity` entries
and evicts the least recently used one when full.

The cache only narrows the search. The orchestrator falls back to a
full store scan whenever the cached shortlist is not convincing.
"""

import logging
import threading
from collections import OrderedDict
from typing import Dict, List

import numpy as np

from .models import ProductMatch, VisualToken

logger = logging.getLogger(__name__)


def bucket_key(token: VisualToken) -> int:
    """
    Locality key: the bin that dominates the most quadrants.

    Ties go to the bin holding more histogram mass, then to the lower
    bin index.
    """
    d = token.descriptor
    bins, counts = np.unique(d.spatial, return_counts=True)
    best = max(zip(bins.tolist(), counts.tolist()),
               key=lambda bc: (bc[1], d.histogram[bc[0]], -bc[0]))
    return int(best[0])


class CandidateIndex:
    """
    Thread-safe LRU cache of ProductMatch entries keyed by bucket.

    A single lock guards all buckets and the recency order. Lookups
    update recency, so they take the lock too.
    """

    def __init__(self, capacity: int = 1024, shortlist_size: int = 32):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        if shortlist_size < 1:
            raise ValueError("shortlist_size must be positive")
        self.capacity = capacity
        self.shortlist_size = shortlist_size

        self._lock = threading.Lock()
        # product_id -> bucket, oldest first
        self._lru: "OrderedDict[str, int]" = OrderedDict()
        # bucket -> product_id -> match, oldest first
        self._buckets: Dict[int, "OrderedDict[str, ProductMatch]"] = {}

        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def lookup(self, token: VisualToken) -> List[ProductMatch]:
        """Shortlist of cached products in the token's bucket, most recent first."""
        key = bucket_key(token)
        with self._lock:
            bucket = self._buckets.get(key)
            if not bucket:
                self.misses += 1
                return []

            shortlist = list(reversed(bucket.values()))[:self.shortlist_size]
            # Touch in reverse so the shortlist keeps its relative order
            for match in reversed(shortlist):
                bucket.move_to_end(match.product_id)
                self._lru.move_to_end(match.product_id)
            self.hits += 1
            return shortlist

    def insert(self, match: ProductMatch) -> None:
        """Insert or refresh an entry, evicting the least recently used if full."""
        key = bucket_key(match.token)
        with self._lock:
            self._discard(match.product_id)

            self._buckets.setdefault(key, OrderedDict())[match.product_id] = match
            self._lru[match.product_id] = key

            while len(self._lru) > self.capacity:
                oldest, _ = next(iter(self._lru.items()))
                self._discard(oldest)
                self.evictions += 1
                logger.debug(f"Evicted {oldest} from candidate cache")

    def remove(self, product_id: str) -> bool:
        with self._lock:
            return self._discard(product_id)

    def clear(self) -> None:
        with self._lock:
            self._lru.clear()
            self._buckets.clear()

    def stats(self) -> dict:
        with self._lock:
            return {
                "size": len(self._lru),
                "buckets": len(self._buckets),
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._lru)

    def __contains__(self, product_id: str) -> bool:
        with self._lock:
            return product_id in self._lru

    def _discard(self, product_id: str) -> bool:
        """Drop an entry; caller holds the lock."""
        key = self._lru.pop(product_id, None)
        if key is None:
            return False
        bucket = self._buckets[key]
        del bucket[product_id]
        if not bucket:
            del self._buckets[key]
        return True

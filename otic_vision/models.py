"""
Value types shared across the recognition pipeline.

Every type here is immutable once built. Descriptor arrays are flagged
read-only so a token handed to the store or the cache can never be
changed underneath another call.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from .errors import InvalidInput

SUPPORTED_CHANNELS = (3, 4)
QUADRANTS = 4
HISTOGRAM_SUM_TOLERANCE = 1e-6


class Verdict(str, Enum):
    REGISTERED = "registered"
    AMBIGUOUS = "ambiguous"
    UNREGISTERED = "unregistered"


class RecognitionState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    EXTRACTING = "extracting"
    MATCHING = "matching"
    DECIDED = "decided"


@dataclass(frozen=True)
class PixelBuffer:
    """Raw 8-bit RGB or RGBA frame as delivered by a capture source."""

    width: int
    height: int
    channels: int
    data: bytes = field(repr=False)

    @classmethod
    def from_array(cls, image_np: np.ndarray) -> "PixelBuffer":
        """Wrap an H x W x C uint8 array (C = 3 or 4)."""
        if image_np.ndim != 3:
            raise InvalidInput(f"Expected H x W x C array, got shape {image_np.shape}")
        if image_np.dtype != np.uint8:
            raise InvalidInput(f"Expected uint8 pixels, got {image_np.dtype}")
        h, w, c = image_np.shape
        return cls(width=w, height=h, channels=c,
                   data=np.ascontiguousarray(image_np).tobytes())


@dataclass(frozen=True, eq=False)
class ColorDescriptor:
    """
    Quantized RGB histogram plus a four-entry quadrant signature.

    histogram: float64 vector, non-negative, sums to 1.0.
    spatial:   dominant histogram bin of each quadrant, in the order
               top-left, top-right, bottom-left, bottom-right.
    """

    histogram: np.ndarray
    spatial: np.ndarray

    def __post_init__(self):
        hist = np.array(self.histogram, dtype=np.float64)
        spatial = np.array(self.spatial, dtype=np.int64)

        if hist.ndim != 1 or hist.size == 0:
            raise InvalidInput("Histogram must be a non-empty vector")
        if not np.all(np.isfinite(hist)) or np.any(hist < 0):
            raise InvalidInput("Histogram bins must be finite and non-negative")
        if abs(hist.sum() - 1.0) > HISTOGRAM_SUM_TOLERANCE:
            raise InvalidInput(f"Histogram must sum to 1.0, got {hist.sum():.8f}")
        if spatial.shape != (QUADRANTS,):
            raise InvalidInput(f"Spatial signature needs {QUADRANTS} entries")
        if np.any(spatial < 0) or np.any(spatial >= hist.size):
            raise InvalidInput("Spatial entries must be valid histogram bin indices")

        hist.flags.writeable = False
        spatial.flags.writeable = False
        object.__setattr__(self, "histogram", hist)
        object.__setattr__(self, "spatial", spatial)

    @property
    def n_bins(self) -> int:
        return int(self.histogram.size)

    def __eq__(self, other):
        if not isinstance(other, ColorDescriptor):
            return NotImplemented
        return (np.array_equal(self.histogram, other.histogram)
                and np.array_equal(self.spatial, other.spatial))

    def __hash__(self):
        return hash((self.histogram.tobytes(), self.spatial.tobytes()))


@dataclass(frozen=True)
class VisualToken:
    """Fixed-size fingerprint of one capture. id stays None until registered."""

    descriptor: ColorDescriptor
    checksum: int
    created_at: float
    id: Optional[str] = None

    def with_id(self, token_id: str) -> "VisualToken":
        return replace(self, id=token_id)


@dataclass(frozen=True)
class ProductMatch:
    """A registered product and the token it was registered with."""

    product_id: str
    token: VisualToken
    brand_name: str
    product_name: str
    price: float
    registered_at: float


@dataclass(frozen=True)
class ScoredCandidate:
    match: ProductMatch
    score: float


@dataclass(frozen=True)
class RecognitionResult:
    """
    Outcome of one recognize() call.

    candidates are ordered by score, highest first. source records where
    the shortlist came from: "cache", "store", or "empty" when nothing is
    registered at all.
    """

    query_token: VisualToken
    candidates: Tuple[ScoredCandidate, ...]
    verdict: Verdict
    confidence: float
    source: str = "store"
    elapsed_ms: float = 0.0

    @property
    def best(self) -> Optional[ScoredCandidate]:
        return self.candidates[0] if self.candidates else None

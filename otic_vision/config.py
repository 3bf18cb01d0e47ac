"""
Recognition policy configuration.

All tunable constants live in one frozen struct that is handed to the
orchestrator at construction time, so two engines built from the same
config behave identically. Defaults can be overridden through OTIC_*
environment variables via RecognitionConfig.from_env().
"""

import os
from dataclasses import dataclass, fields


@dataclass(frozen=True)
class RecognitionConfig:
    """Thresholds, histogram geometry and cache/scan limits."""

    # Verdict policy
    register_threshold: float = 0.85
    ambiguity_margin: float = 0.05
    # Best cached score needed to skip the full store scan
    trust_cache_threshold: float = 0.95

    # Descriptor geometry: bins_per_channel ** 3 histogram bins
    bins_per_channel: int = 4
    analysis_size: int = 64

    # Matching limits
    top_k: int = 10
    faiss_candidates: int = 200
    scan_timeout: float = 5.0

    # CandidateIndex bounds
    cache_capacity: int = 1024
    shortlist_size: int = 32

    # Worker threads for blocking store calls. A call abandoned on timeout
    # or cancel holds its worker until the store returns.
    store_workers: int = 4

    def __post_init__(self):
        for name in ("register_threshold", "ambiguity_margin", "trust_cache_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if not 2 <= self.bins_per_channel <= 16:
            raise ValueError(
                f"bins_per_channel must be in [2, 16], got {self.bins_per_channel}"
            )
        if self.analysis_size < 2 or self.analysis_size % 2:
            raise ValueError(
                f"analysis_size must be an even number >= 2, got {self.analysis_size}"
            )
        for name in ("top_k", "faiss_candidates", "cache_capacity", "shortlist_size",
                     "store_workers"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be positive")
        if self.scan_timeout <= 0:
            raise ValueError(f"scan_timeout must be positive, got {self.scan_timeout}")

    @property
    def histogram_bins(self) -> int:
        return self.bins_per_channel ** 3

    @classmethod
    def from_env(cls, prefix: str = "OTIC_") -> "RecognitionConfig":
        """
        Build a config from environment variables.

        Each field maps to PREFIX + FIELD_NAME upper-cased, e.g.
        OTIC_REGISTER_THRESHOLD=0.9. Unset variables keep the default.
        """
        overrides = {}
        for f in fields(cls):
            raw = os.environ.get(prefix + f.name.upper())
            if raw is None:
                continue
            overrides[f.name] = int(raw) if f.type in (int, "int") else float(raw)
        return cls(**overrides)

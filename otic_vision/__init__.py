"""
otic_vision: barcode-free product recognition from camera frames.

Turns a captured frame into a compact colour/spatial fingerprint
(a visual token) and matches it against registered products to
recognize them at the point of sale.

Modules:
    engine           RecognitionOrchestrator (capture -> verdict pipeline)
    extractor        FeatureExtractor (frame -> ColorDescriptor)
    histograms       Quantized RGB histograms, quadrant signatures, FAISS shortlist
    preprocessing    Buffer validation, alpha masking, area-average downsampling
    codec            TokenCodec (descriptor <-> fixed-size token bytes)
    scoring          SimilarityMatcher, ranking and verdict policy
    candidate_index  Bounded LRU cache of products bucketed by colour
    store            TokenStore contract, in-memory and directory stores
    index_builder    Batch registration of product image directories
    config           RecognitionConfig
    errors           EngineError taxonomy
"""

from .candidate_index import CandidateIndex
from .codec import TokenCodec
from .config import RecognitionConfig
from .engine import RecognitionAttempt, RecognitionOrchestrator
from .errors import (
    CorruptToken, EngineError, InvalidInput, RecognitionCancelled,
    RecognitionTimeout, RegistrationConflict, StoreUnavailable,
)
from .extractor import FeatureExtractor
from .models import (
    ColorDescriptor, PixelBuffer, ProductMatch, RecognitionResult,
    RecognitionState, ScoredCandidate, Verdict, VisualToken,
)
from .scoring import SimilarityMatcher
from .store import DirectoryTokenStore, InMemoryTokenStore, TokenStore

__version__ = "1.0.0"

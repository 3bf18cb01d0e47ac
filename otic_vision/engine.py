"""
Product recognition engine.

Drives one recognition attempt through its states:

    IDLE -> CAPTURING -> EXTRACTING -> MATCHING -> DECIDED -> IDLE

    1. Validate the frame and extract a colour/spatial descriptor
    2. Encode it into a VisualToken
    3. Score the cached shortlist for the token's colour bucket and, if
       it is convincing, confirm it against uncached store products that
       could land within the ambiguity margin
    4. Otherwise scan the whole token store
       (off-thread, with a deadline and cancellation)
    5. Apply the verdict policy and return a ranked RecognitionResult

Store outages, timeouts and cancellations are raised to the caller and
never reported as "no match". Nothing is retried here; a new capture is
a new attempt.
"""

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, List, Optional, Sequence

from .candidate_index import CandidateIndex, bucket_key
from .codec import TokenCodec
from .config import RecognitionConfig
from .errors import (
    EngineError, RecognitionCancelled, RecognitionTimeout,
    RegistrationConflict, StoreUnavailable,
)
from .extractor import FeatureExtractor
from .histograms import range_search_histogram_index, search_histogram_index
from .models import (
    ColorDescriptor, PixelBuffer, ProductMatch, RecognitionResult,
    RecognitionState, ScoredCandidate, VisualToken,
)
from .scoring import SimilarityMatcher, decide_verdict, rank_candidates
from .store import TokenStore

logger = logging.getLogger(__name__)

# How often a blocked store call checks for cancellation (seconds)
CANCEL_POLL_INTERVAL = 0.05


class RecognitionAttempt:
    """
    Per-call handle: exposes the attempt's state and lets the caller
    abandon it (e.g. the cashier retakes the photo) from another thread.
    """

    def __init__(self):
        self.state = RecognitionState.IDLE
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def advance(self, state: RecognitionState) -> None:
        if self.cancelled and state is not RecognitionState.IDLE:
            raise RecognitionCancelled("Recognition attempt was cancelled")
        logger.debug(f"Attempt {id(self):x}: {self.state.value} -> {state.value}")
        self.state = state


class RecognitionOrchestrator:
    """
    Visual product recognition engine.

    Every collaborator is injected, so tests can swap the store for a
    double and scoring stays deterministic. Instances are safe to share
    between threads: the CandidateIndex is the only shared mutable state.
    """

    def __init__(self,
                 store: TokenStore,
                 extractor: Optional[FeatureExtractor] = None,
                 matcher: Optional[SimilarityMatcher] = None,
                 codec: Optional[TokenCodec] = None,
                 index: Optional[CandidateIndex] = None,
                 config: Optional[RecognitionConfig] = None,
                 executor: Optional[ThreadPoolExecutor] = None,
                 on_result: Optional[Callable[[RecognitionResult], None]] = None):
        """
        Args:
            store: Durable registry of ProductMatch records.
            extractor: Descriptor extractor (built from config if omitted).
            matcher: Similarity scorer.
            codec: Token codec (built from config if omitted).
            index: Candidate cache (sized from config if omitted).
            config: Thresholds and limits. Defaults to RecognitionConfig().
            executor: Pool that runs blocking store calls. The engine
                creates and owns one of config.store_workers threads if
                omitted. A store call abandoned on timeout or cancel keeps
                its worker until the store returns, so a pool whose workers
                are all stuck queues new calls until they time out.
            on_result: Optional hook called with every RecognitionResult,
                e.g. to keep an audit log of recognition attempts.
        """
        self.config = config or RecognitionConfig()
        self.store = store
        self.extractor = extractor or FeatureExtractor(self.config)
        self.matcher = matcher or SimilarityMatcher()
        self.codec = codec or TokenCodec(self.config)
        self.index = index or CandidateIndex(
            capacity=self.config.cache_capacity,
            shortlist_size=self.config.shortlist_size,
        )
        self.on_result = on_result

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.config.store_workers, thread_name_prefix="otic-store"
        )

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def recognize(self,
                  buffer: PixelBuffer,
                  attempt: Optional[RecognitionAttempt] = None,
                  force_full_scan: bool = False) -> RecognitionResult:
        """
        Recognize the product in a captured frame.

        Args:
            buffer: RGB or RGBA frame from the capture source.
            attempt: Optional handle the caller can cancel from another thread.
            force_full_scan: Skip the cache and score the whole store.

        Returns:
            RecognitionResult with ranked candidates and a verdict.

        Raises:
            InvalidInput: malformed frame.
            StoreUnavailable: the token store could not be read.
            RecognitionTimeout: the store scan exceeded config.scan_timeout.
            RecognitionCancelled: attempt.cancel() was called.
            CorruptToken: a stored token failed to decode.
        """
        attempt = attempt or RecognitionAttempt()
        started = time.perf_counter()

        try:
            attempt.advance(RecognitionState.CAPTURING)

            attempt.advance(RecognitionState.EXTRACTING)
            descriptor = self.extractor.extract(buffer)
            token = self.codec.encode(descriptor)

            attempt.advance(RecognitionState.MATCHING)
            ranked, source = self._match(token, attempt, force_full_scan)

            attempt.advance(RecognitionState.DECIDED)
            verdict, confidence = decide_verdict([c.score for c in ranked], self.config)

            result = RecognitionResult(
                query_token=token,
                candidates=tuple(ranked[:self.config.top_k]),
                verdict=verdict,
                confidence=confidence,
                source=source,
                elapsed_ms=(time.perf_counter() - started) * 1000.0,
            )
        finally:
            attempt.advance(RecognitionState.IDLE)

        best = result.best
        logger.info(
            f"Recognition {result.verdict.value}: confidence={result.confidence:.3f}, "
            f"{len(result.candidates)} candidates from {source}, "
            f"best={best.match.product_id if best else None}, "
            f"{result.elapsed_ms:.1f}ms"
        )
        self._notify(result)
        return result

    def register_token(self,
                       descriptor: ColorDescriptor,
                       product_id: Optional[str] = None,
                       brand_name: str = "",
                       product_name: str = "",
                       price: float = 0.0) -> ProductMatch:
        """
        Encode a descriptor and register it in the store.

        Called by the surrounding application once a person has confirmed
        an UNREGISTERED capture as a new product; the engine never
        registers on its own.

        Raises:
            RegistrationConflict: the checksum already belongs to a
                different product.
            StoreUnavailable: the store could not be read or refused the write.
        """
        token = self.codec.encode(descriptor)
        attempt = RecognitionAttempt()

        existing = self._call_store(self.store.read_all, attempt=attempt)
        for match in existing:
            if match.token.checksum == token.checksum and match.product_id != product_id:
                raise RegistrationConflict(token.checksum, match.product_id)

        match = ProductMatch(
            product_id=product_id or uuid.uuid4().hex,
            token=token.with_id(uuid.uuid4().hex),
            brand_name=brand_name,
            product_name=product_name,
            price=float(price),
            registered_at=time.time(),
        )

        if not self._call_store(self.store.write, match, attempt=attempt):
            raise StoreUnavailable(f"Store rejected registration of {match.product_id}")

        self.index.insert(match)
        logger.info(
            f"Registered {match.product_id} ({brand_name} {product_name}), "
            f"checksum={token.checksum:016x}"
        )
        return match

    def register_frame(self, buffer: PixelBuffer, **metadata) -> ProductMatch:
        """Extract a descriptor from a frame and register it (see register_token)."""
        return self.register_token(self.extractor.extract(buffer), **metadata)

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _match(self, token: VisualToken, attempt: RecognitionAttempt,
               force_full_scan: bool):
        """Return (ranked candidates, source)."""
        if not force_full_scan:
            shortlist = self.index.lookup(token)
            if not shortlist:
                shortlist = self._seed_bucket(token, attempt)

            if shortlist:
                ranked = self._score(token, shortlist)
                if ranked[0].score >= self.config.trust_cache_threshold:
                    catalog = self._call_store(self.store.read_all, attempt=attempt)
                    return (self._confirm_cached(token, ranked, catalog)
                            or self._full_scan(token, catalog))
                logger.debug(
                    f"Cached best {ranked[0].score:.3f} below trust threshold, "
                    f"falling back to full scan"
                )

        catalog = self._call_store(self.store.read_all, attempt=attempt)
        return self._full_scan(token, catalog)

    def _full_scan(self, token: VisualToken, catalog: Sequence[ProductMatch]):
        if not catalog:
            return [], "empty"

        ranked = self._score(token, self._preselect(token, catalog))
        for candidate in ranked[:self.config.top_k]:
            self.index.insert(candidate.match)
        return ranked, "store"

    def _confirm_cached(self, token: VisualToken, ranked: List[ScoredCandidate],
                        catalog: Sequence[ProductMatch]):
        """
        Check a trusted cache hit against the current store contents.

        The cache only holds what this engine has seen recently, so a
        product registered elsewhere, evicted, or cut from the shortlist
        could score within the ambiguity margin of the cached best. Only
        the store products that could reach that floor are scored.

        Returns:
            (ranked, source) with any such rivals merged in, or None when
            the cached entries are stale and a full scan is needed.
        """
        current = {m.product_id: m for m in catalog}
        kept = [
            ScoredCandidate(match=current[c.match.product_id], score=c.score)
            for c in ranked
            if c.match.product_id in current
            and current[c.match.product_id].token.checksum == c.match.token.checksum
        ]
        if not kept or kept[0].score < self.config.trust_cache_threshold:
            logger.debug("Cached shortlist is stale, falling back to full scan")
            return None

        floor = kept[0].score - self.config.ambiguity_margin - 1e-9
        kept_ids = {c.match.product_id for c in kept}
        others = [m for m in catalog if m.product_id not in kept_ids]
        rivals = [
            c for c in self._score(token, self._within_reach(token, others, floor))
            if c.score >= floor
        ]
        if not rivals:
            return kept, "cache"

        logger.debug(
            f"{len(rivals)} uncached products within the ambiguity margin, "
            f"merging with the cached shortlist"
        )
        for candidate in rivals:
            self.index.insert(candidate.match)
        return rank_candidates(kept + rivals), "store"

    def _within_reach(self, token: VisualToken, matches: Sequence[ProductMatch],
                      floor: float) -> Sequence[ProductMatch]:
        """
        Drop products whose histogram is too far away to score at least
        `floor`. Scores never exceed hw * (1 - L1 / 2) + sw, and L2 <= L1,
        so an L2 radius query over the histograms keeps every product
        that could.
        """
        n_bins = token.descriptor.n_bins
        comparable = [m for m in matches if m.token.descriptor.n_bins == n_bins]
        weight = getattr(self.matcher, "histogram_weight", None)
        if len(comparable) <= self.config.faiss_candidates or not weight:
            return comparable

        max_l1 = 2.0 * (1.0 - (floor - (1.0 - weight)) / weight)
        if max_l1 >= 2.0:
            return comparable

        indices = range_search_histogram_index(
            [m.token.descriptor.histogram for m in comparable],
            token.descriptor.histogram,
            radius=max(max_l1, 0.0) + 1e-4,
        )
        return [comparable[i] for i in indices]

    def _seed_bucket(self, token: VisualToken,
                     attempt: RecognitionAttempt) -> List[ProductMatch]:
        reader = getattr(self.store, "read_by_bucket", None)
        if reader is None:
            return []

        matches = self._call_store(reader, bucket_key(token), attempt=attempt)
        for match in matches:
            self.index.insert(match)
        return list(matches)

    def _preselect(self, token: VisualToken,
                   catalog: Sequence[ProductMatch]) -> Sequence[ProductMatch]:
        """Narrow a large catalogue to its nearest histograms via FAISS."""
        n_bins = token.descriptor.n_bins
        comparable = [m for m in catalog if m.token.descriptor.n_bins == n_bins]
        if len(comparable) < len(catalog):
            logger.warning(
                f"Skipping {len(catalog) - len(comparable)} stored tokens "
                f"with a different histogram size"
            )
        if len(comparable) <= self.config.faiss_candidates:
            return comparable

        _, indices = search_histogram_index(
            [m.token.descriptor.histogram for m in comparable],
            token.descriptor.histogram,
            k=self.config.faiss_candidates,
        )
        return [comparable[i] for i in indices if i >= 0]

    def _score(self, token: VisualToken,
               matches: Sequence[ProductMatch]) -> List[ScoredCandidate]:
        return rank_candidates(
            ScoredCandidate(match=m, score=self.matcher.score(token, m.token))
            for m in matches
        )

    # ------------------------------------------------------------------
    # Store access
    # ------------------------------------------------------------------

    def _call_store(self, fn, *args, attempt: RecognitionAttempt):
        """
        Run a blocking store call on the executor, bounded by the scan
        timeout and abandoned as soon as the attempt is cancelled.

        A call that overruns keeps running on its worker thread; its
        result is discarded.
        """
        future = self._executor.submit(fn, *args)
        deadline = time.monotonic() + self.config.scan_timeout

        while True:
            if attempt.cancelled:
                future.cancel()
                raise RecognitionCancelled("Recognition attempt was cancelled")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                future.cancel()
                raise RecognitionTimeout(
                    f"Token store did not answer within {self.config.scan_timeout}s"
                )

            done, _ = wait([future], timeout=min(remaining, CANCEL_POLL_INTERVAL))
            if done:
                break

        try:
            return future.result()
        except EngineError:
            raise
        except (ConnectionError, OSError) as e:
            logger.warning(f"Token store unreachable: {e}")
            raise StoreUnavailable(str(e)) from e

    def _notify(self, result: RecognitionResult) -> None:
        if self.on_result is None:
            return
        try:
            self.on_result(result)
        except Exception:
            logger.exception("Recognition result hook failed")

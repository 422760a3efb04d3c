# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Hybrid lexical + vector search.

Pipeline for one query:

Stage 1 - Candidate generation (parallel):
  - BM25 over the FTS5 index, filtered by metadata in SQL
  - Cosine nearest neighbours, over-fetched and filtered after resolution

Stage 2 - Fusion:
  - Weighted RRF of both lists (hybrid mode) or raw path scores
    (single mode)
  - Power-law temporal decay, sort, truncate, hydrate

A failed path contributes no candidates; the search itself still returns.
Two exceptions: admission decisions (open embedder breaker, disabled vector
capability) in vector-only mode propagate, and store errors propagate when
no path produced any candidate so the caller's breaker sees the failure.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field, ValidationError

from cortex_memory.config import MAX_SEARCH_LIMIT, SearchConfig
from cortex_memory.errors import (
    AdmissionDeniedError,
    InvalidQueryError,
    InvalidSearchOptionsError,
    StoreError,
    TransientError,
)
from cortex_memory.observability.metrics import MetricsRecorder
from cortex_memory.resilience.coordinator import ResilienceCoordinator
from cortex_memory.resilience.degradation import Capability
from cortex_memory.retrieval.embedding import EmbeddingProvider
from cortex_memory.retrieval.fusion import (
    FusedResult,
    RankedCandidate,
    RRFFusion,
    apply_decay,
    single_path_results,
)
from cortex_memory.retrieval.lexical import lexical_candidates
from cortex_memory.retrieval.vector_index import VectorIndex
from cortex_memory.schemas.memory_types import MemoryRecord, MemoryStatus, MemoryType
from cortex_memory.storage.sqlite_store import MetadataFilter

logger = logging.getLogger(__name__)

EMBEDDER_COMPONENT = "embedder"
MIN_PREFETCH = 30


class SearchMode(str, Enum):
    HYBRID = "hybrid"
    LEXICAL = "lexical"
    VECTOR = "vector"


class SearchOptions(BaseModel):
    """Options for a single search.

    Attributes:
        mode: hybrid, lexical or vector.
        limit: Maximum results.
        status: Required record status; None matches any status.
        source: Required provenance source kind.
        memory_type: Required memory type.
        project_hash: Project scope.
        include_global: Also match global memories when scoped to a project.
    """

    mode: SearchMode = Field(default=SearchMode.HYBRID)
    limit: int = Field(default=10, ge=1, le=MAX_SEARCH_LIMIT)
    status: Optional[MemoryStatus] = Field(default=MemoryStatus.ACTIVE)
    source: Optional[str] = Field(default=None, min_length=1)
    memory_type: Optional[MemoryType] = Field(default=None)
    project_hash: Optional[str] = Field(default=None, min_length=1)
    include_global: bool = Field(default=True)

    model_config = {"extra": "forbid"}

    @classmethod
    def build(cls, options: "SearchOptions | dict[str, Any] | None") -> "SearchOptions":
        """Coerce caller input into validated options.

        Raises:
            InvalidSearchOptionsError: Unknown keys or invalid values.
        """
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        if not isinstance(options, dict):
            raise InvalidSearchOptionsError(f"Unsupported options type: {type(options).__name__}")
        try:
            return cls.model_validate(options)
        except ValidationError as e:
            raise InvalidSearchOptionsError(str(e)) from e

    def to_filter(self) -> MetadataFilter:
        return MetadataFilter(
            status=self.status,
            source=self.source,
            memory_type=self.memory_type,
            project_hash=self.project_hash,
            include_global=self.include_global,
        )


class RecordStore(Protocol):
    """Record store operations the engine needs."""

    def get_many(self, record_ids: list[str]) -> dict[str, MemoryRecord]: ...

    def lexical_search(
        self,
        fts_query: str,
        metadata_filter: Optional[MetadataFilter] = None,
        limit: int = 30,
    ) -> list: ...

    def iter_embeddings(self): ...


class HybridSearchEngine:
    """Hybrid search over the record store.

    Example:
        >>> engine = HybridSearchEngine(store, vector_index, embedder)
        >>> results = await engine.search("sqlite locking", {"limit": 5})
        >>> for result in results:
        ...     print(f"{result.record_id}: {result.score:.4f} {result.sources}")

    Attributes:
        store: Record store and lexical index.
        vector_index: Cosine index over record embeddings.
        embedder: Query embedding provider; None disables the vector path.
        coordinator: When set, embedder calls are guarded by it.
    """

    def __init__(
        self,
        store: RecordStore,
        vector_index: Optional[VectorIndex] = None,
        embedder: Optional[EmbeddingProvider] = None,
        coordinator: Optional[ResilienceCoordinator] = None,
        config: Optional[SearchConfig] = None,
        metrics: Optional[MetricsRecorder] = None,
    ):
        self.config = config or SearchConfig()
        self.store = store
        self.vector_index = vector_index or VectorIndex(self.config.embedding_dim)
        self.embedder = embedder
        self.coordinator = coordinator
        self.fusion = RRFFusion(k=self.config.rrf_k, vector_weight=self.config.vector_weight)
        self.metrics = metrics or MetricsRecorder()

    def rebuild_vector_index(self) -> int:
        """Reload the vector index from embeddings held by the store."""
        count = self.vector_index.rebuild(self.store.iter_embeddings())
        logger.info(f"Vector index rebuilt with {count} embeddings")
        return count

    async def search(
        self,
        query: str,
        options: "SearchOptions | dict[str, Any] | None" = None,
    ) -> list[FusedResult]:
        """Search for records relevant to query.

        Args:
            query: Free-text query.
            options: SearchOptions or a dict of its fields.

        Returns:
            Results ordered by non-increasing score, at most options.limit.

        Raises:
            InvalidQueryError: Query is empty or not a string.
            InvalidSearchOptionsError: Options failed validation.
            CircuitOpenError: Vector-only search while the embedder breaker
                is open.
            CapabilityDisabledError: Vector-only search while vector search
                is disabled.
            StoreError: Every path failed against the store.
            StoreUnavailableError: As StoreError, for transient failures.
        """
        if not isinstance(query, str) or not query.strip():
            raise InvalidQueryError("Query must be a non-empty string")
        opts = SearchOptions.build(options)

        start = time.perf_counter()
        prefetch = max(opts.limit * 3, MIN_PREFETCH)
        metadata_filter = opts.to_filter()

        want_lexical = opts.mode in (SearchMode.HYBRID, SearchMode.LEXICAL)
        want_vector = opts.mode in (SearchMode.HYBRID, SearchMode.VECTOR)

        strict = opts.mode == SearchMode.VECTOR
        lexical, vector = self._settle(
            await asyncio.gather(
                self._lexical_path(query, metadata_filter, prefetch) if want_lexical else _empty(),
                self._vector_path(query, metadata_filter, prefetch, strict)
                if want_vector
                else _empty(),
                return_exceptions=True,
            )
        )

        if opts.mode == SearchMode.HYBRID:
            results = self.fusion.fuse(lexical, vector)
        else:
            results = single_path_results(lexical if want_lexical else vector)

        results = apply_decay(
            results, base=self.config.decay_base, exponent=self.config.decay_exponent
        )[: opts.limit]
        results = await asyncio.to_thread(self._hydrate, results, metadata_filter)

        self.metrics.increment("searches")
        self.metrics.increment(f"searches_{opts.mode.value}")
        self.metrics.increment("lexical_hits", len(lexical))
        self.metrics.increment("vector_hits", len(vector))
        self.metrics.increment("results_returned", len(results))
        if not results:
            self.metrics.increment("empty_results")
        self.metrics.record_latency("search", (time.perf_counter() - start) * 1000)

        return results

    def _settle(self, outcomes: list) -> tuple[list[RankedCandidate], list[RankedCandidate]]:
        """Turn gathered path outcomes into (lexical, vector) candidates.

        Failed paths are logged and counted, then contribute nothing unless
        the failure is an admission decision, or a store error with no
        candidates from either path.
        """
        settled: list[list[RankedCandidate]] = []
        store_failures: list[Exception] = []
        for path, outcome in zip(("lexical", "vector"), outcomes):
            if not isinstance(outcome, BaseException):
                settled.append(outcome)
                continue
            if not isinstance(outcome, Exception) or isinstance(outcome, AdmissionDeniedError):
                raise outcome
            self.metrics.increment(f"{path}_failures")
            logger.warning(f"{path.capitalize()} path failed: {outcome}")
            if isinstance(outcome, (StoreError, TransientError)):
                store_failures.append(outcome)
            settled.append([])

        lexical, vector = settled
        if store_failures and not lexical and not vector:
            raise store_failures[0]
        return lexical, vector

    async def _lexical_path(
        self, query: str, metadata_filter: MetadataFilter, prefetch: int
    ) -> list[RankedCandidate]:
        return await asyncio.to_thread(
            lexical_candidates, self.store, query, metadata_filter, prefetch
        )

    async def _embed(self, query: str, strict: bool = False) -> Optional[list[float]]:
        if self.embedder is None:
            return None
        if self.coordinator is None:
            return await asyncio.to_thread(self.embedder.embed, query)

        outcome = await self.coordinator.guarded_execute(
            EMBEDDER_COMPONENT,
            lambda: self.embedder.embed(query),
            capability=Capability.VECTOR_SEARCH.value,
        )
        if outcome.blocked or outcome.degraded:
            if strict:
                outcome.unwrap()
            logger.info(f"Vector path skipped ({outcome.code}): {outcome.message}")
            return None
        if not outcome.success:
            logger.warning(f"Query embedding unavailable ({outcome.code}): {outcome.message}")
            self.metrics.increment("vector_failures")
            return None
        return outcome.result

    async def _vector_path(
        self,
        query: str,
        metadata_filter: MetadataFilter,
        prefetch: int,
        strict: bool = False,
    ) -> list[RankedCandidate]:
        vector = await self._embed(query, strict)
        if vector is None or len(self.vector_index) == 0:
            return []
        neighbours = await asyncio.to_thread(self.vector_index.search, vector, prefetch * 2)
        if not neighbours:
            return []
        records = await asyncio.to_thread(
            self.store.get_many, [record_id for record_id, _ in neighbours]
        )

        candidates: list[RankedCandidate] = []
        for record_id, distance in neighbours:
            record = records.get(record_id)
            if record is None or not metadata_filter.matches(record):
                continue
            candidates.append(
                RankedCandidate(
                    record_id=record_id,
                    raw_score=max(0.0, 1.0 - distance),
                    rank=len(candidates),
                    created_at=record.created_at,
                    path="vector",
                )
            )
            if len(candidates) >= prefetch:
                break
        return candidates

    def _hydrate(
        self, results: list[FusedResult], metadata_filter: MetadataFilter
    ) -> list[FusedResult]:
        """Attach records, dropping ids that no longer resolve or match."""
        if not results:
            return []
        records = self.store.get_many([r.record_id for r in results])
        hydrated = []
        for result in results:
            record = records.get(result.record_id)
            if record is None or not metadata_filter.matches(record):
                self.metrics.increment("unresolved_results")
                continue
            result.record = record
            hydrated.append(result)
        return hydrated

    def get_stats(self) -> dict[str, Any]:
        stats = self.metrics.get_stats()
        counters = stats["counters"]
        searches = counters.get("searches", 0)
        return {
            "searches": searches,
            "by_mode": {
                mode.value: counters.get(f"searches_{mode.value}", 0) for mode in SearchMode
            },
            "empty_results": counters.get("empty_results", 0),
            "lexical_hits": counters.get("lexical_hits", 0),
            "vector_hits": counters.get("vector_hits", 0),
            "results_returned": counters.get("results_returned", 0),
            "path_failures": {
                "lexical": counters.get("lexical_failures", 0),
                "vector": counters.get("vector_failures", 0),
            },
            "hit_rate": (
                (searches - counters.get("empty_results", 0)) / searches if searches else 0.0
            ),
            "latency": stats["latency"].get("search", {}),
            "vector_index_size": len(self.vector_index),
        }


async def _empty() -> list[RankedCandidate]:
    return []

# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Memory core facade.

Composes the record store, tier stores, hybrid search engine, lifecycle
manager, maintenance scheduler and resilience coordinator into one object
built explicitly at startup and passed to callers.

Query path:
    admission (rate limit) -> storage breaker and capability checks ->
    HybridSearchEngine -> results

Admission and capability decisions propagate as exceptions
(RateLimitExceededError, CircuitOpenError, CapabilityDisabledError).
"""

import asyncio
import logging
from typing import Any, Optional

from cortex_memory.concurrency import KeyedLocks
from cortex_memory.config import CortexConfig
from cortex_memory.errors import (
    AdmissionDeniedError,
    CapabilityDisabledError,
    EmbeddingDimensionError,
    InvalidQueryError,
    StoreError,
    TransientError,
)
from cortex_memory.lifecycle.tiers import LifecycleAnalysis, PromotionReport, TierLifecycleManager
from cortex_memory.maintenance.scheduler import MaintenanceScheduler
from cortex_memory.observability.metrics import MetricsRecorder
from cortex_memory.resilience.coordinator import (
    OPERATION_FAILED,
    GuardedOutcome,
    ResilienceCoordinator,
)
from cortex_memory.resilience.degradation import Capability
from cortex_memory.resilience.retry import Operation, RetryPredicate
from cortex_memory.retrieval.embedding import EmbeddingProvider
from cortex_memory.retrieval.fusion import FusedResult
from cortex_memory.retrieval.hybrid import (
    EMBEDDER_COMPONENT,
    HybridSearchEngine,
    SearchMode,
    SearchOptions,
)
from cortex_memory.retrieval.vector_index import VectorIndex
from cortex_memory.schemas.memory_types import MemoryRecord, Tier
from cortex_memory.storage.sqlite_store import SQLiteRecordStore
from cortex_memory.storage.tier_store import TierStore, open_tier_stores

logger = logging.getLogger(__name__)

STORAGE_COMPONENT = "storage"

# Tool names used for admission control
QUERY_OPERATION = "cortex__query"
LEARN_OPERATION = "cortex__learn"
CONSOLIDATE_OPERATION = "cortex__consolidate"


def _transient_only(error: BaseException) -> bool:
    return isinstance(error, TransientError)


class MemoryCore:
    """Retrieval and lifecycle core for one memory root.

    Example:
        >>> core = build_memory_core(load_config(), embedder=SentenceTransformerEmbedder())
        >>> core.start_maintenance()
        >>> results = await core.search("how do we pin numpy", {"limit": 5})
        >>> await core.stop_maintenance()
        >>> core.close()
    """

    def __init__(
        self,
        config: CortexConfig,
        store: SQLiteRecordStore,
        tiers: dict[Tier, TierStore],
        coordinator: ResilienceCoordinator,
        search_engine: HybridSearchEngine,
        lifecycle: TierLifecycleManager,
        scheduler: MaintenanceScheduler,
        locks: KeyedLocks,
    ):
        self.config = config
        self.store = store
        self.tiers = tiers
        self.coordinator = coordinator
        self.search_engine = search_engine
        self.lifecycle = lifecycle
        self.scheduler = scheduler
        self.locks = locks

    @property
    def embedder(self) -> Optional[EmbeddingProvider]:
        return self.search_engine.embedder

    @property
    def vector_index(self) -> VectorIndex:
        return self.search_engine.vector_index

    # Search

    async def search(
        self,
        query: str,
        options: "SearchOptions | dict[str, Any] | None" = None,
    ) -> list[FusedResult]:
        """Hybrid search behind admission, breaker and capability checks.

        Retrieval that keeps failing against the store after retries is
        reported to the storage breaker and health tracking, and the caller
        gets an empty list.

        Raises:
            InvalidQueryError: Empty query.
            InvalidSearchOptionsError: Invalid options.
            RateLimitExceededError: Query admission denied.
            CircuitOpenError: The storage breaker is open, or the embedder
                breaker is open for a vector-only search.
            CapabilityDisabledError: Vector-only search while vector search
                is disabled, or local reads are disabled.
        """
        if not isinstance(query, str) or not query.strip():
            raise InvalidQueryError("Query must be a non-empty string")
        opts = SearchOptions.build(options)

        self.coordinator.admit(QUERY_OPERATION)
        self.coordinator.ensure_available(STORAGE_COMPONENT, Capability.LOCAL_MEMORY.value)

        if opts.mode != SearchMode.LEXICAL and not self.coordinator.has_capability(
            Capability.VECTOR_SEARCH
        ):
            if opts.mode == SearchMode.VECTOR:
                raise CapabilityDisabledError(
                    Capability.VECTOR_SEARCH.value, self.coordinator.degradation.level.value
                )
            logger.info("Vector search disabled; running lexical-only search")
            opts = opts.model_copy(update={"mode": SearchMode.LEXICAL})
        if opts.mode == SearchMode.VECTOR:
            self.coordinator.ensure_available(EMBEDDER_COMPONENT, Capability.VECTOR_SEARCH.value)

        # An admission decision raised mid-search is not a storage failure
        async def run() -> "list[FusedResult] | AdmissionDeniedError":
            try:
                return await self.search_engine.search(query, opts)
            except AdmissionDeniedError as e:
                return e

        outcome = await self.coordinator.guarded_execute(
            STORAGE_COMPONENT, run, should_retry=_transient_only
        )
        if outcome.code == OPERATION_FAILED:
            logger.warning(
                f"Search failed after {outcome.attempts} attempts, returning no results: "
                f"{outcome.message}"
            )
            return []
        result = outcome.unwrap()
        if isinstance(result, AdmissionDeniedError):
            raise result
        return result

    # Admission control

    def check_admission(self, operation: str):
        return self.coordinator.check_admission(operation)

    def record_call(self, operation: str) -> None:
        self.coordinator.record_call(operation)

    async def guarded_execute(
        self,
        component: str,
        operation: Operation,
        capability: Optional[str] = None,
        should_retry: Optional[RetryPredicate] = None,
        timeout_seconds: Optional[float] = None,
    ) -> GuardedOutcome:
        return await self.coordinator.guarded_execute(
            component,
            operation,
            capability=capability,
            should_retry=should_retry,
            timeout_seconds=timeout_seconds,
        )

    # Lifecycle

    async def analyze_lifecycle(self) -> LifecycleAnalysis:
        """Plan a promotion pass; no writes."""
        return await asyncio.to_thread(self.lifecycle.analyze)

    async def apply_lifecycle(self, dry_run: bool = True) -> PromotionReport:
        """Run a promotion pass.

        Raises:
            RateLimitExceededError: Consolidation admission denied.
            CapabilityDisabledError: Writes are disabled and dry_run is False.
        """
        self.coordinator.admit(CONSOLIDATE_OPERATION)
        if not dry_run:
            self._require_writes()
        return await asyncio.to_thread(self.lifecycle.promote, dry_run)

    def _require_writes(self) -> None:
        if not self.coordinator.has_capability(Capability.WRITE_OPERATIONS):
            raise CapabilityDisabledError(
                Capability.WRITE_OPERATIONS.value, self.coordinator.degradation.level.value
            )

    # Ingestion and feedback

    async def remember(self, record: MemoryRecord) -> MemoryRecord:
        """Store a new record in the record store and the working tier.

        The content is embedded first when the record has no embedding and
        vector search is available; an embedding failure stores the record
        without one.

        Raises:
            RateLimitExceededError: Learn admission denied.
            CapabilityDisabledError: Writes are disabled.
            EmbeddingDimensionError: The supplied embedding has the wrong length.
            StoreError: A record with this id already exists.
            OperationFailedError: The record store failed the write.
        """
        dimension = self.config.search.embedding_dim
        if record.embedding is not None and len(record.embedding) != dimension:
            raise EmbeddingDimensionError(dimension, len(record.embedding))
        self.coordinator.admit(LEARN_OPERATION)
        self._require_writes()
        if await asyncio.to_thread(self.store.get, record.id) is not None:
            raise StoreError(f"Record {record.id} already exists")

        if record.embedding is None and self.embedder is not None:
            embedder = self.embedder
            outcome = await self.coordinator.guarded_execute(
                EMBEDDER_COMPONENT,
                lambda: embedder.embed(record.content),
                capability=Capability.VECTOR_SEARCH.value,
            )
            if outcome.success and len(outcome.result) != dimension:
                logger.warning(
                    f"Embedder returned {len(outcome.result)} dimensions, expected {dimension}; "
                    f"storing {record.id} without embedding"
                )
            elif outcome.success:
                record = record.model_copy(update={"embedding": outcome.result})
            else:
                logger.warning(f"Storing {record.id} without embedding: {outcome.message}")

        def write() -> MemoryRecord:
            with self.locks.hold(record.id):
                stored = self.store.add(record)
                self.tiers[Tier.WORKING].append(stored)
            return stored

        outcome = await self.coordinator.guarded_execute(
            STORAGE_COMPONENT,
            write,
            capability=Capability.WRITE_OPERATIONS.value,
            should_retry=_transient_only,
        )
        stored = outcome.unwrap()
        if stored.embedding is not None:
            self.vector_index.add(stored.id, stored.embedding)
        logger.debug(f"Remembered {stored.id}")
        return stored

    async def record_feedback(self, record_id: str, success: bool) -> Optional[MemoryRecord]:
        """Apply one usage outcome to a record in the store and its tier.

        Returns:
            The updated record, or None if the id is unknown.
        """
        self._require_writes()
        return await asyncio.to_thread(self._apply_feedback, record_id, success)

    def _apply_feedback(self, record_id: str, success: bool) -> Optional[MemoryRecord]:
        blend = self.config.usage_blend
        with self.locks.hold(record_id):
            updated = self.store.record_usage(record_id, success, blend)
            for tier_store in self.tiers.values():
                current = tier_store.get(record_id)
                if current is None or not current.is_active:
                    continue
                used = current.with_usage(success, blend)
                tier_store.update(
                    record_id,
                    usage_count=used.usage_count,
                    usage_success_rate=used.usage_success_rate,
                )
                break
        return updated

    def forget(self, record_id: str, reason: str = "low_quality") -> None:
        """Remove a record from search results (soft delete)."""
        if not self.store.soft_delete(record_id, reason=reason):
            logger.warning(f"Record {record_id} not in record store; nothing to forget")
        self.vector_index.remove(record_id)

    # Maintenance

    def start_maintenance(self) -> None:
        self.scheduler.start()

    async def stop_maintenance(self) -> None:
        await self.scheduler.stop()

    # Diagnostics

    def get_stats(self) -> dict[str, Any]:
        return {
            "search": self.search_engine.get_stats(),
            "lifecycle": self.lifecycle.get_summary(),
            "maintenance": self.scheduler.get_stats(),
            "resilience": self.coordinator.get_status(),
            "store": {
                "path": self.store.db_path,
                "records": self.store.count(),
            },
            "tiers": {tier.value: store.get_stats() for tier, store in self.tiers.items()},
        }

    def close(self) -> None:
        self.store.close()


def build_memory_core(
    config: Optional[CortexConfig] = None,
    embedder: Optional[EmbeddingProvider] = None,
    metrics: Optional[MetricsRecorder] = None,
) -> MemoryCore:
    """Construct every component of a MemoryCore for config.

    Args:
        config: Configuration; defaults when None.
        embedder: Query and ingestion embedding provider. None disables
            the vector path.
        metrics: Shared metrics recorder.

    Returns:
        A MemoryCore whose vector index is loaded from the record store.
    """
    config = config or CortexConfig()
    locks = KeyedLocks()

    store = SQLiteRecordStore(
        config.storage.database_path, embedding_dim=config.search.embedding_dim
    )
    tiers = open_tier_stores(config.storage.tiers_path)
    coordinator = ResilienceCoordinator(config)
    search_engine = HybridSearchEngine(
        store,
        VectorIndex(config.search.embedding_dim),
        embedder=embedder,
        coordinator=coordinator,
        config=config.search,
        metrics=metrics,
    )
    search_engine.rebuild_vector_index()

    lifecycle = TierLifecycleManager(tiers, config.tiers, locks=locks)
    scheduler = MaintenanceScheduler(
        lifecycle,
        config.scheduler,
        write_allowed=lambda: coordinator.has_capability(Capability.WRITE_OPERATIONS),
    )
    core = MemoryCore(
        config=config,
        store=store,
        tiers=tiers,
        coordinator=coordinator,
        search_engine=search_engine,
        lifecycle=lifecycle,
        scheduler=scheduler,
        locks=locks,
    )
    lifecycle.on_delete = core.forget
    logger.info(
        f"Memory core ready at {config.storage.root} "
        f"({store.count()} records, vector search {'on' if embedder else 'off'})"
    )
    return core

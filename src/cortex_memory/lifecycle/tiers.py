# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tier lifecycle manager.

Moves records between the working, short-term and long-term tiers and
purges low-quality short-term records.

Rules:
- Working -> short-term: older than the working max age (reason "age"),
  or the oldest records beyond the working capacity (reason "count").
- Short-term -> long-term: aged and success rate >= promote threshold
  (reason "quality"), or the highest-quality records beyond the
  short-term capacity (reason "count").
- Short-term -> deleted: aged and success rate < delete threshold
  (reason "low_quality"). Aged records between the two thresholds stay.

Short-term rules see the tier as it will be after this pass's working
moves, so one pass leaves every tier within its rules.

A move appends the record to the destination, then soft-deletes it in the
source. Each move holds the record's lock, shared with decay recompute.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from cortex_memory.concurrency import KeyedLocks
from cortex_memory.config import TierThresholds
from cortex_memory.errors import CortexError, StoreError
from cortex_memory.lifecycle.decay import DECAY_PRECISION, needs_update, tier_decay_score
from cortex_memory.lifecycle.policies import calculate_quality, is_aged_out
from cortex_memory.schemas.memory_types import MemoryRecord, Tier, utc_now
from cortex_memory.storage.tier_store import TierStore

logger = logging.getLogger(__name__)

REASON_AGE = "age"
REASON_COUNT = "count"
REASON_QUALITY = "quality"
REASON_LOW_QUALITY = "low_quality"


@dataclass
class TierDecision:
    """One record selected to move or be deleted."""

    record_id: str
    reason: str
    age_days: float
    quality: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.record_id,
            "reason": self.reason,
            "age_days": round(self.age_days, 2),
            "quality": round(self.quality, 3),
        }


@dataclass
class TierPlan:
    """Planned actions for one tier."""

    tier: Tier
    to_promote: list[TierDecision] = field(default_factory=list)
    to_delete: list[TierDecision] = field(default_factory=list)

    def promote_ids(self) -> list[str]:
        return [d.record_id for d in self.to_promote]

    def delete_ids(self) -> list[str]:
        return [d.record_id for d in self.to_delete]

    def to_dict(self) -> dict[str, Any]:
        return {
            "tier": self.tier.value,
            "to_promote": [d.to_dict() for d in self.to_promote],
            "to_delete": [d.to_dict() for d in self.to_delete],
        }


@dataclass
class LifecycleAnalysis:
    """What a promotion pass would do, with before and projected counts."""

    working: TierPlan
    short_term: TierPlan
    counts_before: dict[str, int]
    counts_after: dict[str, int]
    analyzed_at: datetime = field(default_factory=utc_now)

    @property
    def total_actions(self) -> int:
        return (
            len(self.working.to_promote)
            + len(self.short_term.to_promote)
            + len(self.short_term.to_delete)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "analyzed_at": self.analyzed_at.isoformat(),
            "working": self.working.to_dict(),
            "short_term": self.short_term.to_dict(),
            "counts_before": dict(self.counts_before),
            "counts_after": dict(self.counts_after),
            "total_actions": self.total_actions,
        }


@dataclass
class PromotionReport:
    dry_run: bool
    analysis: LifecycleAnalysis
    promoted_to_short_term: int = 0
    promoted_to_long_term: int = 0
    deleted: int = 0
    compacted: dict[str, dict[str, int]] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False
    duration_ms: float = 0.0

    @property
    def total_moves(self) -> int:
        return self.promoted_to_short_term + self.promoted_to_long_term + self.deleted

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "analysis": self.analysis.to_dict(),
            "promoted_to_short_term": self.promoted_to_short_term,
            "promoted_to_long_term": self.promoted_to_long_term,
            "deleted": self.deleted,
            "compacted": self.compacted,
            "errors": list(self.errors),
            "cancelled": self.cancelled,
            "duration_ms": round(self.duration_ms, 2),
        }


@dataclass
class DecayReport:
    scanned: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "scanned": self.scanned,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "errors": list(self.errors),
            "cancelled": self.cancelled,
            "duration_ms": round(self.duration_ms, 2),
        }


DeleteHook = Callable[[str], None]


class TierLifecycleManager:
    """Analyze and apply tier promotions and decay updates.

    Example:
        >>> manager = TierLifecycleManager(open_tier_stores(Path("/tmp/memories")))
        >>> analysis = manager.analyze()
        >>> report = manager.promote(dry_run=False)
        >>> report.promoted_to_short_term
        3

    Attributes:
        tiers: Tier stores keyed by tier.
        thresholds: Age, capacity and quality thresholds.
        locks: Per-record locks, shared with any other writer.
    """

    def __init__(
        self,
        tiers: dict[Tier, TierStore],
        thresholds: Optional[TierThresholds] = None,
        locks: Optional[KeyedLocks] = None,
        on_delete: Optional[DeleteHook] = None,
    ):
        missing = [tier.value for tier in Tier if tier not in tiers]
        if missing:
            raise ValueError(f"Missing tier stores: {', '.join(missing)}")
        self.tiers = tiers
        self.thresholds = thresholds or TierThresholds()
        self.locks = locks or KeyedLocks()
        self.on_delete = on_delete
        self._stop = threading.Event()
        self._stats_lock = threading.Lock()
        self._stats: dict[str, Any] = {
            "promotion_runs": 0,
            "decay_runs": 0,
            "total_promotions": 0,
            "total_deletions": 0,
            "total_decay_updates": 0,
            "total_errors": 0,
            "last_promotion_run": None,
            "last_decay_run": None,
        }

    # Cooperative cancellation

    def request_stop(self) -> None:
        """Ask running passes to stop at the next record boundary.

        The request stays in effect until clear_stop(); the scheduler clears
        it once the passes it stopped have ended.
        """
        self._stop.set()

    def clear_stop(self) -> None:
        self._stop.clear()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    # Analysis

    def counts(self) -> dict[str, int]:
        return {tier.value: store.count_active() for tier, store in self.tiers.items()}

    def analyze(self, now: Optional[datetime] = None) -> LifecycleAnalysis:
        """Plan a promotion pass without writing anything."""
        now = now or utc_now()
        thresholds = self.thresholds

        working = self.tiers[Tier.WORKING].active()
        short_term = self.tiers[Tier.SHORT_TERM].active()

        working_plan = TierPlan(Tier.WORKING)
        remaining = []
        for record in sorted(working, key=lambda r: r.created_at):
            if is_aged_out(record, Tier.WORKING, thresholds, now):
                working_plan.to_promote.append(self._decision(record, REASON_AGE, now))
            else:
                remaining.append(record)
        excess = len(remaining) - thresholds.working_max_items
        if excess > 0:
            # remaining is sorted oldest first
            for record in remaining[:excess]:
                working_plan.to_promote.append(self._decision(record, REASON_COUNT, now))

        # Short-term as it will be after the working moves
        moved_ids = set(working_plan.promote_ids())
        projected = {r.id: r for r in short_term}
        for record in working:
            if record.id in moved_ids:
                projected.setdefault(record.id, record)

        short_plan = TierPlan(Tier.SHORT_TERM)
        kept = []
        for record in sorted(projected.values(), key=lambda r: r.created_at):
            if not is_aged_out(record, Tier.SHORT_TERM, thresholds, now):
                kept.append(record)
            elif record.usage_success_rate >= thresholds.promote_threshold:
                short_plan.to_promote.append(self._decision(record, REASON_QUALITY, now))
            elif record.usage_success_rate < thresholds.delete_threshold:
                short_plan.to_delete.append(self._decision(record, REASON_LOW_QUALITY, now))
            else:
                kept.append(record)
        excess = len(kept) - thresholds.short_term_max_items
        if excess > 0:
            best = sorted(kept, key=calculate_quality, reverse=True)[:excess]
            for record in best:
                short_plan.to_promote.append(self._decision(record, REASON_COUNT, now))

        before = self.counts()
        working_moves = len(working_plan.to_promote)
        long_moves = len(short_plan.to_promote)
        after = {
            Tier.WORKING.value: before[Tier.WORKING.value] - working_moves,
            Tier.SHORT_TERM.value: (
                before[Tier.SHORT_TERM.value]
                + working_moves
                - long_moves
                - len(short_plan.to_delete)
            ),
            Tier.LONG_TERM.value: before[Tier.LONG_TERM.value] + long_moves,
        }

        return LifecycleAnalysis(
            working=working_plan,
            short_term=short_plan,
            counts_before=before,
            counts_after=after,
            analyzed_at=now,
        )

    @staticmethod
    def _decision(record: MemoryRecord, reason: str, now: datetime) -> TierDecision:
        return TierDecision(
            record_id=record.id,
            reason=reason,
            age_days=record.age_days(now),
            quality=calculate_quality(record),
        )

    # Promotion

    def promote(self, dry_run: bool = True, now: Optional[datetime] = None) -> PromotionReport:
        """Apply (or, with dry_run, only report) one promotion pass.

        Per-record failures are collected in the report and the pass goes on.
        A stop request ends the pass between records with cancelled=True.
        """
        start = time.perf_counter()
        analysis = self.analyze(now)
        report = PromotionReport(dry_run=dry_run, analysis=analysis)

        if dry_run:
            report.duration_ms = (time.perf_counter() - start) * 1000
            return report

        working = self.tiers[Tier.WORKING]
        short_term = self.tiers[Tier.SHORT_TERM]
        long_term = self.tiers[Tier.LONG_TERM]
        touched: set[Tier] = set()

        for decision in analysis.working.to_promote:
            if self._should_stop(report):
                break
            if self._move(decision, working, short_term, report):
                report.promoted_to_short_term += 1
                touched.add(Tier.WORKING)

        for decision in analysis.short_term.to_promote:
            if self._should_stop(report):
                break
            if self._move(decision, short_term, long_term, report):
                report.promoted_to_long_term += 1
                touched.add(Tier.SHORT_TERM)

        for decision in analysis.short_term.to_delete:
            if self._should_stop(report):
                break
            if self._delete(decision, short_term, report):
                report.deleted += 1
                touched.add(Tier.SHORT_TERM)

        if not report.cancelled:
            for tier in sorted(touched, key=lambda t: t.value):
                try:
                    report.compacted[tier.value] = self.tiers[tier].compact()
                except StoreError as e:
                    report.errors.append(f"compact {tier.value}: {e}")
                    logger.error(f"Compaction of {tier.value} failed: {e}")

        report.duration_ms = (time.perf_counter() - start) * 1000
        with self._stats_lock:
            self._stats["promotion_runs"] += 1
            self._stats["total_promotions"] += (
                report.promoted_to_short_term + report.promoted_to_long_term
            )
            self._stats["total_deletions"] += report.deleted
            self._stats["total_errors"] += len(report.errors)
            self._stats["last_promotion_run"] = utc_now().isoformat()

        logger.info(
            f"Promotion pass: {report.promoted_to_short_term} to short-term, "
            f"{report.promoted_to_long_term} to long-term, {report.deleted} deleted, "
            f"{len(report.errors)} errors"
            + (" (cancelled)" if report.cancelled else "")
        )
        return report

    def _should_stop(self, report: PromotionReport | DecayReport) -> bool:
        if self._stop.is_set():
            if not report.cancelled:
                logger.info("Lifecycle pass stopped on request")
            report.cancelled = True
            return True
        return False

    def _move(
        self,
        decision: TierDecision,
        source: TierStore,
        destination: TierStore,
        report: PromotionReport,
    ) -> bool:
        record_id = decision.record_id
        try:
            with self.locks.hold(record_id):
                record = source.get(record_id)
                if record is None or not record.is_active:
                    raise StoreError(f"Record {record_id} is no longer active in {source.tier.value}")
                moved_at = utc_now()
                destination.append(
                    record.model_copy(
                        update={
                            "promoted_from": source.tier,
                            "promoted_at": moved_at,
                            "updated_at": moved_at,
                            "version": record.version + 1,
                        }
                    )
                )
                source.soft_delete(
                    record_id, reason=f"promoted to {destination.tier.value} ({decision.reason})"
                )
        except CortexError as e:
            report.errors.append(f"{record_id}: {e}")
            logger.error(
                f"Failed to move {record_id} {source.tier.value} -> {destination.tier.value}: {e}"
            )
            return False
        logger.debug(
            f"Moved {record_id} {source.tier.value} -> {destination.tier.value} ({decision.reason})"
        )
        return True

    def _delete(self, decision: TierDecision, source: TierStore, report: PromotionReport) -> bool:
        record_id = decision.record_id
        try:
            with self.locks.hold(record_id):
                if not source.soft_delete(record_id, reason=decision.reason):
                    raise StoreError(f"Record {record_id} not found in {source.tier.value}")
                if self.on_delete is not None:
                    self.on_delete(record_id)
        except CortexError as e:
            report.errors.append(f"{record_id}: {e}")
            logger.error(f"Failed to delete {record_id} from {source.tier.value}: {e}")
            return False
        return True

    # Decay

    def recompute_decay(self, now: Optional[datetime] = None) -> DecayReport:
        """Refresh the stored decay score of every active record.

        Only changes larger than the decay epsilon are written.
        """
        start = time.perf_counter()
        now = now or utc_now()
        report = DecayReport()

        for tier, store in self.tiers.items():
            if report.cancelled:
                break
            for snapshot in store.active():
                if self._should_stop(report):
                    break
                report.scanned += 1
                try:
                    with self.locks.hold(snapshot.id):
                        record = store.get(snapshot.id)
                        if record is None or not record.is_active:
                            report.unchanged += 1
                            continue
                        score = tier_decay_score(record.age_days(now), tier)
                        if not needs_update(record.decay_score, score):
                            report.unchanged += 1
                            continue
                        store.update(record.id, decay_score=round(score, DECAY_PRECISION))
                        report.updated += 1
                except CortexError as e:
                    report.errors.append(f"{snapshot.id}: {e}")
                    logger.error(f"Decay update failed for {snapshot.id} in {tier.value}: {e}")

        report.duration_ms = (time.perf_counter() - start) * 1000
        with self._stats_lock:
            self._stats["decay_runs"] += 1
            self._stats["total_decay_updates"] += report.updated
            self._stats["total_errors"] += len(report.errors)
            self._stats["last_decay_run"] = utc_now().isoformat()

        logger.info(
            f"Decay pass: {report.updated}/{report.scanned} updated, {len(report.errors)} errors"
            + (" (cancelled)" if report.cancelled else "")
        )
        return report

    def get_summary(self) -> dict[str, Any]:
        with self._stats_lock:
            stats = dict(self._stats)
        return {
            "counts": self.counts(),
            "thresholds": {
                "working_max_age_hours": self.thresholds.working_max_age_hours,
                "working_max_items": self.thresholds.working_max_items,
                "short_term_max_age_days": self.thresholds.short_term_max_age_days,
                "short_term_max_items": self.thresholds.short_term_max_items,
                "promote_threshold": self.thresholds.promote_threshold,
                "delete_threshold": self.thresholds.delete_threshold,
            },
            "stats": stats,
            "stop_requested": self.stop_requested,
        }

# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Periodic maintenance scheduling.

Runs tier promotion and decay recompute as two independent asyncio tasks.
The lifecycle work itself is synchronous and runs in a worker thread, so
queries on the event loop never wait for it. stop() returns only after any
pass already running in a worker thread has ended, then clears the stop
request so later manual passes run normally.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime
from typing import Any, Callable, Optional

from cortex_memory.config import SchedulerConfig
from cortex_memory.lifecycle.tiers import DecayReport, PromotionReport, TierLifecycleManager
from cortex_memory.schemas.memory_types import utc_now

logger = logging.getLogger(__name__)

ERROR_HISTORY = 10


class MaintenanceScheduler:
    """Drive a TierLifecycleManager on fixed intervals.

    Example:
        >>> scheduler = MaintenanceScheduler(lifecycle)
        >>> scheduler.start()
        >>> ...
        >>> await scheduler.stop()

    Attributes:
        lifecycle: Manager whose promote/recompute_decay passes are run.
        config: Intervals and run-on-start flag.
    """

    def __init__(
        self,
        lifecycle: TierLifecycleManager,
        config: Optional[SchedulerConfig] = None,
        write_allowed: Optional[Callable[[], bool]] = None,
    ):
        """Initialize the scheduler.

        Args:
            lifecycle: Lifecycle manager to drive.
            config: Scheduler intervals.
            write_allowed: Checked before each pass; passes are skipped
                while it returns False.
        """
        self.lifecycle = lifecycle
        self.config = config or SchedulerConfig()
        self._write_allowed = write_allowed
        self._promotion_task: asyncio.Task[None] | None = None
        self._decay_task: asyncio.Task[None] | None = None
        self._promotion_lock = asyncio.Lock()
        self._decay_lock = asyncio.Lock()
        self._passes: set[asyncio.Future[Any]] = set()
        self._errors: deque[dict[str, str]] = deque(maxlen=ERROR_HISTORY)
        self._stats: dict[str, Any] = {
            "promotion_runs": 0,
            "decay_runs": 0,
            "skipped_runs": 0,
            "last_promotion": None,
            "last_decay": None,
        }
        self._started_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return any(
            task is not None and not task.done()
            for task in (self._promotion_task, self._decay_task)
        )

    def start(self) -> None:
        """Start both periodic tasks on the running event loop."""
        if self.is_running:
            logger.debug("Maintenance scheduler already running")
            return
        self.lifecycle.clear_stop()
        self._started_at = utc_now()
        self._promotion_task = asyncio.create_task(
            self._loop(
                "promotion",
                self.trigger_promotion,
                self.config.promotion_interval_seconds,
                self.config.run_on_start,
            )
        )
        self._decay_task = asyncio.create_task(
            self._loop("decay", self.trigger_decay, self.config.decay_interval_seconds, False)
        )
        logger.info(
            f"Maintenance scheduled: promotion every {self.config.promotion_interval_seconds:.0f}s, "
            f"decay every {self.config.decay_interval_seconds:.0f}s"
        )

    async def stop(self) -> None:
        """Stop both tasks and wait for any running pass to end.

        A pass in progress ends at its next record boundary. The stop
        request is cleared afterwards.
        """
        self.lifecycle.request_stop()
        tasks = [t for t in (self._promotion_task, self._decay_task) if t is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._passes:
            logger.info(f"Waiting for {len(self._passes)} maintenance pass(es) to end")
            await asyncio.gather(*list(self._passes), return_exceptions=True)
        self.lifecycle.clear_stop()
        self._promotion_task = None
        self._decay_task = None
        logger.info("Maintenance scheduler stopped")

    async def _loop(
        self,
        name: str,
        job: Callable[[], Any],
        interval_seconds: float,
        run_immediately: bool,
    ) -> None:
        if run_immediately:
            await self._run_job(name, job)
        while True:
            try:
                await asyncio.sleep(interval_seconds)
            except asyncio.CancelledError:
                logger.info(f"Periodic {name} cancelled")
                break
            await self._run_job(name, job)

    async def _run_job(self, name: str, job: Callable[[], Any]) -> None:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._errors.append(
                {"job": name, "error": str(e), "timestamp": utc_now().isoformat()}
            )
            logger.error(f"Periodic {name} failed: {e}")

    async def _run_pass(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run a lifecycle pass in a worker thread.

        The thread outlives a cancelled caller, so the pass is tracked until
        it ends and stop() can wait for it.
        """
        future = asyncio.ensure_future(asyncio.to_thread(func, *args))
        self._passes.add(future)
        future.add_done_callback(self._passes.discard)
        return await asyncio.shield(future)

    def _can_write(self, name: str) -> bool:
        if self._write_allowed is None or self._write_allowed():
            return True
        self._stats["skipped_runs"] += 1
        logger.info(f"Skipping {name}: writes are disabled at the current degradation level")
        return False

    async def trigger_promotion(self) -> Optional[PromotionReport]:
        """Run one promotion pass now. Returns None if writes are disabled."""
        if not self._can_write("promotion"):
            return None
        async with self._promotion_lock:
            report = await self._run_pass(self.lifecycle.promote, False)
        self._stats["promotion_runs"] += 1
        self._stats["last_promotion"] = utc_now().isoformat()
        return report

    async def trigger_decay(self) -> Optional[DecayReport]:
        """Run one decay recompute now. Returns None if writes are disabled."""
        if not self._can_write("decay"):
            return None
        async with self._decay_lock:
            report = await self._run_pass(self.lifecycle.recompute_decay)
        self._stats["decay_runs"] += 1
        self._stats["last_decay"] = utc_now().isoformat()
        return report

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "running": self.is_running,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "promotion_interval_seconds": self.config.promotion_interval_seconds,
            "decay_interval_seconds": self.config.decay_interval_seconds,
            "recent_errors": list(self._errors),
        }

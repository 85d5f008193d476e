"""Background scheduler that periodically refreshes stale link metadata."""

from __future__ import annotations

import asyncio
import enum
import logging
import random
from typing import Any, Callable, Optional

from linkshelf.config.database import SessionLocal
from linkshelf.config.settings import settings
from linkshelf.crawlers.log_utils import redact_secrets, sanitize_log_extra
from linkshelf.models.link import utcnow
from linkshelf.repositories.links import SQLAlchemyLinkRepository
from linkshelf.services.enrichment import LinkEnricher

logger = logging.getLogger(__name__)

MIN_INTERVAL_SECONDS = 60


class SchedulerState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class RefreshScheduler:
    """Runs refresh batches on a jittered fixed interval until shut down.

    The loop starts IDLE, moves to RUNNING for the duration of one batch and
    returns to IDLE whatever the outcome. Batches never overlap: ticks that
    fall inside a running batch are skipped. The shutdown event is the only
    way to stop the loop, and `running` is derived from it.
    """

    def __init__(
        self,
        repository: Any,
        enricher: LinkEnricher,
        *,
        interval_hours: Optional[float] = None,
        jitter_percent: Optional[int] = None,
        stale_after_days: Optional[int] = None,
        batch_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        shutdown_event: Optional[asyncio.Event] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._repository = repository
        self._enricher = enricher
        self._interval_hours = interval_hours or settings.UPDATE_INTERVAL_HOURS
        self._jitter_percent = jitter_percent if jitter_percent is not None else settings.JITTER_PERCENT
        self._stale_after_days = stale_after_days or settings.STALE_AFTER_DAYS
        self._batch_size = batch_size or settings.BATCH_SIZE
        self._concurrency = max(concurrency or settings.REFRESH_CONCURRENCY, 1)
        self._shutdown = shutdown_event or asyncio.Event()
        self._rng = rng or random.Random()
        self._batch_lock = asyncio.Lock()
        self._state = SchedulerState.IDLE
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return not self._shutdown.is_set()

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def enricher(self) -> LinkEnricher:
        return self._enricher

    def shutdown_handle(self) -> asyncio.Event:
        return self._shutdown

    def next_interval_seconds(self) -> float:
        base_seconds = self._interval_hours * 3600
        jitter_range = base_seconds * self._jitter_percent / 100
        jitter = self._rng.uniform(-jitter_range, jitter_range) if jitter_range > 0 else 0.0
        return max(base_seconds + jitter, MIN_INTERVAL_SECONDS)

    def start(self) -> asyncio.Task:
        """Spawn the scheduler loop on the running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(), name="refresh-scheduler")
        return self._task

    async def stop(self, timeout: Optional[float] = None) -> None:
        self._shutdown.set()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._task, timeout)
        except asyncio.TimeoutError:
            logger.warning("Scheduler did not stop in time, cancelling")
            self._task.cancel()

    async def run_forever(self) -> None:
        logger.info(
            "Background scheduler started",
            extra=sanitize_log_extra(
                update_interval_hours=self._interval_hours,
                batch_size=self._batch_size,
                jitter_percent=self._jitter_percent,
                stale_after_days=self._stale_after_days,
            ),
        )
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.next_interval_seconds()

        while True:
            if await self._wait_for_shutdown(max(next_tick - loop.time(), 0.0)):
                logger.info("Scheduler shutdown signal received")
                break

            batch_started = loop.time()
            try:
                await self.run_batch()
            except Exception as exc:
                logger.exception("Scheduled task failed", extra=sanitize_log_extra(error=str(exc)))

            interval = self.next_interval_seconds()
            next_tick = batch_started + interval
            skipped = 0
            while next_tick <= loop.time():
                next_tick += interval
                skipped += 1
            if skipped:
                logger.warning("Refresh batch overran its interval", extra={"skipped_ticks": skipped})

        logger.info("Scheduler stopped")

    async def run_batch(self) -> dict[str, Any]:
        """Refresh one batch of stale links. Never raises."""
        if self._batch_lock.locked():
            logger.info("Refresh batch already running, skipping")
            return {"success": False, "skipped": True}

        async with self._batch_lock:
            self._state = SchedulerState.RUNNING
            try:
                return await self._refresh_stale_links()
            finally:
                self._state = SchedulerState.IDLE

    async def _refresh_stale_links(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "started_at": utcnow().isoformat(),
            "selected": 0,
            "refreshed": 0,
            "failed": 0,
            "errors": [],
        }

        try:
            links = self._repository.get_stale_links(self._stale_after_days, self._batch_size)
        except Exception as exc:
            sanitized_error = redact_secrets(str(exc))
            logger.exception("Failed to select links for refresh", extra={"error": sanitized_error})
            stats["errors"].append(sanitized_error)
            stats["success"] = False
            stats["completed_at"] = utcnow().isoformat()
            return stats

        stats["selected"] = len(links)
        if not links:
            logger.debug("No links need refreshing")

        for i in range(0, len(links), self._concurrency):
            chunk = links[i:i + self._concurrency]
            results = await asyncio.gather(
                *(self._enricher.refresh_link(link) for link in chunk),
                return_exceptions=True,
            )

            for link, result in zip(chunk, results):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    stats["failed"] += 1
                    sanitized_error = redact_secrets(str(result))
                    stats["errors"].append(f"{link.id}: {sanitized_error}")
                    logger.warning(
                        "Failed to refresh link",
                        extra=sanitize_log_extra(link_id=str(link.id), url=link.url, error=sanitized_error),
                    )
                else:
                    stats["refreshed"] += 1

        stats["completed_at"] = utcnow().isoformat()
        stats["success"] = stats["failed"] == 0
        if links:
            logger.info(
                "Link refresh cycle completed",
                extra={"successful": stats["refreshed"], "failed": stats["failed"], "total": stats["selected"]},
            )
        return stats

    async def _wait_for_shutdown(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return self._shutdown.is_set()


def build_refresh_scheduler(session_factory: Callable[[], Any] = SessionLocal) -> RefreshScheduler:
    """Wire a scheduler with its own repository, enricher and shutdown event."""
    repository = SQLAlchemyLinkRepository(session_factory)
    return RefreshScheduler(repository, LinkEnricher(repository))

"""Background scheduler for the system-wide retention sweep."""

import asyncio
import contextlib
from dataclasses import dataclass

from fingov.core.logging import get_logger
from fingov.governance.engine import SCHEDULED_SWEEP_SOURCE, GovernanceEngine
from fingov.governance.types import SweepSummary

logger = get_logger(__name__)


@dataclass
class RetentionSchedulerConfig:
    """Configuration for the RetentionSweepScheduler."""

    interval_seconds: float = 6 * 3600
    """How often to run the sweep."""

    dry_run: bool = False
    """Report only; used to rehearse a policy change."""

    source: str = SCHEDULED_SWEEP_SOURCE
    """Trigger label stored on jobs and audit events."""


class RetentionSweepScheduler:
    """Runs the retention sweep on a fixed interval.

    Each tick also reports erasures that started but never finished.
    """

    def __init__(self, engine: GovernanceEngine, config: RetentionSchedulerConfig | None = None):
        self.engine = engine
        self.config = config or RetentionSchedulerConfig()
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self.last_summary: SweepSummary | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._background_loop())
        logger.info("Retention scheduler started", interval_seconds=self.config.interval_seconds)

    async def stop(self) -> None:
        """Stop the background loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Retention scheduler stopped")

    async def run_once(self) -> SweepSummary:
        """Run one sweep tick immediately."""
        summary = await self.engine.run_scheduled_retention_sweep(
            dry_run=self.config.dry_run, source=self.config.source
        )
        self.last_summary = summary

        interrupted = await self.engine.find_interrupted_erasures()
        for marker in interrupted:
            logger.warning(
                "Interrupted account erasure detected",
                marker_id=marker.marker_id,
                user_id=marker.user_id,
                started_at=marker.started_at,
                age_ms=marker.age_ms,
            )
        return summary

    async def _background_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.config.interval_seconds)
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in retention scheduler loop", error=str(e))

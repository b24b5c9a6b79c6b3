import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import Settings, get_settings
from sync import SyncOrchestrator


logger = logging.getLogger(__name__)


class SyncScheduler:
    """Periodic background sync on the caller's event loop."""

    def __init__(
        self, orchestrator: SyncOrchestrator, settings: Optional[Settings] = None
    ) -> None:
        self.orchestrator = orchestrator
        self.settings = settings or get_settings()
        self.scheduler = AsyncIOScheduler(timezone=self.settings.timezone)

    async def _run_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        outcome = await self.orchestrator.sync_recent()
        if outcome.success:
            logger.info(
                f"scheduler_run: source={source} new={outcome.new_transactions} "
                f"total={outcome.total_transactions}"
            )
        else:
            logger.warning(f"scheduler_run: source={source} error={outcome.error}")

    def start(self) -> bool:
        minutes = self.settings.auto_sync_minutes
        if minutes <= 0:
            logger.info("Scheduler disabled (auto-sync interval is 0)")
            return False

        self.scheduler.add_job(
            self._run_job,
            IntervalTrigger(minutes=minutes),
            args=["interval"],
            id="auto_sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )
        self.scheduler.start()
        logger.info(f"Scheduler started with {minutes}-minute auto-sync")
        return True

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

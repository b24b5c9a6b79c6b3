import asyncio
import copy

from config import get_settings
from scheduler import SyncScheduler
from sync import SyncOutcome


class FakeOrchestrator:
    def __init__(self) -> None:
        self.runs = 0

    async def sync_recent(self):
        self.runs += 1
        return SyncOutcome(success=True, new_transactions=2, total_transactions=5)


def _settings(minutes: int):
    settings = copy.copy(get_settings())
    settings.auto_sync_minutes = minutes
    return settings


def test_scheduler_disabled_when_interval_is_zero() -> None:
    scheduler = SyncScheduler(FakeOrchestrator(), _settings(0))

    assert scheduler.start() is False
    assert not scheduler.scheduler.running


def test_scheduler_registers_single_interval_job() -> None:
    async def scenario():
        scheduler = SyncScheduler(FakeOrchestrator(), _settings(15))
        started = scheduler.start()
        job = scheduler.scheduler.get_job("auto_sync")
        scheduler.stop()
        return started, job

    started, job = asyncio.run(scenario())

    assert started is True
    assert job.max_instances == 1
    assert job.trigger.interval.total_seconds() == 15 * 60


def test_run_job_triggers_recent_sync() -> None:
    orchestrator = FakeOrchestrator()
    scheduler = SyncScheduler(orchestrator, _settings(15))

    asyncio.run(scheduler._run_job("manual"))

    assert orchestrator.runs == 1

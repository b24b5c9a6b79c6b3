from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Union
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session, sessionmaker

from config import Settings, get_settings
from normalizer import normalize_batch
from secure_storage import SecureStorage
from services import TransactionService, init_store


logger = logging.getLogger(__name__)

ALREADY_RUNNING = "Sync already in progress"


class TransactionSource(Protocol):
    async def get_all_transactions(
        self,
        from_date: Union[date, str, None] = None,
        to_date: Union[date, str, None] = None,
    ) -> list[dict[str, Any]]:
        ...


class SyncState(str, Enum):
    idle = "idle"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"


@dataclass(frozen=True)
class SyncOutcome:
    success: bool
    new_transactions: int = 0
    total_transactions: int = 0
    last_sync_time: Optional[datetime] = None
    error: Optional[str] = None
    invalid_transactions: int = 0
    failed_upserts: int = 0


class SyncOrchestrator:
    """Runs fetch -> normalize -> upsert, one run at a time.

    The running check and the state change happen with no ``await`` between
    them, so on a single event loop a second caller always sees ``running``.
    """

    def __init__(
        self,
        source: TransactionSource,
        session_factory: sessionmaker[Session],
        storage: SecureStorage,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.source = source
        self.session_factory = session_factory
        self.storage = storage
        self.settings = settings or get_settings()
        self.clock = clock
        self.state = SyncState.idle
        self.last_state: Optional[SyncState] = None
        self.last_outcome: Optional[SyncOutcome] = None
        self._store_ready = False

    def is_sync_in_progress(self) -> bool:
        return self.state == SyncState.running

    def last_sync_time(self) -> Optional[datetime]:
        return self.storage.get_last_sync_time()

    def recent_window(self, today: Optional[date] = None) -> tuple[date, date]:
        today = today or datetime.now(ZoneInfo(self.settings.timezone)).date()
        return today - timedelta(days=self.settings.sync_window_days), today

    async def sync_recent(self, today: Optional[date] = None) -> SyncOutcome:
        from_date, to_date = self.recent_window(today)
        return await self.sync(from_date, to_date)

    async def sync(
        self,
        from_date: Union[date, str, None] = None,
        to_date: Union[date, str, None] = None,
    ) -> SyncOutcome:
        if self.state == SyncState.running:
            logger.warning("sync_rejected: already running")
            return SyncOutcome(success=False, error=ALREADY_RUNNING)
        self.state = SyncState.running

        try:
            outcome = await self._run(from_date, to_date)
        except Exception as exc:  # noqa: BLE001
            logger.exception("sync_failed: unexpected error")
            outcome = SyncOutcome(success=False, error=str(exc) or type(exc).__name__)
        finally:
            self.state = SyncState.idle

        self.last_state = SyncState.succeeded if outcome.success else SyncState.failed
        self.last_outcome = outcome
        return outcome

    def _ensure_store(self) -> None:
        if self._store_ready:
            return
        with self.session_factory() as session:
            init_store(session)
        self._store_ready = True

    async def _run(
        self,
        from_date: Union[date, str, None],
        to_date: Union[date, str, None],
    ) -> SyncOutcome:
        self._ensure_store()

        records = await self.source.get_all_transactions(from_date, to_date)
        batch = normalize_batch(records)
        logger.info(
            f"sync_run: fetched={len(records)} valid={len(batch.valid)} "
            f"invalid={len(batch.rejected)}"
        )

        if not batch.valid and batch.rejected:
            return SyncOutcome(
                success=False,
                error=(
                    "No valid transactions found. "
                    f"{len(batch.rejected)} transactions had missing required fields."
                ),
                invalid_transactions=len(batch.rejected),
            )

        with self.session_factory() as session:
            service = TransactionService(session)
            result = service.batch_upsert(batch.valid)
            total = service.count()

        finished_at = self.clock()
        self.storage.save_last_sync_time(finished_at)
        logger.info(
            f"sync_done: applied={result.applied} failed={result.failed} total={total}"
        )
        return SyncOutcome(
            success=True,
            new_transactions=result.applied,
            total_transactions=total,
            last_sync_time=finished_at,
            invalid_transactions=len(batch.rejected),
            failed_upserts=result.failed,
        )

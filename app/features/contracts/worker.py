"""
Periodic lifecycle worker.

Runs at SESSION_CHECK_INTERVAL_SECONDS: expires idle sessions, deactivates
users whose contract ended and activates pending users whose start date
arrived. Each run is one transaction.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from app.core.database.engine import AsyncSessionLocal
from app.features.sessions.tracker import expire_idle_sessions
from app.features.users.lifecycle import activate_pending_users, check_and_deactivate_expired_contracts
from app.utils import get_logger, utcnow


log = get_logger(__name__)


@dataclass
class WorkerStats:
    """Statistics for the background worker."""
    started_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    run_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None


class LifecycleWorker:

    def __init__(self, interval_seconds: int, session_factory=AsyncSessionLocal):
        self.interval = interval_seconds
        self.session_factory = session_factory
        self.stats = WorkerStats()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self.stats.started_at = utcnow()
        self._task = asyncio.create_task(self._run_loop())
        log.info("Lifecycle worker started (every %ss)", self.interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        log.info("Lifecycle worker stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                log.exception("Lifecycle sweep failed")
                self.stats.error_count += 1
                self.stats.last_error = str(e)

    async def run_once(self) -> dict:
        """One sweep in its own transaction."""
        async with self.session_factory() as db:
            try:
                expired_sessions = await expire_idle_sessions(db)
                expired = await check_and_deactivate_expired_contracts(db)
                pending = await activate_pending_users(db)
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        self.stats.run_count += 1
        self.stats.last_run_at = utcnow()
        return {
            "expired_sessions": expired_sessions,
            "deactivated_count": expired["deactivated_count"],
            "activated_count": pending["activated_count"],
        }

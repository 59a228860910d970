import asyncio
import logging
from typing import Callable

from sqlalchemy.orm import Session

from stepup.services.sessions import VerificationSessionManager

logger = logging.getLogger(__name__)


async def _sweep_loop(
    stop_event: asyncio.Event,
    sweep: Callable[[], int],
    interval_seconds: int,
) -> None:
    while not stop_event.is_set():
        await asyncio.sleep(interval_seconds)
        try:
            sweep()
        except Exception:
            logger.exception("Verification session sweep failed")


class SessionSweeper:
    """Periodically purges finished sessions; verification never depends on it."""

    def __init__(self, sessions: VerificationSessionManager, session_factory: Callable[[], Session]) -> None:
        self._sessions = sessions
        self._session_factory = session_factory
        self._task: asyncio.Task | None = None
        self._stop = asyncio.Event()

    def sweep_once(self) -> int:
        with self._session_factory() as db:
            return self._sessions.cleanup(db)

    def start(self, interval_seconds: int = 300) -> None:
        if self._task and not self._task.done():
            return
        self._stop.clear()
        self._task = asyncio.create_task(_sweep_loop(self._stop, self.sweep_once, interval_seconds))

    async def stop(self) -> None:
        if self._task:
            self._stop.set()
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

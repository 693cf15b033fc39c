"""
Background session-timeout sweep.
"""

import asyncio

from bizadvisor.context.store import ContextStore
from bizadvisor.shared.logging import get_logger

logger = get_logger(__name__)


class SessionSweeper:
    """Periodically closes sessions idle beyond the store's timeout."""

    def __init__(self, store: ContextStore, interval_seconds: float = 60.0) -> None:
        self._store = store
        self._interval = interval_seconds
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the sweep background task."""
        if self._running:
            logger.warning("Session sweeper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Session sweeper started", extra={"interval_seconds": self._interval})

    async def stop(self) -> None:
        """Stop the sweep background task."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Session sweeper stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Session sweep failed")
            await asyncio.sleep(self._interval)

    async def run_once(self) -> list[str]:
        """Run a single sweep.

        Returns:
            Ids of the sessions closed.
        """
        return await self._store.close_expired()

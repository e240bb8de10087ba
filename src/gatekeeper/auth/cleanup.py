"""
Periodic purge of expired and revoked sessions.

The only background task in the process. The purge itself is a single
server-side delete, so it runs safely alongside request traffic; a failed
sweep is logged and retried at the next interval.
"""

from __future__ import annotations

import asyncio
import contextlib

from gatekeeper.auth.service import AuthService
from gatekeeper.commons.logging import logger


class SessionCleanupWorker:
    def __init__(self, svc: AuthService, *, interval_s: float) -> None:
        self.svc = svc
        self.interval_s = interval_s
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.interval_s <= 0:
            logger.info("Session cleanup disabled")
            return
        if self.running:
            logger.warning("Session cleanup already running")
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Session cleanup started (every %.0fs)", self.interval_s)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Session cleanup stopped")

    async def run_once(self) -> int:
        try:
            return await self.svc.purge_expired_sessions()
        except Exception as exc:
            logger.exception("Session cleanup failed", exc_info=exc)
            return 0

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            await self.run_once()

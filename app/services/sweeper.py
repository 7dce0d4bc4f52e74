# app/services/sweeper.py
"""Background task that runs the invitation sweep on a fixed interval."""
import asyncio
import logging
from typing import Callable, Optional

import asyncpg

from app.services import invitations

logger = logging.getLogger(__name__)


class InvitationSweeper:
    """
    Start/stop wrapper around a periodic `invitations.sweep`.

    `pool_getter` is called on every tick so a pool created after startup (or
    replaced in tests) is picked up. A failed tick is logged and retried on the
    next one.
    """

    def __init__(self, pool_getter: Callable[[], Optional[asyncpg.Pool]], interval_seconds: float):
        self._pool_getter = pool_getter
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        if self._interval <= 0:
            logger.info("Invitation sweep disabled (interval %s)", self._interval)
            return
        if self._task is not None:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Invitation sweep scheduled every %ss", self._interval)

    async def stop(self) -> None:
        if self._task is None or self._stop_event is None:
            return
        self._stop_event.set()
        task = self._task
        try:
            await task
        finally:
            self._task = None
            self._stop_event = None

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                await self.run_once()

    async def run_once(self) -> Optional[dict]:
        pool = self._pool_getter()
        if pool is None:
            logger.warning("Invitation sweep skipped: database pool not available")
            return None
        try:
            async with pool.acquire() as conn:
                return await invitations.sweep(conn)
        except Exception:  # pragma: no cover
            logger.exception("Invitation sweep failed; will retry next interval")
            return None

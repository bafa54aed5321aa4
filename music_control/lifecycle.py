"""Session lifecycle: periodic expiry sweep and per-disconnect cleanup."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from music_control.connection import PeerConnection
from music_control.registry import SessionRegistry

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = 24 * 60 * 60


class LifecycleManager:
    """Owns the sweep task for a registry.

    The sweep runs once per ``interval_seconds`` for as long as the task is
    alive; there is no backoff or jitter.
    """

    def __init__(self, registry: SessionRegistry, interval_seconds: float = SWEEP_INTERVAL_SECONDS):
        self.registry = registry
        self.interval_seconds = interval_seconds
        self.sweeps_run = 0
        self.sessions_expired = 0
        self._sweep_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def start(self) -> None:
        if self.running:
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.debug(f"Started session sweep (every {self.interval_seconds:.0f}s)")

    async def stop(self) -> None:
        if self._sweep_task and not self._sweep_task.done():
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
        self._sweep_task = None

    async def _sweep_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.sweep_now()
            except asyncio.CancelledError:
                logger.debug("[SWEEP] Sweep loop cancelled")
                raise
            except Exception as e:
                logger.error(f"[SWEEP] Loop error: {e}", exc_info=True)

    async def sweep_now(self) -> list:
        removed = await self.registry.sweep()
        self.sweeps_run += 1
        self.sessions_expired += len(removed)
        return removed

    async def detach(self, connection: PeerConnection) -> None:
        """Detach a closing connection from the registry; never raises."""
        try:
            await self.registry.detach_connection(connection)
        except Exception as e:
            logger.error(f"Error removing connection {connection!r}: {e}", exc_info=True)

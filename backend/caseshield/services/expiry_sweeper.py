"""
Background expiry sweep for access sessions.

Runs ``AccessControlService.sweep_expired()`` every
``SWEEP_INTERVAL_SECONDS``. Expiry is also evaluated lazily on every
approve/reject/cancel, so the sweeper only bounds how long an untouched
session can stay PENDING/ACTIVE past its deadline.

Usage:
    sweeper = ExpirySweeper(access_control, interval=60.0)
    await sweeper.start()
    ...
    await sweeper.stop()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from caseshield.services.access_control import AccessControlService

logger = logging.getLogger(__name__)


class ExpirySweeper:

    def __init__(self, access_control: AccessControlService, interval: float = 60.0) -> None:
        self._access = access_control
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self.runs = 0
        self.expired_total = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(f"[ACCESS] Expiry sweeper started (every {self._interval:g}s)")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info(
            f"[ACCESS] Expiry sweeper stopped — {self.runs} runs, "
            f"{self.expired_total} sessions expired"
        )

    async def run_once(self) -> int:
        expired = await self._access.sweep_expired()
        self.runs += 1
        self.expired_total += len(expired)
        return len(expired)

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error(f"[ACCESS] Expiry sweep failed: {exc}")
            await asyncio.sleep(self._interval)

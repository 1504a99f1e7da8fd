"""Mutual exclusion for commands issued on a single port."""

from __future__ import annotations

import asyncio
import logging

from comctl.core.errors import LockTimeoutError

LOGGER = logging.getLogger(__name__)


class PortLock:
    """Async mutex with a bounded wait.

    With ``fifo=True`` waiters are woken in arrival order. With ``fifo=False``
    waiters re-sample availability every ``poll_interval_s`` and whichever
    poll runs first after a release wins.
    """

    def __init__(
        self,
        name: str = "",
        *,
        fifo: bool = True,
        wait_s: float = 5.0,
        poll_interval_s: float = 0.5,
    ) -> None:
        self.name = name
        self.fifo = fifo
        self.wait_s = wait_s
        self.poll_interval_s = poll_interval_s
        self._lock = asyncio.Lock()

    def locked(self) -> bool:
        return self._lock.locked()

    async def acquire(self) -> None:
        if self.fifo:
            await self._acquire_fifo()
        else:
            await self._acquire_polling()

    async def _acquire_fifo(self) -> None:
        if self._lock.locked():
            LOGGER.debug("Port %s is busy - waiting...", self.name)
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self.wait_s)
        except asyncio.TimeoutError as exc:
            raise LockTimeoutError(self._timeout_message()) from exc

    async def _acquire_polling(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait_s
        while self._lock.locked():
            if loop.time() >= deadline:
                raise LockTimeoutError(self._timeout_message())
            LOGGER.debug("Port %s is busy - waiting...", self.name)
            await asyncio.sleep(self.poll_interval_s)
        # Uncontended after the check above, so this does not suspend.
        await self._lock.acquire()

    def release(self) -> None:
        self._lock.release()

    def _timeout_message(self) -> str:
        return (
            f"Timeout after {self.wait_s:g}s while waiting for port {self.name} "
            "to become available."
        )

    async def __aenter__(self) -> PortLock:
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.release()

"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from comctl.core.model import PortInfo

DataCallback = Callable[[bytes], None]
ErrorCallback = Callable[[Exception], None]


class Link(Protocol):
    """One open handle to a physical port."""

    @property
    def is_open(self) -> bool:
        """True while the underlying port is open."""

    async def open(self) -> None:
        """Open the port; raise ``TransportOpenError`` on failure."""

    async def write(self, data: bytes) -> None:
        """Write data; raise ``TransportSendError`` on failure."""

    async def close(self) -> None:
        """Close the port; raise ``TransportCloseError`` on failure."""


class Transport(Protocol):
    def list_ports(self) -> list[PortInfo]:
        """Enumerate the ports currently present on the host."""

    def create_link(
        self,
        path: str,
        baud_rate: int,
        *,
        on_data: DataCallback,
        on_error: ErrorCallback,
    ) -> Link:
        """Create an unopened link that reports incoming data and errors via callbacks."""

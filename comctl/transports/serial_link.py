"""Serial transport implementation using pyserial and pyserial-asyncio."""

from __future__ import annotations

import asyncio
import logging

import serial
import serial_asyncio
from serial.tools import list_ports

from comctl.core.errors import (
    DeviceDiscoveryError,
    TransportCloseError,
    TransportOpenError,
    TransportSendError,
)
from comctl.core.model import PortInfo
from comctl.transports.base import DataCallback, ErrorCallback

LOGGER = logging.getLogger(__name__)


class _LinkProtocol(asyncio.Protocol):
    def __init__(self, link: SerialLink) -> None:
        self._link = link

    def data_received(self, data: bytes) -> None:
        self._link.on_data(data)

    def connection_lost(self, exc: Exception | None) -> None:
        self._link._connection_lost(exc)


class SerialLink:
    def __init__(
        self,
        path: str,
        baud_rate: int,
        *,
        on_data: DataCallback,
        on_error: ErrorCallback,
    ) -> None:
        self.path = path
        self.baud_rate = baud_rate
        self.on_data = on_data
        self.on_error = on_error
        self._transport: asyncio.Transport | None = None
        self._closed: asyncio.Future[None] | None = None

    @property
    def is_open(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    async def open(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            transport, _ = await serial_asyncio.create_serial_connection(
                loop,
                lambda: _LinkProtocol(self),
                self.path,
                baudrate=self.baud_rate,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            raise TransportOpenError(f"Could not open serial port {self.path}: {exc}") from exc
        self._transport = transport
        self._closed = loop.create_future()

    async def write(self, data: bytes) -> None:
        if not self.is_open:
            raise TransportSendError(f"Serial port {self.path} is not open")
        try:
            self._transport.write(data)
        except (serial.SerialException, OSError) as exc:
            raise TransportSendError(f"Write to serial port {self.path} failed: {exc}") from exc

    async def close(self) -> None:
        transport, closed = self._transport, self._closed
        if transport is None:
            return
        try:
            transport.close()
        except (serial.SerialException, OSError) as exc:
            raise TransportCloseError(f"Could not close serial port {self.path}: {exc}") from exc
        if closed is not None:
            await closed

    def _connection_lost(self, exc: Exception | None) -> None:
        self._transport = None
        if self._closed is not None and not self._closed.done():
            self._closed.set_result(None)
        if exc is not None:
            self.on_error(exc)


def _hex_id(value: int | None) -> str | None:
    return f"{value:04x}" if value is not None else None


class PySerialTransport:
    def list_ports(self) -> list[PortInfo]:
        try:
            found = list_ports.comports()
        except (serial.SerialException, OSError) as exc:
            raise DeviceDiscoveryError(f"Serial port enumeration failed: {exc}") from exc

        ports = [
            PortInfo(
                path=info.device,
                manufacturer=info.manufacturer,
                serial_number=info.serial_number,
                pnp_id=info.hwid,
                location_id=info.location,
                product_id=_hex_id(info.pid),
                vendor_id=_hex_id(info.vid),
            )
            for info in found
        ]
        LOGGER.debug("Enumerated %d serial ports", len(ports))
        return sorted(ports, key=lambda p: p.path)

    def create_link(
        self,
        path: str,
        baud_rate: int,
        *,
        on_data: DataCallback,
        on_error: ErrorCallback,
    ) -> SerialLink:
        return SerialLink(path, baud_rate, on_data=on_data, on_error=on_error)

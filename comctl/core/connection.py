"""Per-port protocol state machine.

A connection moves between four states:

  closed      no link open
  connecting  open requested, awaiting confirmation
  background  open and idle; incoming data goes to the background log
  busy        a command was written and a response is being awaited

Commands are serialized through a ``PortLock``. Each macro's response is
matched against the whole accumulated read buffer, since replies may arrive
split across several deliveries. Every failure path leaves the connection
in ``background`` or ``closed``, never ``busy``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Mapping, Sequence
from typing import Any

from comctl.core.background_log import BackgroundLog
from comctl.core.errors import (
    ConfigurationError,
    ConnectTimeoutError,
    ResponseTimeoutError,
    TransportCloseError,
    TransportError,
    TransportOpenError,
    TransportSendError,
)
from comctl.core.model import ConnectionState, DeviceProfile, Macro, PortInfo
from comctl.core.port_lock import PortLock
from comctl.transports.base import Link, Transport

LOGGER = logging.getLogger(__name__)

CONNECT_POLL_INTERVAL_S = 0.1
CONNECT_POLL_ATTEMPTS = 10


class Connection:
    def __init__(
        self,
        path: str,
        transport: Transport,
        *,
        timeout_s: float = 5.0,
        line_terminator: str = "\n",
        lock: PortLock | None = None,
    ) -> None:
        self.path = path
        self.transport = transport
        self.timeout_s = timeout_s
        self.line_terminator = line_terminator
        self.lock = lock or PortLock(path)

        self.state = ConnectionState.CLOSED
        self.profile: DeviceProfile | None = None
        self.name: str | None = None
        self.last_error: str | None = None
        self.background_log = BackgroundLog()

        self.manufacturer: str | None = None
        self.serial_number: str | None = None
        self.pnp_id: str | None = None
        self.location_id: str | None = None
        self.product_id: str | None = None
        self.vendor_id: str | None = None

        self._link: Link | None = None
        self._read_pattern: re.Pattern[str] | None = None
        self._read_buffer = ""
        self._read_waiter: asyncio.Future[str] | None = None

    def apply_port_info(self, info: PortInfo) -> None:
        self.manufacturer = info.manufacturer
        self.serial_number = info.serial_number
        self.pnp_id = info.pnp_id
        self.location_id = info.location_id
        self.product_id = info.product_id
        self.vendor_id = info.vendor_id

    def __str__(self) -> str:
        parts = [f"path={self.path}", f"state={self.state.value}"]
        if self.name:
            parts.append(f"name={self.name}")
        if self.profile:
            parts.append(f"profile={self.profile.name}")
        if self.last_error:
            parts.append(f"last_error={self.last_error}")
        return f"Connection({', '.join(parts)})"

    async def connect(self, baud_rate: int | None = None) -> None:
        """Open the link at ``baud_rate`` or at the assigned profile's baud rate."""
        if baud_rate is None:
            if self.profile is None:
                raise ConfigurationError(
                    f"No baud rate set while connecting to {self.path}. "
                    "Pass a baud rate or assign a profile first."
                )
            baud_rate = self.profile.baud_rate

        if self._link is not None:
            await self.close()

        self.state = ConnectionState.CONNECTING
        try:
            link = self.transport.create_link(
                self.path,
                baud_rate,
                on_data=self.receive_data,
                on_error=self.receive_error,
            )
            self._link = link
            await link.open()
        except Exception as exc:
            self._link = None
            self.state = ConnectionState.CLOSED
            self.last_error = str(exc)
            if isinstance(exc, TransportError):
                raise
            raise TransportOpenError(f"Could not open port {self.path}: {exc}") from exc

        if self._link is not link:
            # Dropped by receive_error while opening.
            try:
                await link.close()
            except Exception as exc:
                LOGGER.warning("Failed to close abandoned link to %s: %s", self.path, exc)
            raise TransportOpenError(f"Port {self.path} failed while opening: {self.last_error}")
        self.state = ConnectionState.BACKGROUND
        LOGGER.info("Connected to port %s at %d baud", self.path, baud_rate)

    async def classify(self, profile: DeviceProfile) -> bool:
        """Probe the port with the profile's init operation, then close it.

        Returns True and assigns the profile when the init responses matched,
        False when the device did not answer in time. A failed close after a
        match is logged and does not undo the match.
        """
        matched = False
        try:
            await self.connect(profile.baud_rate)
            if profile.startup_delay_s > 0:
                await asyncio.sleep(profile.startup_delay_s)
            try:
                await self.send(profile.init)
            except ResponseTimeoutError as exc:
                LOGGER.debug("Port %s did not identify as %s: %s", self.path, profile.name, exc)
                return False
            matched = True
        finally:
            try:
                await self.close()
            except TransportError as exc:
                if not matched:
                    raise
                LOGGER.warning("Failed to close %s after identifying it as %s: %s", self.path, profile.name, exc)

        self.profile = profile
        return True

    async def send(
        self,
        operation: str | Sequence[Macro],
        params: Mapping[str, Any] | None = None,
    ) -> list[str]:
        """Execute an operation (by name) or a macro list and collect each response."""
        if isinstance(operation, str):
            if self.profile is None:
                raise ConfigurationError(
                    f"Cannot send operation '{operation}' to {self.path} without a profile."
                )
            LOGGER.debug("Sending operation '%s' on port %s", operation, self.path)
            macros = tuple(self.profile.macros(operation))
        else:
            macros = tuple(operation)

        if not macros:
            raise ConfigurationError(f"No macros provided to send to port {self.path}.")

        if params is not None:
            macros = tuple(m.with_params(params) for m in macros)

        await self._lock_port()
        try:
            responses: list[str] = []
            for macro in macros:
                self.state = ConnectionState.BUSY
                waiter = self._begin_read(macro.response)
                await self.write(macro.command)
                responses.append(await self._finish_read(waiter))
            return responses
        finally:
            self._end_read()
            if self.state is ConnectionState.BUSY:
                self.state = ConnectionState.BACKGROUND
            self.lock.release()

    async def _lock_port(self) -> None:
        await self.lock.acquire()
        try:
            if self.state is ConnectionState.CLOSED:
                LOGGER.info("Port %s is closed - connecting...", self.path)
                await self.connect()

            attempt = 0
            while self.state is ConnectionState.CONNECTING and attempt < CONNECT_POLL_ATTEMPTS:
                await asyncio.sleep(CONNECT_POLL_INTERVAL_S)
                attempt += 1
            if self.state is ConnectionState.CONNECTING:
                raise ConnectTimeoutError(
                    f"Timeout while waiting for port {self.path} to finish connecting."
                )
            if self.state is ConnectionState.CLOSED:
                raise TransportOpenError(f"Port {self.path} closed while waiting to connect.")
        except BaseException:
            self.lock.release()
            raise

    async def write(self, command: str) -> None:
        if self._link is None or not self._link.is_open:
            raise TransportSendError(
                f"Port {self.path} is not open. Connect before attempting to write."
            )
        try:
            await self._link.write((command + self.line_terminator).encode())
        except Exception as exc:
            self.last_error = str(exc)
            if isinstance(exc, TransportError):
                raise
            raise TransportSendError(f"Write to port {self.path} failed: {exc}") from exc

    async def read(self, pattern: re.Pattern[str] | str) -> str:
        """Read until ``pattern`` matches the accumulated data or the timeout elapses."""
        if isinstance(pattern, str):
            pattern = re.compile(pattern)
        waiter = self._begin_read(pattern)
        try:
            return await self._finish_read(waiter)
        finally:
            self._end_read()

    def _begin_read(self, pattern: re.Pattern[str]) -> asyncio.Future[str]:
        self._read_pattern = pattern
        self._read_buffer = ""
        self.last_error = None
        self._read_waiter = asyncio.get_running_loop().create_future()
        return self._read_waiter

    async def _finish_read(self, waiter: asyncio.Future[str]) -> str:
        try:
            return await asyncio.wait_for(waiter, timeout=self.timeout_s)
        except asyncio.TimeoutError as exc:
            raise ResponseTimeoutError(
                f"Timeout after {self.timeout_s:g}s while reading from port {self.path}."
            ) from exc

    def _end_read(self) -> None:
        waiter = self._read_waiter
        if waiter is not None and not waiter.done():
            waiter.cancel()
        self._read_pattern = None
        self._read_waiter = None

    async def close(self) -> None:
        link = self._link
        if link is None:
            self.state = ConnectionState.CLOSED
            return
        try:
            await link.close()
        except TransportError:
            raise
        except Exception as exc:
            self.last_error = str(exc)
            raise TransportCloseError(f"Could not close port {self.path}: {exc}") from exc
        finally:
            if self._link is link:
                self._link = None
            self.state = ConnectionState.CLOSED
            LOGGER.debug("Closed port %s", self.path)

    def receive_data(self, data: bytes) -> None:
        text = data.decode("utf-8", errors="replace")

        if self.state is ConnectionState.BACKGROUND:
            self.background_log.append(text)
            return

        if self.state is ConnectionState.BUSY:
            waiter = self._read_waiter
            if self._read_pattern is None or waiter is None or waiter.done():
                self.last_error = (
                    "State was busy reading data but no read pattern was found to check for completion."
                )
                LOGGER.warning("Port %s: %s", self.path, self.last_error)
                self.state = ConnectionState.BACKGROUND
                return
            self._read_buffer += text
            response = self._read_buffer.strip()
            if self._read_pattern.search(response):
                self.state = ConnectionState.BACKGROUND
                waiter.set_result(response)
            return

        LOGGER.warning(
            "Port %s received data in unexpected state '%s': %r",
            self.path,
            self.state.value,
            text,
        )

    def receive_error(self, error: Exception) -> None:
        LOGGER.error("Error on port %s: %s", self.path, error)
        self.last_error = str(error)

        if self._link is not None and self._link.is_open:
            self.state = ConnectionState.BACKGROUND
        else:
            self.state = ConnectionState.CLOSED
            self._link = None

        waiter = self._read_waiter
        if waiter is not None and not waiter.done():
            waiter.set_exception(TransportError(self.last_error))

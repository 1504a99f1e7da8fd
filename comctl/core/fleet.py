"""Port discovery, classification, and routing across all attached devices."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from comctl.core.connection import Connection
from comctl.core.errors import ComctlError, DeviceDiscoveryError, NotFoundError
from comctl.core.model import INIT_OPERATION, ConnectionState, DeviceProfile, PortInfo
from comctl.core.port_lock import PortLock
from comctl.core.settings import Settings
from comctl.transports.base import Transport

LOGGER = logging.getLogger(__name__)


class FleetManager:
    def __init__(
        self,
        transport: Transport | None = None,
        *,
        settings: Settings | None = None,
        profiles: Sequence[DeviceProfile] = (),
    ) -> None:
        if transport is None:
            from comctl.transports.serial_link import PySerialTransport

            transport = PySerialTransport()
        self.transport = transport
        self.settings = settings or Settings()
        self.connections: list[Connection] = []
        self.profiles: list[DeviceProfile] = list(profiles)
        self.rescan_interval_s = self.settings.rescan_interval_s
        self.read_timeout_s = self.settings.read_timeout_s

        self._rescan_task: asyncio.Task[None] | None = None
        self._init_retry_task: asyncio.Task[None] | None = None

    async def init(self, profiles: Sequence[DeviceProfile] | None = None) -> None:
        """Run the first discovery pass and start periodic rescans.

        A failed pass is retried after ``settings.init_retry_s`` in the
        background; the rescan schedule starts either way.
        """
        if profiles is not None:
            self.profiles = list(profiles)
        try:
            await self.scan()
            LOGGER.info("Fleet manager initialized with %d profiles", len(self.profiles))
        except DeviceDiscoveryError as exc:
            LOGGER.error("Error initializing fleet manager: %s", exc)
            self._init_retry_task = asyncio.create_task(self._retry_init())
        self.schedule_rescan()

    async def _retry_init(self) -> None:
        await asyncio.sleep(self.settings.init_retry_s)
        self._init_retry_task = None
        await self.init()

    def schedule_rescan(self) -> None:
        """Cancel any pending rescan and, unless disabled, schedule the next one."""
        if self._rescan_task is not None and not self._rescan_task.done():
            self._rescan_task.cancel()
        self._rescan_task = None

        if self.rescan_interval_s < 0:
            LOGGER.debug("Periodic rescans disabled")
            return
        self._rescan_task = asyncio.create_task(self._rescan_after(self.rescan_interval_s))

    async def _rescan_after(self, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        try:
            await self.scan()
        except DeviceDiscoveryError as exc:
            LOGGER.error("Error scanning serial ports: %s", exc)
        except Exception:
            LOGGER.exception("Unexpected error during rescan")
        # Detach first so rescheduling does not cancel the running task.
        self._rescan_task = None
        self.schedule_rescan()

    async def shutdown(self) -> None:
        for task in (self._rescan_task, self._init_retry_task):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
        self._rescan_task = None
        self._init_retry_task = None
        for connection in self.connections:
            if connection.state is ConnectionState.CLOSED:
                continue
            try:
                await connection.close()
            except ComctlError as exc:
                LOGGER.warning("Failed to close %s: %s", connection.path, exc)

    async def scan(self) -> list[Connection]:
        LOGGER.info("Scanning serial ports...")
        ports = self.transport.list_ports()
        await asyncio.gather(*(self._reconcile(info) for info in ports))
        LOGGER.info(
            "Connections:%s",
            "".join(f"\n\t{connection}" for connection in self.connections) or " none",
        )
        return list(self.connections)

    async def _reconcile(self, info: PortInfo) -> None:
        existing = self._find_by_path(info.path)

        if existing is not None and existing.profile is not None:
            await self._probe_liveness(existing)
            return

        if existing is not None:
            LOGGER.info("Removing unidentified port %s for re-detection", existing.path)
            self.connections = [c for c in self.connections if c is not existing]

        connection = self._create_connection(info)
        self.connections.append(connection)
        await self._classify(connection)

    async def _probe_liveness(self, connection: Connection) -> None:
        profile_name = connection.profile.name if connection.profile else "?"
        try:
            LOGGER.debug("Probing port %s of profile %s", connection.path, profile_name)
            await connection.send(INIT_OPERATION)
        except ComctlError as exc:
            LOGGER.warning(
                "Port %s of profile %s is not responding: %s",
                connection.path,
                profile_name,
                exc,
            )
            if connection.state is not ConnectionState.CLOSED:
                try:
                    await connection.close()
                except ComctlError as close_exc:
                    LOGGER.warning("Failed to close %s: %s", connection.path, close_exc)

    def _create_connection(self, info: PortInfo) -> Connection:
        settings = self.settings
        connection = Connection(
            info.path,
            self.transport,
            timeout_s=self.read_timeout_s,
            line_terminator=settings.line_terminator,
            lock=PortLock(
                info.path,
                fifo=settings.strict_fifo,
                wait_s=settings.lock_wait_s,
            ),
        )
        connection.apply_port_info(info)
        connection.name = settings.port_names.get(info.path) or (
            settings.port_names.get(info.serial_number) if info.serial_number else None
        )
        return connection

    async def _classify(self, connection: Connection) -> None:
        for profile in self.profiles:
            try:
                if not await connection.classify(profile):
                    continue
            except ComctlError as exc:
                LOGGER.info(
                    "Failed to classify %s as %s: %s",
                    connection.path,
                    profile.name,
                    exc,
                )
                continue

            LOGGER.info("Port of profile %s found at path %s", profile.name, connection.path)
            try:
                await connection.connect()
            except ComctlError as exc:
                LOGGER.warning("Could not reopen %s for listening: %s", connection.path, exc)
            return

    def _find_by_path(self, path: str) -> Connection | None:
        for connection in self.connections:
            if connection.path == path:
                return connection
        return None

    def connections_for(self, profile_name: str) -> list[Connection]:
        return [c for c in self.connections if c.profile is not None and c.profile.name == profile_name]

    def get_connection(self, profile_name: str, selector: int | str) -> Connection:
        """Find a connection of a profile by position or by display name."""
        matching = self.connections_for(profile_name)

        if isinstance(selector, str):
            for connection in matching:
                if connection.name == selector:
                    return connection
            raise NotFoundError(
                f"Port named '{selector}' not found. {len(matching)} ports found of profile {profile_name}."
            )

        if not 0 <= selector < len(matching):
            raise NotFoundError(
                f"Port with index {selector} not found. {len(matching)} ports found of profile {profile_name}."
            )
        return matching[selector]

    async def send(
        self,
        profile_name: str,
        selector: int | str,
        operation: str,
        params: Mapping[str, Any] | None = None,
    ) -> list[str]:
        connection = self.get_connection(profile_name, selector)
        return await connection.send(operation, params)

    async def list(
        self,
        profile_name: str,
        operation: str,
        params: Mapping[str, Any] | None = None,
    ) -> list[list[str]]:
        results: list[list[str]] = []
        for connection in self.connections_for(profile_name):
            results.append(await connection.send(operation, params))
        return results

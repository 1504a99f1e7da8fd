from __future__ import annotations

import asyncio

import pytest

from comctl.core.errors import TransportOpenError
from comctl.core.model import PortInfo


class FakeLink:
    def __init__(self, transport: FakeTransport, path: str, baud_rate: int, on_data, on_error) -> None:
        self.transport = transport
        self.path = path
        self.baud_rate = baud_rate
        self.on_data = on_data
        self.on_error = on_error
        self.is_open = False
        self.writes: list[str] = []

    async def open(self) -> None:
        await asyncio.sleep(self.transport.open_delays.get(self.path, 0))
        error = self.transport.open_errors.get(self.path)
        if error is not None:
            raise error
        self.is_open = True

    async def write(self, data: bytes) -> None:
        await asyncio.sleep(0)
        if self.transport.write_errors:
            raise self.transport.write_errors.pop(0)
        command = data.decode()
        self.writes.append(command)
        self.transport.writes.append((self.path, command))
        reply = self.transport.replies.get(self.path, {}).get(command.rstrip("\r\n"))
        if reply is not None:
            asyncio.get_running_loop().call_soon(self.on_data, reply.encode())

    async def close(self) -> None:
        await asyncio.sleep(0)
        self.is_open = False
        if self.transport.close_errors:
            raise self.transport.close_errors.pop(0)

    def simulate_data(self, text: str) -> None:
        self.on_data(text.encode())

    def simulate_error(self, error: Exception, *, closed: bool = False) -> None:
        if closed:
            self.is_open = False
        self.on_error(error)


class FakeTransport:
    def __init__(self, ports: list[str] | None = None) -> None:
        self.ports = [PortInfo(path=path) for path in ports or []]
        self.replies: dict[str, dict[str, str]] = {}
        self.open_errors: dict[str, Exception] = {}
        self.open_delays: dict[str, float] = {}
        self.write_errors: list[Exception] = []
        self.close_errors: list[Exception] = []
        self.writes: list[tuple[str, str]] = []
        self.links: list[FakeLink] = []
        self.list_calls = 0

    def list_ports(self) -> list[PortInfo]:
        self.list_calls += 1
        return list(self.ports)

    def create_link(self, path: str, baud_rate: int, *, on_data, on_error) -> FakeLink:
        link = FakeLink(self, path, baud_rate, on_data, on_error)
        self.links.append(link)
        return link

    def link(self, path: str) -> FakeLink:
        return [link for link in self.links if link.path == path][-1]

    def reply(self, path: str, command: str, response: str) -> None:
        self.replies.setdefault(path, {})[command] = response

    def fail_open(self, path: str, message: str = "Failed to open port") -> None:
        self.open_errors[path] = TransportOpenError(message)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()

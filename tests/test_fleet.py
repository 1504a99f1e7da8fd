from __future__ import annotations

import asyncio

import pytest

from comctl.core.connection import Connection
from comctl.core.errors import DeviceDiscoveryError, NotFoundError, TransportCloseError, TransportSendError
from comctl.core.fleet import FleetManager
from comctl.core.model import ConnectionState, DeviceProfile, Macro, PortInfo
from comctl.core.settings import Settings

PORTS = ["/dev/ttyMOCK0", "/dev/ttyMOCK1", "/dev/ttyMOCK2"]


def _mock_profile(name: str = "mock", command: str = "INIT", response: str = "INITTED") -> DeviceProfile:
    return DeviceProfile(
        name=name,
        baud_rate=9600,
        operations={
            "init": [Macro(command, response)],
            "status": [Macro("STATUS?", r"STATUS \w+")],
        },
    )


def _manager(transport, profiles=None, **settings) -> FleetManager:
    values = {"rescan_interval_s": -1.0, "read_timeout_s": 0.05, **settings}
    return FleetManager(transport, settings=Settings(**values), profiles=profiles or [_mock_profile()])


def _classified(transport, path: str, profile: DeviceProfile, name: str | None = None) -> Connection:
    connection = Connection(path, transport, timeout_s=0.5)
    connection.profile = profile
    connection.name = name
    return connection


def test_scan_classifies_only_responding_port(transport) -> None:
    transport.ports = [PortInfo(path=p) for p in PORTS]
    transport.reply(PORTS[0], "INIT", "INITTED")
    manager = _manager(transport)

    connections = asyncio.run(manager.scan())

    assert [c.path for c in connections] == PORTS
    first, second, third = manager.connections
    assert first.profile is not None and first.profile.name == "mock"
    assert first.state is ConnectionState.BACKGROUND
    for connection in (second, third):
        assert connection.profile is None
        assert connection.state is ConnectionState.CLOSED


def test_new_connection_gets_metadata_timeout_and_name(transport) -> None:
    transport.ports = [
        PortInfo(
            path=PORTS[0],
            manufacturer="FTDI",
            serial_number="A50285BI",
            pnp_id="USB VID:PID=0403:6001",
            location_id="1-1.2",
            product_id="6001",
            vendor_id="0403",
        )
    ]
    manager = _manager(transport, read_timeout_s=0.02, port_names={"A50285BI": "bench"})

    asyncio.run(manager.scan())

    connection = manager.connections[0]
    assert connection.manufacturer == "FTDI"
    assert connection.serial_number == "A50285BI"
    assert connection.pnp_id == "USB VID:PID=0403:6001"
    assert connection.location_id == "1-1.2"
    assert (connection.vendor_id, connection.product_id) == ("0403", "6001")
    assert connection.timeout_s == 0.02
    assert connection.name == "bench"


def test_first_matching_profile_wins(transport) -> None:
    transport.ports = [PortInfo(path=PORTS[0])]
    transport.reply(PORTS[0], "A?", "ALPHA")
    transport.reply(PORTS[0], "B?", "BETA")
    alpha = _mock_profile("alpha", "A?", "ALPHA")
    beta = _mock_profile("beta", "B?", "BETA")
    manager = _manager(transport, profiles=[alpha, beta])

    asyncio.run(manager.scan())

    assert manager.connections[0].profile is alpha
    assert [command for _, command in transport.writes] == ["A?\n"]


def test_profile_that_raises_is_skipped(transport) -> None:
    transport.ports = [PortInfo(path=PORTS[0])]
    transport.write_errors.append(TransportSendError("write failed"))
    transport.reply(PORTS[0], "B?", "BETA")
    alpha = _mock_profile("alpha", "A?", "ALPHA")
    beta = _mock_profile("beta", "B?", "BETA")
    manager = _manager(transport, profiles=[alpha, beta])

    asyncio.run(manager.scan())

    assert manager.connections[0].profile is beta
    assert manager.connections[0].state is ConnectionState.BACKGROUND


def test_close_failure_during_classification_does_not_abort_scan(transport) -> None:
    transport.ports = [PortInfo(path=p) for p in PORTS[:2]]
    transport.close_errors.append(OSError("EIO on close"))
    transport.reply(PORTS[0], "A?", "ALPHA")
    transport.reply(PORTS[1], "B?", "BETA")
    alpha = _mock_profile("alpha", "A?", "ALPHA")
    beta = _mock_profile("beta", "B?", "BETA")
    manager = _manager(transport, profiles=[alpha, beta])

    asyncio.run(manager.scan())

    first, second = manager.connections
    assert first.profile is alpha
    assert first.state is ConnectionState.BACKGROUND
    assert second.profile is beta
    assert second.state is ConnectionState.BACKGROUND


def test_matched_profile_stops_search_even_if_close_fails(transport) -> None:
    transport.ports = [PortInfo(path=PORTS[0])]
    transport.close_errors.append(TransportCloseError("close failed"))
    transport.reply(PORTS[0], "A?", "ALPHA")
    transport.reply(PORTS[0], "B?", "BETA")
    alpha = _mock_profile("alpha", "A?", "ALPHA")
    beta = _mock_profile("beta", "B?", "BETA")
    manager = _manager(transport, profiles=[alpha, beta])

    asyncio.run(manager.scan())

    connection = manager.connections[0]
    assert connection.profile is alpha
    assert connection.state is ConnectionState.BACKGROUND
    assert [command for _, command in transport.writes] == ["A?\n"]


def test_rescan_probes_known_port_and_closes_when_silent(transport) -> None:
    transport.ports = [PortInfo(path=PORTS[0])]
    transport.reply(PORTS[0], "INIT", "INITTED")
    manager = _manager(transport)

    async def scenario() -> None:
        await manager.scan()
        connection = manager.connections[0]
        assert connection.state is ConnectionState.BACKGROUND

        await manager.scan()
        assert manager.connections == [connection]
        assert connection.state is ConnectionState.BACKGROUND

        transport.replies.clear()
        await manager.scan()
        assert manager.connections == [connection]
        assert connection.profile is not None and connection.profile.name == "mock"
        assert connection.state is ConnectionState.CLOSED

    asyncio.run(scenario())


def test_rescan_redetects_unclassified_port(transport) -> None:
    transport.ports = [PortInfo(path=PORTS[0])]
    manager = _manager(transport)

    async def scenario() -> None:
        await manager.scan()
        stale = manager.connections[0]
        assert stale.profile is None

        transport.reply(PORTS[0], "INIT", "INITTED")
        await manager.scan()
        assert len(manager.connections) == 1
        fresh = manager.connections[0]
        assert fresh is not stale
        assert fresh.profile is not None and fresh.profile.name == "mock"

    asyncio.run(scenario())


def test_get_connection_by_index_reports_counts(transport) -> None:
    profile = _mock_profile()
    manager = _manager(transport)
    manager.connections = [
        _classified(transport, PORTS[0], profile),
        Connection(PORTS[1], transport),
        _classified(transport, PORTS[2], profile),
    ]

    assert manager.get_connection("mock", 1).path == PORTS[2]
    with pytest.raises(NotFoundError) as exc:
        manager.get_connection("mock", 99)

    assert "index 99" in str(exc.value)
    assert "2 ports found" in str(exc.value)


def test_get_connection_by_name(transport) -> None:
    profile = _mock_profile()
    manager = _manager(transport)
    manager.connections = [
        _classified(transport, PORTS[0], profile, name="left"),
        _classified(transport, PORTS[1], profile, name="right"),
    ]

    assert manager.get_connection("mock", "right").path == PORTS[1]
    with pytest.raises(NotFoundError):
        manager.get_connection("mock", "middle")
    with pytest.raises(NotFoundError):
        manager.get_connection("other", 0)


def test_send_and_list_route_by_profile(transport) -> None:
    transport.ports = [PortInfo(path=p) for p in PORTS]
    for index, path in enumerate(PORTS):
        if index == 1:
            continue
        transport.reply(path, "INIT", "INITTED")
        transport.reply(path, "STATUS?", f"STATUS unit{index}")
    manager = _manager(transport)

    async def scenario() -> tuple[list[str], list[list[str]]]:
        await manager.scan()
        single = await manager.send("mock", 1, "status")
        everything = await manager.list("mock", "status")
        return single, everything

    single, everything = asyncio.run(scenario())
    assert single == ["STATUS unit2"]
    assert everything == [["STATUS unit0"], ["STATUS unit2"]]


def test_negative_interval_disables_rescans(transport) -> None:
    manager = _manager(transport)

    async def scenario() -> None:
        manager.schedule_rescan()
        assert manager._rescan_task is None

    asyncio.run(scenario())


def test_rescan_reschedules_itself(transport) -> None:
    manager = _manager(transport, rescan_interval_s=0.01)

    async def scenario() -> int:
        manager.schedule_rescan()
        await asyncio.sleep(0.1)
        manager.rescan_interval_s = -1
        manager.schedule_rescan()
        calls = transport.list_calls
        await asyncio.sleep(0.05)
        assert transport.list_calls == calls
        return calls

    assert asyncio.run(scenario()) >= 2


def test_init_retries_after_discovery_failure(transport) -> None:
    transport.ports = [PortInfo(path=PORTS[0])]
    transport.reply(PORTS[0], "INIT", "INITTED")
    manager = _manager(transport, init_retry_s=0.01, rescan_interval_s=60.0)
    real_list_ports = transport.list_ports
    failures = [DeviceDiscoveryError("enumeration failed")]

    def flaky_list_ports() -> list[PortInfo]:
        if failures:
            raise failures.pop()
        return real_list_ports()

    transport.list_ports = flaky_list_ports

    async def scenario() -> None:
        await manager.init()
        assert manager.connections == []
        assert manager._rescan_task is not None
        await asyncio.sleep(0.2)
        assert manager.connections[0].profile is not None
        await manager.shutdown()
        assert manager.connections[0].state is ConnectionState.CLOSED

    asyncio.run(scenario())


def test_rescan_survives_unexpected_scan_error(transport) -> None:
    manager = _manager(transport, rescan_interval_s=0.01)
    real_list_ports = transport.list_ports
    failures = [RuntimeError("port enumeration crashed")]

    def flaky_list_ports() -> list[PortInfo]:
        if failures:
            raise failures.pop()
        return real_list_ports()

    transport.list_ports = flaky_list_ports

    async def scenario() -> None:
        manager.schedule_rescan()
        await asyncio.sleep(0.1)
        await manager.shutdown()

    asyncio.run(scenario())
    assert not failures
    assert transport.list_calls >= 1

"""Core data models used across loader, connection, fleet, and CLI."""

from __future__ import annotations

import enum
import re
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from comctl.core.errors import ConfigurationError
from comctl.core.templating import render_command

INIT_OPERATION = "init"


class ConnectionState(str, enum.Enum):
    CLOSED = "closed"
    CONNECTING = "connecting"
    BACKGROUND = "background"
    BUSY = "busy"


@dataclass(frozen=True)
class Macro:
    """A command template plus the response pattern that signals its completion."""

    command: str
    response: re.Pattern[str]

    def __post_init__(self) -> None:
        if isinstance(self.response, str):
            object.__setattr__(self, "response", re.compile(self.response))

    def with_params(self, params: Mapping[str, Any], *, strict: bool = False) -> Macro:
        return replace(self, command=render_command(self.command, params, strict=strict))

    def __str__(self) -> str:
        return f"Macro(command={self.command!r}, response=/{self.response.pattern}/)"


@dataclass(frozen=True)
class DeviceProfile:
    name: str
    baud_rate: int
    operations: Mapping[str, tuple[Macro, ...]]
    startup_delay_s: float = 0.0

    def __post_init__(self) -> None:
        normalized = {name: tuple(macros) for name, macros in self.operations.items()}
        if not normalized.get(INIT_OPERATION):
            raise ConfigurationError(
                f"Profile '{self.name}' must define a non-empty '{INIT_OPERATION}' operation"
            )
        if self.baud_rate <= 0:
            raise ConfigurationError(f"Profile '{self.name}' has invalid baud rate {self.baud_rate}")
        object.__setattr__(self, "operations", normalized)

    @property
    def init(self) -> tuple[Macro, ...]:
        return self.operations[INIT_OPERATION]

    def macros(self, operation: str) -> tuple[Macro, ...]:
        macros = self.operations.get(operation)
        if macros is None:
            available = ", ".join(sorted(self.operations))
            raise ConfigurationError(
                f"Profile '{self.name}' does not define operation '{operation}'. Available: {available}"
            )
        return macros

    def __str__(self) -> str:
        lines = [f"DeviceProfile(name={self.name!r}, baud_rate={self.baud_rate})["]
        for operation, macros in self.operations.items():
            lines.append(f"\t{operation}: [{', '.join(str(m) for m in macros)}]")
        lines.append("]")
        return "\n".join(lines)


@dataclass(frozen=True)
class PortInfo:
    """A serial port as reported by the transport's enumeration."""

    path: str
    manufacturer: str | None = None
    serial_number: str | None = None
    pnp_id: str | None = None
    location_id: str | None = None
    product_id: str | None = None
    vendor_id: str | None = None


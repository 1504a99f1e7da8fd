"""Stable public API for building tooling on top of comctl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from comctl.core.background_log import BackgroundLog
from comctl.core.connection import Connection
from comctl.core.errors import (
    ComctlError,
    ConfigurationError,
    ConnectTimeoutError,
    DeviceDiscoveryError,
    LockTimeoutError,
    NotFoundError,
    ProfileLoadError,
    ProfileValidationError,
    ResponseTimeoutError,
    SettingsError,
    TemplateError,
    TransportCloseError,
    TransportError,
    TransportOpenError,
    TransportSendError,
    TransportTimeoutError,
)
from comctl.core.fleet import FleetManager
from comctl.core.model import ConnectionState, DeviceProfile, Macro, PortInfo
from comctl.core.port_lock import PortLock
from comctl.core.profile_loader import LoadedProfiles, load_profile_file, load_profiles
from comctl.core.settings import Settings, load_settings
from comctl.core.templating import render_command, resolve_path
from comctl.transports.base import Link, Transport
from comctl.transports.serial_link import PySerialTransport, SerialLink

__all__ = [
    "ComctlError",
    "ConfigurationError",
    "ConnectTimeoutError",
    "DeviceDiscoveryError",
    "LockTimeoutError",
    "NotFoundError",
    "ProfileLoadError",
    "ProfileValidationError",
    "ResponseTimeoutError",
    "SettingsError",
    "TemplateError",
    "TransportCloseError",
    "TransportError",
    "TransportOpenError",
    "TransportSendError",
    "TransportTimeoutError",
    "BackgroundLog",
    "Connection",
    "ConnectionState",
    "DeviceProfile",
    "FleetManager",
    "LoadedProfiles",
    "Link",
    "Macro",
    "PortInfo",
    "PortLock",
    "PySerialTransport",
    "SerialLink",
    "Settings",
    "Transport",
    "load_profile_file",
    "load_profiles",
    "load_settings",
    "render_command",
    "resolve_path",
]

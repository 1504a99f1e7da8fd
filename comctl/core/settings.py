"""Runtime settings from the optional config file and COMCTL_* environment overrides."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from comctl.core.errors import SettingsError


@dataclass(frozen=True)
class Settings:
    rescan_interval_s: float = 60.0
    read_timeout_s: float = 5.0
    line_terminator: str = "\n"
    strict_fifo: bool = True
    lock_wait_s: float = 5.0
    init_retry_s: float = 1.0
    port_names: dict[str, str] = field(default_factory=dict)


_FLOAT_OVERRIDES = {
    "COMCTL_RESCAN_INTERVAL_S": "rescan_interval_s",
    "COMCTL_READ_TIMEOUT_S": "read_timeout_s",
    "COMCTL_LOCK_WAIT_S": "lock_wait_s",
}


def config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "comctl/config.yaml"


def _load_schema_validator() -> Any:
    schema_text = resources.files("comctl.schemas").joinpath("settings.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _read_config(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SettingsError(f"Could not read settings file {path}: {exc}") from exc

    try:
        loaded = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise SettingsError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise SettingsError(f"Settings file {path} must contain a mapping at root")

    try:
        _load_schema_validator().validate(loaded)
    except ValidationError as exc:
        where = ".".join(str(p) for p in exc.path)
        where = f" ({where})" if where else ""
        raise SettingsError(f"Schema validation failed for {path}{where}: {exc.message}") from exc
    return loaded


def _parse_bool(name: str, raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise SettingsError(f"{name} must be boolean true/false, got '{raw}'")


def load_settings(path: Path | None = None) -> Settings:
    path = path or config_path()
    values: dict[str, Any] = {}
    if path.exists():
        doc = _read_config(path)
        values.update(doc)
        if "port_names" in doc:
            values["port_names"] = dict(doc["port_names"])

    for env_name, attr in _FLOAT_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None or raw.strip() == "":
            continue
        try:
            values[attr] = float(raw)
        except ValueError as exc:
            raise SettingsError(f"{env_name} must be a number, got '{raw}'") from exc

    raw_fifo = os.environ.get("COMCTL_STRICT_FIFO")
    if raw_fifo:
        values["strict_fifo"] = _parse_bool("COMCTL_STRICT_FIFO", raw_fifo)

    settings = replace(Settings(), **values)
    if settings.read_timeout_s <= 0:
        raise SettingsError("read_timeout_s must be positive")
    if settings.lock_wait_s <= 0:
        raise SettingsError("lock_wait_s must be positive")
    return settings

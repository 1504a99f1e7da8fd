"""Profile loading and validation for YAML-based device profiles."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from comctl.core.errors import ConfigurationError, ProfileLoadError, ProfileValidationError
from comctl.core.model import DeviceProfile, Macro

_SLASHED_PATTERN_RE = re.compile(r"^/(?P<body>.*)/(?P<flags>[a-z]*)$", re.DOTALL)
_PATTERN_FLAGS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
    # JavaScript-style flags without a Python counterpart.
    "g": 0,
    "u": 0,
    "y": 0,
}
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

# Commands such as ON/OFF must stay strings.
for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ProfileValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, DeviceProfile]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("comctl.schemas").joinpath("profile.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _profile_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "comctl/profiles", xdg_data / "comctl/profiles"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ProfileValidationError(f"Profile file {path} must contain a mapping at root")
    return loaded


def compile_pattern(value: str, *, context: str) -> re.Pattern[str]:
    """Compile a response pattern given as ``regex`` or ``/regex/flags``."""

    body, flags = value, 0
    slashed = _SLASHED_PATTERN_RE.match(value)
    if slashed:
        body = slashed.group("body")
        for flag in slashed.group("flags"):
            if flag not in _PATTERN_FLAGS:
                raise ProfileValidationError(f"{context} uses unsupported pattern flag '{flag}'")
            flags |= _PATTERN_FLAGS[flag]
    try:
        return re.compile(body, flags)
    except re.error as exc:
        raise ProfileValidationError(f"{context} is not a valid regular expression: {exc}") from exc


def build_profile(doc: dict[str, Any], source: Path | Traversable | str) -> DeviceProfile:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProfileValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    operations: dict[str, tuple[Macro, ...]] = {}
    for operation, steps in doc["operations"].items():
        macros = []
        for index, step in enumerate(steps):
            context = f"{doc['name']}.{operation}[{index}].response"
            macros.append(Macro(step["command"], compile_pattern(step["response"], context=context)))
        operations[operation] = tuple(macros)

    try:
        return DeviceProfile(
            name=doc["name"],
            baud_rate=int(doc["baud_rate"]),
            operations=operations,
            startup_delay_s=float(doc.get("startup_delay_s", 0.0)),
        )
    except ConfigurationError as exc:
        raise ProfileValidationError(f"Invalid profile in {source}: {exc}") from exc


def _iter_packaged_profile_paths() -> list[Traversable]:
    profile_root = resources.files("comctl.profiles")
    return [item for item in profile_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_profile_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _profile_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_profile_file(path: Path) -> DeviceProfile:
    return build_profile(_read_yaml(path), path)


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, DeviceProfile] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_profile_paths(), key=lambda p: p.name):
        profile = build_profile(_read_yaml(path), path)
        profiles[profile.name] = profile

    for path in _iter_user_profile_paths():
        profile = build_profile(_read_yaml(path), path)
        if profile.name in profiles:
            warning = f"User profile '{profile.name}' overrides packaged profile"
            LOGGER.warning(warning)
            warnings.append(warning)
        profiles[profile.name] = profile

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))

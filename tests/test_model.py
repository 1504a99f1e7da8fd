from __future__ import annotations

import re

import pytest

from comctl.core.errors import ConfigurationError
from comctl.core.model import DeviceProfile, Macro


def test_macro_compiles_string_patterns() -> None:
    macro = Macro("INIT", r"INIT+ED")
    assert isinstance(macro.response, re.Pattern)
    assert macro.response.search("INITTED")


def test_with_params_returns_new_macro() -> None:
    macro = Macro("MOVE {x}", re.compile("ok"))
    moved = macro.with_params({"x": 5})

    assert moved.command == "MOVE 5"
    assert moved.response is macro.response
    assert macro.command == "MOVE {x}"


def test_profile_requires_init() -> None:
    with pytest.raises(ConfigurationError):
        DeviceProfile(name="bad", baud_rate=9600, operations={"help": [Macro("HELP", "OK")]})
    with pytest.raises(ConfigurationError):
        DeviceProfile(name="bad", baud_rate=9600, operations={"init": []})


def test_profile_macros_lookup() -> None:
    profile = DeviceProfile(
        name="mock",
        baud_rate=9600,
        operations={"init": [Macro("INIT", "INITTED")], "help": [Macro("HELP", "OK")]},
    )

    assert profile.init == (Macro("INIT", profile.init[0].response),)
    assert [m.command for m in profile.macros("help")] == ["HELP"]
    with pytest.raises(ConfigurationError, match="Available: help, init"):
        profile.macros("reboot")

"""Placeholder substitution for macro command templates.

Tokens have the form ``{name}`` or ``{name.path[index].sub}``. Each dotted
segment may carry a single ``[index]`` into a sequence.

Resolution rules:
  - If the top-level key is absent from the params, the token is left as-is.
  - If the top-level key exists but a deeper segment misses, the token
    renders as an empty string (or raises ``TemplateError`` when strict).
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

from comctl.core.errors import TemplateError

_PLACEHOLDER_RE = re.compile(r"\{([^{}]+)\}")
_SEGMENT_RE = re.compile(r"^(?P<key>[^\[\]]*)(?:\[(?P<index>-?\d+)\])?$")
_MISSING = object()


def _step(value: Any, segment: str) -> Any:
    match = _SEGMENT_RE.match(segment)
    if not match:
        return _MISSING

    key = match.group("key")
    if key:
        if not isinstance(value, Mapping) or key not in value:
            return _MISSING
        value = value[key]

    index = match.group("index")
    if index is not None:
        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            return _MISSING
        position = int(index)
        if not -len(value) <= position < len(value):
            return _MISSING
        value = value[position]
    return value


def resolve_path(params: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted/indexed path against params.

    Raises ``KeyError`` naming the first segment that could not be resolved.
    """

    value: Any = params
    for segment in path.strip().split("."):
        value = _step(value, segment)
        if value is _MISSING:
            raise KeyError(segment)
    return value


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_command(template: str, params: Mapping[str, Any], *, strict: bool = False) -> str:
    def _substitute(match: re.Match[str]) -> str:
        token = match.group(1)
        head = _SEGMENT_RE.match(token.strip().split(".", 1)[0])
        if head is None or head.group("key") not in params:
            if strict:
                raise TemplateError(f"No value for '{token}' in command template {template!r}")
            return match.group(0)
        try:
            return _format_value(resolve_path(params, token))
        except KeyError as exc:
            if strict:
                raise TemplateError(
                    f"Could not resolve '{exc.args[0]}' of '{token}' in command template {template!r}"
                ) from exc
            return ""

    return _PLACEHOLDER_RE.sub(_substitute, template)

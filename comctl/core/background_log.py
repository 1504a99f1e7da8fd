"""Bounded record of unsolicited data received while a port is idle."""

from __future__ import annotations

import re
from collections.abc import Iterator

_LINE_SPLIT_RE = re.compile(r"\r?\n")


class BackgroundLog:
    def __init__(self, capacity: int = 1000, evict_count: int = 10) -> None:
        if capacity <= 0 or evict_count <= 0:
            raise ValueError("capacity and evict_count must be positive")
        self.capacity = capacity
        self.evict_count = evict_count
        self._entries: list[str] = []

    def append(self, text: str) -> None:
        """Append a chunk, joining it onto the last entry if that line is still open."""
        lines = _LINE_SPLIT_RE.split(text)

        if self._entries:
            self._entries[-1] += lines[0]
        else:
            self._entries.append(lines[0])

        self._entries.extend(line for line in lines[1:] if line.strip())

        # A trailing terminator opens a new pending line.
        if text.endswith(("\n", "\r")):
            self._entries.append("")

        while len(self._entries) > self.capacity:
            del self._entries[: self.evict_count]

    def lines(self) -> list[str]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def __contains__(self, item: object) -> bool:
        return item in self._entries

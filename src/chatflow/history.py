"""
Bounded recall of previously submitted input (up/down arrow history).
"""

from __future__ import annotations

from collections import deque
from typing import Optional

DEFAULT_CAPACITY = 10


class InputHistory:
    """Most recent distinct, non-blank, trimmed submissions, oldest evicted first.

    The recall cursor is independent of insertion. Stepping back from "no
    selection" saves whatever was in the input box as the draft; stepping
    forward past the newest entry gives that draft back.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self.capacity = max(1, capacity)
        self._entries: deque[str] = deque(maxlen=self.capacity)
        self._cursor: Optional[int] = None
        self._draft = ""

    @property
    def entries(self) -> list[str]:
        return list(self._entries)

    @property
    def recalling(self) -> bool:
        return self._cursor is not None

    def add(self, text: str) -> None:
        self._cursor = None
        self._draft = ""
        entry = text.strip()
        if not entry:
            return
        if entry in self._entries:
            self._entries.remove(entry)
        self._entries.append(entry)

    def previous(self, current: str = "") -> str:
        """Step toward the oldest entry."""
        if not self._entries:
            return current
        if self._cursor is None:
            self._draft = current
            self._cursor = len(self._entries) - 1
        elif self._cursor > 0:
            self._cursor -= 1
        return self._entries[self._cursor]

    def next(self, current: str = "") -> str:
        """Step toward the newest entry, then back to the saved draft."""
        if self._cursor is None:
            return current
        if self._cursor < len(self._entries) - 1:
            self._cursor += 1
            return self._entries[self._cursor]
        self._cursor = None
        return self._draft

    def clear(self) -> None:
        self._entries.clear()
        self._cursor = None
        self._draft = ""

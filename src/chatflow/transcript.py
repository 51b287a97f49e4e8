"""
Ordered transcript for one chat session.

Append-only apart from in-place replacement of a message by a mutated copy.
Stored Message objects are never altered after insertion, so lists returned by
snapshot() stay valid however the transcript moves on.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Iterator, Optional

from chatflow.models.message import Message

logger = logging.getLogger(__name__)

GREETING = "Hi there! How can I help?"

Transform = Callable[[Message], None]


class TranscriptStore:
    def __init__(self, greeting: str = GREETING) -> None:
        self._greeting = greeting
        self._messages: list[Message] = [Message.assistant(greeting)]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def append(self, message: Message) -> int:
        """Append and return the message's handle (its stable position)."""
        self._messages.append(message)
        return len(self._messages) - 1

    def extend(self, messages: Iterable[Message]) -> None:
        self._messages.extend(messages)

    def get(self, handle: int) -> Message:
        return self._messages[handle]

    def get_tail(self) -> Message:
        return self._messages[-1]

    @property
    def tail_handle(self) -> int:
        return len(self._messages) - 1

    def mutate(self, handle: int, transform: Transform, allow_user: bool = False) -> bool:
        """Apply `transform` to a copy of the message at `handle` and swap it in.

        User-authored messages are only touched with `allow_user`; returns False
        when the guard drops the write.
        """
        current = self._messages[handle]
        if current.is_user and not allow_user:
            logger.warning("Dropped mutation against user message at position %d", handle)
            return False
        updated = current.model_copy(deep=True)
        transform(updated)
        self._messages[handle] = updated
        return True

    def mutate_tail(self, transform: Transform) -> bool:
        return self.mutate(self.tail_handle, transform)

    def update_where(self, predicate: Callable[[Message], bool], transform: Transform) -> int:
        """Copy-and-replace every message matching `predicate`, user messages included."""
        count = 0
        for index, message in enumerate(self._messages):
            if predicate(message):
                updated = message.model_copy(deep=True)
                transform(updated)
                self._messages[index] = updated
                count += 1
        return count

    def find(self, message_id: str) -> Optional[Message]:
        return next((m for m in self._messages if m.id == message_id), None)

    def snapshot(self) -> list[Message]:
        return list(self._messages)

    def reset(self) -> None:
        self._messages = [Message.assistant(self._greeting)]

"""Message buffer: the in-process, ordered message list for one session.

The buffer is the source of truth for every read. It never blocks and never
touches the durable store; persistence is scheduled separately.
"""

from __future__ import annotations

import json
from typing import Iterable, Sequence

from hybrid_memory.core.types import Message


def estimate_message_size(message: Message) -> int:
    """Exact UTF-8 byte size of the message's compact JSON document."""
    encoded = json.dumps(message.to_dict(), ensure_ascii=False, separators=(",", ":"))
    return len(encoded.encode("utf-8"))


def context_line_size(message: Message) -> int:
    """Byte size of the ``role: text`` line a message occupies in a context window."""
    return len(f"{message.role.value}: {message.text}\n".encode("utf-8"))


class MessageBuffer:
    """Ordered sequence of messages with byte accounting."""

    def __init__(self, messages: Iterable[Message] | None = None) -> None:
        self._messages: list[Message] = list(messages or [])

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, message: Message) -> Message:
        """Add a message to the end, stamping it if it has no timestamp.

        Returns the message as stored.
        """
        stored = message.with_timestamp()
        self._messages.append(stored)
        return stored

    def all(self) -> tuple[Message, ...]:
        """Read-only view of the full ordered sequence."""
        return tuple(self._messages)

    def snapshot(self) -> list[Message]:
        """Independent copy, safe to hand to a write that may outlive later mutations."""
        return list(self._messages)

    def replace(self, messages: Sequence[Message]) -> None:
        """Swap the whole contents (session load, prune)."""
        self._messages = list(messages)

    def clear(self) -> None:
        self._messages = []

    def total_size(self) -> int:
        return sum(estimate_message_size(m) for m in self._messages)

"""Shared data types for the hybrid conversation memory."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class Role(str, Enum):
    """Message role in conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """A single message in the conversation.

    Messages are never mutated once stored; the only change the memory makes
    is filling in ``timestamp`` at insert time when the caller left it empty.
    """

    role: Role
    text: str
    timestamp: int | None = None  # epoch millis

    def __post_init__(self) -> None:
        # Accept plain strings ("user") and reject unknown roles early.
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))

    def with_timestamp(self, timestamp: int | None = None) -> Message:
        """Return this message stamped with ``timestamp`` (or now) if it has none."""
        if self.timestamp:
            return self
        return replace(self, timestamp=timestamp if timestamp is not None else now_ms())

    def to_dict(self) -> dict[str, Any]:
        """Convert to the document form used for persistence and sizing."""
        return {
            "role": self.role.value,
            "text": self.text,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        """Parse a stored message document.

        Raises ValueError/KeyError/TypeError on malformed input; callers that
        read durable data are expected to skip such entries.
        """
        text = data["text"]
        if not isinstance(text, str):
            raise TypeError(f"message text must be a string, got {type(text).__name__}")
        timestamp = data.get("timestamp")
        return cls(
            role=Role(data["role"]),
            text=text,
            timestamp=int(timestamp) if timestamp is not None else None,
        )


@dataclass
class ConversationSnapshot:
    """Full persisted state of one session: the unit the durable store upserts."""

    session_id: str
    messages: list[Message] = field(default_factory=list)
    last_updated: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "messages": [m.to_dict() for m in self.messages],
            "last_updated": self.last_updated,
        }


class WriteType(str, Enum):
    """Kinds of mutation that request a batch save."""

    ADD = "add"
    PRUNE = "prune"


@dataclass(frozen=True)
class WriteMarker:
    """Signal queued to trigger a batch save.

    Carries no data that gets persisted: a flush always writes the buffer as
    it is when the flush reads it. ``payload`` exists for observability only.
    """

    type: WriteType
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)

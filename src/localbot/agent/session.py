"""
agent/session.py — Per-Session State

One Session exists per conversation id. Holds the ordered message
history and the model last used. Sessions are created lazily by the
Agent and mutated only by the Agent during a turn.

The system directive is never stored here; it is prepended per request.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from localbot.brain.types import Message


def new_session_id() -> str:
    return f"sess_{uuid.uuid4().hex[:12]}"


@dataclass
class Session:
    id: str
    user_id: str = "default"
    messages: list[Message] = field(default_factory=list)
    model: str = ""
    model_pinned: bool = False          # set_session_model() overrides the router
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)

    def append(self, message: Message) -> None:
        self.messages.append(message)
        self.touch()

    def touch(self) -> None:
        self.updated_at = time.time()

    def clear(self) -> None:
        """Forget the conversation; id, model and timestamps are kept."""
        self.messages.clear()

    @property
    def message_count(self) -> int:
        return len(self.messages)

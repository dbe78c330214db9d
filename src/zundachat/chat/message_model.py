"""Chat message and session data models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Literal

from ..ai.prompts import parse_expression

ChatRole = Literal["system", "user", "assistant"]


def new_id() -> str:
    return str(uuid.uuid4())


class ApiState(str, Enum):
    """Whether a primary completion is in flight."""

    IDLE = "idle"
    LOADING = "loading"


@dataclass(slots=True)
class Message:
    """A single chat message.

    ``id`` never changes once created. ``content`` grows in place while
    ``loading`` is set and the reply is still streaming.
    """

    role: ChatRole
    content: str
    id: str = field(default_factory=new_id)
    loading: bool = False

    def to_payload(self) -> Dict[str, str]:
        """Return the ``{role, content}`` mapping sent to the API."""

        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class Chat:
    """A conversation plus its derived title, expression, and usage totals."""

    id: str = field(default_factory=new_id)
    messages: list[Message] = field(default_factory=list)
    title: str | None = None
    latest_message: str | None = None
    prompt_tokens_used: int = 0
    completion_tokens_used: int = 0
    cost_incurred: float = 0.0

    def index_of(self, message_id: str) -> int:
        """Return the position of ``message_id`` or -1."""

        for index, message in enumerate(self.messages):
            if message.id == message_id:
                return index
        return -1

    def find_message(self, message_id: str) -> Message | None:
        index = self.index_of(message_id)
        return self.messages[index] if index >= 0 else None

    def word_count(self) -> int:
        # Space-separated, so an empty message still counts as one word.
        return sum(len(message.content.split(" ")) for message in self.messages)

    @property
    def expression(self) -> int | None:
        """Expression number parsed from :attr:`latest_message`."""

        return parse_expression(self.latest_message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "messages": [
                {"id": m.id, "role": m.role, "content": m.content, "loading": m.loading}
                for m in self.messages
            ],
            "title": self.title,
            "latest_message": self.latest_message,
            "prompt_tokens_used": self.prompt_tokens_used,
            "completion_tokens_used": self.completion_tokens_used,
            "cost_incurred": self.cost_incurred,
        }


__all__ = ["ApiState", "Chat", "ChatRole", "Message", "new_id"]

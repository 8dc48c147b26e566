"""In-memory conversation the chat assistant appends to and mutates."""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal, Optional

Role = Literal["user", "assistant"]
MessageType = Literal["text", "voice", "image"]


def generate_message_id() -> str:
    return f"msg_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass(slots=True)
class Message:
    role: Role
    content: str
    type: MessageType = "text"
    id: str = field(default_factory=generate_message_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    image: Optional[str] = None
    audio_url: Optional[str] = None
    is_streaming: bool = False


class ConversationStore:
    """Ordered message list; messages are replaced, never edited in place."""

    def __init__(self) -> None:
        self._messages: list[Message] = []

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def append(self, message: Message) -> Message:
        self._messages.append(message)
        return message

    def get(self, message_id: str) -> Optional[Message]:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def update(self, message_id: str, **changes: Any) -> Optional[Message]:
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                updated = replace(message, **changes)
                self._messages[index] = updated
                return updated
        return None

    def remove(self, message_id: str) -> None:
        self._messages = [m for m in self._messages if m.id != message_id]

    def clear(self) -> None:
        self._messages.clear()

    def history(self) -> list[dict[str, str]]:
        """Role/content pairs in order, as sent to the chat function."""

        return [{"role": m.role, "content": m.content} for m in self._messages]

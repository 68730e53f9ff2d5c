"""
Shared type definitions.

Core data structures used across modules.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ChatMessage:
    """Single conversation turn."""

    role: str  # "user" | "assistant" | "system"
    content: str

    def to_llm_format(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ActionResult:
    """Result of an executed action."""

    success: bool
    data: Any = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def last_user_message(conversation: list[ChatMessage]) -> str:
    """Return the content of the most recent user turn."""
    for message in reversed(conversation):
        if message.role == "user":
            return message.content
    return ""

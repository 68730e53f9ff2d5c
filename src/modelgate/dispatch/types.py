"""Delegation and queued-task definitions."""

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

DEFAULT_SUGGESTED_QUESTION = "How can I help you with this task?"


class DelegationStatus(Enum):
    """Delegation lifecycle. Only moves forward."""

    PENDING = "pending"
    DISPATCHING = "dispatching"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (DelegationStatus.COMPLETED, DelegationStatus.FAILED)


# Allowed status moves; anything else is a backward move or a lost race
TRANSITIONS: dict[DelegationStatus, frozenset[DelegationStatus]] = {
    DelegationStatus.PENDING: frozenset({DelegationStatus.DISPATCHING, DelegationStatus.FAILED}),
    DelegationStatus.DISPATCHING: frozenset({DelegationStatus.COMPLETED, DelegationStatus.FAILED}),
    DelegationStatus.COMPLETED: frozenset(),
    DelegationStatus.FAILED: frozenset(),
}


def new_delegation_id() -> str:
    return f"dlg-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def normalize(text: str) -> str:
    return text.strip().lower()


def dedup_key(user_message: str, task_description: str) -> str:
    """Key that collapses repeated offline requests into one logical task."""
    return f"{normalize(user_message)}::{normalize(task_description)}"


@dataclass
class DelegationContent:
    """Hand-off package prepared locally for a remote model."""

    context_summary: str
    task_description: str
    suggested_question: str = DEFAULT_SUGGESTED_QUESTION


@dataclass
class DispatchResult:
    """Outcome of one remote call."""

    provider: str
    model: str
    response: str
    dispatched_at: datetime
    completed_at: datetime
    latency_ms: int
    input_tokens: int = 0
    output_tokens: int = 0
    is_free: bool = False
    is_fallback: bool = False

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "model": self.model,
            "response": self.response,
            "dispatched_at": self.dispatched_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "latency_ms": self.latency_ms,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "is_free": self.is_free,
            "is_fallback": self.is_fallback,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DispatchResult":
        return cls(
            provider=data["provider"],
            model=data["model"],
            response=data["response"],
            dispatched_at=datetime.fromisoformat(data["dispatched_at"]),
            completed_at=datetime.fromisoformat(data["completed_at"]),
            latency_ms=int(data.get("latency_ms", 0)),
            input_tokens=int(data.get("input_tokens", 0)),
            output_tokens=int(data.get("output_tokens", 0)),
            is_free=bool(data.get("is_free", False)),
            is_fallback=bool(data.get("is_fallback", False)),
        )


@dataclass
class Delegation:
    """A task handed from the local gatekeeper to a remote model."""

    id: str
    user_id: str
    strategy: str  # routing mode value at creation time
    context_summary: str
    task_description: str
    suggested_question: str
    user_message: str
    cloud_instruction: str
    status: DelegationStatus = DelegationStatus.PENDING
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    result: DispatchResult | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        """Convert to dict for storage."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "strategy": self.strategy,
            "context_summary": self.context_summary,
            "task_description": self.task_description,
            "suggested_question": self.suggested_question,
            "user_message": self.user_message,
            "cloud_instruction": self.cloud_instruction,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Delegation":
        """Create from dict loaded from storage."""
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            strategy=data["strategy"],
            context_summary=data["context_summary"],
            task_description=data["task_description"],
            suggested_question=data["suggested_question"],
            user_message=data["user_message"],
            cloud_instruction=data["cloud_instruction"],
            status=DelegationStatus(data["status"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            result=DispatchResult.from_dict(data["result"]) if data.get("result") else None,
            error=data.get("error"),
        )


@dataclass
class QueuedTask:
    """Delegated work waiting for connectivity."""

    id: str
    user_id: str
    user_message: str
    context_summary: str
    task_description: str
    strategy: str
    queued_at: datetime = field(default_factory=datetime.now)
    duplicate_count: int = 1
    suggested_question: str = DEFAULT_SUGGESTED_QUESTION

    @property
    def dedup_key(self) -> str:
        return dedup_key(self.user_message, self.task_description)

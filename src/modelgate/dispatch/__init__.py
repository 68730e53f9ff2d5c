"""Delegation state machine and remote dispatch."""

from modelgate.dispatch.types import (
    Delegation,
    DelegationContent,
    DelegationStatus,
    DispatchResult,
    QueuedTask,
    dedup_key,
)

__all__ = [
    "Delegation",
    "DelegationContent",
    "DelegationStatus",
    "DispatchResult",
    "QueuedTask",
    "dedup_key",
]

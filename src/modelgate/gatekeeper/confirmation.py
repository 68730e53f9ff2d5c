"""Pending user confirmations (premium model use, privacy override).

At most one live confirmation per user; a new one replaces the old. Expiry
is enforced on read so a dropped timer can never leak an entry.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from modelgate.core.logging import get_logger

logger = get_logger("gatekeeper.confirmation")

CONFIRMATION_TTL = timedelta(minutes=5)


class ConfirmationKind(Enum):
    PREMIUM = "premium"
    PRIVACY = "privacy"


class ConfirmationAction(Enum):
    USE_PREMIUM = "use_premium"
    USE_FREE = "use_free"
    SEND_ANYWAY = "send_anyway"
    REGISTER_API_KEY = "register_api_key"
    CANCEL = "cancel"


ACTION_PATTERNS: list[tuple[ConfirmationAction, re.Pattern]] = [
    (ConfirmationAction.USE_PREMIUM, re.compile(r"^(고급\s*모델|프리미엄|premium|고급|use\s*premium)", re.IGNORECASE)),
    (ConfirmationAction.USE_FREE, re.compile(r"^(무료|free|try\s*free)", re.IGNORECASE)),
    (ConfirmationAction.SEND_ANYWAY, re.compile(r"^(그냥\s*보내|전송|send\s*anyway|send\s*it)", re.IGNORECASE)),
    (ConfirmationAction.REGISTER_API_KEY, re.compile(r"^(api\s*키|apikey|api\s*key|키\s*등록|register)", re.IGNORECASE)),
    (ConfirmationAction.CANCEL, re.compile(r"^(취소|cancel|아니|no\b)", re.IGNORECASE)),
]


def parse_confirmation_action(message: str) -> ConfirmationAction | None:
    """Map a user's reply to a confirmation action, if it is one."""
    normalized = message.strip().lower()
    for action, pattern in ACTION_PATTERNS:
        if pattern.search(normalized):
            return action
    return None


@dataclass
class PendingConfirmation:
    user_id: str
    original_message: str
    kind: ConfirmationKind
    analysis: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
    expires_at: datetime | None = None

    def __post_init__(self):
        if self.expires_at is None:
            self.expires_at = self.created_at + CONFIRMATION_TTL

    def expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class ConfirmationStore:
    """Keyed by user id; safe for concurrent users on one event loop."""

    def __init__(
        self,
        clock: Callable[[], datetime] = datetime.now,
        ttl: timedelta = CONFIRMATION_TTL,
    ):
        self._clock = clock
        self.ttl = ttl
        self._pending: dict[str, PendingConfirmation] = {}

    def put(
        self,
        user_id: str,
        original_message: str,
        kind: ConfirmationKind,
        analysis: dict | None = None,
    ) -> PendingConfirmation:
        """Store a confirmation, replacing any previous one for the user."""
        now = self._clock()
        pending = PendingConfirmation(
            user_id=user_id,
            original_message=original_message,
            kind=kind,
            analysis=dict(analysis or {}),
            created_at=now,
            expires_at=now + self.ttl,
        )
        if user_id in self._pending:
            logger.debug(f"Replacing pending confirmation for {user_id}")
        self._pending[user_id] = pending
        return pending

    def get(self, user_id: str) -> PendingConfirmation | None:
        pending = self._pending.get(user_id)
        if pending is None:
            return None
        if pending.expired(self._clock()):
            del self._pending[user_id]
            logger.debug(f"Evicted expired confirmation for {user_id}")
            return None
        return pending

    def pop(self, user_id: str) -> PendingConfirmation | None:
        """Take the live confirmation, removing it either way."""
        pending = self.get(user_id)
        self._pending.pop(user_id, None)
        return pending

    def has_pending(self, user_id: str) -> bool:
        return self.get(user_id) is not None

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [user for user, p in self._pending.items() if p.expired(now)]
        for user in expired:
            del self._pending[user]
        return len(expired)

    def __len__(self) -> int:
        return len(self._pending)

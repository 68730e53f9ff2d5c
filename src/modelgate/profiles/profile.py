"""User routing profile and the stores it is assembled from."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

DEFAULT_PROVIDER = "anthropic"
DEFAULT_MODEL = "claude-3-5-haiku-20241022"


class RoutingMode(Enum):
    """How the resolver orders candidate models."""

    MANUAL = "manual"
    COST_EFFECTIVE = "cost_effective"
    MAX_PERFORMANCE = "max_performance"


@dataclass
class UserRoutingProfile:
    """Routing preferences for one user.

    ``api_keys`` holds decrypted provider keys from the secret store and is
    never persisted alongside the rest of the profile.
    """

    user_id: str
    mode: RoutingMode = RoutingMode.COST_EFFECTIVE
    preferred_provider: str = DEFAULT_PROVIDER
    preferred_model: str = DEFAULT_MODEL
    api_keys: dict[str, str] = field(default_factory=dict)
    auto_fallback: bool = True
    updated_at: datetime = field(default_factory=datetime.now)

    def user_key(self, provider: str) -> str | None:
        key = self.api_keys.get(provider)
        return key or None

    @property
    def has_any_key(self) -> bool:
        return any(self.api_keys.values())

    def to_dict(self) -> dict:
        """Convert to dict for storage (keys excluded)."""
        return {
            "user_id": self.user_id,
            "mode": self.mode.value,
            "preferred_provider": self.preferred_provider,
            "preferred_model": self.preferred_model,
            "auto_fallback": self.auto_fallback,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict, api_keys: dict[str, str] | None = None) -> "UserRoutingProfile":
        """Create from dict loaded from storage."""
        return cls(
            user_id=data["user_id"],
            mode=RoutingMode(data.get("mode") or RoutingMode.COST_EFFECTIVE.value),
            preferred_provider=data.get("preferred_provider") or DEFAULT_PROVIDER,
            preferred_model=data.get("preferred_model") or DEFAULT_MODEL,
            api_keys=dict(api_keys or {}),
            auto_fallback=bool(data.get("auto_fallback", True)),
            updated_at=datetime.fromisoformat(data["updated_at"])
            if data.get("updated_at")
            else datetime.now(),
        )


class ProfileStore(ABC):
    """Persistence for the non-secret part of a profile."""

    @abstractmethod
    async def get_profile(self, user_id: str) -> dict | None:
        ...

    @abstractmethod
    async def save_profile(self, data: dict) -> None:
        ...


class SecretStore(ABC):
    """External store returning decrypted per-user provider keys."""

    @abstractmethod
    async def get_keys(self, user_id: str) -> dict[str, str]:
        ...

    @abstractmethod
    async def set_key(self, user_id: str, provider: str, key: str) -> None:
        ...

    @abstractmethod
    async def remove_key(self, user_id: str, provider: str) -> None:
        ...


class InMemorySecretStore(SecretStore):
    """Process-local secret store for development and tests."""

    def __init__(self, keys: dict[str, dict[str, str]] | None = None):
        self._keys: dict[str, dict[str, str]] = {
            user: dict(provider_keys) for user, provider_keys in (keys or {}).items()
        }

    async def get_keys(self, user_id: str) -> dict[str, str]:
        return dict(self._keys.get(user_id, {}))

    async def set_key(self, user_id: str, provider: str, key: str) -> None:
        self._keys.setdefault(user_id, {})[provider] = key

    async def remove_key(self, user_id: str, provider: str) -> None:
        self._keys.get(user_id, {}).pop(provider, None)

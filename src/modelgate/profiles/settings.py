"""User settings commands - the only writers of a routing profile."""

import re
from datetime import datetime

from modelgate.core.logging import get_logger, mask_key
from modelgate.core.types import ActionResult
from modelgate.llm.registry import ProviderRegistry, get_registry
from modelgate.profiles.profile import (
    ProfileStore,
    RoutingMode,
    SecretStore,
    UserRoutingProfile,
)

logger = get_logger("profiles.settings")

MODEL_CHANGE_PATTERN = re.compile(
    r"^(?:모델\s*변경|(?:change|set|use)\s+model)\s+(?:to\s+)?(.+)$", re.IGNORECASE
)

MODE_ALIASES: dict[str, RoutingMode] = {
    "manual": RoutingMode.MANUAL,
    "수동": RoutingMode.MANUAL,
    "cost_effective": RoutingMode.COST_EFFECTIVE,
    "cost": RoutingMode.COST_EFFECTIVE,
    "가성비": RoutingMode.COST_EFFECTIVE,
    "max_performance": RoutingMode.MAX_PERFORMANCE,
    "performance": RoutingMode.MAX_PERFORMANCE,
    "최고성능": RoutingMode.MAX_PERFORMANCE,
}


class RoutingSettings:
    """Loads and mutates routing profiles.

    Concurrent writes for the same user are last-writer-wins.
    """

    def __init__(
        self,
        profiles: ProfileStore,
        secrets: SecretStore,
        registry: ProviderRegistry | None = None,
    ):
        self.profiles = profiles
        self.secrets = secrets
        self.registry = registry or get_registry()

    async def load(self, user_id: str) -> UserRoutingProfile:
        """Profile with decrypted keys, defaults when the user has none stored."""
        data = await self.profiles.get_profile(user_id)
        keys = await self.secrets.get_keys(user_id)
        if data is None:
            return UserRoutingProfile(user_id=user_id, api_keys=keys)
        return UserRoutingProfile.from_dict(data, api_keys=keys)

    async def _save(self, profile: UserRoutingProfile) -> None:
        profile.updated_at = datetime.now()
        await self.profiles.save_profile(profile.to_dict())

    async def set_mode(self, user_id: str, mode: RoutingMode) -> UserRoutingProfile:
        profile = await self.load(user_id)
        profile.mode = mode
        await self._save(profile)
        logger.info(f"User {user_id}: mode set to {mode.value}")
        return profile

    async def set_preferred_model(self, user_id: str, provider: str, model_id: str) -> ActionResult:
        if self.registry.get_model(model_id, provider) is None:
            return ActionResult(success=False, error=f"Unknown model: {provider}/{model_id}")

        profile = await self.load(user_id)
        profile.preferred_provider = provider
        profile.preferred_model = model_id
        await self._save(profile)
        logger.info(f"User {user_id}: preferred model {provider}/{model_id}")
        return ActionResult(success=True, data={"provider": provider, "model": model_id})

    async def set_auto_fallback(self, user_id: str, enabled: bool) -> UserRoutingProfile:
        profile = await self.load(user_id)
        profile.auto_fallback = enabled
        await self._save(profile)
        return profile

    async def register_key(self, user_id: str, key: str, provider: str | None = None) -> ActionResult:
        """Store a provider key after a format check.

        The provider is detected from the key prefix when not given.
        """
        key = key.strip()
        provider = provider or self.registry.detect_provider_from_key(key)
        if provider is None:
            return ActionResult(success=False, error="Could not detect the provider for this key.")

        if not self.registry.validate_key_format(provider, key):
            display = self.registry.provider_display_name(provider)
            return ActionResult(success=False, error=f"Invalid key format for {display}.")

        await self.secrets.set_key(user_id, provider, key)
        logger.info(f"User {user_id}: registered {provider} key {mask_key(key)}")
        return ActionResult(success=True, data={"provider": provider})

    async def remove_key(self, user_id: str, provider: str) -> ActionResult:
        await self.secrets.remove_key(user_id, provider)
        logger.info(f"User {user_id}: removed {provider} key")
        return ActionResult(success=True, data={"provider": provider})

    def match_model(self, query: str) -> tuple[str, str] | None:
        """Find the catalog model a free-text query names.

        Exact id beats exact display name, which beats a prefix, which beats
        a substring. Within one tier catalog order wins.
        """
        query = query.strip().lower()
        if not query:
            return None

        models = [(p.id, m) for p in self.registry.list_providers() for m in p.models]
        tiers = (
            lambda m: m.id.lower() == query,
            lambda m: m.name.lower() == query,
            lambda m: m.id.lower().startswith(query) or m.name.lower().startswith(query),
            lambda m: query in m.id.lower() or query in m.name.lower(),
        )
        for matches in tiers:
            for provider_id, model in models:
                if matches(model):
                    return provider_id, model.id
        return None

    def parse_model_change_command(self, message: str) -> ActionResult | None:
        """Match "모델 변경 haiku" / "change model gpt-4o" against the catalog.

        Returns:
            None when the message is not a model command, otherwise an
            ActionResult with (provider_id, model_id) as data or an error
            naming the unknown model
        """
        match = MODEL_CHANGE_PATTERN.match(message.strip())
        if not match:
            return None

        query = match.group(1).strip().rstrip(".!?")
        found = self.match_model(query)
        if found is None:
            logger.info(f"Model change to unknown model {query!r}")
            return ActionResult(success=False, error=f"Unknown model: {query}")
        return ActionResult(success=True, data=found)

    @staticmethod
    def parse_mode(text: str) -> RoutingMode | None:
        return MODE_ALIASES.get(text.strip().lower().replace(" ", "_"))

    def key_status_message(self, profile: UserRoutingProfile) -> str:
        lines = ["API key status", ""]
        registered = [
            f"- {p.display_name}" for p in self.registry.list_providers() if profile.user_key(p.id)
        ]
        if registered:
            lines.append("Registered keys:")
            lines.extend(registered)
        else:
            lines.append("No API keys registered.")
        lines.append("")
        lines.append(f"Mode: {profile.mode.value}")
        lines.append(f"Preferred model: {profile.preferred_provider}/{profile.preferred_model}")
        lines.append(f"Auto fallback: {'on' if profile.auto_fallback else 'off'}")
        return "\n".join(lines)

    def key_guide_message(self) -> str:
        lines = ["Register your own API key to use models for free.", ""]
        for provider in self.registry.list_providers():
            if provider.free_tier or provider.free_credits:
                lines.append(f"- {provider.display_name}: {provider.website}")
                if provider.free_credits:
                    lines.append(f"  {provider.free_credits}")
        lines.append("")
        lines.append("Paste the key as-is; the provider is detected automatically.")
        return "\n".join(lines)

"""Model resolver - picks provider, model and key from a user's routing profile.

Resolution is pure: it reads the profile, the platform keys and a
``has_credits`` flag and produces an ordered candidate list. The first
candidate is the resolved model; the rest are what the dispatcher walks on
transient provider failure.
"""

import math
from collections.abc import Iterator
from dataclasses import dataclass

from modelgate.core.errors import ConfigurationError
from modelgate.core.logging import get_logger
from modelgate.llm.registry import ChainEntry, ProviderRegistry, get_registry
from modelgate.profiles.profile import RoutingMode, UserRoutingProfile

logger = get_logger("llm.router")

FREE_CHAIN = "free"
PAID_CHAIN = "paid"
PERFORMANCE_CHAIN = "performance"

LOW_CREDIT_THRESHOLD = 100


@dataclass(frozen=True)
class ResolvedModel:
    """One usable (provider, model, key) choice for a single request."""

    provider: str
    model: str
    key: str
    is_fallback: bool = False
    is_free: bool = False
    # Operator-owned key, whether or not the call is charged
    uses_platform_key: bool = False


def _manual_error(model: str, needs_credits: bool) -> str:
    if needs_credits:
        return "\n".join(
            [
                f'Credits are required to use "{model}".',
                "",
                "Register your own API key or top up credits.",
                'Or switch to "cost_effective" mode to use free models automatically.',
            ]
        )
    return "\n".join(
        [
            f'No API key available for "{model}".',
            "",
            "Register an API key, or choose another mode:",
            '- "cost_effective": free or cheap models picked automatically',
            '- "max_performance": highest-capability models first',
        ]
    )


PERFORMANCE_ERROR = "\n".join(
    [
        "An API key or credits are required for the highest-capability models.",
        "",
        "Register your own API key or top up credits.",
        'Or switch to "cost_effective" mode to use free models automatically.',
    ]
)


class ModelResolver:
    """Deterministic, mode-driven model resolution over static fallback chains."""

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        platform_keys: dict[str, str] | None = None,
    ):
        self.registry = registry or get_registry()
        self.platform_keys = {p: k for p, k in (platform_keys or {}).items() if k}

    def platform_key(self, provider: str) -> str | None:
        return self.platform_keys.get(provider)

    def candidates(self, profile: UserRoutingProfile, has_credits: bool) -> list[ResolvedModel]:
        """All usable candidates for this profile in priority order.

        Duplicated (provider, model) pairs keep their first position only.
        """
        if profile.mode == RoutingMode.MANUAL:
            walk = self._manual(profile, has_credits)
        elif profile.mode == RoutingMode.MAX_PERFORMANCE:
            walk = self._max_performance(profile, has_credits)
        else:
            walk = self._cost_effective(profile, has_credits)

        seen: set[tuple[str, str]] = set()
        result = []
        for candidate in walk:
            pair = (candidate.provider, candidate.model)
            if pair in seen:
                continue
            seen.add(pair)
            result.append(candidate)
        return result

    def resolve(self, profile: UserRoutingProfile, has_credits: bool) -> ResolvedModel:
        """Resolve the model for one request.

        Raises:
            ConfigurationError: no usable key for the profile's mode; the
                message is meant to be shown to the user as-is
        """
        candidates = self.candidates(profile, has_credits)
        if not candidates:
            raise ConfigurationError(self.error_message(profile, has_credits))

        resolved = candidates[0]
        logger.info(
            f"Resolved {profile.user_id} ({profile.mode.value}): "
            f"{resolved.provider}/{resolved.model} free={resolved.is_free} "
            f"fallback={resolved.is_fallback} platform_key={resolved.uses_platform_key}"
        )
        return resolved

    def error_message(self, profile: UserRoutingProfile, has_credits: bool) -> str:
        if profile.mode == RoutingMode.MANUAL:
            needs_credits = (
                profile.user_key(profile.preferred_provider) is None
                and self.platform_key(profile.preferred_provider) is not None
                and not has_credits
            )
            return _manual_error(profile.preferred_model, needs_credits)
        if profile.mode == RoutingMode.MAX_PERFORMANCE:
            return PERFORMANCE_ERROR
        return self.no_key_message()

    def no_key_message(self) -> str:
        lines = ["No usable API key is available.", "", "Use it for free:"]
        for provider in self.registry.list_providers():
            if provider.free_tier:
                note = f" ({provider.free_credits})" if provider.free_credits else ""
                lines.append(f"- {provider.display_name}: {provider.website}{note}")
        lines.append("")
        lines.append("Paid: top up credits to use every model.")
        return "\n".join(lines)

    def _manual(self, profile: UserRoutingProfile, has_credits: bool) -> Iterator[ResolvedModel]:
        provider = profile.preferred_provider
        user_key = profile.user_key(provider)
        if user_key:
            yield ResolvedModel(provider, profile.preferred_model, user_key, is_free=True)
            return

        platform_key = self.platform_key(provider)
        if platform_key and has_credits:
            yield ResolvedModel(
                provider, profile.preferred_model, platform_key, is_free=False, uses_platform_key=True
            )

    def _cost_effective(
        self, profile: UserRoutingProfile, has_credits: bool
    ) -> Iterator[ResolvedModel]:
        preferred_key = profile.user_key(profile.preferred_provider)
        if preferred_key:
            yield ResolvedModel(
                profile.preferred_provider, profile.preferred_model, preferred_key, is_free=True
            )

        if profile.auto_fallback:
            yield from self._free_chain(profile)

        for entry in self._chain(PAID_CHAIN):
            key = profile.user_key(entry.provider)
            if key:
                yield ResolvedModel(entry.provider, entry.model, key, is_fallback=True, is_free=True)

        if has_credits:
            for entry in self._chain(PAID_CHAIN):
                key = self.platform_key(entry.provider)
                if key:
                    yield ResolvedModel(
                        entry.provider, entry.model, key, is_free=False, uses_platform_key=True
                    )

    def _max_performance(
        self, profile: UserRoutingProfile, has_credits: bool
    ) -> Iterator[ResolvedModel]:
        for entry in self._chain(PERFORMANCE_CHAIN):
            key = profile.user_key(entry.provider)
            if key:
                yield ResolvedModel(entry.provider, entry.model, key, is_free=True)

        if has_credits:
            for entry in self._chain(PERFORMANCE_CHAIN):
                key = self.platform_key(entry.provider)
                if key:
                    yield ResolvedModel(
                        entry.provider, entry.model, key, is_free=False, uses_platform_key=True
                    )

        yield from self._free_chain(profile)

    def _free_chain(self, profile: UserRoutingProfile) -> Iterator[ResolvedModel]:
        # Free-tier models cost nothing to the user whichever key is used.
        for entry in self._chain(FREE_CHAIN):
            user_key = profile.user_key(entry.provider)
            key = user_key or self.platform_key(entry.provider)
            if key:
                yield ResolvedModel(
                    entry.provider,
                    entry.model,
                    key,
                    is_fallback=True,
                    is_free=True,
                    uses_platform_key=user_key is None,
                )

    def _chain(self, name: str) -> tuple[ChainEntry, ...]:
        return self.registry.chain(name)


def low_credit_warning(credits: int, has_api_key: bool) -> str | None:
    """Warning appended to replies when platform credits run low."""
    if has_api_key:
        return None

    if credits <= 0:
        return "\n".join(
            [
                "Your credits are used up.",
                "",
                "To keep using the service for free, register a free-tier API key",
                "(Google Gemini or Groq), or top up credits.",
            ]
        )

    if credits < LOW_CREDIT_THRESHOLD:
        return "\n".join(
            [
                f"Credits are running low ({credits} left).",
                "",
                "Register a free API key to keep chatting at no cost.",
            ]
        )

    return None


def format_fallback_notice(resolved: ResolvedModel, registry: ProviderRegistry | None = None) -> str | None:
    """Short notice shown when the answer came from a fallback model."""
    if not resolved.is_fallback:
        return None
    registry = registry or get_registry()
    provider = registry.provider_display_name(resolved.provider)
    model = registry.model_display_name(resolved.provider, resolved.model)
    return f"Switched automatically to {provider} {model}."


def estimate_tokens(text: str) -> int:
    """Rough token estimate, about four characters per token."""
    return math.ceil(len(text) / 4)

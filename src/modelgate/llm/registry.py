"""
Provider and model registry.

Static catalog of providers, models, key formats and per-token pricing,
loaded once from ``configs/providers.yaml``. The fallback chains live in the
same file so chain order is data, not code.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from modelgate.core.logging import get_logger

logger = get_logger("llm.registry")

DEFAULT_CATALOG = Path(__file__).parent.parent / "configs" / "providers.yaml"


@dataclass(frozen=True)
class ModelSpec:
    """Model pricing and capability information."""

    id: str
    name: str
    provider: str
    input_price: float  # credits per 1M input tokens
    output_price: float  # credits per 1M output tokens
    context_window: int
    premium_input_price: float | None = None
    premium_output_price: float | None = None
    recommended: bool = False
    free: bool = False

    @property
    def has_premium_pricing(self) -> bool:
        return self.premium_input_price is not None and self.premium_output_price is not None


@dataclass(frozen=True)
class ProviderSpec:
    """Provider catalog entry."""

    id: str
    name: str
    display_name: str
    litellm_prefix: str
    key_prefix: str
    key_pattern: re.Pattern
    website: str
    models: tuple[ModelSpec, ...]
    free_tier: bool = False
    free_credits: str | None = None

    def validate_key(self, key: str) -> bool:
        return bool(self.key_pattern.fullmatch(key.strip()))


@dataclass(frozen=True)
class ChainEntry:
    """One (provider, model) step of a fallback chain."""

    provider: str
    model: str


def _model_from_dict(provider_id: str, data: dict[str, Any]) -> ModelSpec:
    return ModelSpec(
        id=data["id"],
        name=data.get("name", data["id"]),
        provider=provider_id,
        input_price=float(data["input_price"]),
        output_price=float(data["output_price"]),
        context_window=int(data["context_window"]),
        premium_input_price=data.get("premium_input_price"),
        premium_output_price=data.get("premium_output_price"),
        recommended=bool(data.get("recommended", False)),
        free=bool(data.get("free", False)),
    )


def _provider_from_dict(data: dict[str, Any]) -> ProviderSpec:
    provider_id = data["id"]
    return ProviderSpec(
        id=provider_id,
        name=data["name"],
        display_name=data.get("display_name", data["name"]),
        litellm_prefix=data.get("litellm_prefix", provider_id),
        key_prefix=data.get("key_prefix", ""),
        key_pattern=re.compile(data["key_pattern"]),
        website=data.get("website", ""),
        models=tuple(_model_from_dict(provider_id, m) for m in data.get("models", [])),
        free_tier=bool(data.get("free_tier", False)),
        free_credits=data.get("free_credits"),
    )


class ProviderRegistry:
    """Immutable lookup table over the provider catalog."""

    def __init__(
        self,
        providers: list[ProviderSpec],
        chains: dict[str, list[ChainEntry]] | None = None,
    ):
        self._providers: dict[str, ProviderSpec] = {p.id: p for p in providers}
        self._models: dict[str, ModelSpec] = {}
        for provider in providers:
            for model in provider.models:
                self._models.setdefault(model.id, model)
        self._chains: dict[str, tuple[ChainEntry, ...]] = {
            name: tuple(entries) for name, entries in (chains or {}).items()
        }

    @classmethod
    def from_yaml(cls, path: Path | str = DEFAULT_CATALOG) -> "ProviderRegistry":
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)

        providers = [_provider_from_dict(p) for p in data["providers"]]
        chains = {
            name: [ChainEntry(provider=e["provider"], model=e["model"]) for e in entries]
            for name, entries in data.get("chains", {}).items()
        }
        registry = cls(providers, chains)
        logger.info(
            f"Loaded {len(providers)} providers, {len(registry._models)} models "
            f"and {len(chains)} fallback chains"
        )
        return registry

    def list_providers(self) -> list[ProviderSpec]:
        return list(self._providers.values())

    def get_provider(self, provider_id: str) -> ProviderSpec | None:
        return self._providers.get(provider_id)

    def models_for(self, provider_id: str) -> list[ModelSpec]:
        provider = self._providers.get(provider_id)
        return list(provider.models) if provider else []

    def get_model(self, model_id: str, provider_id: str | None = None) -> ModelSpec | None:
        """Look up a model, optionally scoped to one provider."""
        if provider_id is not None:
            for model in self.models_for(provider_id):
                if model.id == model_id:
                    return model
            return None
        return self._models.get(model_id)

    def free_models(self) -> list[ModelSpec]:
        return [m for m in self._models.values() if m.free]

    def chain(self, name: str) -> tuple[ChainEntry, ...]:
        """Get a fallback chain by name ('free', 'paid', 'performance')."""
        return self._chains.get(name, ())

    def validate_key_format(self, provider_id: str, key: str) -> bool:
        provider = self._providers.get(provider_id)
        if not provider:
            return False
        return provider.validate_key(key)

    def detect_provider_from_key(self, key: str) -> str | None:
        """Detect provider from a key's prefix.

        Longer prefixes are checked first so ``sk-ant-`` and ``sk-or-`` win
        over the generic OpenAI ``sk-``. Providers without a prefix are
        matched on their full key pattern.
        """
        key = key.strip()
        prefixed = sorted(
            (p for p in self._providers.values() if p.key_prefix),
            key=lambda p: len(p.key_prefix),
            reverse=True,
        )
        for provider in prefixed:
            if key.startswith(provider.key_prefix):
                return provider.id
        for provider in self._providers.values():
            if not provider.key_prefix and provider.validate_key(key):
                return provider.id
        return None

    def parse_api_key_from_message(self, message: str) -> tuple[str, str] | None:
        """Find an API key embedded in free text.

        Returns:
            (provider_id, key) or None
        """
        for token in re.findall(r"[A-Za-z0-9_\-]{20,}", message):
            provider_id = self.detect_provider_from_key(token)
            if provider_id and self.validate_key_format(provider_id, token):
                return provider_id, token
        return None

    def provider_display_name(self, provider_id: str) -> str:
        provider = self._providers.get(provider_id)
        return provider.display_name if provider else provider_id

    def model_display_name(self, provider_id: str, model_id: str) -> str:
        model = self.get_model(model_id, provider_id)
        return model.name if model else model_id


@lru_cache(maxsize=1)
def get_registry() -> ProviderRegistry:
    """Process-wide registry loaded from the bundled catalog."""
    return ProviderRegistry.from_yaml(DEFAULT_CATALOG)

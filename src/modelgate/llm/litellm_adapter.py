"""LiteLLM adapter - one interface for every remote chat-completion provider."""

import time

import litellm
from litellm import acompletion

from modelgate.core.errors import ProviderError
from modelgate.core.logging import get_logger, mask_key
from modelgate.llm.base import LLMConfig, LLMProvider, LLMResponse
from modelgate.llm.registry import ProviderRegistry, get_registry

logger = get_logger("llm.litellm_adapter")

# Disable LiteLLM's verbose logging
litellm.suppress_debug_info = True
litellm.set_verbose = False


class LiteLLMAdapter(LLMProvider):
    """Remote provider calls through LiteLLM.

    The provider-specific wire format is LiteLLM's concern; this adapter only
    maps catalog ids to LiteLLM model names and normalizes the response to
    plain text plus token usage.
    """

    def __init__(self, registry: ProviderRegistry | None = None, default_timeout: float = 30.0):
        self.registry = registry or get_registry()
        self.default_timeout = default_timeout

    def litellm_name(self, provider_id: str, model_id: str) -> str:
        provider = self.registry.get_provider(provider_id)
        if provider is None:
            raise ProviderError(f"Unknown provider: {provider_id}", provider=provider_id)
        return f"{provider.litellm_prefix}/{model_id}"

    async def complete(self, messages: list[dict], config: LLMConfig) -> LLMResponse:
        """Call LiteLLM completion for the provider/model in ``config``."""
        if not config.provider:
            raise ProviderError("Remote call requires a provider", model=config.model)

        payload_messages = list(messages)
        if config.system_prompt:
            payload_messages = [{"role": "system", "content": config.system_prompt}, *payload_messages]

        params = {
            "model": self.litellm_name(config.provider, config.model),
            "messages": payload_messages,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "timeout": config.timeout or self.default_timeout,
        }
        if config.api_key:
            params["api_key"] = config.api_key

        logger.debug(
            f"LiteLLM request: model={params['model']}, "
            f"messages={len(payload_messages)}, key={mask_key(config.api_key)}"
        )

        start = time.monotonic()
        try:
            response = await acompletion(**params)
        except Exception as e:
            logger.warning(f"LiteLLM error for {config.provider}/{config.model}: {e}")
            raise ProviderError(str(e), provider=config.provider, model=config.model) from e

        try:
            content = response.choices[0].message.content or ""
        except (AttributeError, IndexError) as e:
            raise ProviderError(
                f"Malformed response from {config.provider}",
                provider=config.provider,
                model=config.model,
            ) from e

        if not content.strip():
            raise ProviderError(
                f"{config.provider} returned empty response",
                provider=config.provider,
                model=config.model,
            )

        usage = getattr(response, "usage", None)
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0
        latency_ms = int((time.monotonic() - start) * 1000)

        logger.debug(
            f"LiteLLM response: model={config.model}, "
            f"tokens={input_tokens}+{output_tokens}, latency={latency_ms}ms"
        )

        return LLMResponse(
            content=content,
            model=config.model,
            provider=config.provider,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            latency_ms=latency_ms,
        )

    async def health_check(self) -> bool:
        """Remote reachability is the network monitor's job."""
        return True

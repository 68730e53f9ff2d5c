"""Local LLM provider - OpenAI-compatible API for Ollama, LM Studio, etc."""

import re
import time

import httpx

from modelgate.core.errors import ProviderError
from modelgate.core.logging import get_logger
from modelgate.llm.base import LOCAL_PROVIDER, LLMConfig, LLMProvider, LLMResponse

logger = get_logger("llm.local")

THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL)


def strip_thinking(content: str) -> str:
    """Remove reasoning blocks emitted by small local models."""
    return THINK_BLOCK.sub("", content).strip()


class LocalProvider(LLMProvider):
    """On-device model via OpenAI-compatible API (Ollama, LM Studio, vLLM, etc.)."""

    def __init__(
        self,
        base_url: str,
        default_model: str = "qwen3:0.6b",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url
        self.default_model = default_model
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def complete(self, messages: list[dict], config: LLMConfig) -> LLMResponse:
        """Generate completion via local OpenAI-compatible API."""
        model = config.model or self.default_model

        payload_messages = list(messages)
        if config.system_prompt:
            payload_messages = [{"role": "system", "content": config.system_prompt}, *payload_messages]

        payload = {
            "model": model,
            "messages": payload_messages,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "stream": False,
        }

        logger.debug(f"Local request: model={model}, url={self.base_url}")
        start = time.monotonic()

        try:
            response = await self.client.post(
                "/chat/completions", json=payload, timeout=config.timeout or self.timeout
            )
            response.raise_for_status()
            data = response.json()
            content = data["choices"][0]["message"].get("content") or ""
        except httpx.ConnectError as e:
            logger.warning(f"Local LLM not reachable at {self.base_url}: {e}")
            raise ProviderError(str(e), provider=LOCAL_PROVIDER, model=model) from e
        except httpx.HTTPStatusError as e:
            logger.error(f"Local LLM error: {e.response.status_code}")
            raise ProviderError(str(e), provider=LOCAL_PROVIDER, model=model) from e
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            logger.error(f"Local LLM error: {e}")
            raise ProviderError(str(e), provider=LOCAL_PROVIDER, model=model) from e

        usage = data.get("usage", {})
        content = strip_thinking(content)
        logger.debug(f"Local response: {content[:200]}")

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            provider=LOCAL_PROVIDER,
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            latency_ms=int((time.monotonic() - start) * 1000),
        )

    async def health_check(self) -> bool:
        """Check if local LLM server is running."""
        try:
            response = await self.client.get("/models", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"Local LLM health check failed: {e}")
            return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

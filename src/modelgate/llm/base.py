"""
LLM provider interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

LOCAL_PROVIDER = "local"


@dataclass
class LLMResponse:
    """Response from LLM provider."""

    content: str
    model: str
    provider: str
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0
    metadata: dict | None = None


@dataclass
class LLMConfig:
    """Configuration for LLM call."""

    model: str
    provider: str | None = None
    api_key: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7
    system_prompt: str | None = None
    timeout: float | None = None


class LLMProvider(ABC):
    """Abstract LLM provider."""

    @abstractmethod
    async def complete(self, messages: list[dict], config: LLMConfig) -> LLMResponse:
        """
        Generate completion from messages.

        Args:
            messages: Conversation messages (role/content dicts)
            config: LLM configuration, including credentials for remote calls

        Returns:
            LLMResponse with plain-text content and token usage

        Raises:
            ProviderError: on HTTP failure, timeout or malformed response
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if provider is available."""
        ...

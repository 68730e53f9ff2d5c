"""Tests for LLM module."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from modelgate.core.errors import ProviderError
from modelgate.llm.base import LOCAL_PROVIDER, LLMConfig
from modelgate.llm.litellm_adapter import LiteLLMAdapter
from modelgate.llm.local import LocalProvider, strip_thinking


def _litellm_response(content: str | None, prompt_tokens: int = 3, completion_tokens: int = 5):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def _local_provider(handler) -> LocalProvider:
    client = httpx.AsyncClient(base_url="http://local.test/v1", transport=httpx.MockTransport(handler))
    return LocalProvider("http://local.test/v1", client=client)


def test_llm_config_defaults():
    """LLMConfig has sensible defaults."""
    config = LLMConfig(model="test-model")
    assert config.max_tokens == 4096
    assert config.temperature == 0.7
    assert config.system_prompt is None
    assert config.api_key is None


def test_litellm_model_names():
    """Catalog ids map to LiteLLM's provider-prefixed names."""
    adapter = LiteLLMAdapter()
    assert adapter.litellm_name("google", "gemini-2.0-flash") == "gemini/gemini-2.0-flash"
    assert adapter.litellm_name("together", "meta-llama/Llama-3.3-70B-Instruct-Turbo") == (
        "together_ai/meta-llama/Llama-3.3-70B-Instruct-Turbo"
    )
    with pytest.raises(ProviderError):
        adapter.litellm_name("nope", "x")


@pytest.mark.asyncio
async def test_litellm_complete_passes_key_and_system_prompt():
    """The per-request key and system prompt reach LiteLLM."""
    mock = AsyncMock(return_value=_litellm_response("Hello!"))
    with patch("modelgate.llm.litellm_adapter.acompletion", mock):
        response = await LiteLLMAdapter().complete(
            [{"role": "user", "content": "hi"}],
            LLMConfig(model="gpt-4o-mini", provider="openai", api_key="user-key", system_prompt="be brief"),
        )

    kwargs = mock.call_args.kwargs
    assert kwargs["model"] == "openai/gpt-4o-mini"
    assert kwargs["api_key"] == "user-key"
    assert kwargs["messages"][0] == {"role": "system", "content": "be brief"}
    assert response.content == "Hello!"
    assert (response.input_tokens, response.output_tokens) == (3, 5)
    assert response.provider == "openai"


@pytest.mark.asyncio
async def test_litellm_errors_become_provider_errors():
    """Any LiteLLM exception is a transient ProviderError."""
    mock = AsyncMock(side_effect=RuntimeError("rate limited"))
    with patch("modelgate.llm.litellm_adapter.acompletion", mock):
        with pytest.raises(ProviderError) as exc:
            await LiteLLMAdapter().complete([], LLMConfig(model="gpt-4o", provider="openai"))
    assert exc.value.provider == "openai"
    assert exc.value.model == "gpt-4o"


@pytest.mark.asyncio
async def test_litellm_empty_response_is_error():
    """Empty content is treated as a failed call."""
    mock = AsyncMock(return_value=_litellm_response("   "))
    with patch("modelgate.llm.litellm_adapter.acompletion", mock):
        with pytest.raises(ProviderError):
            await LiteLLMAdapter().complete([], LLMConfig(model="gpt-4o", provider="openai"))


@pytest.mark.asyncio
async def test_litellm_requires_provider():
    """Remote calls must name a provider."""
    with pytest.raises(ProviderError):
        await LiteLLMAdapter().complete([], LLMConfig(model="gpt-4o"))


def test_strip_thinking():
    """Reasoning blocks are removed."""
    assert strip_thinking("<think>\nlet me see\n</think>\n\nHi there") == "Hi there"
    assert strip_thinking("plain") == "plain"


@pytest.mark.asyncio
async def test_local_complete():
    """Local runtime replies are parsed and stripped."""
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "model": "qwen3:0.6b",
                "choices": [{"message": {"content": "<think>hmm</think>Hello!"}}],
                "usage": {"prompt_tokens": 4, "completion_tokens": 2},
            },
        )

    provider = _local_provider(handler)
    response = await provider.complete(
        [{"role": "user", "content": "안녕"}], LLMConfig(model="qwen3:0.6b", system_prompt="short")
    )
    await provider.close()

    assert captured["path"] == "/v1/chat/completions"
    assert captured["body"]["messages"][0] == {"role": "system", "content": "short"}
    assert response.content == "Hello!"
    assert response.provider == LOCAL_PROVIDER
    assert response.output_tokens == 2


@pytest.mark.asyncio
async def test_local_http_error_is_provider_error():
    """Server errors from the local runtime raise ProviderError."""
    provider = _local_provider(lambda request: httpx.Response(500))
    with pytest.raises(ProviderError):
        await provider.complete([], LLMConfig(model="qwen3:0.6b"))


@pytest.mark.asyncio
async def test_local_unreachable_is_provider_error():
    """Connection failures raise ProviderError."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    provider = _local_provider(handler)
    with pytest.raises(ProviderError):
        await provider.complete([], LLMConfig(model="qwen3:0.6b"))
    assert not await provider.health_check()


@pytest.mark.asyncio
async def test_local_health_check():
    """Health check hits the models endpoint."""
    provider = _local_provider(lambda request: httpx.Response(200, json={"data": []}))
    assert await provider.health_check()

"""Shared fixtures: temporary store, scripted remote provider, recording sink."""

from pathlib import Path

import pytest

from modelgate.core.errors import ProviderError
from modelgate.llm.base import LLMConfig, LLMProvider, LLMResponse
from modelgate.offline.notify import Channel, Notification, NotificationSink
from modelgate.storage.store import SQLiteStore


class ScriptedRemote(LLMProvider):
    """Remote provider that answers unless its provider/model is marked failing."""

    def __init__(self, reply: str = "remote answer"):
        self.reply = reply
        self.failing: set[str] = set()
        self.calls: list[LLMConfig] = []

    async def complete(self, messages: list[dict], config: LLMConfig) -> LLMResponse:
        self.calls.append(config)
        if config.provider in self.failing or f"{config.provider}/{config.model}" in self.failing:
            raise ProviderError("scripted failure", provider=config.provider, model=config.model)
        return LLMResponse(
            content=self.reply,
            model=config.model,
            provider=config.provider,
            input_tokens=1000,
            output_tokens=2000,
            latency_ms=5,
        )

    async def health_check(self) -> bool:
        return True


class RecordingSink(NotificationSink):
    """Sink with one recording handler per channel."""

    def __init__(self):
        super().__init__()
        self.received: list[Notification] = []

        async def record(notification: Notification) -> None:
            self.received.append(notification)

        # Chat only, so each notification is recorded once
        self.register(Channel.CHAT, record)

    def types(self) -> list[str]:
        return [n.type.value for n in self.received]


@pytest.fixture
async def store(tmp_path: Path):
    """Connected store with 1000 signup credits."""
    store = SQLiteStore(tmp_path / "test.db", signup_credits=1000)
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def remote():
    return ScriptedRemote()


@pytest.fixture
def sink():
    return RecordingSink()

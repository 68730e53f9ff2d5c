"""Tests for routing profile settings commands."""

import pytest

from modelgate.profiles.profile import InMemorySecretStore, RoutingMode, UserRoutingProfile
from modelgate.profiles.settings import RoutingSettings
from modelgate.storage.store import SQLiteStore

GROQ_KEY = "gsk_" + "e" * 52
OPENAI_KEY = "sk-" + "b" * 40


@pytest.fixture
def settings(store: SQLiteStore) -> RoutingSettings:
    return RoutingSettings(store, InMemorySecretStore())


@pytest.mark.asyncio
async def test_load_defaults(settings: RoutingSettings):
    """Unknown users get the default cost-effective profile."""
    profile = await settings.load("new-user")
    assert profile.mode == RoutingMode.COST_EFFECTIVE
    assert profile.auto_fallback
    assert not profile.has_any_key


@pytest.mark.asyncio
async def test_mode_persists(settings: RoutingSettings):
    """Mode changes survive a reload."""
    await settings.set_mode("u1", RoutingMode.MAX_PERFORMANCE)
    assert (await settings.load("u1")).mode == RoutingMode.MAX_PERFORMANCE


@pytest.mark.asyncio
async def test_set_preferred_model_validates(settings: RoutingSettings):
    """Only catalog models can be preferred."""
    result = await settings.set_preferred_model("u1", "openai", "gpt-4o")
    assert result.success
    profile = await settings.load("u1")
    assert (profile.preferred_provider, profile.preferred_model) == ("openai", "gpt-4o")

    result = await settings.set_preferred_model("u1", "openai", "gpt-99")
    assert not result.success
    assert "Unknown model" in result.error


@pytest.mark.asyncio
async def test_auto_fallback_toggle(settings: RoutingSettings):
    """Auto fallback can be switched off."""
    await settings.set_auto_fallback("u1", False)
    assert not (await settings.load("u1")).auto_fallback


@pytest.mark.asyncio
async def test_register_key_detects_provider(settings: RoutingSettings):
    """Registered keys are attributed by prefix and loaded with the profile."""
    result = await settings.register_key("u1", f"  {GROQ_KEY} ")
    assert result.success
    assert result.data == {"provider": "groq"}
    assert (await settings.load("u1")).user_key("groq") == GROQ_KEY


@pytest.mark.asyncio
async def test_register_key_rejects_bad_format(settings: RoutingSettings):
    """Malformed and unattributable keys are refused."""
    assert not (await settings.register_key("u1", "gsk_tooshort")).success
    assert not (await settings.register_key("u1", "hello world")).success
    assert not (await settings.register_key("u1", OPENAI_KEY, provider="anthropic")).success


@pytest.mark.asyncio
async def test_remove_key(settings: RoutingSettings):
    """Removed keys no longer appear on the profile."""
    await settings.register_key("u1", OPENAI_KEY)
    await settings.remove_key("u1", "openai")
    assert (await settings.load("u1")).user_key("openai") is None


def test_parse_model_change_command(settings: RoutingSettings):
    """Model change commands match catalog names in Korean and English."""
    assert settings.parse_model_change_command("모델 변경 GPT-4o Mini").data == ("openai", "gpt-4o-mini")
    assert settings.parse_model_change_command("change model gemini-2.0-flash").data == (
        "google",
        "gemini-2.0-flash",
    )
    assert settings.parse_model_change_command("what model are you?") is None
    assert settings.parse_model_change_command("모델 좋아요") is None


def test_model_match_prefers_exact_names(settings: RoutingSettings):
    """An exact id or name wins over a longer model containing it."""
    assert settings.match_model("gpt-4o") == ("openai", "gpt-4o")
    assert settings.match_model("GPT-4o Mini") == ("openai", "gpt-4o-mini")
    assert settings.match_model("claude sonnet 4") == ("anthropic", "claude-sonnet-4-20250514")
    assert settings.match_model("sonnet") == ("anthropic", "claude-sonnet-4-20250514")
    assert settings.match_model("llama-3.3") == ("groq", "llama-3.3-70b-versatile")

    result = settings.parse_model_change_command("set model to gpt-4o.")
    assert result.success
    assert result.data == ("openai", "gpt-4o")


def test_unknown_model_command_is_an_error(settings: RoutingSettings):
    """A model command naming nothing in the catalog fails instead of guessing."""
    result = settings.parse_model_change_command("change model gpt-5 turbo ultra")

    assert not result.success
    assert result.error == "Unknown model: gpt-5 turbo ultra"


def test_parse_mode_aliases():
    """Mode names accept Korean and English aliases."""
    assert RoutingSettings.parse_mode("가성비") == RoutingMode.COST_EFFECTIVE
    assert RoutingSettings.parse_mode("Max Performance") == RoutingMode.MAX_PERFORMANCE
    assert RoutingSettings.parse_mode("수동") == RoutingMode.MANUAL
    assert RoutingSettings.parse_mode("turbo") is None


def test_status_and_guide_messages(settings: RoutingSettings):
    """Status lists registered providers; the guide lists free tiers."""
    profile = UserRoutingProfile(user_id="u1", api_keys={"groq": GROQ_KEY})
    status = settings.key_status_message(profile)
    assert "Groq" in status
    assert "cost_effective" in status

    guide = settings.key_guide_message()
    assert "https://aistudio.google.com" in guide
    assert "https://console.groq.com" in guide

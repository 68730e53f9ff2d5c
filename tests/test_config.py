"""Tests for configuration module."""

from pathlib import Path

from modelgate.core.config import Settings


def test_default_settings():
    """Settings load with defaults."""
    settings = Settings(
        _env_file=None,  # Don't load .env in tests
    )
    assert settings.data_dir == Path("data")
    assert settings.poll_interval == 30.0
    assert settings.probe_timeout == 5.0
    assert settings.dispatch_timeout == 30.0
    assert settings.confirmation_ttl_seconds == 300
    assert settings.platform_markup == 2.0
    assert settings.long_context_threshold == 200_000


def test_db_path():
    """Database path combines data_dir and db_name."""
    settings = Settings(
        data_dir=Path("/tmp/test"),
        db_name="test.db",
        _env_file=None,
    )
    assert settings.db_path == Path("/tmp/test/test.db")


def test_platform_keys_skip_empty():
    """Only configured platform keys are exposed."""
    settings = Settings(groq_api_key="gsk_" + "a" * 52, _env_file=None)
    assert settings.platform_keys == {"groq": "gsk_" + "a" * 52}


def test_env_prefix(monkeypatch):
    """Environment variables use the MODELGATE_ prefix."""
    monkeypatch.setenv("MODELGATE_POLL_INTERVAL", "5")
    settings = Settings(_env_file=None)
    assert settings.poll_interval == 5.0

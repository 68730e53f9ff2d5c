"""
Configuration management.

Loads settings from environment variables and .env file.
Prefix: MODELGATE_
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MODELGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Platform (operator-owned) provider keys
    anthropic_api_key: str = Field(default="", description="Anthropic platform key")
    openai_api_key: str = Field(default="", description="OpenAI platform key")
    google_api_key: str = Field(default="", description="Google Gemini platform key")
    groq_api_key: str = Field(default="", description="Groq platform key")
    together_api_key: str = Field(default="", description="Together AI platform key")
    openrouter_api_key: str = Field(default="", description="OpenRouter platform key")

    # Local runtime
    local_llm_url: str = Field(
        default="http://127.0.0.1:11434/v1",
        description="Local inference endpoint (OpenAI-compatible)",
    )
    local_model: str = Field(default="qwen3:0.6b", description="Local gatekeeper model")

    # Storage
    data_dir: Path = Field(default=Path("data"), description="Data storage directory")
    db_name: str = Field(default="modelgate.db", description="SQLite database name")

    # Network monitor
    probe_urls: list[str] = Field(
        default=[
            "https://www.google.com/generate_204",
            "https://1.1.1.1/cdn-cgi/trace",
        ],
        description="Reachability probe endpoints",
    )
    probe_timeout: float = Field(default=5.0, description="Probe timeout seconds")
    poll_interval: float = Field(default=30.0, description="Network poll interval seconds")

    # Dispatch
    dispatch_timeout: float = Field(default=30.0, description="Hard timeout per remote call")
    dispatch_liveness_timeout: float = Field(
        default=120.0, description="Age after which a dispatching delegation is failed"
    )
    generation_max_tokens: int = Field(default=2048, description="Max tokens for remote calls")
    delegation_retention_hours: int = Field(default=24, description="Terminal record retention")

    # Billing
    platform_markup: float = Field(default=2.0, description="Multiplier for platform-key calls")
    long_context_threshold: int = Field(default=200_000, description="Premium pricing threshold")
    default_signup_credits: int = Field(default=1000, description="Credits for new accounts")

    # Confirmation
    confirmation_ttl_seconds: int = Field(default=300, description="Pending confirmation lifetime")

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name

    @property
    def platform_keys(self) -> dict[str, str]:
        """Configured platform keys by provider id."""
        keys = {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "google": self.google_api_key,
            "groq": self.groq_api_key,
            "together": self.together_api_key,
            "openrouter": self.openrouter_api_key,
        }
        return {provider: key for provider, key in keys.items() if key}


def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

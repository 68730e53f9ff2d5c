"""
Core module - configuration, logging, errors, shared types.

Components:
- config: Settings management via pydantic-settings
- errors: Exception taxonomy
- types: Shared data structures (ChatMessage, ActionResult)
- logging: Structured logging setup
"""

from modelgate.core.config import Settings
from modelgate.core.errors import ConfigurationError, ModelGateError, ProviderError
from modelgate.core.types import ActionResult, ChatMessage

__all__ = [
    "Settings",
    "ActionResult",
    "ChatMessage",
    "ModelGateError",
    "ConfigurationError",
    "ProviderError",
]

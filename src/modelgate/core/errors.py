"""Exception taxonomy."""


class ModelGateError(Exception):
    """Base class for all modelgate errors."""


class ConfigurationError(ModelGateError):
    """No usable key/model for the requested mode.

    The message is user-facing and carries actionable next steps.
    """


class ProviderError(ModelGateError):
    """Transient remote failure (HTTP error, timeout, malformed response)."""

    def __init__(self, message: str, provider: str | None = None, model: str | None = None):
        super().__init__(message)
        self.provider = provider
        self.model = model


class ClassifierError(ModelGateError):
    """Local classifier produced no parseable output."""


class LedgerError(ModelGateError):
    """Credit ledger unavailable or rejected an operation."""


class InvalidTransitionError(ModelGateError):
    """Delegation status change that would move backward or race another worker."""

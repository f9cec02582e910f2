"""Exception hierarchy for colloquy."""

from typing import Any, Optional, Sequence


class ColloquyError(Exception):
    """Base class for all colloquy errors."""


class ConfigurationError(ColloquyError):
    """Invalid or incomplete configuration, discovered at startup."""


class ProviderError(ColloquyError):
    """A single backend invocation failed."""

    def __init__(self, message: str, provider: Optional[str] = None, model: Optional[str] = None):
        super().__init__(message)
        self.provider = provider
        self.model = model


class NetworkError(ProviderError):
    """No response was received from the backend."""


class BadStatusError(ProviderError):
    """The backend answered with a non-success status."""

    def __init__(
        self,
        status: int,
        body: Any,
        provider: Optional[str] = None,
        model: Optional[str] = None
    ):
        super().__init__(f"{provider or 'Backend'} API error: {status} - {body}", provider, model)
        self.status = status
        self.body = body


class EmptyContentError(ProviderError):
    """The backend answered successfully but returned nothing usable."""


class RetriesExhaustedError(ColloquyError):
    """Every retry attempt failed."""

    def __init__(self, attempts: int, last_error: Exception):
        super().__init__(f"All {attempts} retry attempts failed. Last error: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class FallbackFailedError(ColloquyError):
    """The substitute provider failed as well."""

    def __init__(self, fallback_kind: str, cause: Exception):
        super().__init__(f"Fallback provider {fallback_kind} failed: {cause}")
        self.fallback_kind = fallback_kind
        self.cause = cause


class AbortedConversationError(ColloquyError):
    """Raised when the abort strategy stops a conversation mid-run."""

    def __init__(self, history: Sequence, cause: Exception):
        super().__init__(f"Conversation aborted after {len(history)} turns: {cause}")
        self.history = tuple(history)
        self.cause = cause


class ConversationCancelledError(ColloquyError):
    """Raised when a running conversation is cancelled."""

    def __init__(self, history: Sequence = ()):
        super().__init__(f"Conversation cancelled after {len(history)} turns")
        self.history = tuple(history)

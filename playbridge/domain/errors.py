from typing import Optional


class PlaybridgeError(Exception):
    """Base class for all playbridge failures."""


class RateLimitError(PlaybridgeError):
    """Provider kept answering 429 past the retry budget. Carries the last computed delay in milliseconds."""

    def __init__(self, message: str = "Rate limited", retry_after_ms: Optional[int] = None,
                 provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.retry_after_ms = retry_after_ms
        self.provider = provider


class TransportError(PlaybridgeError):
    """Non-2xx provider response or network failure."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = "",
                 provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body
        self.provider = provider

    @property
    def retryable(self) -> bool:
        """5xx and network-level failures are transient; other statuses are not."""
        return self.status is None or self.status >= 500


class CircuitBreakerError(PlaybridgeError):
    """Call rejected without being attempted because the provider's breaker is open."""

    def __init__(self, message: str, state: str, cooldown_remaining_ms: int = 0,
                 provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.state = state
        self.cooldown_remaining_ms = cooldown_remaining_ms
        self.provider = provider


class MissingProviderAuthError(PlaybridgeError):
    """No linked credentials for the (user, provider) pair."""

    def __init__(self, user_id: Optional[str], provider: str) -> None:
        super().__init__(f'No linked account for provider "{provider}" (user_id={user_id})')
        self.user_id = user_id
        self.provider = provider


class UnsupportedProviderError(PlaybridgeError):
    """Provider name is not one of the known providers."""


class ProviderDisabledError(PlaybridgeError):
    """Provider is known but switched off by a feature flag."""


class InvalidDocumentError(PlaybridgeError):
    """Canonical document violates its invariants."""


class InvalidJobPayloadError(PlaybridgeError):
    """Migration job record is missing required fields."""


class JobNotFoundError(PlaybridgeError):
    """Migration job does not exist."""


class JobStateError(PlaybridgeError):
    """Job is in a state that does not allow the requested transition."""


class NothingToMigrateError(PlaybridgeError):
    """Source playlist has no tracks to migrate."""


class InvalidProviderResponseError(PlaybridgeError):
    """Provider answered 2xx with a body missing a field the operation needs."""

    def __init__(self, message: str, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider = provider

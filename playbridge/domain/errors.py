class PlayBridgeError(Exception):
    """Base class for all errors raised by the playback engine."""


class AuthError(PlayBridgeError):
    """Access token is missing or expired and could not be refreshed."""


class NoMatchError(PlayBridgeError):
    """A named target could not be resolved to a playable entity."""


class NoCandidatesError(NoMatchError):
    """Search produced no candidates after type filtering."""


class TransientNetworkError(PlayBridgeError):
    """Outbound call failed (timeout, 5xx, malformed response). Not retried here."""


class RateLimited(TransientNetworkError):
    """Operation was rate limited by the service. Includes suggested wait time in milliseconds."""

    def __init__(self, retry_after_ms: int, message: str = "Rate limited") -> None:
        super().__init__(message)
        self.retry_after_ms = retry_after_ms


class NoActiveDeviceError(TransientNetworkError):
    """The service has no active player device to receive the command."""


class ConfigurationError(PlayBridgeError):
    """Required settings are absent or invalid at startup."""


class ValidationError(PlayBridgeError):
    """An action argument is malformed or out of range."""

    def __init__(self, field: str, value, message: str = "") -> None:
        super().__init__(message or f"Invalid value for '{field}': {value!r}")
        self.field = field
        self.value = value


class UnsupportedActionError(PlayBridgeError):
    """The requested action verb is not part of the catalog."""

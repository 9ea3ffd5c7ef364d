"""Exception hierarchy for tabchat.

Every error raised by the engine derives from TabchatError. The
``retryable`` flag tells the session whether an attempt that failed with
this error may be repeated automatically.
"""


class TabchatError(Exception):
    """Base class for all tabchat errors."""

    retryable: bool = False


class ConfigError(TabchatError):
    """Configuration is missing or invalid (e.g. no API key)."""


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class TransportError(TabchatError):
    """A stream attempt failed at the transport level."""


class ConnectionFailedError(TransportError):
    """DNS, TLS or TCP failure before any response was received."""

    retryable = True


class ProxyError(TransportError):
    """The configured proxy refused or failed the connection."""


class HTTPStatusError(TransportError):
    """The service answered with a non-success HTTP status."""

    def __init__(self, status_code: int, message: str = ""):
        self.status_code = status_code
        self.message = message
        detail = f": {message}" if message else ""
        super().__init__(f"HTTP {status_code}{detail}")


class AuthError(HTTPStatusError):
    """The credential was rejected (401/403)."""


class RateLimitedError(HTTPStatusError):
    """The service asked us to slow down (429)."""

    retryable = True

    def __init__(self, status_code: int = 429, message: str = "", retry_after: float | None = None):
        super().__init__(status_code, message)
        self.retry_after = retry_after


class ServerError(HTTPStatusError):
    """Transient server-side failure (5xx)."""

    retryable = True


class RequestRejectedError(HTTPStatusError):
    """Client-side request error other than auth or rate limiting."""


class TruncatedStreamError(TransportError):
    """The stream ended before the end-of-stream sentinel arrived.

    Raised when the socket closes early, a read fails mid-stream, or no chunk
    arrives within the idle timeout. Never retried automatically: the user
    decides whether to resend.
    """


# ---------------------------------------------------------------------------
# Decoding / persistence
# ---------------------------------------------------------------------------


class DecodeError(TabchatError):
    """A single event payload could not be decoded. Non-fatal."""

    def __init__(self, reason: str, payload: str = ""):
        self.reason = reason
        self.payload = payload
        super().__init__(reason)


class PersistenceError(TabchatError):
    """Reading or writing a stored session failed."""


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionError(TabchatError):
    """Base class for session state errors."""


class SessionBusyError(SessionError):
    """A send was attempted while a stream is already in flight."""


class InvalidSessionStateError(SessionError):
    """The operation is not valid in the session's current state."""


class SessionNotFoundError(SessionError, KeyError):
    """No open session has the given id."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class MessageFinalizedError(SessionError):
    """A completed message was mutated."""


class SubscriptionLaggedError(TabchatError):
    """A subscriber fell too far behind and its subscription was closed."""

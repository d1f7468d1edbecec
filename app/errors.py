"""Error taxonomy shared by services, routers and the chat client.

Services raise these; routers translate them into HTTP responses. The chat
session never raises transport errors, it records them as state instead.
"""


class AppError(Exception):
    """Base class for all application errors."""


class ConfigurationError(AppError):
    """A required secret or URL is missing. Not retried."""


class GatewayError(AppError):
    """The remote agent gateway failed a management call."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GatewayUnavailable(GatewayError):
    """Gateway unreachable or returned a non-2xx response."""


class GatewayProtocolError(GatewayError):
    """Gateway answered 2xx but the payload is unusable."""


class GatewayBindingFailed(GatewayError):
    """Gateway rejected a channel binding registration."""


class InvalidOrExpiredClaim(AppError):
    """Claim token unknown, already consumed, or past its expiry."""


class CredentialUnavailable(AppError):
    """The chat token endpoint did not hand out a credential."""


class NotConnected(AppError):
    """send() called on a session that is not connected."""

"""Error taxonomy shared by the gateway, sessions and provider adapters."""


class GatewayError(Exception):
    """Base class for errors reported to the client as a single ``error`` event."""

    @property
    def message(self) -> str:
        return str(self) or self.__class__.__name__


class ValidationError(GatewayError):
    """Missing API key, credentials or audio content. Raised before any provider resource exists."""


class AuthError(GatewayError):
    """Credential exchange failed or the provider rejected the credentials."""


class ProviderError(GatewayError):
    """Network failure, timeout or 4xx/5xx answer from a speech provider."""


class ProtocolError(GatewayError):
    """Malformed or out-of-order client message."""


class SessionConflictError(ProtocolError):
    """A ``start_stream`` arrived for a session id that is still live."""

"""Error taxonomy for the relay."""
from __future__ import annotations

from typing import Dict, Optional

PROVIDER_STATUS_MESSAGES: Dict[int, str] = {
    400: "Invalid request sent to the generation provider",
    401: "Invalid or unauthorized API key",
    403: "API key does not have permission to use this model",
    404: "The requested model is not available",
    429: "Rate limit exceeded, please try again later",
}


class RelayError(Exception):
    """Base class for failures that end a relay request.

    ``message`` is safe to show to the caller; ``details`` carries raw
    diagnostic text such as the provider's error body. ``debug`` holds the
    underlying exception text and is only shown when explicitly enabled.
    """

    status_code = 500
    outcome = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        details: Optional[str] = None,
        finish_reason: Optional[str] = None,
        debug: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        self.finish_reason = finish_reason
        self.debug = debug


class ClientError(RelayError):
    """The inbound request is unusable; the caller can fix it."""

    status_code = 400
    outcome = "client_error"


class MethodNotAllowedError(ClientError):
    status_code = 405
    outcome = "method_not_allowed"


class ConfigError(RelayError):
    """The relay is not configured to serve requests."""

    outcome = "config_error"


class ProviderError(RelayError):
    """The provider answered, but not with usable content."""

    outcome = "provider_error"

    def __init__(
        self,
        message: str,
        *,
        details: Optional[str] = None,
        finish_reason: Optional[str] = None,
        debug: Optional[str] = None,
        provider_status: Optional[int] = None,
    ) -> None:
        super().__init__(
            message, details=details, finish_reason=finish_reason, debug=debug
        )
        self.provider_status = provider_status

    @classmethod
    def from_status(cls, status_code: int, body: str) -> "ProviderError":
        message = PROVIDER_STATUS_MESSAGES.get(
            status_code, f"Generation provider error (status {status_code})"
        )
        return cls(message, details=body or None, provider_status=status_code)


class ProviderTimeoutError(RelayError):
    outcome = "timeout"


class ProviderConnectionError(RelayError):
    """DNS failures, refused or reset connections."""

    outcome = "network_error"

"""
Relay Error Taxonomy
====================

Every failure the relay reports to a client is one of the exceptions below.
Route handlers raise them; the exception handler registered in
``sgo_relay.main.create_app`` renders them as JSON bodies of the form::

    {"success": false, "error": "<code>", "message": "...", "details": ...}

The OAuth callback is the only place that renders them differently: it
catches ``RelayError`` and redirects back to the frontend with ``?error=``.
"""

from typing import Any, Dict, Optional

from fastapi import status


class RelayError(Exception):
    """Base exception for all relay failures"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "relay_error"
    default_message: str = "Unexpected relay error"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    @property
    def headers(self) -> Optional[Dict[str, str]]:
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidCredentials(RelayError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "invalid_credentials"
    default_message = "Invalid username or password"


class SessionNotFound(RelayError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "session_not_found"
    default_message = "Session not found or expired"

    @property
    def headers(self) -> Optional[Dict[str, str]]:
        return {"WWW-Authenticate": "Bearer"}


class MissingParameters(RelayError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "missing_parameters"
    default_message = "Missing required parameters (code or state)"


class InvalidOrExpiredState(RelayError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "invalid_state"
    default_message = "Invalid or expired state parameter"


class ProviderError(RelayError):
    """The identity provider redirected back with an ``error`` parameter."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "provider_error"
    default_message = "Identity provider rejected the authorization request"


class UnsupportedForSessionType(RelayError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "unsupported_for_session_type"
    default_message = "Operation is not supported for this session type"


class UpstreamUnavailable(RelayError):
    """
    Transport failure or unexpected response shape from the school system
    or the identity provider. ``details`` carries the upstream payload when
    one was received.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "upstream_unavailable"
    default_message = "Upstream service request failed"


class ProviderNotConfigured(RelayError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "provider_not_configured"
    default_message = "Identity provider login is not configured"


__all__ = [
    "RelayError",
    "InvalidCredentials",
    "SessionNotFound",
    "MissingParameters",
    "InvalidOrExpiredState",
    "ProviderError",
    "UnsupportedForSessionType",
    "UpstreamUnavailable",
    "ProviderNotConfigured",
]

"""
Domain exceptions for the federated login flow.

Every exception that can reach a client derives from OAuthFlowError and
carries the HTTP status and plain-text message it is rendered with by the
centralized exception handler in main.py.
"""

from fastapi import status


class OAuthFlowError(Exception):
    """
    Base class for failures surfaced to the caller of login/callback.

    Attributes:
        message: Human-readable message returned as the response body
        status_code: HTTP status the failure maps to
    """

    message = "OAuth flow failed"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str | None = None, detail: str | None = None):
        self.message = message or self.message
        # Diagnostic detail for logs only, never sent to the client
        self.detail = detail
        super().__init__(self.message)


class ProviderNotAvailable(OAuthFlowError):
    """
    Raised when a provider slug is unknown or inactive.

    Both cases share one message so clients cannot tell which providers
    exist but are disabled.
    """

    message = "Provider not supported or inactive"


class MissingAuthorizationCode(OAuthFlowError):
    """Raised when the callback request carries no authorization code."""

    message = "Missing code"


class MissingOAuthState(OAuthFlowError):
    """Raised when state checking is enabled and the callback has no state."""

    message = "Missing state parameter"


class InvalidOAuthState(OAuthFlowError):
    """Raised when the callback state is unknown, expired or already used."""

    message = "Invalid or expired state parameter"


class TokenExchangeFailed(OAuthFlowError):
    """Raised when the provider rejects the code or returns no access token."""

    message = "Failed to get access token"
    status_code = status.HTTP_401_UNAUTHORIZED


class UserInfoFetchFailed(OAuthFlowError):
    """Raised when the provider's user-info endpoint fails."""

    message = "Failed to fetch user info"
    status_code = status.HTTP_502_BAD_GATEWAY


class InvalidIdentity(OAuthFlowError):
    """Raised when the user-info payload lacks a usable subject or email."""

    message = "Invalid user info returned by provider"


class RegistrationDisabled(OAuthFlowError):
    """Raised when a new account would be needed but registration is off."""

    message = "Automatic registration of new users is disabled"


class StoreUnavailable(OAuthFlowError):
    """
    Raised when the relational store cannot be reached.

    This is an infrastructure fault, not a client error.
    """

    message = "Database not available"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class DuplicateRecordError(Exception):
    """
    Raised by the store when an insert violates a unique constraint.

    Signals that a concurrent request created the same account or link
    first. Never rendered to clients; the flow service resolves again and
    reports StoreUnavailable if the conflict persists.
    """

    pass

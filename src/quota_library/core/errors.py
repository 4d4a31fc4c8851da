# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Error taxonomy for the quota library.

Every exception's ``str()`` is a human-readable message that can be shown
to the user as-is.
"""

from typing import Optional


def mask_credential(value: Optional[str], visible: int = 4) -> str:
    """
    Mask a secret for logging.

    Args:
        value: Token, cookie or header value
        visible: Number of trailing characters to keep

    Returns:
        "***abcd" style string, or "<empty>" for missing values
    """
    if not value:
        return "<empty>"
    if len(value) <= visible * 2:
        return "***"
    return f"***{value[-visible:]}"


# =============================================================================
# USAGE FETCH ERRORS
# =============================================================================


class ProviderFetchError(Exception):
    """Base class for failures of a provider usage fetch."""

    default_message = "Usage fetch failed."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class MissingTokenError(ProviderFetchError):
    default_message = "Missing access token."


class UnauthorizedError(ProviderFetchError):
    """HTTP 401/403. The only fetch error that triggers a token refresh."""

    default_message = "Unauthorized. Token is invalid or expired."


class ServerError(ProviderFetchError):
    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"Server error: HTTP {status_code}.")


class NotSupportedError(ProviderFetchError):
    """A provider-specific precondition is not met."""

    def __init__(self, message: str):
        super().__init__(message)


class InvalidResponseError(ProviderFetchError):
    default_message = "Could not parse provider response."


# =============================================================================
# TOKEN REFRESH ERRORS
# =============================================================================


class TokenRefreshError(Exception):
    """Base class for OAuth refresh failures."""

    default_message = "Token refresh failed."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class MissingRefreshTokenError(TokenRefreshError):
    default_message = "No refresh token is available. Sign in again."


class RefreshTokenExpiredError(TokenRefreshError):
    default_message = "Refresh token expired. Sign in again."


class RefreshTokenRevokedError(TokenRefreshError):
    """Requires re-authentication; interrupts silent proactive refresh."""

    default_message = "Refresh token was revoked. Sign in again."


class RefreshTokenReusedError(TokenRefreshError):
    default_message = "Refresh token was already used. Sign in again."


class InvalidRefreshResponseError(TokenRefreshError):
    default_message = "Token endpoint returned an invalid response."


class RefreshNetworkError(TokenRefreshError):
    default_message = "Network error while refreshing the token."


class OAuthConfigError(TokenRefreshError):
    """OAuth client id/secret was not configured."""

    default_message = "OAuth client is not configured."


# =============================================================================
# SIGN-IN AND INPUT ERRORS
# =============================================================================


class OAuthSignInError(Exception):
    """Failure of the manual OAuth sign-in (authorize + code exchange) flow."""


class CredentialInputError(ValueError):
    """Base class for pasted-credential parse failures."""


class EmptyInputError(CredentialInputError):
    pass


class WrongTokenTypeError(CredentialInputError):
    pass


class InvalidTokenFormatError(CredentialInputError):
    pass


class MissingStudioHeadersError(CredentialInputError):
    pass


class InvalidStudioAuthorizationError(CredentialInputError):
    pass


class InvalidAuthJSONError(CredentialInputError):
    pass


class MissingAccessTokenError(CredentialInputError):
    pass

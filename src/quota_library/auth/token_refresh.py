# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
OAuth refresh-token exchange for the two providers that support it.

- Codex:  JSON POST to https://auth.openai.com/oauth/token
- Gemini: form POST to https://oauth2.googleapis.com/token

Both return a new Credentials record carrying the fresh access token, the
rotated refresh token when one is issued (otherwise the previous one), and
the account id. Cookie/auxiliary header merging is the caller's job
(``Credentials.merged_with_refresh``).
"""

import base64
import binascii
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Type

import httpx

from ..config import OAuthClientConfig
from ..core.constants import TOKEN_REFRESH_TIMEOUT
from ..core.errors import (
    InvalidRefreshResponseError,
    MissingRefreshTokenError,
    RefreshNetworkError,
    RefreshTokenExpiredError,
    RefreshTokenReusedError,
    RefreshTokenRevokedError,
    TokenRefreshError,
    mask_credential,
)
from ..core.types import Credentials, ProviderID

lib_logger = logging.getLogger("quota_library")

CODEX_TOKEN_URL = "https://auth.openai.com/oauth/token"
CODEX_REFRESH_SCOPE = "openid profile email"
GEMINI_TOKEN_URL = "https://oauth2.googleapis.com/token"


# =============================================================================
# RESPONSE HELPERS
# =============================================================================


def _json_object(body: bytes) -> Optional[Dict[str, Any]]:
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


def extract_error_code(body: bytes) -> str:
    """Machine-readable code from ``error.code``, an ``error`` string, or ``code``."""
    payload = _json_object(body)
    if payload is None:
        return ""
    error = payload.get("error")
    if isinstance(error, dict) and isinstance(error.get("code"), str):
        return error["code"]
    if isinstance(error, str):
        return error
    code = payload.get("code")
    return code if isinstance(code, str) else ""


def extract_error_description(body: bytes) -> str:
    payload = _json_object(body)
    if payload is None:
        return ""
    error = payload.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"].strip()
    for key in ("error_description", "message"):
        value = payload.get(key)
        if isinstance(value, str):
            return value.strip()
    return ""


def parse_account_id_from_id_token(id_token: Optional[str]) -> Optional[str]:
    """
    Read the ``chatgpt_account_id`` claim from a JWT id_token.

    The payload segment is base64url without padding; padding is restored
    before decoding. Signature is not verified.
    """
    if not id_token:
        return None
    parts = id_token.split(".")
    if len(parts) < 2:
        return None
    segment = parts[1]
    segment += "=" * (-len(segment) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return None
    if not isinstance(claims, dict):
        return None
    account_id = claims.get("chatgpt_account_id")
    if isinstance(account_id, str) and account_id:
        return account_id
    return None


def _stripped(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


# =============================================================================
# REFRESHERS
# =============================================================================


class TokenRefresher(ABC):
    """Exchanges a refresh token for a new access token."""

    provider_id: ProviderID
    token_url: str
    label: str

    def __init__(
        self,
        config: Optional[OAuthClientConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or OAuthClientConfig.from_env()
        self._client = client

    async def refresh(self, credentials: Credentials) -> Credentials:
        """
        Refresh ``credentials``.

        Raises:
            MissingRefreshTokenError, RefreshTokenExpiredError,
            RefreshTokenRevokedError, RefreshTokenReusedError,
            InvalidRefreshResponseError, RefreshNetworkError, OAuthConfigError
        """
        refresh_token = (credentials.refresh_token or "").strip()
        if not refresh_token:
            raise MissingRefreshTokenError(f"Missing {self.label} refresh token.")

        request_kwargs = self._build_request(refresh_token)
        lib_logger.debug(
            f"Refreshing {self.label} token (refresh token {mask_credential(refresh_token)})"
        )
        try:
            response = await self._post(request_kwargs)
        except httpx.HTTPError as e:
            raise RefreshNetworkError(
                f"{self.label} token refresh failed: {type(e).__name__}: {e}"
            ) from e

        if response.status_code in (400, 401):
            self._raise_for_error_code(response.content)

        if response.status_code != 200:
            raise self._invalid(f"HTTP {response.status_code}")

        payload = _json_object(response.content)
        if payload is None:
            raise self._invalid("Invalid JSON")

        access_token = _stripped(payload, "access_token")
        if not access_token:
            raise self._invalid("Missing access_token")

        refreshed = Credentials(
            access_token=access_token,
            refresh_token=_stripped(payload, "refresh_token") or credentials.refresh_token,
            account_id=self._resolve_account_id(payload, credentials),
        )
        lib_logger.info(f"{self.label} access token refreshed")
        return refreshed

    async def _post(self, request_kwargs: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(
                self.token_url, timeout=TOKEN_REFRESH_TIMEOUT, **request_kwargs
            )
        async with httpx.AsyncClient() as new_client:
            return await new_client.post(
                self.token_url, timeout=TOKEN_REFRESH_TIMEOUT, **request_kwargs
            )

    def _invalid(self, detail: str) -> InvalidRefreshResponseError:
        return InvalidRefreshResponseError(
            f"Invalid {self.label} token refresh response: {detail}"
        )

    @abstractmethod
    def _build_request(self, refresh_token: str) -> Dict[str, Any]:
        """httpx.post keyword arguments (body + headers)."""

    @abstractmethod
    def _raise_for_error_code(self, body: bytes) -> None:
        """Map a 400/401 body to a specific TokenRefreshError."""

    def _resolve_account_id(
        self, payload: Dict[str, Any], credentials: Credentials
    ) -> Optional[str]:
        return credentials.account_id


class CodexTokenRefresher(TokenRefresher):
    provider_id = ProviderID.CODEX
    token_url = CODEX_TOKEN_URL
    label = "Codex"

    ERROR_CODES: Dict[str, Type[TokenRefreshError]] = {
        "refresh_token_expired": RefreshTokenExpiredError,
        "refresh_token_reused": RefreshTokenReusedError,
        "refresh_token_invalidated": RefreshTokenRevokedError,
    }

    ERROR_MESSAGES: Dict[Type[TokenRefreshError], str] = {
        RefreshTokenExpiredError: "Codex refresh token expired. Run `codex login` again.",
        RefreshTokenReusedError: "Codex refresh token was already used. Run `codex login` again.",
        RefreshTokenRevokedError: "Codex refresh token was revoked. Run `codex login` again.",
    }

    def _build_request(self, refresh_token: str) -> Dict[str, Any]:
        return {
            "headers": {"Content-Type": "application/json"},
            "json": {
                "client_id": self.config.require_codex(),
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "scope": CODEX_REFRESH_SCOPE,
            },
        }

    def _raise_for_error_code(self, body: bytes) -> None:
        code = extract_error_code(body).lower()
        error_class = self.ERROR_CODES.get(code, RefreshTokenExpiredError)
        lib_logger.warning(f"Codex token refresh rejected (code={code or 'unknown'})")
        raise error_class(self.ERROR_MESSAGES[error_class])

    def _resolve_account_id(
        self, payload: Dict[str, Any], credentials: Credentials
    ) -> Optional[str]:
        return (
            _stripped(payload, "account_id")
            or parse_account_id_from_id_token(_stripped(payload, "id_token"))
            or credentials.account_id
        )


class GeminiTokenRefresher(TokenRefresher):
    provider_id = ProviderID.GEMINI
    token_url = GEMINI_TOKEN_URL
    label = "Gemini"

    def _build_request(self, refresh_token: str) -> Dict[str, Any]:
        client_id, client_secret = self.config.require_gemini()
        return {
            "data": {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": client_id,
                "client_secret": client_secret,
            },
        }

    def _raise_for_error_code(self, body: bytes) -> None:
        code = extract_error_code(body).lower()
        if code == "invalid_grant":
            lib_logger.warning("Gemini refresh token revoked (invalid_grant)")
            raise RefreshTokenRevokedError(
                "Gemini refresh token was revoked. Run your OAuth script again."
            )
        detail = ": ".join(
            part for part in (code, extract_error_description(body)) if part
        )
        message = "Gemini refresh token expired. Sign in again."
        if detail:
            message = f"{message} ({detail})"
        raise RefreshTokenExpiredError(message)


TOKEN_REFRESHERS: Dict[ProviderID, Type[TokenRefresher]] = {
    ProviderID.CODEX: CodexTokenRefresher,
    ProviderID.GEMINI: GeminiTokenRefresher,
}


def get_token_refresher(
    provider: ProviderID,
    config: Optional[OAuthClientConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[TokenRefresher]:
    """Refresher for ``provider``, or None if it has no OAuth refresh."""
    refresher_class = TOKEN_REFRESHERS.get(provider)
    if refresher_class is None:
        return None
    return refresher_class(config=config, client=client)

# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Manual OAuth sign-in (authorization code + PKCE) for Codex and Gemini.

The user opens the authorize URL in a browser, signs in, and pastes back the
callback URL (or the bare code). ``exchange_authorization_code`` trades the
code for tokens.

- Codex:  https://auth.openai.com/oauth/authorize, token exchange tries a
          form body first and falls back to JSON on HTTP 405/415
- Gemini: https://accounts.google.com/o/oauth2/v2/auth, form body exchange
"""

import base64
import hashlib
import json
import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl, urlencode

import httpx

from ..config import OAuthClientConfig
from ..core.constants import TOKEN_REFRESH_TIMEOUT
from ..core.errors import OAuthSignInError
from ..core.types import ProviderID
from .token_refresh import parse_account_id_from_id_token

lib_logger = logging.getLogger("quota_library")

CODEX_AUTHORIZE_URL = "https://auth.openai.com/oauth/authorize"
CODEX_TOKEN_URL = "https://auth.openai.com/oauth/token"
CODEX_REDIRECT_URI = "http://localhost:1455/auth/callback"
CODEX_SCOPE = "openid profile email offline_access"

GEMINI_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GEMINI_TOKEN_URL = "https://oauth2.googleapis.com/token"
GEMINI_REDIRECT_URI = "http://localhost:8085/oauth2callback"
GEMINI_SCOPES = [
    "https://www.googleapis.com/auth/cloud-platform",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]

# RFC 7636 unreserved characters
_VERIFIER_ALPHABET = string.ascii_letters + string.digits + "-._~"
_ERROR_SNIPPET_LENGTH = 180


# =============================================================================
# PKCE HELPERS
# =============================================================================


def _base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def code_challenge(verifier: str) -> str:
    """S256 code challenge for ``verifier``."""
    return _base64url(hashlib.sha256(verifier.encode("ascii")).digest())


def _random_verifier(length: int = 96) -> str:
    return "".join(secrets.choice(_VERIFIER_ALPHABET) for _ in range(length))


@dataclass(frozen=True)
class OAuthSession:
    """One pending sign-in attempt. Discarded after a successful exchange."""

    provider: ProviderID
    state: str
    code_verifier: str
    redirect_uri: str
    authorize_url: str
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class OAuthTokens:
    access_token: str
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None

    @property
    def account_id(self) -> Optional[str]:
        return parse_account_id_from_id_token(self.id_token)


def start_codex_session(config: OAuthClientConfig) -> OAuthSession:
    client_id = config.require_codex()
    state = _base64url(secrets.token_bytes(32))
    verifier = _base64url(secrets.token_bytes(64))
    query = urlencode(
        {
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": CODEX_REDIRECT_URI,
            "scope": CODEX_SCOPE,
            "state": state,
            "code_challenge": code_challenge(verifier),
            "code_challenge_method": "S256",
        }
    )
    return OAuthSession(
        provider=ProviderID.CODEX,
        state=state,
        code_verifier=verifier,
        redirect_uri=CODEX_REDIRECT_URI,
        authorize_url=f"{CODEX_AUTHORIZE_URL}?{query}",
    )


def start_gemini_session(config: OAuthClientConfig) -> OAuthSession:
    client_id, _ = config.require_gemini()
    state = secrets.token_hex(16)
    verifier = _random_verifier()
    query = urlencode(
        {
            "client_id": client_id,
            "redirect_uri": GEMINI_REDIRECT_URI,
            "response_type": "code",
            "scope": " ".join(GEMINI_SCOPES),
            "state": state,
            "code_challenge": code_challenge(verifier),
            "code_challenge_method": "S256",
            "access_type": "offline",
            "prompt": "consent",
        }
    )
    return OAuthSession(
        provider=ProviderID.GEMINI,
        state=state,
        code_verifier=verifier,
        redirect_uri=GEMINI_REDIRECT_URI,
        authorize_url=f"{GEMINI_AUTHORIZE_URL}?{query}",
    )


def start_sign_in(provider: ProviderID, config: OAuthClientConfig) -> OAuthSession:
    """
    Build an authorize URL and PKCE state for ``provider``.

    Raises:
        OAuthSignInError: provider has no OAuth sign-in
        OAuthConfigError: client id/secret not configured
    """
    if provider == ProviderID.CODEX:
        return start_codex_session(config)
    if provider == ProviderID.GEMINI:
        return start_gemini_session(config)
    raise OAuthSignInError(f"{provider.display_name} does not support OAuth sign-in.")


# =============================================================================
# TOKEN RESPONSE DECODING
# =============================================================================


def _parse_form(body: bytes) -> Optional[Dict[str, str]]:
    try:
        text = body.decode("utf-8").strip()
    except UnicodeDecodeError:
        return None
    if "=" not in text:
        return None
    return dict(parse_qsl(text, keep_blank_values=True))


def _parse_json(body: bytes) -> Optional[Dict[str, Any]]:
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


def decode_oauth_error(body: bytes, fallback: str) -> str:
    """
    Human-readable message from an OAuth error body.

    Tries ``error_description``, ``message``, ``error`` (string or nested
    ``error.message``), then a form-encoded body, then the first 180
    characters of the raw text.
    """
    payload = _parse_json(body)
    if payload is not None:
        for key in ("error_description", "message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
        nested = payload.get("error")
        if isinstance(nested, dict) and isinstance(nested.get("message"), str):
            if nested["message"]:
                return nested["message"]
    else:
        form = _parse_form(body)
        if form is not None:
            description = form.get("error_description") or form.get("error")
            if description:
                return description

    text = body.decode("utf-8", errors="replace").strip()
    if text:
        return text[:_ERROR_SNIPPET_LENGTH]
    return fallback


def parse_token_response(body: bytes) -> OAuthTokens:
    """JSON first, then form-encoded. Raises OAuthSignInError without an access token."""
    payload: Optional[Dict[str, Any]] = _parse_json(body)
    if payload is None:
        payload = _parse_form(body)

    access_token = payload.get("access_token") if payload else None
    if not isinstance(access_token, str) or not access_token.strip():
        raise OAuthSignInError(decode_oauth_error(body, "Could not parse token response."))

    def _optional(key: str) -> Optional[str]:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    return OAuthTokens(
        access_token=access_token.strip(),
        refresh_token=_optional("refresh_token"),
        id_token=_optional("id_token"),
    )


# =============================================================================
# CODE EXCHANGE
# =============================================================================


async def _post_attempts(
    client: httpx.AsyncClient, url: str, attempts: List[Dict[str, Any]]
) -> httpx.Response:
    """Post each body variant in turn, skipping ones rejected with 405/415."""
    last_error: Optional[str] = None
    for request_kwargs in attempts:
        response = await client.post(url, timeout=TOKEN_REFRESH_TIMEOUT, **request_kwargs)
        if response.status_code in (405, 415):
            last_error = decode_oauth_error(
                response.content,
                f"Token exchange failed (HTTP {response.status_code}).",
            )
            lib_logger.debug(
                f"Token endpoint rejected body format (HTTP {response.status_code}), trying next"
            )
            continue
        return response
    raise OAuthSignInError(last_error or "Token exchange failed.")


async def _exchange(
    session: OAuthSession,
    code: str,
    config: OAuthClientConfig,
    client: httpx.AsyncClient,
) -> OAuthTokens:
    if session.provider == ProviderID.CODEX:
        body = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": session.redirect_uri,
            "client_id": config.require_codex(),
            "code_verifier": session.code_verifier,
        }
        accept = {"Accept": "application/json"}
        response = await _post_attempts(
            client,
            CODEX_TOKEN_URL,
            [
                {"data": body, "headers": accept},
                {"json": body, "headers": accept},
            ],
        )
    else:
        client_id, client_secret = config.require_gemini()
        body = {
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": session.redirect_uri,
            "code_verifier": session.code_verifier,
        }
        response = await _post_attempts(client, GEMINI_TOKEN_URL, [{"data": body}])

    if not 200 <= response.status_code < 300:
        raise OAuthSignInError(
            decode_oauth_error(
                response.content,
                f"Token exchange failed (HTTP {response.status_code}).",
            )
        )
    return parse_token_response(response.content)


async def exchange_authorization_code(
    session: OAuthSession,
    code: str,
    config: Optional[OAuthClientConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> OAuthTokens:
    """
    Trade an authorization code for tokens.

    Args:
        session: The pending sign-in created by ``start_sign_in``
        code: Authorization code extracted from the callback
        config: OAuth client configuration (defaults to the environment)
        client: Optional shared HTTP client

    Raises:
        OAuthSignInError: the issuer rejected the code or the response was unusable
        OAuthConfigError: client id/secret not configured
    """
    config = config or OAuthClientConfig.from_env()
    label = session.provider.display_name
    try:
        if client is not None:
            tokens = await _exchange(session, code, config, client)
        else:
            async with httpx.AsyncClient() as new_client:
                tokens = await _exchange(session, code, config, new_client)
    except httpx.HTTPError as e:
        raise OAuthSignInError(f"Invalid response from {label} login: {e}") from e
    lib_logger.info(f"{label} sign-in code exchanged")
    return tokens

# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Parsers for credentials pasted by a human into a settings surface.

Each provider accepts a different shape of input (bare tokens, cookie
headers, raw auth JSON exported by a CLI, or a block of browser request
headers). All of them normalize into a single ``Credentials`` record or
raise a ``CredentialInputError`` subclass whose message tells the user what
to paste instead.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qsl, unquote, unquote_plus, urlsplit

from ..core.errors import (
    EmptyInputError,
    InvalidAuthJSONError,
    InvalidStudioAuthorizationError,
    InvalidTokenFormatError,
    MissingAccessTokenError,
    MissingStudioHeadersError,
    WrongTokenTypeError,
)
from ..core.types import Credentials, ProviderID

COPILOT_TOKEN_PREFIXES = ("ghp_", "ghu_", "gho_", "ghs_", "github_pat_")
COPILOT_MIN_TOKEN_LENGTH = 20

CALLBACK_MARKERS = ("code=", "state=", "oauth/callback", "deviceauth/callback")
CALLBACK_SCHEMES = ("https://", "http://", "aiusage://")

_ACCESS_TOKEN_KEYS = ("access_token", "accessToken", "token")
_REFRESH_TOKEN_KEYS = ("refresh_token", "refreshToken")
_ACCOUNT_ID_KEYS = ("account_id", "accountId", "chatgpt_account_id")

_STUDIO_COOKIE_KEYS = ("cookie", "cookieHeader", "Cookie")
_STUDIO_AUTH_KEYS = ("authorization", "Authorization", "authHeader", "auth")
_STUDIO_API_KEY_KEYS = ("x-goog-api-key", "xGoogApiKey", "apiKey", "api_key")
_STUDIO_SIGNALS = ("x-goog-api-key", "sapisidhash", "__secure-1psid", "cookie:")
_SAPISIDHASH_PREFIX = "sapisidhash "
_JSON_LABELS = {ProviderID.CODEX: "Codex", ProviderID.GEMINI: "Gemini"}


# =============================================================================
# SHARED HELPERS
# =============================================================================


def strip_authorization_prefix(raw: str, allow_token_prefix: bool = False) -> str:
    """Drop an ``Authorization:`` label and a ``Bearer `` (or ``token ``) scheme."""
    token = raw.strip()
    if token.lower().startswith("authorization:"):
        token = token[len("authorization:") :].strip()
    lower = token.lower()
    if lower.startswith("bearer "):
        token = token[len("bearer ") :].strip()
    elif allow_token_prefix and lower.startswith("token "):
        token = token[len("token ") :].strip()
    return token


def parse_cookie_value(name: str, raw: str) -> Optional[str]:
    """Value of cookie ``name`` (case-insensitive) in a raw cookie header."""
    text = raw.strip()
    if text.lower().startswith("cookie:"):
        text = text[len("cookie:") :].strip()
    expected = name.strip().lower()
    if not text or not expected:
        return None
    for chunk in text.split(";"):
        chunk = chunk.strip()
        if "=" not in chunk:
            continue
        key, value = chunk.split("=", 1)
        if key.strip().lower() == expected and value.strip():
            return value.strip()
    return None


def strip_wrapping_quotes(raw: str) -> str:
    text = raw.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    return text


def _first_string(payload: Dict[str, Any], keys) -> Optional[str]:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _load_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Object for text shaped like ``{...}``; None if it is not shaped like one."""
    if not (text.startswith("{") and text.endswith("}")):
        return None
    try:
        payload = json.loads(text)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def _is_json_shaped(text: str) -> bool:
    return text.startswith("{") and text.endswith("}")


# =============================================================================
# RAW AUTH JSON (CLI / script exports)
# =============================================================================


def parse_raw_auth_json(
    provider: ProviderID, raw: str, include_account_id: bool = True
) -> Optional[Credentials]:
    """
    Credentials from an auth JSON export, or None if ``raw`` is not a JSON object.

    Accepts both the flat shape and the ``{"tokens": {...}}`` wrapper written
    by the Codex CLI.

    Raises:
        InvalidAuthJSONError: text looks like JSON but does not decode to an object
        MissingAccessTokenError: the object carries no access token
    """
    text = raw.strip()
    if not _is_json_shaped(text):
        return None
    label = _JSON_LABELS.get(provider, provider.display_name)
    payload = _load_json_object(text)
    if payload is None:
        raise InvalidAuthJSONError(f"{label} token JSON is not valid JSON.")

    tokens = payload.get("tokens")
    if isinstance(tokens, dict):
        payload = tokens

    access_token = _first_string(payload, _ACCESS_TOKEN_KEYS)
    if not access_token:
        raise MissingAccessTokenError(f"{label} JSON does not include an access token.")

    return Credentials(
        access_token=access_token,
        refresh_token=_first_string(payload, _REFRESH_TOKEN_KEYS),
        account_id=(
            _first_string(payload, _ACCOUNT_ID_KEYS) if include_account_id else None
        ),
    )


# =============================================================================
# PER-PROVIDER PARSERS
# =============================================================================


def parse_codex_input(raw: str) -> Credentials:
    parsed = parse_raw_auth_json(ProviderID.CODEX, raw)
    if parsed is not None:
        return parsed
    token = strip_authorization_prefix(raw)
    if not token:
        raise EmptyInputError("Missing Codex token.")
    return Credentials(access_token=token)


def _claude_session_key(raw: str) -> Optional[str]:
    text = raw.strip()
    if not text:
        return None
    if "=" not in text and text.lower().startswith("sk-ant-"):
        return text
    return parse_cookie_value("sessionKey", text)


def parse_claude_input(raw: str) -> Credentials:
    token = strip_authorization_prefix(raw)
    if not token:
        raise EmptyInputError("Missing Claude token.")

    lower = token.lower()
    if lower.startswith("sk-ant-oat"):
        return Credentials(access_token=token)
    if lower.startswith("sk-ant-api"):
        raise WrongTokenTypeError(
            "Claude needs a Claude Code OAuth token (`sk-ant-oat...`), "
            "not an Anthropic API key."
        )

    session_key = _claude_session_key(token)
    if session_key:
        return Credentials(cookie_header=f"sessionKey={session_key}")

    raise InvalidTokenFormatError(
        "Invalid Claude token format. Paste a Claude OAuth token "
        "(`sk-ant-oat...`) or `sessionKey` cookie."
    )


@dataclass(frozen=True)
class StudioHeaders:
    cookie_header: str
    authorization: str
    api_key: Optional[str] = None


def _normalize_studio_cookie(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    cookie = strip_wrapping_quotes(raw.strip())
    if cookie.lower().startswith("cookie:"):
        cookie = cookie[len("cookie:") :].strip()
    if not cookie:
        return None
    if cookie.lower().startswith("g.a000"):
        return f"__Secure-1PSID={cookie}"
    return cookie if "=" in cookie else None


def _extract_header_value(name: str, raw: str) -> Optional[str]:
    """Scan free text for ``name: value`` up to the next known header or line end."""
    pattern = (
        rf"\b{re.escape(name)}\s*:\s*(.+?)"
        r"(?=(?:\bcookie\s*:|\bauthorization\s*:|\bx-goog-api-key\s*:|\r?\n|$))"
    )
    match = re.search(pattern, raw, re.IGNORECASE | re.DOTALL)
    if not match:
        return None
    value = strip_wrapping_quotes(match.group(1).strip())
    return value or None


def _normalize_auth_query_value(value: str) -> Optional[str]:
    decoded = unquote_plus(value)
    tokens = decoded.split()
    if not tokens:
        return None
    for index, token in enumerate(tokens[:-1]):
        if token.lower() == "sapisidhash":
            return f"SAPISIDHASH {tokens[index + 1]}"
    if decoded.lower().startswith(_SAPISIDHASH_PREFIX):
        return decoded
    return None


def _parse_studio_authorization(raw: str) -> Optional[str]:
    """``SAPISIDHASH ...`` from a bare value or an ``auth=`` query parameter."""
    text = raw.strip()
    if not text:
        return None
    if text.lower().startswith(_SAPISIDHASH_PREFIX):
        return text

    query = urlsplit(text).query if "://" in text else ""
    for key, value in parse_qsl(query, keep_blank_values=False):
        if key.lower() == "auth":
            authorization = _normalize_auth_query_value(value)
            if authorization:
                return authorization

    match = re.search(r"auth=([^&\s]+)", text, re.IGNORECASE)
    if match:
        return _normalize_auth_query_value(match.group(1))
    return None


def parse_studio_headers(raw: str) -> Optional[StudioHeaders]:
    """
    Studio request headers from a pasted blob.

    The blob may be a JSON object, ``Header: value`` lines (optionally
    bulleted with ``-`` or ``•``), or arbitrary text containing those
    headers. Returns None when nothing in the text looks like studio
    headers, so the caller can try the bearer-token path instead.

    Raises:
        MissingStudioHeadersError: studio headers detected but Cookie or Authorization absent
        InvalidStudioAuthorizationError: Authorization is not a SAPISIDHASH value
    """
    text = raw.strip()
    if not text:
        return None

    lowered = text.lower()
    has_signal = any(signal in lowered for signal in _STUDIO_SIGNALS)

    cookie: Optional[str] = None
    authorization: Optional[str] = None
    api_key: Optional[str] = None

    payload = _load_json_object(text)
    if payload is not None:
        cookie = _first_string(payload, _STUDIO_COOKIE_KEYS)
        authorization = _first_string(payload, _STUDIO_AUTH_KEYS)
        api_key = _first_string(payload, _STUDIO_API_KEY_KEYS)

    for line in text.splitlines():
        line = line.strip()
        if line.startswith("-") or line.startswith("•"):
            line = line[1:].strip()
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip().lower()
        value = value.strip()
        if not value:
            continue
        if key.startswith("cookie"):
            cookie = value
        elif key.startswith("authorization"):
            authorization = value
        elif "x-goog-api-key" in key or "api key" in key or "api-key" in key:
            api_key = value

    cookie = cookie or _extract_header_value("cookie", text)
    authorization = authorization or _extract_header_value("authorization", text)
    api_key = api_key or _extract_header_value("x-goog-api-key", text)
    authorization = authorization or _parse_studio_authorization(text)

    has_studio_auth = bool(
        authorization and authorization.lower().startswith(_SAPISIDHASH_PREFIX)
    )
    if not has_signal and cookie is None and api_key is None and not has_studio_auth:
        return None

    cookie_header = _normalize_studio_cookie(cookie)
    authorization = authorization.strip() if authorization else None
    if not cookie_header or not authorization:
        missing: List[str] = []
        if not cookie_header:
            missing.append("Cookie")
        if not authorization:
            missing.append("Authorization")
        raise MissingStudioHeadersError(
            f"Missing Gemini Studio headers: {', '.join(missing)}."
        )
    if not authorization.lower().startswith(_SAPISIDHASH_PREFIX):
        raise InvalidStudioAuthorizationError(
            "Gemini Studio Authorization must start with `SAPISIDHASH`."
        )

    return StudioHeaders(
        cookie_header=cookie_header,
        authorization=authorization,
        api_key=api_key.strip() if api_key and api_key.strip() else None,
    )


def _parse_gemini_access_token(raw: str) -> str:
    token = strip_authorization_prefix(raw)
    if not token:
        raise EmptyInputError("Missing Gemini token.")
    if token.lower().startswith("g.a000"):
        raise MissingStudioHeadersError(
            "Detected a `__Secure-1PSID` value. Paste Cookie + Authorization "
            "(`SAPISIDHASH ...`) together."
        )
    if token.startswith("AIza"):
        raise WrongTokenTypeError(
            "Gemini usage needs an OAuth access token, not an API key."
        )
    if "=" in token or "cookie:" in token.lower():
        raise InvalidTokenFormatError(
            "Invalid Gemini token format. Paste a bearer token (`ya29...`) or "
            "Cookie/Authorization/X-Goog-Api-Key headers."
        )
    return token


def _is_studio_headers_json(payload: Dict[str, Any]) -> bool:
    """A JSON object carrying studio headers and no OAuth access token."""
    tokens = payload.get("tokens")
    source = tokens if isinstance(tokens, dict) else payload
    if _first_string(source, _ACCESS_TOKEN_KEYS):
        return False
    return _first_string(payload, _STUDIO_COOKIE_KEYS + _STUDIO_AUTH_KEYS) is not None


def parse_gemini_input(raw: str) -> Credentials:
    text = raw.strip()
    if not text:
        raise EmptyInputError("Missing Gemini token.")

    payload = _load_json_object(text)
    if payload is None or not _is_studio_headers_json(payload):
        parsed = parse_raw_auth_json(ProviderID.GEMINI, text, include_account_id=False)
        if parsed is not None:
            return parsed

    headers = parse_studio_headers(text)
    if headers is not None:
        return Credentials(
            cookie_header=headers.cookie_header,
            aux_authorization_header=headers.authorization,
            aux_api_key=headers.api_key,
        )

    return Credentials(access_token=_parse_gemini_access_token(text))


def parse_copilot_input(raw: str) -> Credentials:
    token = strip_authorization_prefix(raw, allow_token_prefix=True)
    if not token:
        raise EmptyInputError("Missing Copilot token.")

    invalid = InvalidTokenFormatError(
        "Invalid Copilot token format. Paste a GitHub token."
    )
    if token.lower().startswith(COPILOT_TOKEN_PREFIXES):
        return Credentials(access_token=token)
    if "=" in token or ";" in token:
        raise invalid
    if len(token) >= COPILOT_MIN_TOKEN_LENGTH and " " not in token:
        return Credentials(access_token=token)
    raise invalid


def parse_kimi_input(raw: str) -> Credentials:
    text = raw.strip()
    if not text:
        raise EmptyInputError("Missing Kimi token.")

    token = parse_cookie_value("kimi-auth", text) or strip_authorization_prefix(text)
    if not token:
        raise EmptyInputError("Missing Kimi token.")
    if "=" in token or ";" in token:
        raise InvalidTokenFormatError(
            "Invalid Kimi token format. Paste the `kimi-auth` value or cookie header."
        )
    return Credentials(access_token=token)


INPUT_PARSERS: Dict[ProviderID, Callable[[str], Credentials]] = {
    ProviderID.CODEX: parse_codex_input,
    ProviderID.CLAUDE: parse_claude_input,
    ProviderID.GEMINI: parse_gemini_input,
    ProviderID.COPILOT: parse_copilot_input,
    ProviderID.KIMI: parse_kimi_input,
}


def parse_credentials_input(provider: ProviderID, raw: str) -> Credentials:
    """
    Parse pasted text for ``provider`` into a Credentials record.

    Raises:
        CredentialInputError: the text is empty or the wrong kind of credential
    """
    return INPUT_PARSERS[provider](raw)


# =============================================================================
# OAUTH CALLBACK DETECTION
# =============================================================================


def looks_like_oauth_callback(raw: str) -> bool:
    """True if ``raw`` looks like a pasted OAuth callback URL rather than a token."""
    lower = raw.strip().lower()
    if any(marker in lower for marker in CALLBACK_MARKERS):
        return True
    return lower.startswith(CALLBACK_SCHEMES)


def _query_value(raw: str, name: str) -> Optional[str]:
    text = raw.strip()
    if "://" in text:
        for key, value in parse_qsl(urlsplit(text).query, keep_blank_values=False):
            if key == name and value:
                return value
    match = re.search(rf"{re.escape(name)}=([^&]+)", text)
    if match:
        return unquote(match.group(1))
    return None


def extract_authorization_code(raw: str) -> str:
    """The ``code`` query parameter of a callback URL, else ``raw`` itself."""
    return _query_value(raw, "code") or raw.strip()


def extract_authorization_state(raw: str) -> Optional[str]:
    return _query_value(raw, "state")

"""
Claude usage client.

Two auth paths:
1. OAuth (Claude Code token): GET https://api.anthropic.com/api/oauth/usage
   with ``anthropic-beta: oauth-2025-04-20``.
2. claude.ai web session (``sessionKey`` cookie):
   GET /api/organizations -> GET /api/organizations/{org}/usage
   -> best-effort GET /api/organizations/{org}/overage_spend_limit

OAuth is tried first when a token is present. Any OAuth failure falls back
to the web session when a cookie is also configured.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..core.constants import CLAUDE_OVERAGE_TIMEOUT, CLAUDE_WEB_TIMEOUT, PRIMARY_TIMEOUT
from ..core.errors import (
    InvalidResponseError,
    MissingTokenError,
    NotSupportedError,
    ProviderFetchError,
    ServerError,
    UnauthorizedError,
)
from ..core.types import (
    Credentials,
    ProviderID,
    ProviderUsageSnapshot,
    clamp_percent,
    remaining_from_used,
)
from .provider_interface import ProviderClient
from .utilities.flexible_json import parse_iso8601, to_number

lib_logger = logging.getLogger("quota_library")

CLAUDE_OAUTH_USAGE_URL = "https://api.anthropic.com/api/oauth/usage"
CLAUDE_OAUTH_BETA = "oauth-2025-04-20"
CLAUDE_WEB_BASE = "https://claude.ai/api"

ORGANIZATION_ID_KEYS = ("uuid", "id", "organization_id")

# Checked in order; first substring hit wins
PLAN_TIERS = (
    ("max", "Claude Max"),
    ("pro", "Claude Pro"),
    ("team", "Claude Team"),
    ("enterprise", "Claude Enterprise"),
)


def extract_session_key(raw_header: str) -> str:
    """
    Pull the ``sessionKey`` value out of a raw cookie header.

    Tolerates a leading "Cookie:" label, any key casing, and a bare
    ``sk-ant-...`` value pasted without a name.

    Raises:
        MissingTokenError: header is blank
        NotSupportedError: no sessionKey pair present
    """
    trimmed = raw_header.strip()
    if not trimmed:
        raise MissingTokenError()

    if trimmed.lower().startswith("cookie:"):
        trimmed = trimmed[len("cookie:"):].strip()

    if "=" not in trimmed and trimmed.lower().startswith("sk-ant-"):
        return trimmed

    for chunk in trimmed.split(";"):
        name, separator, value = chunk.strip().partition("=")
        if not separator:
            continue
        if name.strip().lower() == "sessionkey" and value.strip():
            return value.strip()

    raise NotSupportedError("Claude cookie must include `sessionKey=...`.")


def infer_plan(rate_limit_tier: Any) -> Optional[str]:
    if not isinstance(rate_limit_tier, str):
        return None
    tier = rate_limit_tier.strip().lower()
    if not tier:
        return None
    for needle, label in PLAN_TIERS:
        if needle in tier:
            return label
    return None


def _read_organization_id(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    for key in ORGANIZATION_ID_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _first_organization_id(organizations: List[Any]) -> Optional[str]:
    for organization in organizations:
        org_id = _read_organization_id(organization)
        if org_id:
            return org_id
    return None


def find_organization_id(payload: Any) -> Optional[str]:
    """Accepts a bare org array, a single org object, or ``{"organizations": [...]}``."""
    if isinstance(payload, list):
        return _first_organization_id(payload)
    if isinstance(payload, dict):
        org_id = _read_organization_id(payload)
        if org_id:
            return org_id
        organizations = payload.get("organizations")
        if isinstance(organizations, list):
            return _first_organization_id(organizations)
    return None


def _utilization(payload: Dict[str, Any], key: str) -> Optional[float]:
    window = payload.get(key)
    if not isinstance(window, dict):
        return None
    return to_number(window.get("utilization"))


def _resets_at(payload: Dict[str, Any], key: str):
    window = payload.get(key)
    if not isinstance(window, dict):
        return None
    return parse_iso8601(window.get("resets_at"))


class ClaudeUsageClient(ProviderClient):
    """Usage client for Claude (OAuth or claude.ai session cookie)."""

    provider_id = ProviderID.CLAUDE

    async def fetch_usage(self, credentials: Credentials) -> ProviderUsageSnapshot:
        access_token = credentials.token
        cookie_header = (credentials.cookie_header or "").strip()

        if access_token:
            try:
                return await self.fetch_oauth_usage(access_token)
            except (ProviderFetchError, httpx.HTTPError) as e:
                if not cookie_header:
                    raise
                lib_logger.debug(
                    f"Claude OAuth usage failed ({type(e).__name__}: {e}), trying web session"
                )
                return await self.fetch_web_usage(cookie_header)

        if cookie_header:
            return await self.fetch_web_usage(cookie_header)

        raise MissingTokenError()

    # =========================================================================
    # OAUTH PATH
    # =========================================================================

    async def fetch_oauth_usage(self, access_token: str) -> ProviderUsageSnapshot:
        headers = self._bearer(access_token)
        headers["anthropic-beta"] = CLAUDE_OAUTH_BETA
        response = await self._request(
            "GET", CLAUDE_OAUTH_USAGE_URL, headers=headers, timeout=PRIMARY_TIMEOUT
        )

        if response.status_code == 401:
            raise UnauthorizedError()
        if response.status_code == 403:
            if "user:profile" in response.text.lower():
                raise NotSupportedError(
                    "Claude token is missing `user:profile` scope. "
                    "Re-auth in Claude Code and paste the OAuth token again."
                )
            raise UnauthorizedError()
        if not response.is_success:
            raise ServerError(response.status_code)

        payload = self._decode_object(response)

        extra_usage = payload.get("extra_usage")
        extra_utilization = None
        if isinstance(extra_usage, dict) and extra_usage.get("is_enabled") is True:
            extra_utilization = to_number(extra_usage.get("utilization"))

        return self._build_snapshot(
            payload,
            extra_utilization=extra_utilization,
            status_text=infer_plan(payload.get("rate_limit_tier")) or "OAuth usage",
        )

    # =========================================================================
    # WEB SESSION PATH
    # =========================================================================

    async def fetch_web_usage(self, cookie_header: str) -> ProviderUsageSnapshot:
        session_key = extract_session_key(cookie_header)
        org_id = await self.fetch_organization_id(session_key)
        usage = await self.fetch_web_usage_payload(org_id, session_key)
        extra_utilization = await self.fetch_overage_utilization(org_id, session_key)
        return self._build_snapshot(
            usage, extra_utilization=extra_utilization, status_text="Web usage"
        )

    @staticmethod
    def _session_headers(session_key: str) -> Dict[str, str]:
        return {"Cookie": f"sessionKey={session_key}"}

    async def fetch_organization_id(self, session_key: str) -> str:
        response = await self._request(
            "GET",
            f"{CLAUDE_WEB_BASE}/organizations",
            headers=self._session_headers(session_key),
            timeout=CLAUDE_WEB_TIMEOUT,
        )
        self._raise_for_status(response)
        org_id = find_organization_id(self._decode_json(response))
        if not org_id:
            raise InvalidResponseError()
        return org_id

    async def fetch_web_usage_payload(self, org_id: str, session_key: str) -> Dict[str, Any]:
        response = await self._request(
            "GET",
            f"{CLAUDE_WEB_BASE}/organizations/{org_id}/usage",
            headers=self._session_headers(session_key),
            timeout=CLAUDE_WEB_TIMEOUT,
        )
        self._raise_for_status(response)
        payload = self._decode_object(response)
        if _utilization(payload, "five_hour") is None:
            raise InvalidResponseError()
        return payload

    async def fetch_overage_utilization(
        self, org_id: str, session_key: str
    ) -> Optional[float]:
        """Extra usage utilization if overage is enabled. Best-effort."""
        try:
            response = await self._request(
                "GET",
                f"{CLAUDE_WEB_BASE}/organizations/{org_id}/overage_spend_limit",
                headers=self._session_headers(session_key),
                timeout=CLAUDE_OVERAGE_TIMEOUT,
            )
            if not response.is_success:
                return None
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            lib_logger.debug(f"Claude overage lookup failed: {type(e).__name__}: {e}")
            return None
        if not isinstance(payload, dict) or payload.get("is_enabled") is not True:
            return None
        return to_number(payload.get("utilization"))

    # =========================================================================
    # NORMALIZATION
    # =========================================================================

    def _build_snapshot(
        self,
        payload: Dict[str, Any],
        extra_utilization: Optional[float],
        status_text: str,
    ) -> ProviderUsageSnapshot:
        tertiary = extra_utilization
        if tertiary is None:
            tertiary = _utilization(payload, "seven_day_sonnet")
        if tertiary is None:
            tertiary = _utilization(payload, "seven_day_opus")

        primary_used = clamp_percent(_utilization(payload, "five_hour"))
        secondary_used = clamp_percent(_utilization(payload, "seven_day"))
        tertiary_used = clamp_percent(tertiary)

        return ProviderUsageSnapshot(
            provider=ProviderID.CLAUDE,
            primary_used_percent=primary_used,
            secondary_used_percent=secondary_used,
            tertiary_used_percent=tertiary_used,
            primary_remaining_percent=remaining_from_used(primary_used),
            secondary_remaining_percent=remaining_from_used(secondary_used),
            tertiary_remaining_percent=remaining_from_used(tertiary_used),
            primary_reset_at=_resets_at(payload, "five_hour"),
            secondary_reset_at=_resets_at(payload, "seven_day"),
            status_text=status_text,
            updated_at=self._now(),
        )

"""
OpenAI Codex usage client.

API Details:
- Endpoint: GET https://chatgpt.com/backend-api/wham/usage
- Auth: Bearer access token and/or ChatGPT session Cookie, optional ChatGPT-Account-Id
- Response: {"plan_type": str, "rate_limit": {"primary_window": {...}, "secondary_window": {...}}}

The third bar (code review) is optional and recovered through a fallback chain,
each step only running while the previous ones found nothing:
    1. structured fields and flexible key lookup on the primary payload
    2. GET https://chatgpt.com/api/codex/usage (same flexible lookup)
    3. the usage dashboard HTML, scraped with regexes (cookie sessions only)
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..core.constants import DASHBOARD_HTML_TIMEOUT, FALLBACK_API_TIMEOUT, PRIMARY_TIMEOUT
from ..core.errors import NotSupportedError
from ..core.types import (
    Credentials,
    ProviderID,
    ProviderUsageSnapshot,
    clamp_percent,
    remaining_from_used,
)
from .provider_interface import ProviderClient
from .utilities.dashboard_scraper import parse_code_review_window
from .utilities.flexible_json import (
    FlexibleWindow,
    extract_provider_window,
    from_unix_seconds,
    to_number,
)

lib_logger = logging.getLogger("quota_library")

CODEX_USAGE_URL = "https://chatgpt.com/backend-api/wham/usage"
CODEX_API_USAGE_URL = "https://chatgpt.com/api/codex/usage"
CODEX_DASHBOARD_URL = "https://chatgpt.com/codex/settings/usage"


def plan_label(plan_type: Any) -> str:
    """Title-case a plan type: "pro_lite" becomes "Pro Lite plan"."""
    if not isinstance(plan_type, str):
        return "Subscription usage"
    words = plan_type.replace("_", " ").split()
    if not words:
        return "Subscription usage"
    return " ".join(word.capitalize() for word in words) + " plan"


def _window(container: Any, key: str) -> FlexibleWindow:
    if not isinstance(container, dict):
        return FlexibleWindow()
    window = container.get(key)
    if not isinstance(window, dict):
        return FlexibleWindow()
    return FlexibleWindow(
        used_percent=to_number(window.get("used_percent")),
        reset_at=to_number(window.get("reset_at")),
    )


class CodexUsageClient(ProviderClient):
    """Usage client for OpenAI Codex (ChatGPT plans)."""

    provider_id = ProviderID.CODEX

    async def fetch_usage(self, credentials: Credentials) -> ProviderUsageSnapshot:
        access_token = credentials.token
        cookie_header = (credentials.cookie_header or "").strip()
        if not access_token and not cookie_header:
            raise NotSupportedError("Connect a ChatGPT session in Settings first.")

        headers = self._auth_headers(credentials)
        response = await self._request(
            "GET", CODEX_USAGE_URL, headers=headers, timeout=PRIMARY_TIMEOUT
        )
        self._raise_for_status(response)
        payload = self._decode_object(response)

        rate_limit = payload.get("rate_limit")
        primary = _window(rate_limit, "primary_window")
        secondary = _window(rate_limit, "secondary_window")

        # Structured fields take precedence over every fallback
        code_review = _window(rate_limit, "tertiary_window")
        code_review = code_review.fill_from(_window(rate_limit, "code_review_window"))
        code_review = code_review.fill_from(
            FlexibleWindow(
                used_percent=to_number(payload.get("code_review_used_percent")),
                reset_at=to_number(payload.get("code_review_reset_at")),
            )
        )
        code_review = code_review.fill_from(
            await self._resolve_code_review_fallbacks(payload, credentials, headers)
        )

        primary_used = clamp_percent(primary.used_percent)
        secondary_used = clamp_percent(secondary.used_percent)
        tertiary_used = clamp_percent(code_review.used_percent)

        return ProviderUsageSnapshot(
            provider=ProviderID.CODEX,
            primary_used_percent=primary_used,
            secondary_used_percent=secondary_used,
            tertiary_used_percent=tertiary_used,
            primary_remaining_percent=remaining_from_used(primary_used),
            secondary_remaining_percent=remaining_from_used(secondary_used),
            tertiary_remaining_percent=remaining_from_used(tertiary_used),
            primary_reset_at=from_unix_seconds(primary.reset_at),
            secondary_reset_at=from_unix_seconds(secondary.reset_at),
            tertiary_reset_at=from_unix_seconds(code_review.reset_at),
            status_text=plan_label(payload.get("plan_type")),
            updated_at=self._now(),
        )

    def _auth_headers(self, credentials: Credentials) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if credentials.token:
            headers.update(self._bearer(credentials.token))
        cookie_header = (credentials.cookie_header or "").strip()
        if cookie_header:
            headers["Cookie"] = cookie_header
        account_id = (credentials.account_id or "").strip()
        if account_id:
            headers["ChatGPT-Account-Id"] = account_id
        return headers

    # =========================================================================
    # CODE REVIEW FALLBACK CHAIN
    # =========================================================================

    async def _resolve_code_review_fallbacks(
        self,
        payload: Dict[str, Any],
        credentials: Credentials,
        headers: Dict[str, str],
    ) -> FlexibleWindow:
        window = extract_provider_window(ProviderID.CODEX, payload)
        if window.used_percent is not None:
            return window

        api_window = await self.fetch_api_review_window(headers)
        if api_window is not None and api_window.used_percent is not None:
            return window.fill_from(api_window)

        if (credentials.cookie_header or "").strip():
            dashboard_window = await self.fetch_dashboard_review_window(headers)
            if dashboard_window is not None:
                return window.fill_from(dashboard_window)
        return window

    async def fetch_api_review_window(
        self, headers: Dict[str, str]
    ) -> Optional[FlexibleWindow]:
        """Secondary JSON endpoint. Best-effort: any failure yields None."""
        try:
            response = await self._request(
                "GET", CODEX_API_USAGE_URL, headers=headers, timeout=FALLBACK_API_TIMEOUT
            )
            if not response.is_success:
                return None
            return extract_provider_window(ProviderID.CODEX, response.json())
        except (httpx.HTTPError, ValueError) as e:
            lib_logger.debug(f"Codex usage API fallback failed: {type(e).__name__}: {e}")
            return None

    async def fetch_dashboard_review_window(
        self, headers: Dict[str, str]
    ) -> Optional[FlexibleWindow]:
        """Usage dashboard HTML scrape. Best-effort: any failure yields None."""
        html_headers = dict(headers)
        html_headers["Accept"] = "text/html,application/xhtml+xml"
        try:
            response = await self._request(
                "GET",
                CODEX_DASHBOARD_URL,
                headers=html_headers,
                timeout=DASHBOARD_HTML_TIMEOUT,
            )
            if not response.is_success:
                return None
            return parse_code_review_window(response.text)
        except (httpx.HTTPError, UnicodeDecodeError) as e:
            lib_logger.debug(f"Codex dashboard fallback failed: {type(e).__name__}: {e}")
            return None
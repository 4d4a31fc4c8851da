"""
Kimi usage client.

API Details:
- Endpoint: POST https://www.kimi.com/apiv2/kimi.gateway.billing.v1.BillingService/GetUsages
- Body: {"scope": ["FEATURE_CODING"]}
- Auth: the kimi-auth cookie value, sent both as Bearer and as the cookie
- Response: {"usages": [{"scope": str, "detail": {"limit", "remaining", "resetTime"},
                         "limits": [{"detail": {...}}]}]}

Numbers arrive as decimal strings. Kimi can report usage past the quota,
so percentages are clamped to [-200, 200] instead of [0, 100].
"""

from typing import Any, Optional

from ..core.constants import KIMI_PERCENT_CEILING, KIMI_PERCENT_FLOOR, PRIMARY_TIMEOUT
from ..core.errors import InvalidResponseError, MissingTokenError, NotSupportedError
from ..core.types import Credentials, ProviderID, ProviderUsageSnapshot, clamp_percent
from .provider_interface import ProviderClient
from .utilities.flexible_json import parse_iso8601, to_number

KIMI_USAGES_URL = (
    "https://www.kimi.com/apiv2/kimi.gateway.billing.v1.BillingService/GetUsages"
)
KIMI_CODING_SCOPE = "FEATURE_CODING"


def remaining_percent(limit: Any, remaining: Any) -> Optional[float]:
    """remaining / limit * 100, or None when either value does not parse."""
    limit_value = to_number(limit)
    if limit_value is None or limit_value <= 0:
        return None
    remaining_value = to_number(remaining)
    if remaining_value is None:
        return None
    return remaining_value / limit_value * 100


def _clamp_wide(value: Optional[float]) -> Optional[float]:
    return clamp_percent(value, KIMI_PERCENT_FLOOR, KIMI_PERCENT_CEILING)


class KimiUsageClient(ProviderClient):
    """Usage client for Kimi coding quotas."""

    provider_id = ProviderID.KIMI

    async def fetch_usage(self, credentials: Credentials) -> ProviderUsageSnapshot:
        token = credentials.token
        if not token:
            raise MissingTokenError()

        headers = self._bearer(token)
        headers["Cookie"] = f"kimi-auth={token}"
        headers["Content-Type"] = "application/json"
        headers["connect-protocol-version"] = "1"
        response = await self._request(
            "POST",
            KIMI_USAGES_URL,
            headers=headers,
            json={"scope": [KIMI_CODING_SCOPE]},
            timeout=PRIMARY_TIMEOUT,
        )
        self._raise_for_status(response)
        payload = self._decode_object(response)

        usages = payload.get("usages")
        if not isinstance(usages, list):
            raise InvalidResponseError()
        usage = next(
            (
                item
                for item in usages
                if isinstance(item, dict) and item.get("scope") == KIMI_CODING_SCOPE
            ),
            None,
        )
        if usage is None:
            raise NotSupportedError("Kimi returned no FEATURE_CODING usage.")

        weekly = usage.get("detail")
        if not isinstance(weekly, dict):
            raise InvalidResponseError()
        weekly_remaining = remaining_percent(weekly.get("limit"), weekly.get("remaining"))

        session = None
        limits = usage.get("limits")
        if isinstance(limits, list) and limits and isinstance(limits[0], dict):
            detail = limits[0].get("detail")
            if isinstance(detail, dict):
                session = detail
        session_remaining = (
            remaining_percent(session.get("limit"), session.get("remaining"))
            if session
            else None
        )

        return ProviderUsageSnapshot(
            provider=ProviderID.KIMI,
            primary_used_percent=_clamp_wide(
                None if session_remaining is None else 100 - session_remaining
            ),
            secondary_used_percent=_clamp_wide(
                None if weekly_remaining is None else 100 - weekly_remaining
            ),
            primary_remaining_percent=_clamp_wide(session_remaining),
            secondary_remaining_percent=_clamp_wide(weekly_remaining),
            primary_reset_at=parse_iso8601(session.get("resetTime")) if session else None,
            secondary_reset_at=parse_iso8601(weekly.get("resetTime")),
            status_text="Coding quota",
            updated_at=self._now(),
        )

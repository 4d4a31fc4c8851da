"""
GitHub Copilot usage client.

API Details:
- Endpoint: GET https://api.github.com/copilot_internal/user
- Auth: ``Authorization: token <PAT>`` plus editor-identifying headers the
  endpoint requires verbatim
- Response: {"copilot_plan": str, "quota_snapshots": {"premium_interactions": {...}, "chat": {...}}}

Premium requests reset on the first day of each month; the API does not
report it, so it is computed locally.
"""

from datetime import datetime
from typing import Any, Optional

from ..core.constants import PRIMARY_TIMEOUT
from ..core.errors import InvalidResponseError, MissingTokenError
from ..core.types import (
    Credentials,
    ProviderID,
    ProviderUsageSnapshot,
    clamp_percent,
    remaining_from_used,
)
from .provider_interface import ProviderClient
from .utilities.flexible_json import to_number

COPILOT_USER_URL = "https://api.github.com/copilot_internal/user"

COPILOT_EDITOR_HEADERS = {
    "Editor-Version": "vscode/1.96.2",
    "Editor-Plugin-Version": "copilot-chat/0.26.7",
    "User-Agent": "GitHubCopilotChat/0.26.7",
}


def next_monthly_reset(now: Optional[datetime] = None) -> datetime:
    """Start of next calendar month in the local time zone."""
    local_now = (now or datetime.now().astimezone()).astimezone()
    if local_now.month == 12:
        naive = datetime(local_now.year + 1, 1, 1)
    else:
        naive = datetime(local_now.year, local_now.month + 1, 1)
    # astimezone() on a naive datetime resolves the local offset for that date
    return naive.astimezone()


def _used_from_snapshot(snapshot: Any) -> Optional[float]:
    if not isinstance(snapshot, dict):
        return None
    remaining = to_number(snapshot.get("percent_remaining"))
    if remaining is None:
        return None
    return 100 - remaining


class CopilotUsageClient(ProviderClient):
    """Usage client for GitHub Copilot (personal access token)."""

    provider_id = ProviderID.COPILOT

    async def fetch_usage(self, credentials: Credentials) -> ProviderUsageSnapshot:
        if not credentials.token:
            raise MissingTokenError()

        headers = {"Authorization": f"token {credentials.token}"}
        headers.update(COPILOT_EDITOR_HEADERS)
        response = await self._request(
            "GET", COPILOT_USER_URL, headers=headers, timeout=PRIMARY_TIMEOUT
        )
        self._raise_for_status(response)
        payload = self._decode_object(response)

        snapshots = payload.get("quota_snapshots")
        plan = payload.get("copilot_plan")
        if not isinstance(snapshots, dict) or not isinstance(plan, str):
            raise InvalidResponseError()

        premium_used = clamp_percent(_used_from_snapshot(snapshots.get("premium_interactions")))
        chat_used = clamp_percent(_used_from_snapshot(snapshots.get("chat")))

        return ProviderUsageSnapshot(
            provider=ProviderID.COPILOT,
            primary_used_percent=premium_used,
            secondary_used_percent=chat_used,
            primary_remaining_percent=remaining_from_used(premium_used),
            secondary_remaining_percent=remaining_from_used(chat_used),
            primary_reset_at=next_monthly_reset(),
            status_text=plan.title(),
            updated_at=self._now(),
        )

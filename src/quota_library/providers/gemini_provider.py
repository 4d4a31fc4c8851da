"""
Google Gemini usage client (Code Assist quota API, experimental).

Two independent auth shapes:
- OAuth bearer access token
- AI Studio browser headers: Cookie + ``SAPISIDHASH ...`` Authorization
  (+ optional X-Goog-Api-Key)

Flow:
1. POST v1internal:loadCodeAssist to resolve the Cloud AI Companion project id
2. POST v1internal:retrieveUserQuota with {"project": id} (or {} without one)

Buckets are split into "pro" (primary) and "flash" (secondary) families by
modelId; see utilities/gemini_quota_buckets.py for unit normalization.
"""

import logging
from typing import Any, Dict, Optional

from ..core.constants import PRIMARY_TIMEOUT, USER_AGENT
from ..core.errors import MissingTokenError, NotSupportedError
from ..core.types import (
    Credentials,
    ProviderID,
    ProviderUsageSnapshot,
    clamp_percent,
    remaining_from_used,
)
from .provider_interface import ProviderClient
from .utilities.gemini_quota_buckets import FLASH_NEEDLE, PRO_NEEDLE, select_bucket

lib_logger = logging.getLogger("quota_library")

CODE_ASSIST_BASE = "https://cloudcode-pa.googleapis.com/v1internal"
LOAD_CODE_ASSIST_URL = f"{CODE_ASSIST_BASE}:loadCodeAssist"
RETRIEVE_USER_QUOTA_URL = f"{CODE_ASSIST_BASE}:retrieveUserQuota"

LOAD_CODE_ASSIST_PAYLOAD = {
    "metadata": {
        "ideType": "IDE_UNSPECIFIED",
        "platform": "PLATFORM_UNSPECIFIED",
        "pluginType": "GEMINI",
    }
}

AI_STUDIO_ORIGIN = "https://aistudio.google.com"


def find_project_id(payload: Any) -> Optional[str]:
    """Project id as a direct string or nested ``{"id": ...}`` object."""
    if not isinstance(payload, dict):
        return None
    direct = payload.get("cloudaicompanionProject")
    if isinstance(direct, str) and direct:
        return direct
    for container in (payload.get("response"), payload):
        if not isinstance(container, dict):
            continue
        project = container.get("cloudaicompanionProject")
        if isinstance(project, dict):
            project_id = project.get("id")
            if isinstance(project_id, str) and project_id:
                return project_id
    return None


class GeminiUsageClient(ProviderClient):
    """Usage client for Google Gemini Code Assist quotas."""

    provider_id = ProviderID.GEMINI

    async def fetch_usage(self, credentials: Credentials) -> ProviderUsageSnapshot:
        if not credentials.token and not credentials.has_studio_headers:
            raise MissingTokenError()

        headers = self.auth_headers(credentials)
        project_id = await self.load_project_id(headers)
        body: Dict[str, Any] = {"project": project_id} if project_id else {}

        response = await self._request(
            "POST",
            RETRIEVE_USER_QUOTA_URL,
            headers=headers,
            json=body,
            timeout=PRIMARY_TIMEOUT,
        )
        self._raise_for_status(response)
        payload = self._decode_object(response)

        buckets = payload.get("buckets")
        if not isinstance(buckets, list) or not buckets:
            raise NotSupportedError(
                "Gemini returned no quota buckets. This endpoint is still experimental."
            )

        fallback = select_bucket(buckets, None)
        pro = select_bucket(buckets, PRO_NEEDLE) or fallback
        flash = select_bucket(buckets, FLASH_NEEDLE) or fallback
        lib_logger.debug(
            f"Gemini buckets: {len(buckets)} total, "
            f"pro={pro.model_id if pro else None}, flash={flash.model_id if flash else None}"
        )

        primary_used = clamp_percent(pro.used_percent) if pro else None
        secondary_used = clamp_percent(flash.used_percent) if flash else None

        return ProviderUsageSnapshot(
            provider=ProviderID.GEMINI,
            primary_used_percent=primary_used,
            secondary_used_percent=secondary_used,
            primary_remaining_percent=remaining_from_used(primary_used),
            secondary_remaining_percent=remaining_from_used(secondary_used),
            primary_reset_at=pro.reset_at if pro else None,
            secondary_reset_at=flash.reset_at if flash else None,
            status_text="Experimental API",
            updated_at=self._now(),
        )

    @classmethod
    def auth_headers(cls, credentials: Credentials) -> Dict[str, str]:
        """Bearer token when present, otherwise the AI Studio header set."""
        headers = {"Content-Type": "application/json"}
        if credentials.token:
            headers.update(cls._bearer(credentials.token))
            return headers

        headers["Authorization"] = (credentials.aux_authorization_header or "").strip()
        headers["Cookie"] = (credentials.cookie_header or "").strip()
        api_key = (credentials.aux_api_key or "").strip()
        if api_key:
            headers["X-Goog-Api-Key"] = api_key
        headers["X-Goog-AuthUser"] = "0"
        headers["Origin"] = AI_STUDIO_ORIGIN
        headers["Referer"] = f"{AI_STUDIO_ORIGIN}/"
        headers["User-Agent"] = USER_AGENT
        return headers

    async def load_project_id(self, headers: Dict[str, str]) -> Optional[str]:
        response = await self._request(
            "POST",
            LOAD_CODE_ASSIST_URL,
            headers=headers,
            json=LOAD_CODE_ASSIST_PAYLOAD,
            timeout=PRIMARY_TIMEOUT,
        )
        self._raise_for_status(response)
        try:
            payload = response.json()
        except ValueError:
            return None
        return find_project_id(payload)

# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Base class for per-provider usage clients.

Every client implements ``fetch_usage(credentials)`` and shares the HTTP
plumbing here: an optional caller-owned ``httpx.AsyncClient`` for
connection reuse, status-code mapping, and JSON decoding.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from ..core.constants import USER_AGENT
from ..core.errors import InvalidResponseError, ServerError, UnauthorizedError
from ..core.types import Credentials, ProviderID, ProviderUsageSnapshot

lib_logger = logging.getLogger("quota_library")


class ProviderClient(ABC):
    """
    Fetches and normalizes usage for one provider.

    Clients never retry. Refresh-and-retry on authorization failure belongs
    to the orchestrator.
    """

    provider_id: ProviderID

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client

    @abstractmethod
    async def fetch_usage(self, credentials: Credentials) -> ProviderUsageSnapshot:
        """
        Fetch the current usage snapshot.

        Raises:
            MissingTokenError, UnauthorizedError, ServerError,
            NotSupportedError, InvalidResponseError, or an httpx
            transport error unchanged.
        """

    # =========================================================================
    # HTTP HELPERS
    # =========================================================================

    async def _request(
        self,
        method: str,
        url: str,
        *,
        timeout: float,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request on the shared client, or a short-lived one."""
        merged = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if headers:
            merged.update(headers)
        if self._client is not None:
            return await self._client.request(
                method, url, headers=merged, timeout=timeout, **kwargs
            )
        async with httpx.AsyncClient() as new_client:
            return await new_client.request(
                method, url, headers=merged, timeout=timeout, **kwargs
            )

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        """401/403 -> UnauthorizedError; other non-2xx -> ServerError."""
        status = response.status_code
        if status in (401, 403):
            raise UnauthorizedError()
        if not 200 <= status < 300:
            raise ServerError(status)

    @staticmethod
    def _decode_json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError, ValueError) as e:
            lib_logger.debug(f"Undecodable JSON from {response.request.url}: {e}")
            raise InvalidResponseError() from e

    def _decode_object(self, response: httpx.Response) -> Dict[str, Any]:
        payload = self._decode_json(response)
        if not isinstance(payload, dict):
            raise InvalidResponseError()
        return payload

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    @staticmethod
    def _bearer(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

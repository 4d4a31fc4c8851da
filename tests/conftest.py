"""Shared fixtures: isolated data directory, OAuth config and fake provider clients."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Union

import pytest

from quota_library.config import OAuthClientConfig
from quota_library.core.types import Credentials, ProviderID, ProviderUsageSnapshot
from quota_library.providers.provider_interface import ProviderClient


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("QUOTA_DATA_DIR", str(tmp_path / "data"))
    for name in (
        "QUOTA_CODEX_CLIENT_ID",
        "QUOTA_GEMINI_CLIENT_ID",
        "QUOTA_GEMINI_CLIENT_SECRET",
        "QUOTA_BACKGROUND_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture
def oauth_config() -> OAuthClientConfig:
    return OAuthClientConfig(
        codex_client_id="codex-client",
        gemini_client_id="gemini-client",
        gemini_client_secret="gemini-secret",
    )


def make_snapshot(
    provider: ProviderID,
    primary_used: Optional[float] = 10.0,
    status_text: str = "ok",
) -> ProviderUsageSnapshot:
    return ProviderUsageSnapshot(
        provider=provider,
        status_text=status_text,
        updated_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        primary_used_percent=primary_used,
    )


Outcome = Union[ProviderUsageSnapshot, BaseException]


class FakeClient(ProviderClient):
    """Replays queued outcomes and records the credentials it was called with."""

    def __init__(self, provider: ProviderID, outcomes: Optional[List[Outcome]] = None):
        super().__init__()
        self.provider_id = provider
        self.outcomes: List[Outcome] = list(outcomes or [])
        self.calls: List[Credentials] = []

    async def fetch_usage(self, credentials: Credentials) -> ProviderUsageSnapshot:
        self.calls.append(credentials)
        outcome = self.outcomes.pop(0) if self.outcomes else make_snapshot(self.provider_id)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeRefresher:
    """Stands in for a TokenRefresher; returns queued results in order."""

    def __init__(self, results: Optional[List[Union[Credentials, BaseException]]] = None):
        self.results = list(results or [])
        self.calls: List[Credentials] = []

    async def refresh(self, credentials: Credentials) -> Credentials:
        self.calls.append(credentials)
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result

import asyncio
from datetime import datetime, timezone

import pytest

from quota_library.core.errors import ServerError
from quota_library.core.types import Credentials, ProviderID, RefreshCredentials, WidgetSnapshot
from quota_library.usage.background import (
    background_provider_order,
    fetch_with_timeout,
    refresh_snapshot_in_background,
)
from quota_library.usage.snapshot_store import (
    InMemorySnapshotSink,
    ProviderOrderStore,
    VisibilityStore,
)

from conftest import FakeClient, make_snapshot

OLD = datetime(2025, 12, 1, tzinfo=timezone.utc)


class SlowClient(FakeClient):
    """Never finishes on its own; records whether it was cancelled."""

    def __init__(self, provider):
        super().__init__(provider)
        self.cancelled = False

    async def fetch_usage(self, credentials):
        self.calls.append(credentials)
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return make_snapshot(self.provider_id)


@pytest.mark.asyncio
async def test_fetch_with_timeout_cancels_slow_fetch():
    client = SlowClient(ProviderID.KIMI)
    assert await fetch_with_timeout(client, Credentials(access_token="k"), 0.01) is None
    assert client.cancelled


@pytest.mark.asyncio
async def test_fetch_with_timeout_swallows_errors():
    client = FakeClient(ProviderID.CODEX, [ServerError(500)])
    assert await fetch_with_timeout(client, Credentials(access_token="a"), 1) is None


@pytest.mark.asyncio
async def test_fetch_with_timeout_returns_snapshot():
    expected = make_snapshot(ProviderID.CODEX, 42)
    client = FakeClient(ProviderID.CODEX, [expected])
    assert await fetch_with_timeout(client, Credentials(access_token="a"), 1) == expected


@pytest.mark.asyncio
async def test_empty_feed_returns_fallback():
    fallback = WidgetSnapshot(generated_at=OLD, providers=[make_snapshot(ProviderID.CLAUDE)])
    sink = InMemorySnapshotSink()
    result = await refresh_snapshot_in_background(fallback, {}, list(ProviderID), sink=sink)
    assert result is fallback
    assert sink.saved == []


@pytest.mark.asyncio
async def test_merges_refreshed_over_fallback():
    old_claude = make_snapshot(ProviderID.CLAUDE, 80, "old")
    old_kimi = make_snapshot(ProviderID.KIMI, 80, "old")
    fallback = WidgetSnapshot(generated_at=OLD, providers=[old_claude, old_kimi])
    new_claude = make_snapshot(ProviderID.CLAUDE, 5, "new")
    clients = {
        ProviderID.CLAUDE: FakeClient(ProviderID.CLAUDE, [new_claude]),
        ProviderID.KIMI: SlowClient(ProviderID.KIMI),
    }
    feed = {
        ProviderID.CLAUDE: RefreshCredentials(cookie_header="sessionKey=x"),
        ProviderID.KIMI: RefreshCredentials(access_token="k"),
    }
    sink = InMemorySnapshotSink()

    result = await refresh_snapshot_in_background(
        fallback,
        feed,
        [ProviderID.KIMI, ProviderID.CLAUDE],
        timeout=0.05,
        sink=sink,
        client_factory=clients.__getitem__,
    )

    assert result.providers == [old_kimi, new_claude]
    assert result.generated_at > OLD
    assert sink.saved == [result]
    assert clients[ProviderID.KIMI].cancelled
    assert clients[ProviderID.CLAUDE].calls == [Credentials(cookie_header="sessionKey=x")]


@pytest.mark.asyncio
async def test_nothing_refreshed_returns_fallback():
    fallback = WidgetSnapshot(generated_at=OLD)
    sink = InMemorySnapshotSink()
    result = await refresh_snapshot_in_background(
        fallback,
        {ProviderID.CODEX: RefreshCredentials(access_token="a")},
        [ProviderID.CODEX],
        timeout=1,
        sink=sink,
        client_factory=lambda provider: FakeClient(provider, [ServerError(502)]),
    )
    assert result is fallback
    assert sink.saved == []


@pytest.mark.asyncio
async def test_providers_outside_order_are_skipped():
    client = FakeClient(ProviderID.COPILOT)
    result = await refresh_snapshot_in_background(
        WidgetSnapshot(generated_at=OLD),
        {ProviderID.COPILOT: RefreshCredentials(access_token="ghu_x")},
        [ProviderID.CODEX],
        timeout=1,
        client_factory=lambda provider: client,
    )
    assert client.calls == []
    assert result.providers == []


def test_background_order_falls_back_to_all(tmp_path):
    order_store = ProviderOrderStore(tmp_path / "order.json")
    visibility_store = VisibilityStore(tmp_path / "visibility.json")
    visibility_store.save({provider: False for provider in ProviderID})
    assert background_provider_order(order_store, visibility_store) == list(ProviderID)

    visibility_store.save({ProviderID.CODEX: False})
    assert ProviderID.CODEX not in background_provider_order(order_store, visibility_store)

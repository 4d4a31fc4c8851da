# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Timeout-bound refresh for passive display surfaces.

Unlike ``UsageManager.refresh_all`` this path never refreshes tokens and
never surfaces errors: each provider gets a hard deadline, and anything
that does not finish in time (or fails) falls back to the last known
snapshot.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

import httpx

from ..config import get_background_timeout
from ..core.types import Credentials, ProviderID, ProviderUsageSnapshot, WidgetSnapshot
from ..providers import get_provider_client
from ..providers.provider_interface import ProviderClient
from .snapshot_store import (
    ProviderOrderStore,
    RefreshFeed,
    SnapshotSink,
    VisibilityStore,
)

lib_logger = logging.getLogger("quota_library")

ClientFactory = Callable[[ProviderID], ProviderClient]


async def fetch_with_timeout(
    provider_client: ProviderClient, credentials: Credentials, timeout: float
) -> Optional[ProviderUsageSnapshot]:
    """
    Race a usage fetch against a timer.

    Whichever task loses is cancelled and awaited, so an in-flight request
    is aborted rather than left running. Returns None on timeout or error.
    """
    fetch_task = asyncio.ensure_future(provider_client.fetch_usage(credentials))
    timer_task = asyncio.ensure_future(asyncio.sleep(timeout))
    try:
        done, _ = await asyncio.wait(
            {fetch_task, timer_task}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        for task in (fetch_task, timer_task):
            if not task.done():
                task.cancel()
        await asyncio.gather(fetch_task, timer_task, return_exceptions=True)

    provider = provider_client.provider_id.value
    if fetch_task not in done or fetch_task.cancelled():
        lib_logger.debug(f"Background refresh for {provider} timed out after {timeout}s")
        return None
    error = fetch_task.exception()
    if error is not None:
        lib_logger.debug(
            f"Background refresh for {provider} failed: {type(error).__name__}: {error}"
        )
        return None
    return fetch_task.result()


def background_provider_order(
    order_store: ProviderOrderStore, visibility_store: VisibilityStore
) -> List[ProviderID]:
    """Visible providers in preference order; all providers if none are visible."""
    ordered = order_store.load()
    visible = visibility_store.visible_providers(ordered)
    return visible or ordered


async def refresh_snapshot_in_background(
    fallback: WidgetSnapshot,
    feed: RefreshFeed,
    order: Iterable[ProviderID],
    timeout: Optional[float] = None,
    sink: Optional[SnapshotSink] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    client_factory: Optional[ClientFactory] = None,
) -> WidgetSnapshot:
    """
    Refresh every provider in ``order`` that has a feed entry, concurrently.

    Args:
        fallback: Last known snapshot bundle
        feed: Reduced credentials per provider (no refresh tokens)
        order: Providers to include, in display order
        timeout: Per-provider deadline in seconds (default: QUOTA_BACKGROUND_TIMEOUT)
        sink: Where a refreshed bundle is written
        http_client: Optional shared HTTP client for the provider clients
        client_factory: Override for building provider clients

    Returns:
        The merged bundle, or ``fallback`` unchanged if nothing refreshed.
    """
    if not feed:
        return fallback

    timeout = timeout if timeout is not None else get_background_timeout()
    factory = client_factory or (
        lambda provider: get_provider_client(provider, http_client)
    )
    order = list(order)
    eligible = [provider for provider in order if provider in feed]

    results = await asyncio.gather(
        *(
            fetch_with_timeout(
                factory(provider), feed[provider].to_credentials(), timeout
            )
            for provider in eligible
        )
    )
    refreshed: Dict[ProviderID, ProviderUsageSnapshot] = {
        provider: snapshot
        for provider, snapshot in zip(eligible, results)
        if snapshot is not None
    }
    if not refreshed:
        return fallback

    merged = []
    for provider in order:
        snapshot = refreshed.get(provider) or fallback.snapshot_for(provider)
        if snapshot is not None:
            merged.append(snapshot)
    if not merged:
        return fallback

    bundle = WidgetSnapshot(
        generated_at=datetime.now(timezone.utc), providers=merged, is_mock_data=False
    )
    lib_logger.info(
        f"Background refresh updated {len(refreshed)} of {len(eligible)} provider(s)"
    )
    if sink is not None:
        sink.save(bundle)
    return bundle

# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .background import refresh_snapshot_in_background
from .manager import ProviderState, UsageManager, display_token
from .pacing import estimate_weekly_pace
from .snapshot_store import (
    InMemorySnapshotSink,
    JsonSnapshotStore,
    ProviderOrderStore,
    SnapshotSink,
    VisibilityStore,
)

__all__ = [
    "refresh_snapshot_in_background",
    "ProviderState",
    "UsageManager",
    "display_token",
    "estimate_weekly_pace",
    "InMemorySnapshotSink",
    "JsonSnapshotStore",
    "ProviderOrderStore",
    "SnapshotSink",
    "VisibilityStore",
]

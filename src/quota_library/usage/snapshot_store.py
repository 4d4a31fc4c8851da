# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Display sink and preference stores.

- ``SnapshotSink``: receives the aggregate ``WidgetSnapshot`` once per
  refresh-all cycle, plus the reduced credential feed for the background
  refresh path.
- ``ProviderOrderStore`` / ``VisibilityStore``: user preferences consumed
  read-only by the usage manager.

Writes are atomic (temp file + rename). A failed write is logged and
otherwise ignored; the display surface simply keeps its previous data.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from ..core.types import ProviderID, RefreshCredentials, WidgetSnapshot
from ..utils.paths import get_data_dir

lib_logger = logging.getLogger("quota_library")

SNAPSHOT_FILENAME = "widget-snapshot.json"
REFRESH_FEED_FILENAME = "widget-refresh-credentials.json"
ORDER_FILENAME = "provider-order.json"
VISIBILITY_FILENAME = "provider-visibility.json"

RefreshFeed = Dict[ProviderID, RefreshCredentials]


def _read_json(path: Path) -> Optional[Any]:
    if not path.exists():
        return None
    try:
        with open(path, "r") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        lib_logger.warning(f"Failed to read {path}: {e}")
        return None


def _write_json(path: Path, payload: Any) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix(".tmp")
        with open(temp_path, "w") as f:
            json.dump(payload, f, indent=2)
        temp_path.replace(path)
        return True
    except (OSError, TypeError, ValueError) as e:
        lib_logger.warning(f"Failed to write {path}: {e}")
        return False


# =============================================================================
# DISPLAY SINK
# =============================================================================


class SnapshotSink(ABC):
    @abstractmethod
    def save(self, snapshot: WidgetSnapshot) -> None:
        pass

    @abstractmethod
    def load(self) -> Optional[WidgetSnapshot]:
        pass

    @abstractmethod
    def save_refresh_feed(self, feed: RefreshFeed) -> None:
        pass

    @abstractmethod
    def load_refresh_feed(self) -> RefreshFeed:
        pass


class InMemorySnapshotSink(SnapshotSink):
    """Keeps every written snapshot; the last one is what ``load`` returns."""

    def __init__(self):
        self.saved: List[WidgetSnapshot] = []
        self.feed: RefreshFeed = {}

    def save(self, snapshot: WidgetSnapshot) -> None:
        self.saved.append(snapshot)

    def load(self) -> Optional[WidgetSnapshot]:
        return self.saved[-1] if self.saved else None

    def save_refresh_feed(self, feed: RefreshFeed) -> None:
        self.feed = dict(feed)

    def load_refresh_feed(self) -> RefreshFeed:
        return dict(self.feed)


class JsonSnapshotStore(SnapshotSink):
    """
    Snapshot bundle and refresh feed as two JSON files in one directory.

    Snapshot file::

        {"generatedAt": "...", "isMockData": false, "providers": [...]}

    Refresh feed file::

        {"credentialsByProvider": {"codex": {"accessToken": "...", ...}}}
    """

    def __init__(self, directory: Optional[Union[str, Path]] = None):
        self.directory = Path(directory) if directory is not None else get_data_dir()
        self.snapshot_path = self.directory / SNAPSHOT_FILENAME
        self.feed_path = self.directory / REFRESH_FEED_FILENAME

    def save(self, snapshot: WidgetSnapshot) -> None:
        if _write_json(self.snapshot_path, snapshot.to_dict()):
            lib_logger.debug(
                f"Wrote snapshot with {len(snapshot.providers)} provider(s)"
            )

    def load(self) -> Optional[WidgetSnapshot]:
        data = _read_json(self.snapshot_path)
        if not isinstance(data, dict):
            return None
        try:
            return WidgetSnapshot.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            lib_logger.warning(f"Ignoring malformed snapshot {self.snapshot_path}: {e}")
            return None

    def save_refresh_feed(self, feed: RefreshFeed) -> None:
        payload = {
            "credentialsByProvider": {
                provider.value: credentials.to_dict()
                for provider, credentials in feed.items()
            }
        }
        _write_json(self.feed_path, payload)

    def load_refresh_feed(self) -> RefreshFeed:
        data = _read_json(self.feed_path)
        if not isinstance(data, dict):
            return {}
        entries = data.get("credentialsByProvider")
        if not isinstance(entries, dict):
            return {}
        feed: RefreshFeed = {}
        for key, value in entries.items():
            try:
                provider = ProviderID(key)
            except ValueError:
                continue
            if isinstance(value, dict):
                feed[provider] = RefreshCredentials.from_dict(value)
        return feed


# =============================================================================
# PREFERENCES
# =============================================================================


class ProviderOrderStore:
    """Ordered provider list. Unknown ids are dropped, missing ones appended."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path is not None else get_data_dir() / ORDER_FILENAME

    @staticmethod
    def normalized(providers: Iterable[ProviderID]) -> List[ProviderID]:
        ordered: List[ProviderID] = []
        for provider in list(providers) + list(ProviderID):
            if provider not in ordered:
                ordered.append(provider)
        return ordered

    def load(self) -> List[ProviderID]:
        data = _read_json(self.path)
        if not isinstance(data, list):
            return list(ProviderID)
        providers = []
        for value in data:
            try:
                providers.append(ProviderID(value))
            except ValueError:
                continue
        return self.normalized(providers)

    def save(self, providers: Iterable[ProviderID]) -> None:
        _write_json(self.path, [provider.value for provider in self.normalized(providers)])


class VisibilityStore:
    """Per-provider visibility in the display surface; defaults to visible."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = (
            Path(path) if path is not None else get_data_dir() / VISIBILITY_FILENAME
        )

    def load(self) -> Dict[ProviderID, bool]:
        data = _read_json(self.path)
        raw = data if isinstance(data, dict) else {}
        return {
            provider: bool(raw.get(provider.value, True)) for provider in ProviderID
        }

    def save(self, visibility: Dict[ProviderID, bool]) -> None:
        _write_json(
            self.path,
            {provider.value: visibility.get(provider, True) for provider in ProviderID},
        )

    def visible_providers(self, ordered: Iterable[ProviderID]) -> List[ProviderID]:
        visibility = self.load()
        return [provider for provider in ordered if visibility.get(provider, True)]

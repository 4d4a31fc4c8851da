# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""Data directory resolution."""

import os
from pathlib import Path


def get_data_dir() -> Path:
    """
    Directory holding credentials, snapshots and preferences.

    ``QUOTA_DATA_DIR`` overrides the default ``~/.quota_monitor``.
    """
    override = os.environ.get("QUOTA_DATA_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".quota_monitor"


def get_data_file(name: str) -> Path:
    return get_data_dir() / name

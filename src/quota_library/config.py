# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Runtime configuration from environment variables.

Values are read from ``os.environ``; call ``load_env_file()`` first to pull
them in from a ``.env`` file (python-dotenv).

Environment variables:
    QUOTA_CODEX_CLIENT_ID: OpenAI OAuth client id (sign-in + refresh)
    QUOTA_GEMINI_CLIENT_ID: Google OAuth client id
    QUOTA_GEMINI_CLIENT_SECRET: Google OAuth client secret
    QUOTA_DATA_DIR: Directory for credentials, snapshots and preferences
    QUOTA_BACKGROUND_TIMEOUT: Per-provider background refresh timeout in seconds (default: 8)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

from dotenv import load_dotenv

from .core.constants import BACKGROUND_REFRESH_TIMEOUT
from .core.errors import OAuthConfigError

lib_logger = logging.getLogger("quota_library")


def _env_str(name: str) -> Optional[str]:
    value = os.environ.get(name, "").strip()
    return value or None


def _env_float(name: str, default: float) -> float:
    """Parse a number from an environment variable with fallback to default."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        lib_logger.warning(f"Invalid {name} value {raw!r}, using default {default}")
        return default


def load_env_file(path: Optional[Union[str, Path]] = None) -> bool:
    """
    Load a ``.env`` file into the process environment.

    Existing environment variables win over the file.

    Returns:
        True if a file was found and loaded
    """
    if path is None:
        from .utils.paths import get_data_file

        path = get_data_file(".env")
    loaded = load_dotenv(dotenv_path=path, override=False)
    if loaded:
        lib_logger.debug(f"Loaded environment from {path}")
    return loaded


@dataclass(frozen=True)
class OAuthClientConfig:
    """OAuth client credentials supplied by the embedding application."""

    codex_client_id: Optional[str] = None
    gemini_client_id: Optional[str] = None
    gemini_client_secret: Optional[str] = None

    @classmethod
    def from_env(cls) -> "OAuthClientConfig":
        return cls(
            codex_client_id=_env_str("QUOTA_CODEX_CLIENT_ID"),
            gemini_client_id=_env_str("QUOTA_GEMINI_CLIENT_ID"),
            gemini_client_secret=_env_str("QUOTA_GEMINI_CLIENT_SECRET"),
        )

    def require_codex(self) -> str:
        if not self.codex_client_id:
            raise OAuthConfigError(
                "Codex OAuth client id is not configured. Set QUOTA_CODEX_CLIENT_ID."
            )
        return self.codex_client_id

    def require_gemini(self) -> Tuple[str, str]:
        if not self.gemini_client_id or not self.gemini_client_secret:
            raise OAuthConfigError(
                "Gemini OAuth client is not configured. "
                "Set QUOTA_GEMINI_CLIENT_ID and QUOTA_GEMINI_CLIENT_SECRET."
            )
        return self.gemini_client_id, self.gemini_client_secret


def get_background_timeout() -> float:
    return max(0.1, _env_float("QUOTA_BACKGROUND_TIMEOUT", BACKGROUND_REFRESH_TIMEOUT))

# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Multi-provider AI quota monitoring.

Fetches usage for Codex, Claude, Gemini, Copilot and Kimi accounts,
normalizes it into ``ProviderUsageSnapshot`` records, and keeps OAuth
credentials fresh.
"""

from .core.errors import (
    CredentialInputError,
    OAuthSignInError,
    ProviderFetchError,
    TokenRefreshError,
)
from .core.types import (
    Credentials,
    PacingEstimate,
    ProviderID,
    ProviderUsageSnapshot,
    WidgetSnapshot,
)
from .usage import UsageManager, estimate_weekly_pace, refresh_snapshot_in_background

__all__ = [
    "CredentialInputError",
    "OAuthSignInError",
    "ProviderFetchError",
    "TokenRefreshError",
    "Credentials",
    "PacingEstimate",
    "ProviderID",
    "ProviderUsageSnapshot",
    "WidgetSnapshot",
    "UsageManager",
    "estimate_weekly_pace",
    "refresh_snapshot_in_background",
]

# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .types import (
    Credentials,
    PacingEstimate,
    ProviderID,
    ProviderUsageSnapshot,
    RefreshCredentials,
    WidgetSnapshot,
)

__all__ = [
    "Credentials",
    "PacingEstimate",
    "ProviderID",
    "ProviderUsageSnapshot",
    "RefreshCredentials",
    "WidgetSnapshot",
]

# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""Weekly pacing estimate for the Codex weekly window."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from ..core.constants import (
    PACING_MIN_DEFICIT_PERCENT,
    PACING_MIN_ELAPSED_PERCENT,
    WEEKLY_WINDOW_SECONDS,
)
from ..core.types import PacingEstimate, ProviderID, ProviderUsageSnapshot


def _bounded(value: float) -> float:
    return min(max(value, 0.0), 100.0)


def estimate_weekly_pace(
    snapshot: ProviderUsageSnapshot, now: Optional[datetime] = None
) -> Optional[PacingEstimate]:
    """
    Compare weekly usage against a linear burn over the 7-day window.

    Returns None unless the account is ahead of the linear pace by more than
    two percentage points, with at least 3% of the window elapsed and the
    reset no more than seven days away.

    Args:
        snapshot: Codex snapshot (secondary window is the weekly cycle)
        now: Reference time (defaults to the current UTC time)
    """
    if snapshot.provider != ProviderID.CODEX:
        return None
    remaining = snapshot.resolved_secondary_remaining_percent
    reset_at = snapshot.secondary_reset_at
    if remaining is None or reset_at is None:
        return None

    now = now or datetime.now(timezone.utc)
    seconds_until_reset = (reset_at - now).total_seconds()
    if seconds_until_reset <= 0 or seconds_until_reset > WEEKLY_WINDOW_SECONDS:
        return None

    elapsed_seconds = WEEKLY_WINDOW_SECONDS - seconds_until_reset
    if elapsed_seconds <= 0:
        return None

    expected_used = _bounded(elapsed_seconds / WEEKLY_WINDOW_SECONDS * 100)
    if expected_used < PACING_MIN_ELAPSED_PERCENT:
        return None

    actual_used = _bounded(100 - remaining)
    deficit = actual_used - expected_used
    if deficit <= PACING_MIN_DEFICIT_PERCENT:
        return None

    remaining = _bounded(remaining)
    runs_out_at = None
    if actual_used > 0:
        burn_rate = actual_used / elapsed_seconds
        eta_seconds = remaining / burn_rate
        if eta_seconds < seconds_until_reset:
            runs_out_at = now + timedelta(seconds=eta_seconds)

    return PacingEstimate(
        expected_remaining_percent=max(remaining, 100 - expected_used),
        deficit_percent=deficit,
        runs_out_at=runs_out_at,
    )

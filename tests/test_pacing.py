from datetime import datetime, timedelta, timezone

import pytest

from quota_library.core.types import ProviderID, ProviderUsageSnapshot
from quota_library.usage.pacing import estimate_weekly_pace

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def weekly(used, reset_in=timedelta(days=6), provider=ProviderID.CODEX):
    return ProviderUsageSnapshot(
        provider=provider,
        status_text="Plus plan",
        updated_at=NOW,
        secondary_used_percent=used,
        secondary_reset_at=NOW + reset_in,
    )


def test_on_pace_returns_none():
    # One day into the week is ~14.3% expected
    assert estimate_weekly_pace(weekly(14.3), NOW) is None


def test_ahead_of_pace_returns_estimate():
    estimate = estimate_weekly_pace(weekly(25.0), NOW)
    assert estimate is not None
    assert estimate.deficit_percent == pytest.approx(25.0 - 100 / 7, abs=0.01)
    assert estimate.expected_remaining_percent == pytest.approx(100 - 100 / 7, abs=0.01)
    # 25% per day burns the remaining 75% in three days, before the reset
    assert (estimate.runs_out_at - NOW).total_seconds() == pytest.approx(3 * 86400)


def test_too_early_in_window():
    assert estimate_weekly_pace(weekly(50.0, reset_in=timedelta(days=6, hours=23)), NOW) is None


def test_reset_in_past_or_beyond_week():
    assert estimate_weekly_pace(weekly(90.0, reset_in=timedelta(minutes=-1)), NOW) is None
    assert estimate_weekly_pace(weekly(90.0, reset_in=timedelta(days=8)), NOW) is None


def test_only_codex_is_paced():
    assert estimate_weekly_pace(weekly(90.0, provider=ProviderID.CLAUDE), NOW) is None


def test_missing_weekly_data():
    snapshot = ProviderUsageSnapshot(provider=ProviderID.CODEX, status_text="", updated_at=NOW)
    assert estimate_weekly_pace(snapshot, NOW) is None

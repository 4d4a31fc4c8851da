from datetime import datetime, timezone

import pytest

from quota_library.core.types import ProviderID
from quota_library.providers.utilities.dashboard_scraper import parse_code_review_window
from quota_library.providers.utilities.flexible_json import (
    CODE_REVIEW_RULE,
    FlexibleWindow,
    extract_provider_window,
    extract_window,
    parse_iso8601,
    to_number,
)
from quota_library.providers.utilities.gemini_quota_buckets import (
    normalize_remaining_percent,
    select_bucket,
    used_percent_from_raw,
)


class TestValueCoercion:
    def test_to_number(self):
        assert to_number(12) == 12.0
        assert to_number(" 4.5 ") == 4.5
        assert to_number("nope") is None
        assert to_number(True) is None
        assert to_number(float("nan")) is None
        assert to_number(None) is None

    def test_parse_iso8601_with_and_without_fraction(self):
        expected = datetime(2026, 3, 1, 10, 30, tzinfo=timezone.utc)
        assert parse_iso8601("2026-03-01T10:30:00Z") == expected
        assert parse_iso8601("2026-03-01T10:30:00.123456789Z") == expected.replace(
            microsecond=123456
        )
        assert parse_iso8601("2026-03-01T10:30:00.5+00:00") == expected.replace(
            microsecond=500000
        )
        assert parse_iso8601("") is None
        assert parse_iso8601("yesterday") is None
        assert parse_iso8601(1234) is None


class TestFlexibleExtraction:
    def test_top_level_keys(self):
        window = extract_window(
            {"code_review_used_percent": "12", "code_review_reset_at": 1700000000},
            CODE_REVIEW_RULE,
        )
        assert window == FlexibleWindow(used_percent=12.0, reset_at=1700000000.0)

    def test_top_level_remaining_converts_to_used(self):
        window = extract_window({"code_review_remaining_percent": 70}, CODE_REVIEW_RULE)
        assert window.used_percent == 30

    def test_candidate_container_key(self):
        payload = {"rate_limit": {"review_window": {"usedPercent": 40, "resetsAt": 99}}}
        assert extract_window(payload, CODE_REVIEW_RULE) == FlexibleWindow(40.0, 99.0)

    def test_needle_match_in_container(self):
        payload = {"rate_limit": {"GitHubReviewQuota": {"remaining_percent": 25}}}
        assert extract_window(payload, CODE_REVIEW_RULE).used_percent == 75

    def test_non_object_payload(self):
        assert extract_window(["x"], CODE_REVIEW_RULE) == FlexibleWindow()

    def test_provider_without_rule(self):
        assert extract_provider_window(ProviderID.KIMI, {"code_review_used_percent": 5}) == FlexibleWindow()

    def test_fill_from_keeps_existing_values(self):
        merged = FlexibleWindow(used_percent=10).fill_from(FlexibleWindow(20, 300))
        assert merged == FlexibleWindow(10, 300)


class TestDashboardScraper:
    def test_embedded_json_key(self):
        html = '<script>{"codeReviewRemainingPercent": 80}</script>'
        assert parse_code_review_window(html).used_percent == 20

    def test_used_key(self):
        html = '{"code_review_used_percent":35.5}'
        assert parse_code_review_window(html).used_percent == 35.5

    def test_natural_language_remaining(self):
        html = "<div>GitHub Code review</div><span>64% remaining</span>"
        assert parse_code_review_window(html).used_percent == 36

    def test_natural_language_used(self):
        assert parse_code_review_window("Code review: 15% used").used_percent == 15

    def test_broad_match_is_remaining(self):
        assert parse_code_review_window("Code review quota 90%").used_percent == 10

    def test_no_match(self):
        assert parse_code_review_window("<html>nothing here</html>") is None
        assert parse_code_review_window("") is None
        assert parse_code_review_window(None) is None


class TestGeminiBuckets:
    @pytest.mark.parametrize("raw", [0.63, 63, 6300, "63"])
    def test_unit_normalization(self, raw):
        assert used_percent_from_raw(raw) == pytest.approx(37)
        assert normalize_remaining_percent(raw) == pytest.approx(63)

    def test_one_is_a_fraction(self):
        assert normalize_remaining_percent(1) == 100

    @pytest.mark.parametrize("raw", [150000, 630000, -0.5, "abc", None, float("inf")])
    def test_unnormalizable_values_are_discarded(self, raw):
        assert normalize_remaining_percent(raw) is None

    def test_select_least_used_available_bucket(self):
        buckets = [
            {"modelId": "gemini-2.5-pro", "remainingFraction": 0.0},
            {"modelId": "gemini-2.5-pro-preview", "remainingFraction": 0.4},
            {"modelId": "gemini-2.5-flash", "remainingFraction": 0.9},
        ]
        selected = select_bucket(buckets, "pro")
        assert selected.model_id == "gemini-2.5-pro-preview"
        assert selected.used_percent == pytest.approx(60)

    def test_all_exhausted_reports_most_used(self):
        buckets = [
            {"modelId": "gemini-pro", "remainingFraction": 0, "resetTime": "2026-03-01T00:00:00Z"},
        ]
        selected = select_bucket(buckets, "PRO")
        assert selected.used_percent == 100
        assert selected.reset_at == datetime(2026, 3, 1, tzinfo=timezone.utc)

    def test_no_matching_bucket(self):
        assert select_bucket([{"modelId": "gemini-flash", "remainingFraction": 1}], "pro") is None
        assert select_bucket([], None) is None

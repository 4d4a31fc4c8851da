# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Flexible JSON window extraction.

Provider payloads are loosely typed: the same figure may appear under
several key spellings, nested under one of several container keys, or as a
numeric string. Extraction is driven by a rule table keyed by provider so
each provider's tolerated shapes are data, not bespoke parsing code.

A rule is evaluated in order and stops once both a used percentage and a
reset time have been found:
    1. top-level keys on the payload
    2. candidate keys inside the container object (exact names)
    3. any container key containing one of the needles (case-insensitive)
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from ...core.types import ProviderID

lib_logger = logging.getLogger("quota_library")


# =============================================================================
# VALUE COERCION
# =============================================================================


def to_number(value: Any) -> Optional[float]:
    """Coerce int/float/numeric-string to float. Anything else yields None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def from_unix_seconds(value: Optional[float]) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_iso8601(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp with or without fractional seconds.

    Returns None for empty or unparseable input.
    """
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    # fromisoformat before 3.11 only accepts 3 or 6 fractional digits
    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        rest = ""
        for index, char in enumerate(tail):
            if not char.isdigit():
                rest = tail[index:]
                break
            digits += char
        digits = (digits + "000000")[:6]
        text = f"{head}.{digits}{rest}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# EXTRACTION RULES
# =============================================================================


DEFAULT_USED_KEYS = ("used_percent", "usedPercent", "usage_percent", "utilization", "percent_used")
DEFAULT_REMAINING_KEYS = ("remaining_percent", "remainingPercent", "percent_remaining")
DEFAULT_RESET_KEYS = ("reset_at", "resetAt", "resets_at", "resetsAt", "reset_time", "resetTime")


@dataclass(frozen=True)
class WindowExtractionRule:
    """Where to look for one quota window in a loosely-typed payload."""

    top_level_used_key: Optional[str]
    top_level_remaining_key: Optional[str]
    top_level_reset_key: Optional[str]
    container_key: str
    candidate_keys: Tuple[str, ...]
    needles: Tuple[str, ...]
    used_keys: Tuple[str, ...] = DEFAULT_USED_KEYS
    remaining_keys: Tuple[str, ...] = DEFAULT_REMAINING_KEYS
    reset_keys: Tuple[str, ...] = DEFAULT_RESET_KEYS


@dataclass(frozen=True)
class FlexibleWindow:
    """Used percentage and reset time (unix seconds), either possibly absent."""

    used_percent: Optional[float] = None
    reset_at: Optional[float] = None

    @property
    def is_complete(self) -> bool:
        return self.used_percent is not None and self.reset_at is not None

    def fill_from(self, other: "FlexibleWindow") -> "FlexibleWindow":
        return FlexibleWindow(
            used_percent=self.used_percent if self.used_percent is not None else other.used_percent,
            reset_at=self.reset_at if self.reset_at is not None else other.reset_at,
        )


CODE_REVIEW_RULE = WindowExtractionRule(
    top_level_used_key="code_review_used_percent",
    top_level_remaining_key="code_review_remaining_percent",
    top_level_reset_key="code_review_reset_at",
    container_key="rate_limit",
    candidate_keys=(
        "code_review_window",
        "code_review",
        "review_window",
        "github_code_review_window",
        "tertiary_window",
        "tertiary",
    ),
    needles=("review", "tertiary"),
)

# Tertiary-window rules per provider
EXTRACTION_RULES: Dict[ProviderID, WindowExtractionRule] = {
    ProviderID.CODEX: CODE_REVIEW_RULE,
}


def _first_number(payload: Dict[str, Any], keys: Tuple[str, ...]) -> Optional[float]:
    for key in keys:
        number = to_number(payload.get(key))
        if number is not None:
            return number
    return None


def parse_window(payload: Dict[str, Any], rule: WindowExtractionRule) -> FlexibleWindow:
    """Read used/remaining/reset from one window object using the rule's key lists."""
    used = _first_number(payload, rule.used_keys)
    if used is None:
        remaining = _first_number(payload, rule.remaining_keys)
        if remaining is not None:
            used = 100 - remaining
    return FlexibleWindow(used_percent=used, reset_at=_first_number(payload, rule.reset_keys))


def extract_window(payload: Any, rule: WindowExtractionRule) -> FlexibleWindow:
    """
    Apply an extraction rule to a decoded JSON payload.

    Args:
        payload: Decoded JSON (anything; non-objects yield an empty window)
        rule: Rule describing the tolerated shapes

    Returns:
        FlexibleWindow with whatever could be found
    """
    if not isinstance(payload, dict):
        return FlexibleWindow()

    used = to_number(payload.get(rule.top_level_used_key)) if rule.top_level_used_key else None
    if used is None and rule.top_level_remaining_key:
        remaining = to_number(payload.get(rule.top_level_remaining_key))
        if remaining is not None:
            used = 100 - remaining
    reset = to_number(payload.get(rule.top_level_reset_key)) if rule.top_level_reset_key else None
    window = FlexibleWindow(used_percent=used, reset_at=reset)

    container = payload.get(rule.container_key)
    if not isinstance(container, dict):
        return window

    for key in rule.candidate_keys:
        nested = container.get(key)
        if not isinstance(nested, dict):
            continue
        window = window.fill_from(parse_window(nested, rule))
        if window.is_complete:
            return window

    for key, nested in container.items():
        lowered = key.lower()
        if not any(needle in lowered for needle in rule.needles):
            continue
        if not isinstance(nested, dict):
            continue
        window = window.fill_from(parse_window(nested, rule))
        if window.is_complete:
            break

    return window


def extract_provider_window(provider: ProviderID, payload: Any) -> FlexibleWindow:
    """Look up the provider's rule and apply it. Providers without a rule yield an empty window."""
    rule = EXTRACTION_RULES.get(provider)
    if rule is None:
        return FlexibleWindow()
    return extract_window(payload, rule)

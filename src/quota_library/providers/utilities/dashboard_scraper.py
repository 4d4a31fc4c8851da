# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Regex scraping of the Codex usage dashboard HTML.

Last-resort source for the code review percentage. Every failure mode
yields None; nothing here raises.
"""

import re
from typing import List, Optional, Pattern, Tuple

from .flexible_json import FlexibleWindow

_NUMBER = r"\s*:\s*([0-9]+(?:\.[0-9]+)?)"

# (pattern, captured value is remaining rather than used), tried in order
KEY_PATTERNS: List[Tuple[Pattern[str], bool]] = [
    (re.compile(r'"codeReviewRemainingPercent"' + _NUMBER, re.IGNORECASE), True),
    (re.compile(r'"code_review_remaining_percent"' + _NUMBER, re.IGNORECASE), True),
    (re.compile(r'"codeReviewUsedPercent"' + _NUMBER, re.IGNORECASE), False),
    (re.compile(r'"code_review_used_percent"' + _NUMBER, re.IGNORECASE), False),
]

TEXT_PATTERNS: List[Tuple[Pattern[str], bool]] = [
    (
        re.compile(
            r"(?:GitHub\s*)?Code\s*review[^0-9%]*([0-9]{1,3})%\s*(?:remaining|left)",
            re.IGNORECASE,
        ),
        True,
    ),
    (
        re.compile(r"Core\s*review[^0-9%]*([0-9]{1,3})%\s*(?:remaining|left)", re.IGNORECASE),
        True,
    ),
    (
        re.compile(r"(?:GitHub\s*)?Code\s*review[^0-9%]*([0-9]{1,3})%\s*used", re.IGNORECASE),
        False,
    ),
]

# Bare "review ... NN%" is read as remaining, matching how the page words it
BROAD_PATTERN: Pattern[str] = re.compile(
    r"(?:(?:GitHub\s*)?Code|Core)\s*review[^\n]*?([0-9]{1,3})%", re.IGNORECASE
)


def _match_percent(pattern: Pattern[str], body: str) -> Optional[float]:
    match = pattern.search(body)
    if match is None:
        return None
    try:
        return float(match.group(1))
    except (TypeError, ValueError):
        return None


def _to_window(value: float, is_remaining: bool) -> FlexibleWindow:
    used = 100 - value if is_remaining else value
    return FlexibleWindow(used_percent=min(max(used, 0.0), 100.0))


def parse_code_review_window(body: Optional[str]) -> Optional[FlexibleWindow]:
    """
    Scrape the code review percentage out of dashboard HTML.

    Args:
        body: Raw page text

    Returns:
        FlexibleWindow with a clamped used percentage (no reset time), or None
    """
    if not body:
        return None
    cleaned = body.replace("\r", "\n")

    for patterns in (KEY_PATTERNS, TEXT_PATTERNS):
        for pattern, is_remaining in patterns:
            value = _match_percent(pattern, cleaned)
            if value is not None:
                return _to_window(value, is_remaining)

    value = _match_percent(BROAD_PATTERN, cleaned)
    if value is None:
        return None
    return _to_window(value, True)

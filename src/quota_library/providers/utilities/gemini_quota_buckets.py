# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Gemini quota bucket normalization and selection.

``retrieveUserQuota`` returns buckets whose ``remainingFraction`` comes in
ambiguous units:
    - 0..1 fraction          (0.63  -> 63%)
    - 0..100 percent         (63    -> 63%)
    - basis points           (6300  -> 63%)

Values above 100 are divided by 100 while they stay within
MAX_SCALED_REMAINING. Anything that does not land in [0, 100] is discarded
rather than clamped. Exactly 1 is read as a fraction (100%).

Known divergence: earlier builds kept dividing up to 1,000,000, which read
630000 as 63% (and 150000 as 15%). Both are discarded here, since no known
encoding of ``remainingFraction`` uses that scale.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .flexible_json import parse_iso8601, to_number

# 100% expressed in basis points; larger raw values are not a known encoding
MAX_SCALED_REMAINING = 10_000.0

PRO_NEEDLE = "pro"
FLASH_NEEDLE = "flash"


@dataclass(frozen=True)
class BucketUsage:
    used_percent: float
    reset_at: Optional[datetime]
    model_id: Optional[str] = None


def normalize_remaining_percent(raw: Any) -> Optional[float]:
    """
    Normalize a raw remaining value to a percentage in [0, 100].

    Returns:
        Remaining percent, or None if the value cannot be normalized
    """
    value = to_number(raw)
    if value is None or not math.isfinite(value) or value < 0:
        return None
    if value <= 1:
        value *= 100
    else:
        while 100 < value <= MAX_SCALED_REMAINING:
            value /= 100
    if not 0 <= value <= 100:
        return None
    return value


def used_percent_from_raw(raw: Any) -> Optional[float]:
    remaining = normalize_remaining_percent(raw)
    if remaining is None:
        return None
    return 100 - remaining


def bucket_usages(buckets: List[Dict[str, Any]], needle: Optional[str]) -> List[BucketUsage]:
    """Normalize every bucket whose modelId contains ``needle`` (all buckets when None)."""
    usages = []
    for bucket in buckets:
        if not isinstance(bucket, dict):
            continue
        model_id = bucket.get("modelId")
        if needle is not None:
            if not isinstance(model_id, str) or needle.lower() not in model_id.lower():
                continue
        used = used_percent_from_raw(bucket.get("remainingFraction"))
        if used is None:
            continue
        usages.append(
            BucketUsage(
                used_percent=used,
                reset_at=parse_iso8601(bucket.get("resetTime")),
                model_id=model_id if isinstance(model_id, str) else None,
            )
        )
    return usages


def select_bucket(buckets: List[Dict[str, Any]], needle: Optional[str]) -> Optional[BucketUsage]:
    """
    Pick the bucket that represents a model family.

    The least-depleted bucket that still has headroom wins, so one exhausted
    side quota does not pin the family at 100%. When every bucket is
    exhausted, the most-depleted one is reported.
    """
    usages = bucket_usages(buckets, needle)
    if not usages:
        return None
    available = [usage for usage in usages if usage.used_percent < 100]
    if available:
        return min(available, key=lambda usage: usage.used_percent)
    return max(usages, key=lambda usage: usage.used_percent)

# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""Shared constants: timeouts, thresholds and user agent."""

USER_AGENT = "AiUsage"

# =============================================================================
# TIMEOUTS (seconds)
# =============================================================================

PRIMARY_TIMEOUT = 30.0
CLAUDE_WEB_TIMEOUT = 20.0
CLAUDE_OVERAGE_TIMEOUT = 15.0
FALLBACK_API_TIMEOUT = 8.0
DASHBOARD_HTML_TIMEOUT = 6.0
TOKEN_REFRESH_TIMEOUT = 30.0

# Hard per-provider cap for the background refresh path
BACKGROUND_REFRESH_TIMEOUT = 8.0

# =============================================================================
# REFRESH / PACING THRESHOLDS
# =============================================================================

# Minimum age of a Gemini access token before a proactive refresh
GEMINI_PROACTIVE_REFRESH_INTERVAL = 50 * 60

WEEKLY_WINDOW_SECONDS = 7 * 24 * 60 * 60
PACING_MIN_ELAPSED_PERCENT = 3.0
PACING_MIN_DEFICIT_PERCENT = 2.0

# Kimi may report usage beyond its quota
KIMI_PERCENT_FLOOR = -200.0
KIMI_PERCENT_CEILING = 200.0

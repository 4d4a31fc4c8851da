# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Terminal rendering of a quota snapshot bundle.

One table row per applicable quota window, grouped by provider, with a
remaining-percent bar, the reset time, and the weekly pace warning for
Codex.
"""

from datetime import datetime, timezone
from typing import Dict, Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from quota_library.core.types import ProviderID, WidgetSnapshot
from quota_library.usage.pacing import estimate_weekly_pace


# =============================================================================
# DISPLAY CONFIGURATION
# =============================================================================

TABLE_PROVIDER_WIDTH = 16
TABLE_WINDOW_WIDTH = 12
BAR_WIDTH = 20

# Remaining-percent thresholds: (minimum, color)
REMAINING_COLORS = [
    (50.0, "green"),
    (20.0, "yellow"),
    (float("-inf"), "red"),
]


def format_reset_time(value: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Relative reset time, e.g. 'in 2h 15m'."""
    if value is None:
        return "-"
    now = now or datetime.now(timezone.utc)
    seconds = int((value - now).total_seconds())
    if seconds <= 0:
        return "now"
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes = seconds // 60
    if days:
        return f"in {days}d {hours}h"
    if hours:
        return f"in {hours}h {minutes}m"
    return f"in {minutes}m"


def create_progress_bar(percent: Optional[float], width: int = BAR_WIDTH) -> str:
    """Text bar for a remaining percentage (clamped to the bar)."""
    if percent is None:
        return "░" * width
    filled = int(min(max(percent, 0.0), 100.0) / 100 * width)
    return "▓" * filled + "░" * (width - filled)


def remaining_color(percent: float) -> str:
    for minimum, color in REMAINING_COLORS:
        if percent >= minimum:
            return color
    return "red"


def render_snapshot(
    snapshot: WidgetSnapshot,
    console: Console,
    errors: Optional[Dict[ProviderID, str]] = None,
    now: Optional[datetime] = None,
) -> Table:
    """Print ``snapshot`` (and any per-provider errors) as a rich table."""
    now = now or datetime.now(timezone.utc)
    errors = errors or {}

    table = Table(box=None, show_header=True, header_style="bold", padding=(0, 1))
    table.add_column("Provider", min_width=TABLE_PROVIDER_WIDTH)
    table.add_column("Window", min_width=TABLE_WINDOW_WIDTH)
    table.add_column("Remaining", no_wrap=True)
    table.add_column("Resets", justify="right")
    table.add_column("Notes")

    for provider_snapshot in snapshot.providers:
        provider = provider_snapshot.provider
        name = Text(provider.display_name, style=f"bold {provider.metadata.color}")
        pace = estimate_weekly_pace(provider_snapshot, now)
        windows = list(provider_snapshot.windows())

        if not windows:
            table.add_row(name, "-", "", "", provider_snapshot.status_text)
            continue

        for index, window in enumerate(windows):
            color = remaining_color(window.remaining_percent)
            bar = Text(create_progress_bar(window.remaining_percent), style=color)
            bar.append(f" {window.remaining_percent:5.1f}%", style=color)

            notes = provider_snapshot.status_text if index == 0 else ""
            if pace is not None and window.label == provider.metadata.secondary_title:
                notes = f"[yellow]{pace.deficit_percent:.1f}% ahead of pace[/yellow]"
                if pace.runs_out_at is not None:
                    notes += f", runs out {format_reset_time(pace.runs_out_at, now)}"

            table.add_row(
                name if index == 0 else "",
                window.label,
                bar,
                format_reset_time(window.reset_at, now),
                notes,
            )

    console.print(table)

    for provider in ProviderID:
        message = errors.get(provider)
        if message:
            console.print(f"[red]{provider.display_name}:[/red] {message}")

    if not snapshot.providers and not errors:
        console.print("[yellow]No providers connected. Paste a token to get started.[/yellow]")
    return table

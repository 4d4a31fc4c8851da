# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Command-line entry point.

    quota-monitor                       refresh every connected provider and show usage
    quota-monitor set-token codex TEXT  save pasted credentials for a provider
    quota-monitor login gemini          sign in through the browser
    quota-monitor disconnect claude     forget a provider's credentials
    quota-monitor background            timeout-bound refresh from the stored feed
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import List, Optional

import httpx
from rich.console import Console

from quota_library.config import get_background_timeout, load_env_file
from quota_library.core.types import ProviderID, WidgetSnapshot
from quota_library.usage.background import (
    background_provider_order,
    refresh_snapshot_in_background,
)
from quota_library.usage.manager import UsageManager

from .quota_viewer import render_snapshot

console = Console()


def _provider(value: str) -> ProviderID:
    try:
        return ProviderID(value.lower())
    except ValueError:
        choices = ", ".join(p.value for p in ProviderID)
        raise argparse.ArgumentTypeError(f"unknown provider {value!r} (choose from {choices})")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quota-monitor", description="Track AI provider quota usage."
    )
    parser.add_argument("--env-file", help="Path to a .env file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("show", help="Refresh all providers and show usage (default)")

    set_token = sub.add_parser("set-token", help="Save pasted credentials")
    set_token.add_argument("provider", type=_provider)
    set_token.add_argument("text", help="Token, cookie header, auth JSON or header blob ('-' reads stdin)")

    login = sub.add_parser("login", help="Print an OAuth sign-in link (codex, gemini)")
    login.add_argument("provider", type=_provider)

    disconnect = sub.add_parser("disconnect", help="Forget a provider's credentials")
    disconnect.add_argument("provider", type=_provider)

    sub.add_parser("background", help="Timeout-bound refresh from the stored feed")
    return parser


async def _run_background(manager: UsageManager, client: httpx.AsyncClient) -> WidgetSnapshot:
    fallback = manager.sink.load() or WidgetSnapshot(generated_at=datetime.now(timezone.utc))
    order = background_provider_order(manager.order_store, manager.visibility_store)
    return await refresh_snapshot_in_background(
        fallback,
        manager.sink.load_refresh_feed(),
        order,
        timeout=get_background_timeout(),
        sink=manager.sink,
        http_client=client,
    )


async def _sign_in(manager: UsageManager, provider: ProviderID) -> bool:
    url = manager.prepare_login_link(provider)
    if url is None:
        return False
    console.print(manager.sign_in_messages[provider])
    console.print(url, soft_wrap=True)
    # Sessions live in memory, so the callback is read in this process
    callback = console.input("[bold]Callback URL or code:[/bold] ")
    manager.set_draft(provider, callback)
    await manager.exchange_authorization_code_from_draft(provider)
    return provider not in manager.errors


def _report_error(manager: UsageManager, provider: ProviderID) -> int:
    console.print(f"[red]{provider.display_name}:[/red] {manager.errors[provider]}")
    return 1


async def run(args: argparse.Namespace) -> int:
    async with httpx.AsyncClient() as client:
        manager = UsageManager(http_client=client)
        manager.load_preferences()
        command = args.command or "show"

        if command == "background":
            render_snapshot(await _run_background(manager, client), console)
            return 0

        if command == "disconnect":
            manager.disconnect(args.provider)
            console.print(f"Disconnected {args.provider.display_name}.")
            return 0

        if command == "login":
            if not await _sign_in(manager, args.provider):
                return _report_error(manager, args.provider)
            console.print(manager.sign_in_messages[args.provider])
        elif command == "set-token":
            text = sys.stdin.read() if args.text == "-" else args.text
            manager.set_draft(args.provider, text)
            await manager.save_token(args.provider)
            if args.provider in manager.errors:
                return _report_error(manager, args.provider)

        snapshot = await manager.load()
        render_snapshot(snapshot, console, errors=manager.errors)
        return 1 if manager.errors else 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    load_env_file(args.env_file)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())

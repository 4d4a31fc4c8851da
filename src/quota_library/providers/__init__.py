# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""Per-provider usage clients and the client factory."""

from typing import Dict, Optional, Type

import httpx

from ..core.types import ProviderID
from .claude_provider import ClaudeUsageClient
from .codex_provider import CodexUsageClient
from .copilot_provider import CopilotUsageClient
from .gemini_provider import GeminiUsageClient
from .kimi_provider import KimiUsageClient
from .provider_interface import ProviderClient

PROVIDER_CLIENTS: Dict[ProviderID, Type[ProviderClient]] = {
    ProviderID.CODEX: CodexUsageClient,
    ProviderID.CLAUDE: ClaudeUsageClient,
    ProviderID.GEMINI: GeminiUsageClient,
    ProviderID.COPILOT: CopilotUsageClient,
    ProviderID.KIMI: KimiUsageClient,
}


def get_provider_client(
    provider: ProviderID, client: Optional[httpx.AsyncClient] = None
) -> ProviderClient:
    """Instantiate the usage client for ``provider``."""
    return PROVIDER_CLIENTS[provider](client)


__all__ = [
    "PROVIDER_CLIENTS",
    "ProviderClient",
    "ClaudeUsageClient",
    "CodexUsageClient",
    "CopilotUsageClient",
    "GeminiUsageClient",
    "KimiUsageClient",
    "get_provider_client",
]

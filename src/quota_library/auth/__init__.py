# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .oauth_flow import (
    OAuthSession,
    OAuthTokens,
    exchange_authorization_code,
    start_sign_in,
)
from .token_refresh import (
    TOKEN_REFRESHERS,
    CodexTokenRefresher,
    GeminiTokenRefresher,
    TokenRefresher,
    get_token_refresher,
)

__all__ = [
    "OAuthSession",
    "OAuthTokens",
    "exchange_authorization_code",
    "start_sign_in",
    "TOKEN_REFRESHERS",
    "CodexTokenRefresher",
    "GeminiTokenRefresher",
    "TokenRefresher",
    "get_token_refresher",
]

# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .input_parsers import (
    extract_authorization_code,
    extract_authorization_state,
    looks_like_oauth_callback,
    parse_credentials_input,
)
from .store import CredentialStore, InMemoryCredentialStore, JsonFileCredentialStore

__all__ = [
    "extract_authorization_code",
    "extract_authorization_state",
    "looks_like_oauth_callback",
    "parse_credentials_input",
    "CredentialStore",
    "InMemoryCredentialStore",
    "JsonFileCredentialStore",
]

# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
UsageManager: per-provider refresh orchestration.

This is the main public API of the library. One instance owns the
in-memory state for every provider (pasted drafts, the last snapshot, the
last error, which providers are loading) and drives it through

    IDLE -> LOADING -> SUCCESS | FAILED

on each refresh. Token refresh (proactive for Gemini, reactive on 401/403
for Codex and Gemini) is handled here, not in the provider clients.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set

import httpx

from ..auth.oauth_flow import OAuthSession, exchange_authorization_code, start_sign_in
from ..auth.token_refresh import TokenRefresher, get_token_refresher
from ..config import OAuthClientConfig
from ..core.constants import GEMINI_PROACTIVE_REFRESH_INTERVAL
from ..core.errors import (
    CredentialInputError,
    MissingTokenError,
    OAuthSignInError,
    ProviderFetchError,
    RefreshTokenRevokedError,
    TokenRefreshError,
    UnauthorizedError,
)
from ..core.types import (
    Credentials,
    ProviderID,
    ProviderUsageSnapshot,
    RefreshCredentials,
    WidgetSnapshot,
)
from ..credentials.input_parsers import (
    extract_authorization_code,
    extract_authorization_state,
    looks_like_oauth_callback,
    parse_credentials_input,
    parse_raw_auth_json,
)
from ..credentials.store import CredentialStore, JsonFileCredentialStore
from ..providers import get_provider_client
from ..providers.provider_interface import ProviderClient
from .snapshot_store import (
    JsonSnapshotStore,
    ProviderOrderStore,
    SnapshotSink,
    VisibilityStore,
)

lib_logger = logging.getLogger("quota_library")

# Errors a refresh records as a user-facing message instead of raising
REFRESH_ERRORS = (
    ProviderFetchError,
    TokenRefreshError,
    CredentialInputError,
    OAuthSignInError,
    httpx.HTTPError,
)

CALLBACK_WITH_SESSION_MESSAGE = (
    "That looks like an auth code/callback URL. Paste it, then press return to exchange."
)
CALLBACK_WITHOUT_SESSION_MESSAGE = (
    "That looks like a callback URL, but the sign-in session has expired. Tap Sign in again."
)
SIGN_IN_INSTRUCTIONS = (
    "Open link in browser, finish login, then copy the final redirected URL "
    "(it may be a localhost page), paste it here, and press return."
)


class ProviderState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    FAILED = "failed"


def error_message(error: BaseException) -> str:
    """User-facing text for an exception."""
    message = str(error).strip()
    if isinstance(error, httpx.HTTPError):
        return f"Network error: {message or type(error).__name__}"
    return message or type(error).__name__


def display_token(provider: ProviderID, credentials: Credentials) -> str:
    """
    Text shown in the provider's input field for a stored record.

    The access token when there is one; otherwise Gemini's studio headers as
    ``Header: value`` lines, or the cookie header for Codex and Claude.
    """
    if credentials.token:
        return credentials.token
    if provider == ProviderID.GEMINI:
        lines = []
        for label, value in (
            ("Cookie", credentials.cookie_header),
            ("Authorization", credentials.aux_authorization_header),
            ("X-Goog-Api-Key", credentials.aux_api_key),
        ):
            if value and value.strip():
                lines.append(f"{label}: {value.strip()}")
        if lines:
            return "\n".join(lines)
    if provider in (ProviderID.CLAUDE, ProviderID.CODEX):
        return (credentials.cookie_header or "").strip()
    return ""


class UsageManager:
    """
    Orchestrates credential resolution, token refresh and usage fetches.

    Usage:
        manager = UsageManager()
        await manager.load()
        for provider, snapshot in manager.snapshots.items():
            ...
    """

    def __init__(
        self,
        store: Optional[CredentialStore] = None,
        sink: Optional[SnapshotSink] = None,
        order_store: Optional[ProviderOrderStore] = None,
        visibility_store: Optional[VisibilityStore] = None,
        config: Optional[OAuthClientConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clients: Optional[Dict[ProviderID, ProviderClient]] = None,
        refreshers: Optional[Dict[ProviderID, Optional[TokenRefresher]]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize UsageManager.

        Args:
            store: Credential store (default: JSON file in the data directory)
            sink: Display sink for the aggregate snapshot
            order_store: Provider order preference
            visibility_store: Provider visibility preference
            config: OAuth client configuration (default: from environment)
            http_client: Optional shared HTTP client for all outbound calls
            clients: Per-provider client overrides
            refreshers: Per-provider refresher overrides (None disables refresh)
            clock: Time source for the proactive refresh throttle
        """
        self.store = store or JsonFileCredentialStore()
        self.sink = sink or JsonSnapshotStore()
        self.order_store = order_store or ProviderOrderStore()
        self.visibility_store = visibility_store or VisibilityStore()
        self.config = config or OAuthClientConfig.from_env()
        self._http_client = http_client
        self._client_overrides = dict(clients or {})
        self._refresher_overrides = dict(refreshers or {})
        self._clock = clock

        # State
        self.provider_order: List[ProviderID] = list(ProviderID)
        self.visibility: Dict[ProviderID, bool] = {p: True for p in ProviderID}
        self.drafts: Dict[ProviderID, str] = {}
        self.saved_tokens: Dict[ProviderID, str] = {}
        self.snapshots: Dict[ProviderID, ProviderUsageSnapshot] = {}
        self.errors: Dict[ProviderID, str] = {}
        self.loading: Set[ProviderID] = set()
        self.sign_in_messages: Dict[ProviderID, str] = {}

        self._sessions: Dict[ProviderID, OAuthSession] = {}
        self._gemini_last_refresh_at: Optional[float] = None
        self._gemini_last_refreshed_token: Optional[str] = None

        # Serializes refresh-and-persist per provider
        self._refresh_locks: Dict[ProviderID, asyncio.Lock] = {}
        # Last refresh token exchanged per provider; each is spent at most once
        self._spent_refresh_tokens: Dict[ProviderID, str] = {}

    # =========================================================================
    # STATE ACCESS
    # =========================================================================

    def state(self, provider: ProviderID) -> ProviderState:
        if provider in self.loading:
            return ProviderState.LOADING
        if provider in self.snapshots:
            return ProviderState.SUCCESS
        if provider in self.errors:
            return ProviderState.FAILED
        return ProviderState.IDLE

    def has_token(self, provider: ProviderID) -> bool:
        """True if the store holds credentials usable for ``provider``."""
        stored = self.store.load(provider)
        return stored is not None and stored.is_usable_for(provider)

    def has_any_token(self) -> bool:
        return any(self.has_token(provider) for provider in ProviderID)

    def set_draft(self, provider: ProviderID, text: str) -> None:
        self.drafts[provider] = text

    def is_token_modified(self, provider: ProviderID) -> bool:
        draft = (self.drafts.get(provider) or "").strip()
        saved = (self.saved_tokens.get(provider) or "").strip()
        return draft != saved

    def has_pending_sign_in(self, provider: ProviderID) -> bool:
        return provider in self._sessions

    def _client_for(self, provider: ProviderID) -> ProviderClient:
        client = self._client_overrides.get(provider)
        if client is None:
            client = get_provider_client(provider, self._http_client)
            self._client_overrides[provider] = client
        return client

    def _refresher_for(self, provider: ProviderID) -> Optional[TokenRefresher]:
        if provider in self._refresher_overrides:
            return self._refresher_overrides[provider]
        refresher = get_token_refresher(provider, self.config, self._http_client)
        self._refresher_overrides[provider] = refresher
        return refresher

    def _lock_for(self, provider: ProviderID) -> asyncio.Lock:
        if provider not in self._refresh_locks:
            self._refresh_locks[provider] = asyncio.Lock()
        return self._refresh_locks[provider]

    def _mirror_display_token(self, provider: ProviderID, credentials: Credentials) -> None:
        token = display_token(provider, credentials)
        self.drafts[provider] = token
        self.saved_tokens[provider] = token

    def _clear_display_state(self, provider: ProviderID) -> None:
        self.drafts[provider] = ""
        self.saved_tokens[provider] = ""
        self.snapshots.pop(provider, None)
        self.errors.pop(provider, None)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def load_preferences(self) -> None:
        """Read order and visibility, mirror stored credentials into drafts."""
        self.provider_order = self.order_store.load()
        self.visibility = self.visibility_store.load()
        for provider in ProviderID:
            stored = self.store.load(provider)
            token = display_token(provider, stored) if stored is not None else ""
            self.drafts[provider] = token
            self.saved_tokens[provider] = token

    async def load(self) -> WidgetSnapshot:
        self.load_preferences()
        return await self.refresh_all()

    async def refresh_all_if_needed(self) -> Optional[WidgetSnapshot]:
        if not self.has_any_token():
            return None
        return await self.refresh_all()

    # =========================================================================
    # CREDENTIAL RESOLUTION AND TOKEN REFRESH
    # =========================================================================

    def resolve_credentials(self, provider: ProviderID) -> Credentials:
        """
        Credentials to use for the next fetch.

        A non-empty draft wins over the stored record, except that for the
        OAuth providers a draft whose access token equals the stored one
        resolves to the stored record (which may carry a refresh token and
        cookies the draft lacks).

        Raises:
            MissingTokenError: no draft and no stored record
            CredentialInputError: the draft does not parse
        """
        draft = (self.drafts.get(provider) or "").strip()
        if draft:
            parsed = parse_credentials_input(provider, draft)
            if provider.supports_oauth_refresh and parsed.token:
                stored = self.store.load(provider)
                if stored is not None and stored.token == parsed.token:
                    return stored
            return parsed

        stored = self.store.load(provider)
        if stored is not None:
            return stored
        raise MissingTokenError()

    def _should_refresh_gemini(self, access_token: str) -> bool:
        if self._gemini_last_refresh_at is None:
            return True
        if self._gemini_last_refreshed_token != access_token:
            return True
        elapsed = self._clock() - self._gemini_last_refresh_at
        return elapsed >= GEMINI_PROACTIVE_REFRESH_INTERVAL

    async def _refresh_and_persist(
        self, provider: ProviderID, credentials: Credentials
    ) -> Optional[Credentials]:
        """
        Refresh ``credentials`` and persist the merged record.

        Returns None when the provider has no refresher or the record has no
        refresh token.
        """
        refresher = self._refresher_for(provider)
        refresh_token = (credentials.refresh_token or "").strip()
        if refresher is None or not refresh_token:
            return None

        refreshed = await refresher.refresh(credentials)
        self._spent_refresh_tokens[provider] = refresh_token
        # Cookie and studio header fields of the stored record survive a
        # refresh of a pasted draft that lacks them
        stored = self.store.load(provider)
        base = stored.merged_with_refresh(credentials) if stored is not None else credentials
        merged = base.merged_with_refresh(refreshed)
        self.store.save(provider, merged)
        self._mirror_display_token(provider, merged)
        if provider == ProviderID.GEMINI:
            self._gemini_last_refresh_at = self._clock()
            self._gemini_last_refreshed_token = merged.token
        return merged

    def _refreshed_elsewhere(
        self, provider: ProviderID, credentials: Credentials
    ) -> Optional[Credentials]:
        """
        The stored record, if another task already spent ``credentials``' refresh token.

        Call with the provider's refresh lock held.
        """
        refresh_token = (credentials.refresh_token or "").strip()
        if not refresh_token or self._spent_refresh_tokens.get(provider) != refresh_token:
            return None
        stored = self.store.load(provider)
        if stored is None or not stored.token or stored.token == credentials.token:
            return None
        return stored

    async def _refresh_gemini_proactively(self, credentials: Credentials) -> Credentials:
        if not credentials.token or not (credentials.refresh_token or "").strip():
            return credentials

        async with self._lock_for(ProviderID.GEMINI):
            current = self._refreshed_elsewhere(ProviderID.GEMINI, credentials)
            if current is not None:
                return current
            if not self._should_refresh_gemini(credentials.token):
                return credentials
            try:
                refreshed = await self._refresh_and_persist(ProviderID.GEMINI, credentials)
            except RefreshTokenRevokedError:
                raise
            except TokenRefreshError as e:
                lib_logger.warning(
                    f"Proactive Gemini token refresh failed, using current token: {e}"
                )
                return credentials
        return refreshed or credentials

    async def fetch_usage(
        self, provider: ProviderID, credentials: Credentials
    ) -> ProviderUsageSnapshot:
        """
        Fetch usage, refreshing the token once on an authorization failure.

        Raises:
            ProviderFetchError, TokenRefreshError, or an httpx transport error
        """
        client = self._client_for(provider)
        effective = credentials
        if provider == ProviderID.GEMINI:
            effective = await self._refresh_gemini_proactively(credentials)

        try:
            return await client.fetch_usage(effective)
        except UnauthorizedError:
            async with self._lock_for(provider):
                refreshed = self._refreshed_elsewhere(provider, effective)
                if refreshed is None:
                    refreshed = await self._refresh_and_persist(provider, effective)
            if refreshed is None:
                raise
            lib_logger.info(f"Retrying {provider.value} usage fetch with refreshed token")
        return await client.fetch_usage(refreshed)

    # =========================================================================
    # REFRESH
    # =========================================================================

    async def refresh(self, provider: ProviderID) -> Optional[ProviderUsageSnapshot]:
        """
        Refresh one provider and record the outcome.

        Failures clear the provider's snapshot and record the message in
        ``errors``; nothing is raised for expected failure kinds.
        """
        if not self.has_token(provider) and not (self.drafts.get(provider) or "").strip():
            self.snapshots.pop(provider, None)
            self.errors.pop(provider, None)
            self.persist_snapshot()
            return None

        self.loading.add(provider)
        try:
            credentials = self.resolve_credentials(provider)
            snapshot = await self.fetch_usage(provider, credentials)
        except REFRESH_ERRORS as e:
            self.snapshots.pop(provider, None)
            self.errors[provider] = error_message(e)
            lib_logger.warning(f"Usage refresh failed for {provider.value}: {error_message(e)}")
            return None
        finally:
            self.loading.discard(provider)

        self.snapshots[provider] = snapshot
        self.errors.pop(provider, None)
        lib_logger.debug(f"Usage refreshed for {provider.value}: {snapshot.status_text}")
        return snapshot

    async def refresh_all(self) -> WidgetSnapshot:
        """
        Refresh every provider with usable stored credentials concurrently.

        Waits for all of them regardless of individual failures, then writes
        the aggregate snapshot to the sink exactly once.
        """
        eligible = [p for p in self.provider_order if self.has_token(p)]
        if not eligible:
            self.snapshots.clear()
            self.errors.clear()
            return self.persist_snapshot()

        results = await asyncio.gather(
            *(self.refresh(provider) for provider in eligible),
            return_exceptions=True,
        )
        for provider, result in zip(eligible, results):
            if isinstance(result, Exception):
                lib_logger.error(
                    f"Unexpected error refreshing {provider.value}: {type(result).__name__}: {result}"
                )
                self.snapshots.pop(provider, None)
                self.errors[provider] = error_message(result)
                self.loading.discard(provider)

        succeeded = sum(1 for provider in eligible if provider in self.snapshots)
        lib_logger.info(f"Refreshed {succeeded}/{len(eligible)} provider(s)")
        return self.persist_snapshot()

    # =========================================================================
    # AGGREGATE SNAPSHOT
    # =========================================================================

    def widget_snapshot(self) -> WidgetSnapshot:
        """Visible providers' snapshots in preference order."""
        providers = [
            self.snapshots[provider]
            for provider in self.provider_order
            if provider in self.snapshots and self.visibility.get(provider, True)
        ]
        return WidgetSnapshot(generated_at=datetime.now(timezone.utc), providers=providers)

    def refresh_feed(self) -> Dict[ProviderID, RefreshCredentials]:
        feed = {}
        for provider in self.provider_order:
            stored = self.store.load(provider)
            if stored is not None and stored.is_usable_for(provider):
                feed[provider] = stored.to_refresh_feed()
        return feed

    def persist_snapshot(self) -> WidgetSnapshot:
        snapshot = self.widget_snapshot()
        self.sink.save(snapshot)
        self.sink.save_refresh_feed(self.refresh_feed())
        return snapshot

    # =========================================================================
    # PREFERENCES
    # =========================================================================

    def set_provider_order(self, providers: Iterable[ProviderID]) -> None:
        self.provider_order = ProviderOrderStore.normalized(providers)
        self.order_store.save(self.provider_order)
        self.persist_snapshot()

    def set_provider_visible(self, provider: ProviderID, visible: bool) -> None:
        self.visibility[provider] = visible
        self.visibility_store.save(self.visibility)
        self.persist_snapshot()

    # =========================================================================
    # TOKEN SAVE / DISCONNECT
    # =========================================================================

    def _is_unexchanged_callback(self, provider: ProviderID, text: str) -> bool:
        if not provider.supports_oauth_refresh or not looks_like_oauth_callback(text):
            return False
        try:
            return parse_raw_auth_json(provider, text) is None
        except CredentialInputError:
            return True

    async def save_token(self, provider: ProviderID) -> None:
        """
        Persist the provider's draft and refresh it.

        An empty draft disconnects the provider. Parse and refresh failures
        are recorded in ``errors``.
        """
        text = (self.drafts.get(provider) or "").strip()

        if self._is_unexchanged_callback(provider, text):
            self.errors[provider] = (
                CALLBACK_WITH_SESSION_MESSAGE
                if provider in self._sessions
                else CALLBACK_WITHOUT_SESSION_MESSAGE
            )
            return

        if not text:
            self.store.delete(provider)
            self.snapshots.pop(provider, None)
            self.errors.pop(provider, None)
            self.saved_tokens[provider] = ""
        else:
            try:
                credentials = parse_credentials_input(provider, text)
            except CredentialInputError as e:
                self.errors[provider] = error_message(e)
            else:
                self.store.save(provider, credentials)
                self._mirror_display_token(provider, credentials)
                lib_logger.info(f"Saved {provider.value} credentials")
                await self.refresh(provider)

        self.persist_snapshot()

    def disconnect(self, provider: ProviderID) -> None:
        """Forget the provider's credentials, pending sign-in and displayed state."""
        self._sessions.pop(provider, None)
        self._spent_refresh_tokens.pop(provider, None)
        self.sign_in_messages.pop(provider, None)
        if provider == ProviderID.GEMINI:
            self._gemini_last_refresh_at = None
            self._gemini_last_refreshed_token = None
        self.store.delete(provider)
        self._clear_display_state(provider)
        lib_logger.info(f"Disconnected {provider.value}")
        self.persist_snapshot()

    # =========================================================================
    # OAUTH SIGN-IN
    # =========================================================================

    def prepare_login_link(self, provider: ProviderID) -> Optional[str]:
        """
        Start a sign-in for ``provider`` and return the URL to open.

        Returns None (with the reason in ``errors``) if a link cannot be made.
        """
        try:
            session = start_sign_in(provider, self.config)
        except (OAuthSignInError, TokenRefreshError) as e:
            self._sessions.pop(provider, None)
            self.sign_in_messages[provider] = f"Could not generate login link: {error_message(e)}"
            self.errors[provider] = error_message(e)
            return None

        self._sessions[provider] = session
        self.sign_in_messages[provider] = SIGN_IN_INSTRUCTIONS
        self.errors.pop(provider, None)
        return session.authorize_url

    def _authorization_code_from_draft(self, provider: ProviderID) -> Optional[str]:
        """Validate the pasted callback; records the problem and returns None if unusable."""
        text = (self.drafts.get(provider) or "").strip()
        if not text:
            self.errors[provider] = "Paste the returned authorization code or callback URL first."
            return None
        lower = text.lower()
        if lower.startswith("<!doctype") or lower.startswith("<html"):
            self.errors[provider] = (
                "You pasted HTML. Paste the browser callback URL (or code), not page source."
            )
            return None
        session = self._sessions.get(provider)
        if session is None:
            self.errors[provider] = "Generate login URL first."
            return None
        state = extract_authorization_state(text)
        if state and state != session.state:
            self.errors[provider] = "Auth state mismatch. Generate a new login link and try again."
            return None
        code = extract_authorization_code(text)
        if not code:
            self.errors[provider] = (
                "Could not find an authorization code. Paste the full callback URL or raw code."
            )
            return None
        return code

    async def exchange_authorization_code_from_draft(
        self, provider: ProviderID
    ) -> Optional[ProviderUsageSnapshot]:
        """
        Finish a sign-in using the callback URL (or bare code) in the draft.

        Existing cookie and studio header fields are kept; Gemini additionally
        keeps the stored refresh token when Google does not issue a new one.
        """
        code = self._authorization_code_from_draft(provider)
        if code is None:
            return None
        session = self._sessions[provider]

        try:
            tokens = await exchange_authorization_code(
                session, code, self.config, self._http_client
            )
            existing = self.store.load(provider) or Credentials()
            if provider == ProviderID.CODEX:
                merged = Credentials(
                    access_token=tokens.access_token,
                    refresh_token=tokens.refresh_token,
                    account_id=tokens.account_id,
                    cookie_header=existing.cookie_header,
                )
            else:
                refresh_token = (tokens.refresh_token or existing.refresh_token or "").strip()
                if not refresh_token:
                    raise OAuthSignInError(
                        "Google sign-in returned no refresh token. Revoke this app "
                        "in your Google account, then sign in again."
                    )
                merged = Credentials(
                    access_token=tokens.access_token,
                    refresh_token=refresh_token,
                    account_id=existing.account_id,
                    cookie_header=existing.cookie_header,
                    aux_authorization_header=existing.aux_authorization_header,
                    aux_api_key=existing.aux_api_key,
                )
                self._gemini_last_refresh_at = self._clock()
                self._gemini_last_refreshed_token = merged.token
        except (OAuthSignInError, TokenRefreshError, httpx.HTTPError) as e:
            self.errors[provider] = error_message(e)
            self.sign_in_messages[provider] = f"Code exchange failed: {error_message(e)}"
            return None

        self.store.save(provider, merged)
        self.drafts[provider] = merged.token
        self.saved_tokens[provider] = merged.token
        self._sessions.pop(provider, None)
        self.errors.pop(provider, None)
        self.sign_in_messages[provider] = "Signed in."
        lib_logger.info(f"{provider.display_name} sign-in complete")

        snapshot = await self.refresh(provider)
        self.persist_snapshot()
        return snapshot

import asyncio
from urllib.parse import urlencode

import httpx
import pytest
import respx

from quota_library.auth.oauth_flow import CODEX_TOKEN_URL, GEMINI_TOKEN_URL
from quota_library.config import OAuthClientConfig
from quota_library.core.constants import GEMINI_PROACTIVE_REFRESH_INTERVAL
from quota_library.core.errors import (
    InvalidResponseError,
    MissingTokenError,
    RefreshTokenExpiredError,
    RefreshTokenRevokedError,
    ServerError,
    UnauthorizedError,
)
from quota_library.core.types import Credentials, ProviderID
from quota_library.credentials.store import InMemoryCredentialStore
from quota_library.usage.manager import (
    CALLBACK_WITHOUT_SESSION_MESSAGE,
    ProviderState,
    UsageManager,
    display_token,
)
from quota_library.usage.snapshot_store import (
    InMemorySnapshotSink,
    ProviderOrderStore,
    VisibilityStore,
)

from conftest import FakeClient, FakeRefresher, make_snapshot


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def build_manager(tmp_path, oauth_config):
    def build(records=None, clients=None, refreshers=None, clock=None):
        clients = dict(clients or {})
        for provider in ProviderID:
            clients.setdefault(provider, FakeClient(provider))
        return UsageManager(
            store=InMemoryCredentialStore(records),
            sink=InMemorySnapshotSink(),
            order_store=ProviderOrderStore(tmp_path / "order.json"),
            visibility_store=VisibilityStore(tmp_path / "visibility.json"),
            config=oauth_config,
            clients=clients,
            refreshers=refreshers or {},
            clock=clock or Clock(),
        )

    return build


# =============================================================================
# REFRESH AND RETRY
# =============================================================================


@pytest.mark.asyncio
async def test_unauthorized_refreshes_once_and_retries(build_manager):
    stored = Credentials(access_token="old", refresh_token="rt", cookie_header="c=1")
    client = FakeClient(ProviderID.CODEX, [UnauthorizedError(), make_snapshot(ProviderID.CODEX, 33)])
    refresher = FakeRefresher([Credentials(access_token="new", refresh_token="rt2")])
    manager = build_manager(
        {ProviderID.CODEX: stored},
        clients={ProviderID.CODEX: client},
        refreshers={ProviderID.CODEX: refresher},
    )

    snapshot = await manager.refresh(ProviderID.CODEX)

    assert snapshot.primary_used_percent == 33
    assert refresher.calls == [stored]
    assert [call.access_token for call in client.calls] == ["old", "new"]
    assert manager.state(ProviderID.CODEX) == ProviderState.SUCCESS
    # Cookie survives the refresh
    assert manager.store.load(ProviderID.CODEX) == Credentials(
        access_token="new", refresh_token="rt2", cookie_header="c=1"
    )
    assert manager.drafts[ProviderID.CODEX] == "new"


class ExpiringTokenClient(FakeClient):
    """Rejects one access token; yields before answering so calls overlap."""

    def __init__(self, provider, expired_token):
        super().__init__(provider)
        self.expired_token = expired_token

    async def fetch_usage(self, credentials):
        self.calls.append(credentials)
        await asyncio.sleep(0)
        if credentials.access_token == self.expired_token:
            raise UnauthorizedError()
        return make_snapshot(self.provider_id)


class SlowRefresher(FakeRefresher):
    async def refresh(self, credentials):
        await asyncio.sleep(0)
        return await super().refresh(credentials)


@pytest.mark.asyncio
async def test_concurrent_unauthorized_refreshes_once(build_manager):
    client = ExpiringTokenClient(ProviderID.CODEX, "old")
    refresher = SlowRefresher([Credentials(access_token="new", refresh_token="rt2")])
    manager = build_manager(
        {ProviderID.CODEX: Credentials(access_token="old", refresh_token="rt1")},
        clients={ProviderID.CODEX: client},
        refreshers={ProviderID.CODEX: refresher},
    )

    first, second = await asyncio.gather(
        manager.refresh(ProviderID.CODEX), manager.refresh(ProviderID.CODEX)
    )

    assert [call.refresh_token for call in refresher.calls] == ["rt1"]
    assert first is not None and second is not None
    assert [call.access_token for call in client.calls] == ["old", "old", "new", "new"]
    assert manager.store.load(ProviderID.CODEX) == Credentials(
        access_token="new", refresh_token="rt2"
    )
    assert ProviderID.CODEX not in manager.errors


@pytest.mark.asyncio
async def test_gemini_concurrent_proactive_refresh_runs_once(build_manager):
    refresher = SlowRefresher([Credentials(access_token="ya29.new")])
    client = FakeClient(ProviderID.GEMINI)
    manager = build_manager(
        {ProviderID.GEMINI: Credentials(access_token="ya29.old", refresh_token="1//r")},
        clients={ProviderID.GEMINI: client},
        refreshers={ProviderID.GEMINI: refresher},
    )

    await asyncio.gather(manager.refresh(ProviderID.GEMINI), manager.refresh(ProviderID.GEMINI))

    assert len(refresher.calls) == 1
    assert [call.access_token for call in client.calls] == ["ya29.new", "ya29.new"]


@pytest.mark.asyncio
async def test_refreshing_pasted_draft_keeps_stored_studio_headers(build_manager):
    stored = Credentials(
        access_token="ya29.old",
        refresh_token="rt0",
        cookie_header="SID=1",
        aux_authorization_header="SAPISIDHASH x",
        aux_api_key="key",
    )
    refresher = FakeRefresher([Credentials(access_token="ya29.new", refresh_token="rt2")])
    client = FakeClient(ProviderID.GEMINI, [UnauthorizedError()])
    manager = build_manager(
        {ProviderID.GEMINI: stored},
        clients={ProviderID.GEMINI: client},
        refreshers={ProviderID.GEMINI: refresher},
    )
    # Recently refreshed, so only the 401 path refreshes the pasted token
    manager._gemini_last_refresh_at = 1000.0
    manager._gemini_last_refreshed_token = "ya29.pasted"
    manager.set_draft(ProviderID.GEMINI, '{"access_token": "ya29.pasted", "refresh_token": "rt1"}')

    await manager.refresh(ProviderID.GEMINI)

    assert refresher.calls == [Credentials(access_token="ya29.pasted", refresh_token="rt1")]
    assert manager.store.load(ProviderID.GEMINI) == Credentials(
        access_token="ya29.new",
        refresh_token="rt2",
        cookie_header="SID=1",
        aux_authorization_header="SAPISIDHASH x",
        aux_api_key="key",
    )
    assert client.calls[-1].cookie_header == "SID=1"


@pytest.mark.asyncio
async def test_second_unauthorized_is_reported(build_manager):
    client = FakeClient(ProviderID.CODEX, [UnauthorizedError(), UnauthorizedError()])
    refresher = FakeRefresher([Credentials(access_token="new")])
    manager = build_manager(
        {ProviderID.CODEX: Credentials(access_token="old", refresh_token="rt")},
        clients={ProviderID.CODEX: client},
        refreshers={ProviderID.CODEX: refresher},
    )

    assert await manager.refresh(ProviderID.CODEX) is None
    assert len(refresher.calls) == 1
    assert len(client.calls) == 2
    assert manager.errors[ProviderID.CODEX] == UnauthorizedError.default_message


@pytest.mark.asyncio
async def test_unauthorized_without_refresh_token_is_reported(build_manager):
    refresher = FakeRefresher()
    manager = build_manager(
        {ProviderID.CODEX: Credentials(access_token="old")},
        clients={ProviderID.CODEX: FakeClient(ProviderID.CODEX, [UnauthorizedError()])},
        refreshers={ProviderID.CODEX: refresher},
    )
    await manager.refresh(ProviderID.CODEX)
    assert refresher.calls == []
    assert manager.state(ProviderID.CODEX) == ProviderState.FAILED


@pytest.mark.asyncio
async def test_server_error_does_not_refresh_and_clears_snapshot(build_manager):
    client = FakeClient(ProviderID.CODEX, [make_snapshot(ProviderID.CODEX), ServerError(500)])
    refresher = FakeRefresher()
    manager = build_manager(
        {ProviderID.CODEX: Credentials(access_token="a", refresh_token="rt")},
        clients={ProviderID.CODEX: client},
        refreshers={ProviderID.CODEX: refresher},
    )

    await manager.refresh(ProviderID.CODEX)
    assert ProviderID.CODEX in manager.snapshots

    await manager.refresh(ProviderID.CODEX)
    assert refresher.calls == []
    assert ProviderID.CODEX not in manager.snapshots
    assert manager.errors[ProviderID.CODEX] == "Server error: HTTP 500."
    assert manager.state(ProviderID.CODEX) == ProviderState.FAILED


@pytest.mark.asyncio
async def test_refresh_failure_is_recorded(build_manager):
    manager = build_manager(
        {ProviderID.CODEX: Credentials(access_token="a", refresh_token="rt")},
        clients={ProviderID.CODEX: FakeClient(ProviderID.CODEX, [UnauthorizedError()])},
        refreshers={ProviderID.CODEX: FakeRefresher([RefreshTokenExpiredError()])},
    )
    await manager.refresh(ProviderID.CODEX)
    assert manager.errors[ProviderID.CODEX] == RefreshTokenExpiredError.default_message


@pytest.mark.asyncio
async def test_transport_error_message(build_manager):
    manager = build_manager(
        {ProviderID.KIMI: Credentials(access_token="k")},
        clients={ProviderID.KIMI: FakeClient(ProviderID.KIMI, [httpx.ConnectError("boom")])},
    )
    await manager.refresh(ProviderID.KIMI)
    assert manager.errors[ProviderID.KIMI] == "Network error: boom"


@pytest.mark.asyncio
async def test_refresh_without_credentials_is_idle(build_manager):
    client = FakeClient(ProviderID.KIMI)
    manager = build_manager(clients={ProviderID.KIMI: client})
    assert await manager.refresh(ProviderID.KIMI) is None
    assert client.calls == []
    assert manager.state(ProviderID.KIMI) == ProviderState.IDLE


# =============================================================================
# CREDENTIAL RESOLUTION
# =============================================================================


class TestResolveCredentials:
    def test_stored_record_when_no_draft(self, build_manager):
        stored = Credentials(access_token="a", refresh_token="r")
        manager = build_manager({ProviderID.CODEX: stored})
        assert manager.resolve_credentials(ProviderID.CODEX) == stored

    def test_draft_matching_stored_token_uses_stored_record(self, build_manager):
        stored = Credentials(access_token="a", refresh_token="r", cookie_header="c=1")
        manager = build_manager({ProviderID.CODEX: stored})
        manager.set_draft(ProviderID.CODEX, "Bearer a")
        assert manager.resolve_credentials(ProviderID.CODEX) == stored

    def test_new_draft_wins(self, build_manager):
        manager = build_manager({ProviderID.CODEX: Credentials(access_token="a", refresh_token="r")})
        manager.set_draft(ProviderID.CODEX, "b")
        assert manager.resolve_credentials(ProviderID.CODEX) == Credentials(access_token="b")

    def test_missing(self, build_manager):
        with pytest.raises(MissingTokenError):
            build_manager().resolve_credentials(ProviderID.COPILOT)


# =============================================================================
# GEMINI PROACTIVE REFRESH
# =============================================================================


class TestGeminiProactiveRefresh:
    @pytest.mark.asyncio
    async def test_refreshes_before_fetch_then_throttles(self, build_manager):
        clock = Clock()
        client = FakeClient(ProviderID.GEMINI)
        refresher = FakeRefresher([Credentials(access_token="ya29.new")])
        manager = build_manager(
            {ProviderID.GEMINI: Credentials(access_token="ya29.old", refresh_token="1//r")},
            clients={ProviderID.GEMINI: client},
            refreshers={ProviderID.GEMINI: refresher},
            clock=clock,
        )

        await manager.refresh(ProviderID.GEMINI)
        clock.now += 60
        await manager.refresh(ProviderID.GEMINI)

        assert len(refresher.calls) == 1
        assert [call.access_token for call in client.calls] == ["ya29.new", "ya29.new"]
        assert manager.store.load(ProviderID.GEMINI).refresh_token == "1//r"

    @pytest.mark.asyncio
    async def test_refreshes_again_after_interval(self, build_manager):
        clock = Clock()
        refresher = FakeRefresher(
            [Credentials(access_token="ya29.b"), Credentials(access_token="ya29.c")]
        )
        manager = build_manager(
            {ProviderID.GEMINI: Credentials(access_token="ya29.a", refresh_token="1//r")},
            refreshers={ProviderID.GEMINI: refresher},
            clock=clock,
        )

        await manager.refresh(ProviderID.GEMINI)
        clock.now += GEMINI_PROACTIVE_REFRESH_INTERVAL
        await manager.refresh(ProviderID.GEMINI)

        assert len(refresher.calls) == 2

    @pytest.mark.asyncio
    async def test_soft_failure_uses_current_token(self, build_manager):
        client = FakeClient(ProviderID.GEMINI)
        manager = build_manager(
            {ProviderID.GEMINI: Credentials(access_token="ya29.a", refresh_token="1//r")},
            clients={ProviderID.GEMINI: client},
            refreshers={ProviderID.GEMINI: FakeRefresher([RefreshTokenExpiredError()])},
        )
        await manager.refresh(ProviderID.GEMINI)
        assert client.calls[0].access_token == "ya29.a"
        assert manager.state(ProviderID.GEMINI) == ProviderState.SUCCESS

    @pytest.mark.asyncio
    async def test_revoked_interrupts_fetch(self, build_manager):
        client = FakeClient(ProviderID.GEMINI)
        manager = build_manager(
            {ProviderID.GEMINI: Credentials(access_token="ya29.a", refresh_token="1//r")},
            clients={ProviderID.GEMINI: client},
            refreshers={ProviderID.GEMINI: FakeRefresher([RefreshTokenRevokedError()])},
        )
        await manager.refresh(ProviderID.GEMINI)
        assert client.calls == []
        assert manager.errors[ProviderID.GEMINI] == RefreshTokenRevokedError.default_message

    @pytest.mark.asyncio
    async def test_studio_headers_only_skip_refresh(self, build_manager):
        refresher = FakeRefresher()
        manager = build_manager(
            {
                ProviderID.GEMINI: Credentials(
                    cookie_header="SID=a", aux_authorization_header="SAPISIDHASH x"
                )
            },
            refreshers={ProviderID.GEMINI: refresher},
        )
        await manager.refresh(ProviderID.GEMINI)
        assert refresher.calls == []
        assert manager.state(ProviderID.GEMINI) == ProviderState.SUCCESS


# =============================================================================
# BATCH REFRESH AND AGGREGATE SNAPSHOT
# =============================================================================


@pytest.mark.asyncio
async def test_refresh_all_persists_once(build_manager):
    manager = build_manager(
        {
            ProviderID.CODEX: Credentials(access_token="a"),
            ProviderID.CLAUDE: Credentials(access_token="sk-ant-oat01-x"),
            ProviderID.KIMI: Credentials(access_token="k"),
        },
        clients={ProviderID.CLAUDE: FakeClient(ProviderID.CLAUDE, [InvalidResponseError()])},
    )

    bundle = await manager.refresh_all()

    assert len(manager.sink.saved) == 1
    assert manager.sink.saved[0] is bundle
    assert [s.provider for s in bundle.providers] == [ProviderID.CODEX, ProviderID.KIMI]
    assert manager.state(ProviderID.CLAUDE) == ProviderState.FAILED
    assert set(manager.sink.load_refresh_feed()) == {
        ProviderID.CODEX,
        ProviderID.CLAUDE,
        ProviderID.KIMI,
    }


@pytest.mark.asyncio
async def test_refresh_all_records_unexpected_errors(build_manager):
    manager = build_manager(
        {ProviderID.KIMI: Credentials(access_token="k")},
        clients={ProviderID.KIMI: FakeClient(ProviderID.KIMI, [RuntimeError("kaput")])},
    )
    await manager.refresh_all()
    assert manager.errors[ProviderID.KIMI] == "kaput"
    assert manager.state(ProviderID.KIMI) == ProviderState.FAILED


@pytest.mark.asyncio
async def test_refresh_all_without_tokens_saves_empty_snapshot(build_manager):
    manager = build_manager()
    bundle = await manager.refresh_all()
    assert bundle.providers == []
    assert len(manager.sink.saved) == 1


@pytest.mark.asyncio
async def test_refresh_all_if_needed(build_manager):
    assert await build_manager().refresh_all_if_needed() is None

    manager = build_manager({ProviderID.KIMI: Credentials(access_token="k")})
    bundle = await manager.refresh_all_if_needed()
    assert [s.provider for s in bundle.providers] == [ProviderID.KIMI]


@pytest.mark.asyncio
async def test_snapshot_follows_order_and_visibility(build_manager):
    manager = build_manager(
        {
            ProviderID.CODEX: Credentials(access_token="a"),
            ProviderID.COPILOT: Credentials(access_token="ghu_x"),
            ProviderID.KIMI: Credentials(access_token="k"),
        }
    )
    await manager.refresh_all()
    manager.set_provider_order([ProviderID.KIMI, ProviderID.COPILOT])
    manager.set_provider_visible(ProviderID.COPILOT, False)

    bundle = manager.sink.load()
    assert [s.provider for s in bundle.providers] == [ProviderID.KIMI, ProviderID.CODEX]
    assert manager.order_store.load()[0] == ProviderID.KIMI
    assert manager.visibility_store.load()[ProviderID.COPILOT] is False


@pytest.mark.asyncio
async def test_load_reads_preferences_and_drafts(build_manager):
    manager = build_manager(
        {
            ProviderID.KIMI: Credentials(access_token="k"),
            ProviderID.GEMINI: Credentials(cookie_header="SID=a", aux_api_key="key"),
        }
    )
    manager.order_store.save([ProviderID.KIMI])

    await manager.load()

    assert manager.provider_order[0] == ProviderID.KIMI
    assert manager.drafts[ProviderID.KIMI] == "k"
    assert manager.drafts[ProviderID.GEMINI] == "Cookie: SID=a\nX-Goog-Api-Key: key"
    assert not manager.is_token_modified(ProviderID.KIMI)


def test_display_token_variants():
    assert display_token(ProviderID.CLAUDE, Credentials(cookie_header=" sessionKey=x ")) == "sessionKey=x"
    assert display_token(ProviderID.KIMI, Credentials(cookie_header="a=b")) == ""
    assert display_token(ProviderID.CODEX, Credentials(access_token="t", cookie_header="c")) == "t"


# =============================================================================
# SAVE AND DISCONNECT
# =============================================================================


class TestSaveToken:
    @pytest.mark.asyncio
    async def test_saves_and_refreshes(self, build_manager):
        manager = build_manager()
        manager.set_draft(ProviderID.COPILOT, "  ghp_abc ")

        await manager.save_token(ProviderID.COPILOT)

        assert manager.store.load(ProviderID.COPILOT) == Credentials(access_token="ghp_abc")
        assert manager.saved_tokens[ProviderID.COPILOT] == "ghp_abc"
        assert manager.state(ProviderID.COPILOT) == ProviderState.SUCCESS

    @pytest.mark.asyncio
    async def test_parse_error_is_recorded(self, build_manager):
        manager = build_manager()
        manager.set_draft(ProviderID.CLAUDE, "sk-ant-api03-abc")
        await manager.save_token(ProviderID.CLAUDE)
        assert "not an Anthropic API key" in manager.errors[ProviderID.CLAUDE]
        assert manager.store.load(ProviderID.CLAUDE) is None

    @pytest.mark.asyncio
    async def test_callback_url_is_not_saved(self, build_manager):
        manager = build_manager()
        manager.set_draft(ProviderID.CODEX, "http://localhost:1455/auth/callback?code=a&state=b")
        await manager.save_token(ProviderID.CODEX)
        assert manager.errors[ProviderID.CODEX] == CALLBACK_WITHOUT_SESSION_MESSAGE
        assert manager.store.load(ProviderID.CODEX) is None

    @pytest.mark.asyncio
    async def test_empty_draft_removes_credentials(self, build_manager):
        manager = build_manager({ProviderID.KIMI: Credentials(access_token="k")})
        manager.set_draft(ProviderID.KIMI, "")
        await manager.save_token(ProviderID.KIMI)
        assert manager.store.load(ProviderID.KIMI) is None
        assert manager.sink.saved


@pytest.mark.asyncio
async def test_disconnect(build_manager):
    manager = build_manager({ProviderID.KIMI: Credentials(access_token="k")})
    await manager.load()
    assert ProviderID.KIMI in manager.snapshots

    manager.disconnect(ProviderID.KIMI)

    assert manager.store.load(ProviderID.KIMI) is None
    assert manager.drafts[ProviderID.KIMI] == ""
    assert manager.state(ProviderID.KIMI) == ProviderState.IDLE
    assert manager.sink.load().providers == []
    assert manager.sink.load_refresh_feed() == {}


# =============================================================================
# OAUTH SIGN-IN
# =============================================================================


def callback_url(base, **params):
    return f"{base}?{urlencode(params)}"


class TestSignIn:
    def test_prepare_link_requires_config(self, tmp_path):
        manager = UsageManager(
            store=InMemoryCredentialStore(),
            sink=InMemorySnapshotSink(),
            order_store=ProviderOrderStore(tmp_path / "order.json"),
            visibility_store=VisibilityStore(tmp_path / "visibility.json"),
            config=OAuthClientConfig(),
        )
        assert manager.prepare_login_link(ProviderID.CODEX) is None
        assert "QUOTA_CODEX_CLIENT_ID" in manager.errors[ProviderID.CODEX]
        assert not manager.has_pending_sign_in(ProviderID.CODEX)

    @pytest.mark.asyncio
    @respx.mock
    async def test_codex_sign_in_keeps_cookie(self, build_manager):
        manager = build_manager({ProviderID.CODEX: Credentials(cookie_header="c=1")})
        route = respx.post(CODEX_TOKEN_URL).mock(
            return_value=httpx.Response(200, json={"access_token": "at", "refresh_token": "rt"})
        )

        assert manager.prepare_login_link(ProviderID.CODEX).startswith("https://auth.openai.com/")
        state = manager._sessions[ProviderID.CODEX].state
        manager.set_draft(
            ProviderID.CODEX,
            callback_url("http://localhost:1455/auth/callback", code="the-code", state=state),
        )

        snapshot = await manager.exchange_authorization_code_from_draft(ProviderID.CODEX)

        assert route.called
        assert snapshot is not None
        assert manager.store.load(ProviderID.CODEX) == Credentials(
            access_token="at", refresh_token="rt", cookie_header="c=1"
        )
        assert manager.sign_in_messages[ProviderID.CODEX] == "Signed in."
        assert not manager.has_pending_sign_in(ProviderID.CODEX)

    @pytest.mark.asyncio
    async def test_state_mismatch(self, build_manager):
        manager = build_manager()
        manager.prepare_login_link(ProviderID.CODEX)
        manager.set_draft(
            ProviderID.CODEX,
            callback_url("http://localhost:1455/auth/callback", code="c", state="other"),
        )
        assert await manager.exchange_authorization_code_from_draft(ProviderID.CODEX) is None
        assert "state mismatch" in manager.errors[ProviderID.CODEX]

    @pytest.mark.asyncio
    async def test_exchange_without_session(self, build_manager):
        manager = build_manager()
        manager.set_draft(ProviderID.GEMINI, "code=abc")
        assert await manager.exchange_authorization_code_from_draft(ProviderID.GEMINI) is None
        assert manager.errors[ProviderID.GEMINI] == "Generate login URL first."

    @pytest.mark.asyncio
    async def test_html_paste_is_rejected(self, build_manager):
        manager = build_manager()
        manager.prepare_login_link(ProviderID.GEMINI)
        manager.set_draft(ProviderID.GEMINI, "<!DOCTYPE html><html></html>")
        assert await manager.exchange_authorization_code_from_draft(ProviderID.GEMINI) is None
        assert "You pasted HTML" in manager.errors[ProviderID.GEMINI]

    @pytest.mark.asyncio
    @respx.mock
    async def test_gemini_without_refresh_token_fails(self, build_manager):
        manager = build_manager()
        respx.post(GEMINI_TOKEN_URL).mock(
            return_value=httpx.Response(200, json={"access_token": "ya29"})
        )
        manager.prepare_login_link(ProviderID.GEMINI)
        manager.set_draft(ProviderID.GEMINI, "4/raw-code")

        assert await manager.exchange_authorization_code_from_draft(ProviderID.GEMINI) is None
        assert "no refresh token" in manager.errors[ProviderID.GEMINI]
        assert manager.store.load(ProviderID.GEMINI) is None
        assert manager.has_pending_sign_in(ProviderID.GEMINI)

    @pytest.mark.asyncio
    @respx.mock
    async def test_gemini_keeps_stored_refresh_token_and_studio_headers(self, build_manager):
        existing = Credentials(
            refresh_token="1//old",
            cookie_header="SID=a",
            aux_authorization_header="SAPISIDHASH x",
        )
        refresher = FakeRefresher()
        manager = build_manager(
            {ProviderID.GEMINI: existing}, refreshers={ProviderID.GEMINI: refresher}
        )
        respx.post(GEMINI_TOKEN_URL).mock(
            return_value=httpx.Response(200, json={"access_token": "ya29.fresh"})
        )
        manager.prepare_login_link(ProviderID.GEMINI)
        manager.set_draft(ProviderID.GEMINI, "4/raw-code")

        await manager.exchange_authorization_code_from_draft(ProviderID.GEMINI)

        saved = manager.store.load(ProviderID.GEMINI)
        assert saved.access_token == "ya29.fresh"
        assert saved.refresh_token == "1//old"
        assert saved.aux_authorization_header == "SAPISIDHASH x"
        # Just signed in, so no proactive refresh
        assert refresher.calls == []

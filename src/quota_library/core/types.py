# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Shared type definitions for the quota library.

This module contains the provider registry, the unified credential record
and the normalized usage snapshot shapes used across the providers, auth
and usage packages.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _clean(value: Optional[str]) -> Optional[str]:
    """Trim a string field; blank becomes None."""
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


# =============================================================================
# PROVIDER REGISTRY
# =============================================================================


@dataclass(frozen=True)
class ProviderMetadata:
    """Static display metadata for one provider."""

    display_name: str
    symbol_name: str
    token_help_url: Optional[str]
    usage_dashboard_url: str
    primary_title: str
    secondary_title: str
    tertiary_title: str
    color: str  # "#RRGGBB"


class ProviderID(str, Enum):
    """
    Fixed set of supported providers.

    Declaration order is the default display/refresh order.
    """

    CODEX = "codex"
    CLAUDE = "claude"
    GEMINI = "gemini"
    COPILOT = "copilot"
    KIMI = "kimi"

    @property
    def metadata(self) -> ProviderMetadata:
        return PROVIDER_METADATA[self]

    @property
    def display_name(self) -> str:
        return self.metadata.display_name

    @property
    def supports_oauth_refresh(self) -> bool:
        return self in (ProviderID.CODEX, ProviderID.GEMINI)

    def window_titles(self) -> Tuple[str, str, str]:
        meta = self.metadata
        return meta.primary_title, meta.secondary_title, meta.tertiary_title


PROVIDER_METADATA: Dict[ProviderID, ProviderMetadata] = {
    ProviderID.CODEX: ProviderMetadata(
        display_name="OpenAI Codex",
        symbol_name="sparkles.rectangle.stack",
        token_help_url=None,
        usage_dashboard_url="https://chatgpt.com/codex/settings/usage",
        primary_title="Session",
        secondary_title="Weekly",
        tertiary_title="Code Review",
        color="#61A1AE",
    ),
    ProviderID.CLAUDE: ProviderMetadata(
        display_name="Claude",
        symbol_name="bubble.left.and.bubble.right",
        token_help_url=None,
        usage_dashboard_url="https://claude.ai/settings/usage",
        primary_title="5h",
        secondary_title="7d",
        tertiary_title="Extra",
        color="#C18064",
    ),
    ProviderID.GEMINI: ProviderMetadata(
        display_name="Google Gemini",
        symbol_name="diamond",
        token_help_url="https://aistudio.google.com/app/apikey",
        usage_dashboard_url="https://aistudio.google.com/",
        primary_title="Pro",
        secondary_title="Flash",
        tertiary_title="Extra",
        color="#9F7CE2",
    ),
    ProviderID.COPILOT: ProviderMetadata(
        display_name="GitHub Copilot",
        symbol_name="sailboat",
        token_help_url="https://github.com/settings/copilot",
        usage_dashboard_url="https://github.com/settings/copilot/features",
        primary_title="Premium",
        secondary_title="Chat",
        tertiary_title="Extra",
        color="#9B4BEF",
    ),
    ProviderID.KIMI: ProviderMetadata(
        display_name="Kimi",
        symbol_name="bolt.horizontal",
        token_help_url="https://www.kimi.com/",
        usage_dashboard_url="https://www.kimi.com/code/console",
        primary_title="Session",
        secondary_title="Weekly",
        tertiary_title="Extra",
        color="#FF4F39",
    ),
}


# =============================================================================
# CREDENTIAL TYPES
# =============================================================================


@dataclass(frozen=True)
class Credentials:
    """
    Unified credential record for every provider.

    An all-empty record means "disconnected"; callers delete the stored
    record instead of persisting it.
    """

    access_token: str = ""
    refresh_token: Optional[str] = None
    account_id: Optional[str] = None
    cookie_header: Optional[str] = None
    aux_authorization_header: Optional[str] = None  # Gemini studio SAPISIDHASH
    aux_api_key: Optional[str] = None  # Gemini studio X-Goog-Api-Key

    @property
    def token(self) -> str:
        return self.access_token.strip()

    @property
    def has_studio_headers(self) -> bool:
        return bool(_clean(self.cookie_header) and _clean(self.aux_authorization_header))

    def is_empty(self) -> bool:
        return not any(
            _clean(value)
            for value in (
                self.access_token,
                self.refresh_token,
                self.account_id,
                self.cookie_header,
                self.aux_authorization_header,
                self.aux_api_key,
            )
        )

    def is_usable_for(self, provider: ProviderID) -> bool:
        """Whether this record carries enough auth to call ``provider``."""
        if provider in (ProviderID.CODEX, ProviderID.CLAUDE):
            return bool(self.token or _clean(self.cookie_header))
        if provider == ProviderID.GEMINI:
            return bool(self.token or self.has_studio_headers)
        return bool(self.token)

    def merged_with_refresh(self, refreshed: "Credentials") -> "Credentials":
        """
        Apply a refresh result on top of this record.

        Access token, refresh token and account id come from ``refreshed``
        (each falling back to the current value); cookie and auxiliary
        headers are never erased by a refresh.
        """
        return Credentials(
            access_token=refreshed.access_token,
            refresh_token=refreshed.refresh_token or self.refresh_token,
            account_id=refreshed.account_id or self.account_id,
            cookie_header=refreshed.cookie_header or self.cookie_header,
            aux_authorization_header=(
                refreshed.aux_authorization_header or self.aux_authorization_header
            ),
            aux_api_key=refreshed.aux_api_key or self.aux_api_key,
        )

    def to_refresh_feed(self) -> "RefreshCredentials":
        return RefreshCredentials(
            access_token=self.access_token,
            account_id=self.account_id,
            cookie_header=self.cookie_header,
            aux_authorization_header=self.aux_authorization_header,
            aux_api_key=self.aux_api_key,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "accountID": self.account_id,
            "cookieHeader": self.cookie_header,
            "geminiAuthorizationHeader": self.aux_authorization_header,
            "geminiAPIKey": self.aux_api_key,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credentials":
        return cls(
            access_token=data.get("accessToken") or "",
            refresh_token=data.get("refreshToken"),
            account_id=data.get("accountID"),
            cookie_header=data.get("cookieHeader"),
            aux_authorization_header=data.get("geminiAuthorizationHeader"),
            aux_api_key=data.get("geminiAPIKey"),
        )


@dataclass(frozen=True)
class RefreshCredentials:
    """Reduced credential record for the background refresh path (no refresh token)."""

    access_token: str = ""
    account_id: Optional[str] = None
    cookie_header: Optional[str] = None
    aux_authorization_header: Optional[str] = None
    aux_api_key: Optional[str] = None

    def to_credentials(self) -> Credentials:
        return Credentials(
            access_token=self.access_token,
            account_id=self.account_id,
            cookie_header=self.cookie_header,
            aux_authorization_header=self.aux_authorization_header,
            aux_api_key=self.aux_api_key,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "accountID": self.account_id,
            "cookieHeader": self.cookie_header,
            "geminiAuthorizationHeader": self.aux_authorization_header,
            "geminiAPIKey": self.aux_api_key,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RefreshCredentials":
        return cls(
            access_token=data.get("accessToken") or "",
            account_id=data.get("accountID"),
            cookie_header=data.get("cookieHeader"),
            aux_authorization_header=data.get("geminiAuthorizationHeader"),
            aux_api_key=data.get("geminiAPIKey"),
        )


# =============================================================================
# USAGE SNAPSHOT TYPES
# =============================================================================


@dataclass(frozen=True)
class UsageWindow:
    """One applicable quota window, ready for rendering."""

    label: str
    remaining_percent: float
    reset_at: Optional[datetime]
    runs_out_at: Optional[datetime]


@dataclass(frozen=True)
class ProviderUsageSnapshot:
    """
    Normalized usage for one provider account.

    Created fresh on every successful fetch and never mutated. Explicit
    ``*_remaining_percent`` values override the ``100 - used`` derivation.
    """

    provider: ProviderID
    status_text: str
    updated_at: datetime
    primary_used_percent: Optional[float] = None
    secondary_used_percent: Optional[float] = None
    tertiary_used_percent: Optional[float] = None
    primary_remaining_percent: Optional[float] = None
    secondary_remaining_percent: Optional[float] = None
    tertiary_remaining_percent: Optional[float] = None
    primary_reset_at: Optional[datetime] = None
    secondary_reset_at: Optional[datetime] = None
    tertiary_reset_at: Optional[datetime] = None
    primary_runs_out_at: Optional[datetime] = None
    secondary_runs_out_at: Optional[datetime] = None
    tertiary_runs_out_at: Optional[datetime] = None

    @staticmethod
    def _resolve(explicit: Optional[float], used: Optional[float]) -> Optional[float]:
        if explicit is not None:
            return explicit
        if used is None:
            return None
        return 100 - used

    @property
    def resolved_primary_remaining_percent(self) -> Optional[float]:
        return self._resolve(self.primary_remaining_percent, self.primary_used_percent)

    @property
    def resolved_secondary_remaining_percent(self) -> Optional[float]:
        return self._resolve(
            self.secondary_remaining_percent, self.secondary_used_percent
        )

    @property
    def resolved_tertiary_remaining_percent(self) -> Optional[float]:
        return self._resolve(self.tertiary_remaining_percent, self.tertiary_used_percent)

    def windows(self) -> Iterator[UsageWindow]:
        """Yield only the windows that apply to this provider/account."""
        titles = self.provider.window_titles()
        slots = (
            (self.resolved_primary_remaining_percent, self.primary_reset_at, self.primary_runs_out_at),
            (self.resolved_secondary_remaining_percent, self.secondary_reset_at, self.secondary_runs_out_at),
            (self.resolved_tertiary_remaining_percent, self.tertiary_reset_at, self.tertiary_runs_out_at),
        )
        for title, (remaining, reset_at, runs_out_at) in zip(titles, slots):
            if remaining is None:
                continue
            yield UsageWindow(title, remaining, reset_at, runs_out_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider.value,
            "statusText": self.status_text,
            "updatedAt": _format_datetime(self.updated_at),
            "primaryUsedPercent": self.primary_used_percent,
            "secondaryUsedPercent": self.secondary_used_percent,
            "tertiaryUsedPercent": self.tertiary_used_percent,
            "primaryRemainingPercent": self.primary_remaining_percent,
            "secondaryRemainingPercent": self.secondary_remaining_percent,
            "tertiaryRemainingPercent": self.tertiary_remaining_percent,
            "primaryResetAt": _format_datetime(self.primary_reset_at),
            "secondaryResetAt": _format_datetime(self.secondary_reset_at),
            "tertiaryResetAt": _format_datetime(self.tertiary_reset_at),
            "primaryRunsOutAt": _format_datetime(self.primary_runs_out_at),
            "secondaryRunsOutAt": _format_datetime(self.secondary_runs_out_at),
            "tertiaryRunsOutAt": _format_datetime(self.tertiary_runs_out_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderUsageSnapshot":
        return cls(
            provider=ProviderID(data["provider"]),
            status_text=data.get("statusText", ""),
            updated_at=_parse_datetime(data.get("updatedAt"))
            or datetime.now(timezone.utc),
            primary_used_percent=data.get("primaryUsedPercent"),
            secondary_used_percent=data.get("secondaryUsedPercent"),
            tertiary_used_percent=data.get("tertiaryUsedPercent"),
            primary_remaining_percent=data.get("primaryRemainingPercent"),
            secondary_remaining_percent=data.get("secondaryRemainingPercent"),
            tertiary_remaining_percent=data.get("tertiaryRemainingPercent"),
            primary_reset_at=_parse_datetime(data.get("primaryResetAt")),
            secondary_reset_at=_parse_datetime(data.get("secondaryResetAt")),
            tertiary_reset_at=_parse_datetime(data.get("tertiaryResetAt")),
            primary_runs_out_at=_parse_datetime(data.get("primaryRunsOutAt")),
            secondary_runs_out_at=_parse_datetime(data.get("secondaryRunsOutAt")),
            tertiary_runs_out_at=_parse_datetime(data.get("tertiaryRunsOutAt")),
        )


@dataclass(frozen=True)
class PacingEstimate:
    """Weekly pacing deficit. Derived on demand, never stored."""

    expected_remaining_percent: float
    deficit_percent: float
    runs_out_at: Optional[datetime] = None


@dataclass
class WidgetSnapshot:
    """Serialized bundle handed to the display sink."""

    generated_at: datetime
    providers: List[ProviderUsageSnapshot] = field(default_factory=list)
    is_mock_data: bool = False

    def snapshot_for(self, provider: ProviderID) -> Optional[ProviderUsageSnapshot]:
        for snapshot in self.providers:
            if snapshot.provider == provider:
                return snapshot
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generatedAt": _format_datetime(self.generated_at),
            "isMockData": self.is_mock_data,
            "providers": [snapshot.to_dict() for snapshot in self.providers],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WidgetSnapshot":
        return cls(
            generated_at=_parse_datetime(data.get("generatedAt"))
            or datetime.now(timezone.utc),
            is_mock_data=bool(data.get("isMockData", False)),
            providers=[
                ProviderUsageSnapshot.from_dict(item)
                for item in data.get("providers", [])
            ],
        )


def clamp_percent(
    value: Optional[float], lower: float = 0.0, upper: float = 100.0
) -> Optional[float]:
    """Clamp a provider-reported percentage, passing None through."""
    if value is None:
        return None
    return min(max(float(value), lower), upper)


def remaining_from_used(used: Optional[float]) -> Optional[float]:
    return None if used is None else 100 - used

"""Canonical Pydantic models shared across all pkceauth modules.

The models fall into three groups:

**Configuration** -- serialised as JSON in the user's config directory:
    :class:`ClientConfig`.

**Wire models** -- parsed from provider responses:
    :class:`TokenResponse` and :class:`ProviderMetadata`.

**Session models** -- read back from a :class:`~pkceauth.storage.TokenStore`:
    :class:`TokenSet`, :class:`UserProfile`, and the :class:`AuthState`
    enum describing where an :class:`~pkceauth.flow.AuthFlowController`
    currently is.

Wire models use ``extra="allow"`` so that provider-specific keys are
preserved in ``model_extra``.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_SCOPES = ["openid", "email", "profile"]
DEFAULT_NAMESPACE = "DataStorage"


class AuthState(str, enum.Enum):
    """States of the sign-in state machine."""

    SIGNED_OUT = "signed_out"
    AUTHORIZING = "authorizing"
    EXCHANGING_CODE = "exchanging_code"
    SIGNED_IN = "signed_in"
    REFRESHING = "refreshing"


# --- Configuration ---


class ClientConfig(BaseModel):
    """Settings for one OAuth client registration.

    Endpoints can be given explicitly or discovered from
    ``openid_connect_url`` (see :mod:`pkceauth.discovery`). When
    ``exchange_endpoint`` is set, authorization codes and refresh tokens
    are sent there instead of to ``token_endpoint``; that service holds the
    client secret and performs the exchange server-side.

    Example::

        ClientConfig(
            client_id="1234.apps.googleusercontent.com",
            openid_connect_url="https://accounts.google.com",
            scopes=["openid", "email"],
        )
    """

    name: Optional[str] = Field(
        default=None, description="Profile name when stored with save_client()"
    )
    client_id: str = Field(description="OAuth client identifier")
    authorization_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    userinfo_endpoint: Optional[str] = None
    revocation_endpoint: Optional[str] = None
    openid_connect_url: Optional[str] = Field(
        default=None,
        description="Issuer or discovery document URL used to fill missing endpoints",
    )
    exchange_endpoint: Optional[str] = Field(
        default=None,
        description="Trusted server-side endpoint that performs the code exchange",
    )
    redirect_uri: Optional[str] = Field(
        default=None,
        description="Redirect URI; defaults to whatever the launcher listens on",
    )
    success_url: Optional[str] = Field(
        default=None, description="Page the loopback receiver redirects to on success"
    )
    fail_url: Optional[str] = Field(
        default=None, description="Page the loopback receiver redirects to on failure"
    )
    scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    hosted_domain: Optional[str] = Field(
        default=None, description="Restrict sign-in to this domain (sent as 'hd')"
    )
    offline_access: bool = Field(
        default=False,
        description="Send access_type=offline and include_granted_scopes=true",
    )
    store_namespace: str = Field(
        default=DEFAULT_NAMESPACE, description="Prefix of every persisted key"
    )
    refresh_margin_seconds: int = Field(
        default=60, description="Refresh this many seconds before expiry"
    )
    timeout: float = Field(default=30.0, description="HTTP timeout in seconds")
    callback_timeout: int = Field(
        default=120, description="Seconds a launcher waits for the redirect"
    )


# --- Wire models ---


class TokenResponse(BaseModel):
    """A successful token endpoint response (:rfc:`6749#section-5.1`).

    ``expires_in`` is accepted as an integer or a numeric string.
    """

    model_config = ConfigDict(extra="allow")

    access_token: str
    token_type: Optional[str] = None
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    scope: Optional[str] = None


class ProviderMetadata(BaseModel):
    """The subset of an OpenID Provider configuration document we use."""

    model_config = ConfigDict(extra="allow")

    issuer: Optional[str] = None
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: Optional[str] = None
    revocation_endpoint: Optional[str] = None


# --- Session models ---


class TokenSet(BaseModel):
    """Tokens currently stored for a client.

    A token set with neither ``id_token`` nor ``access_token`` means there is
    no session. An ``access_token`` without ``expires_at`` is treated as
    expired.
    """

    id_token: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    scopes: list[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = None

    @property
    def has_session(self) -> bool:
        return bool(self.id_token or self.access_token)

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token)

    def is_expired(self, margin: float = 0.0, now: Optional[datetime] = None) -> bool:
        """Return True unless the access token is valid for at least ``margin`` seconds."""
        if not self.access_token or self.expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return now + timedelta(seconds=margin) >= expires


class UserProfile(BaseModel):
    """The displayable identity of the signed-in user."""

    id: str
    email: str = ""
    display_name: Optional[str] = None
    photo_url: Optional[str] = None

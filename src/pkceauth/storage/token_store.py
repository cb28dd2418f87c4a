"""Typed token persistence scoped to one OAuth client.

:class:`TokenStore` maps the fields of a session (tokens, granted scopes,
expiry, and the user's profile) to keys of a :class:`~pkceauth.storage.base.Store`.
Every key has the form::

    <namespace>___<client_id>__<field>

so several client registrations (or several accounts) can share one
backend without collisions.

Every setter writes through to the backend immediately; nothing is
buffered in this object.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from pydantic import ValidationError

from pkceauth.exceptions import InvalidInput
from pkceauth.models import DEFAULT_NAMESPACE, TokenResponse, TokenSet, UserProfile
from pkceauth.storage.base import Store

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600
"""Lifetime assumed when a token response omits ``expires_in``."""


class TokenStore:
    """Read and write one client's session fields in a :class:`Store`.

    Args:
        store: The key/value backend.
        client_id: OAuth client identifier used in every key.
        namespace: Key prefix, ``"DataStorage"`` by default.
    """

    ID_TOKEN = "idToken"
    ACCESS_TOKEN = "accessToken"
    REFRESH_TOKEN = "refreshToken"
    SCOPE = "scope"
    EXPIRES_AT = "expiresAt"
    ID = "id"
    NAME = "name"
    EMAIL = "email"
    PICTURE = "picture"

    SESSION_FIELDS = (
        ID_TOKEN,
        ACCESS_TOKEN,
        REFRESH_TOKEN,
        SCOPE,
        EXPIRES_AT,
        NAME,
        EMAIL,
        PICTURE,
    )
    """Fields removed by :meth:`clear`. ``id`` is deliberately absent."""

    def __init__(
        self,
        store: Store,
        client_id: str,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        self._store = store
        self._client_id = client_id
        self._namespace = namespace

    @property
    def backend(self) -> Store:
        return self._store

    @property
    def client_id(self) -> str:
        return self._client_id

    def key_for(self, field: str) -> str:
        """Return the backend key for ``field``."""
        return f"{self._namespace}___{self._client_id}__{field}"

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------

    @property
    def id(self) -> Optional[str]:
        """Id (``sub``) of the user.

        Survives :meth:`clear`, so after a sign-out this is the id of the
        last user, usable as a login hint on the next authorization.
        """
        return self._get(self.ID)

    @property
    def id_token(self) -> Optional[str]:
        """The signed JWT carrying the user's identity."""
        return self._get(self.ID_TOKEN)

    @id_token.setter
    def id_token(self, value: Optional[str]) -> None:
        self._set(self.ID_TOKEN, value)

    @property
    def access_token(self) -> Optional[str]:
        """The bearer token sent to resource servers."""
        return self._get(self.ACCESS_TOKEN)

    @access_token.setter
    def access_token(self, value: Optional[str]) -> None:
        self._set(self.ACCESS_TOKEN, value)

    @property
    def refresh_token(self) -> Optional[str]:
        """The token used to obtain new access tokens without user interaction."""
        return self._get(self.REFRESH_TOKEN)

    @refresh_token.setter
    def refresh_token(self, value: Optional[str]) -> None:
        self._set(self.REFRESH_TOKEN, value)

    @property
    def scopes(self) -> list[str]:
        """Scopes granted by the last authorization; empty if none took place."""
        value = self._get(self.SCOPE)
        if not value:
            return []
        return [s for s in value.split(" ") if s]

    @scopes.setter
    def scopes(self, value: Optional[list[str]]) -> None:
        self._set(self.SCOPE, " ".join(value) if value else None)

    @property
    def expires_at(self) -> Optional[datetime]:
        """When the access token expires (timezone-aware, UTC)."""
        value = self._get(self.EXPIRES_AT)
        if not value:
            return None
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            logger.warning("Stored expiry %r for client %s is not ISO-8601", value, self._client_id)
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    @expires_at.setter
    def expires_at(self, value: Optional[datetime]) -> None:
        self._set(self.EXPIRES_AT, value.isoformat() if value is not None else None)

    @property
    def token_set(self) -> Optional[TokenSet]:
        """The stored tokens, or ``None`` when there is no session."""
        tokens = TokenSet(
            id_token=self.id_token,
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            scopes=self.scopes,
            expires_at=self.expires_at,
        )
        return tokens if tokens.has_session else None

    @property
    def user_profile(self) -> Optional[UserProfile]:
        """The signed-in user's profile, or ``None`` when signed out."""
        if self.id_token is None and self.access_token is None:
            return None
        user_id = self.id
        if user_id is None:
            return None
        return UserProfile(
            id=user_id,
            email=self._get(self.EMAIL) or "",
            display_name=self._get(self.NAME),
            photo_url=self._get(self.PICTURE),
        )

    # ------------------------------------------------------------------
    # Bulk updates
    # ------------------------------------------------------------------

    def save_result(
        self,
        result: Union[TokenResponse, Mapping[str, Any]],
        requested_scopes: Optional[list[str]] = None,
    ) -> TokenResponse:
        """Persist a token endpoint response.

        The refresh token is only overwritten when the response carries
        one; refresh grant responses usually omit it. When the response
        has no ``scope`` the granted scopes equal the requested ones
        (:rfc:`6749#section-5.1`), so ``requested_scopes`` is stored if
        given and the previous value is kept otherwise.

        Args:
            result: A :class:`TokenResponse` or the raw JSON mapping.
            requested_scopes: Scopes asked for in the request.

        Returns:
            The validated :class:`TokenResponse`.

        Raises:
            InvalidInput: If ``result`` is not a valid token response.
        """
        response = _coerce_token_response(result)

        if response.refresh_token:
            self.refresh_token = response.refresh_token
        self.id_token = response.id_token
        self.access_token = response.access_token
        if response.scope is not None:
            self.scopes = [s for s in response.scope.split(" ") if s]
        elif requested_scopes is not None:
            self.scopes = requested_scopes
        expires_in = response.expires_in if response.expires_in is not None else DEFAULT_EXPIRES_IN
        self.expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        logger.debug(
            "Saved tokens for client %s (expires in %ss, refresh token %s)",
            self._client_id,
            expires_in,
            "present" if self.refresh_token else "absent",
        )
        return response

    def save_user_profile(self, userinfo: Mapping[str, Any]) -> None:
        """Persist OIDC userinfo (or ID token) claims.

        Maps ``sub``, ``name``, ``email`` and ``picture`` onto the stored
        profile fields.
        """
        self._set(self.ID, _str_or_none(userinfo.get("sub")))
        self._set(self.NAME, _str_or_none(userinfo.get("name")))
        self._set(self.EMAIL, _str_or_none(userinfo.get("email")))
        self._set(self.PICTURE, _str_or_none(userinfo.get("picture")))

    def clear(self) -> None:
        """Remove this client's session but keep the user id as a login hint."""
        for field in self.SESSION_FIELDS:
            self._set(field, None)

    def purge(self) -> None:
        """Remove every field of this client, including the user id."""
        self.clear()
        self._set(self.ID, None)

    def clear_all(self) -> None:
        """Wipe the whole backend.

        More destructive than :meth:`clear` and :meth:`purge`: keys of other
        clients and anything else stored in the same backend are removed too.
        """
        self._store.clear_all()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get(self, field: str) -> Optional[str]:
        return self._store.get(self.key_for(field))

    def _set(self, field: str, value: Optional[str]) -> None:
        if value is None:
            self._store.remove(self.key_for(field))
        else:
            self._store.set(self.key_for(field), value)


def _coerce_token_response(result: Union[TokenResponse, Mapping[str, Any]]) -> TokenResponse:
    if isinstance(result, TokenResponse):
        return result
    try:
        return TokenResponse.model_validate(dict(result))
    except ValidationError as exc:
        raise InvalidInput(f"Malformed token response: {exc}") from exc


def _str_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)

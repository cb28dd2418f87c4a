"""The sign-in state machine.

:class:`AuthFlowController` drives the OAuth 2.0 Authorization Code grant
with PKCE for one client registration::

    SIGNED_OUT -> AUTHORIZING -> EXCHANGING_CODE -> SIGNED_IN
    SIGNED_IN  -> REFRESHING  -> SIGNED_IN | SIGNED_OUT
    SIGNED_IN  -> SIGNED_OUT  (sign_out / disconnect)

It owns no global state: construct one per client (or per account),
use it, and :meth:`~AuthFlowController.close` it. Persisted state lives in
the :class:`~pkceauth.storage.TokenStore`; the controller itself only
holds the PKCE pair of an authorization that is in flight.

Only one interactive authorization may run at a time per controller. A
second :meth:`~AuthFlowController.sign_in` or
:meth:`~AuthFlowController.request_scopes` while one is pending raises
:class:`~pkceauth.exceptions.FlowInProgress` instead of waiting, since two
interleaved attempts would mix up code verifiers.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator, Iterable
from typing import Any, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from pkceauth.crypto import CODE_CHALLENGE_METHOD, PKCEPair, generate_pkce_pair, generate_secure_random_string
from pkceauth.discovery import DiscoveryCache, resolve_endpoints
from pkceauth.exceptions import (
    FlowInProgress,
    InvalidGrant,
    NotSignedIn,
    ProviderError,
    ScopeDenied,
    UserCancelled,
)
from pkceauth.jwt import decode_claims
from pkceauth.launchers import Launcher, LoopbackServerLauncher
from pkceauth.models import AuthState, ClientConfig, TokenResponse, TokenSet, UserProfile
from pkceauth.notify import UserChange, UserChangeNotifier, UserListener
from pkceauth.storage import JsonFileStore, Store, TokenStore
from pkceauth.transport import TokenEndpointClient

logger = logging.getLogger(__name__)

STATE_LENGTH = 32
_SCOPE_DENIED_ERRORS = ("access_denied", "invalid_scope")


class AuthFlowController:
    """Sign a user in, keep the session fresh, and sign them out.

    Args:
        config: The client registration. Missing endpoints are discovered
            from ``config.openid_connect_url`` on first use.
        launcher: How the consent page is shown. Defaults to a
            :class:`~pkceauth.launchers.LoopbackServerLauncher` using the
            config's ``success_url`` / ``fail_url``.
        storage: Key/value backend for tokens. Defaults to the process-wide
            :class:`~pkceauth.storage.JsonFileStore` in the data directory,
            shared by every controller created without one.
        http_client: :class:`httpx.Client` for provider requests. Created
            (and closed by :meth:`close`) when omitted.
        discovery_cache: Cache for OpenID discovery documents.

    Example::

        with AuthFlowController(config, storage=MemoryStore()) as auth:
            user = auth.sign_in_silently() or auth.sign_in()
            print(user.email if user else "signed in")
    """

    def __init__(
        self,
        config: ClientConfig,
        launcher: Optional[Launcher] = None,
        storage: Optional[Store] = None,
        http_client: Optional[httpx.Client] = None,
        discovery_cache: Optional[DiscoveryCache] = None,
    ) -> None:
        self._config = config
        self._launcher = launcher or LoopbackServerLauncher(
            success_url=config.success_url,
            fail_url=config.fail_url,
            timeout=config.callback_timeout,
        )
        if storage is None:
            from pkceauth.config import default_store_path

            storage = JsonFileStore.shared(default_store_path())
        self._tokens = TokenStore(storage, config.client_id, config.store_namespace)

        self._owns_http = http_client is None
        self._http = http_client or httpx.Client(timeout=config.timeout)
        self._discovery_cache = discovery_cache
        self._resolved: Optional[ClientConfig] = None
        self._transport: Optional[TokenEndpointClient] = None

        self._state = AuthState.SIGNED_OUT
        self._signed_in = False
        self._current_user: Optional[UserProfile] = None
        self._pending: Optional[PKCEPair] = None

        self._state_lock = threading.RLock()
        self._flow_lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._notifier = UserChangeNotifier()
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def __enter__(self) -> AuthFlowController:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Stop notification delivery and release owned HTTP resources."""
        if self._closed:
            return
        self._closed = True
        self._notifier.close()
        if self._owns_http:
            self._http.close()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def state(self) -> AuthState:
        with self._state_lock:
            return self._state

    @property
    def is_signed_in(self) -> bool:
        return self.state == AuthState.SIGNED_IN

    @property
    def current_user(self) -> Optional[UserProfile]:
        """The signed-in user, or ``None`` when signed out or unknown."""
        with self._state_lock:
            return self._current_user

    @property
    def token_store(self) -> TokenStore:
        return self._tokens

    @property
    def scopes(self) -> list[str]:
        """Scopes granted to the stored session."""
        return self._tokens.scopes

    @property
    def can_refresh(self) -> bool:
        return self._tokens.refresh_token is not None

    def subscribe(self, listener: UserListener) -> Any:
        """Call ``listener(change)`` with a :class:`~pkceauth.notify.UserChange`
        whenever the user signs in or out.

        Listeners run on a background thread in event order. Returns a
        function that removes the listener.
        """
        return self._notifier.subscribe(listener)

    # ------------------------------------------------------------------
    # Interactive sign-in
    # ------------------------------------------------------------------

    def sign_in(
        self,
        login_hint: Optional[str] = None,
        scopes: Optional[Iterable[str]] = None,
    ) -> Optional[UserProfile]:
        """Run the interactive authorization and store the resulting session.

        Args:
            login_hint: Account to pre-select. Defaults to the id of the
                last signed-in user.
            scopes: Scopes to request instead of ``config.scopes``.

        Returns:
            The signed-in user's profile, or ``None`` if the provider
            exposes no identity for the granted scopes.

        Raises:
            UserCancelled: The user closed the page or denied consent.
            FlowInProgress: Another interactive flow is still pending.
            NetworkFailure: A provider endpoint was unreachable.
            ProviderError: The provider returned an error.
        """
        requested = _unique(scopes if scopes is not None else self._config.scopes)
        hint = login_hint or self._tokens.id

        if not self._flow_lock.acquire(blocking=False):
            raise FlowInProgress("A sign-in is already in progress for this client")
        try:
            previous = self.state
            try:
                response = self._authorize(requested, hint)
                claims = self._identity_claims(response)
            except BaseException:
                self._restore_state(previous)
                raise
            self._tokens.save_result(response, requested_scopes=requested)
            if claims is not None:
                self._tokens.save_user_profile(claims)
            user = self._tokens.user_profile
            self._enter_signed_in(user)
            logger.info("Signed in client %s", self._config.client_id)
            return user
        finally:
            self._flow_lock.release()

    def request_scopes(self, additional: Iterable[str]) -> bool:
        """Ask the signed-in user to grant ``additional`` scopes.

        Runs a new authorization for the union of the granted and the
        additional scopes. If it is cancelled or denied, the existing
        session is left exactly as it was.

        Returns:
            ``True`` if every additional scope is now granted, ``False`` if
            the provider granted only part of them.

        Raises:
            NotSignedIn: There is no session to extend.
            ScopeDenied: The user cancelled or the provider refused.
            FlowInProgress: Another interactive flow is still pending.
        """
        if not self.is_signed_in:
            raise NotSignedIn("Sign in before requesting additional scopes")

        extra = _unique(additional)
        granted = self._tokens.scopes
        if all(scope in granted for scope in extra):
            return True
        wanted = granted + [scope for scope in extra if scope not in granted]

        if not self._flow_lock.acquire(blocking=False):
            raise FlowInProgress("A sign-in is already in progress for this client")
        try:
            try:
                response = self._authorize(wanted, self._tokens.id)
                claims = self._identity_claims(response)
            except UserCancelled as exc:
                self._restore_state(AuthState.SIGNED_IN)
                raise ScopeDenied(f"Request for scopes {extra} was not granted") from exc
            except ProviderError as exc:
                self._restore_state(AuthState.SIGNED_IN)
                if exc.error in _SCOPE_DENIED_ERRORS:
                    raise ScopeDenied(f"Request for scopes {extra} was refused: {exc}") from exc
                raise
            except BaseException:
                self._restore_state(AuthState.SIGNED_IN)
                raise

            self._tokens.save_result(response, requested_scopes=wanted)
            if claims is not None:
                self._tokens.save_user_profile(claims)
            self._enter_signed_in(self._tokens.user_profile)
        finally:
            self._flow_lock.release()

        now_granted = self._tokens.scopes
        return all(scope in now_granted for scope in extra)

    def authorization_url(
        self,
        redirect_uri: str,
        pkce: PKCEPair,
        state: str,
        scopes: Iterable[str],
        login_hint: Optional[str] = None,
    ) -> str:
        """Build the authorization request URL.

        Raises:
            ConfigError: If no authorization endpoint is configured or
                discoverable.
        """
        endpoints = self._endpoints()
        params: dict[str, str] = {
            "client_id": endpoints.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "code_challenge": pkce.challenge,
            "code_challenge_method": CODE_CHALLENGE_METHOD,
            "state": state,
        }
        if login_hint:
            params["login_hint"] = login_hint
        if endpoints.hosted_domain:
            params["hd"] = endpoints.hosted_domain
        if endpoints.offline_access:
            params["access_type"] = "offline"
            params["include_granted_scopes"] = "true"

        base = endpoints.authorization_endpoint or ""
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}{urlencode(params)}"

    # ------------------------------------------------------------------
    # Silent sign-in / refresh
    # ------------------------------------------------------------------

    def sign_in_silently(self) -> Optional[UserProfile]:
        """Restore a stored session without showing any UI.

        A valid access token moves straight to ``SIGNED_IN``. An expired
        one with a refresh token is refreshed first. When nothing usable is
        stored (or the refresh token was revoked) the controller stays
        ``SIGNED_OUT`` and ``None`` is returned.

        Raises:
            NetworkFailure: The refresh could not reach the provider.
            ProviderError: The provider rejected the refresh for a reason
                other than an invalid grant.
        """
        tokens = self._tokens.token_set
        if tokens is None:
            logger.debug("No stored session for client %s", self._config.client_id)
            return None

        if not tokens.is_expired(self._config.refresh_margin_seconds):
            user = self._tokens.user_profile
            self._enter_signed_in(user)
            return user

        if not tokens.can_refresh:
            logger.debug("Stored access token expired and no refresh token is available")
            return None

        try:
            self._refresh_serialized(force=True)
        except InvalidGrant:
            logger.info("Stored refresh token was rejected; staying signed out")
            return None
        return self.current_user

    def refresh(self) -> TokenSet:
        """Exchange the stored refresh token for a new access token.

        Raises:
            NotSignedIn: No refresh token is stored.
            InvalidGrant: The refresh token was revoked; the session has
                been cleared and the user must sign in again.
            NetworkFailure: The token endpoint was unreachable.
        """
        return self._refresh_serialized(force=True)

    def get_access_token(self) -> str:
        """Return a valid access token, refreshing it first if it expired.

        Raises:
            NotSignedIn: No usable session is stored.
            InvalidGrant: The refresh token was revoked.
        """
        tokens = self._tokens.token_set
        if tokens is None or not tokens.access_token:
            raise NotSignedIn("No access token stored; sign in first")
        if not tokens.is_expired(self._config.refresh_margin_seconds):
            return tokens.access_token
        refreshed = self._refresh_serialized(force=False)
        assert refreshed.access_token is not None
        return refreshed.access_token

    def authenticated_client(self, **kwargs: Any) -> httpx.Client:
        """Return an :class:`httpx.Client` that sends the current access token.

        The token is refreshed before a request when it has expired, and
        once more if the resource server answers 401.

        Args:
            **kwargs: Passed through to :class:`httpx.Client`.
        """
        return httpx.Client(auth=BearerAuth(self), **kwargs)

    # ------------------------------------------------------------------
    # Sign-out
    # ------------------------------------------------------------------

    def sign_out(self) -> None:
        """Forget the session, keeping the user id as the next login hint."""
        self._tokens.clear()
        self._enter_signed_out()
        logger.info("Signed out client %s", self._config.client_id)

    def disconnect(self) -> None:
        """Revoke the grant at the provider and forget everything about the user.

        Local state is removed even when the revocation request fails; the
        failure is then re-raised.
        """
        token = self._tokens.refresh_token or self._tokens.access_token
        try:
            if token:
                endpoints = self._endpoints()
                if endpoints.revocation_endpoint:
                    self._token_client().revoke(token)
                else:
                    logger.debug("No revocation endpoint; only clearing local state")
        finally:
            self._tokens.purge()
            self._enter_signed_out()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _endpoints(self) -> ClientConfig:
        if self._resolved is None:
            self._resolved = resolve_endpoints(self._config, self._http, self._discovery_cache)
        return self._resolved

    def _token_client(self) -> TokenEndpointClient:
        if self._transport is None:
            self._transport = TokenEndpointClient(self._endpoints(), self._http)
        return self._transport

    def _authorize(self, scopes: list[str], login_hint: Optional[str]) -> TokenResponse:
        """AUTHORIZING then EXCHANGING_CODE. Leaves the state at EXCHANGING_CODE."""
        endpoints = self._endpoints()
        redirect_uri = self._launcher.redirect_uri_for(endpoints.redirect_uri)
        pkce = generate_pkce_pair()
        state = generate_secure_random_string(STATE_LENGTH)
        url = self.authorization_url(redirect_uri, pkce, state, scopes, login_hint)

        self._set_state(AuthState.AUTHORIZING)
        self._pending = pkce
        try:
            logger.debug("Presenting authorization page for scopes %s", scopes)
            redirect = self._launcher.launch(url, redirect_uri, endpoints.callback_timeout)
            code = _code_from_redirect(redirect, state)
            self._set_state(AuthState.EXCHANGING_CODE)
            return self._token_client().exchange_code(code, pkce.verifier, redirect_uri)
        finally:
            self._pending = None

    def _identity_claims(self, response: TokenResponse) -> Optional[dict[str, Any]]:
        """Userinfo when the provider has an endpoint, else the ID token claims."""
        if self._endpoints().userinfo_endpoint:
            return self._token_client().fetch_userinfo(response.access_token)
        if response.id_token:
            return decode_claims(response.id_token)
        return None

    def _refresh_serialized(self, force: bool) -> TokenSet:
        with self._refresh_lock:
            tokens = self._tokens.token_set
            if (
                not force
                and tokens is not None
                and tokens.access_token
                and not tokens.is_expired(self._config.refresh_margin_seconds)
            ):
                # Another caller refreshed while we waited for the lock.
                return tokens
            refresh_token = self._tokens.refresh_token
            if not refresh_token:
                raise NotSignedIn("Access token expired and no refresh token is stored")
            return self._do_refresh(refresh_token)

    def _do_refresh(self, refresh_token: str) -> TokenSet:
        previous = self.state
        self._set_state(AuthState.REFRESHING)
        try:
            response = self._token_client().refresh(refresh_token)
        except InvalidGrant:
            self._tokens.clear()
            self._enter_signed_out()
            raise
        except BaseException:
            self._restore_state(previous)
            raise
        self._tokens.save_result(response)
        self._enter_signed_in(self._tokens.user_profile)
        tokens = self._tokens.token_set
        assert tokens is not None
        return tokens

    def _set_state(self, state: AuthState) -> None:
        with self._state_lock:
            if self._state != state:
                logger.debug("Client %s: %s -> %s", self._config.client_id, self._state.value, state.value)
            self._state = state

    def _restore_state(self, previous: AuthState) -> None:
        """Return to a stable state after a failed or cancelled attempt."""
        if previous == AuthState.SIGNED_IN and self._signed_in:
            self._set_state(AuthState.SIGNED_IN)
        else:
            self._set_state(AuthState.SIGNED_OUT)

    def _enter_signed_in(self, user: Optional[UserProfile]) -> None:
        with self._state_lock:
            previous_user = self._current_user
            changed = not self._signed_in or (
                previous_user is not None and user is not None and previous_user.id != user.id
            )
            self._signed_in = True
            self._current_user = user
            self._set_state(AuthState.SIGNED_IN)
            if changed:
                self._notifier.publish(UserChange(signed_in=True, user=user))

    def _enter_signed_out(self) -> None:
        with self._state_lock:
            changed = self._signed_in
            self._signed_in = False
            self._current_user = None
            self._set_state(AuthState.SIGNED_OUT)
            if changed:
                self._notifier.publish(UserChange(signed_in=False))


class BearerAuth(httpx.Auth):
    """``httpx`` auth hook backed by an :class:`AuthFlowController`."""

    def __init__(self, controller: AuthFlowController) -> None:
        self._controller = controller

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self._controller.get_access_token()}"
        response = yield request
        if response.status_code == 401 and self._controller.can_refresh:
            tokens = self._controller.refresh()
            request.headers["Authorization"] = f"Bearer {tokens.access_token}"
            yield request


def _code_from_redirect(redirect: str, expected_state: str) -> str:
    """Extract the authorization code from the redirect URI.

    Raises:
        UserCancelled: The provider reported ``access_denied``.
        ProviderError: Any other error, a state mismatch, or no code.
    """
    params = parse_qs(urlparse(redirect).query)
    error = params.get("error", [None])[0]
    if error:
        description = params.get("error_description", [None])[0]
        if error == "access_denied":
            raise UserCancelled(f"Authorization was denied: {description or error}")
        message = f"Authorization failed: {error}"
        if description:
            message += f" - {description}"
        raise ProviderError(message, error=error, error_description=description)

    if params.get("state", [None])[0] != expected_state:
        raise ProviderError("Authorization response state does not match the request", error="invalid_state")

    code = params.get("code", [None])[0]
    if not code:
        raise ProviderError("No authorization code in the redirect", error="invalid_request")
    return code


def _unique(scopes: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for scope in scopes:
        if scope and scope not in seen:
            seen.append(scope)
    return seen

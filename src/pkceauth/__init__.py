"""pkceauth -- OAuth 2.0 Authorization Code + PKCE client with persistent sessions.

This package signs a user in against an OAuth 2.0 / OpenID Connect
provider using the Authorization Code grant with PKCE (:rfc:`7636`),
persists the resulting tokens in a pluggable key/value store, and keeps
the session alive across process restarts by silently refreshing expired
access tokens.

Typical usage::

    from pkceauth import AuthFlowController, ClientConfig, LoopbackServerLauncher

    config = ClientConfig(client_id="...", openid_connect_url="https://accounts.google.com")
    with AuthFlowController(config, launcher=LoopbackServerLauncher()) as auth:
        user = auth.sign_in_silently() or auth.sign_in()
        with auth.authenticated_client() as http:
            http.get("https://www.googleapis.com/oauth2/v3/userinfo")

Modules:
    crypto: PKCE code verifier / challenge generation.
    storage: Key/value backends and the typed :class:`TokenStore`.
    launchers: Browser / redirect launchers that present the consent page.
    transport: Token, userinfo and revocation endpoint client.
    flow: :class:`AuthFlowController`, the sign-in state machine.
    config: XDG-aware client profile management.
    app: Typer command-line entry point.
"""

from pkceauth.exceptions import (
    AuthFlowError,
    InvalidGrant,
    NetworkFailure,
    PkceAuthError,
    ProviderError,
    ScopeDenied,
    UserCancelled,
)
from pkceauth.flow import AuthFlowController
from pkceauth.launchers import (
    InAppBrowserLauncher,
    Launcher,
    LoopbackServerLauncher,
    WebRedirectLauncher,
)
from pkceauth.models import AuthState, ClientConfig, TokenSet, UserProfile
from pkceauth.notify import UserChange
from pkceauth.storage import JsonFileStore, MemoryStore, Store, TokenStore

__version__ = "0.3.0"

__all__ = [
    "AuthFlowController",
    "AuthFlowError",
    "AuthState",
    "ClientConfig",
    "InAppBrowserLauncher",
    "InvalidGrant",
    "JsonFileStore",
    "Launcher",
    "LoopbackServerLauncher",
    "MemoryStore",
    "NetworkFailure",
    "PkceAuthError",
    "ProviderError",
    "ScopeDenied",
    "Store",
    "TokenSet",
    "TokenStore",
    "UserCancelled",
    "UserChange",
    "UserProfile",
    "WebRedirectLauncher",
]

"""Session commands -- sign in, inspect and end the session of a client.

These commands are registered directly on the root app. Each one
resolves the active client (see :func:`pkceauth.config.resolve_client`),
opens an :class:`~pkceauth.flow.AuthFlowController` over the shared token
file, and closes it again before exiting.

Typical workflow::

    pkceauth login --hint me@example.com
    curl -H "Authorization: Bearer $(pkceauth token)" https://api.example.com/me
    pkceauth logout
"""

from __future__ import annotations

import webbrowser
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

import httpx
import typer

from pkceauth.commands import cli_errors
from pkceauth.exit_codes import EXIT_AUTH_FAILURE
from pkceauth.flow import AuthFlowController
from pkceauth.launchers import Launcher, LoopbackServerLauncher
from pkceauth.models import ClientConfig
from pkceauth.output import info, print_data, print_record, success, suggest


def _open_browser(url: str) -> None:
    info("Opening the browser to sign in. If nothing happens, open this URL:")
    info(url)
    webbrowser.open(url)


def _make_launcher(config: ClientConfig, port: Optional[int]) -> Launcher:
    return LoopbackServerLauncher(
        port=port or 0,
        success_url=config.success_url,
        fail_url=config.fail_url,
        open_browser=_open_browser,
        timeout=float(config.callback_timeout),
    )


def _make_http_client(config: ClientConfig) -> httpx.Client:
    return httpx.Client(timeout=config.timeout)


@contextmanager
def _session(ctx: typer.Context, port: Optional[int] = None) -> Iterator[AuthFlowController]:
    """Open a controller for the active client over the shared token file."""
    from pkceauth.config import default_store_path, resolve_client
    from pkceauth.storage import JsonFileStore

    client_name = ctx.obj.get("client") if ctx.obj else None
    config = resolve_client(client_name)
    http_client = _make_http_client(config)
    controller = AuthFlowController(
        config,
        launcher=_make_launcher(config, port),
        storage=JsonFileStore.shared(default_store_path()),
        http_client=http_client,
    )
    try:
        yield controller
    finally:
        controller.close()
        http_client.close()


def _label(controller: AuthFlowController) -> str:
    return controller.config.name or controller.config.client_id


def login_command(
    ctx: typer.Context,
    hint: Optional[str] = typer.Option(
        None, "--hint", help="Account to pre-select (defaults to the last user)."
    ),
    scopes: Optional[list[str]] = typer.Option(
        None, "--scope", "-s", help="Scope to request instead of the client's (repeatable)."
    ),
    port: Optional[int] = typer.Option(
        None, "--port", help="Fixed port for the loopback redirect listener."
    ),
) -> None:
    """Sign in through the system browser.

    Opens the provider's consent page and waits for the redirect on a
    loopback port. Exits with code 130 if the page is closed or consent is
    denied.

    Example::

        pkceauth login
        pkceauth --client work login --hint me@example.com --scope openid --scope email
    """
    with cli_errors(), _session(ctx, port) as auth:
        user = auth.sign_in(login_hint=hint, scopes=scopes or None)
        label = _label(auth)

    who = (user.email or user.id) if user else "your account"
    success(f"Signed in to {label} as {who}.")


def status_command(ctx: typer.Context) -> None:
    """Show whether a usable session is stored.

    Restores the session silently (refreshing it if needed) and prints the
    state, user, scopes and expiry. Exits with code 3 when signed out, so
    scripts can run ``pkceauth status || pkceauth login``.
    """
    with cli_errors(), _session(ctx) as auth:
        user = auth.sign_in_silently()
        tokens = auth.token_store.token_set
        record = {
            "client": _label(auth),
            "state": auth.state.value,
            "user": (user.email or user.id) if user else None,
            "name": user.display_name if user else None,
            "scopes": auth.scopes,
            "expires_at": tokens.expires_at.isoformat() if tokens and tokens.expires_at else None,
            "refreshable": auth.can_refresh,
        }
        signed_in = auth.is_signed_in

    print_record(record)
    if not signed_in:
        suggest("Sign in: pkceauth login")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)


def token_command(ctx: typer.Context) -> None:
    """Print a valid access token, refreshing it first if it expired.

    Example::

        export TOKEN=$(pkceauth token)
    """
    with cli_errors(), _session(ctx) as auth:
        token = auth.get_access_token()
    print_data(token)


def refresh_command(ctx: typer.Context) -> None:
    """Exchange the stored refresh token for a new access token now."""
    with cli_errors(), _session(ctx) as auth:
        tokens = auth.refresh()
    expires = tokens.expires_at.isoformat() if tokens.expires_at else "unknown"
    success(f"Access token refreshed; expires at {expires}.")


def logout_command(ctx: typer.Context) -> None:
    """Forget the stored tokens. The account is remembered as the next login hint."""
    with cli_errors(), _session(ctx) as auth:
        auth.sign_out()
        label = _label(auth)
    success(f"Signed out of {label}.")


def disconnect_command(ctx: typer.Context) -> None:
    """Revoke the grant at the provider and forget the account entirely."""
    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force and not typer.confirm("Revoke access and forget this account?"):
        info("Cancelled.")
        raise typer.Exit()

    with cli_errors(), _session(ctx) as auth:
        auth.disconnect()
        label = _label(auth)
    success(f"Disconnected from {label}.")

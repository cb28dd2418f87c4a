"""Client commands -- manage stored OAuth client registrations.

Provides the ``pkceauth client`` sub-command group. Each client is a
:class:`~pkceauth.models.ClientConfig` stored as JSON in the clients
directory; the session commands pick one with ``--client``, the
``PKCEAUTH_CLIENT`` variable, ``./pkceauth.json``, or automatically when
only one exists.

Typical workflow::

    pkceauth client add google --client-id 1234.apps.googleusercontent.com \\
        --issuer https://accounts.google.com --offline
    pkceauth client list
    pkceauth --client google login
"""

from __future__ import annotations

from typing import Optional

import typer

from pkceauth.commands import cli_errors
from pkceauth.output import error, info, print_record, print_table, success, suggest


client_app = typer.Typer(no_args_is_help=True)


@client_app.command("add")
def client_add(
    ctx: typer.Context,
    name: str = typer.Argument(help="Name to store the client under."),
    client_id: str = typer.Option(..., "--client-id", help="OAuth client identifier."),
    issuer: Optional[str] = typer.Option(
        None, "--issuer", help="Issuer or discovery URL used to find the endpoints."
    ),
    authorization_endpoint: Optional[str] = typer.Option(
        None, "--authorization-endpoint", help="Authorization endpoint URL."
    ),
    token_endpoint: Optional[str] = typer.Option(
        None, "--token-endpoint", help="Token endpoint URL."
    ),
    exchange_endpoint: Optional[str] = typer.Option(
        None, "--exchange-endpoint", help="Trusted service that performs the code exchange."
    ),
    redirect_uri: Optional[str] = typer.Option(
        None, "--redirect-uri", help="Registered loopback redirect URI."
    ),
    scopes: Optional[list[str]] = typer.Option(
        None, "--scope", "-s", help="Scope to request (repeatable)."
    ),
    hosted_domain: Optional[str] = typer.Option(
        None, "--hosted-domain", help="Restrict sign-in to this domain."
    ),
    offline: bool = typer.Option(
        False, "--offline", help="Request offline access (a refresh token)."
    ),
) -> None:
    """Store a new client registration.

    Either ``--issuer`` or both ``--authorization-endpoint`` and
    ``--token-endpoint`` (or ``--exchange-endpoint``) must be given.

    Raises:
        typer.Exit: With code 2 if the name is taken (without ``--force``)
            or no way to reach the provider was given.
    """
    from pkceauth.config import client_exists, save_client
    from pkceauth.models import ClientConfig

    force = ctx.obj.get("force", False) if ctx.obj else False
    if client_exists(name) and not force:
        error(f"Client '{name}' already exists. Use --force to overwrite it.")
        raise typer.Exit(code=2)

    has_exchange = bool(token_endpoint or exchange_endpoint)
    if not issuer and not (authorization_endpoint and has_exchange):
        error("Give --issuer, or --authorization-endpoint with --token-endpoint.")
        raise typer.Exit(code=2)

    values = {
        "name": name,
        "client_id": client_id,
        "openid_connect_url": issuer,
        "authorization_endpoint": authorization_endpoint,
        "token_endpoint": token_endpoint,
        "exchange_endpoint": exchange_endpoint,
        "redirect_uri": redirect_uri,
        "hosted_domain": hosted_domain,
        "offline_access": offline,
    }
    if scopes:
        values["scopes"] = scopes

    save_client(ClientConfig(**values))
    success(f"Client '{name}' saved.")
    suggest(f"Sign in: pkceauth --client {name} login")


@client_app.command("list")
def client_list() -> None:
    """List stored clients."""
    from pkceauth.config import list_clients, load_client

    names = list_clients()
    if not names:
        info("No clients configured.")
        suggest("Add one: pkceauth client add NAME --client-id ID --issuer URL")
        return

    rows = []
    for name in names:
        with cli_errors():
            config = load_client(name)
        provider = config.openid_connect_url or config.authorization_endpoint or ""
        rows.append([name, config.client_id, provider])
    print_table(["Name", "Client ID", "Provider"], rows, title="Clients")


@client_app.command("show")
def client_show(name: str = typer.Argument(help="Client name.")) -> None:
    """Show a stored client's configuration."""
    from pkceauth.config import load_client

    with cli_errors():
        config = load_client(name)
    print_record(config.model_dump(mode="json", exclude_none=True))


@client_app.command("remove")
def client_remove(
    ctx: typer.Context,
    name: str = typer.Argument(help="Client name."),
) -> None:
    """Delete a stored client. Its tokens are left in the token store."""
    from pkceauth.config import delete_client

    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force and not typer.confirm(f"Remove client '{name}'?"):
        info("Cancelled.")
        raise typer.Exit()

    with cli_errors():
        delete_client(name)
    success(f"Client '{name}' removed.")

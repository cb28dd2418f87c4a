"""Built-in CLI sub-commands for pkceauth.

* :mod:`~pkceauth.commands.client` -- add, list, show and remove client
  registrations (the ``client`` group).
* :mod:`~pkceauth.commands.session` -- ``login``, ``status``, ``token``,
  ``refresh``, ``logout`` and ``disconnect``, registered directly on the
  root app.

Commands report :class:`~pkceauth.exceptions.PkceAuthError` failures
through :func:`cli_errors`, which prints the message and exits with the
error's code.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import typer

from pkceauth.exceptions import PkceAuthError, UserCancelled
from pkceauth.output import error, info


@contextmanager
def cli_errors() -> Iterator[None]:
    """Turn a :class:`PkceAuthError` into an error message and exit code."""
    try:
        yield
    except UserCancelled as exc:
        info(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    except PkceAuthError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

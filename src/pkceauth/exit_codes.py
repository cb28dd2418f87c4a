"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~pkceauth.exceptions.PkceAuthError` subclass.
Shell scripts wrapping ``pkceauth token`` can inspect the exit code to
decide whether to re-run ``pkceauth login`` without parsing stderr.

Example::

    $ pkceauth token
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- the refresh token was revoked
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or configuration."""

EXIT_AUTH_FAILURE = 3
"""The provider rejected the grant, or there is no usable session."""

EXIT_PROVIDER_ERROR = 5
"""The authorization, token or userinfo endpoint returned an error response."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_CRYPTO_FAILURE = 7
"""No secure randomness source is available on this platform."""

EXIT_CANCELLED = 130
"""The user cancelled the sign-in (same code as an interrupted process)."""

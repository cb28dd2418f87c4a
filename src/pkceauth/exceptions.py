"""Exception hierarchy for pkceauth.

All exceptions inherit from :class:`PkceAuthError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`pkceauth.exit_codes`.
The CLI entry point in :func:`pkceauth.app.main` catches ``PkceAuthError``
and exits with the appropriate code.

A user closing the consent page is a normal outcome, not a failure, so
:class:`UserCancelled` sits beside :class:`AuthFlowError` rather than under
it. Callers that only want to show error UI catch ``AuthFlowError``::

    try:
        controller.sign_in()
    except UserCancelled:
        pass
    except AuthFlowError as exc:
        show_error(exc)

Subclass hierarchy::

    PkceAuthError
    +-- UserCancelled              (exit 130)
    +-- AuthFlowError              (exit 1)
        +-- ConfigError            (exit 2)
        +-- InvalidInput           (exit 2)
        +-- EntropySourceUnavailable (exit 7)
        +-- NetworkFailure         (exit 6)
        +-- ProviderError          (exit 5)
        |   +-- InvalidGrant       (exit 3)
        +-- ScopeDenied            (exit 3)
        +-- NotSignedIn            (exit 3)
        +-- FlowInProgress         (exit 1)
"""

from __future__ import annotations

from pkceauth.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_CRYPTO_FAILURE,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_PROVIDER_ERROR,
)


class PkceAuthError(Exception):
    """Base exception for everything raised by pkceauth.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class UserCancelled(PkceAuthError):
    """The user dismissed the authorization page or denied consent."""

    exit_code = EXIT_CANCELLED

    def __init__(self, message: str = "Sign-in was cancelled by the user"):
        super().__init__(message)


class AuthFlowError(PkceAuthError):
    """Base class for real failures of the sign-in flow."""


class ConfigError(AuthFlowError):
    """Raised for configuration problems (missing client, invalid JSON, no endpoints)."""

    exit_code = EXIT_INVALID_USAGE


class InvalidInput(AuthFlowError):
    """Raised for malformed verifier, challenge or token input."""

    exit_code = EXIT_INVALID_USAGE


class EntropySourceUnavailable(AuthFlowError):
    """Raised when the platform has no cryptographically secure randomness source."""

    exit_code = EXIT_CRYPTO_FAILURE


class NetworkFailure(AuthFlowError):
    """Raised when an endpoint is unreachable (timeout, DNS, connection refused)."""

    exit_code = EXIT_CONNECTION_ERROR


class ProviderError(AuthFlowError):
    """Raised when the provider answers with an OAuth error.

    Args:
        message: Human-readable description.
        error: The provider's ``error`` code (e.g. ``invalid_request``).
        error_description: The provider's ``error_description``, if any.
        status_code: HTTP status of the response, or ``None`` for errors
            delivered through the redirect URI.
    """

    exit_code = EXIT_PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        error: str | None = None,
        error_description: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.error = error
        self.error_description = error_description
        self.status_code = status_code


class InvalidGrant(ProviderError):
    """The refresh token (or authorization code) was revoked, expired or already used."""

    exit_code = EXIT_AUTH_FAILURE


class ScopeDenied(AuthFlowError):
    """An incremental scope request was rejected; the existing session is untouched."""

    exit_code = EXIT_AUTH_FAILURE


class NotSignedIn(AuthFlowError):
    """An operation needed a session but none is stored."""

    exit_code = EXIT_AUTH_FAILURE


class FlowInProgress(AuthFlowError):
    """A second interactive sign-in was started while one is still pending."""

"""Abstract base class for launchers.

To support a new way of showing the consent page, subclass
:class:`Launcher` and implement :meth:`~Launcher.launch`. Override
:meth:`~Launcher.redirect_uri_for` when the launcher, not the client
configuration, decides where the provider should redirect to.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from pkceauth.exceptions import ConfigError


class Launcher(ABC):
    """Presents an authorization URL and waits for the provider's redirect."""

    def redirect_uri_for(self, configured: Optional[str]) -> str:
        """Return the redirect URI to put in the authorization request.

        Called once per attempt, before :meth:`launch`.

        Args:
            configured: ``ClientConfig.redirect_uri``, if set.

        Raises:
            ConfigError: If neither the launcher nor the config supplies one.
        """
        if not configured:
            raise ConfigError(f"{type(self).__name__} requires a configured redirect_uri")
        return configured

    @abstractmethod
    def launch(
        self,
        authorization_url: str,
        redirect_uri: str,
        timeout: Optional[float] = None,
    ) -> str:
        """Show ``authorization_url`` and block until the provider redirects.

        Args:
            authorization_url: The fully built authorization request URL.
            redirect_uri: The value returned by :meth:`redirect_uri_for`.
            timeout: Seconds to wait before giving up, or ``None`` for the
                launcher's own default.

        Returns:
            The complete redirect URI, including its query string.

        Raises:
            UserCancelled: If the user closed the page or nothing arrived
                before the timeout.
        """
        ...

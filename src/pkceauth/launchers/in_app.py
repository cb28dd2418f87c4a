"""Embedded browser launcher.

Desktop and mobile hosts that render the consent page in their own web
view supply a ``browser`` callable. It receives the authorization URL and
the redirect URI, shows the page, and returns the first URL the view
navigated to that starts with the redirect URI, or ``None`` if the user
closed the view.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Optional

from pkceauth.exceptions import UserCancelled
from pkceauth.launchers.base import Launcher

BrowserCallable = Callable[[str, str], Optional[str]]


class InAppBrowserLauncher(Launcher):
    """Delegate presentation to a host-provided embedded browser.

    Args:
        browser: ``browser(authorization_url, redirect_uri) -> str | None``.
        redirect_uri: Redirect URI to use when the client configuration
            does not set one (typically a custom scheme such as
            ``com.example.app:/oauth2redirect``).
    """

    def __init__(self, browser: BrowserCallable, redirect_uri: Optional[str] = None) -> None:
        self._browser = browser
        self._redirect_uri = redirect_uri

    def redirect_uri_for(self, configured: Optional[str]) -> str:
        return super().redirect_uri_for(configured or self._redirect_uri)

    def launch(
        self,
        authorization_url: str,
        redirect_uri: str,
        timeout: Optional[float] = None,
    ) -> str:
        """Show the page in the embedded browser.

        ``timeout`` is not enforced here; the embedded view owns its own
        lifetime and reports a close as ``None``.

        Raises:
            UserCancelled: If the browser returned without a redirect.
        """
        redirect = self._browser(authorization_url, redirect_uri)
        if not redirect:
            raise UserCancelled()
        return redirect

"""Launcher for web applications that own the HTTP callback route.

The flow runs in a worker thread. :meth:`WebRedirectLauncher.launch`
hands the authorization URL to the host's ``navigate`` callable (which
typically answers the current browser request with a 302) and blocks.
The host's callback route later calls :meth:`WebRedirectLauncher.complete`
with the full callback URL, or :meth:`WebRedirectLauncher.cancel`, which
unblocks the flow.

Example with a Starlette-style route::

    launcher = WebRedirectLauncher(navigate=pending_redirects.put,
                                   redirect_uri="https://app.example.com/oauth/callback")

    @app.get("/oauth/callback")
    def oauth_callback(request):
        launcher.complete(str(request.url))
        return RedirectResponse("/")
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any, Optional

from pkceauth.exceptions import UserCancelled
from pkceauth.launchers.base import Launcher

DEFAULT_TIMEOUT = 300.0


class WebRedirectLauncher(Launcher):
    """Hand the authorization URL to the host and wait for its callback.

    Args:
        navigate: Called with the authorization URL; must send the user
            agent there and return promptly.
        redirect_uri: Callback URL registered with the provider, used when
            the client configuration does not set one.
        timeout: Default seconds to wait for :meth:`complete`.
    """

    def __init__(
        self,
        navigate: Callable[[str], Any],
        redirect_uri: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._navigate = navigate
        self._redirect_uri = redirect_uri
        self._timeout = timeout
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._redirect: Optional[str] = None
        self._cancelled = False

    def redirect_uri_for(self, configured: Optional[str]) -> str:
        return super().redirect_uri_for(configured or self._redirect_uri)

    def launch(
        self,
        authorization_url: str,
        redirect_uri: str,
        timeout: Optional[float] = None,
    ) -> str:
        """Navigate and block until :meth:`complete` or :meth:`cancel`.

        Raises:
            UserCancelled: On :meth:`cancel` or when the timeout expires.
        """
        with self._lock:
            self._event.clear()
            self._redirect = None
            self._cancelled = False

        self._navigate(authorization_url)

        wait = self._timeout if timeout is None else timeout
        if not self._event.wait(wait):
            raise UserCancelled(f"No authorization response received within {wait:.0f} seconds")

        with self._lock:
            if self._cancelled or not self._redirect:
                raise UserCancelled()
            return self._redirect

    def complete(self, redirect_uri: str) -> None:
        """Deliver the callback URL received by the host's route."""
        with self._lock:
            self._redirect = redirect_uri
            self._event.set()

    def cancel(self) -> None:
        """Abort the pending attempt; :meth:`launch` raises :class:`UserCancelled`."""
        with self._lock:
            self._cancelled = True
            self._event.set()

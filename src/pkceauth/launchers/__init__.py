"""Launchers present the authorization page and hand back the redirect.

A :class:`Launcher` is the only piece of pkceauth that talks to the user.
The host picks one when constructing an
:class:`~pkceauth.flow.AuthFlowController`:

- :class:`LoopbackServerLauncher` -- opens the system browser and
  receives the redirect on a temporary ``127.0.0.1`` HTTP server
  (desktop apps and CLIs, :rfc:`8252#section-7.3`).
- :class:`InAppBrowserLauncher` -- delegates to a host-supplied embedded
  browser that reports the URL it was redirected to.
- :class:`WebRedirectLauncher` -- for web servers: the host navigates the
  user agent and later feeds the callback request back via
  :meth:`WebRedirectLauncher.complete`.
"""

from pkceauth.launchers.base import Launcher
from pkceauth.launchers.in_app import InAppBrowserLauncher
from pkceauth.launchers.loopback import LoopbackServerLauncher
from pkceauth.launchers.web_redirect import WebRedirectLauncher

__all__ = [
    "InAppBrowserLauncher",
    "Launcher",
    "LoopbackServerLauncher",
    "WebRedirectLauncher",
]

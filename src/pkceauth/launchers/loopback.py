"""System browser + loopback HTTP server launcher.

Opens the authorization URL in the user's default browser and listens on
``127.0.0.1`` for the provider's redirect. The first request carrying a
``code`` or an ``error`` parameter completes the attempt; anything else
(``/favicon.ico`` and the like) gets a 404 and the server keeps waiting.

If ``success_url`` / ``fail_url`` are set, the browser is redirected there
after the callback; otherwise a small HTML page is shown.
"""

from __future__ import annotations

import html
import logging
import socket
import threading
import time
import webbrowser
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

from pkceauth.exceptions import ConfigError, UserCancelled
from pkceauth.launchers.base import Launcher

logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_PATH = "/callback"
DEFAULT_TIMEOUT = 120.0

_SUCCESS_PAGE = "Sign-in complete. You can close this window and return to the application."
_FAILURE_PAGE = "Sign-in failed: {error}"


def _find_free_port(host: str) -> int:
    """Find a free TCP port on ``host``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


class LoopbackServerLauncher(Launcher):
    """Open the system browser and capture the redirect on a local server.

    Args:
        host: Interface to listen on. Must be a loopback address.
        port: Port to listen on; ``0`` picks a free port per attempt.
        path: Callback path of the redirect URI.
        success_url: Where to send the browser after a successful callback.
        fail_url: Where to send the browser after an error callback.
        open_browser: Callable that opens a URL; :func:`webbrowser.open` by
            default. Headless hosts pass a function that prints the URL.
        timeout: Default seconds to wait for the redirect.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        path: str = DEFAULT_CALLBACK_PATH,
        success_url: Optional[str] = None,
        fail_url: Optional[str] = None,
        open_browser: Optional[Callable[[str], Any]] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._host = host
        self._port = port
        self._path = path
        self._success_url = success_url
        self._fail_url = fail_url
        self._open_browser = open_browser or webbrowser.open
        self._timeout = timeout

    def redirect_uri_for(self, configured: Optional[str]) -> str:
        """Use the configured loopback URI, or build one on a free port."""
        if configured:
            parsed = urlparse(configured)
            if parsed.scheme != "http" or parsed.hostname not in ("127.0.0.1", "localhost", "::1"):
                raise ConfigError(
                    f"LoopbackServerLauncher needs an http loopback redirect_uri, got {configured}"
                )
            return configured
        port = self._port or _find_free_port(self._host)
        return f"http://{self._host}:{port}{self._path}"

    def launch(
        self,
        authorization_url: str,
        redirect_uri: str,
        timeout: Optional[float] = None,
    ) -> str:
        """Start the callback server, open the browser, and wait for the redirect.

        Raises:
            UserCancelled: If no callback arrives within the timeout.
        """
        parsed = urlparse(redirect_uri)
        bind_host = parsed.hostname or self._host
        port = parsed.port or 80
        callback_path = parsed.path or "/"

        result: dict[str, Optional[str]] = {"redirect": None}
        success_url = self._success_url
        fail_url = self._fail_url

        class CallbackHandler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:
                request = urlparse(self.path)
                params = parse_qs(request.query)
                if request.path != callback_path or not ("code" in params or "error" in params):
                    self.send_error(404)
                    return

                result["redirect"] = f"{parsed.scheme}://{parsed.netloc}{self.path}"
                if "error" in params:
                    target = fail_url
                    body = _FAILURE_PAGE.format(error=html.escape(params["error"][0]))
                else:
                    target = success_url
                    body = _SUCCESS_PAGE

                if target:
                    self.send_response(302)
                    self.send_header("Location", target)
                    self.end_headers()
                    return
                self.send_response(200)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.end_headers()
                self.wfile.write(f"<html><body><h2>{body}</h2></body></html>".encode("utf-8"))

            def log_message(self, format: str, *args: Any) -> None:
                logger.debug("callback server: " + format, *args)

        server = HTTPServer((bind_host, port), CallbackHandler)
        wait = self._timeout if timeout is None else timeout
        deadline = time.monotonic() + wait
        try:
            browser_thread = threading.Thread(
                target=self._open_browser, args=(authorization_url,), daemon=True
            )
            browser_thread.start()
            logger.debug("Waiting up to %ss for redirect on %s", wait, redirect_uri)

            while result["redirect"] is None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise UserCancelled(f"No authorization response received within {wait:.0f} seconds")
                server.timeout = remaining
                server.handle_request()
        finally:
            server.server_close()

        return result["redirect"]

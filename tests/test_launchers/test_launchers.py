"""Tests for the loopback, in-app and web-redirect launchers."""

from __future__ import annotations

import threading
from typing import Optional

import httpx
import pytest

from pkceauth.exceptions import ConfigError, UserCancelled
from pkceauth.launchers import InAppBrowserLauncher, LoopbackServerLauncher, WebRedirectLauncher


# ---------------------------------------------------------------------------
# LoopbackServerLauncher
# ---------------------------------------------------------------------------


class FakeBrowser:
    """Plays the provider redirecting the browser back to the loopback server."""

    def __init__(self, query: str, paths: tuple[str, ...] = ()) -> None:
        self.query = query
        self.paths = paths
        self.redirect_uri: Optional[str] = None
        self.opened: list[str] = []
        self.responses: list[httpx.Response] = []
        self.done = threading.Event()

    def __call__(self, url: str) -> None:
        self.opened.append(url)
        assert self.redirect_uri is not None
        base = self.redirect_uri.rsplit("/", 1)[0]
        try:
            for path in self.paths:
                self.responses.append(httpx.get(base + path, timeout=5, trust_env=False))
            self.responses.append(
                httpx.get(f"{self.redirect_uri}?{self.query}", timeout=5, trust_env=False)
            )
        finally:
            self.done.set()


class TestLoopbackServerLauncher:
    def test_builds_loopback_redirect_uri(self) -> None:
        uri = LoopbackServerLauncher().redirect_uri_for(None)
        assert uri.startswith("http://127.0.0.1:")
        assert uri.endswith("/callback")

    def test_fixed_port_and_path(self) -> None:
        launcher = LoopbackServerLauncher(port=8765, path="/oauth2")
        assert launcher.redirect_uri_for(None) == "http://127.0.0.1:8765/oauth2"

    def test_accepts_configured_loopback_uri(self) -> None:
        uri = "http://localhost:9000/cb"
        assert LoopbackServerLauncher().redirect_uri_for(uri) == uri

    @pytest.mark.parametrize("uri", ["https://app.example.com/cb", "com.example.app:/oauth2redirect"])
    def test_rejects_non_loopback_uri(self, uri: str) -> None:
        with pytest.raises(ConfigError):
            LoopbackServerLauncher().redirect_uri_for(uri)

    def test_captures_redirect(self) -> None:
        browser = FakeBrowser("code=abc&state=s1")
        launcher = LoopbackServerLauncher(open_browser=browser, timeout=5)
        browser.redirect_uri = launcher.redirect_uri_for(None)

        redirect = launcher.launch("https://auth.example.com/authorize?x=1", browser.redirect_uri)
        assert browser.done.wait(5)

        assert redirect == f"{browser.redirect_uri}?code=abc&state=s1"
        assert browser.opened == ["https://auth.example.com/authorize?x=1"]
        assert browser.responses[-1].status_code == 200
        assert "Sign-in complete" in browser.responses[-1].text

    def test_ignores_unrelated_requests(self) -> None:
        browser = FakeBrowser("code=abc&state=s1", paths=("/favicon.ico", "/callback"))
        launcher = LoopbackServerLauncher(open_browser=browser, timeout=5)
        browser.redirect_uri = launcher.redirect_uri_for(None)

        redirect = launcher.launch("https://auth.example.com/authorize", browser.redirect_uri)
        assert browser.done.wait(5)

        assert redirect.endswith("?code=abc&state=s1")
        assert [r.status_code for r in browser.responses] == [404, 404, 200]

    def test_error_redirect_is_captured(self) -> None:
        browser = FakeBrowser("error=access_denied&state=s1")
        launcher = LoopbackServerLauncher(open_browser=browser, timeout=5)
        browser.redirect_uri = launcher.redirect_uri_for(None)

        redirect = launcher.launch("https://auth.example.com/authorize", browser.redirect_uri)
        assert browser.done.wait(5)

        assert "error=access_denied" in redirect
        assert "Sign-in failed: access_denied" in browser.responses[-1].text

    def test_error_page_escapes_error_value(self) -> None:
        browser = FakeBrowser("error=%3Cscript%3Ealert(1)%3C%2Fscript%3E&state=s1")
        launcher = LoopbackServerLauncher(open_browser=browser, timeout=5)
        browser.redirect_uri = launcher.redirect_uri_for(None)

        launcher.launch("https://auth.example.com/authorize", browser.redirect_uri)
        assert browser.done.wait(5)

        page = browser.responses[-1].text
        assert "&lt;script&gt;alert(1)&lt;/script&gt;" in page
        assert "<script>" not in page

    def test_redirects_to_success_url(self) -> None:
        browser = FakeBrowser("code=abc&state=s1")
        launcher = LoopbackServerLauncher(
            open_browser=browser, timeout=5, success_url="https://app.example.com/done"
        )
        browser.redirect_uri = launcher.redirect_uri_for(None)

        launcher.launch("https://auth.example.com/authorize", browser.redirect_uri)
        assert browser.done.wait(5)

        assert browser.responses[-1].status_code == 302
        assert browser.responses[-1].headers["location"] == "https://app.example.com/done"

    def test_redirects_to_fail_url(self) -> None:
        browser = FakeBrowser("error=server_error")
        launcher = LoopbackServerLauncher(
            open_browser=browser, timeout=5, fail_url="https://app.example.com/oops"
        )
        browser.redirect_uri = launcher.redirect_uri_for(None)

        launcher.launch("https://auth.example.com/authorize", browser.redirect_uri)
        assert browser.done.wait(5)

        assert browser.responses[-1].headers["location"] == "https://app.example.com/oops"

    def test_timeout_is_cancellation(self) -> None:
        launcher = LoopbackServerLauncher(open_browser=lambda url: None)
        uri = launcher.redirect_uri_for(None)

        with pytest.raises(UserCancelled, match="No authorization response"):
            launcher.launch("https://auth.example.com/authorize", uri, timeout=0.2)

    def test_port_released_after_launch(self) -> None:
        launcher = LoopbackServerLauncher(open_browser=lambda url: None)
        uri = launcher.redirect_uri_for(None)
        for _ in range(2):
            with pytest.raises(UserCancelled):
                launcher.launch("https://auth.example.com/authorize", uri, timeout=0.1)


# ---------------------------------------------------------------------------
# InAppBrowserLauncher
# ---------------------------------------------------------------------------


class TestInAppBrowserLauncher:
    def test_returns_browser_redirect(self) -> None:
        seen: list[tuple[str, str]] = []

        def browser(url: str, redirect_uri: str) -> str:
            seen.append((url, redirect_uri))
            return f"{redirect_uri}?code=abc"

        launcher = InAppBrowserLauncher(browser, redirect_uri="com.example.app:/oauth2redirect")
        uri = launcher.redirect_uri_for(None)

        assert launcher.launch("https://auth/authorize", uri) == "com.example.app:/oauth2redirect?code=abc"
        assert seen == [("https://auth/authorize", "com.example.app:/oauth2redirect")]

    def test_closed_view_is_cancellation(self) -> None:
        launcher = InAppBrowserLauncher(lambda url, uri: None, redirect_uri="app:/cb")
        with pytest.raises(UserCancelled):
            launcher.launch("https://auth/authorize", "app:/cb")

    def test_configured_uri_wins(self) -> None:
        launcher = InAppBrowserLauncher(lambda url, uri: None, redirect_uri="app:/default")
        assert launcher.redirect_uri_for("app:/configured") == "app:/configured"

    def test_requires_redirect_uri(self) -> None:
        with pytest.raises(ConfigError):
            InAppBrowserLauncher(lambda url, uri: None).redirect_uri_for(None)


# ---------------------------------------------------------------------------
# WebRedirectLauncher
# ---------------------------------------------------------------------------


def _launch_in_thread(launcher: WebRedirectLauncher, timeout: Optional[float] = None):
    outcome: dict[str, object] = {}

    def run() -> None:
        try:
            outcome["redirect"] = launcher.launch("https://auth/authorize", "https://app/cb", timeout)
        except UserCancelled as exc:
            outcome["error"] = exc

    thread = threading.Thread(target=run)
    thread.start()
    return thread, outcome


class TestWebRedirectLauncher:
    def test_complete_unblocks_launch(self) -> None:
        navigated = threading.Event()
        urls: list[str] = []

        def navigate(url: str) -> None:
            urls.append(url)
            navigated.set()

        launcher = WebRedirectLauncher(navigate, redirect_uri="https://app/cb", timeout=5)
        thread, outcome = _launch_in_thread(launcher)
        assert navigated.wait(5)

        launcher.complete("https://app/cb?code=abc&state=s")
        thread.join(5)

        assert urls == ["https://auth/authorize"]
        assert outcome == {"redirect": "https://app/cb?code=abc&state=s"}

    def test_cancel(self) -> None:
        navigated = threading.Event()
        launcher = WebRedirectLauncher(lambda url: navigated.set(), timeout=5)
        thread, outcome = _launch_in_thread(launcher)
        assert navigated.wait(5)

        launcher.cancel()
        thread.join(5)

        assert isinstance(outcome["error"], UserCancelled)

    def test_timeout(self) -> None:
        launcher = WebRedirectLauncher(lambda url: None)
        thread, outcome = _launch_in_thread(launcher, timeout=0.1)
        thread.join(5)
        assert isinstance(outcome["error"], UserCancelled)

    def test_stale_completion_is_discarded(self) -> None:
        navigated = threading.Event()
        launcher = WebRedirectLauncher(lambda url: navigated.set(), timeout=5)
        launcher.complete("https://app/cb?code=stale")

        thread, outcome = _launch_in_thread(launcher)
        assert navigated.wait(5)
        launcher.complete("https://app/cb?code=fresh")
        thread.join(5)

        assert outcome == {"redirect": "https://app/cb?code=fresh"}

    def test_redirect_uri(self) -> None:
        launcher = WebRedirectLauncher(lambda url: None, redirect_uri="https://app/cb")
        assert launcher.redirect_uri_for(None) == "https://app/cb"
        with pytest.raises(ConfigError):
            WebRedirectLauncher(lambda url: None).redirect_uri_for(None)

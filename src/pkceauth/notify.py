"""Ordered delivery of "current user changed" notifications.

The flow publishes into a queue and returns immediately; a single
daemon thread delivers each event to every subscriber in publication
order. A slow or failing subscriber therefore never blocks or breaks a
sign-in.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

from pkceauth.models import UserProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserChange:
    """One sign-in or sign-out, as delivered to listeners.

    ``user`` can be ``None`` while ``signed_in`` is ``True`` when the
    provider exposed no identity for the granted scopes.
    """

    signed_in: bool
    user: Optional[UserProfile] = None


UserListener = Callable[[UserChange], None]

_STOP = object()


class UserChangeNotifier:
    """Broadcasts user changes to subscribers on a dedicated thread."""

    def __init__(self, name: str = "pkceauth-notifier") -> None:
        self._name = name
        self._listeners: list[UserListener] = []
        self._lock = threading.Lock()
        self._queue: queue.Queue[object] = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._closed = False

    def subscribe(self, listener: UserListener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, change: UserChange) -> None:
        """Queue ``change`` for delivery."""
        with self._lock:
            if self._closed:
                return
            if self._thread is None:
                self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
                self._thread.start()
        self._queue.put(change)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every event queued so far has been delivered."""
        done = threading.Event()
        with self._lock:
            running = self._thread is not None and not self._closed
        if not running:
            return
        self._queue.put(done)
        done.wait(timeout)

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Deliver what is queued, then stop the delivery thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            thread = self._thread
        if thread is not None:
            self._queue.put(_STOP)
            thread.join(timeout)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            if isinstance(item, threading.Event):
                item.set()
                continue
            with self._lock:
                listeners = list(self._listeners)
            for listener in listeners:
                try:
                    listener(item)  # type: ignore[arg-type]
                except Exception:
                    logger.exception("User change listener %r failed", listener)

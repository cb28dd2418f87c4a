"""Abstract key/value backend and the in-memory implementation.

To persist tokens somewhere else (an OS keychain, a database, a browser's
local storage), subclass :class:`Store` and implement the four methods.
Each call must be a complete write-through: :class:`~pkceauth.storage.TokenStore`
never batches writes and expects the next :meth:`Store.get` to observe them.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Optional


class Store(ABC):
    """Interface for persisting string key/value pairs."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Persist ``value`` at ``key``, replacing any previous value."""
        ...

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the value at ``key``, or ``None`` if it does not exist."""
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove the value at ``key``. A missing key is not an error."""
        ...

    @abstractmethod
    def clear_all(self) -> None:
        """Remove every value in the backend, not only one client's keys."""
        ...


class MemoryStore(Store):
    """Process-local store backed by a dict.

    Useful for tests and for hosts that deliberately do not persist
    sessions between runs.

    Args:
        initial: Optional mapping to seed the store with.
    """

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear_all(self) -> None:
        with self._lock:
            self._data.clear()

    def keys(self) -> list[str]:
        """Return a snapshot of the stored keys."""
        with self._lock:
            return list(self._data)

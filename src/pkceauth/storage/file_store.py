"""JSON file backend for :class:`~pkceauth.storage.base.Store`.

Keeps every key of every client in a single JSON object on disk (by
default ``~/.local/share/pkceauth/tokens.json``). The file is rewritten
on each mutation via :func:`pkceauth.config._atomic_write` with ``0o600``
permissions so that tokens are never world-readable, even momentarily.

Several controllers, or the CLI and a host application, may share one
file. Every mutation therefore re-reads the file while holding a lock
that is shared by all instances in the process and, on POSIX, an
advisory ``flock`` on a sibling ``.<name>.lock`` file shared across
processes. Nothing is cached between calls.

See Also:
    :class:`~pkceauth.storage.token_store.TokenStore` -- the typed wrapper
    that decides which keys are written.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Union

from pkceauth.config import _atomic_write
from pkceauth.storage.base import Store

logger = logging.getLogger(__name__)

_registry_lock = threading.Lock()
_path_locks: dict[Path, threading.RLock] = {}
_shared_stores: dict[Path, JsonFileStore] = {}


def _lock_for(path: Path) -> threading.RLock:
    with _registry_lock:
        lock = _path_locks.get(path)
        if lock is None:
            lock = _path_locks[path] = threading.RLock()
        return lock


@contextmanager
def _interprocess_lock(path: Path) -> Iterator[None]:
    """Hold an exclusive advisory lock on ``.<name>.lock`` next to ``path``.

    Only POSIX systems have ``flock``; elsewhere the in-process lock is
    the only guard.
    """
    if os.name != "posix":
        yield
        return

    import fcntl

    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path.parent / f".{path.name}.lock", os.O_RDWR | os.O_CREAT, 0o600)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        yield
    finally:
        os.close(fd)


class JsonFileStore(Store):
    """Write-through key/value store persisted as one JSON document.

    Every :meth:`get` reads the file and every :meth:`set`,
    :meth:`remove` and :meth:`clear_all` performs a locked
    read-modify-write, so instances pointing at the same file never
    overwrite each other's keys. A file that cannot be parsed is treated
    as empty and replaced on the next write.

    Args:
        path: Location of the JSON file. ``~`` is expanded.

    Example::

        store = JsonFileStore("/tmp/tokens.json")
        store.set("k", "v")
        assert JsonFileStore("/tmp/tokens.json").get("k") == "v"
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path).expanduser()
        self._lock = _lock_for(self._path.absolute())

    @classmethod
    def shared(cls, path: Union[str, Path]) -> JsonFileStore:
        """Return the process-wide instance for ``path``, creating it once."""
        key = Path(path).expanduser().absolute()
        with _registry_lock:
            store = _shared_stores.get(key)
            if store is None:
                store = _shared_stores[key] = cls(key)
            return store

    @property
    def path(self) -> Path:
        """The filesystem path of the backing JSON file."""
        return self._path

    def set(self, key: str, value: str) -> None:
        with self._locked():
            data = self._read()
            data[key] = value
            self._flush(data)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def remove(self, key: str) -> None:
        with self._locked():
            data = self._read()
            if key in data:
                del data[key]
                self._flush(data)

    def clear_all(self) -> None:
        with self._locked():
            if self._path.is_file():
                self._path.unlink()

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._lock, _interprocess_lock(self._path):
            yield

    def _read(self) -> dict[str, str]:
        """Return a fresh copy of the file's contents."""
        if not self._path.is_file():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable token file %s: %s", self._path, exc)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Ignoring %s: top-level value is not an object", self._path)
            return {}
        return {str(k): str(v) for k, v in raw.items()}

    def _flush(self, data: dict[str, str]) -> None:
        _atomic_write(
            self._path,
            json.dumps(data, indent=2, sort_keys=True) + "\n",
            mode=0o600,
        )

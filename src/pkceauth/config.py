"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for pkceauth:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.pkceauth/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_data_dir`, :func:`get_clients_dir`.
* **Client profiles** -- One JSON file per OAuth client registration, each
  deserialised into a :class:`~pkceauth.models.ClientConfig`. Managed via
  :func:`load_client`, :func:`save_client`, :func:`delete_client`.
* **Precedence resolution** -- :func:`resolve_client` picks the active
  client from the CLI flag, environment variables, project-local config,
  or the only stored profile.
* **Token file** -- :func:`default_store_path` is where the CLI keeps its
  :class:`~pkceauth.storage.JsonFileStore`.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from pkceauth.exceptions import ConfigError
from pkceauth.models import ClientConfig

_APP_NAME = "pkceauth"
_PROJECT_CONFIG_FILENAME = "pkceauth.json"
_TOKENS_FILENAME = "tokens.json"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/pkceauth/`` (default ``~/.config/pkceauth/``).
    On macOS/Windows: ``~/.pkceauth/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (tokens, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/pkceauth/`` (default ``~/.local/share/pkceauth/``).
    On macOS/Windows: ``~/.pkceauth/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_clients_dir() -> Path:
    """Return the client profiles directory (``<config_dir>/clients/``), creating it if necessary."""
    path = get_config_dir() / "clients"
    path.mkdir(parents=True, exist_ok=True)
    return path


def default_store_path() -> Path:
    """Return the path of the token file used by the CLI."""
    return get_data_dir() / _TOKENS_FILENAME


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. When *mode* is
    given it is applied to the temp file before any content is written,
    so secrets are never readable by others, even momentarily.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in the error path
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Client profiles ---


def _client_path(name: str) -> Path:
    """Path to a named client's JSON file."""
    return get_clients_dir() / f"{name}.json"


def list_clients() -> list[str]:
    """Return all stored client profile names, sorted alphabetically."""
    return sorted(p.stem for p in get_clients_dir().glob("*.json") if p.is_file())


def load_client(name: str) -> ClientConfig:
    """Load and validate a client profile from disk.

    Args:
        name: Profile name (``<name>.json`` in the clients directory).

    Raises:
        ConfigError: If the file does not exist, contains invalid JSON, or
            fails Pydantic validation.
    """
    path = _client_path(name)
    if not path.is_file():
        raise ConfigError(f"Client '{name}' not found at {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        config = ClientConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid client '{name}' at {path}: {exc}") from exc
    if config.name is None:
        config.name = name
    return config


def save_client(config: ClientConfig) -> None:
    """Persist a client profile atomically.

    Raises:
        ConfigError: If ``config.name`` is not set.
    """
    if not config.name:
        raise ConfigError("Cannot save a client without a name")
    data = config.model_dump(mode="json", exclude_none=True)
    _atomic_write(_client_path(config.name), json.dumps(data, indent=2) + "\n")


def delete_client(name: str) -> None:
    """Delete a client profile.

    Raises:
        ConfigError: If the profile does not exist.
    """
    path = _client_path(name)
    if not path.is_file():
        raise ConfigError(f"Client '{name}' not found at {path}")
    path.unlink()


def client_exists(name: str) -> bool:
    """Check whether a client profile exists on disk."""
    return _client_path(name).is_file()


# --- Project-local config ---


def load_project_config() -> Optional[dict[str, Any]]:
    """Load project-local configuration from ``./pkceauth.json``.

    A repository can pin which client to use by setting ``default_client``.

    Returns:
        The parsed JSON as a dict, or ``None`` if the file does not exist.

    Raises:
        ConfigError: If the file exists but is not a JSON object.
    """
    path = Path.cwd() / _PROJECT_CONFIG_FILENAME
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid project config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid project config at {path}: expected a JSON object")
    default_client = data.get("default_client")
    if default_client is not None and not isinstance(default_client, str):
        raise ConfigError(f"Invalid project config at {path}: default_client must be a string")
    return data


# --- Precedence resolution ---


def resolve_client(cli_client: Optional[str] = None) -> ClientConfig:
    """Resolve the active client with the full precedence chain.

    Precedence (high to low):
        1. CLI flag (``cli_client``)
        2. Environment variable ``PKCEAUTH_CLIENT``
        3. Project config (``./pkceauth.json`` ``default_client``)
        4. The only stored profile, when exactly one exists

    ``PKCEAUTH_CLIENT_ID`` then overrides the loaded profile's ``client_id``.

    Raises:
        ConfigError: If no client can be determined or it cannot be loaded.
    """
    name: Optional[str] = None

    project = load_project_config()
    if project is not None:
        name = project.get("default_client")

    env_client = os.environ.get("PKCEAUTH_CLIENT")
    if env_client:
        name = env_client

    if cli_client is not None:
        name = cli_client

    if name is None:
        clients = list_clients()
        if len(clients) == 1:
            name = clients[0]
        elif not clients:
            raise ConfigError("No client configured. Run 'pkceauth client add' first.")
        else:
            raise ConfigError(
                f"Several clients configured ({', '.join(clients)}); pick one with --client"
            )

    config = load_client(name)

    env_client_id = os.environ.get("PKCEAUTH_CLIENT_ID")
    if env_client_id:
        config.client_id = env_client_id

    return config

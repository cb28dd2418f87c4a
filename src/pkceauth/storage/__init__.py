"""Token persistence for pkceauth.

Two layers:

- :class:`Store` -- a minimal string key/value interface (get, set,
  remove, clear_all) with two bundled backends, :class:`MemoryStore` and
  :class:`JsonFileStore`. Hosts with a keychain or a database implement
  :class:`Store` themselves.
- :class:`TokenStore` -- the typed wrapper that maps tokens, scopes, the
  expiry and the user profile to namespaced keys of a :class:`Store`.

Typical usage::

    from pkceauth.storage import JsonFileStore, TokenStore

    tokens = TokenStore(JsonFileStore("~/.local/share/pkceauth/tokens.json"), "my-client")
    tokens.save_result({"access_token": "...", "expires_in": 3600, "scope": "openid"})
"""

from pkceauth.storage.base import MemoryStore, Store
from pkceauth.storage.file_store import JsonFileStore
from pkceauth.storage.token_store import TokenStore

__all__ = [
    "JsonFileStore",
    "MemoryStore",
    "Store",
    "TokenStore",
]

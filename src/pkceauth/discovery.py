"""OpenID Connect discovery.

Fetches a provider's ``/.well-known/openid-configuration`` document and
fills in the endpoints a :class:`~pkceauth.models.ClientConfig` leaves
unset. Endpoints set explicitly on the config always take precedence
over discovered ones.

Discovery results are cached per URL in a :class:`DiscoveryCache` so that
several controllers for the same issuer fetch the document only once.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

import httpx
from pydantic import ValidationError

from pkceauth.exceptions import ConfigError, NetworkFailure, ProviderError
from pkceauth.models import ClientConfig, ProviderMetadata

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


def discovery_url(issuer_or_url: str) -> str:
    """Return the discovery document URL for an issuer or a discovery URL."""
    url = issuer_or_url.rstrip("/")
    if url.endswith(WELL_KNOWN_PATH):
        return url
    return url + WELL_KNOWN_PATH


def discover(issuer_or_url: str, http_client: httpx.Client) -> ProviderMetadata:
    """Fetch and validate the OpenID Provider configuration document.

    Args:
        issuer_or_url: The issuer (``https://accounts.google.com``) or the
            full discovery document URL.
        http_client: Client used to send the request.

    Raises:
        NetworkFailure: If the document cannot be fetched.
        ProviderError: On a non-2xx response, or if the document is not JSON
            or lacks ``authorization_endpoint`` / ``token_endpoint``.
    """
    url = discovery_url(issuer_or_url)
    try:
        response = http_client.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as exc:
        raise NetworkFailure(f"OpenID discovery failed: {exc}") from exc

    if not response.is_success:
        raise ProviderError(
            f"OpenID discovery failed with status {response.status_code}: {response.text}",
            status_code=response.status_code,
        )
    try:
        return ProviderMetadata.model_validate(response.json())
    except (ValueError, ValidationError) as exc:
        raise ProviderError(f"Invalid OpenID discovery document at {url}: {exc}") from exc


class DiscoveryCache:
    """Thread-safe, in-memory cache of discovery documents keyed by URL."""

    def __init__(self) -> None:
        self._documents: dict[str, ProviderMetadata] = {}
        self._lock = threading.Lock()

    def get(self, issuer_or_url: str, http_client: httpx.Client) -> ProviderMetadata:
        url = discovery_url(issuer_or_url)
        with self._lock:
            cached = self._documents.get(url)
        if cached is not None:
            return cached
        metadata = discover(url, http_client)
        with self._lock:
            self._documents[url] = metadata
        return metadata

    def clear(self) -> None:
        with self._lock:
            self._documents.clear()


_default_cache = DiscoveryCache()


def resolve_endpoints(
    config: ClientConfig,
    http_client: httpx.Client,
    cache: Optional[DiscoveryCache] = None,
) -> ClientConfig:
    """Return a copy of ``config`` with missing endpoints discovered.

    No request is made when both ``authorization_endpoint`` and a way to
    exchange codes (``token_endpoint`` or ``exchange_endpoint``) are set.

    Raises:
        ConfigError: If endpoints are missing and there is no
            ``openid_connect_url`` to discover them from.
        NetworkFailure: If discovery cannot reach the provider.
        ProviderError: If the discovery document is invalid.
    """
    has_exchange = bool(config.token_endpoint or config.exchange_endpoint)
    if config.authorization_endpoint and has_exchange:
        return config

    if not config.openid_connect_url:
        missing = []
        if not config.authorization_endpoint:
            missing.append("authorization_endpoint")
        if not has_exchange:
            missing.append("token_endpoint")
        raise ConfigError(
            f"Client '{config.client_id}' is missing {', '.join(missing)} "
            "and has no openid_connect_url to discover them from"
        )

    metadata = (cache or _default_cache).get(config.openid_connect_url, http_client)
    logger.debug("Discovered endpoints for issuer %s", metadata.issuer or config.openid_connect_url)

    return config.model_copy(
        update={
            "authorization_endpoint": config.authorization_endpoint or metadata.authorization_endpoint,
            "token_endpoint": config.token_endpoint or metadata.token_endpoint,
            "userinfo_endpoint": config.userinfo_endpoint or metadata.userinfo_endpoint,
            "revocation_endpoint": config.revocation_endpoint or metadata.revocation_endpoint,
        }
    )

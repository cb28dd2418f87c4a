"""HTTP calls to the provider's token, userinfo and revocation endpoints.

:class:`TokenEndpointClient` turns each OAuth request into a single
``httpx`` call and maps failures onto the pkceauth error taxonomy:

* transport-level problems (DNS, refused connection, timeout) raise
  :class:`~pkceauth.exceptions.NetworkFailure`;
* non-2xx responses raise :class:`~pkceauth.exceptions.ProviderError`
  carrying the provider's ``error`` / ``error_description``;
* ``invalid_grant`` raises :class:`~pkceauth.exceptions.InvalidGrant`.

Nothing is retried here; the caller decides.

When the client is configured with an ``exchange_endpoint``, code and
refresh grants go to that trusted service as JSON instead of to the
provider's token endpoint. The client secret therefore never appears in
this process.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from pkceauth.exceptions import ConfigError, InvalidGrant, NetworkFailure, ProviderError
from pkceauth.models import ClientConfig, TokenResponse

logger = logging.getLogger(__name__)


class TokenEndpointClient:
    """Performs code exchange, refresh, userinfo and revocation requests.

    Args:
        config: Client configuration with endpoints already resolved (see
            :func:`pkceauth.discovery.resolve_endpoints`).
        http_client: Optional :class:`httpx.Client` to send requests with.
            When omitted, one is created and closed by :meth:`close`.
    """

    def __init__(
        self,
        config: ClientConfig,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=config.timeout)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    def exchange_code(self, code: str, code_verifier: str, redirect_uri: str) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Args:
            code: The authorization code from the redirect.
            code_verifier: The PKCE verifier matching the challenge sent
                in the authorization request.
            redirect_uri: The redirect URI used in the authorization request.

        Raises:
            NetworkFailure: If the endpoint cannot be reached.
            ProviderError: On an error response or a response without
                ``access_token``.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "code_verifier": code_verifier,
            "redirect_uri": redirect_uri,
            "client_id": self._config.client_id,
        }
        return self._grant(data, "Token exchange")

    def refresh(self, refresh_token: str) -> TokenResponse:
        """Exchange a refresh token for a new access token.

        Raises:
            InvalidGrant: If the refresh token was revoked or expired.
            NetworkFailure: If the endpoint cannot be reached.
            ProviderError: On any other error response.
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._config.client_id,
        }
        return self._grant(data, "Token refresh")

    # ------------------------------------------------------------------
    # Userinfo / revocation
    # ------------------------------------------------------------------

    def fetch_userinfo(self, access_token: str) -> dict[str, Any]:
        """Fetch the OIDC userinfo document for ``access_token``.

        Raises:
            ConfigError: If no userinfo endpoint is configured.
            NetworkFailure: If the endpoint cannot be reached.
            ProviderError: On an error response or a non-object body.
        """
        url = self._config.userinfo_endpoint
        if not url:
            raise ConfigError("userinfo_endpoint is not configured")
        try:
            response = self._client.get(
                url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as exc:
            raise NetworkFailure(f"Userinfo request failed: {exc}") from exc

        body = self._json_or_raise(response, "Userinfo request")
        if not isinstance(body, dict):
            raise ProviderError("Userinfo response is not a JSON object", status_code=response.status_code)
        return body

    def revoke(self, token: str) -> None:
        """Revoke ``token`` at the revocation endpoint (:rfc:`7009`).

        Raises:
            ConfigError: If no revocation endpoint is configured.
            NetworkFailure: If the endpoint cannot be reached.
            ProviderError: On an error response.
        """
        url = self._config.revocation_endpoint
        if not url:
            raise ConfigError("revocation_endpoint is not configured")
        try:
            response = self._client.post(
                url,
                data={"token": token, "client_id": self._config.client_id},
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise NetworkFailure(f"Token revocation failed: {exc}") from exc
        if not response.is_success:
            raise _provider_error(response, "Token revocation")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _grant(self, data: dict[str, str], action: str) -> TokenResponse:
        exchange_endpoint = self._config.exchange_endpoint
        try:
            if exchange_endpoint:
                logger.debug("%s via trusted exchange endpoint %s", action, exchange_endpoint)
                response = self._client.post(
                    exchange_endpoint,
                    json=data,
                    headers={"Accept": "application/json"},
                )
            else:
                token_endpoint = self._config.token_endpoint
                if not token_endpoint:
                    raise ConfigError("token_endpoint is not configured")
                logger.debug("%s at %s", action, token_endpoint)
                response = self._client.post(
                    token_endpoint,
                    data=data,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise NetworkFailure(f"{action} failed: {exc}") from exc

        body = self._json_or_raise(response, action)
        if not isinstance(body, dict) or "access_token" not in body:
            raise ProviderError(
                f"{action} response missing 'access_token' field",
                status_code=response.status_code,
            )
        try:
            return TokenResponse.model_validate(body)
        except ValidationError as exc:
            raise ProviderError(
                f"{action} response is malformed: {exc}",
                status_code=response.status_code,
            ) from exc

    def _json_or_raise(self, response: httpx.Response, action: str) -> Any:
        if not response.is_success:
            raise _provider_error(response, action)
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(
                f"{action} returned a non-JSON body",
                status_code=response.status_code,
            ) from exc


def _provider_error(response: httpx.Response, action: str) -> ProviderError:
    """Build the exception for a non-2xx response."""
    error: Optional[str] = None
    description: Optional[str] = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        raw_error = body.get("error")
        # Some providers nest {"error": {"message": ..., "status": ...}}.
        if isinstance(raw_error, dict):
            description = raw_error.get("message")
            raw_error = raw_error.get("status")
        error = str(raw_error) if raw_error is not None else None
        description = body.get("error_description", description)

    message = f"{action} failed with status {response.status_code}"
    if error:
        message += f": {error}"
    if description:
        message += f" - {description}"

    cls = InvalidGrant if error == "invalid_grant" else ProviderError
    return cls(
        message,
        error=error,
        error_description=description,
        status_code=response.status_code,
    )

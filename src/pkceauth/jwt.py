"""Read the claims of an ID token without verifying it.

The ID token is received directly from the token endpoint over TLS, so
its payload is used as-is to populate the user profile when the provider
has no userinfo endpoint (OpenID Connect Core, section 3.1.3.7).
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from pkceauth.exceptions import InvalidInput


def decode_claims(id_token: str) -> dict[str, Any]:
    """Return the payload of a compact-serialised JWT as a dict.

    Raises:
        InvalidInput: If the token is not three dot-separated segments or
            the payload is not base64url-encoded JSON object.
    """
    parts = id_token.split(".")
    if len(parts) != 3:
        raise InvalidInput("ID token is not a compact JWT")

    payload = parts[1]
    payload += "=" * (-len(payload) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise InvalidInput(f"ID token payload is not valid base64url JSON: {exc}") from exc

    if not isinstance(claims, dict):
        raise InvalidInput("ID token payload is not a JSON object")
    return claims

"""PKCE (Proof Key for Code Exchange) helpers.

Implements the two primitives of :rfc:`7636`:

* :func:`generate_secure_random_string` -- a high-entropy code verifier
  drawn from the unreserved character set using the OS CSPRNG.
* :func:`derive_code_challenge` -- the ``S256`` transform of a verifier.

:func:`generate_pkce_pair` combines them for a single authorization
attempt.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass

from pkceauth.exceptions import EntropySourceUnavailable, InvalidInput

CHARSET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "0123456789"
    "-._~"
)
"""RFC 7636 ``unreserved`` characters allowed in a code verifier."""

CODE_CHALLENGE_METHOD = "S256"

MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128


@dataclass(frozen=True)
class PKCEPair:
    """A code verifier and the challenge derived from it."""

    verifier: str
    challenge: str
    method: str = CODE_CHALLENGE_METHOD


def generate_secure_random_string(entropy_bytes: int = 64) -> str:
    """Generate a random code verifier of ``entropy_bytes`` characters.

    Every character is chosen uniformly from :data:`CHARSET` using
    :class:`secrets.SystemRandom`, never a seeded generator.

    Args:
        entropy_bytes: Length of the returned string. Must be at least 1.

    Returns:
        The random string.

    Raises:
        InvalidInput: If ``entropy_bytes`` is less than 1.
        EntropySourceUnavailable: If the OS has no secure randomness source.
    """
    if entropy_bytes < 1:
        raise InvalidInput(f"entropy_bytes must be >= 1, got {entropy_bytes}")

    try:
        return "".join(secrets.choice(CHARSET) for _ in range(entropy_bytes))
    except (NotImplementedError, OSError) as exc:
        raise EntropySourceUnavailable(
            f"No secure randomness source available: {exc}"
        ) from exc


def derive_code_challenge(verifier: str) -> str:
    """Derive the ``S256`` code challenge for ``verifier``.

    The challenge is ``BASE64URL(SHA256(ASCII(verifier)))`` with the ``=``
    padding removed.

    Raises:
        InvalidInput: If ``verifier`` contains non-ASCII characters.
    """
    try:
        raw = verifier.encode("ascii")
    except UnicodeEncodeError as exc:
        raise InvalidInput("Code verifier must contain only ASCII characters") from exc
    digest = hashlib.sha256(raw).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce_pair(length: int = 64) -> PKCEPair:
    """Generate a fresh verifier/challenge pair for one authorization attempt.

    Args:
        length: Verifier length, 43 to 128 characters inclusive.

    Raises:
        InvalidInput: If ``length`` is outside the range allowed by RFC 7636.
    """
    if not MIN_VERIFIER_LENGTH <= length <= MAX_VERIFIER_LENGTH:
        raise InvalidInput(
            f"Code verifier length must be between {MIN_VERIFIER_LENGTH} and "
            f"{MAX_VERIFIER_LENGTH}, got {length}"
        )
    verifier = generate_secure_random_string(length)
    return PKCEPair(verifier=verifier, challenge=derive_code_challenge(verifier))

"""PKCE (Proof Key for Code Exchange) helpers.

Implements the S256 method of RFC 7636. The verifier stays server-side in the
pending flow; only the challenge travels to the authorization server.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

import msgspec

# 32 random bytes encode to a 43 character verifier, the RFC 7636 minimum
VERIFIER_ENTROPY_BYTES = 32


class PKCEPair(msgspec.Struct, frozen=True):
    """A code verifier and its S256 challenge."""

    code_verifier: str
    code_challenge: str


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_pkce_pair() -> PKCEPair:
    """Generate a fresh PKCE verifier/challenge pair.

    The verifier is the unpadded base64url encoding of 32 bytes from the
    operating system CSPRNG. Failure of the random source propagates.

    Returns:
        PKCEPair: (code_verifier, code_challenge)

    Example:
        >>> pair = generate_pkce_pair()
        >>> compute_challenge(pair.code_verifier) == pair.code_challenge
        True
    """
    code_verifier = _b64url(secrets.token_bytes(VERIFIER_ENTROPY_BYTES))
    return PKCEPair(code_verifier, compute_challenge(code_verifier))


def compute_challenge(code_verifier: str) -> str:
    """Return BASE64URL(SHA256(code_verifier)) without padding."""
    return _b64url(hashlib.sha256(code_verifier.encode("ascii")).digest())

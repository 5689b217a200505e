"""
PKCE and state helpers for the identity provider login.

Implements the S256 method of RFC 7636. All randomness comes from the
``secrets`` module.
"""

import base64
import hashlib
import secrets
from typing import NamedTuple


class PKCEPair(NamedTuple):
    verifier: str
    challenge: str


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_state() -> str:
    """
    Generate an OAuth state token.

    Returns:
        64 hex characters (32 random bytes)
    """
    return secrets.token_hex(32)


def compute_challenge(verifier: str) -> str:
    """
    Compute the S256 code challenge for a verifier.

    Args:
        verifier: Code verifier string

    Returns:
        BASE64URL(SHA256(ascii(verifier))) without padding
    """
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def generate_pkce() -> PKCEPair:
    """
    Generate a PKCE verifier/challenge pair.

    The verifier is 32 random bytes, base64url encoded without padding
    (43 characters). Only the challenge leaves the relay at initiation;
    the verifier is sent with the token exchange.
    """
    verifier = _b64url(secrets.token_bytes(32))
    return PKCEPair(verifier=verifier, challenge=compute_challenge(verifier))

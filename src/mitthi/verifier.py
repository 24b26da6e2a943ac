"""
Mitthi - Room code verifier.

Author: orpheus497
Version: 1.0.0

The verifier is a public SHA-256 digest stored next to the salt in room
metadata. It is computed over the key's HKDF commitment, not over the AES
key, so seeing it gives an observer nothing beyond what re-deriving a
candidate key and hashing it would already give.
"""

import hashlib
import hmac
import logging
from typing import Union

from .encoding import b64decode, b64encode
from .keys import RoomKey, SaltLike, derive_key

logger = logging.getLogger(__name__)


def compute_verifier(key: RoomKey) -> bytes:
    """Compute the 32-byte verifier digest for a room key."""
    return hashlib.sha256(key.commitment()).digest()


def compute_verifier_b64(key: RoomKey) -> str:
    """Compute the verifier digest as base64 text for room metadata."""
    return b64encode(compute_verifier(key))


def verify_key(key: RoomKey, expected_verifier: Union[bytes, str]) -> bool:
    """
    Check an already derived room key against a stored verifier.

    Returns:
        True only if the key's digest matches; False for a malformed verifier
    """
    try:
        if isinstance(expected_verifier, str):
            expected_verifier = b64decode(expected_verifier, "verifierHash")
        return hmac.compare_digest(compute_verifier(key), bytes(expected_verifier))
    except Exception as e:
        logger.debug(f"Room key verification failed: {type(e).__name__}")
        return False


def verify(room_code: str, salt: SaltLike, expected_verifier: Union[bytes, str]) -> bool:
    """
    Check a room code against a stored verifier.

    A wrong room code is an expected input, so every failure (bad salt,
    empty code, malformed verifier) returns False instead of raising.

    Args:
        room_code: Candidate room code
        salt: Room salt (bytes or base64)
        expected_verifier: Stored verifier (bytes or base64)

    Returns:
        True only if the recomputed digest matches exactly
    """
    try:
        key = derive_key(room_code, salt)
    except Exception as e:
        logger.debug(f"Room code verification failed: {type(e).__name__}")
        return False
    return verify_key(key, expected_verifier)

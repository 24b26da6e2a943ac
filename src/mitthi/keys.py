"""
Mitthi - Room key derivation.

Author: orpheus497
Version: 1.0.0

Turns a room code and a public 16-byte salt into an AES-256-GCM room key:

- PBKDF2-HMAC-SHA256, 200,000 iterations, over the UTF-8 room code
- 256-bit output used directly as the AES-GCM key
- A second 32-byte value, derived from the same stretched secret with
  HKDF-SHA256 under a distinct info string, is kept as the verifier
  commitment so the AES key itself never has to be exported for hashing

The iteration count is the only defense against offline guessing of weak
room codes and is part of the room format.
"""

import asyncio
import hmac
import logging
from concurrent.futures import Executor
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .constants import KEY_SIZE, NONCE_SIZE, PBKDF2_ITERATIONS, SALT_SIZE, VERIFIER_HKDF_INFO
from .encoding import b64decode
from .errors import AuthenticationError, EncodingError, ErrorCode, KeyDerivationError
from .randomness import RandomSource, resolve

logger = logging.getLogger(__name__)

SaltLike = Union[bytes, bytearray, str]


class RoomKey:
    """Opaque handle to a derived room key.

    Supports AEAD encryption/decryption and exposes a commitment value for
    the verifier. There is deliberately no method returning the AES key
    bytes. Two handles derived from the same room code and salt compare
    equal.
    """

    __slots__ = ("_aead", "_commitment")

    def __init__(self, aead: AESGCM, commitment: bytes):
        self._aead = aead
        self._commitment = commitment

    def encrypt(self, nonce: bytes, data: bytes, associated_data: Optional[bytes] = None) -> bytes:
        """Encrypt ``data`` under ``nonce``; the 16-byte tag is appended."""
        if len(nonce) != NONCE_SIZE:
            raise EncodingError(
                ErrorCode.E206_INVALID_MESSAGE,
                f"Nonce must be {NONCE_SIZE} bytes",
                {"nonce_length": len(nonce)},
            )
        return self._aead.encrypt(nonce, data, associated_data)

    def decrypt(self, nonce: bytes, data: bytes, associated_data: Optional[bytes] = None) -> bytes:
        """Decrypt and verify ``data``.

        Raises:
            EncodingError: If the nonce has the wrong length
            AuthenticationError: If the tag does not verify
        """
        if len(nonce) != NONCE_SIZE:
            raise EncodingError(ErrorCode.E206_INVALID_MESSAGE, "Cannot decode")
        try:
            return self._aead.decrypt(nonce, data, associated_data)
        except InvalidTag as e:
            raise AuthenticationError() from e

    def commitment(self) -> bytes:
        """Get the value the verifier digest is computed over."""
        return self._commitment

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RoomKey):
            return NotImplemented
        return hmac.compare_digest(self._commitment, other._commitment)

    __hash__ = None

    def __repr__(self) -> str:
        return "RoomKey(<redacted>)"


def generate_salt(random_source: Optional[RandomSource] = None) -> bytes:
    """Generate a random 16-byte room salt.

    Returns:
        Salt bytes drawn from the random source (OS CSPRNG by default)
    """
    return resolve(random_source).token_bytes(SALT_SIZE)


def _coerce_salt(salt: SaltLike) -> bytes:
    if isinstance(salt, str):
        try:
            salt = b64decode(salt, "salt")
        except EncodingError as e:
            raise KeyDerivationError(
                ErrorCode.E108_KEY_DERIVATION_FAILED, "Salt is not valid base64"
            ) from e
    if not isinstance(salt, (bytes, bytearray)):
        raise KeyDerivationError(
            ErrorCode.E108_KEY_DERIVATION_FAILED,
            "Salt must be bytes",
            {"type": type(salt).__name__},
        )
    if len(salt) != SALT_SIZE:
        raise KeyDerivationError(
            ErrorCode.E108_KEY_DERIVATION_FAILED,
            f"Salt must be exactly {SALT_SIZE} bytes",
            {"salt_length": len(salt)},
        )
    return bytes(salt)


def stretch(secret: bytes, salt: bytes) -> bytes:
    """Run PBKDF2-HMAC-SHA256 with the fixed room iteration count."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(secret)


def derive_key(room_code: str, salt: SaltLike) -> RoomKey:
    """
    Derive the room key from a room code and salt.

    Deterministic and pure: the same inputs always produce an equal key.

    Args:
        room_code: The room passphrase
        salt: 16 salt bytes, or their standard base64 text

    Returns:
        Opaque RoomKey handle

    Raises:
        KeyDerivationError: If the room code is empty or the salt is malformed
    """
    if not isinstance(room_code, str) or not room_code:
        raise KeyDerivationError(ErrorCode.E108_KEY_DERIVATION_FAILED, "Room code must not be empty")

    salt_bytes = _coerce_salt(salt)
    key_bytes = stretch(room_code.encode("utf-8"), salt_bytes)

    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt_bytes,
        info=VERIFIER_HKDF_INFO,
    )
    commitment = hkdf.derive(key_bytes)

    logger.debug("Derived room key")
    return RoomKey(AESGCM(key_bytes), commitment)


async def aderive_key(
    room_code: str, salt: SaltLike, executor: Optional[Executor] = None
) -> RoomKey:
    """Derive the room key in an executor so the event loop keeps running."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(executor, derive_key, room_code, salt)

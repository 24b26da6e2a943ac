"""
Mitthi - Single-shot message encryption.

Created by orpheus497

Authenticated encryption of short UTF-8 text under the room key:
- AES-256-GCM with a 128-bit authentication tag
- Fresh random 96-bit nonce for every call
- Empty associated data

Each call produces an EncryptedEnvelope {ciphertext, nonce}; the tag is
appended to the ciphertext by the AEAD. Decryption either returns the full
plaintext or raises, it never returns partial output.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from .constants import MAX_TEXT_MESSAGE_SIZE, NONCE_SIZE, TAG_SIZE
from .encoding import b64decode, b64encode
from .errors import EncodingError, ErrorCode
from .keys import RoomKey
from .randomness import RandomSource, resolve

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncryptedEnvelope:
    """Ciphertext (with appended tag) and the nonce it was sealed under.

    Attributes:
        ciphertext: AES-GCM output, tag included
        nonce: 12-byte nonce
    """

    ciphertext: bytes
    nonce: bytes

    def to_dict(self) -> Dict[str, str]:
        """Export the envelope in its wire form (base64 fields)."""
        return {
            "ciphertext": b64encode(self.ciphertext),
            "nonce": b64encode(self.nonce),
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "EncryptedEnvelope":
        """Import an envelope from its wire form.

        Records written by earlier clients name the nonce ``iv``; both are
        accepted.

        Raises:
            EncodingError: If a field is missing or not valid base64
        """
        if not isinstance(data, Mapping):
            raise EncodingError(ErrorCode.E206_INVALID_MESSAGE, "Cannot decode")

        nonce_text = data.get("nonce", data.get("iv"))
        if "ciphertext" not in data or nonce_text is None:
            raise EncodingError(ErrorCode.E206_INVALID_MESSAGE, "Cannot decode")

        ciphertext = b64decode(data["ciphertext"], "ciphertext")
        nonce = b64decode(nonce_text, "nonce")
        if len(nonce) != NONCE_SIZE:
            raise EncodingError(ErrorCode.E206_INVALID_MESSAGE, "Cannot decode")
        return EncryptedEnvelope(ciphertext=ciphertext, nonce=nonce)


EnvelopeLike = Union[EncryptedEnvelope, Mapping[str, Any]]


def encrypt_bytes(
    data: bytes, key: RoomKey, random_source: Optional[RandomSource] = None
) -> EncryptedEnvelope:
    """Seal raw bytes under a fresh random nonce."""
    nonce = resolve(random_source).token_bytes(NONCE_SIZE)
    ciphertext = key.encrypt(nonce, data, None)
    return EncryptedEnvelope(ciphertext=ciphertext, nonce=nonce)


def decrypt_bytes(envelope: EnvelopeLike, key: RoomKey) -> bytes:
    """Open an envelope and return the verified bytes.

    Raises:
        EncodingError: If the envelope is malformed
        AuthenticationError: If the tag does not verify
    """
    if not isinstance(envelope, EncryptedEnvelope):
        envelope = EncryptedEnvelope.from_dict(envelope)

    if len(envelope.ciphertext) < TAG_SIZE:
        raise EncodingError(ErrorCode.E206_INVALID_MESSAGE, "Cannot decode")

    return key.decrypt(envelope.nonce, envelope.ciphertext, None)


def encrypt_message(
    plaintext: str, key: RoomKey, random_source: Optional[RandomSource] = None
) -> EncryptedEnvelope:
    """
    Encrypt a text message with AES-256-GCM.

    Encrypting the same plaintext twice yields a different nonce and a
    different ciphertext.

    Args:
        plaintext: Message text
        key: Room key
        random_source: Optional nonce source (system CSPRNG by default)

    Returns:
        EncryptedEnvelope

    Raises:
        EncodingError: If the message exceeds MAX_TEXT_MESSAGE_SIZE
    """
    encoded = plaintext.encode("utf-8")
    if len(encoded) > MAX_TEXT_MESSAGE_SIZE:
        raise EncodingError(
            ErrorCode.E207_MESSAGE_TOO_LARGE,
            f"Message too large: {len(encoded)} > {MAX_TEXT_MESSAGE_SIZE}",
            {"size": len(encoded), "max_size": MAX_TEXT_MESSAGE_SIZE},
        )
    return encrypt_bytes(encoded, key, random_source)


def decrypt_message(envelope: EnvelopeLike, key: RoomKey) -> str:
    """
    Decrypt a text message.

    Accepts either an EncryptedEnvelope or its wire dictionary.

    Raises:
        AuthenticationError: Wrong key, wrong nonce, or tampered ciphertext
        EncodingError: Malformed envelope, or verified bytes that are not UTF-8
    """
    plaintext = decrypt_bytes(envelope, key)
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise EncodingError(ErrorCode.E206_INVALID_MESSAGE, "Cannot decode") from e

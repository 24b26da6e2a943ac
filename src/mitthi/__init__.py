"""
Mitthi - End-to-end encryption for shared-code chat rooms

Client-side cryptographic layer: room key derivation, message and
metadata encryption, chunked stream encryption for media, and the room
code verifier.

Author: orpheus497
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "orpheus497"
__license__ = "MIT"

from .config import Config
from .constants import APP_NAME, VERSION
from .crypto import EncryptedEnvelope, decrypt_message, encrypt_message
from .errors import (
    AuthenticationError,
    ConfigError,
    CryptoError,
    EncodingError,
    ErrorCode,
    KeyDerivationError,
    MitthiError,
    RoomCodeError,
)
from .keys import RoomKey, aderive_key, derive_key, generate_salt
from .media import ContentType, DecryptedMessage, MediaMeta, MessageRecord, decrypt_field, encrypt_field
from .room import RoomMetadata, RoomSession, generate_room_id
from .stream import ChunkedEnvelope, StreamHeader, decrypt_stream, encrypt_stream
from .verifier import compute_verifier, verify, verify_key

__all__ = [
    "APP_NAME",
    "VERSION",
    "AuthenticationError",
    "ChunkedEnvelope",
    "Config",
    "ConfigError",
    "ContentType",
    "CryptoError",
    "DecryptedMessage",
    "EncodingError",
    "EncryptedEnvelope",
    "ErrorCode",
    "KeyDerivationError",
    "MediaMeta",
    "MessageRecord",
    "MitthiError",
    "RoomCodeError",
    "RoomKey",
    "RoomMetadata",
    "RoomSession",
    "StreamHeader",
    "__author__",
    "__license__",
    "__version__",
    "aderive_key",
    "compute_verifier",
    "decrypt_field",
    "decrypt_message",
    "decrypt_stream",
    "derive_key",
    "encrypt_field",
    "encrypt_message",
    "encrypt_stream",
    "generate_room_id",
    "generate_salt",
    "verify",
    "verify_key",
]

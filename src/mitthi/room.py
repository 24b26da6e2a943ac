"""
Mitthi - Room creation and join flow.

Created by orpheus497

A room is identified by an id derived from its room code, and described by
public metadata {salt, verifierHash} stored on the transport. Creating a
room draws the salt, derives the key and computes the verifier; joining a
room re-derives the key from the stored salt and rejects a wrong room code
early by checking the verifier.

The RoomSession holds the derived key for the lifetime of the session and
offers the per-message operations used by a client.
"""

import logging
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
)

from .config import Config
from .constants import ROOM_ID_LENGTH, ROOM_ID_SALT, SALT_SIZE, VERIFIER_SIZE
from .crypto import EncryptedEnvelope, decrypt_message, encrypt_message
from .encoding import b64decode, b64encode
from .errors import EncodingError, ErrorCode, KeyDerivationError, RoomCodeError
from .keys import RoomKey, derive_key, generate_salt, stretch
from .media import (
    DecryptedMessage,
    MessageRecord,
    aopen_media,
    aseal_media,
    open_media,
    open_record,
    open_records,
    seal_media,
    seal_text,
)
from .randomness import RandomSource
from .stream import Source
from .verifier import compute_verifier, verify_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoomMetadata:
    """Public room metadata persisted by the transport.

    Attributes:
        salt: 16-byte salt
        verifier_hash: 32-byte verifier digest (optional for older rooms)
    """

    salt: bytes
    verifier_hash: Optional[bytes] = None

    def to_dict(self) -> Dict[str, str]:
        data = {"salt": b64encode(self.salt)}
        if self.verifier_hash is not None:
            data["verifierHash"] = b64encode(self.verifier_hash)
        return data

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "RoomMetadata":
        """Import room metadata from its wire form.

        Raises:
            EncodingError: If the salt or verifier is malformed
        """
        if not isinstance(data, Mapping) or "salt" not in data:
            raise EncodingError(ErrorCode.E206_INVALID_MESSAGE, "Cannot decode room metadata")

        salt = b64decode(data["salt"], "salt")
        if len(salt) != SALT_SIZE:
            raise EncodingError(ErrorCode.E206_INVALID_MESSAGE, "Cannot decode room metadata")

        verifier_hash = None
        if data.get("verifierHash"):
            verifier_hash = b64decode(data["verifierHash"], "verifierHash")
            if len(verifier_hash) != VERIFIER_SIZE:
                raise EncodingError(ErrorCode.E206_INVALID_MESSAGE, "Cannot decode room metadata")

        return RoomMetadata(salt=salt, verifier_hash=verifier_hash)


def normalize_room_code(room_code: str) -> str:
    """Strip surrounding whitespace from a room code.

    Raises:
        KeyDerivationError: If nothing is left
    """
    if not isinstance(room_code, str) or not room_code.strip():
        raise KeyDerivationError(ErrorCode.E108_KEY_DERIVATION_FAILED, "Please enter a room code")
    return room_code.strip()


def generate_room_id(room_code: str) -> str:
    """
    Derive the transport room id from a room code.

    Uses PBKDF2 with a fixed domain salt and the room iteration count, so the
    id is no cheaper to brute-force than the verifier.

    Returns:
        32 lowercase hexadecimal characters
    """
    room_code = normalize_room_code(room_code)
    return stretch(room_code.encode("utf-8"), ROOM_ID_SALT).hex()[:ROOM_ID_LENGTH]


class RoomSession:
    """Client-side state for one joined room.

    Attributes:
        room_id: Transport room identifier
        salt: Room salt
        key: Derived room key (never serialized)
        config: Configuration used for limits and chunk size
    """

    def __init__(
        self,
        room_id: str,
        salt: bytes,
        key: RoomKey,
        config: Optional[Config] = None,
        random_source: Optional[RandomSource] = None,
    ):
        self.room_id = room_id
        self.salt = salt
        self.key = key
        self.config = config or Config.defaults()
        self.random_source = random_source

    def __repr__(self) -> str:
        return f"RoomSession(room_id={self.room_id!r})"

    @classmethod
    def create(
        cls,
        room_code: str,
        config: Optional[Config] = None,
        random_source: Optional[RandomSource] = None,
    ) -> Tuple["RoomSession", RoomMetadata]:
        """
        Create a new room.

        Returns:
            (session, metadata to store on the transport under session.room_id)

        Raises:
            KeyDerivationError: If the room code is empty
        """
        room_code = normalize_room_code(room_code)
        salt = generate_salt(random_source)
        key = derive_key(room_code, salt)
        metadata = RoomMetadata(salt=salt, verifier_hash=compute_verifier(key))
        room_id = generate_room_id(room_code)

        logger.info(f"Created room {room_id[:8]}")
        return cls(room_id, salt, key, config, random_source), metadata

    @classmethod
    def join(
        cls,
        room_code: str,
        metadata: Any,
        config: Optional[Config] = None,
        random_source: Optional[RandomSource] = None,
    ) -> "RoomSession":
        """
        Join an existing room using its stored metadata.

        Args:
            room_code: Room code entered by the user
            metadata: RoomMetadata or its wire dictionary

        Raises:
            KeyDerivationError: If the room code is empty
            EncodingError: If the metadata is malformed
            RoomCodeError: If the room code does not match the verifier
        """
        room_code = normalize_room_code(room_code)
        if not isinstance(metadata, RoomMetadata):
            metadata = RoomMetadata.from_dict(metadata)

        room_id = generate_room_id(room_code)
        key = derive_key(room_code, metadata.salt)
        if metadata.verifier_hash is not None and not verify_key(key, metadata.verifier_hash):
            logger.info(f"Rejected room code for room {room_id[:8]}")
            raise RoomCodeError(ErrorCode.E106_VERIFICATION_FAILED, "Invalid room code")

        logger.info(f"Joined room {room_id[:8]}")
        return cls(room_id, metadata.salt, key, config, random_source)

    @property
    def chunk_size(self) -> int:
        return self.config.get("stream", "chunk_size")

    @property
    def queue_size(self) -> int:
        return self.config.get("stream", "queue_size")

    @property
    def max_file_size(self) -> int:
        return self.config.get("limits", "max_file_size")

    def encrypt_text(self, text: str) -> EncryptedEnvelope:
        return encrypt_message(text, self.key, self.random_source)

    def decrypt_text(self, envelope: Any) -> str:
        return decrypt_message(envelope, self.key)

    def seal_text_record(self, text: str) -> MessageRecord:
        """Build a text message record, enforcing the configured size limit."""
        limit = self.config.get("limits", "max_text_message_size")
        size = len(text.encode("utf-8"))
        if size > limit:
            raise EncodingError(
                ErrorCode.E207_MESSAGE_TOO_LARGE,
                f"Message too large: {size} > {limit}",
                {"size": size, "max_size": limit},
            )
        return seal_text(text, self.key, self.random_source)

    def seal_media_record(
        self,
        source: Source,
        file_name: str,
        mime_type: Optional[str],
        file_size: int,
        storage_path: str,
        caption: str = "",
    ) -> Tuple[MessageRecord, Iterator[bytes]]:
        """Build a media record and its chunk ciphertexts using the configured limits."""
        return seal_media(
            source,
            file_name,
            mime_type,
            file_size,
            storage_path,
            self.key,
            caption=caption,
            chunk_size=self.chunk_size,
            random_source=self.random_source,
            max_size=self.max_file_size,
        )

    def aseal_media_record(
        self,
        pieces: AsyncIterable[bytes],
        file_name: str,
        mime_type: Optional[str],
        file_size: int,
        storage_path: str,
        caption: str = "",
        executor=None,
    ) -> Tuple[MessageRecord, AsyncIterator[bytes]]:
        """
        Async variant of seal_media_record.

        Chunks are encrypted in an executor; at most ``stream.queue_size``
        encrypted chunks wait for the consumer.
        """
        return aseal_media(
            pieces,
            file_name,
            mime_type,
            file_size,
            storage_path,
            self.key,
            caption=caption,
            chunk_size=self.chunk_size,
            queue_size=self.queue_size,
            random_source=self.random_source,
            max_size=self.max_file_size,
            executor=executor,
        )

    def open_record(self, record: Any) -> DecryptedMessage:
        if not isinstance(record, MessageRecord):
            return open_records([record], self.key)[0]
        return open_record(record, self.key)

    def open_records(self, records: Iterable[Any]) -> List[DecryptedMessage]:
        return open_records(records, self.key)

    def open_media(self, record: MessageRecord, chunks: Iterable[bytes]) -> Iterator[bytes]:
        """Decrypt the downloaded payload chunks of a media record."""
        if record.media_meta is None:
            raise EncodingError(ErrorCode.E002_INVALID_ARGUMENT, "Record has no media payload")
        return open_media(record.media_meta, chunks, self.key)

    def aopen_media(
        self, record: MessageRecord, chunks: AsyncIterable[bytes], executor=None
    ) -> AsyncIterator[bytes]:
        """Async variant of open_media for chunks arriving from a download."""
        if record.media_meta is None:
            raise EncodingError(ErrorCode.E002_INVALID_ARGUMENT, "Record has no media payload")
        return aopen_media(record.media_meta, chunks, self.key, executor=executor)

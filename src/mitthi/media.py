"""
Mitthi - Message records and media metadata encryption.

Author: orpheus497
Version: 1.0.0

Builds and opens the per-message records stored by the transport. Every
user-controlled field reaches the transport only as ciphertext:

- Message text: its own EncryptedEnvelope
- File name and MIME type: one EncryptedEnvelope each, each with its own nonce
- Payload: a chunked stream under its own base nonce

Only the storage path and the plaintext file size are stored in the clear.
The content type only affects presentation; every type gets the same
cryptographic treatment.
"""

import logging
from dataclasses import dataclass
from enum import Enum
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

from .constants import MAX_FILE_SIZE, MAX_METADATA_FIELD_SIZE, STREAM_CHUNK_SIZE, STREAM_QUEUE_SIZE
from .crypto import EncryptedEnvelope, decrypt_message, encrypt_message
from .encoding import b64decode, b64encode
from .errors import CryptoError, EncodingError, ErrorCode
from .keys import RoomKey
from .randomness import RandomSource
from .stream import (
    Source,
    StreamHeader,
    adecrypt_chunks,
    aencrypt_chunks,
    decrypt_chunks,
    encrypt_chunks,
    new_stream_nonce,
)

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


class ContentType(Enum):
    """Kind of payload a message record carries."""

    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    FILE = "file"

    @classmethod
    def from_mime(cls, mime_type: Optional[str]) -> "ContentType":
        """Pick the content type for a MIME type (image/*, audio/*, video/*, else file)."""
        major = (mime_type or "").split("/", 1)[0].lower()
        if major == "image":
            return cls.IMAGE
        if major == "audio":
            return cls.AUDIO
        if major == "video":
            return cls.VIDEO
        return cls.FILE

    @classmethod
    def parse(cls, value: Any) -> "ContentType":
        try:
            return cls(value)
        except ValueError as e:
            raise EncodingError(ErrorCode.E206_INVALID_MESSAGE, "Cannot decode") from e


def _is_size(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def encrypt_field(
    value: str, key: RoomKey, random_source: Optional[RandomSource] = None
) -> EncryptedEnvelope:
    """Encrypt a small metadata field (file name, MIME type) under its own nonce."""
    if len(value.encode("utf-8")) > MAX_METADATA_FIELD_SIZE:
        raise EncodingError(
            ErrorCode.E207_MESSAGE_TOO_LARGE,
            f"Metadata field too large (max {MAX_METADATA_FIELD_SIZE} bytes)",
        )
    return encrypt_message(value, key, random_source)


def decrypt_field(envelope: Any, key: RoomKey) -> str:
    """Decrypt a metadata field."""
    return decrypt_message(envelope, key)


@dataclass(frozen=True)
class MediaMeta:
    """Metadata accompanying a binary payload.

    Attributes:
        storage_path: Where the transport stored the ciphertext blob
        file_name: Encrypted file name
        mime_type: Encrypted MIME type
        file_size: Plaintext size in bytes (stored in the clear)
        stream_nonce: Base nonce of the payload stream
        chunk_size: Plaintext chunk size of the payload stream
    """

    storage_path: str
    file_name: EncryptedEnvelope
    mime_type: EncryptedEnvelope
    file_size: int
    stream_nonce: bytes
    chunk_size: int = STREAM_CHUNK_SIZE

    def stream_header(self) -> StreamHeader:
        return StreamHeader(nonce=self.stream_nonce, chunk_size=self.chunk_size)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "storagePath": self.storage_path,
            "fileName": self.file_name.to_dict(),
            "mimeType": self.mime_type.to_dict(),
            "fileSize": self.file_size,
            "streamNonce": b64encode(self.stream_nonce),
            "chunkSize": self.chunk_size,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "MediaMeta":
        """Import media metadata from its wire form.

        Raises:
            EncodingError: If a field is missing or malformed
        """
        try:
            header = StreamHeader.from_dict(
                {"nonce": data["streamNonce"], "chunkSize": data.get("chunkSize", STREAM_CHUNK_SIZE)}
            )
            storage_path = data["storagePath"]
            file_size = data["fileSize"]
            file_name = EncryptedEnvelope.from_dict(data["fileName"])
            mime_type = EncryptedEnvelope.from_dict(data["mimeType"])
        except (KeyError, TypeError, AttributeError) as e:
            raise EncodingError(ErrorCode.E206_INVALID_MESSAGE, "Cannot decode") from e

        if not isinstance(storage_path, str) or not _is_size(file_size):
            raise EncodingError(ErrorCode.E206_INVALID_MESSAGE, "Cannot decode")

        return MediaMeta(
            storage_path=storage_path,
            file_name=file_name,
            mime_type=mime_type,
            file_size=file_size,
            stream_nonce=header.nonce,
            chunk_size=header.chunk_size,
        )


@dataclass(frozen=True)
class MessageRecord:
    """A message as stored by the transport.

    Attributes:
        ciphertext: Encrypted text (the caption for media records)
        nonce: Nonce of the text envelope
        content_type: Kind of payload
        media_meta: Present for image/audio/video/file records
        record_id: Transport-assigned identifier, if any
        timestamp: Transport-assigned timestamp, passed through untouched
    """

    ciphertext: bytes
    nonce: bytes
    content_type: ContentType = ContentType.TEXT
    media_meta: Optional[MediaMeta] = None
    record_id: Optional[str] = None
    timestamp: Optional[str] = None

    def envelope(self) -> EncryptedEnvelope:
        return EncryptedEnvelope(ciphertext=self.ciphertext, nonce=self.nonce)

    def to_dict(self) -> Dict[str, Any]:
        """Export the record in its wire form (without transport fields)."""
        data: Dict[str, Any] = {
            "ciphertext": b64encode(self.ciphertext),
            "nonce": b64encode(self.nonce),
            "contentType": self.content_type.value,
        }
        if self.media_meta is not None:
            data["mediaMeta"] = self.media_meta.to_dict()
        return data

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "MessageRecord":
        """Import a record from its wire form.

        Raises:
            EncodingError: If the record is malformed
        """
        if not isinstance(data, Mapping):
            raise EncodingError(ErrorCode.E206_INVALID_MESSAGE, "Cannot decode")

        content_type = ContentType.parse(data.get("contentType", ContentType.TEXT.value))
        ciphertext = b64decode(data.get("ciphertext", ""), "ciphertext")
        nonce = b64decode(data.get("nonce", data.get("iv", "")), "nonce")

        media_meta = None
        if data.get("mediaMeta") is not None:
            media_meta = MediaMeta.from_dict(data["mediaMeta"])
        if content_type is not ContentType.TEXT and media_meta is None:
            raise EncodingError(ErrorCode.E206_INVALID_MESSAGE, "Cannot decode")

        timestamp = data.get("timestamp")
        return MessageRecord(
            ciphertext=ciphertext,
            nonce=nonce,
            content_type=content_type,
            media_meta=media_meta,
            record_id=data.get("id"),
            timestamp=str(timestamp) if timestamp is not None else None,
        )


@dataclass
class DecryptedMessage:
    """A message after decryption, ready for presentation.

    A record that could not be decrypted keeps ``failed=True`` and no
    content; it never prevents the other records from being shown.
    """

    record_id: Optional[str]
    content_type: ContentType
    content: str = ""
    timestamp: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None
    storage_path: Optional[str] = None
    stream_header: Optional[StreamHeader] = None
    failed: bool = False


def seal_text(
    text: str, key: RoomKey, random_source: Optional[RandomSource] = None
) -> MessageRecord:
    """Build a text message record."""
    envelope = encrypt_message(text, key, random_source)
    return MessageRecord(
        ciphertext=envelope.ciphertext, nonce=envelope.nonce, content_type=ContentType.TEXT
    )


def _media_record(
    file_name: str,
    mime_type: Optional[str],
    file_size: int,
    storage_path: str,
    key: RoomKey,
    caption: str,
    chunk_size: int,
    random_source: Optional[RandomSource],
    max_size: Optional[int],
) -> MessageRecord:
    if not _is_size(file_size):
        raise EncodingError(ErrorCode.E002_INVALID_ARGUMENT, "File size must be a non-negative integer")
    if max_size is not None and file_size > max_size:
        raise EncodingError(
            ErrorCode.E601_FILE_TOO_LARGE,
            f"File too large: {file_size} > {max_size}",
            {"size": file_size, "max_size": max_size},
        )

    mime_type = mime_type or DEFAULT_MIME_TYPE
    caption_envelope = encrypt_message(caption, key, random_source)
    stream_nonce = new_stream_nonce(random_source)

    meta = MediaMeta(
        storage_path=storage_path,
        file_name=encrypt_field(file_name, key, random_source),
        mime_type=encrypt_field(mime_type, key, random_source),
        file_size=file_size,
        stream_nonce=stream_nonce,
        chunk_size=chunk_size,
    )
    record = MessageRecord(
        ciphertext=caption_envelope.ciphertext,
        nonce=caption_envelope.nonce,
        content_type=ContentType.from_mime(mime_type),
        media_meta=meta,
    )
    logger.debug(f"Sealed {record.content_type.value} record ({file_size} bytes)")
    return record


def seal_media(
    source: Source,
    file_name: str,
    mime_type: Optional[str],
    file_size: int,
    storage_path: str,
    key: RoomKey,
    caption: str = "",
    chunk_size: int = STREAM_CHUNK_SIZE,
    random_source: Optional[RandomSource] = None,
    max_size: Optional[int] = MAX_FILE_SIZE,
) -> Tuple[MessageRecord, Iterator[bytes]]:
    """
    Build a media message record and the encrypted payload chunks.

    The caption, file name, MIME type and payload stream are four separate
    encryptions, each under its own nonce.

    Args:
        source: Payload (bytes, binary file object, or iterable of bytes)
        file_name: Original file name
        mime_type: MIME type (application/octet-stream if empty)
        file_size: Plaintext payload size in bytes
        storage_path: Where the caller will upload the ciphertext blob
        key: Room key
        caption: Optional text sent along with the payload

    Returns:
        (record, lazy iterator of chunk ciphertexts to upload in order)
    """
    record = _media_record(
        file_name, mime_type, file_size, storage_path, key, caption, chunk_size, random_source, max_size
    )
    chunks = encrypt_chunks(source, key, record.media_meta.stream_nonce, chunk_size, max_size)
    return record, chunks


def aseal_media(
    pieces: AsyncIterable[bytes],
    file_name: str,
    mime_type: Optional[str],
    file_size: int,
    storage_path: str,
    key: RoomKey,
    caption: str = "",
    chunk_size: int = STREAM_CHUNK_SIZE,
    queue_size: int = STREAM_QUEUE_SIZE,
    random_source: Optional[RandomSource] = None,
    max_size: Optional[int] = MAX_FILE_SIZE,
    executor=None,
) -> Tuple[MessageRecord, AsyncIterator[bytes]]:
    """Async counterpart of seal_media(); chunks come from the aencrypt_chunks pipeline."""
    record = _media_record(
        file_name, mime_type, file_size, storage_path, key, caption, chunk_size, random_source, max_size
    )
    chunks = aencrypt_chunks(
        pieces,
        key,
        record.media_meta.stream_nonce,
        chunk_size=chunk_size,
        queue_size=queue_size,
        max_size=max_size,
        executor=executor,
    )
    return record, chunks


def open_media(meta: MediaMeta, chunks: Iterable[bytes], key: RoomKey) -> Iterator[bytes]:
    """Decrypt the payload chunks belonging to a media record."""
    return decrypt_chunks(chunks, key, meta.stream_nonce)


def aopen_media(
    meta: MediaMeta, chunks: AsyncIterable[bytes], key: RoomKey, executor=None
) -> AsyncIterator[bytes]:
    """Decrypt downloaded payload chunks as they arrive."""
    return adecrypt_chunks(chunks, key, meta.stream_nonce, executor=executor)


def open_record(record: MessageRecord, key: RoomKey) -> DecryptedMessage:
    """
    Decrypt a message record.

    Any decryption or decoding failure yields a DecryptedMessage with
    ``failed=True`` instead of raising.
    """
    result = DecryptedMessage(
        record_id=record.record_id,
        content_type=record.content_type,
        timestamp=record.timestamp,
    )
    meta = record.media_meta
    try:
        # Only media records may leave the caption out
        if record.content_type is ContentType.TEXT or meta is None or record.ciphertext:
            result.content = decrypt_message(record.envelope(), key)

        if meta is not None:
            result.file_name = decrypt_field(meta.file_name, key)
            result.mime_type = decrypt_field(meta.mime_type, key)
            result.file_size = meta.file_size
            result.storage_path = meta.storage_path
            result.stream_header = meta.stream_header()
    except CryptoError:
        logger.warning(f"Failed to decrypt message {record.record_id or '<unsaved>'}")
        return DecryptedMessage(
            record_id=record.record_id,
            content_type=record.content_type,
            timestamp=record.timestamp,
            failed=True,
        )

    return result


def open_records(records: Iterable[Any], key: RoomKey) -> List[DecryptedMessage]:
    """Decrypt a batch of records (MessageRecord or wire dicts), isolating failures."""
    opened = []
    for item in records:
        if isinstance(item, MessageRecord):
            opened.append(open_record(item, key))
            continue
        try:
            record = MessageRecord.from_dict(item)
        except EncodingError:
            record_id = item.get("id") if isinstance(item, Mapping) else None
            logger.warning(f"Malformed message record {record_id or '<unknown>'}")
            opened.append(
                DecryptedMessage(record_id=record_id, content_type=ContentType.TEXT, failed=True)
            )
            continue
        opened.append(open_record(record, key))
    return opened

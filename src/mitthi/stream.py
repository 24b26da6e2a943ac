"""
Mitthi - Chunked stream encryption.

This module encrypts binary payloads of any size (a few bytes to hundreds of
megabytes) in fixed-size chunks so neither side has to hold the whole
payload in memory.

Chunk framing:
- Plaintext is split into 2 MiB chunks, the last one may be shorter
- One random 96-bit base nonce per stream
- Chunk nonce = base nonce with the 64-bit chunk index XOR-ed into its
  low-order 8 bytes, so no two chunks of a stream share a nonce
- Associated data = 8-byte big-endian index + 1-byte final flag; a chunk
  replayed at another position, or a stream cut short, fails to verify
- An empty payload is one empty final chunk
- Wire form: chunk ciphertexts concatenated in order, each chunk_size + 16
  bytes except the last

Decryption uses one chunk of lookahead to know which chunk is final, raises
AuthenticationError on the first chunk that does not verify and yields
nothing after it.

Author: orpheus497
Version: 1.0.0
"""

import asyncio
import io
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    BinaryIO,
    Dict,
    Iterable,
    Iterator,
    Mapping,
    Optional,
    Tuple,
    Union,
)

import aiofiles

from .constants import (
    MAX_FILE_SIZE,
    MAX_STREAM_CHUNK_SIZE,
    MIN_STREAM_CHUNK_SIZE,
    NONCE_SIZE,
    PARTIAL_SUFFIX,
    STREAM_CHUNK_SIZE,
    STREAM_FINAL_FLAG,
    STREAM_INDEX_SIZE,
    STREAM_NOT_FINAL_FLAG,
    STREAM_QUEUE_SIZE,
    TAG_SIZE,
)
from .encoding import b64decode, b64encode
from .errors import AuthenticationError, EncodingError, ErrorCode
from .keys import RoomKey
from .randomness import RandomSource, resolve

logger = logging.getLogger(__name__)

Source = Union[bytes, bytearray, memoryview, BinaryIO, Iterable[bytes]]

_END = object()


@dataclass(frozen=True)
class StreamHeader:
    """Everything besides the chunk bytes needed to decrypt a stream.

    Attributes:
        nonce: 12-byte base nonce
        chunk_size: Plaintext chunk size used when encrypting
        chunk_count: Number of chunks, when known
    """

    nonce: bytes
    chunk_size: int = STREAM_CHUNK_SIZE
    chunk_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"nonce": b64encode(self.nonce), "chunkSize": self.chunk_size}
        if self.chunk_count is not None:
            data["chunkCount"] = self.chunk_count
        return data

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "StreamHeader":
        """Import a header from its wire form.

        Raises:
            EncodingError: If a field is missing or malformed
        """
        try:
            nonce = b64decode(data["nonce"], "nonce")
            chunk_size = data.get("chunkSize", STREAM_CHUNK_SIZE)
            chunk_count = data.get("chunkCount")
        except (KeyError, TypeError, AttributeError) as e:
            raise EncodingError(ErrorCode.E606_INVALID_CHUNK, "Cannot decode") from e

        if len(nonce) != NONCE_SIZE:
            raise EncodingError(ErrorCode.E606_INVALID_CHUNK, "Cannot decode")
        _check_wire_chunk_size(chunk_size)
        if chunk_count is not None and (not _is_int(chunk_count) or chunk_count < 1):
            raise EncodingError(ErrorCode.E606_INVALID_CHUNK, "Cannot decode")

        return StreamHeader(nonce=nonce, chunk_size=chunk_size, chunk_count=chunk_count)


@dataclass(frozen=True)
class ChunkedEnvelope:
    """An encrypted binary payload: ordered chunk ciphertexts and framing.

    Attributes:
        nonce: 12-byte base nonce
        chunk_size: Plaintext chunk size
        chunks: Chunk ciphertexts in order, tags appended
    """

    nonce: bytes
    chunk_size: int
    chunks: Tuple[bytes, ...] = field(default_factory=tuple)

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    def header(self) -> StreamHeader:
        return StreamHeader(nonce=self.nonce, chunk_size=self.chunk_size, chunk_count=self.chunk_count)

    def to_blob(self) -> bytes:
        """Concatenate the chunk ciphertexts into the stored blob."""
        return b"".join(self.chunks)

    @staticmethod
    def from_blob(
        blob: bytes, nonce: bytes, chunk_size: int = STREAM_CHUNK_SIZE
    ) -> "ChunkedEnvelope":
        """Split a stored blob back into chunk ciphertexts.

        Raises:
            EncodingError: If the blob cannot be framed
        """
        if len(nonce) != NONCE_SIZE:
            raise EncodingError(ErrorCode.E606_INVALID_CHUNK, "Cannot decode")
        chunks = tuple(split_ciphertext(io.BytesIO(blob), chunk_size))
        return ChunkedEnvelope(nonce=nonce, chunk_size=chunk_size, chunks=chunks)


def new_stream_nonce(random_source: Optional[RandomSource] = None) -> bytes:
    """Draw a fresh base nonce for one stream."""
    return resolve(random_source).token_bytes(NONCE_SIZE)


def chunk_nonce(base_nonce: bytes, index: int) -> bytes:
    """Fold a chunk index into the low-order bytes of the base nonce."""
    index_bytes = index.to_bytes(STREAM_INDEX_SIZE, "big")
    offset = NONCE_SIZE - STREAM_INDEX_SIZE
    result = bytearray(base_nonce)
    for i in range(STREAM_INDEX_SIZE):
        result[offset + i] ^= index_bytes[i]
    return bytes(result)


def chunk_associated_data(index: int, final: bool) -> bytes:
    return index.to_bytes(STREAM_INDEX_SIZE, "big") + (
        STREAM_FINAL_FLAG if final else STREAM_NOT_FINAL_FLAG
    )


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def valid_chunk_size(chunk_size: Any) -> bool:
    """Check a chunk size lies within MIN/MAX_STREAM_CHUNK_SIZE."""
    return _is_int(chunk_size) and MIN_STREAM_CHUNK_SIZE <= chunk_size <= MAX_STREAM_CHUNK_SIZE


def _check_chunk_size(chunk_size: int) -> None:
    if not valid_chunk_size(chunk_size):
        raise ValueError(
            f"chunk_size must be an integer between {MIN_STREAM_CHUNK_SIZE} "
            f"and {MAX_STREAM_CHUNK_SIZE}"
        )


def _check_wire_chunk_size(chunk_size: Any) -> None:
    if not valid_chunk_size(chunk_size):
        raise EncodingError(
            ErrorCode.E606_INVALID_CHUNK, "Cannot decode", {"chunk_size": chunk_size}
        )


def _read_full(reader, size: int) -> bytes:
    """Read up to ``size`` bytes, looping over short reads until EOF."""
    parts = []
    remaining = size
    while remaining > 0:
        data = reader.read(remaining)
        if not data:
            break
        parts.append(data)
        remaining -= len(data)
    return b"".join(parts)


def iter_source(source: Source, chunk_size: int) -> Iterator[bytes]:
    """
    Split a binary source into chunk_size pieces, the last one shorter.

    Accepts bytes-like objects, binary file objects (anything with
    ``read``), or an iterable of bytes which is regrouped. Never yields an
    empty piece.
    """
    if isinstance(source, (bytes, bytearray, memoryview)):
        source = io.BytesIO(bytes(source))

    if hasattr(source, "read"):
        while True:
            data = _read_full(source, chunk_size)
            if not data:
                return
            yield data
            if len(data) < chunk_size:
                return

    if isinstance(source, str):
        raise TypeError("Stream source must be binary, not str")

    buffer = bytearray()
    for piece in source:
        buffer.extend(piece)
        while len(buffer) >= chunk_size:
            yield bytes(buffer[:chunk_size])
            del buffer[:chunk_size]
    if buffer:
        yield bytes(buffer)


def split_ciphertext(reader, chunk_size: int) -> Iterator[bytes]:
    """Split a ciphertext blob (file object) into chunk ciphertexts.

    Raises:
        EncodingError: If the chunk size is out of range, or the trailing
            piece is too short to hold a tag
    """
    _check_wire_chunk_size(chunk_size)
    for piece in iter_source(reader, chunk_size + TAG_SIZE):
        if len(piece) < TAG_SIZE:
            raise EncodingError(ErrorCode.E606_INVALID_CHUNK, "Cannot decode")
        yield piece


def _limit_size(chunks: Iterator[bytes], max_size: Optional[int]) -> Iterator[bytes]:
    total = 0
    for chunk in chunks:
        total += len(chunk)
        if max_size is not None and total > max_size:
            raise EncodingError(
                ErrorCode.E601_FILE_TOO_LARGE,
                f"Payload too large: more than {max_size} bytes",
                {"max_size": max_size},
            )
        yield chunk


def _mark_final(pieces: Iterator[Any]) -> Iterator[Tuple[int, Any, bool]]:
    """Pair each piece with its index and whether it is the last one."""
    current = next(pieces, _END)
    if current is _END:
        return
    index = 0
    for upcoming in pieces:
        yield index, current, False
        index += 1
        current = upcoming
    yield index, current, True


def seal_chunk(key: RoomKey, base_nonce: bytes, index: int, data: bytes, final: bool) -> bytes:
    """Encrypt one chunk at its position in the stream."""
    return key.encrypt(chunk_nonce(base_nonce, index), data, chunk_associated_data(index, final))


def open_chunk(key: RoomKey, base_nonce: bytes, index: int, data: bytes, final: bool) -> bytes:
    """Decrypt one chunk, verifying it belongs at ``index``.

    Raises:
        EncodingError: If the chunk is too short to hold a tag
        AuthenticationError: If the chunk does not verify at this position
    """
    if len(data) < TAG_SIZE:
        raise EncodingError(ErrorCode.E606_INVALID_CHUNK, "Cannot decode")
    try:
        return key.decrypt(chunk_nonce(base_nonce, index), data, chunk_associated_data(index, final))
    except AuthenticationError:
        logger.debug(f"Chunk {index} failed to verify")
        raise


def encrypt_chunks(
    source: Source,
    key: RoomKey,
    base_nonce: bytes,
    chunk_size: int = STREAM_CHUNK_SIZE,
    max_size: Optional[int] = MAX_FILE_SIZE,
) -> Iterator[bytes]:
    """
    Lazily encrypt a source chunk by chunk.

    The generator is pull-based: the next chunk of the source is read only
    when the consumer asks for the next ciphertext (plus one chunk of
    lookahead to detect the end). It cannot be restarted.

    Args:
        source: Bytes, binary file object, or iterable of bytes
        key: Room key
        base_nonce: Stream base nonce from new_stream_nonce()
        chunk_size: Plaintext chunk size
        max_size: Reject payloads larger than this (None disables the check)

    Yields:
        Chunk ciphertexts in order
    """
    _check_chunk_size(chunk_size)
    if len(base_nonce) != NONCE_SIZE:
        raise EncodingError(ErrorCode.E606_INVALID_CHUNK, f"Nonce must be {NONCE_SIZE} bytes")

    pieces = _limit_size(iter_source(source, chunk_size), max_size)
    emitted = False
    for index, data, final in _mark_final(pieces):
        emitted = True
        yield seal_chunk(key, base_nonce, index, data, final)

    if not emitted:
        yield seal_chunk(key, base_nonce, 0, b"", True)


def decrypt_chunks(
    chunks: Iterable[bytes],
    key: RoomKey,
    base_nonce: bytes,
    chunk_count: Optional[int] = None,
) -> Iterator[bytes]:
    """
    Lazily decrypt chunk ciphertexts in order.

    Args:
        chunks: Chunk ciphertexts
        key: Room key
        base_nonce: Stream base nonce
        chunk_count: Expected number of chunks, if the sender recorded it

    Yields:
        Verified plaintext chunks

    Raises:
        AuthenticationError: On the first chunk that fails to verify, if the
            stream was truncated or reordered, or the count does not match
        EncodingError: If a chunk cannot be framed
    """
    if len(base_nonce) != NONCE_SIZE:
        raise EncodingError(ErrorCode.E606_INVALID_CHUNK, "Cannot decode")

    seen = 0
    for index, data, final in _mark_final(iter(chunks)):
        seen += 1
        if chunk_count is not None and index >= chunk_count:
            raise AuthenticationError()
        plaintext = open_chunk(key, base_nonce, index, data, final)
        if final and chunk_count is not None and index + 1 != chunk_count:
            raise AuthenticationError()
        yield plaintext

    if seen == 0:
        # Every stream has at least one final chunk
        raise AuthenticationError()


def encrypt_stream(
    source: Source,
    key: RoomKey,
    chunk_size: int = STREAM_CHUNK_SIZE,
    random_source: Optional[RandomSource] = None,
    max_size: Optional[int] = MAX_FILE_SIZE,
) -> ChunkedEnvelope:
    """Encrypt a whole source into a ChunkedEnvelope under a fresh base nonce."""
    base_nonce = new_stream_nonce(random_source)
    chunks = tuple(encrypt_chunks(source, key, base_nonce, chunk_size, max_size))
    logger.debug(f"Encrypted stream: {len(chunks)} chunks")
    return ChunkedEnvelope(nonce=base_nonce, chunk_size=chunk_size, chunks=chunks)


def decrypt_stream(envelope: ChunkedEnvelope, key: RoomKey) -> Iterator[bytes]:
    """Decrypt a ChunkedEnvelope, yielding verified plaintext chunks in order."""
    return decrypt_chunks(envelope.chunks, key, envelope.nonce, envelope.chunk_count)


def encrypt_file(
    path: Path,
    output_path: Path,
    key: RoomKey,
    chunk_size: int = STREAM_CHUNK_SIZE,
    random_source: Optional[RandomSource] = None,
    max_size: Optional[int] = MAX_FILE_SIZE,
) -> StreamHeader:
    """
    Encrypt a file on disk into a ciphertext blob on disk.

    Returns:
        Header (base nonce, chunk size, chunk count) to store with the blob
    """
    base_nonce = new_stream_nonce(random_source)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    count = 0
    with open(path, "rb") as src, open(output_path, "wb") as dst:
        for chunk in encrypt_chunks(src, key, base_nonce, chunk_size, max_size):
            dst.write(chunk)
            count += 1

    logger.info(f"Encrypted file: {path.name} ({count} chunks)")
    return StreamHeader(nonce=base_nonce, chunk_size=chunk_size, chunk_count=count)


def decrypt_file(path: Path, output_path: Path, header: StreamHeader, key: RoomKey) -> int:
    """
    Decrypt a ciphertext blob on disk into a plaintext file.

    Output goes to a temporary ``.part`` file that is renamed into place only
    after the final chunk verified; on failure it is removed.

    Returns:
        Number of plaintext bytes written
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    partial = output_path.with_name(output_path.name + PARTIAL_SUFFIX)

    written = 0
    try:
        with open(path, "rb") as src, open(partial, "wb") as dst:
            chunks = split_ciphertext(src, header.chunk_size)
            for plaintext in decrypt_chunks(chunks, key, header.nonce, header.chunk_count):
                dst.write(plaintext)
                written += len(plaintext)
        os.replace(partial, output_path)
    except BaseException:
        partial.unlink(missing_ok=True)
        raise

    logger.info(f"Decrypted file: {output_path.name} ({written} bytes)")
    return written


async def _aregroup(pieces: AsyncIterable[bytes], chunk_size: int) -> AsyncIterator[bytes]:
    buffer = bytearray()
    async for piece in pieces:
        buffer.extend(piece)
        while len(buffer) >= chunk_size:
            yield bytes(buffer[:chunk_size])
            del buffer[:chunk_size]
    if buffer:
        yield bytes(buffer)


async def _amark_final(pieces: AsyncIterable[Any]) -> AsyncIterator[Tuple[int, Any, bool]]:
    iterator = pieces.__aiter__()
    try:
        current = await iterator.__anext__()
    except StopAsyncIteration:
        return
    index = 0
    async for upcoming in iterator:
        yield index, current, False
        index += 1
        current = upcoming
    yield index, current, True


async def aread_file(path: Path, chunk_size: int = STREAM_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Read a file in chunk_size pieces without blocking the event loop."""
    async with aiofiles.open(path, "rb") as f:
        while True:
            data = await f.read(chunk_size)
            if not data:
                break
            yield data


async def aencrypt_chunks(
    pieces: AsyncIterable[bytes],
    key: RoomKey,
    base_nonce: bytes,
    chunk_size: int = STREAM_CHUNK_SIZE,
    queue_size: int = STREAM_QUEUE_SIZE,
    max_size: Optional[int] = MAX_FILE_SIZE,
    executor=None,
) -> AsyncIterator[bytes]:
    """
    Encrypt an async source through a bounded producer/consumer pipeline.

    A producer task regroups the source into chunks, encrypts each one in an
    executor and puts it on an asyncio.Queue of ``queue_size`` entries. The
    consumer (the caller, typically uploading) pulls from the queue, so the
    first chunk can be uploaded while later ones are still being read.
    Closing the generator early cancels the producer.
    """
    _check_chunk_size(chunk_size)
    if len(base_nonce) != NONCE_SIZE:
        raise EncodingError(ErrorCode.E606_INVALID_CHUNK, f"Nonce must be {NONCE_SIZE} bytes")

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

    async def produce() -> None:
        try:
            total = 0
            emitted = False
            async for index, data, final in _amark_final(_aregroup(pieces, chunk_size)):
                total += len(data)
                if max_size is not None and total > max_size:
                    raise EncodingError(
                        ErrorCode.E601_FILE_TOO_LARGE,
                        f"Payload too large: more than {max_size} bytes",
                        {"max_size": max_size},
                    )
                sealed = await loop.run_in_executor(
                    executor, seal_chunk, key, base_nonce, index, data, final
                )
                emitted = True
                await queue.put(sealed)
            if not emitted:
                await queue.put(seal_chunk(key, base_nonce, 0, b"", True))
            await queue.put(_END)
        except Exception as e:
            await queue.put(e)

    producer = asyncio.create_task(produce())
    try:
        while True:
            item = await queue.get()
            if item is _END:
                break
            if isinstance(item, Exception):
                raise item
            yield item
    finally:
        if not producer.done():
            producer.cancel()
            try:
                await producer
            except asyncio.CancelledError:
                pass


async def adecrypt_chunks(
    chunks: AsyncIterable[bytes],
    key: RoomKey,
    base_nonce: bytes,
    chunk_count: Optional[int] = None,
    executor=None,
) -> AsyncIterator[bytes]:
    """
    Decrypt chunk ciphertexts from an async source (e.g. a download).

    Plaintext is emitted as soon as each chunk and its successor have
    arrived; same failure rules as decrypt_chunks().
    """
    if len(base_nonce) != NONCE_SIZE:
        raise EncodingError(ErrorCode.E606_INVALID_CHUNK, "Cannot decode")

    loop = asyncio.get_running_loop()
    seen = 0
    async for index, data, final in _amark_final(chunks):
        seen += 1
        if chunk_count is not None and index >= chunk_count:
            raise AuthenticationError()
        plaintext = await loop.run_in_executor(
            executor, open_chunk, key, base_nonce, index, data, final
        )
        if final and chunk_count is not None and index + 1 != chunk_count:
            raise AuthenticationError()
        yield plaintext

    if seen == 0:
        raise AuthenticationError()


async def adecrypt_file(path: Path, output_path: Path, header: StreamHeader, key: RoomKey) -> int:
    """Async counterpart of decrypt_file() using aiofiles for disk I/O."""
    _check_wire_chunk_size(header.chunk_size)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    partial = output_path.with_name(output_path.name + PARTIAL_SUFFIX)

    written = 0
    try:
        async with aiofiles.open(partial, "wb") as dst:
            chunks = aread_file(path, header.chunk_size + TAG_SIZE)
            async for plaintext in adecrypt_chunks(chunks, key, header.nonce, header.chunk_count):
                await dst.write(plaintext)
                written += len(plaintext)
        os.replace(partial, output_path)
    except BaseException:
        partial.unlink(missing_ok=True)
        raise

    logger.info(f"Decrypted file: {output_path.name} ({written} bytes)")
    return written

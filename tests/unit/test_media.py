"""
Unit tests for mitthi.media module.

Created by orpheus497

Tests message records, media metadata encryption and failure isolation.
"""

import os

import pytest

from mitthi.crypto import decrypt_message
from mitthi.errors import EncodingError, ErrorCode
from mitthi.media import (
    DEFAULT_MIME_TYPE,
    ContentType,
    MediaMeta,
    MessageRecord,
    aopen_media,
    aseal_media,
    open_media,
    open_record,
    open_records,
    seal_media,
    seal_text,
)

CHUNK = 1024
IMAGE = os.urandom(2 * CHUNK + 17)


def _seal_image(key, **kwargs):
    options = dict(chunk_size=CHUNK)
    options.update(kwargs)
    return seal_media(IMAGE, "holiday.jpg", "image/jpeg", len(IMAGE), "room/abc/1.bin", key, **options)


class TestContentType:
    """Test content type selection."""

    @pytest.mark.parametrize(
        "mime_type,expected",
        [
            ("image/png", ContentType.IMAGE),
            ("IMAGE/JPEG", ContentType.IMAGE),
            ("audio/ogg", ContentType.AUDIO),
            ("video/mp4", ContentType.VIDEO),
            ("application/pdf", ContentType.FILE),
            ("", ContentType.FILE),
            (None, ContentType.FILE),
        ],
    )
    def test_from_mime(self, mime_type, expected):
        """Test MIME types map to content types."""
        assert ContentType.from_mime(mime_type) is expected

    def test_parse_unknown(self):
        """Test unknown content types are a decoding failure."""
        with pytest.raises(EncodingError):
            ContentType.parse("sticker")


class TestTextRecords:
    """Test text message records."""

    def test_seal_and_open(self, room_key):
        """Test a text record opens to its message."""
        record = seal_text("hello", room_key)
        opened = open_record(record, room_key)

        assert record.content_type is ContentType.TEXT
        assert record.media_meta is None
        assert opened.failed is False
        assert opened.content == "hello"

    def test_wire_form(self, room_key):
        """Test a text record survives its wire form with transport fields."""
        data = seal_text("hello", room_key).to_dict()

        assert set(data) == {"ciphertext", "nonce", "contentType"}
        data.update({"id": "msg-1", "timestamp": "2024-05-01T10:00:00Z"})

        opened = open_record(MessageRecord.from_dict(data), room_key)
        assert opened.content == "hello"
        assert opened.record_id == "msg-1"
        assert opened.timestamp == "2024-05-01T10:00:00Z"

    def test_legacy_iv_field(self, room_key):
        """Test records naming the nonce 'iv' and lacking a content type open as text."""
        data = seal_text("hello", room_key).to_dict()
        data["iv"] = data.pop("nonce")
        del data["contentType"]

        assert open_record(MessageRecord.from_dict(data), room_key).content == "hello"

    def test_wrong_key_marks_failed(self, room_key, other_key):
        """Test a record under another key is marked failed, not raised."""
        record = seal_text("secret", room_key)
        opened = open_record(record, other_key)

        assert opened.failed is True
        assert opened.content == ""

    @pytest.mark.parametrize(
        "data",
        [
            {"contentType": "text", "ciphertext": "", "nonce": ""},
            {"ciphertext": "", "nonce": ""},
            {"contentType": "text", "ciphertext": "", "nonce": "AAAAAAAAAAAAAAAA"},
        ],
    )
    def test_empty_text_record_fails(self, room_key, data):
        """Test a text record without ciphertext is not accepted as an empty message."""
        opened = open_records([data], room_key)[0]

        assert opened.failed is True
        assert opened.content == ""


class TestMediaRecords:
    """Test media message records."""

    def test_seal_and_open(self, room_key):
        """Test metadata and payload of a media record decrypt."""
        record, chunks = _seal_image(room_key, caption="look at this")
        uploaded = list(chunks)

        opened = open_record(record, room_key)
        assert record.content_type is ContentType.IMAGE
        assert opened.failed is False
        assert opened.content == "look at this"
        assert opened.file_name == "holiday.jpg"
        assert opened.mime_type == "image/jpeg"
        assert opened.file_size == len(IMAGE)
        assert opened.storage_path == "room/abc/1.bin"
        assert opened.stream_header.chunk_size == CHUNK

        assert b"".join(open_media(record.media_meta, uploaded, room_key)) == IMAGE

    def test_fields_use_separate_nonces(self, room_key, counting_source):
        """Test caption, file name, MIME type and payload each get their own nonce."""
        record, chunks = _seal_image(room_key, random_source=counting_source)
        list(chunks)
        meta = record.media_meta

        nonces = [record.nonce, meta.file_name.nonce, meta.mime_type.nonce, meta.stream_nonce]
        assert len(set(nonces)) == 4
        assert counting_source.calls == 4

    def test_metadata_not_in_clear(self, room_key):
        """Test the file name and MIME type only appear encrypted on the wire."""
        record, _ = _seal_image(room_key)
        wire = repr(record.to_dict())

        assert "holiday" not in wire
        assert "image/jpeg" not in wire
        assert decrypt_message(record.media_meta.file_name, room_key) == "holiday.jpg"

    def test_default_mime_type(self, room_key):
        """Test a missing MIME type becomes application/octet-stream."""
        record, _ = seal_media(b"data", "blob", None, 4, "room/abc/2.bin", room_key, chunk_size=CHUNK)

        assert record.content_type is ContentType.FILE
        assert open_record(record, room_key).mime_type == DEFAULT_MIME_TYPE

    def test_wire_round_trip(self, room_key):
        """Test a media record opens after passing through its wire form."""
        record, chunks = _seal_image(room_key)
        blob = b"".join(chunks)

        data = record.to_dict()
        assert data["mediaMeta"]["fileSize"] == len(IMAGE)
        assert data["mediaMeta"]["storagePath"] == "room/abc/1.bin"

        restored = MessageRecord.from_dict(data)
        assert restored.media_meta == record.media_meta

        stride = CHUNK + 16
        pieces = [blob[i:i + stride] for i in range(0, len(blob), stride)]
        assert b"".join(open_media(restored.media_meta, pieces, room_key)) == IMAGE

    def test_declared_size_limit(self, room_key):
        """Test a declared size over the limit is rejected before encrypting."""
        with pytest.raises(EncodingError) as exc_info:
            _seal_image(room_key, max_size=CHUNK)

        assert exc_info.value.code is ErrorCode.E601_FILE_TOO_LARGE

    def test_negative_size(self, room_key):
        """Test a negative file size is rejected."""
        with pytest.raises(EncodingError):
            seal_media(b"", "x", "text/plain", -1, "p", room_key)

    @pytest.mark.parametrize("file_size", [True, 1.5, "10"])
    def test_non_integer_size(self, room_key, file_size):
        """Test a file size that is not a plain integer is rejected."""
        with pytest.raises(EncodingError) as exc_info:
            seal_media(b"", "x", "text/plain", file_size, "p", room_key)

        assert exc_info.value.code is ErrorCode.E002_INVALID_ARGUMENT

    @pytest.mark.parametrize("file_size", [True, -1, 2.0])
    def test_meta_bad_size(self, room_key, file_size):
        """Test media metadata with a non-integer size is malformed."""
        record, _ = _seal_image(room_key)
        data = record.media_meta.to_dict()
        data["fileSize"] = file_size

        with pytest.raises(EncodingError):
            MediaMeta.from_dict(data)

    def test_media_without_caption(self, room_key):
        """Test a media record with no caption envelope still opens."""
        record, _ = _seal_image(room_key)
        data = record.to_dict()
        data["ciphertext"] = ""
        data["nonce"] = ""

        opened = open_record(MessageRecord.from_dict(data), room_key)
        assert opened.failed is False
        assert opened.content == ""
        assert opened.file_name == "holiday.jpg"

    def test_long_file_name(self, room_key):
        """Test oversized metadata fields are rejected."""
        with pytest.raises(EncodingError):
            seal_media(b"", "x" * 5000, "text/plain", 0, "p", room_key)

    def test_tampered_file_name(self, room_key):
        """Test a tampered file name fails the whole record."""
        record, _ = _seal_image(room_key)
        data = record.to_dict()
        data["mediaMeta"]["fileName"] = seal_text("other.jpg", room_key).to_dict()
        data["mediaMeta"]["fileName"]["nonce"] = data["mediaMeta"]["mimeType"]["nonce"]

        opened = open_record(MessageRecord.from_dict(data), room_key)
        assert opened.failed is True
        assert opened.file_name is None

    def test_media_without_meta(self):
        """Test a non-text record without media metadata is malformed."""
        with pytest.raises(EncodingError):
            MessageRecord.from_dict({"ciphertext": "", "nonce": "", "contentType": "image"})

    @pytest.mark.parametrize("missing", ["storagePath", "fileName", "mimeType", "fileSize", "streamNonce"])
    def test_meta_missing_field(self, room_key, missing):
        """Test media metadata with a missing field is malformed."""
        record, _ = _seal_image(room_key)
        data = record.media_meta.to_dict()
        del data[missing]

        with pytest.raises(EncodingError):
            MediaMeta.from_dict(data)


class TestBatchOpen:
    """Test decrypting a list of records."""

    def test_failure_isolation(self, room_key, other_key):
        """Test one bad record does not prevent the others from opening."""
        records = [
            seal_text("first", room_key).to_dict(),
            seal_text("intruder", other_key).to_dict(),
            {"id": "broken", "ciphertext": "***", "nonce": "***"},
            "not a record",
            seal_text("last", room_key),
        ]

        opened = open_records(records, room_key)

        assert [m.failed for m in opened] == [False, True, True, True, False]
        assert opened[0].content == "first"
        assert opened[2].record_id == "broken"
        assert opened[4].content == "last"


async def _pieces(*parts):
    for part in parts:
        yield part


@pytest.mark.asyncio
class TestAsyncMedia:
    """Test media records sealed and opened through the async pipeline."""

    async def test_async_seal_and_open(self, room_key):
        """Test async sealing produces chunks both open paths accept."""
        record, chunks = aseal_media(
            _pieces(IMAGE[:100], IMAGE[100:]),
            "holiday.jpg",
            "image/jpeg",
            len(IMAGE),
            "room/abc/2.bin",
            room_key,
            chunk_size=CHUNK,
            queue_size=1,
        )
        uploaded = [c async for c in chunks]

        assert len(uploaded) == 3
        assert open_record(record, room_key).file_name == "holiday.jpg"
        assert b"".join(open_media(record.media_meta, uploaded, room_key)) == IMAGE

        streamed = [p async for p in aopen_media(record.media_meta, _pieces(*uploaded), room_key)]
        assert b"".join(streamed) == IMAGE

    async def test_async_seal_checks_size_first(self, room_key):
        """Test a bad declared size fails before any chunk is produced."""
        with pytest.raises(EncodingError):
            aseal_media(_pieces(b"x"), "x", "text/plain", True, "p", room_key)

"""
Mitthi - Integration tests.

Created by orpheus497

End-to-end tests for two clients sharing a room through a transport that
only stores ciphertext.
"""

import json
import os

import pytest

from mitthi import RoomMetadata, RoomSession, generate_room_id, keys, media
from mitthi.config import Config
from mitthi.errors import EncodingError, KeyDerivationError, RoomCodeError
from mitthi.media import ContentType, MessageRecord

ROOM_CODE = "correct-horse-battery"


class FakeTransport:
    """In-memory stand-in for the storage service: JSON in, JSON out."""

    def __init__(self):
        self.rooms = {}
        self.messages = {}
        self.blobs = {}

    def put_room(self, room_id, metadata):
        self.rooms[room_id] = json.dumps(metadata)

    def get_room(self, room_id):
        return json.loads(self.rooms[room_id])

    def post(self, room_id, record):
        data = dict(record)
        data["id"] = f"msg-{len(self.messages.get(room_id, [])) + 1}"
        data["timestamp"] = "2024-05-01T10:00:00Z"
        self.messages.setdefault(room_id, []).append(json.dumps(data))

    def history(self, room_id):
        return [json.loads(m) for m in self.messages.get(room_id, [])]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def small_chunks(temp_dir):
    config = Config(temp_dir / "config.toml", load_env=False)
    config.set("stream", "chunk_size", 1024)
    return config


async def _pieces(*parts):
    for part in parts:
        yield part


def test_room_creation_and_join(transport):
    """Test a second client joins with the room code and stored metadata."""
    alice, metadata = RoomSession.create(ROOM_CODE)
    transport.put_room(alice.room_id, metadata.to_dict())

    room_id = generate_room_id(ROOM_CODE)
    assert room_id == alice.room_id
    assert len(room_id) == 32

    bob = RoomSession.join(ROOM_CODE, transport.get_room(room_id))

    assert bob.key == alice.key
    assert bob.salt == alice.salt


def test_room_code_whitespace_ignored(transport):
    """Test surrounding whitespace does not change the room."""
    alice, metadata = RoomSession.create(ROOM_CODE)
    bob = RoomSession.join(f"  {ROOM_CODE}\n", metadata.to_dict())

    assert bob.room_id == alice.room_id
    assert bob.key == alice.key


def test_wrong_room_code_rejected(transport):
    """Test a wrong room code is rejected before any message is decrypted."""
    _, metadata = RoomSession.create(ROOM_CODE)

    with pytest.raises(RoomCodeError):
        RoomSession.join("wrong-horse-battery", metadata.to_dict())


def test_empty_room_code_rejected():
    """Test an empty room code cannot create or join a room."""
    with pytest.raises(KeyDerivationError):
        RoomSession.create("   ")
    with pytest.raises(KeyDerivationError):
        RoomSession.join("", {"salt": "AAAAAAAAAAAAAAAAAAAAAA=="})


def test_malformed_room_metadata():
    """Test room metadata with a bad salt is rejected."""
    with pytest.raises(EncodingError):
        RoomSession.join(ROOM_CODE, {"salt": "AAAA"})
    with pytest.raises(EncodingError):
        RoomMetadata.from_dict({})


def test_join_without_verifier(transport):
    """Test older rooms without a verifier can still be joined."""
    alice, metadata = RoomSession.create(ROOM_CODE)
    legacy = RoomMetadata(salt=metadata.salt)

    bob = RoomSession.join(ROOM_CODE, legacy.to_dict())
    assert "verifierHash" not in legacy.to_dict()
    assert bob.key == alice.key

    # Without a verifier a wrong code is only noticed when messages fail
    mallory = RoomSession.join("wrong-horse-battery", legacy)
    record = alice.seal_text_record("hello")
    assert mallory.open_record(record.to_dict()).failed is True


def test_text_conversation(transport):
    """Test two clients exchange text messages through the transport."""
    alice, metadata = RoomSession.create(ROOM_CODE)
    transport.put_room(alice.room_id, metadata.to_dict())
    bob = RoomSession.join(ROOM_CODE, transport.get_room(alice.room_id))

    transport.post(alice.room_id, alice.seal_text_record("hi bob").to_dict())
    transport.post(bob.room_id, bob.seal_text_record("hi alice 👋").to_dict())

    stored = transport.history(alice.room_id)
    assert all("bob" not in json.dumps(m) and "alice" not in json.dumps(m) for m in stored)

    for session in (alice, bob):
        opened = session.open_records(stored)
        assert [m.content for m in opened] == ["hi bob", "hi alice 👋"]
        assert [m.record_id for m in opened] == ["msg-1", "msg-2"]
        assert not any(m.failed for m in opened)


def test_media_exchange(transport, small_chunks):
    """Test a file sent by one client is reassembled by the other."""
    alice, metadata = RoomSession.create(ROOM_CODE, small_chunks)
    bob = RoomSession.join(ROOM_CODE, metadata.to_dict(), small_chunks)

    payload = os.urandom(5000)
    storage_path = f"{alice.room_id}/voice-note.bin"
    record, chunks = alice.seal_media_record(
        payload, "voice-note.ogg", "audio/ogg", len(payload), storage_path
    )
    transport.blobs[storage_path] = b"".join(chunks)
    transport.post(alice.room_id, record.to_dict())

    [opened] = bob.open_records(transport.history(alice.room_id))
    assert opened.content_type is ContentType.AUDIO
    assert opened.file_name == "voice-note.ogg"
    assert opened.file_size == len(payload)

    from mitthi.stream import ChunkedEnvelope, decrypt_stream

    header = opened.stream_header
    envelope = ChunkedEnvelope.from_blob(transport.blobs[opened.storage_path], header.nonce, header.chunk_size)
    assert envelope.chunk_count == 5
    assert b"".join(decrypt_stream(envelope, bob.key)) == payload


def test_one_bad_message_in_history(transport):
    """Test an undecryptable message does not hide the rest of the history."""
    alice, metadata = RoomSession.create(ROOM_CODE)
    stranger, _ = RoomSession.create("another-room-code")

    transport.post(alice.room_id, alice.seal_text_record("one").to_dict())
    transport.post(alice.room_id, stranger.seal_text_record("spam").to_dict())
    transport.post(alice.room_id, alice.seal_text_record("two").to_dict())

    opened = alice.open_records(transport.history(alice.room_id))

    assert [m.failed for m in opened] == [False, True, False]
    assert opened[2].content == "two"


def test_configured_text_limit(temp_dir):
    """Test the configured text size limit applies to session records."""
    config = Config(temp_dir / "config.toml", load_env=False)
    config.set("limits", "max_text_message_size", 10)
    session, _ = RoomSession.create(ROOM_CODE, config)

    session.seal_text_record("short")
    with pytest.raises(EncodingError):
        session.seal_text_record("much longer than ten bytes")


def test_media_open_requires_media_record():
    """Test open_media refuses a text record."""
    session, _ = RoomSession.create(ROOM_CODE)

    with pytest.raises(EncodingError):
        session.open_media(session.seal_text_record("hi"), [])
    with pytest.raises(EncodingError):
        session.aopen_media(session.seal_text_record("hi"), _pieces())


def test_join_derives_key_once(monkeypatch):
    """Test joining stretches the room code once for the key, not again for the verifier."""
    _, metadata = RoomSession.create(ROOM_CODE)

    calls = []
    original = keys.stretch

    def counting_stretch(secret, salt):
        calls.append(salt)
        return original(secret, salt)

    monkeypatch.setattr(keys, "stretch", counting_stretch)
    RoomSession.join(ROOM_CODE, metadata.to_dict())

    assert calls == [metadata.salt]

    calls.clear()
    with pytest.raises(RoomCodeError):
        RoomSession.join("wrong-room-code", metadata.to_dict())
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_async_media_exchange(transport, small_chunks):
    """Test the async pipeline carries a file between two clients."""
    small_chunks.set("stream", "queue_size", 1)
    alice, metadata = RoomSession.create(ROOM_CODE, small_chunks)
    bob = RoomSession.join(ROOM_CODE, metadata.to_dict(), small_chunks)

    payload = os.urandom(5000)
    storage_path = f"{alice.room_id}/clip.bin"
    record, chunks = alice.aseal_media_record(
        _pieces(payload[:1500], payload[1500:]), "clip.mp4", "video/mp4", len(payload), storage_path
    )
    uploaded = [c async for c in chunks]
    transport.post(alice.room_id, record.to_dict())

    [opened] = bob.open_records(transport.history(alice.room_id))
    assert opened.content_type is ContentType.VIDEO
    assert opened.file_name == "clip.mp4"
    assert len(uploaded) == 5

    [stored] = transport.history(alice.room_id)
    restored = bob.open_media(MessageRecord.from_dict(stored), uploaded)
    assert b"".join(restored) == payload

    streamed = [p async for p in bob.aopen_media(MessageRecord.from_dict(stored), _pieces(*uploaded))]
    assert b"".join(streamed) == payload


def test_async_seal_uses_configured_queue_size(monkeypatch, small_chunks):
    """Test the session passes stream.queue_size to the async pipeline."""
    small_chunks.set("stream", "queue_size", 7)
    session, _ = RoomSession.create(ROOM_CODE, small_chunks)

    seen = {}

    def fake_pipeline(pieces, key, base_nonce, **kwargs):
        seen.update(kwargs)
        return pieces

    monkeypatch.setattr(media, "aencrypt_chunks", fake_pipeline)
    session.aseal_media_record(_pieces(b"data"), "a.txt", "text/plain", 4, "p")

    assert session.queue_size == 7
    assert seen["queue_size"] == 7
    assert seen["chunk_size"] == 1024
    assert seen["max_size"] == session.max_file_size


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

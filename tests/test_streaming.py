"""Unit tests for MediaStreamer request flow."""

from __future__ import annotations

import io
import logging

import pytest
from media_range.errors import KeyNotFoundError
from media_range.storage import ChunkStream, FilesystemBackend
from media_range.streaming import MediaStreamer, guess_content_type
from media_range.tokens import AccessTokenSigner

from .conftest import BIG, CLIP


@pytest.fixture
def streamer(media_root) -> MediaStreamer:
    return MediaStreamer(
        FilesystemBackend(media_root),
        chunk_size=16,
        catalog_interval=3600,
        signer=AccessTokenSigner("streaming-test-secret-long-enough!!"),
    )


class ShortBackend:
    """Reports a size but delivers only part of it."""

    def __init__(self, total: int, available: int) -> None:
        self.total = total
        self.available = available
        self.size_calls = 0

    def describe(self) -> str:
        return "short"

    def size(self, key: str) -> int:
        self.size_calls += 1
        return self.total

    def read_chunk(self, key: str, offset: int, length: int) -> ChunkStream:
        data = bytes(self.available)[offset : offset + length]
        return ChunkStream(io.BytesIO(data), length, key=key)

    def list_keys(self) -> list[str]:
        return []


class TestMediaStreamer:
    """Test resolution, headers and body delivery."""

    def test_full_object_without_header(self, streamer):
        media = streamer.open("clip.mp4", None)
        assert media.status_code == 200
        assert media.headers == {
            "Accept-Ranges": "bytes",
            "Content-Length": "100",
            "Content-Type": "video/mp4",
        }
        assert b"".join(media.iter_body()) == CLIP

    def test_explicit_range(self, streamer):
        media = streamer.open("clip.mp4", "bytes=10-19")
        assert media.status_code == 206
        assert media.headers["Content-Range"] == "bytes 10-19/100"
        assert media.headers["Content-Length"] == "10"
        assert b"".join(media.iter_body()) == CLIP[10:20]

    def test_open_ended_range_is_chunked(self, streamer):
        media = streamer.open("big.bin", "bytes=1000-")
        assert media.status_code == 206
        assert media.headers["Content-Range"] == "bytes 1000-1015/5000"
        assert b"".join(media.iter_body()) == BIG[1000:1016]

    def test_bound_unranged_serves_first_chunk(self, streamer):
        media = streamer.open("big.bin", None, bound_unranged=True)
        assert media.request.has_range_header is False
        assert media.status_code == 206
        assert media.headers["Content-Range"] == "bytes 0-15/5000"
        assert b"".join(media.iter_body()) == BIG[:16]

    def test_bound_unranged_small_object_is_full(self, media_root):
        streamer = MediaStreamer(FilesystemBackend(media_root), chunk_size=1024)
        media = streamer.open("clip.mp4", None, bound_unranged=True)
        assert media.status_code == 200
        assert "Content-Range" not in media.headers

    def test_empty_object(self, streamer):
        media = streamer.open("empty.webm", "bytes=0-")
        assert media.status_code == 200
        assert media.headers["Content-Length"] == "0"
        assert b"".join(media.iter_body()) == b""

    def test_head(self, streamer):
        assert streamer.head("big.bin") == {
            "Accept-Ranges": "bytes",
            "Content-Length": "5000",
            "Content-Type": "application/octet-stream",
        }

    def test_missing_key(self, streamer):
        with pytest.raises(KeyNotFoundError):
            streamer.open("missing.mp4", None)

    def test_size_is_cached(self):
        backend = ShortBackend(total=50, available=50)
        streamer = MediaStreamer(backend)
        streamer.open("a.bin", None).close()
        streamer.open("a.bin", "bytes=0-9").close()
        assert backend.size_calls == 1

    def test_short_read_is_logged_and_invalidates_size(self, caplog):
        backend = ShortBackend(total=100, available=40)
        streamer = MediaStreamer(backend)
        media = streamer.open("a.bin", "bytes=0-99")
        assert media.headers["Content-Length"] == "100"

        with caplog.at_level(logging.WARNING, logger="media_range.streaming"):
            body = b"".join(media.iter_body())

        assert len(body) == 40
        assert any("short read" in r.message for r in caplog.records)
        streamer.open("a.bin", None).close()
        assert backend.size_calls == 2

    def test_catalog_keys(self, streamer):
        streamer.startup()
        try:
            assert streamer.catalog_keys() == ["big.bin", "clip.mp4", "empty.webm"]
        finally:
            streamer.shutdown()

    def test_tokens(self, streamer):
        tokens = streamer.issue_tokens(["clip.mp4"])
        assert streamer.key_from_token(tokens["clip.mp4"]) == "clip.mp4"


class TestGuessContentType:
    @pytest.mark.parametrize(
        ("key", "expected"),
        [
            ("clip.mp4", "video/mp4"),
            ("song.mp3", "audio/mpeg"),
            ("noext", "application/octet-stream"),
        ],
    )
    def test_guess(self, key, expected):
        assert guess_content_type(key) == expected

"""Tests for range-based media streaming."""
import asyncio
import logging

import anyio
import pytest
from fastapi import status

from app.core.errors import RangeNotSatisfiableError
from app.services.media import STREAM_CHUNK_SIZE, ByteRange, _iter_span, parse_range

VIDEO_BYTES = bytes(range(256)) * 40  # 10240 bytes


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def stored_video(test_client, teacher_token, create_course):
    """Upload a video through the API and return its stored filename."""
    course = create_course(teacher_token)
    response = test_client.post(
        f"/api/courses/{course['_id']}/videos",
        data={"title": "Lesson"},
        files={"video": ("lesson.mp4", VIDEO_BYTES, "video/mp4")},
        headers=bearer(teacher_token),
    )
    assert response.status_code == 201, response.text
    return response.json()["course"]["videos"][0]["url"].rsplit("/", 1)[1]


@pytest.fixture
def stored_pdf(test_client, teacher_token, create_course):
    course = create_course(teacher_token, title="Docs")
    response = test_client.post(
        f"/api/courses/{course['_id']}/documents",
        data={"title": "Handout"},
        files={"document": ("handout.pdf", b"%PDF-1.4\n" + b"x" * 991, "application/pdf")},
        headers=bearer(teacher_token),
    )
    assert response.status_code == 201, response.text
    return response.json()["course"]["documents"][0]["url"].rsplit("/", 1)[1]


class TestParseRange:
    """Unit tests for Range header parsing."""

    def test_no_header(self):
        assert parse_range(None, 100) is None
        assert parse_range("", 100) is None

    def test_closed_range(self):
        assert parse_range("bytes=0-1023", 10240) == ByteRange(0, 1023)

    def test_open_ended_range(self):
        assert parse_range("bytes=100-", 1000) == ByteRange(100, 999)

    def test_suffix_range(self):
        assert parse_range("bytes=-200", 1000) == ByteRange(800, 999)

    def test_suffix_longer_than_file(self):
        assert parse_range("bytes=-5000", 1000) == ByteRange(0, 999)

    def test_single_byte(self):
        byte_range = parse_range("bytes=0-0", 1000)

        assert byte_range.length == 1

    @pytest.mark.parametrize("header", [
        "bytes=1000-",
        "bytes=0-1000",
        "bytes=500-100",
        "bytes=-0",
        "bytes=-",
        "bytes=0-1,5-9",
        "items=0-10",
        "bytes=abc-def",
    ])
    def test_unsatisfiable(self, header):
        with pytest.raises(RangeNotSatisfiableError) as exc_info:
            parse_range(header, 1000)

        assert exc_info.value.headers == {"Content-Range": "bytes */1000"}


class TestVideoStreaming:
    """Test GET /api/stream/{filename}."""

    def test_full_stream_matches_upload(self, test_client, teacher_token, stored_video):
        response = test_client.get(f"/api/stream/{stored_video}", headers=bearer(teacher_token))

        assert response.status_code == status.HTTP_200_OK
        assert response.content == VIDEO_BYTES
        assert response.headers["Content-Length"] == str(len(VIDEO_BYTES))
        assert response.headers["Accept-Ranges"] == "bytes"
        assert response.headers["Content-Type"] == "video/mp4"
        assert response.headers["Content-Disposition"].startswith("inline")

    def test_partial_content(self, test_client, teacher_token, stored_video):
        response = test_client.get(
            f"/api/stream/{stored_video}",
            headers={**bearer(teacher_token), "Range": "bytes=0-1023"},
        )

        assert response.status_code == status.HTTP_206_PARTIAL_CONTENT
        assert response.content == VIDEO_BYTES[:1024]
        assert response.headers["Content-Range"] == f"bytes 0-1023/{len(VIDEO_BYTES)}"
        assert response.headers["Content-Length"] == "1024"

    def test_open_ended_range(self, test_client, teacher_token, stored_video):
        response = test_client.get(
            f"/api/stream/{stored_video}",
            headers={**bearer(teacher_token), "Range": "bytes=10000-"},
        )

        assert response.status_code == status.HTTP_206_PARTIAL_CONTENT
        assert response.content == VIDEO_BYTES[10000:]
        assert response.headers["Content-Range"] == "bytes 10000-10239/10240"

    def test_range_past_end(self, test_client, teacher_token, stored_video):
        response = test_client.get(
            f"/api/stream/{stored_video}",
            headers={**bearer(teacher_token), "Range": "bytes=20000-"},
        )

        assert response.status_code == status.HTTP_416_REQUESTED_RANGE_NOT_SATISFIABLE
        assert response.headers["Content-Range"] == "bytes */10240"
        assert response.content == b""

    def test_query_token(self, test_client, teacher_token, stored_video):
        """Media elements cannot set headers, so the token may ride in the URL."""
        response = test_client.get(
            f"/api/stream/{stored_video}?token={teacher_token}",
            headers={"Range": "bytes=0-99"},
        )

        assert response.status_code == status.HTTP_206_PARTIAL_CONTENT
        assert len(response.content) == 100

    def test_requires_token(self, test_client, stored_video):
        response = test_client.get(f"/api/stream/{stored_video}")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_rejects_bad_token_in_query(self, test_client, stored_video):
        response = test_client.get(f"/api/stream/{stored_video}?token=forged")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["code"] == "INVALID_TOKEN"

    def test_missing_file(self, test_client, teacher_token, upload_root):
        response = test_client.get("/api/stream/missing.mp4", headers=bearer(teacher_token))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert str(upload_root) not in response.text

    @pytest.mark.parametrize("filename", [
        "..%5Cwin.ini",
        "evil%00.mp4",
        "clip%20name.mp4",
        "..",
    ])
    def test_unsafe_filenames(self, test_client, teacher_token, filename):
        response = test_client.get(f"/api/stream/{filename}", headers=bearer(teacher_token))

        assert response.status_code in (status.HTTP_400_BAD_REQUEST, status.HTTP_404_NOT_FOUND)
        assert "Content-Range" not in response.headers


class TestPdfDelivery:
    """Test GET /api/pdf/{filename}."""

    def test_pdf_is_attachment(self, test_client, teacher_token, stored_pdf):
        response = test_client.get(f"/api/pdf/{stored_pdf}", headers=bearer(teacher_token))

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["Content-Type"] == "application/pdf"
        assert response.headers["Content-Disposition"].startswith("attachment")
        assert response.content.startswith(b"%PDF-1.4")
        assert len(response.content) == 1000

    def test_pdf_range(self, test_client, teacher_token, stored_pdf):
        response = test_client.get(
            f"/api/pdf/{stored_pdf}",
            headers={**bearer(teacher_token), "Range": "bytes=-100"},
        )

        assert response.status_code == status.HTTP_206_PARTIAL_CONTENT
        assert response.headers["Content-Range"] == "bytes 900-999/1000"

    def test_pdf_route_requires_pdf_suffix(self, test_client, teacher_token):
        response = test_client.get("/api/pdf/notes.docx", headers=bearer(teacher_token))

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "INVALID_FILENAME"

    def test_pdf_rate_limit(self, test_client, teacher_token, stored_pdf, mock_redis):
        mock_redis.incr.return_value = 31
        mock_redis.ttl.return_value = 600

        response = test_client.get(f"/api/pdf/{stored_pdf}", headers=bearer(teacher_token))

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.headers["Retry-After"] == "600"
        assert response.json()["details"]["retryAfter"] == 600

    def test_redis_outage_does_not_block(self, test_client, teacher_token, stored_pdf, mock_redis):
        import redis

        mock_redis.incr.side_effect = redis.ConnectionError("down")

        response = test_client.get(f"/api/pdf/{stored_pdf}", headers=bearer(teacher_token))

        assert response.status_code == status.HTTP_200_OK


class TestUploadsRoute:
    """Test GET /uploads/{kind}/{filename}."""

    def test_serves_course_image(self, test_client, teacher_token, create_course):
        course = create_course(teacher_token)

        response = test_client.get(course["image"], headers=bearer(teacher_token))

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["Content-Type"] == "image/png"
        assert response.content.startswith(b"\x89PNG")

    def test_unknown_kind(self, test_client, teacher_token):
        response = test_client.get("/uploads/secrets/key.pem", headers=bearer(teacher_token))

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "BAD_KIND"

    def test_requires_token(self, test_client, teacher_token, create_course):
        course = create_course(teacher_token)

        response = test_client.get(course["image"])

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class RecordingHandle:
    """Async file stand-in that records whether it was closed."""

    def __init__(self, data, error_at=None, stall_at=None):
        self.data = data
        self.pos = 0
        self.reads = 0
        self.closed = False
        self.error_at = error_at
        self.stall_at = stall_at

    async def seek(self, offset):
        self.pos = offset

    async def read(self, size):
        self.reads += 1
        if self.reads == self.error_at:
            raise OSError("device unplugged")
        if self.reads == self.stall_at:
            await anyio.sleep(60)
        chunk = self.data[self.pos:self.pos + size]
        self.pos += len(chunk)
        return chunk

    async def aclose(self):
        # Checkpoints before closing, as anyio's thread-backed file does.
        await anyio.sleep(0)
        self.closed = True


class TestStreamTeardown:
    """The file handle is closed however the stream ends."""

    def test_read_error_after_headers_closes_handle(self):
        handle = RecordingHandle(b"x" * (STREAM_CHUNK_SIZE * 3), error_at=2)

        async def consume():
            return [chunk async for chunk in _iter_span(handle, 0, len(handle.data), "a.mp4")]

        with pytest.raises(OSError):
            asyncio.run(consume())

        assert handle.closed

    def test_client_disconnect_closes_handle(self):
        handle = RecordingHandle(b"x" * (STREAM_CHUNK_SIZE * 3), stall_at=2)
        received = []

        async def consume():
            async for chunk in _iter_span(handle, 0, len(handle.data), "a.mp4"):
                received.append(chunk)

        async def run():
            async with anyio.create_task_group() as tg:
                tg.start_soon(consume)
                while not received:
                    await anyio.sleep(0.01)
                tg.cancel_scope.cancel()

        asyncio.run(run())

        assert len(received) == 1
        assert handle.closed

    def test_complete_stream_closes_handle(self):
        handle = RecordingHandle(b"abcdef")

        async def consume():
            return b"".join([chunk async for chunk in _iter_span(handle, 2, 3, "a.mp4")])

        assert asyncio.run(consume()) == b"cde"
        assert handle.closed


class TestFileAccessErrors:

    def test_unreadable_file_is_500_without_path(self, test_client, teacher_token, stored_video, upload_root, monkeypatch):
        async def denied(path, *args, **kwargs):
            raise PermissionError(13, "Permission denied", str(path))

        monkeypatch.setattr("app.services.media.anyio.open_file", denied)

        response = test_client.get(f"/api/stream/{stored_video}", headers=bearer(teacher_token))

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["code"] == "FILE_ACCESS_ERROR"
        assert str(upload_root) not in response.text
        assert stored_video not in response.text


class TestLoggingEnabled:
    """Uploads and streaming still work with INFO and DEBUG records emitted."""

    @pytest.mark.parametrize("level", [logging.INFO, logging.DEBUG])
    def test_upload_then_stream(self, test_client, teacher_token, create_course, upload_root, caplog, level):
        caplog.set_level(level)

        course = create_course(teacher_token)
        name = course["image"].rsplit("/", 1)[1]
        streamed = test_client.get(course["image"], headers=bearer(teacher_token))
        missing = test_client.get("/api/stream/nothere.mp4", headers=bearer(teacher_token))

        assert streamed.status_code == status.HTTP_200_OK
        assert missing.status_code == status.HTTP_404_NOT_FOUND
        assert sorted(p.name for p in (upload_root / "images").iterdir()) == [name]
        assert any(getattr(r, "stored_name", None) == name for r in caplog.records)

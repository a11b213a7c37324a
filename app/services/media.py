"""Byte-range media delivery.

Serves stored files with HTTP range support so ``<video>`` players can
seek and PDF viewers can load pages incrementally:

- no ``Range`` header: 200 with the whole file
- ``Range: bytes=start-end``: 206 with exactly that span
- unsatisfiable or malformed ranges: 416 with ``Content-Range: bytes */size``

The file is opened before the response starts so "not found" and
permission problems still produce a proper error status. Once headers are
sent, a read error is logged and re-raised so the server drops the
connection instead of appending a second response.
"""
import re
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional

import anyio
from fastapi.responses import StreamingResponse

from app.core.errors import NotFoundError, RangeNotSatisfiableError, ServerError, ValidationError
from app.core.logging import get_logger
from app.infrastructure.storage import content_type_for, resolve_media_path

logger = get_logger(__name__)

STREAM_CHUNK_SIZE = 64 * 1024
RANGE_PATTERN = re.compile(r"^bytes=(\d*)-(\d*)$")


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1


def parse_range(header: Optional[str], size: int) -> Optional[ByteRange]:
    """Parse a single-range ``Range`` header against a file of ``size`` bytes.

    ``bytes=500-`` runs to the end of the file and ``bytes=-500`` is the
    last 500 bytes. Returns None when no header was sent.

    Raises:
        RangeNotSatisfiableError: malformed header, several ranges, or
            ``start >= size`` / ``end >= size`` / ``start > end``
    """
    if header is None or not header.strip():
        return None

    match = RANGE_PATTERN.match(header.strip().replace(" ", ""))
    if not match or match.group(1) == match.group(2) == "":
        raise RangeNotSatisfiableError(size)

    first, last = match.groups()
    if first == "":
        suffix = int(last)
        if suffix == 0 or size == 0:
            raise RangeNotSatisfiableError(size)
        return ByteRange(max(size - suffix, 0), size - 1)

    start = int(first)
    end = int(last) if last else size - 1
    if start >= size or end >= size or start > end:
        raise RangeNotSatisfiableError(size)
    return ByteRange(start, end)


async def _iter_span(handle, start: int, length: int, filename: str) -> AsyncIterator[bytes]:
    remaining = length
    try:
        await handle.seek(start)
        while remaining > 0:
            chunk = await handle.read(min(STREAM_CHUNK_SIZE, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk
    except OSError as e:
        logger.error(f"Stream read failed: {e}", extra={"stored_name": filename}, exc_info=True)
        raise
    finally:
        # A client disconnect cancels this generator; the close must still run.
        with anyio.CancelScope(shield=True):
            await handle.aclose()
        if remaining > 0:
            logger.debug(f"Stream ended with {remaining} byte(s) unsent", extra={"stored_name": filename})


async def serve_file(
    kind: str,
    filename: str,
    range_header: Optional[str],
    *,
    disposition: str = "inline",
    cache_control: str = "private, max-age=3600",
) -> StreamingResponse:
    """Build a full (200) or partial (206) streaming response for a stored file."""
    path = resolve_media_path(kind, filename)
    file_path = anyio.Path(path)

    try:
        stat = await file_path.stat()
    except (FileNotFoundError, NotADirectoryError):
        logger.info("Media file not found", extra={"kind": kind, "stored_name": filename})
        raise NotFoundError("File not found")
    except OSError as e:
        logger.error(f"Cannot stat media file: {e}", extra={"kind": kind, "stored_name": filename})
        raise ServerError("Error accessing file", code="FILE_ACCESS_ERROR")

    if not await file_path.is_file():
        raise NotFoundError("File not found")

    size = stat.st_size
    byte_range = parse_range(range_header, size)

    try:
        handle = await anyio.open_file(path, "rb")
    except FileNotFoundError:
        raise NotFoundError("File not found")
    except OSError as e:
        logger.error(f"Cannot open media file: {e}", extra={"kind": kind, "stored_name": filename})
        raise ServerError("Error accessing file", code="FILE_ACCESS_ERROR")

    headers = {
        "Accept-Ranges": "bytes",
        "Content-Disposition": f'{disposition}; filename="{filename}"',
        "Cache-Control": cache_control,
        "X-Content-Type-Options": "nosniff",
    }

    if byte_range is None:
        start, length, status_code = 0, size, 200
    else:
        start, length, status_code = byte_range.start, byte_range.length, 206
        headers["Content-Range"] = f"bytes {byte_range.start}-{byte_range.end}/{size}"
    headers["Content-Length"] = str(length)

    logger.debug(
        f"Serving {kind}/{filename} ({status_code})",
        extra={"kind": kind, "stored_name": filename, "byte_range": headers.get("Content-Range")},
    )
    return StreamingResponse(
        _iter_span(handle, start, length, filename),
        status_code=status_code,
        headers=headers,
        media_type=content_type_for(Path(filename)),
    )


def require_suffix(filename: str, suffix: str) -> None:
    if not filename.lower().endswith(suffix):
        raise ValidationError("Invalid filename format", code="INVALID_FILENAME")

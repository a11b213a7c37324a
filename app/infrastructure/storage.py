"""File-system storage for uploaded course media.

Layout::

    <UPLOAD_DIR>/images/<random>.<ext>
    <UPLOAD_DIR>/videos/<random>.<ext>
    <UPLOAD_DIR>/documents/<random>.<ext>

Stored names are 32 random hex characters plus the validated extension;
nothing from the client's filename is kept. Public URLs have the form
``/uploads/<kind>/<name>``.
"""
import asyncio
import functools
import mimetypes
import os
import re
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from fastapi import UploadFile

from app.core.config import settings
from app.core.errors import ForbiddenError, PayloadTooLargeError, ValidationError
from app.core.logging import get_logger

logger = get_logger(__name__)

KINDS = ("images", "videos", "documents")
CHUNK_SIZE = 1024 * 1024
MB = 1024 * 1024

SAFE_FILENAME = re.compile(r"^[A-Za-z0-9_\-.]+$")

VIDEO_TYPES: Dict[str, Tuple[str, ...]] = {
    "video/mp4": (".mp4",),
    "video/webm": (".webm",),
    "video/ogg": (".ogg", ".ogv"),
    "video/quicktime": (".mov",),
}
IMAGE_TYPES: Dict[str, Tuple[str, ...]] = {
    "image/jpeg": (".jpg", ".jpeg"),
    "image/png": (".png",),
    "image/gif": (".gif",),
    "image/webp": (".webp",),
}
DOCUMENT_TYPES: Dict[str, Tuple[str, ...]] = {
    "application/pdf": (".pdf",),
    "application/msword": (".doc",),
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": (".docx",),
}

CONTENT_TYPES: Dict[str, str] = {
    ext: mime
    for table in (VIDEO_TYPES, IMAGE_TYPES, DOCUMENT_TYPES)
    for mime, extensions in table.items()
    for ext in extensions
}


@dataclass(frozen=True)
class UploadPolicy:
    kind: str
    allowed: Dict[str, Tuple[str, ...]]
    limit_setting: str

    @property
    def max_bytes(self) -> int:
        return getattr(settings, self.limit_setting) * MB


FIELD_POLICIES: Dict[str, UploadPolicy] = {
    "video": UploadPolicy("videos", VIDEO_TYPES, "max_video_mb"),
    "thumbnail": UploadPolicy("images", IMAGE_TYPES, "max_image_mb"),
    "image": UploadPolicy("images", IMAGE_TYPES, "max_image_mb"),
    "document": UploadPolicy("documents", DOCUMENT_TYPES, "max_document_mb"),
}


@dataclass(frozen=True)
class StoredFile:
    kind: str
    filename: str
    path: Path
    size: int

    @property
    def url(self) -> str:
        return f"/uploads/{self.kind}/{self.filename}"

    @property
    def extension(self) -> str:
        return self.path.suffix.lstrip(".")


def ensure_upload_dirs() -> None:
    for kind in KINDS:
        directory = settings.upload_root / kind
        directory.mkdir(parents=True, exist_ok=True, mode=0o755)


def validate_upload(field: str, upload: UploadFile) -> Tuple[UploadPolicy, str]:
    """Check the declared MIME type and the filename extension for ``field``.

    Returns the field policy and the normalized extension (with dot).
    """
    policy = FIELD_POLICIES.get(field)
    if policy is None:
        raise ValidationError(f"Unexpected upload field '{field}'", code="BAD_FIELD")

    mime = (upload.content_type or "").split(";")[0].strip().lower()
    if mime not in policy.allowed:
        raise ValidationError(
            f"Invalid file type for '{field}'. Allowed: {', '.join(policy.allowed)}",
            code="BAD_MIME",
            details={"field": field, "contentType": mime},
        )

    extension = Path(upload.filename or "").suffix.lower()
    if extension not in policy.allowed[mime]:
        raise ValidationError(
            f"File extension does not match {mime}",
            code="BAD_EXTENSION",
            details={"field": field, "allowed": list(policy.allowed[mime])},
        )
    return policy, extension


def _copy_limited(source, target: Path, max_bytes: int) -> int:
    """Copy ``source`` to ``target`` in chunks, refusing more than ``max_bytes``."""
    if hasattr(source, "seek"):
        source.seek(0)
    written = 0
    with target.open("xb") as out:
        while True:
            chunk = source.read(CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > max_bytes:
                raise PayloadTooLargeError(
                    f"File is too large. Maximum size is {max_bytes // MB}MB",
                    details={"maxBytes": max_bytes},
                )
            out.write(chunk)
    return written


async def save_upload(field: str, upload: UploadFile) -> StoredFile:
    """Validate and persist one uploaded file under a random name.

    The copy runs in the default executor so large bodies do not block the
    event loop. The target is removed on any failure before it is returned.
    """
    policy, extension = validate_upload(field, upload)
    directory = settings.upload_root / policy.kind
    directory.mkdir(parents=True, exist_ok=True)

    filename = f"{secrets.token_hex(16)}{extension}"
    target = directory / filename

    loop = asyncio.get_running_loop()
    copy = functools.partial(_copy_limited, upload.file, target, policy.max_bytes)
    try:
        size = await loop.run_in_executor(None, copy)
        logger.info(
            f"Stored {field} upload",
            extra={"kind": policy.kind, "stored_name": filename, "size_bytes": size},
        )
        return StoredFile(kind=policy.kind, filename=filename, path=target, size=size)
    except BaseException:
        _unlink(target)
        raise


def _unlink(path: Path) -> bool:
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.error(f"Failed to remove stored file: {e}", extra={"stored_name": path.name})
        return False


def local_path_for_url(url: Optional[str]) -> Optional[Path]:
    """Map ``/uploads/<kind>/<name>`` to its file path; None for anything else."""
    if not url or not url.startswith("/uploads/"):
        return None
    parts = url[len("/uploads/"):].split("/")
    if len(parts) != 2 or parts[0] not in KINDS or not is_safe_filename(parts[1]):
        return None
    return settings.upload_root / parts[0] / parts[1]


def remove_stored_urls(urls: List[Optional[str]]) -> int:
    """Unlink every local upload referenced by ``urls``; returns the count removed."""
    removed = 0
    for url in urls:
        path = local_path_for_url(url)
        if path is not None and _unlink(path):
            removed += 1
    return removed


class UploadBatch:
    """Tracks files written during one request and unlinks them on failure.

    Example:
        >>> with UploadBatch() as batch:
        ...     video = await batch.save("video", video_file)
        ...     await courses.append_video(...)
        # any exception inside the block removes ``video`` from disk
    """

    def __init__(self):
        self.files: List[StoredFile] = []

    async def save(self, field: str, upload: UploadFile) -> StoredFile:
        stored = await save_upload(field, upload)
        self.files.append(stored)
        return stored

    def discard(self) -> None:
        for stored in self.files:
            _unlink(stored.path)
        if self.files:
            logger.info(f"Removed {len(self.files)} orphaned upload(s)")
        self.files = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.discard()
        return False


def is_safe_filename(filename: str) -> bool:
    return bool(SAFE_FILENAME.match(filename)) and filename not in (".", "..")


def resolve_media_path(kind: str, filename: str) -> Path:
    """Resolve a requested media file without touching the file system.

    Raises:
        ValidationError: filename contains characters outside ``[A-Za-z0-9_-.]``
        ForbiddenError: the resolved path escapes the kind's directory
    """
    if kind not in KINDS:
        raise ValidationError("Unknown media kind", code="BAD_KIND")
    if not is_safe_filename(filename):
        raise ValidationError("Invalid filename", code="INVALID_FILENAME")

    root = settings.upload_root / kind
    candidate = Path(os.path.normpath(root / filename))
    if candidate.parent != root:
        logger.warning("Path traversal attempt rejected", extra={"kind": kind})
        raise ForbiddenError("Access denied", code="PATH_FORBIDDEN")
    return candidate


def content_type_for(path: Path) -> str:
    extension = path.suffix.lower()
    if extension in CONTENT_TYPES:
        return CONTENT_TYPES[extension]
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"

"""Authenticated media delivery with HTTP range support.

``<video>`` and ``<embed>`` elements cannot send an Authorization header,
so every route here also accepts the JWT as ``?token=``.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header

from app.core.auth import get_current_user
from app.domain.user import User
from app.infrastructure.redis import pdf_limiter
from app.services.media import require_suffix, serve_file

router = APIRouter(tags=["media"])


@router.get("/api/stream/{filename}")
async def stream_video(
    filename: str,
    range: Optional[str] = Header(None),
    current_user: User = Depends(get_current_user),
):
    """Stream an uploaded video, honoring ``Range: bytes=start-end``.

    Example:
        GET /api/stream/3f2a...c1.mp4?token=<jwt>
        Range: bytes=0-1023
        -> 206, Content-Range: bytes 0-1023/<size>
    """
    return await serve_file("videos", filename, range, disposition="inline")


@router.get("/api/pdf/{filename}", dependencies=[Depends(pdf_limiter)])
async def stream_pdf(
    filename: str,
    range: Optional[str] = Header(None),
    current_user: User = Depends(get_current_user),
):
    """Deliver an uploaded PDF as an attachment (rate limited per client)."""
    require_suffix(filename, ".pdf")
    return await serve_file(
        "documents",
        filename,
        range,
        disposition="attachment",
        cache_control="private, no-cache",
    )


@router.get("/uploads/{kind}/{filename}")
async def stream_upload(
    kind: str,
    filename: str,
    range: Optional[str] = Header(None),
    current_user: User = Depends(get_current_user),
):
    return await serve_file(kind, filename, range)

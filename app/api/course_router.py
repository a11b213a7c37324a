"""Course routes: CRUD plus video/document uploads and removals.

Uploaded files are written through an ``UploadBatch`` so any failure after
a file reached disk (bad course, missing title, database error) removes
what was written.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.auth import get_current_user, require_role
from app.core.errors import ValidationError
from app.core.logging import get_logger, LogTimer
from app.domain.course import Course, CourseContentUpdate, CourseMutationResponse, CourseStats
from app.domain.user import Role, User
from app.infrastructure.mongo import get_db
from app.infrastructure.storage import UploadBatch
from app.services import courses

logger = get_logger(__name__)
router = APIRouter(prefix="/api/courses", tags=["courses"])


def _has_file(upload: Optional[UploadFile]) -> bool:
    return upload is not None and bool(upload.filename)


@router.get("", response_model=List[Course])
async def list_courses(
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    """List all courses."""
    return await courses.list_courses(db)


@router.post("", response_model=Course, status_code=status.HTTP_201_CREATED)
async def create_course(
    title: str = Form(...),
    duration: float = Form(...),
    price: float = Form(...),
    description: str = Form(...),
    instructor: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    current_user: User = Depends(require_role([Role.TEACHER.value])),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    """Create a course with its banner image (multipart form).

    Requires: teacher role
    """
    if not _has_file(image):
        raise ValidationError("Image file is required", code="IMAGE_REQUIRED")

    with LogTimer(logger, "course_create", user_id=current_user.id):
        with UploadBatch() as batch:
            stored = await batch.save("image", image)
            return await courses.create_course(
                db,
                current_user,
                title=title,
                instructor=instructor,
                duration=duration,
                price=price,
                description=description,
                image=stored.url,
            )


@router.get("/stats", response_model=CourseStats)
async def get_course_stats(
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    return await courses.course_stats(db)


@router.get("/{title}", response_model=Course)
async def get_course(
    title: str,
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    """Fetch one course, with its content, by title."""
    return await courses.get_course_by_title(db, title)


@router.delete("/{course_id}")
async def delete_course(
    course_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    """Delete a course and its stored files. Requires: owner or admin"""
    await courses.delete_course(db, current_user, course_id)
    return {"success": True, "message": "Course deleted successfully"}


@router.patch("/{course_id}/content", response_model=Course)
async def update_course_content(
    course_id: str,
    update: CourseContentUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    return await courses.update_content(db, current_user, course_id, update)


@router.post(
    "/{course_id}/videos",
    response_model=CourseMutationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_video(
    course_id: str,
    title: Optional[str] = Form(None),
    description: str = Form(""),
    duration: float = Form(0),
    video_url: Optional[str] = Form(None, alias="videoUrl"),
    thumbnail_url: Optional[str] = Form(None, alias="thumbnailUrl"),
    video: Optional[UploadFile] = File(None),
    thumbnail: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    """Attach a video (uploaded file or external URL) and optional thumbnail.

    Requires: owner or admin
    """
    with UploadBatch() as batch, LogTimer(logger, "video_upload", course_id=course_id):
        course = await courses.get_course_doc(db, course_id)
        courses.ensure_can_modify(course, current_user)

        if not title or not title.strip():
            raise ValidationError("Video title is required", code="TITLE_REQUIRED")

        if _has_file(video):
            url = (await batch.save("video", video)).url
        elif video_url:
            if not courses.is_http_url(video_url):
                raise ValidationError("Invalid video URL format", code="INVALID_URL")
            url = video_url
        else:
            raise ValidationError("Video file or URL is required", code="VIDEO_REQUIRED")

        if _has_file(thumbnail):
            thumbnail_ref = (await batch.save("thumbnail", thumbnail)).url
        elif courses.is_http_url(thumbnail_url):
            thumbnail_ref = thumbnail_url
        else:
            thumbnail_ref = course.get("image", "")

        updated = await courses.append_video(
            db,
            course,
            title=title.strip(),
            url=url,
            description=description.strip(),
            thumbnail=thumbnail_ref,
            duration=max(duration, 0),
        )

    return CourseMutationResponse(message="Video added successfully", course=updated)


@router.delete("/{course_id}/videos/{video_index}", response_model=CourseMutationResponse)
async def remove_video(
    course_id: str,
    video_index: int,
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    """Remove the video at ``video_index`` (position in the list, 0-based)."""
    updated = await courses.remove_video(db, current_user, course_id, video_index)
    return CourseMutationResponse(message="Video deleted successfully", course=updated)


@router.post(
    "/{course_id}/documents",
    response_model=CourseMutationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_document(
    course_id: str,
    title: Optional[str] = Form(None),
    description: str = Form(""),
    url: Optional[str] = Form(None),
    document: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    """Attach a document (PDF/Word upload or external URL). Requires: owner or admin"""
    with UploadBatch() as batch, LogTimer(logger, "document_upload", course_id=course_id):
        course = await courses.get_course_doc(db, course_id)
        courses.ensure_can_modify(course, current_user)

        if not title or not title.strip():
            raise ValidationError("Document title is required", code="TITLE_REQUIRED")

        if _has_file(document):
            stored = await batch.save("document", document)
            doc_url, doc_type = stored.url, stored.extension
        elif url:
            if not courses.is_http_url(url):
                raise ValidationError("Invalid document URL format", code="INVALID_URL")
            doc_url, doc_type = url, "pdf"
        else:
            raise ValidationError("Document file or URL is required", code="DOCUMENT_REQUIRED")

        updated = await courses.append_document(
            db,
            course,
            title=title.strip(),
            url=doc_url,
            description=description.strip(),
            doc_type=doc_type,
        )

    return CourseMutationResponse(message="Document added successfully", course=updated)


@router.delete("/{course_id}/documents/{document_index}", response_model=CourseMutationResponse)
async def remove_document(
    course_id: str,
    document_index: int,
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    updated = await courses.remove_document(db, current_user, course_id, document_index)
    return CourseMutationResponse(message="Document deleted successfully", course=updated)

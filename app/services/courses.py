"""Course aggregate operations.

A course owns two ordered child lists, ``videos`` and ``documents``. Only
the course owner (matched by user id) or an admin may change them.

Ordering: each append reserves its ``order`` from a per-course counter
(``video_seq`` / ``document_seq``) with an atomic ``$inc`` and then
``$push``es the item, so concurrent appends never lose an item or share an
``order``. Removals ``$pull`` the item by its id and never renumber, so
``order`` is an insertion sequence that may contain gaps.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from app.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.domain.course import Course, CourseContentUpdate, CourseStats
from app.domain.user import Role, User
from app.infrastructure.mongo import parse_object_id
from app.infrastructure.storage import remove_stored_urls

logger = get_logger(__name__)

CHILD_LISTS = {
    "videos": ("video_seq", "Video"),
    "documents": ("document_seq", "Document"),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def is_http_url(value: Optional[str]) -> bool:
    if not value:
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def can_modify(course: Dict[str, Any], user: User) -> bool:
    if user.role == Role.ADMIN.value:
        return True
    owner_id = course.get("owner_id")
    return owner_id is not None and str(owner_id) == user.id


def ensure_can_modify(course: Dict[str, Any], user: User) -> None:
    if not can_modify(course, user):
        logger.warning(
            "Course modification refused",
            extra={"user_id": user.id, "course_id": str(course["_id"])},
        )
        raise ForbiddenError("Not authorized to update this course")


async def list_courses(db: AsyncIOMotorDatabase) -> List[Course]:
    docs = await db.courses.find().sort("created_at", -1).to_list(length=None)
    return [Course.from_mongo(doc) for doc in docs]


async def get_course_by_title(db: AsyncIOMotorDatabase, title: str) -> Course:
    doc = await db.courses.find_one({"title": title})
    if not doc:
        raise NotFoundError("Course not found")
    return Course.from_mongo(doc)


async def get_course_doc(db: AsyncIOMotorDatabase, course_id: str) -> Dict[str, Any]:
    oid = parse_object_id(course_id, "course ID")
    doc = await db.courses.find_one({"_id": oid})
    if not doc:
        raise NotFoundError("Course not found")
    return doc


async def create_course(
    db: AsyncIOMotorDatabase,
    owner: User,
    *,
    title: str,
    instructor: Optional[str],
    duration: float,
    price: float,
    description: str,
    image: str,
) -> Course:
    """Insert a new course owned by ``owner``.

    ``instructor`` is the display name shown to students; it defaults to
    the owner's name and plays no part in authorization.
    """
    title = title.strip()
    description = description.strip()
    errors = []
    if not title:
        errors.append({"field": "title", "message": "Title is required"})
    if not description:
        errors.append({"field": "description", "message": "Description is required"})
    if duration < 1:
        errors.append({"field": "duration", "message": "Duration must be at least 1 hour"})
    if price < 0:
        errors.append({"field": "price", "message": "Price cannot be negative"})
    if errors:
        raise ValidationError("Validation error", details=errors)

    if await db.courses.find_one({"title": title}):
        raise ConflictError("A course with this title already exists", code="COURSE_EXISTS")

    now = _now()
    doc = {
        "title": title,
        "instructor": (instructor or "").strip() or owner.name,
        "owner_id": owner.id,
        "duration": duration,
        "price": price,
        "description": description,
        "detailed_description": "",
        "syllabus": "",
        "image": image,
        "enrolled_count": 0,
        "videos": [],
        "documents": [],
        "video_seq": 0,
        "document_seq": 0,
        "created_at": now,
        "updated_at": now,
    }
    result = await db.courses.insert_one(doc)
    doc["_id"] = result.inserted_id

    logger.info("Course created", extra={"course_id": str(result.inserted_id), "user_id": owner.id})
    return Course.from_mongo(doc)


async def delete_course(db: AsyncIOMotorDatabase, user: User, course_id: str) -> None:
    """Delete a course and unlink every local file it references."""
    doc = await get_course_doc(db, course_id)
    ensure_can_modify(doc, user)

    result = await db.courses.delete_one({"_id": doc["_id"]})
    if result.deleted_count == 0:
        raise NotFoundError("Course not found")

    urls = [doc.get("image")]
    for video in doc.get("videos", []):
        urls.extend([video.get("url"), video.get("thumbnail")])
    urls.extend(d.get("url") for d in doc.get("documents", []))
    removed = remove_stored_urls(list(dict.fromkeys(urls)))

    logger.info(
        f"Course deleted, {removed} file(s) removed",
        extra={"course_id": course_id, "user_id": user.id},
    )


async def update_content(
    db: AsyncIOMotorDatabase, user: User, course_id: str, update: CourseContentUpdate
) -> Course:
    doc = await get_course_doc(db, course_id)
    ensure_can_modify(doc, user)

    changes: Dict[str, Any] = {"updated_at": _now()}
    if update.detailed_description:
        changes["detailed_description"] = update.detailed_description
    if update.syllabus:
        changes["syllabus"] = update.syllabus

    updated = await db.courses.find_one_and_update(
        {"_id": doc["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise NotFoundError("Course not found")
    return Course.from_mongo(updated)


async def _append_item(
    db: AsyncIOMotorDatabase, course: Dict[str, Any], list_name: str, item: Dict[str, Any]
) -> Course:
    counter, label = CHILD_LISTS[list_name]

    reserved = await db.courses.find_one_and_update(
        {"_id": course["_id"]},
        {"$inc": {counter: 1}},
        projection={counter: 1},
        return_document=ReturnDocument.AFTER,
    )
    if not reserved:
        raise NotFoundError("Course not found")

    item = {"id": str(ObjectId()), **item, "order": reserved[counter]}
    updated = await db.courses.find_one_and_update(
        {"_id": course["_id"]},
        {"$push": {list_name: item}, "$set": {"updated_at": _now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFoundError("Course not found")

    logger.info(
        f"{label} appended with order {item['order']}",
        extra={"course_id": str(course["_id"])},
    )
    return Course.from_mongo(updated)


async def append_video(
    db: AsyncIOMotorDatabase,
    course: Dict[str, Any],
    *,
    title: str,
    url: str,
    description: str = "",
    thumbnail: str = "",
    duration: float = 0,
) -> Course:
    """Append a video to an already authorized course document."""
    return await _append_item(db, course, "videos", {
        "title": title,
        "url": url,
        "description": description,
        "thumbnail": thumbnail or course.get("image", ""),
        "duration": duration,
    })


async def append_document(
    db: AsyncIOMotorDatabase,
    course: Dict[str, Any],
    *,
    title: str,
    url: str,
    description: str = "",
    doc_type: str = "pdf",
) -> Course:
    """Append a document to an already authorized course document."""
    return await _append_item(db, course, "documents", {
        "title": title,
        "url": url,
        "description": description,
        "type": doc_type,
    })


async def _remove_item(
    db: AsyncIOMotorDatabase, user: User, course_id: str, list_name: str, index: int
) -> Course:
    _, label = CHILD_LISTS[list_name]
    if index < 0:
        raise ValidationError(f"Invalid {label.lower()} index", code="INVALID_INDEX")

    doc = await get_course_doc(db, course_id)
    ensure_can_modify(doc, user)

    items = doc.get(list_name) or []
    if index >= len(items):
        raise NotFoundError(f"{label} not found")
    item = items[index]

    result = await db.courses.update_one(
        {"_id": doc["_id"], f"{list_name}.id": item["id"]},
        {"$pull": {list_name: {"id": item["id"]}}, "$set": {"updated_at": _now()}},
    )
    if result.modified_count == 0:
        raise NotFoundError(f"{label} not found")

    urls = [item.get("url")]
    if item.get("thumbnail") and item.get("thumbnail") != doc.get("image"):
        urls.append(item.get("thumbnail"))
    remove_stored_urls(urls)

    logger.info(f"{label} removed at index {index}", extra={"course_id": course_id, "user_id": user.id})
    return Course.from_mongo(await get_course_doc(db, course_id))


async def remove_video(db: AsyncIOMotorDatabase, user: User, course_id: str, index: int) -> Course:
    return await _remove_item(db, user, course_id, "videos", index)


async def remove_document(db: AsyncIOMotorDatabase, user: User, course_id: str, index: int) -> Course:
    return await _remove_item(db, user, course_id, "documents", index)


async def course_stats(db: AsyncIOMotorDatabase) -> CourseStats:
    pipeline = [
        {
            "$group": {
                "_id": None,
                "total_courses": {"$sum": 1},
                "average_price": {"$avg": "$price"},
                "average_duration": {"$avg": "$duration"},
                "total_enrolled": {"$sum": "$enrolled_count"},
            }
        }
    ]
    rows = await db.courses.aggregate(pipeline).to_list(length=1)
    if not rows:
        return CourseStats(total_courses=0, average_price=0, average_duration=0, total_enrolled=0)

    row = rows[0]
    return CourseStats(
        total_courses=row["total_courses"],
        average_price=round(row.get("average_price") or 0, 2),
        average_duration=round(row.get("average_duration") or 0, 2),
        total_enrolled=row.get("total_enrolled") or 0,
    )

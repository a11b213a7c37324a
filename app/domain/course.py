"""Domain models for courses and their video/document content."""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class VideoItem(BaseModel):
    """A video attached to a course.

    ``url`` is either a local upload path (``/uploads/videos/<name>``) or an
    external http(s) URL. ``order`` is the insertion sequence and may have
    gaps after removals.
    """
    id: str
    title: str
    url: str
    description: str = ""
    thumbnail: str = ""
    duration: float = 0
    order: int = 0


class DocumentItem(BaseModel):
    """A document attached to a course."""
    id: str
    title: str
    url: str
    description: str = ""
    type: str = "pdf"
    order: int = 0


class Course(BaseModel):
    """Course aggregate root as exposed by the API."""
    id: str = Field(alias="_id")
    title: str
    instructor: str
    owner_id: Optional[str] = Field(default=None, alias="ownerId")
    duration: float
    price: float
    description: str
    detailed_description: str = Field(default="", alias="detailedDescription")
    syllabus: str = ""
    image: str
    enrolled_count: int = Field(default=0, alias="enrolledCount")
    videos: List[VideoItem] = Field(default_factory=list)
    documents: List[DocumentItem] = Field(default_factory=list)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    class Config:
        populate_by_name = True

    @classmethod
    def from_mongo(cls, doc: Dict[str, Any]) -> "Course":
        return cls(
            id=str(doc["_id"]),
            title=doc["title"],
            instructor=doc["instructor"],
            owner_id=str(doc["owner_id"]) if doc.get("owner_id") else None,
            duration=doc["duration"],
            price=doc["price"],
            description=doc["description"],
            detailed_description=doc.get("detailed_description", ""),
            syllabus=doc.get("syllabus", ""),
            image=doc["image"],
            enrolled_count=doc.get("enrolled_count", 0),
            videos=[VideoItem(**v) for v in doc.get("videos", [])],
            documents=[DocumentItem(**d) for d in doc.get("documents", [])],
            created_at=doc.get("created_at"),
            updated_at=doc.get("updated_at"),
        )


class CourseContentUpdate(BaseModel):
    detailed_description: Optional[str] = Field(default=None, alias="detailedDescription")
    syllabus: Optional[str] = None

    class Config:
        populate_by_name = True


class CourseStats(BaseModel):
    total_courses: int = Field(alias="totalCourses")
    average_price: float = Field(alias="averagePrice")
    average_duration: float = Field(alias="averageDuration")
    total_enrolled: int = Field(alias="totalEnrolled")

    class Config:
        populate_by_name = True


class CourseMutationResponse(BaseModel):
    success: bool = True
    message: str
    course: Course

"""MongoDB access through the async Motor driver.

A single client is created lazily and shared by all requests. Route
handlers receive the database through the ``get_db`` dependency so tests
can swap in an in-memory database with ``app.dependency_overrides``.
"""
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING

from app.core.config import settings
from app.core.errors import ValidationError
from app.core.logging import get_logger

logger = get_logger(__name__)

_client: Optional[AsyncIOMotorClient] = None


def get_client() -> AsyncIOMotorClient:
    global _client
    if _client is None:
        logger.info("Initializing MongoDB client")
        _client = AsyncIOMotorClient(settings.mongo_uri, serverSelectionTimeoutMS=5000)
    return _client


async def get_db() -> AsyncIOMotorDatabase:
    """Database dependency."""
    return get_client()[settings.mongo_db]


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await db.users.create_index([("email", ASCENDING)], unique=True)
    await db.users.create_index([("username", ASCENDING)], unique=True)
    await db.courses.create_index([("title", ASCENDING)])
    logger.info("MongoDB indexes ensured")


def close_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None


def parse_object_id(value: str, label: str = "ID") -> ObjectId:
    """Convert a path parameter to an ObjectId or raise a 400."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label} format", code="INVALID_ID")

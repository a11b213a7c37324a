"""User account operations: signup, login, profile and password updates."""
from datetime import datetime, timezone

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from app.core.auth import hash_password, verify_password
from app.core.errors import AuthError, ConflictError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.domain.user import (
    PasswordChangeRequest,
    ProfileUpdateRequest,
    Role,
    SignupRequest,
    User,
)

logger = get_logger(__name__)


async def create_user(db: AsyncIOMotorDatabase, req: SignupRequest) -> User:
    """Register a new account; email and username must both be unused."""
    email = req.email.lower().strip()
    username = req.username.strip()

    existing = await db.users.find_one({"$or": [{"email": email}, {"username": username}]})
    if existing:
        raise ConflictError(
            "User already exists",
            code="USER_EXISTS",
            details="Email or username is already registered",
        )

    doc = {
        "name": (req.name or "").strip() or username,
        "email": email,
        "username": username,
        "phone": req.phone.strip(),
        "password_hash": hash_password(req.password),
        "role": req.role.value,
        "grade": req.grade.strip() if req.grade else None,
        "enrolled_courses": [],
        "created_at": datetime.now(timezone.utc),
    }

    try:
        result = await db.users.insert_one(doc)
    except DuplicateKeyError:
        raise ConflictError("User already exists", code="USER_EXISTS")

    doc["_id"] = result.inserted_id
    logger.info("User registered", extra={"user_id": str(result.inserted_id)})
    return User.from_mongo(doc)


async def authenticate_user(db: AsyncIOMotorDatabase, email: str, password: str) -> User:
    """Check credentials; the same error is raised for unknown email and bad password."""
    doc = await db.users.find_one({"email": email.lower().strip()})

    if not doc or not verify_password(password, doc.get("password_hash", "")):
        logger.warning("Failed login attempt")
        raise AuthError("Invalid email or password", code="INVALID_CREDENTIALS")

    logger.info("User authenticated successfully", extra={"user_id": str(doc["_id"])})
    return User.from_mongo(doc)


async def update_profile(db: AsyncIOMotorDatabase, user: User, req: ProfileUpdateRequest) -> User:
    """Update name, email and phone; grade is only kept for students."""
    oid = ObjectId(user.id)
    doc = await db.users.find_one({"_id": oid})
    if not doc:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")

    email = req.email.lower().strip()
    if email != doc["email"]:
        if await db.users.find_one({"email": email, "_id": {"$ne": oid}}):
            raise ConflictError(
                "Email already in use",
                code="EMAIL_IN_USE",
                details="Please use a different email address",
            )

    updates = {"name": req.name.strip(), "email": email, "phone": req.phone.strip()}
    if doc.get("role") == Role.STUDENT.value and req.grade:
        updates["grade"] = req.grade.strip()

    try:
        await db.users.update_one({"_id": oid}, {"$set": updates})
    except DuplicateKeyError:
        raise ConflictError("Email already in use", code="EMAIL_IN_USE")

    doc.update(updates)
    logger.info("Profile updated", extra={"user_id": user.id})
    return User.from_mongo(doc)


async def change_password(db: AsyncIOMotorDatabase, user: User, req: PasswordChangeRequest) -> None:
    oid = ObjectId(user.id)
    doc = await db.users.find_one({"_id": oid})
    if not doc:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")

    if not verify_password(req.current_password, doc.get("password_hash", "")):
        raise ValidationError("Current password is incorrect", code="WRONG_PASSWORD")

    await db.users.update_one({"_id": oid}, {"$set": {"password_hash": hash_password(req.new_password)}})
    logger.info("Password changed", extra={"user_id": user.id})

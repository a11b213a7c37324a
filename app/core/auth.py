"""Authentication and authorization for the course platform API.

Implements JWT-based authentication with role-based access control (RBAC).
Tokens are accepted from the ``Authorization: Bearer`` header and, for
media elements that cannot set headers, from a ``token`` query parameter.
"""
import secrets
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Tuple

import bcrypt
import jwt
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.config import settings, DEFAULT_JWT_SECRET
from app.core.errors import AuthError, ForbiddenError
from app.core.logging import get_logger
from app.domain.user import TokenClaims, User
from app.infrastructure.mongo import get_db

logger = get_logger(__name__)

# JWT Configuration from settings
SECRET_KEY = settings.jwt_secret_key
ALGORITHM = settings.jwt_algorithm
ACCESS_TOKEN_EXPIRE_MINUTES = settings.access_token_expire_minutes

# Production security check
if settings.environment == "production":
    if SECRET_KEY == DEFAULT_JWT_SECRET:
        raise ValueError("JWT_SECRET must be set to a secure value in production!")
    if len(SECRET_KEY) < 32:
        logger.warning("JWT_SECRET should be at least 32 characters for security")


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed JWT for ``user``.

    Args:
        user: User object
        expires_delta: Token lifetime (default: ACCESS_TOKEN_EXPIRE_MINUTES)

    Returns:
        Encoded JWT carrying ``id``, ``role``, ``email``, ``name`` and a
        unique ``jti``
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    now = datetime.now(timezone.utc)
    expire = now + expires_delta

    payload = {
        "id": user.id,
        "role": user.role,
        "email": user.email,
        "name": user.name,
        "iat": now,
        "exp": expire,
        "jti": secrets.token_hex(16),
    }

    token = jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)

    logger.info(
        "Access token issued",
        extra={"user_id": user.id},
    )

    return token


def decode_token(token: str, verify_exp: bool = True) -> TokenClaims:
    """Decode and validate a JWT.

    Args:
        token: JWT token string
        verify_exp: Set to False to accept expired tokens (refresh flow)

    Returns:
        TokenClaims with the user's identity

    Raises:
        AuthError: TOKEN_EXPIRED or INVALID_TOKEN
    """
    try:
        payload = jwt.decode(
            token,
            SECRET_KEY,
            algorithms=[ALGORITHM],
            options={"verify_exp": verify_exp, "require": ["exp", "iat", "jti"]},
        )
        return TokenClaims(
            id=payload["id"],
            role=payload["role"],
            email=payload["email"],
            name=payload["name"],
            jti=payload["jti"],
            iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

    except jwt.ExpiredSignatureError:
        logger.info("Expired token presented")
        raise AuthError("Token expired", code="TOKEN_EXPIRED")

    except (jwt.InvalidTokenError, KeyError, ValueError, TypeError) as e:
        logger.warning(f"Invalid token presented: {type(e).__name__}")
        raise AuthError("Invalid token", code="INVALID_TOKEN")


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


def extract_token(request: Request) -> Tuple[Optional[str], str]:
    """Return the token and where it came from ("header", "query" or "none")."""
    token = bearer_token(request)
    if token:
        return token, "header"
    token = request.query_params.get("token")
    if token:
        # Query-string tokens end up in proxy and browser logs.
        logger.debug("Token supplied in query string", extra={"path": request.url.path})
        return token, "query"
    return None, "none"


async def load_user(db: AsyncIOMotorDatabase, user_id: str) -> User:
    """Resolve the user named by a token's ``id`` claim."""
    try:
        oid = ObjectId(user_id)
    except (InvalidId, TypeError):
        raise AuthError("Invalid token", code="INVALID_TOKEN")

    doc = await db.users.find_one({"_id": oid})
    if not doc:
        raise AuthError("User not found", code="USER_NOT_FOUND")
    return User.from_mongo(doc)


async def get_current_user(request: Request, db: AsyncIOMotorDatabase = Depends(get_db)) -> User:
    """FastAPI dependency returning the authenticated user.

    Accepts the token from the Authorization header or the ``token``
    query parameter, validates it, and re-reads the user from MongoDB.

    Example:
        >>> @router.get("/protected")
        >>> async def protected_route(user: User = Depends(get_current_user)):
        ...     return {"user": user.email}
    """
    token, source = extract_token(request)
    if not token:
        raise AuthError("Authentication required", code="NO_TOKEN")

    claims = decode_token(token)
    user = await load_user(db, claims.id)
    request.state.user_id = user.id

    logger.debug(f"User authenticated via {source}", extra={"user_id": user.id})
    return user


def require_role(allowed_roles: Iterable[str]):
    """Dependency factory for role-based access control.

    Example:
        >>> @router.post("/courses")
        >>> async def create(user: User = Depends(require_role(["teacher"]))):
        ...     ...
    """
    allowed = tuple(allowed_roles)

    async def role_checker(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            logger.warning(
                f"Insufficient permissions for role {user.role}",
                extra={"user_id": user.id},
            )
            raise ForbiddenError(f"Insufficient permissions. Required role: {', '.join(allowed)}")
        return user

    return role_checker

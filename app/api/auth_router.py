"""Authentication routes: signup, login, token verification and refresh, profile."""
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.auth import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    bearer_token,
    create_access_token,
    decode_token,
    get_current_user,
    load_user,
)
from app.core.errors import AuthError, ValidationError
from app.core.logging import get_logger, LogTimer
from app.domain.user import (
    AuthResponse,
    LoginRequest,
    PasswordChangeRequest,
    ProfileUpdateRequest,
    SignupRequest,
    User,
    VerifyRequest,
)
from app.infrastructure.mongo import get_db
from app.infrastructure.redis import auth_limiter
from app.services import users

logger = get_logger(__name__)
router = APIRouter(prefix="/api/auth", tags=["auth"])

EXPIRES_IN_SECONDS = ACCESS_TOKEN_EXPIRE_MINUTES * 60


def _auth_response(user: User, message: Optional[str] = None) -> AuthResponse:
    return AuthResponse(
        message=message,
        token=create_access_token(user),
        expires_in=EXPIRES_IN_SECONDS,
        user=user,
    )


@router.post(
    "/signup",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_limiter)],
)
async def signup(req: SignupRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    """Create an account and return a token with the new user.

    Example:
        POST /api/auth/signup
        {"email": "ada@academy.org", "password": "Secure#Pass1", "username": "ada",
         "phone": "0600000000", "role": "teacher"}
    """
    with LogTimer(logger, "user_signup"):
        user = await users.create_user(db, req)
        return _auth_response(user, "User created successfully")


@router.post("/login", response_model=AuthResponse, dependencies=[Depends(auth_limiter)])
async def login(req: LoginRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    """Authenticate user and return JWT token."""
    with LogTimer(logger, "user_authentication"):
        user = await users.authenticate_user(db, req.email, req.password)
        return _auth_response(user)


@router.post("/verify")
async def verify(req: VerifyRequest):
    """Check a token passed in the request body."""
    if not req.token:
        raise ValidationError("Token is required", code="NO_TOKEN")

    claims = decode_token(req.token)
    return {
        "valid": True,
        "message": "Token is valid",
        "userId": claims.id,
        "claims": claims.model_dump(mode="json"),
    }


@router.post("/refresh-token", response_model=AuthResponse)
async def refresh_token(request: Request, db: AsyncIOMotorDatabase = Depends(get_db)):
    """Issue a new token for a (possibly expired) but correctly signed token.

    There is no revocation list: any token with a valid signature whose user
    still exists can be refreshed.
    """
    token = bearer_token(request)
    if not token:
        raise AuthError("No token provided", code="NO_TOKEN")

    claims = decode_token(token, verify_exp=False)
    user = await load_user(db, claims.id)

    logger.info("Token refreshed", extra={"user_id": user.id})
    return _auth_response(user)


@router.put("/profile", response_model=AuthResponse)
async def update_profile(
    req: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    """Update name, email, phone (and grade for students); returns a fresh token."""
    user = await users.update_profile(db, current_user, req)
    return _auth_response(user, "Profile updated successfully")


@router.post("/change-password")
async def change_password(
    req: PasswordChangeRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    await users.change_password(db, current_user, req)
    return {"message": "Password updated successfully"}


@router.get("/me", response_model=User)
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current authenticated user info."""
    return current_user

"""Domain models for users and authentication."""
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, EmailStr, Field, field_validator

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&#])[A-Za-z\d@$!%*?&#]{8,}$")
PASSWORD_RULES = (
    "Password must be at least 8 characters long and include uppercase, "
    "lowercase, number, and special character (@$!%*?&#)"
)


class Role(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"


def check_password_strength(value: str) -> str:
    if not PASSWORD_PATTERN.match(value):
        raise ValueError(PASSWORD_RULES)
    return value


class User(BaseModel):
    """Public view of a user account.

    Attributes:
        id: Stable user identifier (Mongo ``_id`` as hex)
        name: Display name (defaults to the username)
        email: Lower-cased, unique email address
        username: Unique login handle
        phone: Contact number
        role: student, teacher or admin
        grade: School grade, students only
        created_at: Account creation timestamp
        enrolled_courses: Ids of courses the user is enrolled in
    """
    id: str
    name: str
    email: EmailStr
    username: str
    phone: str = ""
    role: Role = Role.STUDENT
    grade: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    enrolled_courses: List[str] = Field(default_factory=list, alias="enrolledCourses")

    class Config:
        populate_by_name = True
        use_enum_values = True

    @classmethod
    def from_mongo(cls, doc: Dict[str, Any]) -> "User":
        return cls(
            id=str(doc["_id"]),
            name=doc.get("name") or doc["username"],
            email=doc["email"],
            username=doc["username"],
            phone=doc.get("phone", ""),
            role=doc.get("role", Role.STUDENT.value),
            grade=doc.get("grade"),
            created_at=doc.get("created_at"),
            enrolled_courses=[str(c) for c in doc.get("enrolled_courses", [])],
        )


class TokenClaims(BaseModel):
    """JWT payload."""
    id: str
    role: str
    email: str
    name: str
    jti: str
    iat: datetime
    exp: datetime


class SignupRequest(BaseModel):
    name: Optional[str] = None
    email: EmailStr
    password: str
    username: str = Field(min_length=3)
    phone: str = Field(min_length=1)
    role: Role
    grade: Optional[str] = None

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return check_password_strength(value)

    @field_validator("role", mode="before")
    @classmethod
    def lower_role(cls, value):
        return value.lower() if isinstance(value, str) else value

    @field_validator("username", "phone")
    @classmethod
    def strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class LoginRequest(BaseModel):
    """Login credentials request."""
    email: EmailStr
    password: str

    class Config:
        json_schema_extra = {
            "example": {
                "email": "teacher@academy.org",
                "password": "Secure#Pass1"
            }
        }


class ProfileUpdateRequest(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    phone: str = Field(min_length=1)
    grade: Optional[str] = None


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(alias="currentPassword")
    new_password: str = Field(alias="newPassword")

    class Config:
        populate_by_name = True

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return check_password_strength(value)


class VerifyRequest(BaseModel):
    token: Optional[str] = None


class AuthResponse(BaseModel):
    """Token plus the authenticated user, as returned by signup/login/profile."""
    message: Optional[str] = None
    token: str
    expires_in: int = Field(alias="expiresIn")
    user: User

    class Config:
        populate_by_name = True

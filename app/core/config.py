"""Core application configuration and settings.

Handles environment variables, storage locations, and application settings.
"""
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings


# Load environment variables
ROOT = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=ROOT / ".env")
load_dotenv()

DEFAULT_JWT_SECRET = "development-secret-key-change-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # MongoDB
    mongo_uri: str = Field(default="mongodb://localhost:27017", alias="MONGO_URI")
    mongo_db: str = Field(default="coursehub", alias="MONGO_DB")

    # Redis (rate limiting)
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_password: Optional[str] = Field(default=None, alias="REDIS_PASSWORD")
    redis_db: int = Field(default=0, alias="REDIS_DB")

    # JWT Authentication
    jwt_secret_key: str = Field(default=DEFAULT_JWT_SECRET, alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    bcrypt_rounds: int = Field(default=12, alias="BCRYPT_ROUNDS")

    # Uploads
    upload_dir: str = Field(default=str(ROOT / "uploads"), alias="UPLOAD_DIR")
    max_video_mb: int = Field(default=500, alias="MAX_VIDEO_MB")
    max_image_mb: int = Field(default=10, alias="MAX_IMAGE_MB")
    max_document_mb: int = Field(default=100, alias="MAX_DOCUMENT_MB")

    # Rate limiting (requests per window, window in seconds)
    api_rate_limit: int = Field(default=100, alias="API_RATE_LIMIT")
    api_rate_window: int = Field(default=15 * 60, alias="API_RATE_WINDOW")
    auth_rate_limit: int = Field(default=10, alias="AUTH_RATE_LIMIT")
    auth_rate_window: int = Field(default=60 * 60, alias="AUTH_RATE_WINDOW")
    pdf_rate_limit: int = Field(default=30, alias="PDF_RATE_LIMIT")
    pdf_rate_window: int = Field(default=15 * 60, alias="PDF_RATE_WINDOW")

    # Timeouts
    request_timeout_seconds: float = Field(default=30.0, alias="REQUEST_TIMEOUT_SECONDS")
    upload_timeout_seconds: float = Field(default=600.0, alias="UPLOAD_TIMEOUT_SECONDS")

    # Application Settings
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    port: int = Field(default=5000, alias="PORT")
    frontend_url: str = Field(default="http://localhost:3000", alias="FRONTEND_URL")

    class Config:
        case_sensitive = False
        env_file = ".env"
        populate_by_name = True
        extra = "ignore"

    @property
    def upload_root(self) -> Path:
        return Path(self.upload_dir).resolve()

    def validate_required_settings(self):
        """Validate that required settings are present."""
        if self.environment == "production":
            if self.jwt_secret_key == DEFAULT_JWT_SECRET:
                raise ValueError("JWT_SECRET must be set to a secure value in production.")
            if len(self.jwt_secret_key) < 32:
                raise ValueError("JWT_SECRET must be at least 32 characters in production.")
        if not self.mongo_uri:
            raise ValueError("MONGO_URI not set. Define MONGO_URI in .env.")


# Global settings instance
settings = Settings()

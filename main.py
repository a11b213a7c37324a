"""FastAPI application entrypoint for the CourseHub e-learning API.

Serves authentication, course management with media uploads, and
range-based streaming of the uploaded media.
"""
import sys

# Ensure UTF-8 encoding
if sys.stdout:
    sys.stdout.reconfigure(encoding='utf-8')

import asyncio
import re
import time
import uuid

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.api.auth_router import router as auth_router
from app.api.course_router import router as course_router
from app.api.media_router import router as media_router
from app.core.config import settings
from app.core.errors import register_exception_handlers, unexpected_error_response
from app.core.logging import get_logger, setup_logging
from app.infrastructure.mongo import close_client, ensure_indexes, get_db
from app.infrastructure.redis import api_limiter, close_redis_client, get_redis_client
from app.infrastructure.storage import ensure_upload_dirs

# Initialize structured logging
log_format = settings.environment == "production"
setup_logging(level=settings.log_level, json_format=log_format)
logger = get_logger(__name__)

settings.validate_required_settings()

# Application metadata
APP_VERSION = "1.0.0"
APP_NAME = "CourseHub API"

UPLOAD_ROUTE = re.compile(r"^/api/courses(/[^/]+/(videos|documents))?/?$")

app = FastAPI(
    title=APP_NAME,
    description="Courses, uploads and authenticated media streaming",
    version=APP_VERSION,
    docs_url="/docs" if settings.environment != "production" else None,  # Disable in prod
    redoc_url="/redoc" if settings.environment != "production" else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Range"],
    expose_headers=["Content-Length", "Content-Range", "Content-Disposition", "Accept-Ranges"],
)

register_exception_handlers(app)


def timeout_for(request: Request) -> float:
    if request.method == "POST" and UPLOAD_ROUTE.match(request.url.path):
        return settings.upload_timeout_seconds
    return settings.request_timeout_seconds


@app.middleware("http")
async def enforce_timeout(request: Request, call_next):
    """Bound the time until response headers are ready; bodies may stream longer."""
    timeout = timeout_for(request)
    try:
        return await asyncio.wait_for(call_next(request), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(
            f"Request timed out after {timeout}s",
            extra={"method": request.method, "path": request.url.path},
        )
        return JSONResponse(
            status_code=504,
            content={"message": "Request timeout", "code": "TIMEOUT"},
        )


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    # Media is embedded by the frontend origin.
    response.headers["Cross-Origin-Resource-Policy"] = "cross-origin"
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Middleware to log all requests with timing and status code."""
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    logger.info(
        f"Request started: {request.method} {request.url.path}",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client": request.client.host if request.client else None,
        }
    )

    try:
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000

        logger.info(
            f"Request completed: {request.method} {request.url.path}",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            }
        )

        # Add request ID to response headers
        response.headers["X-Request-ID"] = request_id
        return response

    except Exception as e:
        duration_ms = (time.time() - start_time) * 1000
        logger.error(
            f"Request failed: {request.method} {request.url.path}",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "duration_ms": round(duration_ms, 2),
                "error_type": type(e).__name__,
            },
            exc_info=True
        )
        return unexpected_error_response(e, request_id)


@app.on_event("startup")
async def startup_event():
    """Run on application startup."""
    logger.info("Application starting up", extra={"operation": "startup"})
    ensure_upload_dirs()
    try:
        await ensure_indexes(await get_db())
    except Exception as e:
        logger.error(f"Could not ensure MongoDB indexes: {e}")


@app.on_event("shutdown")
async def shutdown_event():
    """Run on application shutdown."""
    logger.info("Application shutting down")
    close_client()
    await close_redis_client()


api_dependencies = [Depends(api_limiter)]
app.include_router(auth_router, dependencies=api_dependencies)
app.include_router(course_router, dependencies=api_dependencies)
app.include_router(media_router, dependencies=api_dependencies)


@app.get("/")
def root():
    """Root endpoint with basic service info."""
    return {
        "service": APP_NAME,
        "version": APP_VERSION,
        "status": "running",
        "environment": settings.environment
    }


@app.get("/health")
def health_check():
    """Liveness check. Returns 200 while the process is serving requests."""
    return {
        "status": "healthy",
        "version": APP_VERSION,
        "checks": {
            "api": "ok",
            "uploads": "ok" if settings.upload_root.is_dir() else "missing",
        }
    }


@app.get("/ready")
async def readiness_check(db: AsyncIOMotorDatabase = Depends(get_db)):
    """Readiness check - verifies MongoDB is reachable and reports Redis.

    Redis is optional: without it rate limiting is disabled, so the service
    is still ready.
    """
    checks = {}

    try:
        await db.command("ping")
        checks["mongodb"] = "ok"
    except Exception as e:
        logger.warning(f"MongoDB readiness check failed: {e}")
        checks["mongodb"] = "error"

    redis = await get_redis_client()
    checks["redis"] = "ok" if redis else "unavailable"

    all_ok = checks["mongodb"] == "ok"
    status_code = 200 if all_ok else 503

    return JSONResponse(
        status_code=status_code,
        content={"status": "ready" if all_ok else "degraded", "checks": checks},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=settings.port)

"""
LearnHub Learning Management System
FastAPI application factory and configuration
"""

import logging
import time
from typing import Dict, Any

from fastapi import FastAPI, Request, status, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

# Import API routers
from .api import (
    auth,
    courses,
    progress,
    assignments,
    achievements,
    analytics,
    tasks
)

from .database.connection import check_database_health
from .dependencies import get_redis_client
from .exceptions import AppException
from ..config import get_settings

# Configure logging
logger = logging.getLogger(__name__)


class RequestContextMiddleware:
    """Middleware to add request timing and optional access logging"""

    def __init__(self, app, log_requests: bool = False):
        self.app = app
        self.log_requests = log_requests

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.time()
        response_status = {}

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                process_time = time.time() - start_time
                response_status["code"] = message["status"]
                message["headers"] = list(message.get("headers", []))
                message["headers"].append(
                    (b"x-process-time", f"{process_time:.6f}".encode())
                )
            await send(message)

        await self.app(scope, receive, send_wrapper)

        if self.log_requests:
            logger.info(
                f"{scope['method']} {scope['path']} -> {response_status.get('code')} "
                f"({(time.time() - start_time) * 1000:.1f} ms)"
            )


def error_body(error: str, message: Any, details: Any = None) -> Dict[str, Any]:
    return {
        "error": error,
        "message": message,
        "details": details if details is not None else {},
        "timestamp": time.time()
    }


def describe_validation_errors(exc: RequestValidationError) -> list:
    described = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        described.append({
            "field": ".".join(location) or None,
            "message": error.get("msg", "Invalid value"),
            "type": error.get("type")
        })
    return described


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""

    settings = get_settings()

    # Create FastAPI instance
    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description="Backend API for the LearnHub learning management system",
        version=settings.VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        default_response_class=JSONResponse
    )

    # Add custom middleware
    app.add_middleware(RequestContextMiddleware, log_requests=settings.ENABLE_REQUEST_LOGGING)

    # Add security middleware
    if not settings.DEBUG:
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=settings.ALLOWED_HOSTS
        )

    # Add compression middleware
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_HOSTS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["x-process-time"]
    )

    # Exception handlers
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        """Handle custom application exceptions"""
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.error_code, exc.message, exc.details)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Report the first validation error as the message"""
        errors = describe_validation_errors(exc)
        first = errors[0] if errors else {"message": "Request validation failed"}
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body("VALIDATION_ERROR", first["message"], {"errors": errors})
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions"""
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body("HTTP_ERROR", exc.detail),
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions"""
        logger.exception(f"Unexpected error: {exc}")

        message = str(exc) if settings.DEBUG else "An internal server error occurred"
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("INTERNAL_ERROR", message)
        )

    # Health check endpoint
    @app.get("/health", tags=["System"])
    async def health_check():
        """API health check endpoint"""
        return {
            "status": "healthy",
            "api_version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
            "timestamp": time.time()
        }

    # API status endpoint
    @app.get("/status", tags=["System"])
    async def api_status():
        """Detailed API status information"""
        database = await check_database_health()
        if not settings.REDIS_ENABLED:
            cache = "disabled"
        else:
            cache = "connected" if await get_redis_client() is not None else "unavailable"

        return {
            "api": settings.APP_NAME,
            "version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
            "debug_mode": settings.DEBUG,
            "database": database,
            "cache": cache,
            "endpoints": {
                "auth": "/auth",
                "courses": "/courses",
                "progress": "/progress",
                "assignments": "/assignments",
                "achievements": "/achievements",
                "analytics": "/analytics",
                "tasks": "/tasks"
            }
        }

    # Include API routers
    app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
    app.include_router(courses.router, prefix="/courses", tags=["Courses"])
    app.include_router(progress.router, prefix="/progress", tags=["Progress"])
    app.include_router(assignments.router, prefix="/assignments", tags=["Assignments"])
    app.include_router(achievements.router, prefix="/achievements", tags=["Achievements"])
    app.include_router(analytics.router, prefix="/analytics", tags=["Analytics"])
    app.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])

    logger.info("✅ Backend API configured successfully")
    return app


# Export the app factory
__all__ = ["create_app"]

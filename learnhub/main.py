#!/usr/bin/env python3
"""
LearnHub Learning Management System
Main application entry point
"""

import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from .config import get_settings
from .backend.app import create_app
from .backend.database.connection import (
    init_database,
    check_database_health,
    close_database_connections
)
from .backend.dependencies import close_redis_client
from .backend.utils.helpers import setup_logging

# Configure logging
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events"""

    # Startup
    logger.info("🚀 Starting LearnHub...")
    await init_database()
    logger.info("🎉 Application startup complete!")

    yield

    # Shutdown
    logger.info("🛑 Shutting down application...")
    await close_redis_client()
    await close_database_connections()
    logger.info("✅ Application shutdown complete")


def create_main_app() -> FastAPI:
    """Create the outer application and mount the backend API under /api"""

    settings = get_settings()

    main_app = FastAPI(
        title=settings.APP_NAME,
        description="Learning management backend: courses, progress, assessments and achievements",
        version=settings.VERSION,
        docs_url="/api/docs" if settings.DEBUG else None,
        redoc_url="/api/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
        openapi_url="/api/openapi.json" if settings.DEBUG else None
    )

    # Add middleware
    main_app.add_middleware(GZipMiddleware, minimum_size=1000)
    main_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_HOSTS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Mount the backend API
    main_app.mount("/api", create_app())

    # Health check endpoint
    @main_app.get("/health")
    async def health_check():
        """Application health check endpoint"""
        database = await check_database_health()
        return {
            "status": database["status"],
            "version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
            "database": database["database"]
        }

    return main_app


app = create_main_app()


def main():
    """Main entry point"""
    setup_logging()

    settings = get_settings()
    logger.info(f"Starting application in {settings.ENVIRONMENT} mode")

    try:
        uvicorn.run(
            "learnhub.main:app",
            host=settings.HOST,
            port=settings.PORT,
            reload=settings.DEBUG,
            workers=None if settings.DEBUG else settings.WORKERS,
            log_level="info" if settings.DEBUG else "warning",
            access_log=settings.DEBUG
        )
    except KeyboardInterrupt:
        logger.info("Application stopped by user")
    except Exception as e:
        logger.error(f"Application failed to start: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

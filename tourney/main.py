"""
Tournament Backend API - Main Application
"""
import logging
import sys
import traceback
import uuid
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
import uvicorn

from tourney import __version__
from tourney.api.v1 import api_router
from tourney.core.config import Settings, get_settings
from tourney.core.container import Services
from tourney.core.rate_limit import limiter
from tourney.database import init_db
from tourney.utils.time_utils import to_utc_isoformat, utc_now

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure logging once for the process"""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ]
    )


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Build the application with its services"""
    settings = settings or get_settings()
    configure_logging(settings)
    services = services or Services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info(f"Starting {settings.PROJECT_NAME} ({settings.ENVIRONMENT})")
        try:
            init_db(services.engine)
            logger.info("Database initialized")

            if settings.SCHEDULER_ENABLED:
                services.scheduler.start()
        except Exception as e:
            logger.error(f"Failed to initialize backend: {e}")
            raise

        yield  # Application runs here

        logger.info(f"Shutting down {settings.PROJECT_NAME}")
        try:
            services.close()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Tournament lifecycle, leaderboards and prize settlement",
        version=__version__,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        lifespan=lifespan,
        redirect_slashes=False
    )
    app.state.services = services

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unexpected errors."""
        error_id = str(uuid.uuid4())[:8]

        logger.error(
            f"[ERROR_ID: {error_id}] Unhandled exception on {request.method} {request.url.path}",
            exc_info=True
        )

        if settings.DEBUG:
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "detail": str(exc),
                    "error_id": error_id,
                    "type": type(exc).__name__,
                    "path": str(request.url.path),
                    "traceback": traceback.format_exc()
                }
            )
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "detail": "An internal server error occurred. Please try again later.",
                "error_id": error_id
            }
        )

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "service": settings.PROJECT_NAME,
            "version": __version__,
            "status": "running",
            "environment": settings.ENVIRONMENT,
            "docs_url": "/docs" if settings.DEBUG else "disabled",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring."""
        try:
            with services.session_factory() as db:
                db.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "error": str(e)}
            )

        return {
            "status": "healthy",
            "timestamp": to_utc_isoformat(utc_now()),
            "service": "tournament-api",
            "version": __version__,
            "services": {
                "database": {
                    "status": "connected",
                },
                "scheduler": {
                    "status": "running" if services.scheduler.running else "stopped",
                    "scheduled_jobs": len(services.scheduler.get_scheduled_jobs())
                },
                "payouts": {
                    "status": "enabled" if settings.PAYOUT_TRANSFERS_ENABLED else "disabled",
                    "gateway": settings.PAYMENT_GATEWAY
                }
            }
        }

    app.include_router(api_router, prefix=settings.API_V1_PREFIX)
    return app


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "tourney.main:create_app",
        factory=True,
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )

"""
Campus lost & found API: report intake, admin review, item lifecycle and realtime updates.
"""
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text

import config
from database.connection import Database
from core.exceptions import LostFoundError
from core.logger import logger
from core.realtime import ConnectionManager
from middleware.security import (
    RateLimitMiddleware, SecurityHeadersMiddleware,
    setup_cors, setup_trusted_hosts
)
from middleware.auth_middleware import AuthRequiredMiddleware
from services.email_service import build_mail_client
from routers.auth import router as auth_router
from routers.user_reports import router as user_reports_router
from routers.items import router as items_router
from routers.admin import router as admin_router
from routers.dashboards import router as dashboards_router
from routers.websocket import router as websocket_router


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan events for FastAPI app.
    Initialize database, mail client and the realtime registry on startup.
    """
    logger.info("=" * 60)
    logger.info(f"Starting {config.APP_NAME}...")
    logger.info("=" * 60)

    # Initialize database (tests and scripts may have set one already)
    if config.db is None:
        try:
            config.db = Database(
                database_url=config.DATABASE_URL,
                pool_size=config.DB_POOL_SIZE,
                max_overflow=config.DB_MAX_OVERFLOW,
                pool_timeout=config.DB_POOL_TIMEOUT_SECONDS,
                statement_timeout_ms=config.DB_STATEMENT_TIMEOUT_MS
            )
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}", exc_info=True)
            raise
    # Create tables if they don't exist
    config.db.create_tables()
    logger.info("Database initialized successfully")

    # Initialize FastAPI-Mail for OTP and notifications
    try:
        app.state.mail = build_mail_client()
        if app.state.mail is not None:
            logger.info("FastAPI-Mail initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize FastAPI-Mail: {e}", exc_info=True)
        app.state.mail = None

    # Realtime registry lives exactly as long as the server
    app.state.realtime = ConnectionManager()

    logger.info("=" * 60)
    logger.info("Server ready!")
    logger.info(f"Environment: {config.ENVIRONMENT}")
    logger.info("API Docs: http://localhost:8000/docs")
    logger.info("=" * 60)

    yield

    # Cleanup on shutdown
    logger.info("Shutting down...")
    await app.state.realtime.close_all()
    if config.db:
        config.db.dispose()
        logger.info("Database connections closed")


# Initialize FastAPI app
app = FastAPI(
    title=config.APP_NAME,
    description="Campus lost & found tracker: reports, admin review, item lifecycle and realtime updates",
    version=config.APP_VERSION,
    lifespan=lifespan
)

# Setup security middleware
app.add_middleware(SecurityHeadersMiddleware)
if config.RATE_LIMIT_ENABLED:
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_minute=config.RATE_LIMIT_PER_MINUTE,
        requests_per_hour=config.RATE_LIMIT_PER_HOUR
    )
app.add_middleware(AuthRequiredMiddleware)
setup_cors(app, config.CORS_ORIGINS)
if config.ENVIRONMENT == "production":
    setup_trusted_hosts(app, config.TRUSTED_HOSTS)


@app.exception_handler(LostFoundError)
async def lost_found_error_handler(request: Request, exc: LostFoundError):
    """Translate domain errors into {detail, error} bodies."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code}
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed or missing fields are a 400 with one short message, like any other ValidationError."""
    message = "Invalid request"
    errors = exc.errors()
    if errors:
        first = errors[0]
        message = first.get("msg", message)
        field = ".".join(
            str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")
        )
        if field:
            message = f"{field}: {message}"
    return JSONResponse(
        status_code=400,
        content={"detail": message, "error": "validation_error"}
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    """Last resort: log the traceback, never leak internals to the client."""
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error": "internal_error"}
    )


# Include routers
app.include_router(auth_router)
app.include_router(user_reports_router)
app.include_router(items_router)
app.include_router(admin_router)
app.include_router(dashboards_router)
app.include_router(websocket_router)


@app.get("/")
async def root():
    """Root endpoint with API information. Public endpoint."""
    realtime = getattr(app.state, "realtime", None)
    return {
        "message": config.APP_NAME,
        "version": config.APP_VERSION,
        "environment": config.ENVIRONMENT,
        "endpoints": {
            "auth": "/auth/*",
            "reports": "POST /user/report, GET /user/my-reports",
            "items": "GET /found-items, GET /lost-items",
            "admin": "/admin/*",
            "realtime": "GET /ws?token=..."
        },
        "docs": "/docs",
        "realtime_connections": realtime.get_total_connections() if realtime else 0
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring. Public endpoint."""
    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "checks": {}
    }

    # Check database
    try:
        if config.db is None:
            health_status["checks"]["database"] = {"status": "error", "error": "not initialized"}
            health_status["status"] = "degraded"
        else:
            with config.db.get_session() as db:
                db.execute(text("SELECT 1"))
            health_status["checks"]["database"] = {"status": "ok"}
    except Exception as e:
        health_status["checks"]["database"] = {"status": "error", "error": str(e)}
        health_status["status"] = "degraded"

    health_status["checks"]["mail"] = {
        "enabled": getattr(app.state, "mail", None) is not None
    }

    return health_status


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

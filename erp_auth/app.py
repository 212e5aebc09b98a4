"""
ERP Access Core - FastAPI Application Entrypoint

This module initializes the FastAPI application with:
- CORS and security middleware
- Authentication and RBAC administration routes
- Database lifecycle management
- Permission-cache invalidation bus
- Error mapping from typed service errors to HTTP responses
"""

import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from erp_auth.admin.routes import router as admin_router
from erp_auth.auth.database import get_engine, get_session_factory, init_db
from erp_auth.auth.routes import router as auth_router
from erp_auth.auth.service import cleanup_expired_tokens
from erp_auth.auth.sessions import cleanup_expired_sessions
from erp_auth.config import configure_logging, settings
from erp_auth.exceptions import ERPError, ValidationError
from erp_auth.gateway.middleware import SecurityMiddleware
from erp_auth.gateway.rbac import rbac_service
from erp_auth.services.mail_service import build_mailer


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
        - Configure logging
        - Initialize the database (unless a session factory was injected)
        - Purge idle sessions and expired one-time tokens
        - Build the mailer and start the invalidation bus listener

    Shutdown:
        - Stop the bus listener and dispose the engine we created
    """
    configure_logging()

    owned_engine = None
    if not hasattr(app.state, "db_session_factory"):
        owned_engine = get_engine(settings.DATABASE_URL)
        init_db(owned_engine)
        app.state.db_engine = owned_engine
        app.state.db_session_factory = get_session_factory(owned_engine)

    if not hasattr(app.state, "mailer"):
        app.state.mailer = build_mailer()

    db = app.state.db_session_factory()
    try:
        await cleanup_expired_sessions(db)
        await cleanup_expired_tokens(db)
    finally:
        db.close()

    rbac_service.bus.start()
    logger.info("%s started", settings.APP_NAME)

    yield

    rbac_service.bus.close()
    if owned_engine is not None:
        owned_engine.dispose()


app = FastAPI(
    title="ERP Access Core",
    description="Authentication, sessions and role-based access control for the ERP",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "PUT", "PATCH"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)

app.add_middleware(SecurityMiddleware)


# =============================================================================
# Error mapping
# =============================================================================

def _request_id(request: Request):
    return getattr(request.state, "request_id", None)


@app.exception_handler(ERPError)
async def erp_error_handler(request: Request, exc: ERPError):
    body = {"detail": exc.message, "request_id": _request_id(request)}
    if isinstance(exc, ValidationError) and exc.fields:
        body["fields"] = exc.fields

    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Service temporarily unavailable", "request_id": _request_id(request)},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    body = {"detail": "Internal server error", "request_id": _request_id(request)}
    if settings.DEBUG:
        body["traceback"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return JSONResponse(status_code=500, content=body)


# =============================================================================
# Routes
# =============================================================================

app.include_router(auth_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    """Health check endpoint; reports the invalidation bus in use."""
    return {
        "status": "healthy",
        "version": "0.1.0",
        "services": {
            "database": True,
            "invalidation_bus": type(rbac_service.bus).__name__,
        },
    }


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }

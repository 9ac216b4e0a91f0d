"""
Admin Authorization Service
FastAPI application factory

Wires the authorization engine, request middleware, exception handlers,
the periodic maintenance task and the auth routers.
"""
import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from api.routes import access, auth, impersonation
from core.config import Settings, get_settings
from core.directory import (
    AssignmentStore,
    InMemoryAssignmentStore,
    InMemoryUserDirectory,
    UserDirectory,
)
from core.engine import AuthEngine, build_engine
from core.exceptions import AuthError, RateLimited, SessionEnded, Unauthenticated
from core.logging import setup_logging
from middleware.auth import AuthorizationMiddleware
from middleware.impersonation import ImpersonationContextMiddleware
from middleware.security_headers import SecurityHeadersMiddleware

logger = structlog.get_logger(__name__)


async def maintenance_loop(engine: AuthEngine, interval_seconds: float):
    """Scheduled secret rotation and sweeps; a failed run is logged and retried next tick"""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await run_in_threadpool(engine.run_maintenance)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Maintenance run failed", error=str(e), error_type=type(e).__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager
    Starts and stops the maintenance task
    """
    settings: Settings = app.state.settings
    engine: AuthEngine = app.state.engine
    logger.info("Starting authorization service", env=settings.ENV)

    interval = min(settings.SECRET_ROTATION_CHECK_SECONDS, settings.SESSION_SWEEP_SECONDS)
    task = asyncio.create_task(maintenance_loop(engine, interval))
    logger.info("Maintenance task started", interval_seconds=interval)

    yield

    logger.info("Shutting down authorization service")
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    engine.shutdown()
    logger.info("Authorization service shut down complete")


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[AuthEngine] = None,
    directory: Optional[UserDirectory] = None,
    assignments: Optional[AssignmentStore] = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    if engine is None:
        engine = build_engine(
            settings,
            directory if directory is not None else InMemoryUserDirectory(),
            assignments if assignments is not None else InMemoryAssignmentStore(),
        )

    app = FastAPI(
        title="Admin Authorization Service",
        description="""
        Hierarchical authorization and impersonation for the admin platform:
        - Bearer token issue/verify with secret rotation
        - Role hierarchy (superadmin > admin > csm > user) and account scoping
        - Audited, time-bounded impersonation sessions
        - Rate limiting on sensitive operations
        """,
        version="1.0.0",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.authorization = AuthorizationMiddleware(engine)

    # ========================================================================
    # MIDDLEWARE
    # ========================================================================

    app.add_middleware(ImpersonationContextMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, hsts=settings.is_production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type"],
    )

    @app.middleware("http")
    async def log_requests_middleware(request: Request, call_next):
        """Log all requests"""
        response = await call_next(request)
        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
        return response

    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next):
        """Add request ID to all requests for tracing"""
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    # ========================================================================
    # EXCEPTION HANDLERS
    # ========================================================================

    @app.exception_handler(AuthError)
    async def auth_exception_handler(request: Request, exc: AuthError):
        """Map engine errors to wire responses"""
        headers = {}
        details = exc.details
        if isinstance(exc, Unauthenticated):
            # the specific failure kind stays internal
            logger.info("Request unauthenticated", reason=exc.reason, path=request.url.path)
            details = {}
            headers["WWW-Authenticate"] = "Bearer"
        elif isinstance(exc, SessionEnded):
            headers["WWW-Authenticate"] = "Bearer"
        elif isinstance(exc, RateLimited):
            headers["Retry-After"] = str(exc.retry_after)
        elif exc.status_code >= 500:
            logger.error("Request failed", error=exc.error_code, path=request.url.path)

        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.error_code,
                "message": exc.public_message,
                "details": details,
            },
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected errors"""
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "internal_error",
                "message": "An unexpected error occurred",
            },
        )

    # ========================================================================
    # ROUTES
    # ========================================================================

    @app.get("/health", tags=["health"])
    def health_check():
        """Sync so lazy expiry (which may write audit entries) runs in the threadpool"""
        return {
            "status": "healthy",
            "env": settings.ENV,
            "active_impersonation_sessions": len(engine.sessions.active_sessions()),
        }

    app.include_router(auth.router)
    app.include_router(impersonation.router)
    app.include_router(access.router)

    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)

    return app

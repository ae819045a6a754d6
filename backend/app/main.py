"""Main FastAPI application"""

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import Response
from sqlalchemy import text
from sqlalchemy.orm import sessionmaker
from pathlib import Path
from typing import Optional
import logging

from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from app.config import Settings, get_settings
from app.core.clock import SystemClock, system_clock
from app.core.database import SessionLocal, create_engine_for, create_session_factory, init_db
from app.core.exceptions import ValidationError
from app.api.deps import enforce_access_rule
from app.api.v1 import auth, users, admin
from app.middleware.pipeline import install_pipeline
from app.middleware.responses import error_response
from app.schemas.response import HealthResponse
from app.services.audit_service import AuditRecorder
from app.services.auth_service import AuthService
from app.services.notification_service import PasswordResetNotifier
from app.services.rate_limiter import FixedWindowRateLimiter, build_rate_limiter
from app.services.token_janitor import TokenJanitor
from app.services.token_service import TokenService
from app.services.user_service import user_service

logger = logging.getLogger(__name__)


def configure_logging(app_settings: Settings) -> None:
    """Configure logging - ensure log directory exists"""
    log_file = app_settings.get_log_file()
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, app_settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )


def _validation_errors(exc: RequestValidationError) -> list:
    errors = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or None, "reason": error.get("msg")})
    return errors


def create_app(
    app_settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    clock: Optional[SystemClock] = None,
    rate_limiter: Optional[FixedWindowRateLimiter] = None,
    notifier: Optional[PasswordResetNotifier] = None,
) -> FastAPI:
    """
    Build a fully wired application

    Args:
        app_settings: Settings; environment-derived when omitted
        session_factory: Session factory; built from the settings' database URL when omitted
        clock: Time source for every expiry and window comparison
        rate_limiter: Limiter; selected by RATE_LIMIT_BACKEND when omitted
        notifier: Password reset delivery

    Returns:
        FastAPI: Application with the request pipeline installed
    """
    app_settings = app_settings or get_settings()
    configure_logging(app_settings)
    clock = clock or system_clock

    if session_factory is None:
        if app_settings is get_settings():
            session_factory = SessionLocal
        else:
            session_factory = create_session_factory(
                create_engine_for(app_settings.get_database_url(), echo=app_settings.DEBUG)
            )

    token_service = TokenService(app_settings, clock)
    auth_service = AuthService(app_settings, clock, token_service=token_service, notifier=notifier)
    rate_limiter = rate_limiter or build_rate_limiter(app_settings, clock)
    audit_recorder = AuditRecorder(
        session_factory,
        max_workers=app_settings.AUDIT_MAX_WORKERS,
        max_pending=app_settings.AUDIT_MAX_PENDING,
    )
    token_janitor = TokenJanitor(
        session_factory,
        auth_service.purge_expired,
        interval_seconds=app_settings.TOKEN_PURGE_INTERVAL_SECONDS,
    )

    app = FastAPI(
        title=app_settings.APP_NAME,
        version=app_settings.APP_VERSION,
        debug=app_settings.DEBUG,
        docs_url="/api/docs" if app_settings.DEBUG else None,
        redoc_url="/api/redoc" if app_settings.DEBUG else None,
        dependencies=[Depends(enforce_access_rule)],
    )

    app.state.settings = app_settings
    app.state.clock = clock
    app.state.session_factory = session_factory
    app.state.token_service = token_service
    app.state.auth_service = auth_service
    app.state.rate_limiter = rate_limiter
    app.state.audit_recorder = audit_recorder
    app.state.token_janitor = token_janitor

    # Innermost: compression and CORS sit inside the pipeline so even
    # preflight answers get security headers
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_pipeline(app)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors"""
        errors = _validation_errors(exc)
        logger.warning(
            f"Validation error: {errors}",
            extra={"path": request.url.path, "method": request.method}
        )
        return error_response(request, ValidationError("Validation failed", details={"errors": errors}))

    @app.on_event("startup")
    async def startup_event():
        """Initialize application on startup"""
        app_settings.validate_security_settings()
        logger.info(f"Starting {app_settings.APP_NAME} v{app_settings.APP_VERSION}")
        logger.info(f"Environment: {app_settings.ENVIRONMENT}")

        try:
            init_db(bind=session_factory.kw.get("bind"), app_settings=app_settings)
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

        # Create admin user if doesn't exist
        if app_settings.ADMIN_PASSWORD:
            db = session_factory()
            try:
                user_service.ensure_admin(db, app_settings, clock.now())
            except Exception as e:
                db.rollback()
                logger.error(f"Failed to create admin user: {e}")
            finally:
                db.close()

        if app_settings.TOKEN_JANITOR_ENABLED:
            token_janitor.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown"""
        if token_janitor.is_running():
            token_janitor.stop()
        audit_recorder.shutdown()
        logger.info(f"Shutting down {app_settings.APP_NAME}")

    @app.get("/health", response_model=HealthResponse)
    def health_check():
        """Health check endpoint"""
        db_ok = True
        db_error = None
        db = session_factory()
        try:
            db.execute(text("SELECT 1"))
        except Exception as exc:
            db_ok = False
            db_error = str(exc) if not app_settings.is_production else "unavailable"
        finally:
            db.close()

        return {
            "status": "healthy" if db_ok else "degraded",
            "version": app_settings.APP_VERSION,
            "timestamp": clock.now().isoformat(),
            "readiness": {
                "database": {"ok": db_ok, "error": db_error},
                "token_janitor": token_janitor.status(),
                "rate_limit_backend": rate_limiter.backend,
            },
        }

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "name": app_settings.APP_NAME,
            "version": app_settings.APP_VERSION,
            "status": "running",
            "docs": "/api/docs" if app_settings.DEBUG else "disabled"
        }

    app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
    app.include_router(users.router, prefix="/api/v1/users", tags=["Users"])
    app.include_router(admin.router, prefix="/api/v1/admin", tags=["Admin"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS
    )

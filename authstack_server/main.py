# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""AuthStack Server - Main FastAPI application."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from authstack_server.auth import PasswordHasher, TokenIssuer
from authstack_server.config import Settings, settings
from authstack_server.database import create_engine, create_session_maker, init_db
from authstack_server.errors import AuthError, InternalError, ValidationError
from authstack_server.rate_limit import RateLimiter
from authstack_server.routers import auth, health
from authstack_server.services.auth_service import utcnow
from authstack_server.services.email import EmailNotifier
from authstack_server.services.google_oauth import GoogleOAuthClient

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def _get_cors_origins(app_settings: Settings) -> list[str]:
    raw = (app_settings.cors_origins or "*").strip()
    if raw == "*":
        return ["*"]
    return [o.strip() for o in raw.split(",") if o.strip()]


def _error_response(error: AuthError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={"success": False, "error": error.code, "message": error.message},
    )


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return ValidationError.message
    first = errors[0]
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    return f"{field}: {first.get('msg')}" if field else str(first.get("msg"))


def _register_exception_handlers(app: FastAPI, app_settings: Settings) -> None:
    def internal_error(exc: Exception) -> JSONResponse:
        if app_settings.is_production:
            return _error_response(InternalError())
        return _error_response(InternalError(f"Server error: {exc}"))

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        return _error_response(ValidationError(_validation_message(exc)))

    @app.exception_handler(SQLAlchemyError)
    async def handle_database_error(request: Request, exc: SQLAlchemyError):
        logger.exception("Database error on %s %s", request.method, request.url.path)
        return internal_error(exc)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return internal_error(exc)


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Build the application. Collaborators live on app.state so tests can swap them."""
    app_settings = app_settings or settings
    logging.basicConfig(level=app_settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        await init_db(app.state.engine)
        if not app.state.notifier.configured:
            if app_settings.is_production:
                logger.error("SMTP not configured - one-time codes cannot be delivered")
            else:
                logger.info("SMTP not configured - one-time codes are written to the log")
        if not app_settings.google_enabled:
            logger.info("GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET not set - Google login disabled")
        yield
        await app.state.engine.dispose()

    app = FastAPI(
        title="AuthStack Server",
        description="Email/password, email OTP and Google sign-in API",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if not app_settings.is_production else None,
        redoc_url=None,
    )

    engine = create_engine(app_settings)
    app.state.settings = app_settings
    app.state.engine = engine
    app.state.session_maker = create_session_maker(engine)
    app.state.password_hasher = PasswordHasher(app_settings.bcrypt_rounds)
    app.state.token_issuer = TokenIssuer(
        app_settings.jwt_secret, app_settings.jwt_algorithm, app_settings.jwt_expire_minutes
    )
    app.state.notifier = EmailNotifier(app_settings)
    app.state.google_client = GoogleOAuthClient(app_settings)
    app.state.rate_limiter = RateLimiter(
        app_settings.rate_limit_window_seconds, app_settings.rate_limit_max_attempts
    )
    app.state.clock = utcnow

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_get_cors_origins(app_settings),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log method, path, status, and duration for each request (no body or auth headers)."""
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, duration_ms)
        return response

    _register_exception_handlers(app, app_settings)
    app.include_router(auth.router)
    app.include_router(health.router)

    @app.get("/")
    async def root():
        """API info."""
        return {"name": "AuthStack Server", "version": VERSION, "health": "/health"}

    return app


app = create_app()

# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Authentication API routes."""

import logging
import secrets
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from authstack_server.api.schemas import (
    AuthResponse,
    LoginRequest,
    MeResponse,
    RegisterRequest,
    SendOtpRequest,
    SuccessResponse,
    UserResponse,
    VerifyOtpRequest,
)
from authstack_server.auth import get_current_user_id
from authstack_server.config import Settings
from authstack_server.database import get_db
from authstack_server.errors import AuthError, ProviderError
from authstack_server.rate_limit import client_key, rate_limit
from authstack_server.services.auth_service import AuthResult, AuthService
from authstack_server.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

OAUTH_STATE_COOKIE = "oauth_state"
OAUTH_STATE_MAX_AGE = 600


def get_auth_service(request: Request, db: AsyncSession = Depends(get_db)) -> AuthService:
    """Dependency: AuthService bound to this request's session."""
    state = request.app.state
    return AuthService(
        CredentialStore(db),
        state.password_hasher,
        state.token_issuer,
        state.notifier,
        otp_ttl_minutes=state.settings.otp_ttl_minutes,
        auto_provision=state.settings.oauth_auto_provision,
        clock=state.clock,
    )


def set_session_cookie(response: Response, settings: Settings, token: str) -> None:
    response.set_cookie(
        settings.cookie_name,
        token,
        max_age=settings.jwt_expire_minutes * 60,
        httponly=True,
        samesite="strict",
        secure=settings.session_cookie_secure,
    )


def _auth_response(response: Response, settings: Settings, result: AuthResult) -> AuthResponse:
    set_session_cookie(response, settings, result.token)
    return AuthResponse(user=UserResponse.model_validate(result.user), token=result.token)


def _failure_redirect(settings: Settings, error: str) -> RedirectResponse:
    url = f"{settings.frontend_url.rstrip('/')}{settings.oauth_failure_path}?{urlencode({'error': error})}"
    response = RedirectResponse(url, status_code=302)
    response.delete_cookie(OAUTH_STATE_COOKIE)
    return response


@router.post("/login", response_model=AuthResponse, dependencies=[Depends(rate_limit("login"))])
async def login(
    data: LoginRequest,
    request: Request,
    response: Response,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Authenticate with email and password. Returns the user and a bearer token (also set as cookie)."""
    result = await service.login(data.email, data.password)
    return _auth_response(response, request.app.state.settings, result)


@router.post("/register", response_model=AuthResponse, dependencies=[Depends(rate_limit("register"))])
async def register(
    data: RegisterRequest,
    request: Request,
    response: Response,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Create a password account and sign it in."""
    result = await service.register(data.first_name, data.last_name, data.email, data.password)
    return _auth_response(response, request.app.state.settings, result)


@router.post("/send-otp", response_model=SuccessResponse, dependencies=[Depends(rate_limit("otp-send"))])
async def send_otp(
    data: SendOtpRequest,
    service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    """Email a 6-digit login code. A new request replaces any earlier code."""
    await service.send_otp(data.email)
    return SuccessResponse(message="OTP sent to your email")


@router.post("/verify-otp", response_model=AuthResponse, dependencies=[Depends(rate_limit("otp-verify"))])
async def verify_otp(
    data: VerifyOtpRequest,
    request: Request,
    response: Response,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Sign in with an emailed code. Creates the account on first use."""
    result = await service.verify_otp(data.email, data.otp)
    return _auth_response(response, request.app.state.settings, result)


@router.get("/google")
async def google_login(request: Request) -> RedirectResponse:
    """Redirect to Google's consent screen."""
    settings = request.app.state.settings
    if not settings.google_enabled:
        return _failure_redirect(settings, "oauth_not_configured")
    state = secrets.token_urlsafe(32)
    response = RedirectResponse(request.app.state.google_client.authorization_url(state), status_code=302)
    # Lax: the callback arrives as a cross-site top-level navigation
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        state,
        max_age=OAUTH_STATE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
    )
    return response


@router.get("/google/callback")
async def google_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    service: AuthService = Depends(get_auth_service),
) -> RedirectResponse:
    """Finish the Google handshake, then redirect to the app with the session cookie set."""
    app_state = request.app.state
    settings = app_state.settings
    expected_state = request.cookies.get(OAUTH_STATE_COOKIE)
    try:
        app_state.rate_limiter.check(client_key(request, settings.trust_forwarded_for), "oauth")
        if error:
            raise ProviderError(f"Google returned error: {error}")
        if not code or not state or not expected_state or not secrets.compare_digest(state, expected_state):
            raise ProviderError("OAuth state mismatch")
        identity = await app_state.google_client.exchange_code(code)
        result = await service.verify_provider_assertion(identity)
    except AuthError as e:
        logger.warning("Google login failed: %s", e.message)
        return _failure_redirect(settings, e.code)
    except ProviderError as e:
        logger.warning("Google login failed: %s", e)
        return _failure_redirect(settings, "oauth_failed")
    except Exception:
        logger.exception("Google login error")
        return _failure_redirect(settings, "oauth_failed")

    response = RedirectResponse(
        f"{settings.frontend_url.rstrip('/')}{settings.oauth_success_path}", status_code=302
    )
    response.delete_cookie(OAUTH_STATE_COOKIE)
    set_session_cookie(response, settings, result.token)
    return response


@router.get("/me", response_model=MeResponse)
async def get_me(
    user_id: str = Depends(get_current_user_id),
    service: AuthService = Depends(get_auth_service),
) -> MeResponse:
    """Current user for a valid bearer token or session cookie."""
    user = await service.current_user(user_id)
    return MeResponse(user=UserResponse.model_validate(user))


@router.post("/logout", response_model=SuccessResponse)
async def logout(request: Request, response: Response) -> SuccessResponse:
    """Clear the session cookie. Tokens are stateless and stay valid until they expire."""
    settings = request.app.state.settings
    response.delete_cookie(
        settings.cookie_name,
        httponly=True,
        samesite="strict",
        secure=settings.session_cookie_secure,
    )
    return SuccessResponse(message="Logged out")

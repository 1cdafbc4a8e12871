# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Authentication primitives: password hashing, one-time codes, JWT bearer tokens."""

import secrets
from datetime import datetime, timedelta, timezone

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from authstack_server.errors import InvalidToken

bearer_scheme = HTTPBearer(auto_error=False)


class PasswordHasher:
    """bcrypt via passlib. rounds=12 in production; tests lower it."""

    def __init__(self, rounds: int = 12):
        self._ctx = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, password: str) -> str:
        """Hash a password for storage."""
        return self._ctx.hash(password)

    def verify(self, password: str, hashed: str | None) -> bool:
        """Verify a password against its hash. A missing or malformed hash never matches."""
        if not hashed:
            return False
        try:
            return self._ctx.verify(password, hashed)
        except (ValueError, TypeError):
            return False

    def dummy_verify(self) -> bool:
        """Spend one verify's worth of work against a throwaway hash. Always False."""
        return self._ctx.dummy_verify()


def generate_code() -> str:
    """Six-digit code drawn uniformly from 100000..999999 using the OS CSPRNG."""
    return str(100000 + secrets.randbelow(900000))


class TokenIssuer:
    """Signs and verifies stateless bearer tokens carrying the user id as ``sub``."""

    def __init__(self, secret: str, algorithm: str = "HS256", expire_minutes: int = 1440):
        self._secret = secret
        self._algorithm = algorithm
        self.expire_minutes = expire_minutes

    def issue(self, user_id: str, now: datetime | None = None) -> tuple[str, datetime]:
        """Create a token for user_id. Returns (token, expires_at)."""
        now = now or datetime.now(timezone.utc)
        expire = now + timedelta(minutes=self.expire_minutes)
        claims = {
            "sub": user_id,
            "iat": int(now.timestamp()),
            "exp": int(expire.timestamp()),
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm), expire

    def verify(self, token: str) -> str | None:
        """Return the subject of a valid, unexpired token, else None (bad signature and expiry look the same)."""
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError:
            return None
        user_id = payload.get("sub")
        if not user_id or not isinstance(user_id, str):
            return None
        return user_id


def _get_token_from_request(
    request: Request, credentials: HTTPAuthorizationCredentials | None
) -> str | None:
    """Extract JWT from Bearer header or the session cookie."""
    if credentials:
        return credentials.credentials
    return request.cookies.get(request.app.state.settings.cookie_name)


async def get_current_user_id(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """Extract and validate user ID from JWT. Raises InvalidToken (401) if missing or invalid."""
    token = _get_token_from_request(request, credentials)
    if not token:
        raise InvalidToken("Not authenticated")
    user_id = request.app.state.token_issuer.verify(token)
    if not user_id:
        raise InvalidToken()
    return user_id

# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Authentication pathways: password login, registration, email OTP, federated login.

Each pathway either returns an AuthResult (user plus a fresh bearer token) or
raises an AuthError subclass. The pathways share nothing but the users table.
"""

import asyncio
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

from authstack_server.auth import PasswordHasher, TokenIssuer, generate_code
from authstack_server.errors import (
    DeliveryFailed,
    DuplicateEmail,
    InvalidCredentials,
    InvalidOrExpiredCode,
    InvalidToken,
    NoPasswordSet,
    NotRegistered,
    UserExists,
    ValidationError,
)
from authstack_server.models import User
from authstack_server.models.one_time_code import PURPOSE_LOGIN
from authstack_server.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)

PLACEHOLDER_FIRST_NAME = "User"
PLACEHOLDER_LAST_NAME = "Name"
PASSWORD_MIN_LENGTH = 8
# bcrypt ignores everything past 72 bytes
PASSWORD_MAX_BYTES = 72


class Notifier(Protocol):
    async def send(self, to: str, subject: str, body: str) -> None: ...


@dataclass
class AuthResult:
    user: User
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class ProviderIdentity:
    """Identity already verified by the provider (e.g. a Google id_token)."""

    email: str
    given_name: str | None = None
    family_name: str | None = None
    subject: str | None = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_password(password: str) -> None:
    """At least 8 characters with an uppercase letter, a lowercase letter and a digit."""
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValidationError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes")
    if not re.search(r"[A-Z]", password):
        raise ValidationError("Password must contain an uppercase letter")
    if not re.search(r"[a-z]", password):
        raise ValidationError("Password must contain a lowercase letter")
    if not re.search(r"[0-9]", password):
        raise ValidationError("Password must contain a digit")


def otp_message(code: str, ttl_minutes: int) -> str:
    return f"Your OTP code is: {code}\n\nThis code expires in {ttl_minutes} minutes."


class AuthService:
    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        tokens: TokenIssuer,
        notifier: Notifier,
        *,
        otp_ttl_minutes: int = 10,
        auto_provision: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._hasher = hasher
        self._tokens = tokens
        self._notifier = notifier
        self._otp_ttl = timedelta(minutes=otp_ttl_minutes)
        self._auto_provision = auto_provision
        self._clock = clock

    def _issue(self, user: User) -> AuthResult:
        token, expires_at = self._tokens.issue(user.id, now=self._clock())
        return AuthResult(user=user, token=token, expires_at=expires_at)

    async def login(self, email: str, password: str) -> AuthResult:
        """Email + password. Unknown email and wrong password fail identically."""
        user = await self._store.find_user_by_email(email)
        if user is None:
            # same bcrypt cost as a wrong password for a known email
            await asyncio.to_thread(self._hasher.dummy_verify)
            logger.warning("Login failed for %s", email)
            raise InvalidCredentials()
        if not user.password_hash:
            logger.warning("Login for %s rejected: no password set", email)
            raise NoPasswordSet()
        if not await asyncio.to_thread(self._hasher.verify, password, user.password_hash):
            logger.warning("Login failed for %s", email)
            raise InvalidCredentials()
        logger.info("Login succeeded for %s", email)
        return self._issue(user)

    async def register(self, first_name: str, last_name: str, email: str, password: str) -> AuthResult:
        """Create a password account. Policy and required fields are checked before touching the store."""
        first_name, last_name = first_name.strip(), last_name.strip()
        if not first_name or not last_name or not email or not password:
            raise ValidationError("All fields required")
        validate_password(password)
        if await self._store.find_user_by_email(email) is not None:
            logger.warning("Registration rejected, user exists: %s", email)
            raise UserExists()
        password_hash = await asyncio.to_thread(self._hasher.hash, password)
        try:
            user = await self._store.create_user(
                first_name=first_name,
                last_name=last_name,
                email=email,
                password_hash=password_hash,
            )
        except DuplicateEmail:
            logger.warning("Registration lost race for %s", email)
            raise UserExists()
        logger.info("Registered %s", email)
        return self._issue(user)

    async def send_otp(self, email: str) -> None:
        """Store a fresh login code for email (replacing any earlier one) and deliver it.

        The code row stays stored if delivery fails.
        """
        code = generate_code()
        now = self._clock()
        await self._store.upsert_one_time_code(
            email, PURPOSE_LOGIN, code, expires_at=now + self._otp_ttl, now=now
        )
        ttl_minutes = int(self._otp_ttl.total_seconds() // 60)
        try:
            await self._notifier.send(email, "Your Login OTP", otp_message(code, ttl_minutes))
        except DeliveryFailed:
            logger.warning("OTP delivery failed for %s", email)
            raise
        logger.info("OTP sent to %s", email)

    async def verify_otp(self, email: str, code: str) -> AuthResult:
        """Consume a live login code; creates a passwordless user on first login."""
        now = self._clock()
        if await self._store.find_live_code(email, code, PURPOSE_LOGIN, now) is None:
            logger.warning("Invalid or expired OTP for %s", email)
            raise InvalidOrExpiredCode()
        user = await self._get_or_create_passwordless(email, PLACEHOLDER_FIRST_NAME, PLACEHOLDER_LAST_NAME)
        if not await self._store.consume_code(email, code, now, purpose=PURPOSE_LOGIN):
            # another request consumed it between lookup and update
            logger.warning("OTP for %s consumed concurrently", email)
            raise InvalidOrExpiredCode()
        logger.info("OTP login succeeded for %s", email)
        return self._issue(user)

    async def verify_provider_assertion(self, identity: ProviderIdentity) -> AuthResult:
        """Federated login for a provider-verified identity."""
        user = await self._store.find_user_by_email(identity.email)
        if user is None:
            if not self._auto_provision:
                logger.warning("Federated login rejected, not registered: %s", identity.email)
                raise NotRegistered()
            user = await self._get_or_create_passwordless(
                identity.email,
                identity.given_name or PLACEHOLDER_FIRST_NAME,
                identity.family_name or PLACEHOLDER_LAST_NAME,
            )
            logger.info("Provisioned federated user %s", identity.email)
        logger.info("Federated login succeeded for %s", identity.email)
        return self._issue(user)

    async def current_user(self, user_id: str) -> User:
        """User for a verified token subject. A token for a deleted user is invalid."""
        user = await self._store.find_user_by_id(user_id)
        if user is None:
            raise InvalidToken()
        return user

    async def _get_or_create_passwordless(self, email: str, first_name: str, last_name: str) -> User:
        user = await self._store.find_user_by_email(email)
        if user is not None:
            return user
        try:
            return await self._store.create_user(first_name=first_name, last_name=last_name, email=email)
        except DuplicateEmail:
            user = await self._store.find_user_by_email(email)
            if user is None:
                raise
            return user

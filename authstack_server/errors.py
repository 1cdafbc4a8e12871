# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Error taxonomy for the authentication pathways.

Every pathway failure is raised as an AuthError subclass and rendered by the
exception handlers in main.py as ``{"success": false, "error": code, "message": text}``.
InvalidCredentials and InvalidOrExpiredCode deliberately carry one message each,
whatever sub-condition triggered them.
"""


class AuthError(Exception):
    """Base for errors returned to the client."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "Server error"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(AuthError):
    status_code = 400
    code = "validation_error"
    message = "Invalid request"


class InvalidCredentials(AuthError):
    status_code = 401
    code = "invalid_credentials"
    message = "Invalid email or password"


class InvalidOrExpiredCode(AuthError):
    status_code = 401
    code = "invalid_or_expired_code"
    message = "Invalid or expired OTP"


class NoPasswordSet(AuthError):
    status_code = 401
    code = "no_password_set"
    message = "No password is set for this account. Please sign in with Google or an email code."


class UserExists(AuthError):
    status_code = 400
    code = "user_exists"
    message = "User already exists"


class NotRegistered(AuthError):
    status_code = 403
    code = "not_registered"
    message = "User not registered. Please sign up first."


class InvalidToken(AuthError):
    status_code = 401
    code = "invalid_token"
    message = "Invalid or expired token"


class DeliveryFailed(AuthError):
    status_code = 500
    code = "delivery_failed"
    message = "Failed to send OTP"


class RateLimited(AuthError):
    status_code = 429
    code = "rate_limited"
    message = "Too many requests. Please try again later."


class StoreUnavailable(AuthError):
    status_code = 503
    code = "store_unavailable"
    message = "Database unavailable"


class InternalError(AuthError):
    pass


class StoreError(Exception):
    """Raised by the credential store; never shown to clients directly."""


class DuplicateEmail(StoreError):
    """A user with this email already exists (unique constraint)."""


class ProviderError(Exception):
    """The identity provider handshake failed (bad code, invalid id_token, unverified email)."""

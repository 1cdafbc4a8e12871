# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Google OAuth 2.0 / OpenID Connect handshake (redirect, code exchange, id_token check)."""

import asyncio
import logging
from urllib.parse import urlencode

import httpx
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from authstack_server.config import Settings
from authstack_server.errors import ProviderError
from authstack_server.services.auth_service import ProviderIdentity

logger = logging.getLogger(__name__)

AUTHORIZATION_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
SCOPES = "openid email profile"


def _claim_is_true(value) -> bool:
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)


def identity_from_claims(claims: dict) -> ProviderIdentity:
    """Map verified id_token claims to a ProviderIdentity. Unverified emails are refused."""
    email = claims.get("email")
    if not email:
        raise ProviderError("Google id_token has no email claim")
    if not _claim_is_true(claims.get("email_verified", False)):
        raise ProviderError("Google account email is not verified")
    return ProviderIdentity(
        email=str(email),
        given_name=claims.get("given_name") or None,
        family_name=claims.get("family_name") or None,
        subject=str(claims["sub"]) if claims.get("sub") else None,
    )


class GoogleOAuthClient:
    def __init__(self, settings: Settings, timeout: float = 10.0):
        self._settings = settings
        self._timeout = timeout

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self._settings.google_client_id,
            "redirect_uri": self._settings.google_callback_url,
            "response_type": "code",
            "scope": SCOPES,
            "state": state,
            "prompt": "select_account",
        }
        return f"{AUTHORIZATION_ENDPOINT}?{urlencode(params)}"

    async def _fetch_id_token(self, code: str) -> str:
        data = {
            "code": code,
            "client_id": self._settings.google_client_id,
            "client_secret": self._settings.google_client_secret,
            "redirect_uri": self._settings.google_callback_url,
            "grant_type": "authorization_code",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                r = await client.post(TOKEN_ENDPOINT, data=data)
                r.raise_for_status()
                payload = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderError(f"Google code exchange failed: {e}") from e
        token = payload.get("id_token")
        if not token:
            raise ProviderError("Google token response has no id_token")
        return token

    def _verify_id_token(self, token: str) -> dict:
        try:
            return id_token.verify_oauth2_token(
                token, google_requests.Request(), self._settings.google_client_id
            )
        except Exception as e:
            raise ProviderError("Invalid Google id_token") from e

    async def exchange_code(self, code: str) -> ProviderIdentity:
        """Exchange the callback code and return the verified identity."""
        token = await self._fetch_id_token(code)
        claims = await asyncio.to_thread(self._verify_id_token, token)
        return identity_from_claims(claims)

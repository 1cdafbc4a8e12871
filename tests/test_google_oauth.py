# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Mapping verified Google id_token claims to a provider identity."""

import pytest

from authstack_server.errors import ProviderError
from authstack_server.services.google_oauth import GoogleOAuthClient, identity_from_claims


def test_verified_claims_map_to_identity():
    identity = identity_from_claims(
        {"sub": "123", "email": "gina@example.com", "email_verified": "true", "given_name": "Gina", "family_name": "Ruiz"}
    )
    assert identity.email == "gina@example.com"
    assert (identity.given_name, identity.family_name) == ("Gina", "Ruiz")
    assert identity.subject == "123"


def test_missing_names_stay_empty():
    identity = identity_from_claims({"sub": "123", "email": "gina@example.com", "email_verified": True})
    assert identity.given_name is None
    assert identity.family_name is None


@pytest.mark.parametrize(
    "claims",
    [
        {"sub": "123", "email": "gina@example.com", "email_verified": False},
        {"sub": "123", "email": "gina@example.com", "email_verified": "false"},
        {"sub": "123", "email": "gina@example.com"},
        {"sub": "123", "email_verified": True},
    ],
)
def test_unverified_or_missing_email_is_rejected(claims):
    with pytest.raises(ProviderError):
        identity_from_claims(claims)


def test_authorization_url_carries_state_and_callback(settings):
    url = GoogleOAuthClient(settings).authorization_url("xyz")
    assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
    assert "state=xyz" in url
    assert "response_type=code" in url
    assert "redirect_uri=http%3A%2F%2Flocalhost%3A8001%2Fauth%2Fgoogle%2Fcallback" in url

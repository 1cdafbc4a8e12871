# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Sliding-window rate limiter."""

import pytest
from starlette.requests import Request

from authstack_server.errors import RateLimited
from authstack_server.rate_limit import RateLimiter, client_key, rate_limit


class Ticker:
    def __init__(self):
        self.t = 1000.0

    def __call__(self) -> float:
        return self.t


def _request(headers: dict[str, str] | None = None, host: str = "10.0.0.1") -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/auth/login",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": (host, 5000),
    }
    return Request(scope)


def test_sixth_attempt_in_window_is_rejected():
    limiter = RateLimiter(window=900, max_attempts=5, clock=Ticker())
    for _ in range(5):
        limiter.check("1.2.3.4", "login")
    with pytest.raises(RateLimited):
        limiter.check("1.2.3.4", "login")


def test_window_slides():
    ticker = Ticker()
    limiter = RateLimiter(window=900, max_attempts=5, clock=ticker)
    for _ in range(5):
        limiter.check("1.2.3.4", "login")
        ticker.t += 60
    # first attempt was at t=1000; at t=1900 it has left the window
    ticker.t = 1000 + 900
    limiter.check("1.2.3.4", "login")
    with pytest.raises(RateLimited):
        limiter.check("1.2.3.4", "login")


def test_groups_and_clients_are_independent():
    limiter = RateLimiter(window=900, max_attempts=1, clock=Ticker())
    limiter.check("1.2.3.4", "login")
    limiter.check("1.2.3.4", "register")
    limiter.check("5.6.7.8", "login")
    with pytest.raises(RateLimited):
        limiter.check("1.2.3.4", "login")
    limiter.reset()
    limiter.check("1.2.3.4", "login")


def test_idle_clients_are_forgotten_after_the_window():
    ticker = Ticker()
    limiter = RateLimiter(window=900, max_attempts=5, clock=ticker)
    for i in range(10_000):
        limiter.check(f"198.51.100.{i}", "login")
    assert limiter.bucket_count == 10_000
    ticker.t += 901
    limiter.check("1.2.3.4", "login")
    assert limiter.bucket_count == 1


def test_sweep_keeps_clients_still_inside_the_window():
    ticker = Ticker()
    limiter = RateLimiter(window=900, max_attempts=2, clock=ticker)
    limiter.check("old", "login")
    ticker.t += 600
    limiter.check("recent", "login")
    ticker.t += 301
    limiter.check("new", "login")
    assert limiter.bucket_count == 2
    limiter.check("recent", "login")
    with pytest.raises(RateLimited):
        limiter.check("recent", "login")


def test_client_key_ignores_forwarded_for_unless_trusted():
    request = _request({"X-Forwarded-For": "203.0.113.9, 10.0.0.2"})
    assert client_key(request) == "10.0.0.1"
    assert client_key(request, trust_forwarded_for=True) == "203.0.113.9"


def test_unknown_group_is_a_programming_error():
    with pytest.raises(ValueError):
        rate_limit("password-reset")

# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Health check reports database reachability."""

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

from authstack_server.database import create_session_maker


async def test_health_connected(client: AsyncClient):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"success": True, "database": "connected"}


async def test_health_unreachable_database_is_503(client: AsyncClient, app, tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nowhere.db'}")
    app.state.session_maker = create_session_maker(engine)
    try:
        r = await client.get("/health")
    finally:
        await engine.dispose()
    assert r.status_code == 503
    assert r.json()["success"] is False
    assert r.json()["database"] == "disconnected"

# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Health check for load balancers."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from authstack_server.api.schemas import HealthResponse
from authstack_server.database import ping
from authstack_server.errors import StoreUnavailable

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    """200 when the database answers SELECT 1, 503 otherwise."""
    state = request.app.state
    if await ping(state.session_maker, state.settings.db_timeout_seconds):
        return HealthResponse(success=True, database="connected")
    return JSONResponse(
        status_code=StoreUnavailable.status_code,
        content={
            "success": False,
            "database": "disconnected",
            "error": StoreUnavailable.code,
            "message": StoreUnavailable.message,
        },
    )

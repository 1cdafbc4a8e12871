# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Database models."""

from authstack_server.models.base import Base
from authstack_server.models.user import User
from authstack_server.models.one_time_code import OneTimeCode

__all__ = [
    "Base",
    "User",
    "OneTimeCode",
]

# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""One-time code model (email OTP)."""

from datetime import datetime
from sqlalchemy import Boolean, DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from authstack_server.models.base import Base
from authstack_server.models.timestamp import TimestampMixin

CONTACT_EMAIL = "email"
PURPOSE_LOGIN = "login"


class OneTimeCode(Base, TimestampMixin):
    """Single-use code sent to a contact address. One row per (contact, type, purpose); re-sends overwrite it."""

    __tablename__ = "one_time_codes"
    __table_args__ = (
        UniqueConstraint("contact", "type", "purpose", name="uq_one_time_codes_contact_type_purpose"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    contact: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default=CONTACT_EMAIL)
    purpose: Mapped[str] = mapped_column(String(32), nullable=False, default=PURPOSE_LOGIN)
    code: Mapped[str] = mapped_column(String(6), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

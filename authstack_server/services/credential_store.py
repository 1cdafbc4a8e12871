# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Credential store: users and one-time codes.

Each write commits on its own. Uniqueness of users.email and of
(contact, type, purpose) on one_time_codes is enforced by the database, so
concurrent requests for the same email cannot both create a user or hold two
live codes.
"""

from datetime import datetime

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from authstack_server.errors import DuplicateEmail
from authstack_server.models import OneTimeCode, User
from authstack_server.models.one_time_code import CONTACT_EMAIL, PURPOSE_LOGIN

_CODE_KEY = ("contact", "type", "purpose")


def _upsert_statement(dialect: str, values: dict):
    """INSERT ... ON CONFLICT/DUPLICATE KEY UPDATE for the one_time_codes key."""
    updates = {k: v for k, v in values.items() if k not in _CODE_KEY}
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert

        stmt = insert(OneTimeCode).values(**values)
        return stmt.on_conflict_do_update(index_elements=list(_CODE_KEY), set_=updates)
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert

        stmt = insert(OneTimeCode).values(**values)
        return stmt.on_conflict_do_update(index_elements=list(_CODE_KEY), set_=updates)
    if dialect in ("mysql", "mariadb"):
        from sqlalchemy.dialects.mysql import insert

        stmt = insert(OneTimeCode).values(**values)
        return stmt.on_duplicate_key_update(**updates)
    raise NotImplementedError(f"No native upsert for dialect {dialect!r}")


class CredentialStore:
    def __init__(self, db: AsyncSession):
        self._db = db

    async def find_user_by_email(self, email: str) -> User | None:
        result = await self._db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def find_user_by_id(self, user_id: str) -> User | None:
        result = await self._db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def create_user(
        self,
        *,
        first_name: str,
        last_name: str,
        email: str,
        password_hash: str | None = None,
        is_active: bool = True,
        email_verified: bool = True,
    ) -> User:
        """Insert a user. Raises DuplicateEmail if the email is taken."""
        user = User(
            first_name=first_name,
            last_name=last_name,
            email=email,
            password_hash=password_hash,
            is_active=is_active,
            email_verified=email_verified,
        )
        self._db.add(user)
        try:
            await self._db.commit()
        except IntegrityError as e:
            await self._db.rollback()
            raise DuplicateEmail(email) from e
        await self._db.refresh(user)
        return user

    async def upsert_one_time_code(
        self,
        contact: str,
        purpose: str,
        code: str,
        expires_at: datetime,
        now: datetime,
        contact_type: str = CONTACT_EMAIL,
    ) -> None:
        """Store code as the only live code for (contact, type, purpose), replacing any previous one."""
        values = {
            "contact": contact,
            "type": contact_type,
            "purpose": purpose,
            "code": code,
            "expires_at": expires_at,
            "is_used": False,
            "used_at": None,
            "created_at": now,
            "updated_at": now,
        }
        dialect = self._db.get_bind().dialect.name
        await self._db.execute(_upsert_statement(dialect, values))
        await self._db.commit()

    def _live(self, contact: str, code: str, purpose: str, now: datetime, contact_type: str):
        return and_(
            OneTimeCode.contact == contact,
            OneTimeCode.type == contact_type,
            OneTimeCode.purpose == purpose,
            OneTimeCode.code == code,
            OneTimeCode.is_used == False,
            OneTimeCode.expires_at > now,
        )

    async def find_live_code(
        self,
        contact: str,
        code: str,
        purpose: str,
        now: datetime,
        contact_type: str = CONTACT_EMAIL,
    ) -> OneTimeCode | None:
        """Matching code that is unused and unexpired at now, else None."""
        result = await self._db.execute(
            select(OneTimeCode).where(self._live(contact, code, purpose, now, contact_type))
        )
        return result.scalar_one_or_none()

    async def consume_code(
        self,
        contact: str,
        code: str,
        now: datetime,
        purpose: str = PURPOSE_LOGIN,
        contact_type: str = CONTACT_EMAIL,
    ) -> bool:
        """Mark the matching live code used. Returns False if nothing was live (already consumed or expired)."""
        result = await self._db.execute(
            update(OneTimeCode)
            .where(self._live(contact, code, purpose, now, contact_type))
            .values(is_used=True, used_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        return result.rowcount > 0

    async def purge_stale_codes(self, older_than: datetime) -> int:
        """Delete codes that expired, or were used, before older_than. Returns rows deleted."""
        result = await self._db.execute(
            delete(OneTimeCode)
            .where(
                or_(
                    OneTimeCode.expires_at < older_than,
                    and_(OneTimeCode.is_used == True, OneTimeCode.used_at < older_than),
                )
            )
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        return result.rowcount

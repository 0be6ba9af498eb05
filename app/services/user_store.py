from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import StoreError
from app.models.user import User


class UserStore(Protocol):
    async def mark_phone_verified(self, user_id: str) -> None: ...

    async def find_by_phone(self, phone: str) -> Optional[User]: ...

    async def touch_last_otp_sent(self, user_id: str, *, when: datetime) -> None: ...


class SqlUserStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def mark_phone_verified(self, user_id: str) -> None:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(phone_verified=True, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StoreError(f"user store: phone_verified update failed: {exc.__class__.__name__}") from exc

    async def find_by_phone(self, phone: str) -> Optional[User]:
        # phone is not unique in the users table; newest account wins
        stmt = (
            select(User)
            .where(User.phone == phone)
            .order_by(User.created_at.desc())
            .limit(1)
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StoreError(f"user store: lookup failed: {exc.__class__.__name__}") from exc
        return result.scalar_one_or_none()

    async def touch_last_otp_sent(self, user_id: str, *, when: datetime) -> None:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(last_otp_sent=when)
            .execution_options(synchronize_session=False)
        )
        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StoreError(f"user store: last_otp_sent update failed: {exc.__class__.__name__}") from exc

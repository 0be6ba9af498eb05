from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import StoreError
from app.models.otp_verification import OtpPurpose, OtpVerification


class OtpStore(Protocol):
    """Persistence contract used by the OTP services."""

    async def find_matching(
        self,
        phone_number: str,
        otp_code: str,
        purpose: OtpPurpose,
        *,
        now: datetime,
        max_attempts: int,
    ) -> Optional[OtpVerification]: ...

    async def increment_attempts(
        self,
        phone_number: str,
        otp_code: str,
        purpose: OtpPurpose,
        *,
        now: datetime,
        max_attempts: int,
    ) -> int: ...

    async def mark_verified(self, record_id: str, *, now: datetime, max_attempts: int) -> bool: ...

    async def count_recent(self, phone_number: str, *, since: datetime) -> int: ...

    async def create(self, record: OtpVerification) -> OtpVerification: ...

    async def delete(self, record_id: str) -> None: ...

    async def delete_expired(self, *, older_than: datetime) -> int: ...


class SqlOtpStore:
    """
    OtpStore on top of an AsyncSession.

    Every write commits on its own so that a consumed code stays consumed
    even if a later step of the same request fails.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _fail(self, action: str, exc: SQLAlchemyError) -> StoreError:
        await self.db.rollback()
        return StoreError(f"otp store: {action} failed: {exc.__class__.__name__}")

    async def find_matching(
        self,
        phone_number: str,
        otp_code: str,
        purpose: OtpPurpose,
        *,
        now: datetime,
        max_attempts: int,
    ) -> Optional[OtpVerification]:
        stmt = (
            select(OtpVerification)
            .where(OtpVerification.phone_number == phone_number)
            .where(OtpVerification.otp_code == otp_code)
            .where(OtpVerification.purpose == purpose)
            .where(OtpVerification.is_verified.is_(False))
            .where(OtpVerification.expires_at > now)
            .where(OtpVerification.attempts < max_attempts)
            .order_by(OtpVerification.created_at.desc())
            .limit(1)
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            raise await self._fail("lookup", exc) from exc
        return result.scalar_one_or_none()

    async def increment_attempts(
        self,
        phone_number: str,
        otp_code: str,
        purpose: OtpPurpose,
        *,
        now: datetime,
        max_attempts: int,
    ) -> int:
        # every live code for this phone + purpose, plus any row carrying the
        # submitted code (expired ones included); capped at max_attempts
        stmt = (
            update(OtpVerification)
            .where(OtpVerification.phone_number == phone_number)
            .where(OtpVerification.purpose == purpose)
            .where(OtpVerification.attempts < max_attempts)
            .where(
                or_(
                    and_(
                        OtpVerification.is_verified.is_(False),
                        OtpVerification.expires_at > now,
                    ),
                    OtpVerification.otp_code == otp_code,
                )
            )
            .values(attempts=OtpVerification.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("attempt increment", exc) from exc
        return int(result.rowcount or 0)

    async def mark_verified(self, record_id: str, *, now: datetime, max_attempts: int) -> bool:
        # compare-and-set: only a row that is still eligible can flip
        stmt = (
            update(OtpVerification)
            .where(OtpVerification.id == record_id)
            .where(OtpVerification.is_verified.is_(False))
            .where(OtpVerification.attempts < max_attempts)
            .where(OtpVerification.expires_at > now)
            .values(is_verified=True, verified_at=now)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("consume", exc) from exc
        return result.rowcount == 1

    async def count_recent(self, phone_number: str, *, since: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(OtpVerification)
            .where(OtpVerification.phone_number == phone_number)
            .where(OtpVerification.created_at >= since)
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            raise await self._fail("rate limit count", exc) from exc
        return int(result.scalar_one())

    async def create(self, record: OtpVerification) -> OtpVerification:
        self.db.add(record)
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("insert", exc) from exc
        return record

    async def delete(self, record_id: str) -> None:
        try:
            await self.db.execute(delete(OtpVerification).where(OtpVerification.id == record_id))
            await self.db.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("delete", exc) from exc

    async def delete_expired(self, *, older_than: datetime) -> int:
        """Purge codes that expired, or were consumed, before `older_than`."""
        stmt = delete(OtpVerification).where(
            or_(
                OtpVerification.expires_at < older_than,
                and_(
                    OtpVerification.is_verified.is_(True),
                    OtpVerification.verified_at.is_not(None),
                    OtpVerification.verified_at < older_than,
                ),
            )
        )
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("cleanup", exc) from exc
        return int(result.rowcount or 0)

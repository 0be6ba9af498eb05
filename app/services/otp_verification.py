"""
OTP verification and consumption.

The service holds no mutable state of its own. Exclusivity comes from the
store's conditional write (mark_verified), so several API workers can
verify codes against the same table at the same time.

Flow for verify(phone, code, purpose):

  1. reject missing input / unknown purpose (no store access)
  2. newest eligible record for (phone, code, purpose)
  3. none      -> count a failed attempt against every live code for
                  (phone, purpose), best effort, then the generic error
  4. found     -> compare-and-set is_verified; losing the race is the
                  same generic error, a store fault is a 500
  5. consumed  -> purpose side effects (phone_verified flag, login user)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from app.core.exceptions import (
    INVALID_PURPOSE,
    REQUIRED_VERIFY_FIELDS,
    InternalError,
    InvalidOrExpiredOtp,
    StoreError,
    ValidationError,
)
from app.models.otp_verification import OtpPurpose
from app.models.user import User
from app.services.otp_store import OtpStore
from app.services.user_store import UserStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_purpose(value: OtpPurpose | str) -> OtpPurpose:
    try:
        return OtpPurpose(value)
    except ValueError:
        raise ValidationError(INVALID_PURPOSE) from None


@dataclass(frozen=True)
class VerificationResult:
    user_id: Optional[str]
    phone_number: str
    purpose: OtpPurpose
    user: Optional[User] = None


class OtpVerificationService:
    def __init__(
        self,
        otp_store: OtpStore,
        user_store: UserStore,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.otp_store = otp_store
        self.user_store = user_store
        self.max_attempts = max_attempts
        self.clock = clock

    async def verify(
        self,
        phone_number: Optional[str],
        otp_code: Optional[str],
        purpose: OtpPurpose | str | None,
    ) -> VerificationResult:
        if not phone_number or not otp_code or not purpose:
            raise ValidationError(REQUIRED_VERIFY_FIELDS)
        purpose = parse_purpose(purpose)

        now = self.clock()

        try:
            record = await self.otp_store.find_matching(
                phone_number,
                otp_code,
                purpose,
                now=now,
                max_attempts=self.max_attempts,
            )
        except StoreError:
            logger.exception("OTP lookup failed for %s (%s)", phone_number, purpose.value)
            raise InternalError()

        if record is None:
            await self._record_failed_attempt(phone_number, otp_code, purpose, now)
            raise InvalidOrExpiredOtp()

        try:
            consumed = await self.otp_store.mark_verified(
                record.id,
                now=now,
                max_attempts=self.max_attempts,
            )
        except StoreError:
            logger.exception("OTP %s could not be marked verified", record.id)
            raise InternalError("Failed to verify OTP")

        if not consumed:
            # another request consumed (or exhausted) it between lookup and write
            logger.info("OTP %s already consumed by a concurrent request", record.id)
            raise InvalidOrExpiredOtp()

        logger.info("OTP %s verified for %s (%s)", record.id, phone_number, purpose.value)

        user = await self._apply_side_effects(record.user_id, phone_number, purpose)

        return VerificationResult(
            user_id=record.user_id,
            phone_number=phone_number,
            purpose=purpose,
            user=user,
        )

    async def _record_failed_attempt(
        self,
        phone_number: str,
        otp_code: str,
        purpose: OtpPurpose,
        now: datetime,
    ) -> None:
        try:
            await self.otp_store.increment_attempts(
                phone_number,
                otp_code,
                purpose,
                now=now,
                max_attempts=self.max_attempts,
            )
        except StoreError:
            logger.warning(
                "Could not record failed OTP attempt for %s (%s)",
                phone_number,
                purpose.value,
                exc_info=True,
            )

    async def _apply_side_effects(
        self,
        user_id: Optional[str],
        phone_number: str,
        purpose: OtpPurpose,
    ) -> Optional[User]:
        if purpose is OtpPurpose.PHONE_VERIFICATION and user_id:
            try:
                await self.user_store.mark_phone_verified(user_id)
            except StoreError:
                # the code is already consumed; report, never undo
                logger.warning("phone_verified not set for user %s", user_id, exc_info=True)
            return None

        if purpose is OtpPurpose.LOGIN:
            try:
                return await self.user_store.find_by_phone(phone_number)
            except StoreError:
                logger.exception("User lookup after OTP login failed for %s", phone_number)
                raise InternalError()

        return None

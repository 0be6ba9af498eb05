from __future__ import annotations

import logging
import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from app.core.exceptions import (
    INVALID_PHONE_FORMAT,
    REQUIRED_SEND_FIELDS,
    InternalError,
    RateLimitExceeded,
    SmsDeliveryError,
    StoreError,
    ValidationError,
)
from app.models.otp_verification import OtpVerification
from app.services.otp_store import OtpStore
from app.services.otp_verification import parse_purpose, utcnow
from app.services.sms_service import send_otp_sms
from app.services.user_store import UserStore

logger = logging.getLogger(__name__)

E164_RE = re.compile(r"^\+[1-9]\d{1,14}$")
RATE_LIMIT_WINDOW = timedelta(hours=1)

SmsSender = Callable[[str, str], Awaitable[None]]


def format_phone_number(raw: str) -> str:
    """Keep digits and '+', and make sure the number starts with '+'."""
    formatted = re.sub(r"[^\d+]", "", raw or "")
    if not formatted.startswith("+"):
        formatted = "+" + formatted
    return formatted


def is_valid_phone_number(phone_number: str) -> bool:
    return bool(E164_RE.match(phone_number))


def generate_otp(length: int = 6) -> str:
    # no leading zero: always exactly `length` digits
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


@dataclass(frozen=True)
class IssuedOtp:
    otp_id: str
    expires_at: datetime


class OtpIssuer:
    def __init__(
        self,
        otp_store: OtpStore,
        user_store: UserStore,
        *,
        ttl_minutes: int = 10,
        otp_length: int = 6,
        max_attempts: int = 3,
        max_requests_per_hour: int = 3,
        sms_sender: SmsSender = send_otp_sms,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.otp_store = otp_store
        self.user_store = user_store
        self.ttl = timedelta(minutes=ttl_minutes)
        self.otp_length = otp_length
        self.max_attempts = max_attempts
        self.max_requests_per_hour = max_requests_per_hour
        self.sms_sender = sms_sender
        self.clock = clock

    async def issue(
        self,
        phone_number: Optional[str],
        purpose: Optional[str],
        user_id: Optional[str] = None,
    ) -> IssuedOtp:
        if not phone_number or not purpose:
            raise ValidationError(REQUIRED_SEND_FIELDS)
        purpose = parse_purpose(purpose)
        if not is_valid_phone_number(phone_number):
            raise ValidationError(INVALID_PHONE_FORMAT)

        now = self.clock()

        try:
            recent = await self.otp_store.count_recent(phone_number, since=now - RATE_LIMIT_WINDOW)
        except StoreError:
            logger.exception("Rate limit check failed for %s", phone_number)
            raise InternalError("Failed to check rate limits")

        if recent >= self.max_requests_per_hour:
            raise RateLimitExceeded()

        record = OtpVerification(
            id=str(uuid.uuid4()),
            user_id=user_id or None,
            phone_number=phone_number,
            otp_code=generate_otp(self.otp_length),
            purpose=purpose,
            is_verified=False,
            attempts=0,
            max_attempts=self.max_attempts,
            expires_at=now + self.ttl,
            created_at=now,
        )

        try:
            record = await self.otp_store.create(record)
        except StoreError:
            logger.exception("OTP could not be stored for %s", phone_number)
            raise InternalError("Failed to generate OTP")

        try:
            await self.sms_sender(phone_number, record.otp_code)
        except SmsDeliveryError:
            logger.exception("SMS delivery failed for %s, discarding OTP %s", phone_number, record.id)
            await self._discard(record.id)
            raise InternalError("Failed to send SMS")

        if user_id:
            try:
                await self.user_store.touch_last_otp_sent(user_id, when=now)
            except StoreError:
                logger.warning("last_otp_sent not updated for user %s", user_id, exc_info=True)

        logger.info("OTP %s issued for %s (%s)", record.id, phone_number, purpose.value)
        return IssuedOtp(otp_id=record.id, expires_at=record.expires_at)

    async def _discard(self, record_id: str) -> None:
        try:
            await self.otp_store.delete(record_id)
        except StoreError:
            logger.warning("Undelivered OTP %s could not be deleted", record_id, exc_info=True)

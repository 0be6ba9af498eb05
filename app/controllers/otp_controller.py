import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import INVALID_PHONE_FORMAT, InternalError, StoreError, ValidationError
from app.schemas.otp import (
    CleanupResponse,
    PhoneExistsResponse,
    PhoneOwner,
    SendOtpRequest,
    SendOtpResponse,
    UserData,
    VerifyOtpRequest,
    VerifyOtpResponse,
)
from app.services.otp_issuer import OtpIssuer, format_phone_number, is_valid_phone_number
from app.services.otp_store import SqlOtpStore
from app.services.otp_verification import OtpVerificationService, utcnow
from app.services.sms_service import send_otp_sms
from app.services.user_store import SqlUserStore

logger = logging.getLogger(__name__)


def _normalized(phone_number: Optional[str]) -> Optional[str]:
    # missing stays missing so the services report it
    return format_phone_number(phone_number) if phone_number else phone_number


async def verify_otp(payload: VerifyOtpRequest, db: AsyncSession) -> VerifyOtpResponse:
    """
    Consume an SMS code.

    Errors (ValidationError, InvalidOrExpiredOtp, InternalError) are raised
    by the service and rendered by the AppError handler in app.main.
    """
    service = OtpVerificationService(
        SqlOtpStore(db),
        SqlUserStore(db),
        max_attempts=settings.OTP_MAX_ATTEMPTS,
    )
    result = await service.verify(
        _normalized(payload.phone_number),
        payload.otp_code,
        payload.purpose,
    )

    return VerifyOtpResponse(
        user_id=result.user_id,
        phone_number=result.phone_number,
        purpose=result.purpose,
        user_data=UserData.model_validate(result.user) if result.user else None,
    )


async def send_otp(payload: SendOtpRequest, db: AsyncSession) -> SendOtpResponse:
    issuer = OtpIssuer(
        SqlOtpStore(db),
        SqlUserStore(db),
        ttl_minutes=settings.OTP_TTL_MINUTES,
        otp_length=settings.OTP_LENGTH,
        max_attempts=settings.OTP_MAX_ATTEMPTS,
        max_requests_per_hour=settings.OTP_MAX_REQUESTS_PER_HOUR,
        sms_sender=send_otp_sms,
    )
    issued = await issuer.issue(payload.phone_number, payload.purpose, payload.user_id)

    return SendOtpResponse(otp_id=issued.otp_id, expires_at=issued.expires_at)


async def check_phone_exists(phone_number: Optional[str], db: AsyncSession) -> PhoneExistsResponse:
    if not phone_number:
        raise ValidationError("Phone number is required")

    phone = format_phone_number(phone_number)
    if not is_valid_phone_number(phone):
        raise ValidationError(INVALID_PHONE_FORMAT)

    try:
        user = await SqlUserStore(db).find_by_phone(phone)
    except StoreError:
        logger.exception("Phone lookup failed for %s", phone)
        raise InternalError()

    if user is None:
        return PhoneExistsResponse(exists=False)
    return PhoneExistsResponse(exists=True, user=PhoneOwner.model_validate(user))


async def cleanup_expired_otps(db: AsyncSession) -> CleanupResponse:
    older_than = utcnow() - timedelta(minutes=settings.OTP_CLEANUP_AFTER_MINUTES)
    try:
        deleted = await SqlOtpStore(db).delete_expired(older_than=older_than)
    except StoreError:
        logger.exception("Expired OTP cleanup failed")
        raise InternalError()

    logger.info("Removed %d expired OTP records", deleted)
    return CleanupResponse(deleted=deleted)

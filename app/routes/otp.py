from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.controllers.otp_controller import (
    check_phone_exists,
    cleanup_expired_otps,
    send_otp,
    verify_otp,
)
from app.core.database import get_db
from app.schemas.otp import (
    CleanupResponse,
    PhoneExistsResponse,
    SendOtpRequest,
    SendOtpResponse,
    VerifyOtpRequest,
    VerifyOtpResponse,
)

router = APIRouter(prefix="/otp", tags=["Auth - OTP"])


@router.post(
    "/verify",
    response_model=VerifyOtpResponse,
    summary="Verify OTP",
    description="""
Consume a one-time code sent by SMS.

Wrong, expired, already used and exhausted codes all return the same
400 message. `userData` is only filled for `purpose=login` when an
account with that phone number exists.
    """,
)
async def verify(
    payload: VerifyOtpRequest,
    db: AsyncSession = Depends(get_db),
) -> VerifyOtpResponse:
    return await verify_otp(payload, db)


@router.post(
    "/send",
    response_model=SendOtpResponse,
    summary="Send OTP",
    description="Issue a 6-digit code for a phone number and purpose (max 3 per hour).",
)
async def send(
    payload: SendOtpRequest,
    db: AsyncSession = Depends(get_db),
) -> SendOtpResponse:
    return await send_otp(payload, db)


@router.get(
    "/phone-exists",
    response_model=PhoneExistsResponse,
    summary="Is this phone registered?",
    description="Used by the client to choose between OTP login and registration.",
)
async def phone_exists(
    phone_number: str | None = Query(None, alias="phoneNumber"),
    db: AsyncSession = Depends(get_db),
) -> PhoneExistsResponse:
    return await check_phone_exists(phone_number, db)


@router.post(
    "/cleanup",
    response_model=CleanupResponse,
    summary="Purge expired OTPs",
    description="Deletes codes that expired or were consumed more than OTP_CLEANUP_AFTER_MINUTES ago.",
)
async def cleanup(db: AsyncSession = Depends(get_db)) -> CleanupResponse:
    return await cleanup_expired_otps(db)


# Browsers' CORS preflights are answered by CORSMiddleware; bare OPTIONS
# calls from other clients get the same short "ok".
@router.options("/verify", include_in_schema=False)
@router.options("/send", include_in_schema=False)
async def preflight() -> PlainTextResponse:
    return PlainTextResponse("ok")

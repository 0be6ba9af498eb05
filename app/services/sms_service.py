import logging

import httpx

from app.core.config import settings
from app.core.exceptions import SmsDeliveryError

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


def otp_message(otp_code: str, ttl_minutes: int) -> str:
    return (
        f"Your QuickCourt verification code is: {otp_code}. "
        f"This code expires in {ttl_minutes} minutes."
    )


async def send_otp_sms(to_phone: str, otp_code: str) -> None:
    """
    Deliver an OTP through Twilio's Messages API.

    Without Twilio credentials (local development) the code is written to
    the log instead, so the flow can still be exercised end to end.
    Raises SmsDeliveryError when Twilio rejects the message or is unreachable.
    """
    body = otp_message(otp_code, settings.OTP_TTL_MINUTES)

    if not settings.twilio_configured:
        logger.warning("Twilio not configured, OTP for %s: %s", to_phone, otp_code)
        return

    url = TWILIO_MESSAGES_URL.format(sid=settings.TWILIO_ACCOUNT_SID)
    form = {
        "From": settings.TWILIO_PHONE_NUMBER,
        "To": to_phone,
        "Body": body,
    }

    try:
        async with httpx.AsyncClient(timeout=settings.SMS_TIMEOUT_SECONDS) as client:
            r = await client.post(
                url,
                data=form,
                auth=(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN),
            )
    except httpx.HTTPError as exc:
        raise SmsDeliveryError(f"Twilio request failed: {exc}") from exc

    if r.status_code >= 400:
        raise SmsDeliveryError(f"Twilio error {r.status_code}: {r.text}")

    # the message is already out; an odd body must not fail the request
    try:
        sid = r.json().get("sid")
    except (ValueError, AttributeError):
        sid = None
    logger.info("OTP sent to %s (sid=%s)", to_phone, sid)

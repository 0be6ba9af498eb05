"""
Error taxonomy for the OTP API.

AppError subclasses are rendered to JSON by the handler registered in
app.main. StoreError and SmsDeliveryError are raised by collaborators
(database stores, SMS gateway) and translated by the services.
"""
from fastapi import status


REQUIRED_VERIFY_FIELDS = "Phone number, OTP code, and purpose are required"
REQUIRED_SEND_FIELDS = "Phone number and purpose are required"
INVALID_PURPOSE = "Invalid purpose"
INVALID_PHONE_FORMAT = "Invalid phone number format"
INVALID_OR_EXPIRED_OTP = "Invalid or expired OTP. Please request a new one."
TOO_MANY_REQUESTS = "Too many OTP requests. Please wait an hour."
INTERNAL_SERVER_ERROR = "Internal server error"


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_body(self) -> dict:
        return {"error": self.message}


class ValidationError(AppError):
    """Missing or malformed input. Raised before any store access."""
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidOrExpiredOtp(AppError):
    """
    No eligible OTP record. Wrong code, expired, exhausted and already
    used all collapse into this one error and one message.
    """
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = INVALID_OR_EXPIRED_OTP):
        super().__init__(message)

    def to_body(self) -> dict:
        return {"success": False, "error": self.message}


class RateLimitExceeded(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, message: str = TOO_MANY_REQUESTS):
        super().__init__(message)


class InternalError(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = INTERNAL_SERVER_ERROR):
        super().__init__(message)


class StoreError(Exception):
    """Backend failure inside an OTP or user store."""


class SmsDeliveryError(Exception):
    """SMS gateway rejected the message or could not be reached."""

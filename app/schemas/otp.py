from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from app.models.otp_verification import OtpPurpose
from app.models.user import UserRole, UserStatus


class _CamelModel(BaseModel):
    """The web client speaks camelCase JSON; Python code uses snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _as_text(v: Any) -> Optional[str]:
    # numeric codes/phones arrive as JSON numbers from some clients;
    # anything else that is not a string is treated as missing
    if v is None or isinstance(v, str):
        return v
    if isinstance(v, int) and not isinstance(v, bool):
        return str(v)
    return None


# ── Request Bodies ────────────────────────────────────────────────────
# Every field is optional on purpose: missing or malformed values are
# reported with the API's own 400 message instead of FastAPI's generic 422.
class VerifyOtpRequest(_CamelModel):
    phone_number: Optional[str] = None
    otp_code: Optional[str] = None
    purpose: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "phoneNumber": "+15551230000",
                "otpCode": "482913",
                "purpose": "phone_verification",
            }
        },
    )

    @field_validator("phone_number", "otp_code", "purpose", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any):
        return _as_text(v)


class SendOtpRequest(_CamelModel):
    phone_number: Optional[str] = None
    purpose: Optional[str] = None
    user_id: Optional[str] = None

    @field_validator("phone_number", "purpose", "user_id", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any):
        return _as_text(v)


# ── Response Bodies ───────────────────────────────────────────────────
class UserData(BaseModel):
    """Full profile attached to a successful login verification."""
    id: str
    email: str
    full_name: str
    role: UserRole
    status: UserStatus
    avatar_url: str | None
    phone: str | None
    phone_verified: bool
    address: str | None
    business_name: str | None
    business_address: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class VerifyOtpResponse(_CamelModel):
    success: bool = True
    message: str = "OTP verified successfully"
    user_id: Optional[str] = None
    phone_number: str
    purpose: OtpPurpose
    user_data: Optional[UserData] = None


class SendOtpResponse(_CamelModel):
    success: bool = True
    message: str = "OTP sent successfully"
    otp_id: str
    expires_at: datetime


class PhoneOwner(BaseModel):
    id: str
    email: str
    full_name: str
    phone: str | None
    phone_verified: bool

    model_config = {"from_attributes": True}


class PhoneExistsResponse(BaseModel):
    """Lets the client choose between OTP login and registration."""
    exists: bool
    user: Optional[PhoneOwner] = None


class CleanupResponse(BaseModel):
    deleted: int

from __future__ import annotations

import uuid
from enum import Enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Boolean,
    Index,
    ForeignKey,
    CheckConstraint,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


# --------------------------------------------------
# ENUM
# --------------------------------------------------

class OtpPurpose(str, Enum):
    REGISTRATION = "registration"
    LOGIN = "login"
    PHONE_VERIFICATION = "phone_verification"
    PASSWORD_RESET = "password_reset"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --------------------------------------------------
# MODEL
# --------------------------------------------------

class OtpVerification(Base):
    """
    One issued SMS code.

    A row is usable only while is_verified is false, attempts is below
    the limit and expires_at is in the future. It is never deleted by
    verification: success, exhaustion and expiry are all terminal states
    kept for audit.
    """
    __tablename__ = "otp_verifications"

    __table_args__ = (
        Index("ix_otp_verifications_lookup", "phone_number", "purpose", "created_at"),
        CheckConstraint("attempts >= 0", name="ck_otp_verifications_attempts_non_negative"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    user_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    phone_number: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    otp_code: Mapped[str] = mapped_column(String(12), nullable=False)

    purpose: Mapped[OtpPurpose] = mapped_column(
        SAEnum(
            OtpPurpose,
            name="otp_purpose_enum",
            values_callable=lambda e: [p.value for p in e],
        ),
        nullable=False,
    )

    # --------------------------------------------------
    # STATE
    # --------------------------------------------------

    is_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3, server_default="3")

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<OtpVerification id={self.id} phone={self.phone_number!r} "
            f"purpose={self.purpose} verified={self.is_verified} attempts={self.attempts}>"
        )

import uuid
from enum import Enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, String, Text, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class UserRole(str, Enum):
    CUSTOMER = "customer"
    FACILITY_OWNER = "facility_owner"
    ADMIN = "admin"


class UserStatus(str, Enum):
    ACTIVE = "active"
    BANNED = "banned"
    INACTIVE = "inactive"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    QuickCourt account. Owned by the profile/booking side of the product;
    the OTP flow only reads it and flips phone_verified / last_otp_sent.

    Columns:
      id                UUID — primary key (string, portable across drivers)
      email             TEXT — unique login email
      full_name         TEXT — display name
      role              ENUM — customer / facility_owner / admin
      status            ENUM — active / banned / inactive
      phone             TEXT — E.164 number used for SMS login
      phone_verified    BOOL — set by a phone_verification OTP
      last_otp_sent     TS   — updated whenever an OTP is issued for this user
      business_*        TEXT — facility owners only
    """
    __tablename__ = "users"

    id:               Mapped[str]             = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email:            Mapped[str]             = mapped_column(String(255), unique=True, index=True, nullable=False)
    full_name:        Mapped[str]             = mapped_column(String(255), nullable=False)
    role:             Mapped[UserRole]        = mapped_column(
        SAEnum(UserRole, name="user_role", values_callable=lambda e: [r.value for r in e]),
        nullable=False,
        default=UserRole.CUSTOMER,
    )
    status:           Mapped[UserStatus]      = mapped_column(
        SAEnum(UserStatus, name="user_status", values_callable=lambda e: [s.value for s in e]),
        nullable=False,
        default=UserStatus.ACTIVE,
    )
    avatar_url:       Mapped[str | None]      = mapped_column(Text, nullable=True)
    phone:            Mapped[str | None]      = mapped_column(String(20), nullable=True, index=True)
    phone_verified:   Mapped[bool]            = mapped_column(Boolean, default=False, nullable=False, server_default="false")
    address:          Mapped[str | None]      = mapped_column(Text, nullable=True)
    business_name:    Mapped[str | None]      = mapped_column(String(255), nullable=True)
    business_address: Mapped[str | None]      = mapped_column(Text, nullable=True)
    last_otp_sent:    Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at:       Mapped[datetime]        = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at:       Mapped[datetime]        = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} phone={self.phone!r}>"

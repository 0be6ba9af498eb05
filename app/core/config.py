from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    All config comes from .env file.
    Change values in .env — they automatically apply everywhere.
    """

    # ── Database ──────────────────────────────────────────
    DATABASE_URL: str  # async driver, e.g. postgresql+asyncpg://...

    # ── CORS ──────────────────────────────────────────────
    ALLOWED_ORIGINS: str = "*"

    # ── App ───────────────────────────────────────────────
    APP_ENV: str = "production"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # ── OTP ───────────────────────────────────────────────
    OTP_MAX_ATTEMPTS: int = 3
    OTP_TTL_MINUTES: int = 10
    OTP_LENGTH: int = 6
    OTP_MAX_REQUESTS_PER_HOUR: int = 3
    OTP_CLEANUP_AFTER_MINUTES: int = 60

    # ── Twilio (optional: OTPs are logged when unset) ─────
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_PHONE_NUMBER: str | None = None
    SMS_TIMEOUT_SECONDS: float = 20

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def origins_list(self) -> list[str]:
        """Splits comma-separated ALLOWED_ORIGINS into a list."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def twilio_configured(self) -> bool:
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN and self.TWILIO_PHONE_NUMBER)


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# Single instance used across the entire app
settings = get_settings()

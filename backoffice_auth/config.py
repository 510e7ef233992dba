import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv(override=True)


def _env_bool(name: str, default: bool = False) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_list(name: str, default: str = "") -> tuple[str, ...]:
    raw_value = os.getenv(name, default)
    return tuple(item.strip() for item in raw_value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./backoffice_auth.db")
    jwt_secret: str = os.getenv("JWT_SECRET", "")
    jwt_algorithm: str = os.getenv("ALGORITHM", "HS256")
    access_token_expire_minutes: int = int(
        os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60")
    )
    otp_length: int = int(os.getenv("OTP_LENGTH", "6"))
    otp_ttl_seconds: int = int(os.getenv("OTP_TTL_SECONDS", "300"))
    otp_sweep_interval_seconds: int = int(
        os.getenv("OTP_SWEEP_INTERVAL_SECONDS", "300")
    )
    otp_sweep_grace_seconds: int = int(os.getenv("OTP_SWEEP_GRACE_SECONDS", "60"))
    # "live" sends through Gmail/Twilio, "log" only writes the code to the log.
    otp_delivery: str = os.getenv("OTP_DELIVERY", "live").strip().lower()
    dispatch_timeout_seconds: float = float(
        os.getenv("DISPATCH_TIMEOUT_SECONDS", "10")
    )
    otp_email_sender: str = (
        os.getenv("OTP_EMAIL_SENDER")
        or os.getenv("GMAIL_SENDER")
        or os.getenv("FROM_EMAIL", "")
    )
    otp_email_subject: str = os.getenv("OTP_EMAIL_SUBJECT", "Your verification code")
    gmail_token_file: str = os.getenv("GMAIL_TOKEN_FILE", "")
    gmail_credentials_file: str = os.getenv("GMAIL_CREDENTIALS_FILE", "")
    twilio_account_sid: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    twilio_auth_token: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    twilio_phone_number: str = os.getenv(
        "TWILIO_PHONE_NUMBER", os.getenv("PHONE_NUMBER", "")
    )
    default_country_code: str = os.getenv("DEFAULT_COUNTRY_CODE", "+351")
    seed_email: str = os.getenv("SEED_EMAIL", "").strip().lower()
    seed_username: str = os.getenv("SEED_USERNAME", "admin").strip()
    seed_contact: str = os.getenv("SEED_CONTACT", "").strip()
    sweeper_enabled: bool = _env_bool("OTP_SWEEPER_ENABLED", True)
    log_level: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    cors_origins: tuple[str, ...] = field(
        default_factory=lambda: _env_list(
            "CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
        )
    )

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.access_token_expire_minutes * 60


settings = Settings()

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "printshop"
    environment: str = "development"

    # Only this address may sign in as admin, and only through OTP
    admin_email: str = ""

    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    payment_currency: str = "INR"

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""
    smtp_from: str = ""
    business_email: str = ""

    upload_dir: str = str(Path(__file__).parent / "uploads")
    max_upload_files: int = 8
    max_upload_bytes: int = 10 * 1024 * 1024

    bcrypt_rounds: int = 10
    otp_ttl_minutes: int = 5
    otp_max_attempts: int = 5
    session_ttl_hours: int = 24 * 7
    rate_limit_enabled: bool = True

    cors_origins: List[str] = ["*"]

    class Config:
        env_file = str(Path(__file__).parent / ".env")
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def admin_email_norm(self) -> str:
        return self.admin_email.strip().lower()

    @property
    def payments_configured(self) -> bool:
        return bool(self.razorpay_key_id.strip() and self.razorpay_key_secret.strip())


@lru_cache
def get_settings() -> Settings:
    return Settings()

# birthday_worker/config.py
from pydantic_settings import BaseSettings
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

class Settings(BaseSettings):
    # Database Settings
    database_url: str = "postgresql://localhost:5432/birthdays"
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10
    db_command_timeout: int = 60

    # App Settings
    environment: str = "development"
    log_level: str = "INFO"

    # Scheduler Settings
    tick_interval_seconds: int = 60
    max_concurrent_tenants: int = 1
    admin_notice_days_ahead: int = 2
    stale_run_seconds: int = 900

    # Sender Settings
    default_from_email: Optional[str] = None
    default_from_name: str = "Birthday Bot"
    notifications_from_email: Optional[str] = None
    notifications_from_name: str = "Birthday Notifications"
    frontend_url: Optional[str] = None

    # Email Provider ("ses" or "console")
    email_provider: str = "console"
    aws_region: str = "us-east-1"
    ses_configuration_set: Optional[str] = None

    # SMS Provider ("termii", "console" or "none")
    sms_provider: str = "none"
    termii_api_key: Optional[str] = None
    termii_base_url: str = "https://v3.api.termii.com"
    default_sms_sender_id: str = "Birthdays"
    default_phone_country_code: Optional[str] = None

    class Config:
        env_file = ".env"
        extra = "ignore"  # This line allows extra env vars without errors

settings = Settings()

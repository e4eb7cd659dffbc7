"""Application configuration using Pydantic Settings."""
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # App
    app_name: str = "Rollcall"
    debug: bool = False
    log_level: str = "INFO"
    school_name: str = "School Administration"

    # MongoDB
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "rollcall"

    # JWT (tokens are issued by the identity service; we only verify them)
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60

    # Email transport (Brevo)
    brevo_api_key: str = ""
    mail_default_sender: str = '"Rollcall" <noreply@rollcall.local>'
    notification_send_delay_ms: int = 200  # pause between sequential sends

    # Alert scan
    alert_scan_enabled: bool = True
    alert_scan_hour: int = 6  # local time
    alert_scan_minute: int = 0
    consecutive_scan_buffer: int = 10  # records fetched beyond the threshold
    low_attendance_scan_floor: int = 10
    low_attendance_report_floor: int = 5

    # CORS (comma-separated origins)
    cors_origins: str = "http://localhost:5173"

    @model_validator(mode="after")
    def _validate_production_secrets(self):
        if not self.debug:
            if self.jwt_secret_key in ("change-me-in-production", ""):
                raise ValueError(
                    "JWT_SECRET_KEY must be set to a strong secret when DEBUG is not enabled. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
        return self


settings = Settings()

"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (and .env file).

The whole tree is built once at startup (see app.create_app) and handed to
every component; nothing below the composition root reads os.environ.

Env var names follow the legacy deployment: SMARTPING_APIKEY for the SMS key,
USE_DUMMY_OTP / DUMMY_OTP / MASTER_OTP for the OTP switches.
"""

from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    mongodb_uri: str
    db_name: str = "scan2card"


class JWTSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    jwt_issuer: str = "scan2card"
    jwt_audience: str = "scan2card.api"
    access_token_ttl_seconds: int = 86400
    refresh_token_ttl_seconds: int = 604800
    reset_token_ttl_seconds: int = 600

    jwt_secret: str = ""
    jwt_refresh_secret: str = ""

    @property
    def reset_token_secret(self) -> str:
        """Secret for reset-verification tokens, bound to the primary secret."""
        return f"{self.jwt_secret}_VOT"


class OtpSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Testing mode: no dispatch, fixed code. Deliberately not tied to ENV.
    use_dummy_otp: bool = False
    dummy_otp: str = Field(default="000000", pattern=r"^\d{4,6}$")

    # Always-valid support code, accepted for every purpose. Empty disables it.
    master_otp: str = Field(default="987651", pattern=r"^(\d{4,6})?$")

    otp_validity_minutes: int = Field(default=10, gt=0)
    otp_length: int = Field(default=6, ge=4, le=6)
    password_min_length: int = 6


class SmsSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", populate_by_name=True
    )

    smartping_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("SMARTPING_APIKEY", "SMARTPING_API_KEY"),
    )
    sms_api_url: str = "http://sms.textpe.in/api/mt/SendSMS"
    sms_sender_id: str = "CSPLSC"
    sms_channel: str = "2"
    sms_dcs: str = "0"
    sms_flash: str = "0"
    sms_route: str = "clickhere"
    sms_country_code: str = "91"
    sms_brand_name: str = "Colourstop Solutions"

    # Per-attempt timeout, independent of the retry budget
    sms_timeout_seconds: float = 10.0

    dispatch_max_attempts: int = Field(default=3, ge=1)
    dispatch_base_delay_seconds: float = 1.0
    dispatch_max_delay_seconds: float = 5.0

    @property
    def is_configured(self) -> bool:
        return bool(self.smartping_api_key) and (
            self.smartping_api_key != "your_smartping_api_key_here"
        )


class EmailSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    zepto_api_token: str = ""
    zepto_from_email: str = "noreply@scan2card.com"
    zepto_from_name: str = "Scan2Card"

    email_timeout_seconds: float = 10.0
    email_max_attempts: int = Field(default=3, ge=1)
    email_base_delay_seconds: float = 1.0
    email_max_delay_seconds: float = 5.0


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: str = "INFO"
    log_format: str = "console"  # "json" in production


class SentrySettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    sentry_dsn: str = ""
    sentry_send_pii: bool = False
    sentry_traces_sample_rate: float = 0.1
    sentry_profile_sample_rate: float = 0.05


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    env: str = "development"
    app_name: str = "scan2card-auth"

    # OpenAPI docs URL (None disables the docs UI in production)
    docs_url: Optional[str] = "/docs"

    # Sub-configs (composed via model_validator below)
    db: Optional[DatabaseSettings] = None
    jwt: Optional[JWTSettings] = None
    otp: Optional[OtpSettings] = None
    sms: Optional[SmsSettings] = None
    email: Optional[EmailSettings] = None
    logging: Optional[LoggingSettings] = None
    sentry: Optional[SentrySettings] = None

    @model_validator(mode="after")
    def _populate_sub_configs(self) -> "AppSettings":
        if self.db is None:
            self.db = DatabaseSettings()
        if self.jwt is None:
            self.jwt = JWTSettings()
        if self.otp is None:
            self.otp = OtpSettings()
        if self.sms is None:
            self.sms = SmsSettings()
        if self.email is None:
            self.email = EmailSettings()
        if self.logging is None:
            self.logging = LoggingSettings()
        if self.sentry is None:
            self.sentry = SentrySettings()
        return self

    @property
    def is_production(self) -> bool:
        return self.env == "production"

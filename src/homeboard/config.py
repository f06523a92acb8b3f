"""Service configuration using pydantic-settings."""

from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="HOMEBOARD_",
        extra="ignore",
    )

    # Storage
    database_path: str = Field(default="data/homeboard.db")
    media_dir: str = Field(
        default="",
        description="Directory for uploaded listing media (defaults to <db dir>/media)",
    )

    # Public site
    site_url: str = Field(
        default="http://localhost:8000",
        description="Public base URL used in email links",
    )
    site_name: str = Field(default="HaDirot", description="Brand name shown in emails")

    # Auth
    jwt_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Shared secret for verifying bearer tokens",
    )
    jwt_algorithm: str = Field(default="HS256")
    access_token_minutes: int = Field(
        default=60 * 24,
        ge=1,
        description="Lifetime of tokens issued by the CLI",
    )

    # ZeptoMail
    zepto_token: SecretStr = Field(
        default=SecretStr(""),
        description="ZeptoMail Send Mail token",
    )
    zepto_from_address: str = Field(default="", description="Verified sender address")
    zepto_from_name: str = Field(default="HaDirot")
    zepto_reply_to: str = Field(default="")
    zepto_api_url: str = Field(default="https://api.zeptomail.com/v1.1/email")

    # Listings
    rental_duration_days: int = Field(default=30, ge=1)
    sale_duration_days: int = Field(default=30, ge=1)
    in_contract_duration_days: int = Field(default=42, ge=1)
    extension_window_days: int = Field(default=7, ge=0)
    featured_duration_days: int = Field(default=7, ge=1)
    inactive_delete_after_days: int = Field(
        default=30,
        ge=1,
        description="Days an inactive listing is kept before it is deleted",
    )

    # Impersonation
    impersonation_minutes: int = Field(default=120, ge=1)

    # Analytics
    analytics_timezone: str = Field(
        default="America/New_York",
        description="IANA zone used to bucket events into days",
    )
    impression_retention_days: int = Field(default=30, ge=1)
    event_retention_days: int = Field(default=90, ge=1)

    # Digests
    admin_digest_enabled: bool = Field(default=True)
    admin_digest_lookback_hours: int = Field(default=24, ge=1)
    admin_digest_resend_days: int = Field(default=7, ge=0)
    digest_extra_recipients: str = Field(
        default="",
        description="Comma-separated addresses added to every admin digest",
    )

    # Web
    web_port: int = Field(default=8000, description="Web server port")
    web_host: str = Field(default="0.0.0.0", description="Web server host")
    enable_scheduler: bool = Field(
        default=True,
        description="Run cron jobs (rollup, cleanup, lifecycle, digest) in serve mode",
    )
    json_logs: bool = Field(default=False)

    @property
    def data_dir(self) -> str:
        """Return the directory containing the database."""
        return str(Path(self.database_path).parent)

    @property
    def resolved_media_dir(self) -> str:
        """Return the media directory, falling back to a folder next to the database."""
        return self.media_dir or str(Path(self.data_dir) / "media")

    def get_admin_emails_override(self) -> list[str]:
        """Parse digest_extra_recipients into a list of addresses."""
        return [a.strip() for a in self.digest_extra_recipients.split(",") if a.strip()]

"""Application settings and configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: Optional[str] = None
    postgres_user: str = "trustline"
    postgres_password: str = "trustline_dev_password"
    postgres_db: str = "trustline"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    # API
    api_port: int = 8000
    api_host: str = "0.0.0.0"
    secret_key: str = "dev-secret-key-change-in-production"
    environment: str = "development"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # Sessions
    session_default_ttl_seconds: int = 7 * 24 * 60 * 60

    # Anomaly detection
    failed_login_threshold: int = 5
    failed_login_window_minutes: int = 15
    multiple_ips_limit: int = 2  # more distinct IPs than this triggers a finding
    unusual_activity_multiplier: float = 3.0
    unusual_activity_baseline_days: int = 7
    unusual_activity_min_baseline_hours: int = 6
    suspicious_pattern_tags: list[str] = ["security", "authentication"]
    detection_max_evidence: int = 50
    detection_page_size: int = 500

    # Investigation cases
    case_number_prefix: str = "INV"
    case_number_width: int = 6

    # Exports
    export_page_size: int = 500
    export_dir: str = "./exports"
    export_staging_dir: str = "./exports/.staging"
    export_related_activity_limit: int = 1000

    # Case notifications (best-effort side channel)
    case_notification_url: Optional[str] = None
    case_notification_secret: Optional[str] = None
    case_notification_timeout_seconds: int = 5

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    @property
    def database_url_computed(self) -> str:
        """Compute database URL if not explicitly set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    def validate_production_settings(self):
        """Validate settings for production environment."""
        env = self.environment.lower()
        if env not in ("development", "test", "dev"):
            if self.secret_key == "dev-secret-key-change-in-production":
                raise ValueError(
                    "SECRET_KEY must be set in production. "
                    "Do not use the development default."
                )
            if self.case_notification_url and not self.case_notification_secret:
                raise ValueError(
                    "CASE_NOTIFICATION_SECRET is required when CASE_NOTIFICATION_URL is set."
                )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

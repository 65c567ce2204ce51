"""
Centralized configuration using Pydantic Settings.

All environment variables are loaded and validated here.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Finance database
    finance_db_host: str = "finance-db"
    finance_db_port: int = 5432
    finance_db_name: str = "finance"
    finance_db_user: str = "finance"
    finance_db_password: str = ""

    # Microsoft 365 (Graph)
    microsoft_client_id: str = ""
    microsoft_client_secret: str = ""
    microsoft_tenant_id: str = ""
    microsoft_scope: str = "offline_access User.Read Mail.Read Mail.ReadWrite Mail.Send"
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    graph_timeout_seconds: float = 30.0
    graph_max_retries: int = 3
    graph_retry_base_delay: float = 0.5  # seconds, doubled per attempt
    token_refresh_margin_seconds: int = 60

    # Ingestion
    ingest_default_max_messages: int = 30
    ingest_default_folder: str = "Inbox"
    ingest_attachment_limit: int = 15
    ingest_body_excerpt_chars: int = 800
    default_currency: str = "GBP"

    # Scheduler
    scheduler_enabled: bool = False
    scheduler_interval_minutes: int = 60

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    @property
    def database_url(self) -> str:
        """PostgreSQL connection URL for the finance database."""
        return (
            f"postgresql://{self.finance_db_user}:{self.finance_db_password}"
            f"@{self.finance_db_host}:{self.finance_db_port}/{self.finance_db_name}"
        )


# Global settings instance
settings = Settings()

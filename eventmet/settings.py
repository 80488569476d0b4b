"""Environment-driven settings and storage backend selection."""

import logging
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .adapters import InMemoryEventStore, SQLAlchemyEventStore
from .ports import EventStore

logger = logging.getLogger("eventmet.settings")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    service_name: str = Field("eventmet", validation_alias=AliasChoices("SERVICE_NAME"))
    log_level: str = Field("INFO", validation_alias=AliasChoices("LOG_LEVEL"))

    database_url: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("EVENTMET_DATABASE_URL", "DATABASE_URL"),
    )
    corpus_path: str = Field(
        "combined_data.json",
        validation_alias=AliasChoices("EVENTMET_CORPUS_PATH"),
    )

    admin_password: Optional[str] = Field(None, validation_alias=AliasChoices("ADMIN_PASSWORD"))
    cron_secret: Optional[str] = Field(None, validation_alias=AliasChoices("CRON_SECRET"))

    monthly_budget: Optional[float] = Field(
        None,
        validation_alias=AliasChoices("EVENTMET_MONTHLY_BUDGET", "MONTHLY_BUDGET"),
    )
    default_model: str = Field(
        "claude-3-5-haiku-20241022",
        validation_alias=AliasChoices("EVENTMET_DEFAULT_MODEL"),
    )

    retention_days: int = Field(30, validation_alias=AliasChoices("EVENTMET_RETENTION_DAYS"))
    session_ttl_days: int = Field(30, validation_alias=AliasChoices("EVENTMET_SESSION_TTL_DAYS"))
    search_limit: int = Field(5, validation_alias=AliasChoices("EVENTMET_SEARCH_LIMIT"))
    tracking_background: bool = Field(True, validation_alias=AliasChoices("EVENTMET_TRACKING_BACKGROUND"))

    rate_limit_enabled: bool = Field(True, validation_alias=AliasChoices("EVENTMET_RATE_LIMIT_ENABLED"))
    chat_rate_limit: int = Field(20, validation_alias=AliasChoices("EVENTMET_CHAT_RATE_LIMIT"))
    admin_rate_limit: int = Field(5, validation_alias=AliasChoices("EVENTMET_ADMIN_RATE_LIMIT"))
    rate_limit_window_seconds: int = Field(
        60,
        validation_alias=AliasChoices("EVENTMET_RATE_LIMIT_WINDOW_SECONDS"),
    )

    @property
    def effective_cron_secret(self) -> Optional[str]:
        return self.cron_secret or self.admin_password


def build_store(settings: Settings) -> EventStore:
    """Pick the storage backend once, at startup."""
    if settings.database_url:
        logger.info("Using SQL analytics store")
        return SQLAlchemyEventStore.from_url(settings.database_url)
    logger.warning("No database configured; analytics are kept in memory only")
    return InMemoryEventStore()

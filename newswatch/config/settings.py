"""Configuration settings for the news watch service."""

import logging
from functools import lru_cache
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings
from sqlalchemy.engine import URL, make_url

# Load .env file
load_dotenv()

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Read once at startup and handed to every component; the instance is
    frozen so nothing on the cycle or request path can mutate it.
    """

    # Feed
    feed_url: str = "https://www.techflowpost.com/rss.aspx"
    feed_link_filter: str = "/newsletter/"  # empty string keeps every entry
    poll_interval_minutes: int = 15

    # HTTP surface
    bind_addr: str = ":8082"
    max_items: int = 50
    shutdown_grace_seconds: int = 5

    # Classifier (OpenAI-compatible endpoint, called through LiteLLM)
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    openai_base_url: str = "https://api.openai.com/v1"
    classifier_timeout_seconds: int = 60
    summary_max_chars: int = 800

    # Notifications
    webhook_url: str = ""
    webhook_timeout_seconds: int = 10

    # Storage
    database_url: str = ""  # overrides the DB_* fields when set
    db_host: str = "localhost"
    db_port: int = 3306
    db_user: str = "root"
    db_password: str = ""
    db_name: str = "newswatch"

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"
        frozen = True

    @field_validator(
        "poll_interval_minutes",
        "max_items",
        "shutdown_grace_seconds",
        "classifier_timeout_seconds",
        "summary_max_chars",
        "webhook_timeout_seconds",
        "db_port",
        mode="before",
    )
    @classmethod
    def positive_int_or_default(cls, v: Any, info: ValidationInfo) -> Any:
        """Fall back to the field default for non-numeric or non-positive values."""
        default = cls.model_fields[info.field_name].default
        if v is None or v == "":
            return default
        try:
            parsed = int(v)
        except (TypeError, ValueError):
            parsed = 0
        if parsed <= 0:
            logger.warning("invalid %s=%r, using default %d", info.field_name.upper(), v, default)
            return default
        return parsed

    @property
    def classifier_enabled(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_minutes * 60.0

    def bind_host_port(self) -> tuple[str, int]:
        """Split BIND_ADDR into (host, port).

        Accepts ``host:port`` or ``:port``; an empty host binds every interface.
        """
        host, _, port = self.bind_addr.rpartition(":")
        try:
            port_num = int(port)
        except ValueError:
            logger.warning("invalid BIND_ADDR=%r, using :8082", self.bind_addr)
            return "0.0.0.0", 8082
        return host or "0.0.0.0", port_num

    def sqlalchemy_url(self) -> URL:
        """SQLAlchemy URL for the ledger database."""
        if self.database_url:
            return make_url(self.database_url)
        return URL.create(
            "mysql+pymysql",
            username=self.db_user,
            password=self.db_password or None,
            host=self.db_host,
            port=self.db_port,
            database=self.db_name,
            query={"charset": "utf8mb4"},
        )


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings, loaded on first use."""
    return Settings()

"""Configuration management for limitless-tracker."""
import logging
import os
from pydantic import BaseModel


class Config(BaseModel):
    """Application configuration loaded from environment variables."""
    LIMITLESS_API_URL: str = "https://api.limitless.exchange"
    WALLET_PRIVATE_KEY: str = ""
    HTTP_TIMEOUT: float = 30.0
    POLL_INTERVAL_MINUTES: int = 5
    TRADES_PAGE_LIMIT: int = 100
    BLOB_BACKEND: str = "file"
    BLOB_DIR: str = "data/blobs"
    DB_PATH: str = "data/blobs.db"
    HISTORY_MAX_DAYS: int = 90
    REPORT_TIMEZONE: str = "UTC"
    DASHBOARD_PORT: int = 8080
    LOG_LEVEL: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            LIMITLESS_API_URL=os.getenv("LIMITLESS_API_URL", "https://api.limitless.exchange"),
            WALLET_PRIVATE_KEY=os.getenv("WALLET_PRIVATE_KEY", ""),
            HTTP_TIMEOUT=float(os.getenv("HTTP_TIMEOUT", "30")),
            POLL_INTERVAL_MINUTES=int(os.getenv("POLL_INTERVAL_MINUTES", "5")),
            TRADES_PAGE_LIMIT=int(os.getenv("TRADES_PAGE_LIMIT", "100")),
            BLOB_BACKEND=os.getenv("BLOB_BACKEND", "file"),
            BLOB_DIR=os.getenv("BLOB_DIR", "data/blobs"),
            DB_PATH=os.getenv("DB_PATH", "data/blobs.db"),
            HISTORY_MAX_DAYS=int(os.getenv("HISTORY_MAX_DAYS", "90")),
            REPORT_TIMEZONE=os.getenv("REPORT_TIMEZONE", "UTC"),
            DASHBOARD_PORT=int(os.getenv("DASHBOARD_PORT", "8080")),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        )

    @property
    def is_sqlite_backend(self) -> bool:
        return self.BLOB_BACKEND.strip().lower() == "sqlite"

    @property
    def poll_interval_seconds(self) -> int:
        return max(1, self.POLL_INTERVAL_MINUTES) * 60

    @property
    def log_level_value(self) -> int:
        level = logging.getLevelName(self.LOG_LEVEL.upper())
        return level if isinstance(level, int) else logging.INFO

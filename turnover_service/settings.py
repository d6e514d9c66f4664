"""Application settings loaded from environment variables."""

from __future__ import annotations

import os
from pathlib import Path


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Settings:
    """Runtime settings for the service."""

    @property
    def db_path(self) -> Path:
        return Path(os.environ.get("TURNOVER_DB_PATH", "./data/turnover.db"))

    @property
    def db_url(self) -> str:
        configured = os.environ.get("TURNOVER_DB_URL")
        if configured:
            return configured
        return f"sqlite:///{self.db_path}"

    @property
    def api_token(self) -> str:
        return os.environ.get("TURNOVER_API_TOKEN", "dev-token")

    @property
    def notify_webhook_url(self) -> str | None:
        return os.environ.get("TURNOVER_NOTIFY_WEBHOOK_URL") or None

    @property
    def notify_timeout(self) -> float:
        return float(os.environ.get("TURNOVER_NOTIFY_TIMEOUT", "10"))

    @property
    def log_level(self) -> str:
        return os.environ.get("TURNOVER_LOG_LEVEL", "INFO").upper()

    @property
    def backfill_days_back(self) -> int:
        return _int_env("TURNOVER_BACKFILL_DAYS_BACK", 30)

    @property
    def duplicate_race_window_seconds(self) -> int:
        return _int_env("TURNOVER_DUPLICATE_RACE_WINDOW_SECONDS", 60)


settings = Settings()

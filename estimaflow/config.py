"""
Application Configuration.

``AppConfig`` is a pydantic-settings model read from the environment and
an optional ``.env`` file.  Build it once at startup (``get_config()``)
and pass it down; services never read the environment themselves.

Two features switch themselves off when unconfigured: the Supabase mirror
(no URL or key) and email delivery (no SMTP credentials).  Both are
reported once, as warnings, when the settings load.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_log = logging.getLogger("estimaflow.config")


class AppConfig(BaseSettings):
    """Runtime settings, one field per environment variable."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # --- Cloud mirror ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")

    # --- Local store ---
    SQLITE_PATH: str = "estimaflow_local.db"

    # --- Outbound email ---
    MAIL_SERVER: str = "smtp.gmail.com"
    MAIL_PORT: int = Field(default=587, gt=0, lt=65536)
    MAIL_USERNAME: str = ""
    MAIL_PASSWORD: SecretStr = SecretStr("")
    MAIL_FROM_NAME: str = "Estimaciones"
    APP_BASE_URL: str = "https://app.estimaciones.com"

    # --- Logging ---
    LOG_FILE: str = "estimaflow.log"
    LOG_MAX_BYTES: int = 5 * 1024 * 1024
    LOG_BACKUP_COUNT: int = 3

    # --- Workflow ---
    DELAY_THRESHOLD_HOURS: float = Field(default=24.0, gt=0)

    # --- Background workers ---
    NOTIFICATION_POLL_INTERVAL_S: float = Field(default=5.0, gt=0)
    NOTIFICATION_MAX_ATTEMPTS: int = Field(default=5, ge=1)
    SYNC_INTERVAL_S: float = Field(default=30.0, gt=0)

    @property
    def cloud_sync_enabled(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_ANON_KEY.get_secret_value())

    @property
    def email_enabled(self) -> bool:
        return bool(
            self.MAIL_SERVER
            and self.MAIL_USERNAME
            and self.MAIL_PASSWORD.get_secret_value()
        )

    @model_validator(mode="after")
    def _report_disabled_features(self) -> "AppConfig":
        if not self.cloud_sync_enabled:
            _log.warning("Supabase is not configured; changes stay in the local store.")
        if not self.email_enabled:
            _log.warning("SMTP is not configured; notifications will fail to send.")
        return self

    def validate_email_config(self) -> None:
        """Raise ``ValueError`` naming the missing SMTP setting, if any."""
        if not self.MAIL_SERVER:
            raise ValueError("MAIL_SERVER must be set")
        if not self.MAIL_USERNAME or not self.MAIL_PASSWORD.get_secret_value():
            raise ValueError("MAIL_USERNAME and MAIL_PASSWORD must be set")


_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Process-wide ``AppConfig``, created on first use."""
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance

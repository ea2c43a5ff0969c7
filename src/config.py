from functools import lru_cache
from typing import ClassVar

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process settings loaded from environment variables / .env file.

    The monitored URLs, backup sources and warning channels live in the TOML
    document at ``config_path``; these settings only locate that document and
    tune the runtime.
    """

    # TOML document with urls, backups and warning settings.
    # A default document is written here if the file is missing.
    config_path: str = "config.toml"

    # Root for persisted state: internal log, quota counter and one
    # directory per backup source.
    data_dir: str = "."

    # Network timeouts (seconds)
    probe_timeout_seconds: float = 10.0
    download_timeout_seconds: float = 300.0
    dispatch_timeout_seconds: float = 20.0

    # Tick cadence, one minute by default
    tick_cron: str = "* * * * *"

    log_level: str = "INFO"

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()

"""Load and validate the station's TOML configuration document."""

import enum
import logging
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.default_config import DEFAULT_CONFIG_TOML
from src.errors import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_UPTIME_INTERVAL_MINUTES = 60


class Interval(enum.StrEnum):
    HOURLY = "h"
    DAILY = "d"
    WEEKLY = "w"
    MONTHLY = "m"


_INTERVAL_ALIASES = {
    "hourly": Interval.HOURLY,
    "daily": Interval.DAILY,
    "weekly": Interval.WEEKLY,
    "monthly": Interval.MONTHLY,
}


class AuthConfig(BaseModel):
    """Bearer credential for outgoing requests: plain token or HS256 JWT."""

    token: str = ""
    secret: str = ""
    jwt_expiry: int = Field(default=600, ge=1)
    payload: dict[str, Any] = Field(default_factory=dict)


class BackupSourceConfig(BaseModel):
    """One [[backups]] entry."""

    model_config = ConfigDict(populate_by_name=True)

    description: str = Field(min_length=1)
    url: str
    restore_url: str = Field(default="", alias="restore")
    max_retained: int = Field(default=5, ge=1, alias="max")
    interval: Interval = Interval.DAILY
    time_of_day: int = Field(default=0, ge=0, alias="time")
    auth: AuthConfig | None = None

    @field_validator("interval", mode="before")
    @classmethod
    def _parse_interval(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            return _INTERVAL_ALIASES.get(lowered, lowered)
        return value

    @field_validator("description")
    @classmethod
    def _description_is_directory_name(cls, value: str) -> str:
        # The description doubles as the storage directory name
        if value in (".", "..") or "/" in value or "\\" in value:
            msg = f"Backup description {value!r} cannot be used as a directory name"
            raise ValueError(msg)
        return value


class UptimeSettings(BaseModel):
    interval_minutes: int = Field(default=DEFAULT_UPTIME_INTERVAL_MINUTES, ge=0)
    downtime_tolerance: int = Field(default=1, ge=0)


class UrlEntry(BaseModel):
    """One [[urls]] entry. Interval and tolerance fall back to [url_uptime_settings]."""

    description: str = ""
    url: str
    interval_minutes: int | None = Field(default=None, ge=1)
    downtime_tolerance: int | None = Field(default=None, ge=0)


class WarningSettings(BaseModel):
    use_email: bool = False
    send_post_request: bool = False
    post_request_routes: list[str] = Field(default_factory=list)
    email: str = ""
    daily_max: int = Field(default=4, ge=0)
    log_lines: int = Field(default=50, ge=0)
    auth: AuthConfig | None = None


class SmtpConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    server: str = ""
    port: int = Field(default=587, ge=1, le=65535)
    username: str = ""
    password: str = ""
    from_address: str = Field(default="", alias="from")


class ScheduleSettings(BaseModel):
    backups_enabled: bool = True


class StationConfig(BaseModel):
    """The whole configuration document."""

    token: str = ""
    secret: str = ""
    jwt_expiry: int = Field(default=600, ge=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    backups: list[BackupSourceConfig] = Field(default_factory=list)
    url_uptime_settings: UptimeSettings = Field(default_factory=UptimeSettings)
    urls: list[UrlEntry] = Field(default_factory=list)
    warning_settings: WarningSettings = Field(default_factory=WarningSettings)
    smtp: SmtpConfig = Field(default_factory=SmtpConfig)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)

    @model_validator(mode="after")
    def _check_document(self) -> "StationConfig":
        if self.url_uptime_settings.interval_minutes == 0:
            logger.warning(
                "url_uptime_settings.interval_minutes is 0, using default of %d minutes",
                DEFAULT_UPTIME_INTERVAL_MINUTES,
            )
            self.url_uptime_settings.interval_minutes = DEFAULT_UPTIME_INTERVAL_MINUTES

        seen: set[str] = set()
        for source in self.backups:
            if source.description in seen:
                msg = f"Duplicate backup description: {source.description!r}"
                raise ValueError(msg)
            seen.add(source.description)

        # Endpoints are keyed by description, or by URL when the description is empty
        names: set[str] = set()
        for entry in self.urls:
            name = entry.description or entry.url
            if name in names:
                msg = f"Duplicate uptime endpoint: {name!r}"
                raise ValueError(msg)
            names.add(name)
        return self

    @property
    def root_auth(self) -> AuthConfig:
        return AuthConfig(
            token=self.token,
            secret=self.secret,
            jwt_expiry=self.jwt_expiry,
            payload=dict(self.payload),
        )

    def auth_for_source(self, source: BackupSourceConfig) -> AuthConfig:
        return source.auth or self.root_auth

    def auth_for_warnings(self) -> AuthConfig:
        return self.warning_settings.auth or self.root_auth


def write_default_document(path: str) -> None:
    """Write the default configuration document to ``path``."""
    try:
        config_file = Path(path)
        config_file.parent.mkdir(parents=True, exist_ok=True)
        _ = config_file.write_text(DEFAULT_CONFIG_TOML, encoding="utf-8")
    except OSError as exc:
        msg = f"Could not write default config to {path}: {exc}"
        raise PersistenceError(msg) from exc
    logger.warning("Created %s with default settings. Review it and restart.", path)


def parse_document(text: str) -> StationConfig:
    """Parse and validate a TOML document.

    Raises:
        ValueError: If the TOML is malformed or fails validation.
    """
    try:
        raw = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        msg = f"Malformed TOML: {exc}"
        raise ValueError(msg) from exc
    try:
        return StationConfig.model_validate(raw)
    except Exception as exc:
        msg = f"Invalid configuration: {exc}"
        raise ValueError(msg) from exc


def load_document(path: str) -> StationConfig:
    """Load the configuration document, writing the default one if it is missing.

    Raises:
        PersistenceError: If the file cannot be read or the default cannot be written.
        ValueError: If the document is malformed.
    """
    config_file = Path(path)
    if not config_file.exists():
        logger.warning("'%s' not found, writing a default one", path)
        write_default_document(path)

    try:
        text = config_file.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Could not read {path}: {exc}"
        raise PersistenceError(msg) from exc

    try:
        return parse_document(text)
    except ValueError as exc:
        msg = f"Failed to parse {config_file.name}: {exc}"
        raise ValueError(msg) from exc

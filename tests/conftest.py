"""Shared pytest configuration and fixtures."""

from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import patch

import pytest

from src.config import Settings, get_settings
from src.document import StationConfig, parse_document
from src.notify.notifier import Notifier, QuotaCounter
from src.store.internal_log import InternalLog


@pytest.fixture(autouse=True)
def _no_dotenv() -> Generator[None]:
    """Block .env loading so tests never pick up a developer's local settings."""
    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def mock_settings(tmp_path: Any) -> Generator[Any]:
    """Provide fake settings pointing at a temp directory.

    Patches get_settings at every import site so cached references are overridden.
    """
    fake_settings = type(
        "FakeSettings",
        (),
        {
            "config_path": str(tmp_path / "config.toml"),
            "data_dir": str(tmp_path / "data"),
            "probe_timeout_seconds": 2.0,
            "download_timeout_seconds": 5.0,
            "dispatch_timeout_seconds": 2.0,
            "tick_cron": "* * * * *",
            "log_level": "INFO",
        },
    )()
    with (
        patch("src.config.get_settings", return_value=fake_settings),
        patch("src.engine.scheduler.get_settings", return_value=fake_settings),
        patch("src.api.main.get_settings", return_value=fake_settings),
    ):
        yield fake_settings


class FakeClock:
    """Settable clock passed to components instead of ``datetime.now``."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=UTC))


@pytest.fixture
def internal_log(tmp_path: Any, clock: FakeClock) -> InternalLog:
    return InternalLog(str(tmp_path / "internal_log.jsonl"), clock=clock)


@pytest.fixture
def make_config() -> Callable[[str], StationConfig]:
    """Parse an inline TOML snippet into a validated config."""

    def _make(text: str = "") -> StationConfig:
        return parse_document(text)

    return _make


@pytest.fixture
def make_notifier(tmp_path: Any, internal_log: InternalLog, clock: FakeClock) -> Callable[..., Notifier]:
    """Build a Notifier with both channels enabled and a recording email sender."""

    def _make(config: StationConfig | None = None, email_sender: Any = None, daily_max: int | None = None) -> Notifier:
        if config is None:
            config = parse_document(
                """
                [warning_settings]
                use_email = true
                send_post_request = true
                post_request_routes = ["https://hooks.test/log"]
                email = "ops@test.com"
                daily_max = 4
                log_lines = 5

                [smtp]
                server = "smtp.test.com"
                port = 587
                username = "bot@test.com"
                password = "pw"
                from = "bot@test.com"
                """
            )
        limit = config.warning_settings.daily_max if daily_max is None else daily_max
        quota = QuotaCounter(str(tmp_path / "warning_quota.json"), limit, clock=clock)
        return Notifier(
            config.warning_settings,
            config.smtp,
            config.auth_for_warnings(),
            internal_log,
            quota,
            email_sender=email_sender or (lambda *args: None),
            dispatch_timeout=2.0,
        )

    return _make

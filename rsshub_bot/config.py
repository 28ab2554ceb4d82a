"""Configuration management for RSSHub Telegram Bot."""

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from dateutil import tz

from .exceptions import ConfigError

MOCK_FEED_PATH = "/mock/36kr_newsflashes_rss.xml"
DEFAULT_TIMEZONE = "Asia/Shanghai"


@dataclass(frozen=True)
class TelegramConfig:
    """Configuration for Telegram Bot API."""

    bot_token: str
    chat_id: str
    parse_mode: str = "HTML"
    retry_attempts: int = 3
    backoff_factor: float = 2.0
    timeout: float = 30
    proxy_url: str | None = None


@dataclass(frozen=True)
class RSSConfig:
    """Feeds to poll and where to fetch them from."""

    rsshub_url: str
    feed_paths: tuple[str, ...]


@dataclass(frozen=True)
class ScheduleConfig:
    """Configuration for scheduled execution."""

    interval_hours: float = 1.0
    start_time: str | None = None
    timezone: str = DEFAULT_TIMEZONE
    skip_initial_check: bool = False

    @property
    def start_hour_minute(self) -> tuple[int, int] | None:
        if self.start_time is None:
            return None
        hour, minute = self.start_time.split(":")
        return int(hour), int(minute)


@dataclass(frozen=True)
class AppConfig:
    """Immutable application configuration, built once at startup."""

    telegram: TelegramConfig
    rss: RSSConfig
    schedule: ScheduleConfig
    debug_mode: bool = False
    use_mock_data: bool = False
    simulate_bot_only: bool = False
    log_level: str = "INFO"

    @property
    def feed_paths(self) -> tuple[str, ...]:
        """Feed identifiers to poll; mock-data mode replaces them with the fixture."""
        if self.use_mock_data:
            return (MOCK_FEED_PATH,)
        return self.rss.feed_paths


def parse_start_time(value) -> str | None:
    """Validate an optional "HH:MM" start time and return it normalized."""
    if value is None or value == "":
        return None

    try:
        parsed = datetime.strptime(str(value).strip(), "%H:%M")
    except ValueError as e:
        raise ConfigError(
            f"startTime must use 24-hour HH:MM format, got {value!r}"
        ) from e
    return parsed.strftime("%H:%M")


class Config:
    """Main configuration manager."""

    # Default feed config file path
    CONFIG_FILE = "rss-config.json"

    def __init__(self, environ: Mapping[str, str] | None = None):
        """Initialize configuration from environment variables."""
        env = os.environ if environ is None else environ

        self.bot_token = env.get("TELEGRAM_BOT_TOKEN", "")
        self.chat_id = env.get("CHAT_ID", "")
        self.config_file = env.get("RSS_CONFIG_FILE", self.CONFIG_FILE)
        self.timezone = env.get("TIMEZONE", DEFAULT_TIMEZONE)
        self.log_level = env.get("LOG_LEVEL", "INFO")
        self.proxy_url = env.get("HTTPS_PROXY") or env.get("HTTP_PROXY") or None
        self.debug_mode = env.get("DEBUG_MODE") == "true"
        self.use_mock_data = env.get("USE_MOCK_DATA") == "true"
        self.skip_initial_check = env.get("SKIP_INITIAL_CHECK") == "true"
        self.simulate_bot_only = env.get("SIMULATE_BOT_ONLY") == "true"

    def load(self) -> AppConfig:
        """Build the immutable application configuration.

        Raises:
            ConfigError: If a required setting is missing or malformed
        """
        if not self.bot_token or not self.chat_id:
            raise ConfigError(
                "Missing required environment variables (TELEGRAM_BOT_TOKEN, CHAT_ID)"
            )

        data = self.read_config_file()
        rss_config = self.get_rss_config(data)
        schedule_config = self.get_schedule_config(data)

        return AppConfig(
            telegram=self.get_telegram_config(),
            rss=rss_config,
            schedule=schedule_config,
            debug_mode=self.debug_mode,
            use_mock_data=self.use_mock_data,
            simulate_bot_only=self.simulate_bot_only,
            log_level=self.log_level,
        )

    def read_config_file(self) -> dict:
        """Read the JSON feed configuration file."""
        config_path = Path(self.config_file)
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in config file {config_path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Error reading config file {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {config_path} must contain a JSON object")
        return data

    def get_rss_config(self, data: dict) -> RSSConfig:
        """Extract the RSSHub URL and feed paths."""
        rsshub_url = data.get("rssHubUrl")
        if not rsshub_url or not isinstance(rsshub_url, str):
            raise ConfigError("rssHubUrl is required in config")

        feed_paths = data.get("feedPaths")
        if not isinstance(feed_paths, list):
            raise ConfigError("feedPaths is required and must be an array")

        paths = tuple(str(path).strip() for path in feed_paths if str(path).strip())
        if not paths and not self.use_mock_data:
            raise ConfigError("feedPaths must contain at least one feed")

        return RSSConfig(rsshub_url=rsshub_url, feed_paths=paths)

    def get_schedule_config(self, data: dict) -> ScheduleConfig:
        """Extract the polling interval and optional start time."""
        interval = data.get("checkInterval", 1)
        if isinstance(interval, bool) or not isinstance(interval, (int, float)):
            raise ConfigError(f"checkInterval must be a number of hours, got {interval!r}")

        if tz.gettz(self.timezone) is None:
            raise ConfigError(f"Unknown timezone: {self.timezone}")

        return ScheduleConfig(
            interval_hours=float(interval),
            start_time=parse_start_time(data.get("startTime")),
            timezone=self.timezone,
            skip_initial_check=self.skip_initial_check,
        )

    def get_telegram_config(self) -> TelegramConfig:
        """Get Telegram configuration."""
        return TelegramConfig(
            bot_token=self.bot_token,
            chat_id=self.chat_id,
            proxy_url=self.proxy_url,
        )

"""Centralized application settings.

A single place to load runtime configuration values. Every component receives
its values from :class:`AppSettings` through the dependency container rather
than reading ``os.environ`` directly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from . import constants


def _to_bool(value: Optional[str], default: bool = False) -> bool:
    """Normalize environment strings such as "true"/"1" into booleans."""

    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _to_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _to_tags(value: Optional[str], default: Tuple[str, ...]) -> Tuple[str, ...]:
    if value is None:
        return default
    return tuple(tag.strip().lower() for tag in value.split(",") if tag.strip())


@dataclass(frozen=True)
class AppSettings:
    """Immutable snapshot of high-level configuration values."""

    bot_token: str
    production_mode: bool
    timezone: str
    exam_page_url: str
    exam_api_marker: str
    booking_url_template: str
    poll_interval_seconds: float
    max_poll_duration_seconds: float
    capture_max_retries: int
    capture_retry_delay_seconds: float
    slot_pool_size: int
    batch_concurrency_limit: int
    base_display: int
    browser_headless: bool
    account_task_timeout_seconds: float
    payment_handoff_wait_seconds: float
    scheduler_check_interval_seconds: float
    monitoring_lookahead_seconds: float
    priority_locations: Tuple[str, ...]
    data_directory: str
    schedules_file: str
    accounts_file: str


def load_settings(env: Optional[Mapping[str, str]] = None) -> AppSettings:
    """Load configuration from the environment and fall back to defaults."""

    if env is None:
        load_dotenv(override=False)
        env = os.environ

    data_directory = env.get("DATA_DIRECTORY", "data")
    pool_size = max(1, _to_int(env.get("SLOT_POOL_SIZE"), constants.SlotPoolConfig.DEFAULT_SIZE))
    concurrency = _to_int(
        env.get("BATCH_CONCURRENCY_LIMIT"), constants.OrchestratorConfig.DEFAULT_CONCURRENCY
    )
    # More concurrent tasks than slots would only queue on the pool.
    concurrency = max(1, min(concurrency, pool_size))

    return AppSettings(
        bot_token=env.get("TELEGRAM_BOT_TOKEN", ""),
        production_mode=_to_bool(env.get("PRODUCTION_MODE"), default=False),
        timezone=env.get("BOT_TIMEZONE", "Asia/Kolkata"),
        exam_page_url=env.get("EXAM_PAGE_URL", constants.EXAM_PAGE_URL),
        exam_api_marker=env.get("EXAM_API_MARKER", constants.EXAM_API_MARKER),
        booking_url_template=env.get("BOOKING_URL_TEMPLATE", constants.BOOKING_URL_TEMPLATE),
        poll_interval_seconds=_to_float(
            env.get("POLL_INTERVAL_SECONDS"), constants.PollingConfig.INTERVAL
        ),
        max_poll_duration_seconds=_to_float(
            env.get("MAX_POLL_DURATION_MINUTES"), constants.PollingConfig.MAX_DURATION / 60
        ) * 60,
        capture_max_retries=_to_int(
            env.get("CAPTURE_MAX_RETRIES"), constants.CaptureConfig.MAX_RETRIES
        ),
        capture_retry_delay_seconds=_to_float(
            env.get("CAPTURE_RETRY_DELAY_SECONDS"), constants.CaptureConfig.RETRY_DELAY
        ),
        slot_pool_size=pool_size,
        batch_concurrency_limit=concurrency,
        base_display=_to_int(env.get("BASE_DISPLAY"), constants.SlotPoolConfig.BASE_DISPLAY),
        browser_headless=_to_bool(env.get("BROWSER_HEADLESS"), default=True),
        account_task_timeout_seconds=_to_float(
            env.get("ACCOUNT_TASK_TIMEOUT_HOURS"),
            constants.OrchestratorConfig.ACCOUNT_TASK_TIMEOUT / 3600,
        ) * 3600,
        payment_handoff_wait_seconds=_to_float(
            env.get("PAYMENT_HANDOFF_WAIT_SECONDS"),
            constants.OrchestratorConfig.PAYMENT_HANDOFF_WAIT,
        ),
        scheduler_check_interval_seconds=_to_float(
            env.get("SCHEDULER_CHECK_INTERVAL"), constants.SchedulerConfig.CHECK_INTERVAL
        ),
        monitoring_lookahead_seconds=_to_float(
            env.get("MONITORING_LOOKAHEAD_MINUTES"), constants.SchedulerConfig.LOOKAHEAD / 60
        ) * 60,
        priority_locations=_to_tags(
            env.get("PRIORITY_LOCATIONS"), constants.DEFAULT_PRIORITY_LOCATIONS
        ),
        data_directory=data_directory,
        schedules_file=env.get("SCHEDULES_FILE", os.path.join(data_directory, "schedules.json")),
        accounts_file=env.get("ACCOUNTS_FILE", os.path.join(data_directory, "accounts.json")),
    )


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Return a cached :class:`AppSettings` instance."""

    return load_settings()

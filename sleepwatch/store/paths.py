from __future__ import annotations

from datetime import date
from pathlib import Path

from platformdirs import user_config_dir, user_data_dir, user_runtime_dir


APP_NAME = "sleepwatch"


def get_config_dir() -> Path:
    return Path(user_config_dir(APP_NAME))


def get_data_dir() -> Path:
    return Path(user_data_dir(APP_NAME))


def get_event_logs_dir() -> Path:
    return get_data_dir() / "event-logs"


def event_log_path(day: date) -> Path:
    return get_event_logs_dir() / f"{day.isoformat()}.jsonl"


def default_pidfile_path() -> Path:
    return Path(user_runtime_dir(APP_NAME)) / f"{APP_NAME}.pid"

from .config import ensure_default_config_file, get_config_path, load_config, read_config
from .event_log import EventLog
from .paths import (
    default_pidfile_path,
    event_log_path,
    get_data_dir,
    get_event_logs_dir,
)
from .pidfile import pid_alive, read_pid, write_pidfile

__all__ = [
    "ensure_default_config_file",
    "get_config_path",
    "load_config",
    "read_config",
    "EventLog",
    "default_pidfile_path",
    "event_log_path",
    "get_data_dir",
    "get_event_logs_dir",
    "pid_alive",
    "read_pid",
    "write_pidfile",
]

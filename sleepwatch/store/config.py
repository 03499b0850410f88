from __future__ import annotations

import dataclasses
import logging
import math
import threading
import tomllib
from pathlib import Path

from sleepwatch.engine.types import AllowSleep, Config, ConfigError
from sleepwatch.store.paths import get_config_dir


LOG = logging.getLogger("sleepwatch")

# Config-file keys mirror the long command-line options.
COMMAND_KEYS: dict[str, str] = {
    "cantsleep": "cant_sleep_command",
    "sleep": "sleep_command",
    "wakeup": "wakeup_command",
    "displaydim": "display_dim_command",
    "displayundim": "display_undim_command",
    "displaysleep": "display_sleep_command",
    "displaywakeup": "display_wakeup_command",
    "idle": "idle_command",
    "idleresume": "idle_resume_command",
    "resume": "resume_command",
    "plug": "plug_command",
    "unplug": "unplug_command",
}
DURATION_KEYS: dict[str, str] = {
    "timeout": "idle_timeout",
    "break": "break_length",
}

_DURATION_UNITS = {"s": 1.0, "m": 60.0, "h": 3600.0}


def get_config_path() -> Path:
    return get_config_dir() / "config.toml"


def parse_duration(value: object, *, key: str = "duration") -> float:
    """Parse seconds given as a number or a string like "90", "1.5s", "5m"."""

    if isinstance(value, bool):
        raise ConfigError(f"invalid {key} {value!r}")

    if isinstance(value, int | float):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip().lower()
        factor = 1.0
        if text and text[-1] in _DURATION_UNITS:
            factor = _DURATION_UNITS[text[-1]]
            text = text[:-1].strip()
        try:
            seconds = float(text) * factor
        except ValueError:
            raise ConfigError(f"invalid {key} {value!r}") from None
    else:
        raise ConfigError(f"invalid {key} {value!r}")

    if not math.isfinite(seconds) or seconds < 0:
        raise ConfigError(f"invalid {key} {value!r}")
    if seconds > threading.TIMEOUT_MAX:
        raise ConfigError(f"{key} {value!r} is too long")
    return seconds


def parse_allow_sleep(value: object) -> AllowSleep:
    """`true` or "" denies sleep, a string is a command, `false` allows."""

    if value is None or value is False:
        return AllowSleep.always()
    if value is True:
        return AllowSleep.deny()
    if isinstance(value, str):
        command = value.strip()
        return AllowSleep.run(command) if command else AllowSleep.deny()
    raise ConfigError(f"invalid allowsleep {value!r}")


def _parse_command(key: str, value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a command string, got {value!r}")
    return value.strip() or None


def _pair(config: Config, duration_field: str, command_field: str, name: str, duration_key: str) -> Config:
    duration = getattr(config, duration_field)
    command = getattr(config, command_field)
    if duration == 0 and command:
        LOG.warning("%s without %s ignored", name, duration_key)
        return dataclasses.replace(config, **{command_field: None})
    if duration and not command:
        LOG.warning("%s without %s ignored", duration_key, name)
        return dataclasses.replace(config, **{duration_field: 0.0})
    return config


def normalize(config: Config) -> Config:
    """Drop half-configured duration/command pairs so each is all-or-nothing."""

    config = _pair(config, "idle_timeout", "idle_command", "idle", "timeout")
    config = _pair(config, "break_length", "resume_command", "resume", "break")

    if config.idle_resume_command and not config.idle_command:
        LOG.warning("idleresume without idle ignored")
        config = dataclasses.replace(config, idle_resume_command=None)

    if not config.has_commands():
        LOG.warning("no useful options set")

    return config


def config_from_mapping(raw: dict, *, source: str = "config") -> Config:
    fields: dict = {}

    for key, value in raw.items():
        if key == "allowsleep":
            fields["allow_sleep"] = parse_allow_sleep(value)
        elif key in COMMAND_KEYS:
            fields[COMMAND_KEYS[key]] = _parse_command(key, value)
        elif key in DURATION_KEYS:
            fields[DURATION_KEYS[key]] = parse_duration(value, key=key)
        else:
            LOG.warning("unknown parameter %r in %s", key, source)

    return normalize(Config(**fields))


def read_config_file(path: Path) -> dict:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"can't read config file {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"malformed config file {path}: {e}") from e


def read_config(path: Path | None = None, overrides: dict | None = None) -> Config:
    """Strict load used at startup and on reload; raises ConfigError.

    Command-line overrides win over values from the file.
    """

    raw: dict = {}
    if path is not None:
        raw.update(read_config_file(path))
    if overrides:
        raw.update(overrides)
    return config_from_mapping(raw, source=str(path) if path is not None else "arguments")


def default_config_toml() -> str:
    # Keep it minimal and editable.
    return (
        "# sleepwatch configuration\n"
        "# Location: ~/.config/sleepwatch/config.toml (or XDG_CONFIG_HOME)\n"
        "# Send SIGHUP (systemctl --user reload sleepwatch) after editing.\n"
        "\n"
        "# allowsleep = \"~/bin/may-i-sleep\"   # true denies sleep unconditionally\n"
        "# cantsleep = \"logger 'sleep retracted'\"\n"
        "# sleep = \"~/bin/on-sleep\"\n"
        "# wakeup = \"~/bin/on-wakeup\"\n"
        "\n"
        "# displaydim = \"\"\n"
        "# displayundim = \"\"\n"
        "# displaysleep = \"\"\n"
        "# displaywakeup = \"\"\n"
        "\n"
        "# Durations are seconds, or strings such as \"90s\", \"5m\", \"1h\".\n"
        "# timeout = \"10m\"\n"
        "# idle = \"~/bin/on-idle\"\n"
        "# idleresume = \"~/bin/on-idle-resume\"\n"
        "# break = \"15m\"\n"
        "# resume = \"~/bin/on-resume\"\n"
        "\n"
        "# plug = \"~/bin/on-ac\"\n"
        "# unplug = \"~/bin/on-battery\"\n"
    )


def ensure_default_config_file(path: Path | None = None) -> Path:
    config_path = path or get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    if not config_path.exists():
        config_path.write_text(default_config_toml(), encoding="utf-8")
    return config_path


def load_config(path: Path | None = None, *, create_if_missing: bool = False) -> tuple[Config, dict]:
    """Load config.toml, returning (Config, meta).

    Never raises; meta carries diagnostics for status output.
    """

    config_path = path or get_config_path()
    meta: dict = {"path": str(config_path), "loaded": False, "created": False}

    if create_if_missing:
        before = config_path.exists()
        ensure_default_config_file(config_path)
        meta["created"] = not before

    if not config_path.exists():
        return Config(), meta

    try:
        cfg = read_config(config_path)
    except ConfigError as e:
        meta["error"] = f"config_read_error: {e}"
        return Config(), meta

    meta["loaded"] = True
    return cfg, meta

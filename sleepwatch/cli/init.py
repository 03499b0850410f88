from __future__ import annotations

import argparse
import os
import shlex
import shutil
import subprocess
import sys
from pathlib import Path

from sleepwatch.engine.types import ConfigError
from sleepwatch.store import ensure_default_config_file, read_config


UNIT_NAME = "sleepwatch.service"

# init flag -> `sleepwatch run` flag, copied into ExecStart when set.
_PASSTHROUGH_FLAGS = {
    "syslog": "--syslog",
    "no_input": "--no-input",
    "no_display": "--no-display",
    "no_power_source": "--no-power-source",
    "no_event_log": "--no-event-log",
}


def add_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("-f", "--config", metavar="PATH", help="config file the service reads")
    p.add_argument("-p", "--pidfile", metavar="PATH", help="pidfile the service writes")
    p.add_argument("--syslog", action="store_true", help="have the service log to syslog")
    p.add_argument("--no-input", action="store_true", help="service ignores keyboard/mouse")
    p.add_argument("--no-display", action="store_true", help="service ignores display power")
    p.add_argument("--no-power-source", action="store_true", help="service ignores AC/battery")
    p.add_argument("--no-event-log", action="store_true", help="service keeps no event log")
    p.add_argument("--force", action="store_true", help="overwrite an existing unit")


def _unit_dir() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME")
    return (Path(base) if base else Path.home() / ".config") / "systemd" / "user"


def _program() -> list[str]:
    exe = shutil.which("sleepwatch")
    if exe:
        return [exe]
    return [sys.executable, "-m", "sleepwatch.cli.main"]


def exec_start(args: argparse.Namespace, *, config_path: Path, program: list[str] | None = None) -> str:
    """Build the ExecStart line for `sleepwatch run` with the chosen options."""

    argv = [*(program or _program()), "run", "--verbose", "--config", str(config_path)]
    if args.pidfile:
        argv += ["--pidfile", str(Path(args.pidfile).expanduser())]
    argv += [flag for attr, flag in _PASSTHROUGH_FLAGS.items() if getattr(args, attr, False)]
    # systemd expands %-specifiers in ExecStart.
    return shlex.join(argv).replace("%", "%%")


def render_unit(*, exec_line: str) -> str:
    lines = [
        "[Unit]",
        "Description=Run commands on sleep, wakeup, display, idle and power source changes",
        "After=graphical-session.target",
        "",
        "[Service]",
        "Type=simple",
        f"ExecStart={exec_line}",
        "ExecReload=/bin/kill -HUP $MAINPID",
        "Restart=on-failure",
        "RestartSec=3",
        "",
        "[Install]",
        "WantedBy=default.target",
    ]
    return "\n".join(lines) + "\n"


def main(args: argparse.Namespace) -> int:
    if sys.platform != "linux":
        print("init needs Linux with a systemd user instance")
        return 1

    systemctl = shutil.which("systemctl")
    if not systemctl:
        print("systemctl not found; can't install the service")
        return 1

    config_path = Path(args.config).expanduser() if args.config else ensure_default_config_file()
    try:
        config = read_config(config_path)
    except ConfigError as e:
        print(f"not installing, config is invalid: {e}")
        return 2
    if not config.has_commands():
        print(f"note: {config_path} sets no commands yet; the service will only log")

    unit_path = _unit_dir() / UNIT_NAME
    if unit_path.exists() and not args.force:
        print(f"{unit_path} exists; use --force to replace it")
        return 1

    unit_path.parent.mkdir(parents=True, exist_ok=True)
    unit_path.write_text(render_unit(exec_line=exec_start(args, config_path=config_path)), encoding="utf-8")
    print(f"wrote {unit_path}")

    for cmd in (["daemon-reload"], ["enable", "--now", UNIT_NAME]):
        try:
            subprocess.run([systemctl, "--user", *cmd], check=True)
        except subprocess.CalledProcessError as e:
            print(f"systemctl --user {' '.join(cmd)} failed: {e}")
            return 1

    print(f"config: {config_path}")
    print(f"after editing it: systemctl --user reload {UNIT_NAME}")
    return 0

from __future__ import annotations

import shutil
import subprocess
import sys
from datetime import date
from pathlib import Path

from sleepwatch.cli.init import UNIT_NAME
from sleepwatch.providers.power_linux import read_power_source
from sleepwatch.providers.session_linux import LoginctlSession
from sleepwatch.store import (
    EventLog,
    default_pidfile_path,
    event_log_path,
    get_config_path,
    load_config,
    pid_alive,
    read_pid,
)


def _systemd_status() -> dict:
    if sys.platform != "linux":
        return {"available": False}

    systemctl = shutil.which("systemctl")
    if not systemctl:
        return {"available": False}

    enabled = subprocess.run(
        [systemctl, "--user", "is-enabled", UNIT_NAME],
        capture_output=True,
        text=True,
    ).stdout.strip()
    active = subprocess.run(
        [systemctl, "--user", "is-active", UNIT_NAME],
        capture_output=True,
        text=True,
    ).stdout.strip()

    return {
        "available": True,
        "enabled": enabled,
        "active": active,
    }


def _format_event(event: dict) -> str:
    ts = event.get("ts", "?")
    name = event.get("event", "?")
    if "command" in event:
        return f"{ts} {name}: {event.get('command')}: {event.get('status')}"
    return f"{ts} {name}"


def main(*, config: str | None = None, pidfile: str | None = None) -> int:
    today = date.today()

    config_path = Path(config).expanduser() if config else get_config_path()
    cfg, config_meta = load_config(config_path)
    sysd = _systemd_status()

    print("sleepwatch status")

    if sysd.get("available"):
        print(f"service enabled: {sysd.get('enabled')}")
        print(f"service active: {sysd.get('active')}")
    else:
        print("service enabled: unknown (no systemctl)")
        print("service active: unknown (no systemctl)")

    pid_path = Path(pidfile).expanduser() if pidfile else default_pidfile_path()
    if pidfile or pid_path.exists():
        pid = read_pid(pid_path)
        if pid is None:
            print(f"pidfile: {pid_path} (missing or unreadable)")
        else:
            print(f"pidfile: {pid_path} pid={pid} running={pid_alive(pid)}")

    print(f"config: {config_path}")
    if config_meta.get("error"):
        print(f"config error: {config_meta.get('error')}")
    elif not config_meta.get("loaded"):
        print("config: not found (defaults)")

    print(
        "settings: "
        f"allowsleep={cfg.allow_sleep.mode.value} "
        f"idle_timeout={cfg.idle_timeout:g}s "
        f"break={cfg.break_length:g}s"
    )

    source = read_power_source()
    print(f"power source: {source.value if source is not None else 'unknown'}")

    session = LoginctlSession().get_snapshot(with_inhibitors=True)
    if session.session_id is None:
        print(f"session: unavailable ({session.error})")
    else:
        idle = f"{session.idle_seconds:.0f}s" if session.idle_seconds is not None else "unknown"
        print(f"session: id={session.session_id} idle={idle} locked={session.locked}")
        if session.sleep_inhibitors:
            print(f"sleep inhibitors: {', '.join(session.sleep_inhibitors)}")

    print(f"today events: {event_log_path(today)}")
    events = EventLog().tail(today, limit=10)
    if not events:
        print("recent events: none")
        return 0

    print("recent events:")
    for event in events:
        print(f"  {_format_event(event)}")
    return 0

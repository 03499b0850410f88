from __future__ import annotations

import argparse

from sleepwatch import __version__
from sleepwatch.cli.init import add_arguments as add_init_arguments


COPYRIGHT = (
    f"sleepwatch {__version__}\n"
    "Watches sleep, wakeup, display power, idleness and power source changes\n"
    "and runs a command for each transition.\n"
    "This is free software that comes with ABSOLUTELY NO WARRANTY.\n"
)

# (config key, short flag, long flag, metavar, help)
_COMMAND_OPTIONS = [
    ("cantsleep", "-c", "--cantsleep", "CMD",
     "run CMD when an allowed sleep is retracted or sleep is denied"),
    ("sleep", "-s", "--sleep", "CMD",
     "run CMD when the system goes to sleep (must finish within the inhibitor delay)"),
    ("wakeup", "-w", "--wakeup", "CMD", "run CMD when the system wakes up"),
    ("displaydim", "-D", "--displaydim", "CMD", "run CMD when the display is dimmed"),
    ("displayundim", "-E", "--displayundim", "CMD",
     "run CMD when the display is undimmed without having gone to sleep"),
    ("displaysleep", "-S", "--displaysleep", "CMD", "run CMD when the display goes to sleep"),
    ("displaywakeup", "-W", "--displaywakeup", "CMD", "run CMD when the display wakes up"),
    ("timeout", "-t", "--timeout", "DURATION",
     "idle timeout for --idle (seconds, or e.g. 90s, 5m, 1h)"),
    ("idle", "-i", "--idle", "CMD",
     "run CMD when there was no keyboard or mouse activity for --timeout"),
    ("idleresume", "-R", "--idleresume", "CMD",
     "run CMD when activity resumes after --idle ran"),
    ("break", "-b", "--break", "DURATION",
     "minimum break length for --resume (seconds, or e.g. 15m)"),
    ("resume", "-r", "--resume", "CMD",
     "run CMD when activity resumes after a break of at least --break"),
    ("plug", "-P", "--plug", "CMD", "run CMD when AC power is connected"),
    ("unplug", "-U", "--unplug", "CMD", "run CMD when AC power is disconnected"),
]


def _add_run_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("-f", "--config", metavar="PATH", help="read settings from a TOML config file")
    p.add_argument("-p", "--pidfile", metavar="PATH", help="write the process id to PATH")
    p.add_argument("-V", "--verbose", action="store_true", help="log every action taken")
    p.add_argument("--syslog", action="store_true", help="log to syslog instead of stdout")
    p.add_argument(
        "-a",
        "--allowsleep",
        nargs="?",
        const=True,
        default=None,
        metavar="CMD",
        help="allow sleep only when CMD exits 0; without CMD, deny sleep",
    )
    for key, short, long, metavar, help_text in _COMMAND_OPTIONS:
        p.add_argument(short, long, dest=f"opt_{key}", metavar=metavar, help=help_text)

    p.add_argument("--no-input", action="store_true", help="don't watch keyboard/mouse devices")
    p.add_argument("--no-display", action="store_true", help="don't watch display power")
    p.add_argument("--no-power-source", action="store_true", help="don't watch AC/battery")
    p.add_argument("--no-event-log", action="store_true", help="don't append to the event log")


def overrides_from_args(args: argparse.Namespace) -> dict:
    """Collect the config values given on the command line."""

    overrides: dict = {}
    if getattr(args, "allowsleep", None) is not None:
        overrides["allowsleep"] = args.allowsleep
    for key, *_ in _COMMAND_OPTIONS:
        value = getattr(args, f"opt_{key}", None)
        if value is not None:
            overrides[key] = value
    return overrides


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sleepwatch")
    parser.add_argument("-v", "--version", action="store_true", help="show version and exit")
    sub = parser.add_subparsers(dest="command")

    run_p = sub.add_parser("run", help="Run the watchdog (foreground)")
    _add_run_arguments(run_p)
    run_p.set_defaults(_handler="run")

    debug_p = sub.add_parser("debug", help="Run with debug logging; print commands instead of running them")
    _add_run_arguments(debug_p)
    debug_p.set_defaults(_handler="debug")

    idle_p = sub.add_parser("idletime", help="Print seconds without keyboard/mouse activity")
    idle_p.set_defaults(_handler="idletime")

    now_p = sub.add_parser("now", help="Put the system to sleep now")
    now_p.set_defaults(_handler="now")

    status_p = sub.add_parser("status", help="Show service status, config and recent events")
    status_p.add_argument("-f", "--config", metavar="PATH", help="config file to inspect")
    status_p.add_argument("-p", "--pidfile", metavar="PATH", help="pidfile to check")
    status_p.set_defaults(_handler="status")

    init_p = sub.add_parser("init", help="Write default config + install systemd user service")
    add_init_arguments(init_p)
    init_p.set_defaults(_handler="init")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(COPYRIGHT, end="")
        return 2

    handler = getattr(args, "_handler", None)
    if handler is None:
        parser.print_usage()
        return 2

    if handler in ("run", "debug"):
        from sleepwatch.cli.run import main as run_main

        return int(run_main(args, debug=handler == "debug"))

    if handler == "idletime":
        from sleepwatch.cli.idletime import main as idletime_main

        return int(idletime_main())

    if handler == "now":
        from sleepwatch.cli.now import main as now_main

        return int(now_main())

    if handler == "status":
        from sleepwatch.cli.status import main as status_main

        return int(status_main(config=args.config, pidfile=args.pidfile))

    if handler == "init":
        from sleepwatch.cli.init import main as init_main

        return int(init_main(args))

    raise RuntimeError(f"Unknown command: {handler}")


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

import argparse
import logging
import logging.handlers
import sys
from pathlib import Path

from sleepwatch.cli.main import overrides_from_args
from sleepwatch.engine.commands import DryRunDispatcher
from sleepwatch.engine.reactor import EventReactor
from sleepwatch.engine.types import Config, ConfigError, NotificationSource
from sleepwatch.providers.display_linux import DrmDisplaySource
from sleepwatch.providers.input_linux import EvdevActivitySource
from sleepwatch.providers.power_linux import UPowerSource, read_power_source
from sleepwatch.providers.sleep_linux import LogindSleepSource
from sleepwatch.store import EventLog, get_config_path, read_config, write_pidfile


LOG = logging.getLogger("sleepwatch")


def configure_logging(*, verbose: bool = False, debug: bool = False, syslog: bool = False) -> None:
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    if syslog:
        handler: logging.Handler = logging.handlers.SysLogHandler(
            address="/dev/log", facility=logging.handlers.SysLogHandler.LOG_DAEMON
        )
        handler.setFormatter(logging.Formatter("sleepwatch[%(process)d]: %(message)s"))
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))

    LOG.handlers[:] = [handler]
    LOG.setLevel(level)
    LOG.propagate = False


def resolve_config_path(value: str | None) -> Path | None:
    if value:
        return Path(value).expanduser()
    default = get_config_path()
    return default if default.exists() else None


def build_sources(args: argparse.Namespace) -> list[NotificationSource]:
    sources: list[NotificationSource] = [LogindSleepSource()]
    if not args.no_input:
        sources.append(EvdevActivitySource())
    if not args.no_display:
        sources.append(DrmDisplaySource())
    if not args.no_power_source:
        sources.append(UPowerSource())
    return sources


def _describe(config: Config) -> str:
    return (
        f"allowsleep={config.allow_sleep.mode.value} "
        f"idle_timeout={config.idle_timeout:g}s "
        f"break={config.break_length:g}s"
    )


def main(args: argparse.Namespace, *, debug: bool = False) -> int:
    configure_logging(verbose=args.verbose, debug=debug, syslog=args.syslog)

    config_path = resolve_config_path(args.config)
    overrides = overrides_from_args(args)

    def reload_config() -> Config:
        # Same file, same flags: a SIGHUP picks up edits to the file only.
        return read_config(config_path, overrides)

    try:
        config = reload_config()
    except ConfigError as e:
        LOG.error("%s", e)
        return 2

    pidfile = Path(args.pidfile).expanduser() if args.pidfile else None
    if pidfile is not None:
        try:
            write_pidfile(pidfile)
        except OSError as e:
            LOG.error("can't write pidfile %s: %s", pidfile, e)
            pidfile = None

    reactor = EventReactor(
        config=config,
        reload_config=reload_config,
        dispatcher=DryRunDispatcher() if debug else None,
        read_power_source=read_power_source,
        sources=build_sources(args),
        pidfile=pidfile,
        event_log=None if args.no_event_log else EventLog(),
    )

    LOG.info(
        "starting sleepwatch (config=%s, %s)",
        config_path or "(arguments only)",
        _describe(config),
    )
    return reactor.run()

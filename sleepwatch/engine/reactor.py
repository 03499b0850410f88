from __future__ import annotations

import heapq
import itertools
import logging
import signal
from dataclasses import dataclass, field
from pathlib import Path
from queue import Empty, SimpleQueue
from typing import Callable, Iterable

from .commands import CommandDispatcher, CommandRunner
from .display import DisplayPowerMonitor
from .idle import IdleActivityTracker
from .power import PowerTransitionMonitor
from .source import PowerSourceMonitor, PowerSourceReader
from .types import (
    Config,
    ConfigError,
    Notification,
    NotificationKind,
    NotificationSource,
    SetupError,
    boottime,
)


LOG = logging.getLogger("sleepwatch")

# One blocking wait never exceeds this; timers are re-checked after it.
MAX_WAIT_SECONDS = 3600.0


@dataclass(order=True)
class _Timer:
    deadline: float
    seq: int
    callback: Callable[[], None] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class EventReactor:
    """Single-threaded dispatch loop owning all four monitors.

    Sources and signal handlers only post() notifications; every monitor
    callback, timer and reload runs on the thread that calls run().
    """

    def __init__(
        self,
        *,
        config: Config,
        reload_config: Callable[[], Config] | None = None,
        dispatcher: CommandDispatcher | None = None,
        read_power_source: PowerSourceReader | None = None,
        sources: Iterable[NotificationSource] = (),
        pidfile: Path | None = None,
        event_log=None,
        clock: Callable[[], float] = boottime,
    ):
        self._config = config
        self._reload_config = reload_config
        self._sources = list(sources)
        self._started_sources: list[NotificationSource] = []
        self._pidfile = pidfile
        self._clock = clock

        # SimpleQueue.put is reentrant, so signal handlers may post directly.
        self._queue: SimpleQueue[Notification] = SimpleQueue()
        self._timers: list[_Timer] = []
        self._timer_seq = itertools.count()
        self._running = False
        self.exit_code: int | None = None

        self.runner = CommandRunner(dispatcher, event_log)
        self.idle = IdleActivityTracker(
            get_config=self.get_config, runner=self.runner, scheduler=self, clock=clock
        )
        self.display = DisplayPowerMonitor(get_config=self.get_config, runner=self.runner)
        self.power = PowerTransitionMonitor(
            get_config=self.get_config, runner=self.runner, idle=self.idle
        )
        self.power_source = PowerSourceMonitor(
            get_config=self.get_config,
            runner=self.runner,
            read=read_power_source or (lambda: None),
        )

        self._handlers: dict[NotificationKind, Callable[[Notification], None]] = {
            NotificationKind.INPUT_ACTIVITY: lambda n: self.idle.on_activity(n.when),
            NotificationKind.DISPLAY_WILL_POWER_OFF: lambda n: self.display.on_will_power_off(),
            NotificationKind.DISPLAY_HAS_POWERED_ON: lambda n: self.display.on_has_powered_on(),
            NotificationKind.CAN_SLEEP: self._on_can_sleep,
            NotificationKind.WILL_SLEEP: lambda n: self.power.on_will_sleep(n.ack),
            NotificationKind.WILL_NOT_SLEEP: lambda n: self.power.on_will_not_sleep(),
            NotificationKind.DID_WAKE: lambda n: self.power.on_did_wake(),
            NotificationKind.POWER_SOURCE_CHANGED: lambda n: self.power_source.on_changed(),
            NotificationKind.RELOAD: lambda n: self.reload(),
            NotificationKind.SHUTDOWN: lambda n: self.shutdown(),
        }

    def get_config(self) -> Config:
        return self._config

    # -- scheduling -----------------------------------------------------------

    def post(self, notification: Notification) -> None:
        """Queue a raw notification; safe from any thread or signal handler."""
        self._queue.put(notification)

    def call_later(self, delay: float, callback: Callable[[], None]) -> _Timer:
        timer = _Timer(
            deadline=self._clock() + max(0.0, delay),
            seq=next(self._timer_seq),
            callback=callback,
        )
        heapq.heappush(self._timers, timer)
        return timer

    def next_deadline(self) -> float | None:
        while self._timers and self._timers[0].cancelled:
            heapq.heappop(self._timers)
        return self._timers[0].deadline if self._timers else None

    def _fire_due_timers(self) -> None:
        while True:
            deadline = self.next_deadline()
            if deadline is None or deadline > self._clock():
                return
            timer = heapq.heappop(self._timers)
            timer.callback()

    # -- lifecycle ------------------------------------------------------------

    def start(self, *, install_signals: bool = True) -> None:
        for source in self._sources:
            if not source.start(self.post):
                raise SetupError(f"{source.name}: {source.last_error() or 'unavailable'}")
            self._started_sources.append(source)
            LOG.debug("subscribed to %s", source.name)

        if install_signals:
            self._install_signal_handlers()

        self.idle.arm()
        self.power_source.establish_baseline()
        self._running = True

    def _install_signal_handlers(self) -> None:
        def on_signal(signum, _frame):
            kind = NotificationKind.RELOAD if signum == signal.SIGHUP else NotificationKind.SHUTDOWN
            self.post(Notification(kind=kind, when=self._clock(), source=signal.Signals(signum).name))

        for signum in (signal.SIGHUP, signal.SIGINT, signal.SIGTERM):
            signal.signal(signum, on_signal)

    def run(self, *, install_signals: bool = True) -> int:
        try:
            self.start(install_signals=install_signals)
        except SetupError as exc:
            LOG.error("setup failed: %s", exc)
            self._close_sources()
            self._remove_pidfile()
            return 1

        while self._running:
            self.run_once(block=True)

        return self.exit_code if self.exit_code is not None else 0

    def run_once(self, *, block: bool = True) -> bool:
        """Fire due timers, then process at most one notification.

        Returns True if a notification was dispatched.
        """

        self._fire_due_timers()
        if not self._running and block:
            return False

        timeout = None
        deadline = self.next_deadline()
        if deadline is not None:
            timeout = min(max(0.0, deadline - self._clock()), MAX_WAIT_SECONDS)

        try:
            notification = self._queue.get(block=block, timeout=timeout if block else None)
        except Empty:
            self._fire_due_timers()
            return False

        self.dispatch(notification)
        return True

    def dispatch(self, notification: Notification) -> None:
        LOG.debug(
            "notification %s from %s", notification.kind.value, notification.source or "?"
        )
        self._handlers[notification.kind](notification)

    def _on_can_sleep(self, notification: Notification) -> None:
        if notification.veto is None:
            LOG.warning("sleep query without a reply handle ignored")
            return
        self.power.on_can_sleep(notification.veto)

    def reload(self) -> bool:
        LOG.info("got SIGHUP - reconfiguring")
        if self._reload_config is None:
            return False
        try:
            config = self._reload_config()
        except ConfigError as exc:
            LOG.error("reconfiguration failed, keeping previous settings: %s", exc)
            return False

        self._config = config
        self.idle.arm()
        return True

    def shutdown(self, exit_code: int = 0) -> None:
        LOG.info("shutting down")
        self._remove_pidfile()
        self.idle.disarm()
        self._close_sources()
        self._running = False
        self.exit_code = exit_code

    def _remove_pidfile(self) -> None:
        if self._pidfile is None:
            return
        try:
            self._pidfile.unlink(missing_ok=True)
        except OSError as exc:
            LOG.warning("can't remove pidfile %s: %s", self._pidfile, exc)

    def _close_sources(self) -> None:
        while self._started_sources:
            source = self._started_sources.pop()
            try:
                source.close()
            except OSError as exc:
                LOG.debug("closing %s: %s", source.name, exc)

from __future__ import annotations

import logging
from typing import Callable, Protocol

from .commands import CommandRunner
from .types import Config, boottime


LOG = logging.getLogger("sleepwatch")


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class IdleActivityTracker:
    """Turn input activity and one re-armable timer into idle/resume events.

    - Idle: no activity for `idle_timeout` seconds since the last (re)arm.
    - IdleResume: first activity after an Idle event.
    - Resume: activity after a gap of at least `break_length` seconds,
      whether or not an Idle event fired in between.
    """

    def __init__(
        self,
        *,
        get_config: Callable[[], Config],
        runner: CommandRunner,
        scheduler: Scheduler,
        clock: Callable[[], float] = boottime,
    ):
        self._get_config = get_config
        self._runner = runner
        self._scheduler = scheduler
        self._clock = clock
        self._timer: TimerHandle | None = None

        self.last_activity: float | None = None
        self.idle_resume_pending = False

    @property
    def armed(self) -> bool:
        return self._timer is not None

    def arm(self) -> None:
        """(Re)start the idle countdown from now using the current timeout."""

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        timeout = self._get_config().idle_timeout
        if timeout > 0:
            self._timer = self._scheduler.call_later(timeout, self._on_timeout)

    def disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timeout(self) -> None:
        # One-shot: the next arm() comes from activity, wake or reload.
        self._timer = None
        config = self._get_config()
        self._runner.run("idle", config.idle_command)
        self.idle_resume_pending = True

    def on_activity(self, when: float | None = None) -> None:
        now = self._clock() if when is None else when
        config = self._get_config()

        if self.last_activity is None:
            elapsed = 0.0
        else:
            elapsed = now - self.last_activity

        if config.break_length > 0 and elapsed >= config.break_length:
            LOG.debug("resumed after %.1fs (break: %.1fs)", elapsed, config.break_length)
            self._runner.run("resume", config.resume_command)

        if self.idle_resume_pending:
            self.idle_resume_pending = False
            self._runner.run("idleresume", config.idle_resume_command)

        self.last_activity = now
        self.arm()

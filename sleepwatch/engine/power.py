from __future__ import annotations

import logging
from typing import Callable

from .commands import CommandRunner
from .idle import IdleActivityTracker
from .types import AllowSleepMode, Config, SleepState, SleepVeto


LOG = logging.getLogger("sleepwatch")


class PowerTransitionMonitor:
    """System sleep/wake state machine, including the sleep veto.

    Awake --CanSleep(allow)--> SleepPending --WillSleep--> Asleep --DidWake--> Awake
    """

    def __init__(
        self,
        *,
        get_config: Callable[[], Config],
        runner: CommandRunner,
        idle: IdleActivityTracker,
    ):
        self._get_config = get_config
        self._runner = runner
        self._idle = idle
        self.state = SleepState.AWAKE

    def on_can_sleep(self, veto: SleepVeto) -> bool:
        """Answer the veto exactly once; return True if sleep was allowed."""

        config = self._get_config()

        if self.state == SleepState.SLEEP_PENDING:
            # A sleep we allowed earlier was retracted by another vetoer and
            # the platform never told us.
            self._cant_sleep(config)
        elif self.state == SleepState.ASLEEP:
            LOG.warning("sleep query while asleep; assuming a missed wakeup")
            self.state = SleepState.AWAKE

        allowed = False
        try:
            allowed = self._evaluate(config)
        finally:
            if allowed:
                veto.allow()
            else:
                veto.deny()
            if veto.expired():
                LOG.warning("sleep veto answered after its deadline")

        if allowed:
            self.state = SleepState.SLEEP_PENDING
        else:
            self._cant_sleep(config)
        return allowed

    def _evaluate(self, config: Config) -> bool:
        policy = config.allow_sleep
        if policy.mode == AllowSleepMode.ALLOW:
            self._runner.note("allow sleep")
            return True
        if policy.mode == AllowSleepMode.DENY:
            self._runner.note("deny sleep")
            return False

        status = self._runner.run("allowsleep", policy.command)
        allowed = status == 0
        LOG.info("%s sleep: exit status %s", "allow" if allowed else "deny", status)
        return allowed

    def _cant_sleep(self, config: Config) -> None:
        self.state = SleepState.AWAKE
        if config.cant_sleep_command:
            self._runner.run("cantsleep", config.cant_sleep_command)
        else:
            self._runner.note("can't sleep")

    def on_will_not_sleep(self) -> None:
        if self.state == SleepState.SLEEP_PENDING:
            self._cant_sleep(self._get_config())
        else:
            LOG.debug("will-not-sleep while %s; nothing to retract", self.state.value)

    def on_will_sleep(self, ack: Callable[[], None] | None = None) -> None:
        try:
            if self.state == SleepState.ASLEEP:
                LOG.debug("duplicate will-sleep ignored")
                return
            if self.state == SleepState.AWAKE:
                LOG.debug("will-sleep without a sleep query; treating as allowed")

            self._runner.run("sleep", self._get_config().sleep_command)
            self.state = SleepState.ASLEEP
        finally:
            if ack is not None:
                ack()

    def on_did_wake(self) -> None:
        if self.state != SleepState.ASLEEP:
            LOG.debug("wakeup while %s", self.state.value)
        self.state = SleepState.AWAKE
        self._idle.arm()
        self._runner.run("wakeup", self._get_config().wakeup_command)

from __future__ import annotations

import logging
from typing import Callable

from .commands import CommandRunner
from .types import Config, PowerSourceState


LOG = logging.getLogger("sleepwatch")

PowerSourceReader = Callable[[], PowerSourceState | None]


class PowerSourceMonitor:
    def __init__(
        self,
        *,
        get_config: Callable[[], Config],
        runner: CommandRunner,
        read: PowerSourceReader,
    ):
        self._get_config = get_config
        self._runner = runner
        self._read = read
        self.state = PowerSourceState.UNKNOWN

    def establish_baseline(self) -> PowerSourceState:
        if self.state == PowerSourceState.UNKNOWN:
            current = self._read()
            if current is None:
                LOG.debug("power source unreadable at startup")
            else:
                self.state = current
                LOG.debug("power source baseline: %s", current.value)
        return self.state

    def on_changed(self) -> None:
        """Re-read the power source; fire only on an actual AC/battery switch.

        The platform also signals unrelated changes (battery percentage, ...),
        and a failed read never counts as a switch.
        """

        current = self._read()
        if current is None:
            LOG.debug("power source read failed; assuming no change")
            return

        if current == self.state:
            return

        if self.state == PowerSourceState.UNKNOWN:
            self.state = current
            LOG.debug("power source baseline: %s", current.value)
            return

        config = self._get_config()
        if current == PowerSourceState.AC:
            if config.plug_command:
                self._runner.run("plug", config.plug_command)
            else:
                self._runner.note("power plugged in")
        else:
            if config.unplug_command:
                self._runner.run("unplug", config.unplug_command)
            else:
                self._runner.note("power unplugged")
        self.state = current

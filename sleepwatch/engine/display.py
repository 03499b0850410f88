from __future__ import annotations

from typing import Callable

from .commands import CommandRunner
from .types import Config, DisplayState


class DisplayPowerMonitor:
    """Two-stage display state machine: On -> Dimmed -> Off, reset to On.

    The platform announces each stage with the same "will power off" message,
    so the first one means dimmed and the second one means asleep.
    """

    def __init__(self, *, get_config: Callable[[], Config], runner: CommandRunner):
        self._get_config = get_config
        self._runner = runner
        self.state = DisplayState.ON

    def on_will_power_off(self) -> None:
        if self.state == DisplayState.OFF:
            # Duplicate notification; already off.
            return

        config = self._get_config()
        if self.state == DisplayState.ON:
            self.state = DisplayState.DIMMED
            self._runner.run("displaydim", config.display_dim_command)
        else:
            self.state = DisplayState.OFF
            self._runner.run("displaysleep", config.display_sleep_command)

    def on_has_powered_on(self) -> None:
        config = self._get_config()
        if self.state == DisplayState.DIMMED:
            self._runner.run("displayundim", config.display_undim_command)
        else:
            self._runner.run("displaywakeup", config.display_wakeup_command)
        self.state = DisplayState.ON

from __future__ import annotations

import logging
import subprocess
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from sleepwatch.store.event_log import EventLog


LOG = logging.getLogger("sleepwatch")

# Status reported when the shell itself could not be started.
EXEC_FAILED_STATUS = 127


class CommandDispatcher(Protocol):
    def execute(self, command: str) -> int: ...


class ShellDispatcher:
    """Run a command through /bin/sh and block until it exits."""

    def execute(self, command: str) -> int:
        try:
            result = subprocess.run(command, shell=True, check=False)
        except (OSError, ValueError) as exc:
            LOG.error("can't execute %r: %s", command, exc)
            return EXEC_FAILED_STATUS
        return result.returncode


class DryRunDispatcher:
    def execute(self, command: str) -> int:
        LOG.info("dry run, not executing: %s", command)
        return 0


class CommandRunner:
    def __init__(
        self,
        dispatcher: CommandDispatcher | None = None,
        event_log: EventLog | None = None,
    ):
        self.dispatcher: CommandDispatcher = dispatcher or ShellDispatcher()
        self._event_log = event_log

    def run(self, label: str, command: str | None) -> int | None:
        """Run `command` if set, log its exit status and return it.

        Returns None when no command is configured for `label`.
        """
        if not command:
            return None

        status = self.dispatcher.execute(command)
        LOG.info("%s: %s: %d", label, command, status)

        if self._event_log is not None:
            try:
                self._event_log.log_command(
                    when=datetime.now().astimezone(), label=label, command=command, status=status
                )
            except OSError as exc:
                LOG.warning("can't append to event log: %s", exc)

        return status

    def note(self, label: str, **fields) -> None:
        """Record a transition that ran no command."""
        LOG.info("%s", label)
        if self._event_log is not None:
            try:
                self._event_log.append(
                    when=datetime.now().astimezone(), event={"event": label, **fields}
                )
            except OSError as exc:
                LOG.warning("can't append to event log: %s", exc)

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Final, Protocol


SLEEP_VETO_DEADLINE_SECONDS: Final[float] = 15.0


def boottime() -> float:
    """Seconds since boot, counting time spent suspended (CLOCK_BOOTTIME)."""
    return time.clock_gettime(time.CLOCK_BOOTTIME)


class SleepState(Enum):
    AWAKE = "awake"
    SLEEP_PENDING = "sleep_pending"
    ASLEEP = "asleep"


class DisplayState(Enum):
    ON = "on"
    DIMMED = "dimmed"
    OFF = "off"


class PowerSourceState(Enum):
    UNKNOWN = "unknown"
    AC = "ac"
    BATTERY = "battery"


class NotificationKind(Enum):
    INPUT_ACTIVITY = "input_activity"
    DISPLAY_WILL_POWER_OFF = "display_will_power_off"
    DISPLAY_HAS_POWERED_ON = "display_has_powered_on"
    CAN_SLEEP = "can_sleep"
    WILL_SLEEP = "will_sleep"
    WILL_NOT_SLEEP = "will_not_sleep"
    DID_WAKE = "did_wake"
    POWER_SOURCE_CHANGED = "power_source_changed"
    RELOAD = "reload"
    SHUTDOWN = "shutdown"


class AllowSleepMode(Enum):
    ALLOW = "allow"
    DENY = "deny"
    COMMAND = "command"


@dataclass(frozen=True)
class AllowSleep:
    mode: AllowSleepMode = AllowSleepMode.ALLOW
    command: str | None = None

    def __post_init__(self):
        if self.mode == AllowSleepMode.COMMAND and not self.command:
            raise ValueError("AllowSleepMode.COMMAND requires a command")
        if self.mode != AllowSleepMode.COMMAND and self.command is not None:
            raise ValueError(f"AllowSleepMode.{self.mode.name} takes no command")

    @classmethod
    def always(cls) -> AllowSleep:
        return cls()

    @classmethod
    def deny(cls) -> AllowSleep:
        return cls(mode=AllowSleepMode.DENY)

    @classmethod
    def run(cls, command: str) -> AllowSleep:
        return cls(mode=AllowSleepMode.COMMAND, command=command)


@dataclass(frozen=True)
class Config:
    """Immutable configuration snapshot.

    Durations are seconds; 0 disables the paired command. The loader keeps a
    duration non-zero iff its command is set, but monitors must not rely on it
    after a reload.
    """

    allow_sleep: AllowSleep = AllowSleep()
    cant_sleep_command: str | None = None
    sleep_command: str | None = None
    wakeup_command: str | None = None
    display_dim_command: str | None = None
    display_undim_command: str | None = None
    display_sleep_command: str | None = None
    display_wakeup_command: str | None = None
    idle_timeout: float = 0.0
    idle_command: str | None = None
    idle_resume_command: str | None = None
    break_length: float = 0.0
    resume_command: str | None = None
    plug_command: str | None = None
    unplug_command: str | None = None

    def has_commands(self) -> bool:
        return self.allow_sleep.mode != AllowSleepMode.ALLOW or any(
            (
                self.cant_sleep_command,
                self.sleep_command,
                self.wakeup_command,
                self.display_dim_command,
                self.display_undim_command,
                self.display_sleep_command,
                self.display_wakeup_command,
                self.idle_command,
                self.idle_resume_command,
                self.resume_command,
                self.plug_command,
                self.unplug_command,
            )
        )


class SetupError(RuntimeError):
    """A raw notification stream could not be subscribed."""


class ConfigError(ValueError):
    """The configuration could not be parsed."""


class VetoAlreadyAnsweredError(RuntimeError):
    pass


class SleepVeto:
    """Pending reply to a platform "may the system sleep?" query.

    Exactly one of allow()/deny() may be called.
    """

    def __init__(
        self,
        *,
        reply: Callable[[bool], None],
        deadline: float | None = None,
        clock: Callable[[], float] = boottime,
    ):
        self._reply = reply
        self._clock = clock
        self.deadline = (
            deadline if deadline is not None else clock() + SLEEP_VETO_DEADLINE_SECONDS
        )
        self._lock = threading.Lock()
        self.answer: bool | None = None

    @property
    def answered(self) -> bool:
        return self.answer is not None

    def expired(self) -> bool:
        return self._clock() > self.deadline

    def allow(self) -> None:
        self._answer(True)

    def deny(self) -> None:
        self._answer(False)

    def _answer(self, allowed: bool) -> None:
        with self._lock:
            if self.answer is not None:
                raise VetoAlreadyAnsweredError(
                    f"sleep veto already answered ({'allow' if self.answer else 'deny'})"
                )
            self.answer = allowed
        self._reply(allowed)


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    when: float
    veto: SleepVeto | None = None
    ack: Callable[[], None] | None = None
    source: str | None = None


class NotificationSource(Protocol):
    name: str

    def start(self, post: Callable[[Notification], None]) -> bool: ...

    def last_error(self) -> str | None: ...

    def close(self) -> None: ...

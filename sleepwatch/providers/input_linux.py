from __future__ import annotations

import logging
import os
import select
from threading import Thread
from typing import Callable

from sleepwatch.engine.types import Notification, NotificationKind, boottime


LOG = logging.getLogger("sleepwatch")

# Activity closer together than this is reported once.
DEFAULT_MIN_INTERVAL_SECONDS = 0.1


def _is_human_input(device) -> bool:
    from evdev import ecodes

    caps = device.capabilities()
    keys = caps.get(ecodes.EV_KEY, [])
    return (
        ecodes.BTN_MOUSE in keys
        or ecodes.BTN_TOUCH in keys
        or ecodes.KEY_ENTER in keys
        or ecodes.EV_REL in caps
    )


class EvdevActivitySource:
    """Keyboard/mouse activity from /dev/input via python-evdev.

    The user needs read access to the event devices (usually the `input`
    group).
    """

    name = "evdev"

    def __init__(self, *, min_interval: float = DEFAULT_MIN_INTERVAL_SECONDS):
        self._min_interval = min_interval
        self._post: Callable[[Notification], None] | None = None
        self._thread: Thread | None = None
        self._devices: dict[int, object] = {}
        self._wake_r: int | None = None
        self._wake_w: int | None = None
        self._started = False
        self._available = False
        self._last_error: str | None = None
        self._last_post: float | None = None

    def start(self, post: Callable[[Notification], None]) -> bool:
        if self._started:
            return self._available
        self._started = True

        try:
            import evdev
        except Exception as exc:
            self._last_error = f"evdev import failed: {exc}"
            return False

        for path in evdev.list_devices():
            try:
                device = evdev.InputDevice(path)
            except OSError as exc:
                LOG.debug("skipping %s: %s", path, exc)
                continue
            if _is_human_input(device):
                self._devices[device.fd] = device
                LOG.debug("watching input device %s (%s)", device.path, device.name)
            else:
                device.close()

        if not self._devices:
            self._last_error = "no readable keyboard or mouse under /dev/input"
            return False

        self._post = post
        self._wake_r, self._wake_w = os.pipe()
        self._available = True
        self._thread = Thread(target=self._run, name="sleepwatch-evdev", daemon=True)
        self._thread.start()
        return True

    def last_error(self) -> str | None:
        return self._last_error

    def close(self) -> None:
        if self._wake_w is not None:
            os.write(self._wake_w, b"x")

    def activity(self, now: float | None = None) -> bool:
        """Post one INPUT_ACTIVITY unless one was posted very recently."""

        now = boottime() if now is None else now
        if self._last_post is not None and now - self._last_post < self._min_interval:
            return False
        self._last_post = now
        assert self._post is not None
        self._post(Notification(kind=NotificationKind.INPUT_ACTIVITY, when=now, source=self.name))
        return True

    def _run(self) -> None:
        assert self._wake_r is not None
        try:
            while self._devices:
                readable, _, _ = select.select([self._wake_r, *self._devices], [], [])
                if self._wake_r in readable:
                    break
                for fd in readable:
                    device = self._devices[fd]
                    try:
                        events = list(device.read())  # type: ignore[attr-defined]
                    except OSError as exc:
                        # Unplugged.
                        LOG.info("input device %s gone: %s", device.path, exc)  # type: ignore[attr-defined]
                        del self._devices[fd]
                        continue
                    if events:
                        self.activity()
        finally:
            for device in self._devices.values():
                device.close()  # type: ignore[attr-defined]
            self._devices.clear()
            for fd in (self._wake_r, self._wake_w):
                if fd is not None:
                    os.close(fd)
            self._wake_r = self._wake_w = None

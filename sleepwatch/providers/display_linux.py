from __future__ import annotations

import logging
from pathlib import Path
from threading import Event, Thread
from typing import Callable

from sleepwatch.engine.types import Notification, NotificationKind, boottime


LOG = logging.getLogger("sleepwatch")

DRM_DIR = Path("/sys/class/drm")

# DPMS value -> power-down depth. Standby/Suspend count as "dimmed".
DPMS_LEVELS = {"On": 0, "Standby": 1, "Suspend": 1, "Off": 2}


def read_display_level(root: Path = DRM_DIR) -> int | None:
    """Return the power-down depth of the most awake connected display."""

    levels: list[int] = []
    for dpms in sorted(root.glob("card*-*/dpms")):
        connector = dpms.parent
        try:
            status = (connector / "status").read_text(encoding="utf-8").strip()
            value = dpms.read_text(encoding="utf-8").strip()
        except OSError:
            continue
        if status != "connected":
            continue
        level = DPMS_LEVELS.get(value)
        if level is not None:
            levels.append(level)

    return min(levels) if levels else None


def level_notifications(previous: int, current: int) -> list[NotificationKind]:
    """Map a DPMS depth change to display-power notifications."""

    if current > previous:
        return [NotificationKind.DISPLAY_WILL_POWER_OFF] * (current - previous)
    if current == 0 and previous > 0:
        return [NotificationKind.DISPLAY_HAS_POWERED_ON]
    return []


class DrmDisplaySource:
    name = "drm-dpms"

    def __init__(self, *, root: Path = DRM_DIR, poll_seconds: float = 1.0):
        self._root = root
        self._poll_seconds = poll_seconds
        self._post: Callable[[Notification], None] | None = None
        self._thread: Thread | None = None
        self._stop = Event()
        self._started = False
        self._available = False
        self._last_error: str | None = None
        self._level: int | None = None

    def start(self, post: Callable[[Notification], None]) -> bool:
        if self._started:
            return self._available
        self._started = True

        self._level = read_display_level(self._root)
        if self._level is None:
            self._last_error = f"no connected display exposes dpms under {self._root}"
            return False

        self._post = post
        self._available = True
        self._thread = Thread(target=self._run, name="sleepwatch-dpms", daemon=True)
        self._thread.start()
        return True

    def last_error(self) -> str | None:
        return self._last_error

    def close(self) -> None:
        self._stop.set()

    def poll(self) -> list[NotificationKind]:
        """Read DPMS once and post whatever changed since the last read."""

        current = read_display_level(self._root)
        if current is None or self._level is None:
            return []

        kinds = level_notifications(self._level, current)
        self._level = current
        assert self._post is not None
        for kind in kinds:
            self._post(Notification(kind=kind, when=boottime(), source=self.name))
        return kinds

    def _run(self) -> None:
        while not self._stop.wait(self._poll_seconds):
            self.poll()

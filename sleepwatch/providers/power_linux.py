from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from threading import Event, Thread
from typing import Callable

from sleepwatch.engine.types import Notification, NotificationKind, PowerSourceState, boottime


LOG = logging.getLogger("sleepwatch")

POWER_SUPPLY_DIR = Path("/sys/class/power_supply")

UPOWER_BUS_NAME = "org.freedesktop.UPower"
UPOWER_PATH = "/org/freedesktop/UPower"
DBUS_PROPS_IFACE = "org.freedesktop.DBus.Properties"


def _read_attr(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError:
        return None


def read_power_source(root: Path = POWER_SUPPLY_DIR) -> PowerSourceState | None:
    """Return AC if any mains adapter is online, BATTERY if none is.

    None means the source could not be determined (no sysfs, no adapter).
    """

    try:
        supplies = sorted(root.iterdir())
    except OSError as exc:
        LOG.debug("can't list %s: %s", root, exc)
        return None

    online: list[str] = []
    for supply in supplies:
        if _read_attr(supply / "type") != "Mains":
            continue
        value = _read_attr(supply / "online")
        if value is not None:
            online.append(value)

    if not online:
        return None
    return PowerSourceState.AC if "1" in online else PowerSourceState.BATTERY


class UPowerSource:
    """Posts POWER_SOURCE_CHANGED for every UPower property change.

    UPower also reports unrelated changes; the consumer re-reads the source.
    """

    name = "upower"

    def __init__(self, *, ready_timeout: float = 2.0):
        self._ready_timeout = ready_timeout
        self._post: Callable[[Notification], None] | None = None
        self._thread: Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop: asyncio.Future | None = None
        self._started = False
        self._ready = Event()
        self._available = False
        self._last_error: str | None = None

    def start(self, post: Callable[[Notification], None]) -> bool:
        if self._started:
            return self._available

        self._post = post
        self._started = True
        self._thread = Thread(target=self._run, name="sleepwatch-upower", daemon=True)
        self._thread.start()
        self._ready.wait(timeout=self._ready_timeout)
        if not self._ready.is_set():
            self._last_error = "timed out connecting to the system bus"
        return self._available

    def last_error(self) -> str | None:
        return self._last_error

    def close(self) -> None:
        loop, stop = self._loop, self._stop
        if loop is not None and stop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(lambda: stop.done() or stop.set_result(None))

    def _run(self) -> None:
        try:
            asyncio.run(self._listen())
        except Exception as exc:
            self._last_error = str(exc)
            self._available = False
            self._ready.set()

    async def _listen(self) -> None:
        try:
            from dbus_next.aio import MessageBus
            from dbus_next.constants import BusType
        except Exception as exc:
            self._last_error = f"dbus import failed: {exc}"
            self._available = False
            self._ready.set()
            return

        self._loop = asyncio.get_running_loop()
        self._stop = self._loop.create_future()

        bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
        introspection = await bus.introspect(UPOWER_BUS_NAME, UPOWER_PATH)
        obj = bus.get_proxy_object(UPOWER_BUS_NAME, UPOWER_PATH, introspection)
        props = obj.get_interface(DBUS_PROPS_IFACE)

        def handler(interface: str, changed: dict, invalidated: list) -> None:
            assert self._post is not None
            LOG.debug("upower %s changed: %s", interface, sorted(changed))
            self._post(
                Notification(
                    kind=NotificationKind.POWER_SOURCE_CHANGED,
                    when=boottime(),
                    source=self.name,
                )
            )

        props.on_properties_changed(handler)  # type: ignore[attr-defined]
        self._available = True
        self._ready.set()
        try:
            await self._stop
        finally:
            bus.disconnect()

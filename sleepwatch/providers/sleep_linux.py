from __future__ import annotations

import asyncio
import logging
import os
import threading
from threading import Event, Thread
from typing import Callable

from sleepwatch.engine.types import Notification, NotificationKind, boottime


LOG = logging.getLogger("sleepwatch")

LOGIND_BUS_NAME = "org.freedesktop.login1"
LOGIND_PATH = "/org/freedesktop/login1"
LOGIND_MANAGER_IFACE = "org.freedesktop.login1.Manager"


class LogindSleepSource:
    """System sleep/wake notifications from systemd-logind.

    A "delay" inhibitor lock is held while awake so logind waits for the
    sleep command to finish; acknowledging WILL_SLEEP closes the lock fd.
    logind decides on sleep before announcing it, so this source has no
    query phase and never posts CAN_SLEEP.
    """

    name = "logind"

    def __init__(self, *, who: str = "sleepwatch", ready_timeout: float = 2.0):
        self._who = who
        self._ready_timeout = ready_timeout
        self._post: Callable[[Notification], None] | None = None
        self._thread: Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop: asyncio.Future | None = None
        self._started = False
        self._ready = Event()
        self._available = False
        self._last_error: str | None = None

        self._manager = None
        self._lock_fd: int | None = None
        self._fd_lock = threading.Lock()
        self._tasks: set[asyncio.Task] = set()

    def start(self, post: Callable[[Notification], None]) -> bool:
        if self._started:
            return self._available

        self._post = post
        self._started = True
        self._thread = Thread(target=self._run, name="sleepwatch-logind", daemon=True)
        self._thread.start()
        self._ready.wait(timeout=self._ready_timeout)
        if not self._ready.is_set():
            self._last_error = "timed out connecting to the system bus"
        return self._available

    def last_error(self) -> str | None:
        return self._last_error

    def close(self) -> None:
        self.release_delay_lock()
        loop, stop = self._loop, self._stop
        if loop is not None and stop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(lambda: stop.done() or stop.set_result(None))

    def release_delay_lock(self) -> None:
        with self._fd_lock:
            fd, self._lock_fd = self._lock_fd, None
        if fd is not None:
            try:
                os.close(fd)
            except OSError as exc:
                LOG.debug("closing delay lock fd %s: %s", fd, exc)

    def _retake_delay_lock(self) -> asyncio.Task:
        task = asyncio.ensure_future(self._take_delay_lock())
        self._tasks.add(task)
        task.add_done_callback(self._lock_task_done)
        return task

    def _lock_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOG.error("can't take sleep delay lock; sleep command may race suspend: %s", exc)

    def _run(self) -> None:
        try:
            asyncio.run(self._listen())
        except Exception as exc:
            self._last_error = str(exc)
            self._available = False
            self._ready.set()

    async def _take_delay_lock(self) -> None:
        if self._manager is None:
            return
        fd = await self._manager.call_inhibit(  # type: ignore[attr-defined]
            "sleep", self._who, "Running sleep command", "delay"
        )
        with self._fd_lock:
            previous, self._lock_fd = self._lock_fd, fd
        if previous is not None:
            os.close(previous)

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

        bus = await MessageBus(bus_type=BusType.SYSTEM, negotiate_unix_fd=True).connect()
        introspection = await bus.introspect(LOGIND_BUS_NAME, LOGIND_PATH)
        obj = bus.get_proxy_object(LOGIND_BUS_NAME, LOGIND_PATH, introspection)
        self._manager = obj.get_interface(LOGIND_MANAGER_IFACE)

        await self._take_delay_lock()

        def handler(sleeping: bool) -> None:
            assert self._post is not None
            if sleeping:
                self._post(
                    Notification(
                        kind=NotificationKind.WILL_SLEEP,
                        when=boottime(),
                        ack=self.release_delay_lock,
                        source=self.name,
                    )
                )
            else:
                self._retake_delay_lock()
                self._post(
                    Notification(kind=NotificationKind.DID_WAKE, when=boottime(), source=self.name)
                )

        self._manager.on_prepare_for_sleep(handler)  # type: ignore[attr-defined]
        self._available = True
        self._ready.set()
        try:
            await self._stop
        finally:
            bus.disconnect()

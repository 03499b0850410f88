import os
import subprocess
import time
from dataclasses import dataclass


@dataclass
class SessionSnapshot:
    session_id: str | None
    idle_seconds: float | None
    locked: bool | None
    sleep_inhibitors: list[str] | None = None
    error: str | None = None


class LoginctlSession:
    """Read idle/lock state of the current user's session from loginctl.

    Notes:
    - IdleHint is only maintained when the desktop reports idleness to logind;
      on some compositors it stays "no" forever.
    - Used for one-shot queries (idle time, status), not for the event stream.
    """

    def __init__(self):
        self._session_id: str | None = None
        self._user: str | None = None

    def _get_user(self) -> str:
        if self._user is None:
            self._user = os.environ.get("USER") or os.environ.get("USERNAME") or ""
        return self._user

    def _find_session_id(self) -> str | None:
        """Find active session for current user."""

        env_session = os.environ.get("XDG_SESSION_ID")
        if env_session:
            return env_session

        user = self._get_user()
        try:
            result = subprocess.run(
                ["loginctl", "list-sessions", "--no-legend", "--no-pager"],
                capture_output=True,
                text=True,
                check=True,
            )
        except (subprocess.CalledProcessError, FileNotFoundError):
            return None

        user_session_ids: list[str] = []
        for line in result.stdout.strip().split("\n"):
            if not line.strip():
                continue
            parts = line.split()
            if len(parts) >= 3 and parts[2] == user:
                user_session_ids.append(parts[0])

        if not user_session_ids:
            return None

        for session_id in user_session_ids:
            props = self._get_session_properties(session_id)
            if props.get("State") == "active":
                return session_id

        return user_session_ids[0]

    def _get_session_properties(self, session_id: str) -> dict[str, str]:
        """Get session properties from loginctl."""

        try:
            result = subprocess.run(
                [
                    "loginctl",
                    "show-session",
                    session_id,
                    "--property=IdleSinceHintMonotonic",
                    "--property=LockedHint",
                    "--property=IdleHint",
                    "--property=State",
                ],
                capture_output=True,
                text=True,
                check=True,
            )
        except (subprocess.CalledProcessError, FileNotFoundError):
            return {}

        props: dict[str, str] = {}
        for line in result.stdout.strip().split("\n"):
            if "=" in line:
                key, value = line.split("=", 1)
                props[key] = value
        return props

    def _get_sleep_inhibitors(self) -> list[str] | None:
        """Return WHO of every active sleep inhibitor, or None if unavailable."""

        try:
            result = subprocess.run(
                ["loginctl", "list-inhibitors", "--no-legend", "--no-pager"],
                capture_output=True,
                text=True,
                check=True,
            )
        except (subprocess.CalledProcessError, FileNotFoundError):
            return None

        who: list[str] = []
        for line in result.stdout.strip().split("\n"):
            if not line.strip():
                continue

            # Columns are: WHO UID USER PID COMM WHAT WHY MODE
            # `WHY` may contain spaces; `WHAT` is a single token at index 5.
            parts = line.split()
            if len(parts) < 6:
                continue

            if "sleep" in set(parts[5].split(":")):
                who.append(parts[0])

        return who

    @staticmethod
    def _idle_seconds(props: dict[str, str], now_mono: float) -> float | None:
        idle_hint = props.get("IdleHint")
        if idle_hint == "no":
            return 0.0
        if idle_hint != "yes":
            return None

        idle_since_raw = props.get("IdleSinceHintMonotonic")
        if not idle_since_raw:
            return None

        try:
            # systemd returns microseconds from CLOCK_MONOTONIC
            idle_since_us = int(idle_since_raw)
        except ValueError:
            return None

        now_us = int(now_mono * 1_000_000)
        if idle_since_us <= 0 or idle_since_us > now_us:
            return None

        return (now_us - idle_since_us) / 1_000_000

    def get_snapshot(self, *, with_inhibitors: bool = False) -> SessionSnapshot:
        now_mono = time.monotonic()

        if self._session_id is None:
            self._session_id = self._find_session_id()

        if self._session_id is None:
            return SessionSnapshot(
                session_id=None, idle_seconds=None, locked=None, error="no_session_found"
            )

        props = self._get_session_properties(self._session_id)

        locked_hint = props.get("LockedHint")
        locked = locked_hint == "yes" if locked_hint in ("yes", "no") else None

        return SessionSnapshot(
            session_id=self._session_id,
            idle_seconds=self._idle_seconds(props, now_mono),
            locked=locked,
            sleep_inhibitors=self._get_sleep_inhibitors() if with_inhibitors else None,
        )

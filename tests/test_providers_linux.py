import asyncio
import os
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from sleepwatch.engine.types import NotificationKind, PowerSourceState
from sleepwatch.providers.display_linux import (
    DrmDisplaySource,
    level_notifications,
    read_display_level,
)
from sleepwatch.providers.input_linux import EvdevActivitySource
from sleepwatch.providers.power_linux import read_power_source
from sleepwatch.providers.session_linux import LoginctlSession
from sleepwatch.providers.sleep_linux import LogindSleepSource


@pytest.fixture
def session(monkeypatch):
    monkeypatch.delenv("XDG_SESSION_ID", raising=False)
    s = LoginctlSession()
    s._user = "test"
    return s


def test_session_get_user_from_env(monkeypatch):
    monkeypatch.setenv("USER", "testuser")
    assert LoginctlSession()._get_user() == "testuser"


def test_session_prefers_xdg_session_id(monkeypatch):
    monkeypatch.setenv("XDG_SESSION_ID", "7")
    assert LoginctlSession()._find_session_id() == "7"


@patch("sleepwatch.providers.session_linux.subprocess.run")
def test_session_find_session_id_active(mock_run, session):
    mock_result = MagicMock()
    mock_result.stdout = "1 1000 test seat0 1131 user tty1\n2 1000 test - 1135 manager -"
    mock_run.return_value = mock_result

    with patch.object(session, "_get_session_properties") as mock_props:
        mock_props.side_effect = [
            {"State": "online"},
            {"State": "active"},
        ]
        assert session._find_session_id() == "2"


@patch("sleepwatch.providers.session_linux.subprocess.run")
def test_session_find_session_id_none_found(mock_run, session):
    mock_result = MagicMock()
    mock_result.stdout = "1 1000 other seat0 1131 user tty1"
    mock_run.return_value = mock_result

    assert session._find_session_id() is None


@patch("sleepwatch.providers.session_linux.subprocess.run")
def test_session_find_session_id_error(mock_run, session):
    mock_run.side_effect = subprocess.CalledProcessError(1, "loginctl")
    assert session._find_session_id() is None


def test_session_get_session_properties(session):
    with patch("sleepwatch.providers.session_linux.subprocess.run") as mock_run:
        mock_result = MagicMock()
        mock_result.stdout = "State=active\nIdleHint=no\nIdleSinceHintMonotonic=0\nLockedHint=no"
        mock_run.return_value = mock_result

        assert session._get_session_properties("2") == {
            "State": "active",
            "IdleHint": "no",
            "IdleSinceHintMonotonic": "0",
            "LockedHint": "no",
        }


def test_session_sleep_inhibitors(session):
    with patch("sleepwatch.providers.session_linux.subprocess.run") as mock_run:
        mock_result = MagicMock()
        mock_result.stdout = (
            "NetworkManager 0 root 812 NetworkManager sleep NetworkManager needs to turn off networks delay\n"
            "UPower 0 root 990 upowerd sleep Pause device polling delay\n"
            "gdm 120 gdm 1511 gsd-media-keys handle-power-key GNOME handling keypresses block\n"
        )
        mock_run.return_value = mock_result

        assert session._get_sleep_inhibitors() == ["NetworkManager", "UPower"]


def test_session_idle_seconds():
    assert LoginctlSession._idle_seconds({"IdleHint": "no"}, 100.0) == 0.0
    assert LoginctlSession._idle_seconds({}, 100.0) is None
    props = {"IdleHint": "yes", "IdleSinceHintMonotonic": str(99_700 * 1_000_000)}
    assert LoginctlSession._idle_seconds(props, 100_000.0) == 300.0


def test_session_snapshot_locked(session):
    session._session_id = "2"
    with patch.object(session, "_get_session_properties") as mock_props:
        mock_props.return_value = {"State": "active", "IdleHint": "no", "LockedHint": "yes"}
        snapshot = session.get_snapshot()

    assert snapshot.session_id == "2"
    assert snapshot.idle_seconds == 0.0
    assert snapshot.locked is True
    assert snapshot.sleep_inhibitors is None


def test_session_snapshot_no_session(session):
    with patch.object(session, "_find_session_id") as mock_find:
        mock_find.return_value = None
        snapshot = session.get_snapshot()

    assert snapshot.idle_seconds is None
    assert snapshot.error == "no_session_found"


# -- power supply ---------------------------------------------------------------


def _supply(root, name, kind, online=None):
    d = root / name
    d.mkdir()
    (d / "type").write_text(f"{kind}\n", encoding="utf-8")
    if online is not None:
        (d / "online").write_text(f"{online}\n", encoding="utf-8")


def test_read_power_source_ac(tmp_path):
    _supply(tmp_path, "AC", "Mains", 1)
    _supply(tmp_path, "BAT0", "Battery")
    assert read_power_source(tmp_path) == PowerSourceState.AC


def test_read_power_source_battery(tmp_path):
    _supply(tmp_path, "AC", "Mains", 0)
    _supply(tmp_path, "BAT0", "Battery")
    assert read_power_source(tmp_path) == PowerSourceState.BATTERY


def test_read_power_source_unknown(tmp_path):
    _supply(tmp_path, "BAT0", "Battery")
    assert read_power_source(tmp_path) is None
    assert read_power_source(tmp_path / "missing") is None


# -- display -------------------------------------------------------------------


def _connector(root, name, dpms, status="connected"):
    d = root / name
    d.mkdir()
    (d / "dpms").write_text(f"{dpms}\n", encoding="utf-8")
    (d / "status").write_text(f"{status}\n", encoding="utf-8")
    return d


def test_read_display_level_uses_most_awake_connected(tmp_path):
    _connector(tmp_path, "card0-eDP-1", "Off")
    _connector(tmp_path, "card0-HDMI-A-1", "On", status="disconnected")
    assert read_display_level(tmp_path) == 2

    _connector(tmp_path, "card0-DP-1", "Standby")
    assert read_display_level(tmp_path) == 1


def test_read_display_level_none_without_connectors(tmp_path):
    assert read_display_level(tmp_path) is None


def test_level_notifications():
    off = NotificationKind.DISPLAY_WILL_POWER_OFF
    on = NotificationKind.DISPLAY_HAS_POWERED_ON
    assert level_notifications(0, 1) == [off]
    assert level_notifications(0, 2) == [off, off]
    assert level_notifications(2, 0) == [on]
    assert level_notifications(2, 1) == []
    assert level_notifications(1, 1) == []


def test_drm_source_posts_transitions(tmp_path):
    connector = _connector(tmp_path, "card0-eDP-1", "On")
    posted = []
    source = DrmDisplaySource(root=tmp_path, poll_seconds=3600)
    assert source.start(posted.append) is True

    try:
        (connector / "dpms").write_text("Off\n", encoding="utf-8")
        source.poll()
        (connector / "dpms").write_text("On\n", encoding="utf-8")
        source.poll()
    finally:
        source.close()

    assert [n.kind for n in posted] == [
        NotificationKind.DISPLAY_WILL_POWER_OFF,
        NotificationKind.DISPLAY_WILL_POWER_OFF,
        NotificationKind.DISPLAY_HAS_POWERED_ON,
    ]


def test_drm_source_unavailable(tmp_path):
    source = DrmDisplaySource(root=tmp_path)
    assert source.start(lambda n: None) is False
    assert "dpms" in source.last_error()


# -- input / logind ---------------------------------------------------------------


def test_evdev_activity_is_coalesced():
    posted = []
    source = EvdevActivitySource(min_interval=0.1)
    source._post = posted.append

    assert source.activity(now=10.0) is True
    assert source.activity(now=10.05) is False
    assert source.activity(now=10.2) is True
    assert [n.when for n in posted] == [10.0, 10.2]
    assert all(n.kind == NotificationKind.INPUT_ACTIVITY for n in posted)


def test_logind_release_delay_lock_closes_fd_once():
    r, w = os.pipe()
    os.close(w)
    source = LogindSleepSource()
    source._lock_fd = r

    source.release_delay_lock()
    source.release_delay_lock()

    assert source._lock_fd is None
    with pytest.raises(OSError):
        os.fstat(r)


class _FailingManager:
    async def call_inhibit(self, what, who, why, mode):
        raise RuntimeError("inhibit denied")


class _PipeManager:
    def __init__(self):
        self.fds = os.pipe()

    async def call_inhibit(self, what, who, why, mode):
        assert (what, mode) == ("sleep", "delay")
        return self.fds[0]


def test_logind_failed_relock_after_wake_is_logged(caplog):
    source = LogindSleepSource()
    source._manager = _FailingManager()

    async def wake():
        task = source._retake_delay_lock()
        assert task in source._tasks
        await asyncio.wait([task])

    with caplog.at_level("ERROR", logger="sleepwatch"):
        asyncio.run(wake())

    assert source._tasks == set()
    assert source._lock_fd is None
    assert "inhibit denied" in caplog.text


def test_logind_relock_after_wake_holds_new_fd():
    source = LogindSleepSource()
    manager = _PipeManager()
    source._manager = manager

    async def wake():
        await asyncio.wait([source._retake_delay_lock()])

    asyncio.run(wake())
    try:
        assert source._lock_fd == manager.fds[0]
        assert source._tasks == set()
    finally:
        source.release_delay_lock()
        os.close(manager.fds[1])


def test_evdev_activity_stamped_with_boot_clock(monkeypatch):
    import sleepwatch.providers.input_linux as input_linux

    monkeypatch.setattr(input_linux, "boottime", lambda: 7200.0)
    posted = []
    source = EvdevActivitySource()
    source._post = posted.append

    source.activity()
    assert posted[0].when == 7200.0

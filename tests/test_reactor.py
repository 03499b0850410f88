from sleepwatch.engine.reactor import EventReactor
from sleepwatch.engine.types import (
    AllowSleep,
    Config,
    ConfigError,
    DisplayState,
    Notification,
    NotificationKind,
    PowerSourceState,
    SleepState,
    SleepVeto,
    boottime,
)


class FakeSource:
    def __init__(self, name="fake", ok=True, error=None, events=()):
        self.name = name
        self._ok = ok
        self._error = error
        self._events = list(events)
        self.closed = False

    def start(self, post):
        if self._ok:
            for event in self._events:
                post(event)
        return self._ok

    def last_error(self):
        return self._error

    def close(self):
        self.closed = True


def _notify(kind, when=0.0, **kwargs):
    return Notification(kind=kind, when=when, **kwargs)


def _drain(reactor):
    while reactor.run_once(block=False):
        pass


def test_timers_fire_in_deadline_order(clock):
    reactor = EventReactor(config=Config(), clock=clock)
    fired = []
    reactor.call_later(5, lambda: fired.append("b"))
    reactor.call_later(1, lambda: fired.append("a"))
    cancelled = reactor.call_later(3, lambda: fired.append("x"))
    cancelled.cancel()

    assert reactor.next_deadline() == 1
    clock.advance(10)
    reactor.run_once(block=False)

    assert fired == ["a", "b"]
    assert reactor.next_deadline() is None


def test_idle_scenario_end_to_end(dispatcher, clock):
    config = Config(idle_timeout=120, idle_command="I", idle_resume_command="R")
    reactor = EventReactor(config=config, dispatcher=dispatcher, clock=clock)
    reactor.start(install_signals=False)

    reactor.post(_notify(NotificationKind.INPUT_ACTIVITY, when=clock()))
    _drain(reactor)
    assert reactor.next_deadline() == 120

    clock.advance(120)
    _drain(reactor)
    assert dispatcher.executed == ["I"]

    clock.advance(30)
    reactor.post(_notify(NotificationKind.INPUT_ACTIVITY, when=clock()))
    _drain(reactor)
    assert dispatcher.executed == ["I", "R"]
    assert reactor.next_deadline() == 270


def test_notifications_route_to_monitors(dispatcher, clock):
    config = Config(
        display_dim_command="d",
        sleep_command="S",
        wakeup_command="W",
        plug_command="P",
    )
    readings = [PowerSourceState.BATTERY, PowerSourceState.AC]
    reactor = EventReactor(
        config=config,
        dispatcher=dispatcher,
        read_power_source=lambda: readings.pop(0),
        clock=clock,
    )
    reactor.start(install_signals=False)

    replies = []
    acks = []
    for notification in (
        _notify(NotificationKind.DISPLAY_WILL_POWER_OFF),
        _notify(NotificationKind.CAN_SLEEP, veto=SleepVeto(reply=replies.append, clock=clock)),
        _notify(NotificationKind.WILL_SLEEP, ack=lambda: acks.append(1)),
        _notify(NotificationKind.DID_WAKE),
        _notify(NotificationKind.POWER_SOURCE_CHANGED),
    ):
        reactor.post(notification)
    _drain(reactor)

    assert dispatcher.executed == ["d", "S", "W", "P"]
    assert replies == [True]
    assert acks == [1]
    assert reactor.display.state == DisplayState.DIMMED
    assert reactor.power.state == SleepState.AWAKE
    assert reactor.power_source.state == PowerSourceState.AC


def test_can_sleep_without_veto_is_ignored(dispatcher, clock):
    reactor = EventReactor(config=Config(), dispatcher=dispatcher, clock=clock)
    reactor.dispatch(_notify(NotificationKind.CAN_SLEEP))
    assert reactor.power.state == SleepState.AWAKE


def test_reload_swaps_config_and_rearms(dispatcher, clock):
    new = Config(allow_sleep=AllowSleep.deny(), idle_timeout=30, idle_command="I")
    reactor = EventReactor(
        config=Config(), reload_config=lambda: new, dispatcher=dispatcher, clock=clock
    )
    reactor.start(install_signals=False)
    assert reactor.next_deadline() is None

    reactor.post(_notify(NotificationKind.RELOAD))
    _drain(reactor)

    assert reactor.get_config() is new
    assert reactor.next_deadline() == 30


def test_reload_failure_keeps_previous_config(clock):
    def broken():
        raise ConfigError("malformed")

    old = Config(idle_timeout=60, idle_command="I")
    reactor = EventReactor(config=old, reload_config=broken, clock=clock)

    assert reactor.reload() is False
    assert reactor.get_config() is old


def test_reload_without_loader_is_noop(clock):
    reactor = EventReactor(config=Config(), clock=clock)
    assert reactor.reload() is False


def test_shutdown_removes_pidfile_and_stops(tmp_path, clock):
    pidfile = tmp_path / "sleepwatch.pid"
    pidfile.write_text("123\n", encoding="utf-8")
    source = FakeSource(events=[_notify(NotificationKind.SHUTDOWN)])
    reactor = EventReactor(config=Config(), sources=[source], pidfile=pidfile, clock=clock)

    assert reactor.run(install_signals=False) == 0
    assert not pidfile.exists()
    assert source.closed is True


def test_shutdown_with_missing_pidfile(tmp_path, clock):
    reactor = EventReactor(config=Config(), pidfile=tmp_path / "gone.pid", clock=clock)
    reactor.shutdown(exit_code=3)
    assert reactor.exit_code == 3


def test_setup_error_exits_with_one(clock):
    good = FakeSource(name="good")
    bad = FakeSource(name="bad", ok=False, error="no system bus")
    reactor = EventReactor(config=Config(), sources=[good, bad], clock=clock)

    assert reactor.run(install_signals=False) == 1
    assert good.closed is True
    assert bad.closed is False


def test_setup_error_removes_pidfile(tmp_path, clock):
    pidfile = tmp_path / "sleepwatch.pid"
    pidfile.write_text("123\n", encoding="utf-8")
    reactor = EventReactor(
        config=Config(), sources=[FakeSource(ok=False)], pidfile=pidfile, clock=clock
    )

    assert reactor.run(install_signals=False) == 1
    assert not pidfile.exists()


def test_reload_leaves_other_monitors_alone(dispatcher, clock):
    config = Config(idle_timeout=60, idle_command="I", display_dim_command="d")
    readings = [PowerSourceState.AC]
    reactor = EventReactor(
        config=config,
        reload_config=lambda: Config(idle_timeout=90, idle_command="I2"),
        dispatcher=dispatcher,
        read_power_source=lambda: readings.pop(0),
        clock=clock,
    )
    reactor.start(install_signals=False)
    reactor.post(_notify(NotificationKind.DISPLAY_WILL_POWER_OFF))
    _drain(reactor)
    clock.advance(60)
    _drain(reactor)

    assert reactor.display.state == DisplayState.DIMMED
    assert reactor.power_source.state == PowerSourceState.AC
    assert reactor.idle.idle_resume_pending is True

    assert reactor.reload() is True

    assert reactor.display.state == DisplayState.DIMMED
    assert reactor.power_source.state == PowerSourceState.AC
    assert reactor.idle.idle_resume_pending is True
    assert reactor.next_deadline() == 150
    assert dispatcher.executed == ["d", "I"]


def test_huge_idle_timeout_does_not_break_the_wait(clock):
    reactor = EventReactor(config=Config(idle_timeout=1e300, idle_command="I"), clock=clock)
    reactor.start(install_signals=False)
    reactor.post(_notify(NotificationKind.SHUTDOWN))

    assert reactor.run_once(block=True) is True
    assert reactor.exit_code == 0


def test_break_spanning_suspend_runs_resume(dispatcher, clock):
    config = Config(break_length=900, resume_command="B", wakeup_command="W")
    reactor = EventReactor(config=config, dispatcher=dispatcher, clock=clock)
    reactor.start(install_signals=False)

    reactor.post(_notify(NotificationKind.INPUT_ACTIVITY, when=clock()))
    reactor.post(_notify(NotificationKind.WILL_SLEEP, when=clock()))
    _drain(reactor)

    # An hour with the lid closed, then a few seconds until the first key press.
    clock.advance(3600)
    reactor.post(_notify(NotificationKind.DID_WAKE, when=clock()))
    clock.advance(5)
    reactor.post(_notify(NotificationKind.INPUT_ACTIVITY, when=clock()))
    _drain(reactor)

    assert dispatcher.executed == ["W", "B"]


def test_default_clock_counts_suspended_time(monkeypatch):
    from sleepwatch.engine import types

    calls = []

    def fake_clock_gettime(clk_id):
        calls.append(clk_id)
        return 42.0

    monkeypatch.setattr(types.time, "clock_gettime", fake_clock_gettime)

    reactor = EventReactor(config=Config())
    assert reactor.idle._clock is boottime
    assert boottime() == 42.0
    assert calls == [types.time.CLOCK_BOOTTIME]

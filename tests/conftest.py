import pytest


class ManualClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class RecordingDispatcher:
    """Records executed commands; exit status per command defaults to 0."""

    def __init__(self):
        self.executed: list[str] = []
        self.statuses: dict[str, int] = {}

    def execute(self, command: str) -> int:
        self.executed.append(command)
        return self.statuses.get(command, 0)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()

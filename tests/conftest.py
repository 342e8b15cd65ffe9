"""Shared fakes and fixtures for the unbind tests."""

import threading
import time

import pytest

from unbind.engine import Engine
from unbind.errors import EngineError, StorageFailure
from unbind.models import PortEntry, Protocol
from unbind.storage import SqlStorage


def entry(port: int, pid: int = 100, name: str = "node", protocol: Protocol = Protocol.TCP) -> PortEntry:
    """Shorthand for building a PortEntry."""
    return PortEntry(port=port, pid=pid, process_name=name, protocol=protocol)


class FakeInspector:
    """
    Port inspector returning scripted results.

    Each call to ``scan`` consumes the next scripted item; the last item is
    repeated once the script runs out. An item that is an exception is raised.
    """

    def __init__(self, *results) -> None:
        self.results = list(results) or [[]]
        self.calls = 0
        self.gate: threading.Event | None = None
        self.entered = threading.Event()

    def push(self, result) -> None:
        """Queue a result after the scripted ones."""
        self.results.append(result)

    def serve(self, result) -> None:
        """Replace the script so every following scan returns ``result``."""
        self.results = [result]

    def scan(self) -> list[PortEntry]:
        self.calls += 1
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5.0)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return list(result)


class FakeTerminator:
    """Process terminator that records calls and fails for chosen pids."""

    def __init__(self) -> None:
        self.killed: list[int] = []
        self.failures: dict[int, EngineError] = {}
        self.on_terminate = None

    def terminate(self, pid: int) -> None:
        self.killed.append(pid)
        if pid in self.failures:
            raise self.failures[pid]
        if self.on_terminate is not None:
            self.on_terminate(pid)


class FakeNotifier:
    """Notification capability that records what was dispatched."""

    def __init__(self, granted: bool = True, grant_on_request: bool = False) -> None:
        self.granted = granted
        self.grant_on_request = grant_on_request
        self.requests = 0
        self.error: Exception | None = None
        self.dispatched: list[tuple[str, str]] = []

    def is_granted(self) -> bool:
        return self.granted

    def request_grant(self) -> bool:
        self.requests += 1
        self.granted = self.grant_on_request
        return self.granted

    def dispatch(self, title: str, body: str) -> None:
        if self.error is not None:
            raise self.error
        self.dispatched.append((title, body))


class FlakyStorage:
    """Wraps a storage adapter and fails on demand."""

    def __init__(self, inner: SqlStorage) -> None:
        self.inner = inner
        self.fail_writes = False
        self.fail_reads = False

    def initialize(self) -> None:
        self.inner.initialize()

    def execute(self, statement, params=None) -> None:
        if self.fail_writes:
            raise StorageFailure("disk full")
        self.inner.execute(statement, params)

    def execute_batch(self, steps) -> None:
        if self.fail_writes:
            raise StorageFailure("disk full")
        self.inner.execute_batch(steps)

    def query(self, statement, params=None):
        if self.fail_reads:
            raise StorageFailure("database is locked")
        return self.inner.query(statement, params)


@pytest.fixture
def storage(tmp_path):
    store = SqlStorage(f"sqlite:///{tmp_path / 'unbind.db'}")
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def flaky_storage(storage):
    return FlakyStorage(storage)


@pytest.fixture
def inspector():
    return FakeInspector([entry(3000, pid=10), entry(5432, pid=20, name="postgres")])


@pytest.fixture
def terminator():
    return FakeTerminator()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def engine(inspector, terminator, storage, notifier):
    eng = Engine(inspector, terminator, storage, notifier=notifier, interval_ms=100)
    eng.initialize()
    yield eng
    eng.stop()


@pytest.fixture
def new_york_time(monkeypatch):
    """Run the test with a local timezone that is never UTC."""
    if not hasattr(time, "tzset"):
        pytest.skip("changing the local timezone needs time.tzset")
    monkeypatch.setenv("TZ", "America/New_York")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()

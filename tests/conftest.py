"""
Shared pytest fixtures for the latency benchmark tests.

No test needs a live database: storage and change feeds are in-memory fakes.
"""

import random
import threading
from contextlib import contextmanager

import pytest

from core.backend import ChangeFeed
from core.ledger import PendingChangeLedger
from core.workload import DatasetSettings, RunState


class FakeClock:
    """Manually advanced clock in seconds."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class ScriptedRandom(random.Random):
    """Random whose randint returns scripted values first."""

    def __init__(self, values, seed=0):
        super().__init__(seed)
        self.values = list(values)

    def randint(self, a, b):
        if self.values:
            value = self.values.pop(0)
            assert a <= value <= b
            return value
        return super().randint(a, b)


class FakeStore:
    """Records executed statements; rowcount is 1 unless configured otherwise."""

    def __init__(self, rowcount=1, error=None):
        self.rowcount = rowcount
        self.error = error
        self.executed = []
        self.lock = threading.Lock()

    @contextmanager
    def connection(self):
        yield object()

    def execute(self, conn, statement, params=None):
        if self.error is not None:
            raise self.error
        with self.lock:
            self.executed.append((statement, dict(params or {})))
        if callable(self.rowcount):
            return self.rowcount(statement, params)
        return self.rowcount


class RecordingSink:
    """In-process measurement sink."""

    def __init__(self):
        self.response_times = []
        self.memory_samples = []

    def record_response_time(self, elapsed, latency_ms):
        self.response_times.append((elapsed, latency_ms))

    def record_memory_sample(self, elapsed, heap_total_mb, heap_used_mb):
        self.memory_samples.append((elapsed, heap_total_mb, heap_used_mb))

    def get_measurements(self):
        return {
            'heapTotal': [[e, t] for e, t, _ in self.memory_samples],
            'heapUsed': [[e, u] for e, _, u in self.memory_samples],
            'responseTimes': [list(s) for s in self.response_times],
        }


class FakeChangeFeed(ChangeFeed):
    """Change feed driven by the test."""

    def __init__(self, config=None, start_error=None):
        super().__init__(config or {})
        self.started = False
        self.stopped = False
        self.start_error = start_error

    def start(self):
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    def stop(self):
        self.stopped = True

    def listener(self, class_id):
        return self.subscriptions_for(class_id)[0].listener


@pytest.fixture
def small_settings():
    # 40 assignments, 16 students, 160 seeded scores; classes 1-2 observed
    return DatasetSettings(
        class_count=8,
        assignments_per_class=5,
        students_per_class=4,
        classes_per_student=2,
        reactive_queries_count=2,
    )


@pytest.fixture
def default_settings():
    return DatasetSettings.for_reactive_queries(50)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def state():
    return RunState()


@pytest.fixture
def ledger(clock):
    return PendingChangeLedger(clock=clock)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def fake_store():
    return FakeStore()

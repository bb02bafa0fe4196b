import threading

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from core.ledger import PendingChangeLedger
from core.workload import OperationKind


def test_open_and_close(ledger, clock):
    ledger.open(OperationKind.INSERT, 161)
    assert ledger.contains(OperationKind.INSERT, 161)
    assert not ledger.contains(OperationKind.UPDATE, 161)
    assert ledger.count() == 1

    assert ledger.close(OperationKind.INSERT, 161) == clock.now
    assert ledger.close(OperationKind.INSERT, 161) is None
    assert ledger.count() == 0


def test_kinds_are_independent(ledger):
    ledger.open(OperationKind.INSERT, 5, timestamp=1.0)
    ledger.open(OperationKind.UPDATE, 5, timestamp=2.0)
    assert ledger.count() == 2
    assert ledger.count(OperationKind.UPDATE) == 1
    assert ledger.close(OperationKind.UPDATE, 5) == 2.0
    assert ledger.contains(OperationKind.INSERT, 5)


def test_duplicate_open_rejected(ledger):
    ledger.open(OperationKind.DELETE, 7)
    with pytest.raises(ValueError):
        ledger.open(OperationKind.DELETE, 7)


def test_count_stale(ledger, clock):
    ledger.open(OperationKind.INSERT, 1)
    clock.advance(3)
    ledger.open(OperationKind.UPDATE, 2)
    clock.advance(3)
    assert ledger.count_stale(5000) == 1
    assert ledger.count_stale(1000) == 2
    assert ledger.count_stale(10000) == 0


def test_clear(ledger):
    ledger.open(OperationKind.INSERT, 1)
    ledger.open(OperationKind.DELETE, 2)
    assert ledger.clear() == 2
    assert ledger.count() == 0


operations = st.lists(
    st.tuples(
        st.sampled_from(['open', 'close']),
        st.sampled_from(list(OperationKind)),
        st.integers(min_value=1, max_value=20),
    ),
    max_size=200,
)


@given(operations)
def test_at_most_one_entry_per_kind_and_id(ops):
    ledger = PendingChangeLedger(clock=lambda: 0.0)
    model = set()
    for op, kind, entity_id in ops:
        if op == 'open':
            if (kind, entity_id) in model:
                with pytest.raises(ValueError):
                    ledger.open(kind, entity_id)
            else:
                ledger.open(kind, entity_id)
                model.add((kind, entity_id))
        else:
            closed = ledger.close(kind, entity_id)
            assert (closed is not None) == ((kind, entity_id) in model)
            model.discard((kind, entity_id))
        assert ledger.count() == len(model)


@settings(max_examples=25, deadline=None)
@given(st.integers(min_value=2, max_value=8))
def test_concurrent_close_removes_each_entry_once(thread_count):
    ledger = PendingChangeLedger(clock=lambda: 0.0)
    ids = range(1, 201)
    for entity_id in ids:
        ledger.open(OperationKind.UPDATE, entity_id)

    closed = []
    lock = threading.Lock()

    def worker():
        for entity_id in ids:
            if ledger.close(OperationKind.UPDATE, entity_id) is not None:
                with lock:
                    closed.append(entity_id)

    threads = [threading.Thread(target=worker) for _ in range(thread_count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(closed) == list(ids)
    assert ledger.count() == 0

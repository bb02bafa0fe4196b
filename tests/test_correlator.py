import pytest

from core.correlator import ChangeCorrelator, KindInferrer
from core.workload import OperationKind


def row(score_id, score=50, class_id=1, assignment_id=1, student_id=1):
    return {
        'score_id': score_id,
        'class_id': class_id,
        'assignment_id': assignment_id,
        'student_id': student_id,
        'score': score,
    }


@pytest.fixture
def correlator(small_settings, ledger, state, sink, clock):
    correlator = ChangeCorrelator(small_settings, ledger, state, sink, clock=clock)
    correlator.mark_start()
    return correlator


def test_insert_round_trip(correlator, ledger, state, sink, clock):
    ledger.open(OperationKind.INSERT, 161)
    clock.advance(0.25)
    listener = correlator.listener_for(1)

    listener.on_insert(row(161))

    assert len(sink.response_times) == 1
    elapsed, latency = sink.response_times[0]
    assert latency == pytest.approx(250.0)
    assert latency >= 0
    assert elapsed == pytest.approx(0.25)
    assert not ledger.contains(OperationKind.INSERT, 161)
    assert state.correlated_count == 1
    assert state.event_count == 1


def test_duplicate_delivery_is_unexpected_once(correlator, ledger, state, sink):
    ledger.open(OperationKind.INSERT, 170)
    listener = correlator.listener_for(1)

    listener.on_insert(row(170))
    listener.on_insert(row(170))

    assert len(sink.response_times) == 1
    assert state.unexpected_count == 1
    assert state.event_count == 2


@pytest.mark.parametrize("kind", list(OperationKind))
def test_seeded_rows_never_unexpected(correlator, state, sink, small_settings, kind):
    for score_id in (1, 80, small_settings.scores_count):
        assert correlator.handle(kind, score_id) is None
    assert state.unexpected_count == 0
    assert sink.response_times == []


def test_seeded_row_update_is_correlated_when_pending(correlator, ledger, sink):
    ledger.open(OperationKind.UPDATE, 12)
    correlator.listener_for(1).on_update(row(12, score=99))
    assert len(sink.response_times) == 1


def test_kind_mismatch_is_unexpected(correlator, ledger, state):
    ledger.open(OperationKind.INSERT, 200)
    correlator.listener_for(1).on_delete(row(200))
    assert state.unexpected_count == 1
    assert ledger.contains(OperationKind.INSERT, 200)


def test_stray_notification_for_unobserved_insert(default_settings, ledger, state, sink, clock):
    correlator = ChangeCorrelator(default_settings, ledger, state, sink, clock=clock)
    correlator.mark_start()
    stray_id = default_settings.scores_count + 1
    correlator.listener_for(51).on_insert(row(stray_id, class_id=51, assignment_id=251))
    assert sink.response_times == []
    assert state.unexpected_count == 1


def test_unified_changes_are_classified(correlator, ledger, state, sink):
    listener = correlator.listener_for(2)
    # Initial snapshot of a seeded row
    listener.on_change(row(10, score=40, class_id=2), None)
    assert sink.response_times == []

    ledger.open(OperationKind.UPDATE, 10)
    listener.on_change(row(10, score=41, class_id=2), None)

    ledger.open(OperationKind.INSERT, 175)
    listener.on_change(row(175, class_id=2), None)

    ledger.open(OperationKind.DELETE, 10)
    listener.on_change(None, row(10, score=41, class_id=2))

    assert len(sink.response_times) == 3
    assert ledger.count() == 0
    assert state.unexpected_count == 0
    assert state.event_count == 4


def test_unified_identical_row_is_not_a_change(correlator, state):
    listener = correlator.listener_for(1)
    listener.on_change(row(300), None)
    unexpected = state.unexpected_count
    listener.on_change(row(300), None)
    assert state.unexpected_count == unexpected


def test_inferrer_tracks_classes_separately():
    inferrer = KindInferrer()
    assert inferrer.classify(1, row(5)) == (OperationKind.INSERT, row(5))
    assert inferrer.classify(2, row(5)) == (OperationKind.INSERT, row(5))
    assert inferrer.classify(1, row(5, score=7)) == (OperationKind.UPDATE, row(5, score=7))
    assert inferrer.classify(1, None, row(5, score=7))[0] is OperationKind.DELETE
    assert inferrer.known_count(1) == 0
    assert inferrer.known_count(2) == 1


def test_inferrer_requires_some_row():
    with pytest.raises(ValueError):
        KindInferrer().classify(1, None, None)

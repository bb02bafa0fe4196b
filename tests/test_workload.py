import pytest

from core.workload import (
    DatasetSettings, OperationKind, RunState, build_mutation_specs, build_statements,
    observed_guard,
)


def test_default_totals():
    settings = DatasetSettings.for_reactive_queries(50)
    assert settings.class_count == 200
    assert settings.assign_count == 6000
    assert settings.student_count == 34 * 20
    assert settings.scores_count == 120000


def test_class_mapping_wraps_around(default_settings):
    assert default_settings.class_of(1) == 1
    assert default_settings.class_of(200) == 200
    assert default_settings.class_of(201) == 1
    assert default_settings.class_of(251) == 51


def test_observed_range(default_settings):
    assert default_settings.is_observed(1)
    assert default_settings.is_observed(50)
    assert not default_settings.is_observed(51)
    assert default_settings.observed_classes() == list(range(1, 51))


def test_seeded_range(small_settings):
    assert small_settings.is_seeded(small_settings.scores_count)
    assert not small_settings.is_seeded(small_settings.scores_count + 1)


def test_invalid_settings():
    with pytest.raises(ValueError):
        DatasetSettings(class_count=10, reactive_queries_count=11)
    with pytest.raises(ValueError):
        DatasetSettings(students_per_class=0)


def test_operation_families():
    assert OperationKind.INSERT.family == "insert"
    assert OperationKind.UPDATE.family == OperationKind.DELETE.family


def test_update_and_delete_carry_observed_guard(default_settings):
    statements = build_statements(default_settings)
    guard = observed_guard(default_settings)
    assert guard == "(((assignment_id - 1) % 200) + 1) BETWEEN 1 AND 50"
    assert guard in statements[OperationKind.UPDATE]
    assert "score != %(score)s" in statements[OperationKind.UPDATE]
    assert guard in statements[OperationKind.DELETE]
    assert guard not in statements[OperationKind.INSERT]


def test_mutation_specs_skip_disabled_kinds(small_settings):
    specs = build_mutation_specs(small_settings, {
        OperationKind.INSERT: 100,
        OperationKind.UPDATE: 0,
        OperationKind.DELETE: 20,
    })
    assert [spec.kind for spec in specs] == [OperationKind.INSERT, OperationKind.DELETE]
    assert specs[0].interval_seconds == pytest.approx(0.01)
    assert specs[1].interval_seconds == pytest.approx(0.05)


def test_negative_rate_rejected(small_settings):
    with pytest.raises(ValueError):
        build_mutation_specs(small_settings, {OperationKind.INSERT: -1})


def test_run_state_snapshot():
    state = RunState()
    state.increment('event_count', 3)
    state.add_unconfirmed(OperationKind.UPDATE, 2)
    state.add_unconfirmed(OperationKind.UPDATE, -1)
    snapshot = state.snapshot()
    assert snapshot['eventCount'] == 3
    assert snapshot['unconfirmed'] == {'insert': 0, 'update': 1, 'delete': 0}

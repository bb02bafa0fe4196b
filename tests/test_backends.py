import json

import pytest

import backends  # noqa: F401
from backends import (
    NotifyChangedChangeFeed, NotifyFullChangeFeed, PollingChangeFeed, diff_snapshots,
)
from core.backend import ChangeFeedFactory, ChangeFeedType, ChangeListener, build_reactive_query


class RecordingListener(ChangeListener):
    def __init__(self):
        self.events = []

    def on_insert(self, row):
        self.events.append(('insert', row['score_id']))

    def on_update(self, row):
        self.events.append(('update', row['score_id']))

    def on_delete(self, row):
        self.events.append(('delete', row['score_id']))

    def on_change(self, row, previous_row):
        self.events.append(('change',
                            row['score_id'] if row else None,
                            previous_row['score_id'] if previous_row else None))


def payload(op, new=None, old=None):
    return json.dumps({'op': op, 'new': new, 'old': old})


def score_row(score_id, class_id, score=10):
    return {'score_id': score_id, 'class_id': class_id, 'assignment_id': class_id,
            'student_id': 1, 'score': score}


def subscribe(feed, settings, class_id):
    listener = RecordingListener()
    feed.subscribe(build_reactive_query(settings, class_id), listener)
    return listener


def test_factory_resolves_registered_backends():
    assert set(ChangeFeedFactory.list_feeds()) == set(ChangeFeedType)
    feed = ChangeFeedFactory.create('poll', {'conninfo': 'dbname=test', 'poll_interval': 0.5})
    assert isinstance(feed, PollingChangeFeed)
    assert feed.poll_interval == 0.5


def test_factory_rejects_unknown_backend():
    with pytest.raises(ValueError, match="Unknown backend 'pg-live-select'"):
        ChangeFeedFactory.create('pg-live-select', {})


def test_reactive_query_filters_by_class(default_settings):
    query = build_reactive_query(default_settings, 7)
    assert query.params == {'class_id': 7}
    assert "(((assignment_id - 1) % 200) + 1) = %(class_id)s" in query.sql
    assert query.unique_column == 'score_id'


def test_notify_full_routes_by_class(small_settings):
    feed = NotifyFullChangeFeed({})
    first = subscribe(feed, small_settings, 1)
    second = subscribe(feed, small_settings, 2)

    assert feed.dispatch_payload(payload('insert', new=score_row(161, 1))) == 1
    feed.dispatch_payload(payload('update', new=score_row(5, 2, 11), old=score_row(5, 2)))
    feed.dispatch_payload(payload('delete', old=score_row(6, 2)))
    assert feed.dispatch_payload(payload('insert', new=score_row(162, 5))) == 0

    assert first.events == [('insert', 161)]
    assert second.events == [('update', 5), ('delete', 6)]
    assert feed.notifications_received == 4


def test_notify_changed_delivers_unified_events(small_settings):
    feed = NotifyChangedChangeFeed({})
    listener = subscribe(feed, small_settings, 1)
    feed.dispatch_payload(payload('insert', new=score_row(161, 1)))
    feed.dispatch_payload(payload('delete', old=score_row(161, 1)))
    assert listener.events == [('change', 161, None), ('change', None, 161)]


def test_notify_rejects_empty_payload(small_settings):
    feed = NotifyFullChangeFeed({})
    with pytest.raises(ValueError):
        feed.dispatch_payload(payload('insert'))


def test_stopped_subscription_receives_nothing(small_settings):
    feed = NotifyFullChangeFeed({})
    listener = RecordingListener()
    subscription = feed.subscribe(build_reactive_query(small_settings, 1), listener)
    subscription.stop()
    feed.dispatch_payload(payload('insert', new=score_row(161, 1)))
    assert listener.events == []


def test_diff_snapshots():
    previous = {1: score_row(1, 1), 2: score_row(2, 1)}
    current = {1: score_row(1, 1, score=99), 3: score_row(3, 1)}
    changes = list(diff_snapshots(previous, current))
    assert (score_row(1, 1, score=99), score_row(1, 1)) in changes
    assert (score_row(3, 1), None) in changes
    assert (None, score_row(2, 1)) in changes
    assert len(changes) == 3


def test_polling_applies_successive_snapshots(small_settings):
    feed = PollingChangeFeed({})
    listener = RecordingListener()
    subscription = feed.subscribe(build_reactive_query(small_settings, 1), listener)

    assert feed.apply_rows(subscription, [score_row(1, 1), score_row(2, 1)]) == 2
    assert feed.apply_rows(subscription, [score_row(1, 1), score_row(2, 1)]) == 0
    assert feed.apply_rows(subscription, [score_row(2, 1, score=3), score_row(170, 1)]) == 3
    assert listener.events[2:] == [('change', 2, 2), ('change', 170, None), ('change', None, 1)]


def test_reactive_query_selects_observed_columns(small_settings):
    query = build_reactive_query(small_settings, 1, observed_columns=['score_id', 'score'])
    assert query.sql.startswith("SELECT id AS score_id, score FROM scores WHERE")
    assert query.observed_columns == ['score_id', 'score']

    full = build_reactive_query(small_settings, 1)
    assert "id AS score_id, (((assignment_id - 1) % 8) + 1) AS class_id, assignment_id, student_id, score" in full.sql

    with pytest.raises(ValueError):
        build_reactive_query(small_settings, 1, observed_columns=['score'])
    with pytest.raises(ValueError):
        build_reactive_query(small_settings, 1, observed_columns=['score_id', 'grade'])


def test_polling_ignores_unobserved_columns(small_settings):
    feed = PollingChangeFeed({})
    listener = RecordingListener()
    query = build_reactive_query(small_settings, 1, observed_columns=['score_id', 'score'])
    subscription = feed.subscribe(query, listener)

    assert feed.apply_rows(subscription, [score_row(1, 1)]) == 1
    moved = dict(score_row(1, 1), student_id=3)
    assert feed.apply_rows(subscription, [moved]) == 0
    assert feed.apply_rows(subscription, [score_row(1, 1, score=42)]) == 1

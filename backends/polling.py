"""
Polling change feed.

Re-runs every reactive query on a fixed interval and diffs the result against
the previous snapshot. Changes are delivered as unified change events, like
query observers that only know "this row changed".
"""

import logging
import threading
from typing import Any, Dict, Iterator, List, Optional, Tuple

import psycopg
from psycopg.rows import dict_row

from core.backend import UNIQUE_COLUMN, ChangeFeed, ChangeFeedType, Row, Subscription

logger = logging.getLogger(__name__)

Snapshot = Dict[Any, Row]


def diff_snapshots(previous: Snapshot, current: Snapshot) -> Iterator[Tuple[Optional[Row], Optional[Row]]]:
    """
    Yield (row, previous_row) for every difference between two snapshots.

    New rows yield (row, None), changed rows (row, old_row) and removed rows
    (None, old_row).
    """
    for key, row in current.items():
        old_row = previous.get(key)
        if old_row is None or old_row != row:
            yield row, old_row
    for key, old_row in previous.items():
        if key not in current:
            yield None, old_row


class PollingChangeFeed(ChangeFeed):
    """
    Change feed that polls each reactive query.

    Usage:
        feed = PollingChangeFeed({'conninfo': conninfo, 'poll_interval': 0.1})
    """

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.feed_type = ChangeFeedType.POLL
        self.conninfo = config.get('conninfo')
        self.poll_interval = config.get('poll_interval', 0.1)
        self.connection = None
        self.snapshots: Dict[int, Snapshot] = {}
        self.polls = 0
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def start(self):
        self.connection = psycopg.connect(self.conninfo, autocommit=True, row_factory=dict_row)
        # First poll delivers the initial snapshot.
        self.poll_once()
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name='poll-feed', daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        if self.connection is not None:
            self.connection.close()
            self.connection = None

    def _run(self):
        try:
            while not self._stop.wait(self.poll_interval):
                self.poll_once()
        except Exception as e:
            if not self._stop.is_set():
                logger.error(f"Polling failed: {e}")
                self.report_error(e)

    def fetch_rows(self, subscription: Subscription) -> List[Row]:
        query = subscription.query
        return self.connection.execute(query.sql, query.params).fetchall()

    def poll_once(self) -> int:
        """
        Poll every active subscription once.

        Returns:
            Number of change events delivered
        """
        self.polls += 1
        delivered = 0
        for subscription in self.active_subscriptions():
            delivered += self.apply_rows(subscription, self.fetch_rows(subscription))
        return delivered

    def apply_rows(self, subscription: Subscription, rows: List[Row]) -> int:
        """Diff fresh rows against the last snapshot and deliver the changes."""
        query = subscription.query
        key = query.unique_column or UNIQUE_COLUMN
        # Only observed columns count as a change.
        current = {row[key]: {column: row[column] for column in query.observed_columns}
                   for row in rows}
        previous = self.snapshots.get(id(subscription), {})
        delivered = 0
        for row, previous_row in diff_snapshots(previous, current):
            subscription.listener.on_change(row, previous_row)
            delivered += 1
        self.snapshots[id(subscription)] = current
        return delivered

    def unsubscribe(self, subscription: Subscription):
        super().unsubscribe(subscription)
        self.snapshots.pop(id(subscription), None)

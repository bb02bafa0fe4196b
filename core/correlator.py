"""
Change correlator: matches change notifications to pending mutations.

Every notification is looked up in the pending-change ledger by (kind, score
id). A match yields a response-time sample; a miss is either an expected
notification about seeded data or an unexpected one (duplicate delivery,
backend bug, leftovers of an earlier run).
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from core.backend import UNIQUE_COLUMN, ChangeListener, Row
from core.ledger import PendingChangeLedger
from core.workload import DatasetSettings, OperationKind, RunState

logger = logging.getLogger(__name__)


class KindInferrer:
    """
    Reconstructs insert/update/delete from unified change events.

    Keeps the last known row per score id for every observed class:
    - unknown id -> insert
    - known id with different values -> update
    - row gone -> delete
    Identical rows are reported as no change.
    """

    def __init__(self, unique_column: str = UNIQUE_COLUMN):
        self.unique_column = unique_column
        self._known: Dict[int, Dict[int, Row]] = {}
        self._lock = threading.Lock()

    def classify(self, class_id: int, row: Optional[Row],
                 previous_row: Optional[Row] = None) -> Optional[Tuple[OperationKind, Row]]:
        """
        Classify a unified change and update the known rows.

        Returns:
            (kind, row) or None when nothing observable changed
        """
        if row is None and previous_row is None:
            raise ValueError("A change event needs a row or a previous row")

        with self._lock:
            known = self._known.setdefault(class_id, {})
            if row is None:
                score_id = previous_row[self.unique_column]
                last = known.pop(score_id, None)
                return OperationKind.DELETE, last if last is not None else previous_row

            score_id = row[self.unique_column]
            last = known.get(score_id)
            known[score_id] = dict(row)
            if last is None:
                return OperationKind.INSERT, row
            if last != row:
                return OperationKind.UPDATE, row
            return None

    def known_count(self, class_id: int) -> int:
        with self._lock:
            return len(self._known.get(class_id, {}))


class ChangeCorrelator:
    """
    Correlates change events with ledger entries and emits latency samples.

    The sink only needs `record_response_time(elapsed_seconds, latency_ms)`
    and must not block.
    """

    def __init__(
        self,
        settings: DatasetSettings,
        ledger: PendingChangeLedger,
        state: RunState,
        sink,
        clock: Callable[[], float] = time.perf_counter,
        unique_column: str = UNIQUE_COLUMN,
    ):
        self.settings = settings
        self.ledger = ledger
        self.state = state
        self.sink = sink
        self.clock = clock
        self.unique_column = unique_column
        self.inferrer = KindInferrer(unique_column)
        self.start_time: Optional[float] = None

    def mark_start(self, start_time: Optional[float] = None):
        self.start_time = self.clock() if start_time is None else start_time

    def handle(self, kind: OperationKind, entity_id: int) -> Optional[float]:
        """
        Correlate one classified notification.

        Returns:
            Latency in milliseconds, or None when nothing was correlated
        """
        submitted_at = self.ledger.close(kind, entity_id)
        if submitted_at is None:
            if self.settings.is_seeded(entity_id):
                # Initial snapshot or a change we did not track.
                return None
            self.state.increment('unexpected_count')
            logger.warning(f"Unexpected {kind.value} {entity_id}")
            return None

        now = self.clock()
        latency_ms = (now - submitted_at) * 1000
        start = self.start_time if self.start_time is not None else submitted_at
        self.sink.record_response_time(now - start, latency_ms)
        self.state.increment('correlated_count')
        return latency_ms

    def handle_change(self, class_id: int, row: Optional[Row],
                      previous_row: Optional[Row] = None) -> Optional[float]:
        """Infer the kind of a unified change event, then correlate it."""
        classified = self.inferrer.classify(class_id, row, previous_row)
        if classified is None:
            return None
        kind, changed_row = classified
        return self.handle(kind, changed_row[self.unique_column])

    def listener_for(self, class_id: int) -> 'CorrelatingListener':
        return CorrelatingListener(self, class_id)


class CorrelatingListener(ChangeListener):
    """Per-class listener forwarding every event to the correlator"""

    def __init__(self, correlator: ChangeCorrelator, class_id: int):
        self.correlator = correlator
        self.class_id = class_id

    def _event(self):
        self.correlator.state.increment('event_count')

    def on_insert(self, row: Row):
        self._event()
        self.correlator.handle(OperationKind.INSERT, row[self.correlator.unique_column])

    def on_update(self, row: Row):
        self._event()
        self.correlator.handle(OperationKind.UPDATE, row[self.correlator.unique_column])

    def on_delete(self, row: Row):
        self._event()
        self.correlator.handle(OperationKind.DELETE, row[self.correlator.unique_column])

    def on_change(self, row: Optional[Row], previous_row: Optional[Row]):
        self._event()
        self.correlator.handle_change(self.class_id, row, previous_row)

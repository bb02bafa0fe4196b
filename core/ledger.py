"""
Pending-change ledger.

Maps (operation kind, score id) to the instant the mutation was submitted.
Entries are opened by the mutation generator and closed either by the change
correlator (a notification arrived) or by the scheduler (the statement
affected zero rows).
"""

import threading
import time
from typing import Callable, Dict, Optional

from core.workload import OperationKind


class PendingChangeLedger:
    """
    Thread-safe store of submitted-but-unconfirmed mutations.

    The ledger does not enforce conflict avoidance between kinds; the
    generator does that at selection time while holding `lock`.
    """

    def __init__(self, clock: Callable[[], float] = time.perf_counter):
        self.clock = clock
        # Reentrant so the generator can hold it across select + open.
        self.lock = threading.RLock()
        self._entries: Dict[OperationKind, Dict[int, float]] = {kind: {} for kind in OperationKind}

    def open(self, kind: OperationKind, entity_id: int, timestamp: Optional[float] = None) -> float:
        """
        Open an entry.

        Args:
            kind: Operation kind
            entity_id: Score id being mutated
            timestamp: Submission instant in seconds (defaults to the clock)

        Returns:
            The recorded timestamp

        Raises:
            ValueError: If an entry for (kind, entity_id) is already open
        """
        with self.lock:
            entries = self._entries[kind]
            if entity_id in entries:
                raise ValueError(f"{kind.value} for score {entity_id} is already pending")
            if timestamp is None:
                timestamp = self.clock()
            entries[entity_id] = timestamp
            return timestamp

    def close(self, kind: OperationKind, entity_id: int) -> Optional[float]:
        """Remove an entry, returning its submission timestamp or None if absent."""
        with self.lock:
            return self._entries[kind].pop(entity_id, None)

    def contains(self, kind: OperationKind, entity_id: int) -> bool:
        with self.lock:
            return entity_id in self._entries[kind]

    def count(self, kind: Optional[OperationKind] = None) -> int:
        with self.lock:
            if kind is not None:
                return len(self._entries[kind])
            return sum(len(entries) for entries in self._entries.values())

    def count_stale(self, threshold_age_ms: float, now: Optional[float] = None) -> int:
        """Count entries submitted more than `threshold_age_ms` ago."""
        with self.lock:
            if now is None:
                now = self.clock()
            cutoff = now - threshold_age_ms / 1000.0
            return sum(
                1
                for entries in self._entries.values()
                for submitted_at in entries.values()
                if submitted_at < cutoff
            )

    def clear(self) -> int:
        """Discard every open entry; returns how many were dropped."""
        with self.lock:
            dropped = self.count()
            for entries in self._entries.values():
                entries.clear()
            return dropped

"""
Randomized mutation generator for the scores table.

Produces parameters for insert / update / delete statements and opens the
matching ledger entry as a side effect, so a notification arriving before the
statement returns can still be correlated.
"""

import logging
import random
from collections import deque
from typing import Deque, Optional

from core.ledger import PendingChangeLedger
from core.workload import DatasetSettings, Mutation, OperationKind, RunState

logger = logging.getLogger(__name__)

MAX_SCORE = 100


class TargetSelectionError(RuntimeError):
    """No non-conflicting score id could be found for an update or delete."""


class MutationGenerator:
    """
    Generates mutations and records them in the pending-change ledger.

    Usage:
        generator = MutationGenerator(settings, ledger, state, rng=random.Random(42))
        mutation = generator.generate(OperationKind.INSERT)
    """

    def __init__(
        self,
        settings: DatasetSettings,
        ledger: PendingChangeLedger,
        state: RunState,
        rng: Optional[random.Random] = None,
        recency_window: int = 1000,
        recent_insert_margin: int = 1000,
        max_attempts: int = 1000,
    ):
        self.settings = settings
        self.ledger = ledger
        self.state = state
        self.rng = rng or random.Random()
        self.recent_insert_margin = recent_insert_margin
        self.max_attempts = max_attempts
        self.insert_count = 0
        # Shared by updates and deletes; most recent first.
        self.recent_ids: Deque[int] = deque(maxlen=recency_window)

    def generate(self, kind: OperationKind) -> Mutation:
        """
        Generate one mutation of the given kind.

        Raises:
            TargetSelectionError: If an update/delete target cannot be found
        """
        self.state.increment('changes_count')
        if kind is OperationKind.INSERT:
            return self._generate_insert()
        return self._generate_modification(kind)

    def _generate_insert(self) -> Mutation:
        settings = self.settings
        with self.ledger.lock:
            self.insert_count += 1
            score_id = self.insert_count + settings.scores_count
            assignment_id = self.rng.randint(1, settings.assign_count)
            student_id = self.rng.randint(1, settings.student_count)
            score = self.rng.randint(1, MAX_SCORE)

            # Only observed classes have reactive queries watching them.
            tracked = settings.is_observed(settings.class_of(assignment_id))
            submitted_at = self.ledger.open(OperationKind.INSERT, score_id) if tracked else None

        return Mutation(
            kind=OperationKind.INSERT,
            entity_id=score_id,
            params={
                'id': score_id,
                'assignment_id': assignment_id,
                'student_id': student_id,
                'score': score,
            },
            tracked=tracked,
            submitted_at=submitted_at,
        )

    def _generate_modification(self, kind: OperationKind) -> Mutation:
        with self.ledger.lock:
            score_id = self._select_target()
            submitted_at = self.ledger.open(kind, score_id)
            self.recent_ids.appendleft(score_id)
            params = {'id': score_id}
            if kind is OperationKind.UPDATE:
                # Equal to the stored score is filtered by the statement and reverted.
                params['score'] = self.rng.randint(1, MAX_SCORE)

        return Mutation(kind=kind, entity_id=score_id, params=params,
                        tracked=True, submitted_at=submitted_at)

    def _select_target(self) -> int:
        # Skip the most recent inserts so their insert entries have likely resolved.
        upper = self.insert_count + self.settings.scores_count - self.recent_insert_margin
        if upper < 1:
            raise TargetSelectionError(
                f"No score ids available for selection (upper bound {upper}); "
                f"recent insert margin {self.recent_insert_margin} is too large for the dataset"
            )

        for _ in range(self.max_attempts):
            score_id = self.rng.randint(1, upper)
            if self._is_conflicting(score_id):
                continue
            return score_id

        raise TargetSelectionError(
            f"Looping too long to get a score id ({self.max_attempts} attempts, "
            f"{len(self.recent_ids)} recent ids, upper bound {upper})"
        )

    def _is_conflicting(self, score_id: int) -> bool:
        if score_id in self.recent_ids:
            return True
        return any(
            self.ledger.contains(kind, score_id)
            for kind in OperationKind
            if kind.family == OperationKind.UPDATE.family
        )

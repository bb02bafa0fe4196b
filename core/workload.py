"""
Fixed workload definition for reactive query latency benchmarking.

The dataset shape never changes between runs:
- classes, each with a fixed number of assignments and students
- one score per (assignment, student) pair, seeded with ids 1..scores_count
- only the first `reactive_queries_count` classes are observed
"""

import math
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class OperationKind(Enum):
    """Mutation kinds issued against the scores table"""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"

    @property
    def family(self) -> str:
        """
        Conflict family of the kind.

        Inserts target ids that do not exist yet, so they never collide with
        updates or deletes. Updates and deletes share one family.
        """
        return "insert" if self is OperationKind.INSERT else "modify"


@dataclass(frozen=True)
class DatasetSettings:
    """Generation parameters of the sample dataset and derived totals"""
    class_count: int = 200
    assignments_per_class: int = 30
    students_per_class: int = 20
    classes_per_student: int = 6
    reactive_queries_count: int = 50

    def __post_init__(self):
        for name in ('class_count', 'assignments_per_class', 'students_per_class',
                     'classes_per_student', 'reactive_queries_count'):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.reactive_queries_count > self.class_count:
            raise ValueError(
                f"reactive_queries_count ({self.reactive_queries_count}) "
                f"exceeds class_count ({self.class_count})"
            )

    @classmethod
    def for_reactive_queries(cls, reactive_queries_count: int, **overrides) -> 'DatasetSettings':
        """Default sizing: four classes per observed class."""
        overrides.setdefault('class_count', reactive_queries_count * 4)
        return cls(reactive_queries_count=reactive_queries_count, **overrides)

    @property
    def assign_count(self) -> int:
        return self.class_count * self.assignments_per_class

    @property
    def student_count(self) -> int:
        return math.ceil(self.class_count / self.classes_per_student) * self.students_per_class

    @property
    def scores_count(self) -> int:
        return self.assign_count * self.students_per_class

    def class_of(self, assignment_id: int) -> int:
        """Map an assignment to its owning class."""
        return ((assignment_id - 1) % self.class_count) + 1

    def is_observed(self, class_id: int) -> bool:
        return 1 <= class_id <= self.reactive_queries_count

    def observed_classes(self) -> List[int]:
        return list(range(1, self.reactive_queries_count + 1))

    def is_seeded(self, score_id: int) -> bool:
        """True for score ids that exist before the run starts."""
        return score_id <= self.scores_count

    def to_dict(self) -> Dict[str, int]:
        return {
            'class_count': self.class_count,
            'assignments_per_class': self.assignments_per_class,
            'students_per_class': self.students_per_class,
            'classes_per_student': self.classes_per_student,
            'reactive_queries_count': self.reactive_queries_count,
            'assign_count': self.assign_count,
            'student_count': self.student_count,
            'scores_count': self.scores_count,
        }


def class_expression(settings: DatasetSettings, column: str = 'assignment_id') -> str:
    """SQL expression computing the class id of a scores row."""
    return f"((({column} - 1) % {settings.class_count}) + 1)"


def observed_guard(settings: DatasetSettings) -> str:
    """SQL predicate restricting a statement to observed classes."""
    return f"{class_expression(settings)} BETWEEN 1 AND {settings.reactive_queries_count}"


@dataclass
class Mutation:
    """Parameters of one generated statement"""
    kind: OperationKind
    entity_id: int
    params: Dict[str, Any]
    tracked: bool
    submitted_at: Optional[float] = None


@dataclass
class MutationSpec:
    """One mutation stream: a kind, its target rate and its statement"""
    kind: OperationKind
    exec_per_second: float
    statement: str

    @property
    def interval_seconds(self) -> float:
        return 1.0 / self.exec_per_second


def build_statements(settings: DatasetSettings) -> Dict[OperationKind, str]:
    """
    SQL statements for every mutation kind.

    Updates and deletes carry the observed-class guard; a target outside the
    observed classes reports zero affected rows and is reverted. The update
    also skips rows already holding the new score.
    """
    guard = observed_guard(settings)
    return {
        OperationKind.INSERT: (
            "INSERT INTO scores (id, assignment_id, student_id, score) "
            "VALUES (%(id)s, %(assignment_id)s, %(student_id)s, %(score)s)"
        ),
        OperationKind.UPDATE: (
            "UPDATE scores SET score = %(score)s "
            f"WHERE id = %(id)s AND score != %(score)s AND {guard}"
        ),
        OperationKind.DELETE: (
            f"DELETE FROM scores WHERE id = %(id)s AND {guard}"
        ),
    }


def build_mutation_specs(settings: DatasetSettings,
                         rates: Dict[OperationKind, float]) -> List[MutationSpec]:
    """
    Build mutation streams for every kind with a positive rate.

    Args:
        settings: Dataset settings (used for the class guard)
        rates: Operations per second per kind

    Returns:
        List of MutationSpec, in OperationKind order
    """
    statements = build_statements(settings)
    specs = []
    for kind in OperationKind:
        rate = rates.get(kind, 0)
        if rate < 0:
            raise ValueError(f"Rate for {kind.value} must not be negative, got {rate}")
        if rate > 0:
            specs.append(MutationSpec(kind=kind, exec_per_second=rate, statement=statements[kind]))
    return specs


@dataclass
class RunState:
    """
    Counters shared by the generator, scheduler and correlator.

    Every mutation goes through the lock; the scheduler and the change feed
    call in from different threads.
    """
    event_count: int = 0
    changes_count: int = 0
    correlated_count: int = 0
    unexpected_count: int = 0
    reverted_count: int = 0
    unconfirmed: Dict[OperationKind, int] = field(
        default_factory=lambda: {kind: 0 for kind in OperationKind}
    )
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, counter: str, amount: int = 1):
        with self.lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def add_unconfirmed(self, kind: OperationKind, amount: int):
        with self.lock:
            self.unconfirmed[kind] += amount

    def get_unconfirmed(self, kind: OperationKind) -> int:
        with self.lock:
            return self.unconfirmed[kind]

    def snapshot(self) -> Dict[str, Any]:
        with self.lock:
            return {
                'eventCount': self.event_count,
                'changesCount': self.changes_count,
                'correlatedCount': self.correlated_count,
                'unexpectedCount': self.unexpected_count,
                'revertedCount': self.reverted_count,
                'unconfirmed': {kind.value: count for kind, count in self.unconfirmed.items()},
            }

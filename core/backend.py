"""
Abstract change-feed interface for reactive query benchmarking.

A change feed watches a filtered view of the scores table (one per observed
class) and pushes row events to a listener. Backends deliver either explicit
insert/update/delete events or a single unified change event; the harness
works the same way with either.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.workload import DatasetSettings, class_expression


class ChangeFeedType(Enum):
    """Supported change notification backends"""
    NOTIFY_FULL = "notify-full"
    NOTIFY_CHANGED = "notify-changed"
    POLL = "poll"


Row = Dict[str, Any]

UNIQUE_COLUMN = 'score_id'
OBSERVED_COLUMNS = ['score_id', 'class_id', 'assignment_id', 'student_id', 'score']


@dataclass
class ReactiveQuery:
    """A filtered view of the scores table for one class"""
    class_id: int
    sql: str
    params: Dict[str, Any]
    unique_column: str = UNIQUE_COLUMN
    observed_columns: List[str] = field(default_factory=lambda: list(OBSERVED_COLUMNS))


def column_sources(settings: DatasetSettings) -> Dict[str, str]:
    """SQL expression behind each column a reactive query can observe."""
    return {
        'score_id': 'id',
        'class_id': class_expression(settings),
        'assignment_id': 'assignment_id',
        'student_id': 'student_id',
        'score': 'score',
    }


def build_reactive_query(settings: DatasetSettings, class_id: int,
                         observed_columns: Optional[List[str]] = None) -> ReactiveQuery:
    """
    Build the reactive query watching every score of a class.

    Raises:
        ValueError: Unknown column, or the unique column is not observed
    """
    columns = list(observed_columns or OBSERVED_COLUMNS)
    sources = column_sources(settings)
    unknown = [column for column in columns if column not in sources]
    if unknown:
        raise ValueError(f"Unknown observed columns: {unknown}")
    if UNIQUE_COLUMN not in columns:
        raise ValueError(f"Observed columns must include '{UNIQUE_COLUMN}'")

    select = ", ".join(
        column if sources[column] == column else f"{sources[column]} AS {column}"
        for column in columns
    )
    sql = f"SELECT {select} FROM scores WHERE {sources['class_id']} = %(class_id)s"
    return ReactiveQuery(class_id=class_id, sql=sql, params={'class_id': class_id},
                         observed_columns=columns)


class ChangeListener(ABC):
    """Receiver of row events for one subscription"""

    @abstractmethod
    def on_insert(self, row: Row):
        pass

    @abstractmethod
    def on_update(self, row: Row):
        pass

    @abstractmethod
    def on_delete(self, row: Row):
        pass

    @abstractmethod
    def on_change(self, row: Optional[Row], previous_row: Optional[Row]):
        """
        Unified change event without an operation kind.

        Args:
            row: Current row, or None if the row left the view
            previous_row: Row before the change when the backend knows it
        """
        pass


class Subscription:
    """Handle returned by ChangeFeed.subscribe"""

    def __init__(self, feed: 'ChangeFeed', query: ReactiveQuery, listener: ChangeListener):
        self.feed = feed
        self.query = query
        self.listener = listener
        self.active = True

    @property
    def class_id(self) -> int:
        return self.query.class_id

    def stop(self):
        self.active = False
        self.feed.unsubscribe(self)


class ChangeFeed(ABC):
    """
    Abstract base class for change notification backends.

    All backends must implement this interface to be benchmarked.
    Listener callbacks may run on a backend-owned thread.
    """

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.feed_type: Optional[ChangeFeedType] = None  # Set by subclass
        self.subscriptions: List[Subscription] = []
        # Set by the run controller; failures on backend threads are fatal.
        self.on_error: Optional[Callable[[BaseException], None]] = None

    @abstractmethod
    def start(self):
        """
        Start delivering events.

        Raises:
            Exception: Any subscription-start failure; the run treats it as fatal
        """
        pass

    @abstractmethod
    def stop(self):
        """Stop delivering events and release resources."""
        pass

    def subscribe(self, query: ReactiveQuery, listener: ChangeListener) -> Subscription:
        """
        Subscribe a listener to a reactive query.

        Returns:
            Subscription handle
        """
        subscription = Subscription(self, query, listener)
        self.subscriptions.append(subscription)
        self._on_subscribe(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription):
        if subscription in self.subscriptions:
            self.subscriptions.remove(subscription)

    def _on_subscribe(self, subscription: Subscription):
        """Hook for backends that need per-subscription setup."""
        pass

    def report_error(self, error: BaseException):
        """Forward a failure raised on a backend thread."""
        if self.on_error is None:
            raise error
        self.on_error(error)

    def subscriptions_for(self, class_id: int) -> List[Subscription]:
        return [s for s in self.subscriptions if s.active and s.class_id == class_id]

    def active_subscriptions(self) -> List[Subscription]:
        return [s for s in self.subscriptions if s.active]

    def get_feed_info(self) -> Dict[str, Any]:
        return {
            'type': self.feed_type.value if self.feed_type else 'unknown',
            'name': self.__class__.__name__,
            'subscriptions': len(self.subscriptions),
        }


class ChangeFeedFactory:
    """
    Factory for creating change feed instances.
    """

    _feeds = {}

    @classmethod
    def register(cls, feed_type: ChangeFeedType, feed_class):
        """Register a change feed implementation"""
        cls._feeds[feed_type] = feed_class

    @classmethod
    def resolve(cls, name: str) -> ChangeFeedType:
        """
        Resolve a backend name given on the command line.

        Raises:
            ValueError: If the name is unknown or not registered
        """
        try:
            feed_type = ChangeFeedType(name)
        except ValueError:
            raise ValueError(
                f"Unknown backend '{name}'. Available backends: {cls.available_names()}"
            ) from None
        if feed_type not in cls._feeds:
            raise ValueError(
                f"Backend '{name}' not registered. Available backends: {cls.available_names()}"
            )
        return feed_type

    @classmethod
    def create(cls, name: str, config: Dict[str, Any]) -> ChangeFeed:
        """
        Create a change feed instance.

        Args:
            name: Backend name (e.g., 'notify-full')
            config: Configuration dict for the backend

        Returns:
            ChangeFeed instance
        """
        return cls._feeds[cls.resolve(name)](config)

    @classmethod
    def list_feeds(cls) -> List[ChangeFeedType]:
        """List all registered change feeds"""
        return list(cls._feeds.keys())

    @classmethod
    def available_names(cls) -> str:
        return ', '.join(ft.value for ft in cls._feeds.keys())

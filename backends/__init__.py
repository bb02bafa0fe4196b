"""
Change notification backends for reactive query benchmarking.

Available backends:
- notify-full    (trigger + LISTEN/NOTIFY, explicit insert/update/delete events)
- notify-changed (trigger + LISTEN/NOTIFY, unified change events)
- poll           (periodic re-query with snapshot diffing)
"""

from core.backend import ChangeFeedType, ChangeFeed, ChangeFeedFactory

# Import backend implementations
from .notify import NotifyChangeFeed, NotifyFullChangeFeed, NotifyChangedChangeFeed
from .polling import PollingChangeFeed, diff_snapshots

# Register backends with factory
ChangeFeedFactory.register(ChangeFeedType.NOTIFY_FULL, NotifyFullChangeFeed)
ChangeFeedFactory.register(ChangeFeedType.NOTIFY_CHANGED, NotifyChangedChangeFeed)
ChangeFeedFactory.register(ChangeFeedType.POLL, PollingChangeFeed)

__all__ = [
    'ChangeFeed',
    'ChangeFeedType',
    'ChangeFeedFactory',
    'NotifyChangeFeed',
    'NotifyFullChangeFeed',
    'NotifyChangedChangeFeed',
    'PollingChangeFeed',
    'diff_snapshots',
]

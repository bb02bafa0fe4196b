"""
Trigger-based change feeds (Postgres LISTEN/NOTIFY).

A row trigger on `scores` publishes every change as JSON on one channel:
    {"op": "insert" | "update" | "delete", "new": {...} | null, "old": {...} | null}

The feed routes each payload to the subscriptions of the row's class.
- notify-full:    explicit insert/update/delete events
- notify-changed: unified change(row, previous_row) events
"""

import json
import logging
import threading
from typing import Any, Dict, Optional

import psycopg
from psycopg.rows import dict_row

from core.backend import ChangeFeed, ChangeFeedType, Row, Subscription
from utils.dataset import NOTIFY_CHANNEL

logger = logging.getLogger(__name__)


class NotifyChangeFeed(ChangeFeed):
    """
    Base LISTEN/NOTIFY change feed.

    Subclasses decide how a decoded payload is delivered to a listener.
    """

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.conninfo = config.get('conninfo')
        self.channel = config.get('channel', NOTIFY_CHANNEL)
        self.listen_timeout = config.get('listen_timeout', 0.5)
        self.connection = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self.notifications_received = 0

    def start(self):
        """LISTEN first, then deliver the initial snapshot, then follow the channel."""
        self.connection = psycopg.connect(self.conninfo, autocommit=True)
        self.connection.execute(f"LISTEN {self.channel}")
        self.deliver_snapshot()

        self._stop.clear()
        self._thread = threading.Thread(target=self._listen, name=f"{self.feed_type.value}-listener",
                                        daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        if self.connection is not None:
            self.connection.close()
            self.connection = None

    def deliver_snapshot(self):
        """Deliver every row currently in each reactive query as initial events."""
        with psycopg.connect(self.conninfo, autocommit=True, row_factory=dict_row) as conn:
            for subscription in self.active_subscriptions():
                rows = conn.execute(subscription.query.sql, subscription.query.params).fetchall()
                for row in rows:
                    self.deliver_initial(subscription, row)

    def _listen(self):
        try:
            while not self._stop.is_set():
                for notify in self.connection.notifies(timeout=self.listen_timeout):
                    self.dispatch_payload(notify.payload)
                    if self._stop.is_set():
                        break
        except Exception as e:
            if not self._stop.is_set():
                logger.error(f"Listener on '{self.channel}' failed: {e}")
                self.report_error(e)

    def dispatch_payload(self, payload: str) -> int:
        """
        Route one notification payload to matching subscriptions.

        Returns:
            Number of subscriptions the event was delivered to
        """
        self.notifications_received += 1
        message = json.loads(payload)
        op = message['op']
        new_row = message.get('new')
        old_row = message.get('old')
        row = new_row if new_row is not None else old_row
        if row is None:
            raise ValueError(f"Notification without row data: {payload}")

        delivered = 0
        for subscription in self.subscriptions_for(row['class_id']):
            self.deliver(subscription, op, new_row, old_row)
            delivered += 1
        return delivered

    def deliver_initial(self, subscription: Subscription, row: Row):
        raise NotImplementedError

    def deliver(self, subscription: Subscription, op: str,
                new_row: Optional[Row], old_row: Optional[Row]):
        raise NotImplementedError


class NotifyFullChangeFeed(NotifyChangeFeed):
    """Delivers explicit insert/update/delete events with the full row."""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.feed_type = ChangeFeedType.NOTIFY_FULL

    def deliver_initial(self, subscription: Subscription, row: Row):
        subscription.listener.on_insert(row)

    def deliver(self, subscription: Subscription, op: str,
                new_row: Optional[Row], old_row: Optional[Row]):
        listener = subscription.listener
        if op == 'insert':
            listener.on_insert(new_row)
        elif op == 'update':
            listener.on_update(new_row)
        elif op == 'delete':
            listener.on_delete(old_row)
        else:
            raise ValueError(f"Unknown operation in notification: {op}")


class NotifyChangedChangeFeed(NotifyChangeFeed):
    """Delivers unified change events; the listener infers the kind."""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.feed_type = ChangeFeedType.NOTIFY_CHANGED

    def deliver_initial(self, subscription: Subscription, row: Row):
        subscription.listener.on_change(row, None)

    def deliver(self, subscription: Subscription, op: str,
                new_row: Optional[Row], old_row: Optional[Row]):
        subscription.listener.on_change(new_row, old_row)

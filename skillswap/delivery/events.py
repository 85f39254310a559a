"""
In-process push channel.

Services publish a ``ChangeEvent`` after every committed write; subscribers
register per table and do their own filtering on the row, the same way a
realtime subscriber would when server-side filters are not trusted.
"""

import itertools
import logging
import threading
from typing import Any, Callable, Dict, Literal, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

EventType = Literal["insert", "update"]


class ChangeEvent(BaseModel):
    event_type: EventType
    table: str
    row: Dict[str, Any]


Callback = Callable[[ChangeEvent], None]


class Subscription:
    def __init__(self, bus: "EventBus", key: int, table: str):
        self._bus = bus
        self.key = key
        self.table = table
        self.active = True

    def unsubscribe(self):
        if self.active:
            self._bus._remove(self.key)
            self.active = False


class EventBus:
    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._subscribers: Dict[int, tuple[str, Callback]] = {}

    def subscribe(self, table: str, callback: Callback) -> Subscription:
        with self._lock:
            key = next(self._ids)
            self._subscribers[key] = (table, callback)
        return Subscription(self, key, table)

    def _remove(self, key: int):
        with self._lock:
            self._subscribers.pop(key, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: ChangeEvent):
        with self._lock:
            targets = [cb for table, cb in self._subscribers.values() if table == event.table]

        for callback in targets:
            try:
                callback(event)
            except Exception:
                logger.exception(f"subscriber_failed table={event.table}")

    def emit(self, event_type: EventType, table: str, row: Dict[str, Any]):
        self.publish(ChangeEvent(event_type=event_type, table=table, row=dict(row)))


def publish_rows(bus: Optional[EventBus], event_type: EventType, table: str, rows):
    if bus is None:
        return
    for row in rows or []:
        bus.emit(event_type, table, row)

"""
Presence: who is connected right now.

``PresenceHub`` is the shared signalling channel keyed by user id; each
connected client announces itself with ``track``. ``PresenceTracker`` is
the subscriber-side view: ``sync`` replaces the online set wholesale,
``join``/``leave`` patch a single key.

Nothing here is persisted and there is no heartbeat: a client that dies
without ``untrack`` stays online until its connection is torn down.
"""

import itertools
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Literal, Optional, Set, Union

from pydantic import BaseModel, Field

from skillswap.delivery.merge import parse_timestamp

logger = logging.getLogger(__name__)

ONLINE_THRESHOLD = timedelta(minutes=2)

DisplayStatus = Literal["online", "offline", "busy"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def display_status(
    status: Optional[str],
    last_seen: Union[str, datetime, None],
    now: Optional[datetime] = None,
) -> DisplayStatus:
    """
    What to show next to a user's name.

    An explicit ``busy`` or ``offline`` always wins. Otherwise the user counts
    as online only if they were seen within ``ONLINE_THRESHOLD``.
    """
    if status == "busy":
        return "busy"
    if status == "offline" or not last_seen:
        return "offline"

    now = now or _utcnow()
    if now - parse_timestamp(last_seen) <= ONLINE_THRESHOLD:
        return "online"
    return "offline"


class PresenceEvent(BaseModel):
    kind: Literal["sync", "join", "leave"]
    keys: List[str]
    timestamp: datetime = Field(default_factory=_utcnow)


class PresenceRecord(BaseModel):
    user_id: str
    last_seen_event_type: Literal["join", "leave"]
    timestamp: datetime


Listener = Callable[[PresenceEvent], None]


class PresenceTracker:
    def __init__(self):
        self.online: Set[str] = set()
        self.records: Dict[str, PresenceRecord] = {}

    def apply(self, event: PresenceEvent) -> Set[str]:
        if event.kind == "sync":
            self.online = set(event.keys)
            for key in event.keys:
                self._record(key, "join", event.timestamp)
        elif event.kind == "join":
            self.online.update(event.keys)
            for key in event.keys:
                self._record(key, "join", event.timestamp)
        else:
            self.online.difference_update(event.keys)
            for key in event.keys:
                self._record(key, "leave", event.timestamp)
        return set(self.online)

    def _record(self, user_id: str, kind: str, timestamp: datetime):
        self.records[user_id] = PresenceRecord(
            user_id=user_id, last_seen_event_type=kind, timestamp=timestamp
        )

    def is_online(self, user_id: str) -> bool:
        return str(user_id) in self.online


class PresenceHub:
    def __init__(self):
        # One user may hold several connections; the key leaves with the last one
        self._connections: Dict[str, int] = {}
        self._listeners: Dict[int, Listener] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def online(self) -> Set[str]:
        with self._lock:
            return set(self._connections)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            key = next(self._ids)
            self._listeners[key] = listener
            keys = sorted(self._connections)
        self._deliver(listener, PresenceEvent(kind="sync", keys=keys))

        def unsubscribe():
            with self._lock:
                self._listeners.pop(key, None)

        return unsubscribe

    def track(self, user_id: str):
        user_id = str(user_id)
        with self._lock:
            count = self._connections.get(user_id, 0)
            self._connections[user_id] = count + 1
        if count == 0:
            logger.info(f"presence_join user_id={user_id}")
            self._broadcast(PresenceEvent(kind="join", keys=[user_id]))

    def untrack(self, user_id: str):
        user_id = str(user_id)
        with self._lock:
            count = self._connections.get(user_id, 0)
            if count > 1:
                self._connections[user_id] = count - 1
                return
            left = self._connections.pop(user_id, None) is not None
        if left:
            logger.info(f"presence_leave user_id={user_id}")
            self._broadcast(PresenceEvent(kind="leave", keys=[user_id]))

    def resync(self):
        with self._lock:
            keys = sorted(self._connections)
        self._broadcast(PresenceEvent(kind="sync", keys=keys))

    def _broadcast(self, event: PresenceEvent):
        # Listeners run outside the lock so they may call back into the hub
        with self._lock:
            listeners = list(self._listeners.values())
        for listener in listeners:
            self._deliver(listener, event)

    def _deliver(self, listener: Listener, event: PresenceEvent):
        try:
            listener(event)
        except Exception:
            logger.exception(f"presence_listener_failed kind={event.kind}")

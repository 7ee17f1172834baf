from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, NamedTuple

logger = logging.getLogger(__name__)

TRANSACTIONS_CHANGED = "TRANSACTIONS_CHANGED"
RECURRING_INCOME_CHANGED = "RECURRING_INCOME_CHANGED"
BILLS_CHANGED = "BILLS_CHANGED"
ACCOUNTS_CHANGED = "ACCOUNTS_CHANGED"
CATEGORIES_CHANGED = "CATEGORIES_CHANGED"

TOPICS = (
    TRANSACTIONS_CHANGED,
    RECURRING_INCOME_CHANGED,
    BILLS_CHANGED,
    ACCOUNTS_CHANGED,
    CATEGORIES_CHANGED,
)


class Event(NamedTuple):
    name: str
    ts: str
    payload: dict


Handler = Callable[[Event], None]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Handler]] = {}

    def subscribe(self, name: str, handler: Handler) -> None:
        self._subscribers.setdefault(name, []).append(handler)

    def unsubscribe(self, name: str, handler: Handler) -> None:
        handlers = self._subscribers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, name: str, payload: dict | None = None) -> int:
        event = Event(name=name, ts=datetime.now().isoformat(), payload=payload or {})
        handlers = list(self._subscribers.get(name, []))
        for handler in handlers:
            handler(event)
        logger.debug("Published %s to %d handler(s)", name, len(handlers))
        return len(handlers)


class RevisionTracker:
    """Per-topic dirty counters that clients pull instead of polling data.

    Repositories publish from threadpool workers, so counters are guarded by a lock.
    """

    def __init__(self, bus: EventBus, topics: tuple[str, ...] = TOPICS) -> None:
        self._lock = threading.Lock()
        self.revisions: Dict[str, int] = {topic: 0 for topic in topics}
        for topic in topics:
            bus.subscribe(topic, self._bump)

    def _bump(self, event: Event) -> None:
        with self._lock:
            self.revisions[event.name] = self.revisions.get(event.name, 0) + 1

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self.revisions)

    def changed_since(self, known: Dict[str, int]) -> List[str]:
        return [
            topic
            for topic, revision in self.snapshot().items()
            if known.get(topic, -1) != revision
        ]

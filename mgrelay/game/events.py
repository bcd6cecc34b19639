"""Event kinds, subscriber registry and fan-out."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

SUBSCRIBERS_KEY = "subscriberNames"


class EventKind(str, Enum):
    ROUND_CHANGE = "roundchange"
    ROUND_END = "roundend"
    JOIN_MINIGAME = "joinminigame"
    LEAVE_MINIGAME = "leaveminigame"
    LEADERBOARD_CHANGE = "leaderboardchange"
    SCORE = "score"
    KILL = "kill"
    DEATH = "death"


class Consumer(Protocol):
    name: str

    @property
    def loaded(self) -> bool: ...

    def emit(self, kind: EventKind, payload: Any) -> None: ...


ConsumerLookup = Callable[[str], "Consumer | None"]


class SubscriberRegistry:
    def __init__(self, lookup: ConsumerLookup, store):
        self.lookup = lookup
        self.store = store
        self._subscribers: list[Consumer] = []

    def __len__(self) -> int:
        return len(self._subscribers)

    @property
    def names(self) -> list[str]:
        return [s.name for s in self._subscribers]

    def _persist(self) -> None:
        self.store.set(SUBSCRIBERS_KEY, self.names)

    def subscribe(self, name: str) -> bool:
        idx = next((i for i, s in enumerate(self._subscribers) if s.name == name), None)
        if idx is not None and self._subscribers[idx].loaded:
            self._persist()
            return True

        consumer = self.lookup(name)
        added = False
        if consumer is not None and consumer.loaded:
            if idx is not None:
                # Same name, fresh connection.
                self._subscribers[idx] = consumer
            else:
                self._subscribers.append(consumer)
            added = True
            logger.info("%s subscribed", name)
        else:
            logger.warning("%s not loaded, subscription skipped", name)
        self._persist()
        return added

    def unsubscribe(self, name: str) -> None:
        before = len(self._subscribers)
        self._subscribers = [s for s in self._subscribers if s.name != name]
        if len(self._subscribers) != before:
            logger.info("%s unsubscribed", name)
        self._persist()

    def restore(self) -> None:
        for name in list(self.store.get(SUBSCRIBERS_KEY) or []):
            self.subscribe(name)

    def dispatch(self, kind: EventKind, payload: Any) -> int:
        """Deliver to every subscriber; returns how many accepted it."""
        delivered = 0
        for s in list(self._subscribers):
            if not s.loaded:
                # Disconnected; pick up a reconnect under the same name if there is one.
                fresh = self.lookup(s.name)
                if fresh is None or not fresh.loaded:
                    logger.debug("%s not connected, %s skipped", s.name, kind.value)
                    continue
                if s in self._subscribers:
                    self._subscribers[self._subscribers.index(s)] = fresh
                s = fresh
            try:
                s.emit(kind, payload)
                delivered += 1
            except Exception:
                logger.exception("delivering %s to %s failed", kind.value, s.name)
        return delivered


class CallbackConsumer:
    """In-process consumer that hands every event to a callable."""

    def __init__(self, name: str, fn: Callable[[EventKind, Any], None]):
        self.name = name
        self.fn = fn
        self.loaded = True

    def emit(self, kind: EventKind, payload: Any) -> None:
        self.fn(kind, payload)

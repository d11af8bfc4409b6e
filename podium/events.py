"""In-process events emitted on settlement, streak and level transitions.

Notification and delivery collaborators subscribe; the engine never
waits on them. Events are published only after the transaction that
produced them has committed.
"""

import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Union

from podium.config import local_now_naive

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BetFinalized:
    user_id: str
    bet_id: str
    points_earned: float
    name: str = field(default="bet-finalized", init=False)


@dataclass(frozen=True)
class StreakLost:
    user_id: str
    type: str  # betting | play
    lost_value: int
    name: str = field(default="streak-lost", init=False)


@dataclass(frozen=True)
class LevelUp:
    user_id: str
    new_level: int
    name: str = field(default="level-up", init=False)


Event = Union[BetFinalized, StreakLost, LevelUp]
Subscriber = Callable[[Event], Awaitable[None]]


class EventBus:
    """Fan-out of engine events to async subscribers."""

    def __init__(self, history: int = 200):
        self._subscribers: list[Subscriber] = []
        self._recent: deque[tuple[datetime, Event]] = deque(maxlen=history)

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    async def publish(self, event: Event) -> None:
        """Deliver an event. A failing subscriber never affects engine state."""
        self._recent.appendleft((local_now_naive(), event))
        for subscriber in list(self._subscribers):
            try:
                await subscriber(event)
            except Exception as e:
                logger.error(f"Event subscriber failed for {event.name}: {e}")

    async def publish_all(self, events: list[Event]) -> None:
        for event in events:
            await self.publish(event)

    def recent(self, limit: int = 50) -> list[dict]:
        return [
            {"at": at.isoformat(), **asdict(event)}
            for at, event in list(self._recent)[:limit]
        ]

    def clear(self) -> None:
        self._recent.clear()


# Global event bus instance
event_bus = EventBus()

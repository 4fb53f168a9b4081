"""
Feedback queue between the reward engine and the presentation layer

Producers append events in the order rewards happen; a single consumer
peeks the front event, shows it, and dismisses it once the user
acknowledges. Only one event is ever "current", so a level-up can't be
hidden by a badge unlock produced in the same tick.
"""

from collections import deque
from typing import Optional
import asyncio
import logging

from fitquest.models.gamification import FeedbackEvent

logger = logging.getLogger(__name__)


class FeedbackQueue:
    """FIFO of feedback events; many producers, one consumer"""

    def __init__(self):
        self._events: deque = deque()
        self._available = asyncio.Event()

    def push(self, event: FeedbackEvent) -> None:
        self._events.append(event)
        self._available.set()
        logger.debug(f"Queued {event.kind} feedback ({len(self._events)} pending)")

    def peek(self) -> Optional[FeedbackEvent]:
        """Front event without removing it"""
        return self._events[0] if self._events else None

    def dismiss(self) -> Optional[FeedbackEvent]:
        """Drop the front event; no-op on an empty queue"""
        if not self._events:
            return None
        event = self._events.popleft()
        if not self._events:
            self._available.clear()
        return event

    def clear(self) -> None:
        self._events.clear()
        self._available.clear()

    def pending(self) -> list[FeedbackEvent]:
        return list(self._events)

    async def wait_next(self, timeout: Optional[float] = None) -> Optional[FeedbackEvent]:
        """
        Wait until an event is available and return it (without dismissing)

        Returns None if the timeout elapses first.
        """
        if self._events:
            return self._events[0]
        try:
            await asyncio.wait_for(self._available.wait(), timeout)
        except asyncio.TimeoutError:
            return None
        return self.peek()

    def __len__(self) -> int:
        return len(self._events)

    def __bool__(self) -> bool:
        return bool(self._events)

"""Agent Activity Log — in-memory observability stream for the core.

Provides:
- ActivityEvent model for structured lifecycle/cascade records
- ActivityLog: bounded ring buffer (collections.deque) with newest-first
  queries and asyncio.Queue pub/sub for live consumers

Event Types:
- agent_woke, agent_sleeping
- generation_started, generation_completed, generation_failed, generation_cancelled
- cascade_evaluated

Nothing here is persisted; the oldest entries are dropped when the buffer
is full.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ActivityEventType(str, enum.Enum):
    """Types of activity events recorded by the core."""

    # Agent lifecycle
    AGENT_WOKE = "agent_woke"
    AGENT_SLEEPING = "agent_sleeping"

    # Provider calls
    GENERATION_STARTED = "generation_started"
    GENERATION_COMPLETED = "generation_completed"
    GENERATION_FAILED = "generation_failed"
    GENERATION_CANCELLED = "generation_cancelled"

    # Cascades
    CASCADE_EVALUATED = "cascade_evaluated"


class ActivityEvent(BaseModel):
    """A single activity event."""

    agent_id: str
    event_type: ActivityEventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    content: str | None = None  # Error text, reply preview
    metadata: dict[str, Any] = Field(default_factory=dict)


class ActivityLog:
    """Ring buffer of activity events with query and pub/sub support.

    Parameters
    ----------
    maxlen:
        Maximum number of events to retain (default 5,000).
    """

    def __init__(self, maxlen: int = 5_000) -> None:
        self._buffer: deque[ActivityEvent] = deque(maxlen=maxlen)
        self._subscribers: list[asyncio.Queue[ActivityEvent]] = []
        self._lock = asyncio.Lock()

    # ── Write path ───────────────────────────────────────────────────────

    def record(
        self,
        agent_id: str,
        event_type: ActivityEventType,
        *,
        content: str | None = None,
        **metadata: Any,
    ) -> ActivityEvent:
        """Append an event and push it to every live subscriber."""
        event = ActivityEvent(
            agent_id=agent_id,
            event_type=event_type,
            content=content,
            metadata=metadata,
        )
        self._buffer.append(event)
        self._broadcast(event)
        return event

    def _broadcast(self, event: ActivityEvent) -> None:
        dead: list[asyncio.Queue[ActivityEvent]] = []
        for queue in self._subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                dead.append(queue)
        # Drop subscribers that stopped draining
        for q in dead:
            self._subscribers.remove(q)
            logger.warning("Dropped slow activity subscriber")

    # ── Query path ───────────────────────────────────────────────────────

    def query(
        self,
        *,
        agent_id: str | None = None,
        event_type: ActivityEventType | None = None,
        limit: int = 100,
    ) -> list[ActivityEvent]:
        """Return matching events, newest first."""
        results: list[ActivityEvent] = []
        for event in reversed(self._buffer):
            if agent_id is not None and event.agent_id != agent_id:
                continue
            if event_type is not None and event.event_type != event_type:
                continue
            results.append(event)
            if len(results) >= limit:
                break
        return results

    # ── Subscription path ────────────────────────────────────────────────

    async def subscribe(self, maxsize: int = 1000) -> asyncio.Queue[ActivityEvent]:
        """Subscribe to live events. Returns an asyncio.Queue."""
        queue: asyncio.Queue[ActivityEvent] = asyncio.Queue(maxsize=maxsize)
        async with self._lock:
            self._subscribers.append(queue)
        return queue

    async def unsubscribe(self, queue: asyncio.Queue[ActivityEvent]) -> None:
        async with self._lock:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    @property
    def size(self) -> int:
        return len(self._buffer)

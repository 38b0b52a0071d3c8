"""Cascade Wake Engine — turns "an agent mentioned others" into wakes.

Only agent-authored messages can trigger a cascade. For each evaluation:

1. ``depth >= max_cascade_depth`` stops the recursion (nothing recorded).
2. Mentions are resolved against the roster, skipping the author (no
   self-wake), any agent that is not DORMANT and any agent another
   in-flight evaluation has already claimed.
3. A CascadeEvent is appended to the history for every evaluation that
   found mentions, including evaluations that wake nobody.
4. Eligible targets are woken concurrently, each after a stagger delay of
   ``stagger_delay * index``, seeded with the conversation plus the
   triggering message.

Depth is an explicit parameter, never derived from the call stack, so the
caller that runs the woken agents' turns passes ``depth + 1`` when it
evaluates their replies.

The engine never raises to its caller; a failed wake is logged and only
drops that agent from the returned list. The returned list holds only the
agents this evaluation moved from DORMANT to AWAKE.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Sequence

from dormant.activity import ActivityEventType
from dormant.mentions import MentionScanner
from dormant.models import (
    Agent,
    AgentSender,
    AgentState,
    CascadeEvent,
    CascadeStatistics,
    RoomMessage,
)

if TYPE_CHECKING:
    from dormant.activity import ActivityLog
    from dormant.agent_state import AgentStateManager

logger = logging.getLogger(__name__)

DEFAULT_MAX_CASCADE_DEPTH = 5
DEFAULT_STAGGER_DELAY = 0.1  # seconds


class CascadeWakeEngine:
    """Wakes agents mentioned by other agents, bounded by cascade depth."""

    def __init__(
        self,
        agent_manager: AgentStateManager,
        *,
        scanner: MentionScanner | None = None,
        max_cascade_depth: int = DEFAULT_MAX_CASCADE_DEPTH,
        stagger_delay: float = DEFAULT_STAGGER_DELAY,
        activity: ActivityLog | None = None,
    ):
        if max_cascade_depth < 1:
            raise ValueError(f"max_cascade_depth must be >= 1, got {max_cascade_depth}")
        if stagger_delay < 0:
            raise ValueError(f"stagger_delay must be >= 0, got {stagger_delay}")

        self.agent_manager = agent_manager
        self.scanner = scanner or MentionScanner()
        self.max_cascade_depth = max_cascade_depth
        self.stagger_delay = stagger_delay
        self.activity = activity

        self._history: list[CascadeEvent] = []
        # cascade id -> wake tasks still running for it
        self._active: dict[str, list[asyncio.Task]] = {}
        # agent ids picked by an evaluation whose wakes have not finished
        self._claimed: set[str] = set()
        self._subscribers: list[asyncio.Queue[CascadeEvent]] = []

    # ── Trigger processing ───────────────────────────────────────────────

    async def process_triggers(
        self,
        message: RoomMessage,
        conversation_context: Sequence[RoomMessage],
        depth: int = 0,
    ) -> list[Agent]:
        """Wake the agents mentioned in ``message``. Returns the agents woken."""
        try:
            return await self._process(message, conversation_context, depth)
        except Exception:
            logger.exception("Cascade evaluation failed for message %s", message.id)
            return []

    async def _process(
        self,
        message: RoomMessage,
        conversation_context: Sequence[RoomMessage],
        depth: int,
    ) -> list[Agent]:
        if depth >= self.max_cascade_depth:
            logger.warning(
                "Maximum cascade depth (%d) reached, stopping cascade", self.max_cascade_depth
            )
            return []

        sender = message.sender
        if not isinstance(sender, AgentSender):
            return []

        mentions = self.scanner.extract_mentions(message.content)
        if not mentions:
            return []

        logger.info("Cascade trigger detected: %s mentioned %s", sender.name, ", ".join(mentions))

        targets = self._find_agents_to_wake(mentions, sender.agent_id)
        event = CascadeEvent(
            triggering_message=message,
            triggering_agent_id=sender.agent_id,
            target_agent_ids=tuple(a.id for a in targets),
            mentions=tuple(mentions),
            cascade_depth=depth,
        )
        try:
            self._append(event)
            if not targets:
                logger.info("No eligible agents for mentions: %s", ", ".join(mentions))
                return []
            woken = await self._wake_targets(targets, [*conversation_context, message], event)
        finally:
            self._claimed.difference_update(a.id for a in targets)
        logger.info("Cascade completed: awakened %d agents (depth=%d)", len(woken), depth)
        return woken

    async def process_multiple_triggers(
        self,
        messages: Sequence[RoomMessage],
        conversation_context: Sequence[RoomMessage],
    ) -> list[Agent]:
        """Evaluate several messages concurrently at depth 0; first occurrence wins."""
        batches = await asyncio.gather(
            *(self.process_triggers(m, conversation_context) for m in messages)
        )
        seen: set[str] = set()
        unique: list[Agent] = []
        for batch in batches:
            for agent in batch:
                if agent.id not in seen:
                    seen.add(agent.id)
                    unique.append(agent)
        return unique

    def _find_agents_to_wake(self, mentions: Sequence[str], excluding_agent_id: str) -> list[Agent]:
        targets: list[Agent] = []
        for mention in mentions:
            agent = self.agent_manager.get_agent_by_name(mention)
            if agent is None:
                logger.warning("Mentioned agent '%s' not found", mention)
                continue
            if agent.id == excluding_agent_id:
                continue
            if agent.state is not AgentState.DORMANT:
                logger.info(
                    "Agent %s is already %s, skipping wake", agent.name, agent.state.display_name
                )
                continue
            if any(t.id == agent.id for t in targets):
                continue
            if agent.id in self._claimed:
                logger.info("Agent %s is already being woken by another cascade", agent.name)
                continue
            targets.append(agent)
        # An agent is claimed by at most one in-flight evaluation
        self._claimed.update(t.id for t in targets)
        return targets

    # ── Wake dispatch ────────────────────────────────────────────────────

    async def _wake_targets(
        self,
        targets: list[Agent],
        history: list[RoomMessage],
        event: CascadeEvent,
    ) -> list[Agent]:
        tasks = [
            asyncio.create_task(
                self._wake_one(agent.id, history, index * self.stagger_delay),
                name=f"cascade-wake-{agent.name}",
            )
            for index, agent in enumerate(targets)
        ]
        self._active[event.id] = tasks
        try:
            results = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            self._active.pop(event.id, None)

        woken: list[Agent] = []
        for agent, result in zip(targets, results):
            if isinstance(result, asyncio.CancelledError):
                logger.info("Cascade wake of %s cancelled", agent.name)
            elif isinstance(result, BaseException):
                logger.error("Cascade wake of %s failed: %s", agent.name, result)
            elif result:
                woken.append(self.agent_manager.get_agent(agent.id) or agent)
        return woken

    async def _wake_one(self, agent_id: str, history: list[RoomMessage], delay: float) -> bool:
        if delay > 0:
            await asyncio.sleep(delay)
        return await self.agent_manager.wake(agent_id, history, only_if_dormant=True)

    # ── Cascade management ───────────────────────────────────────────────

    @property
    def has_active_cascades(self) -> bool:
        return bool(self._active)

    @property
    def active_cascade_count(self) -> int:
        return len(self._active)

    def cancel_all_active_cascades(self) -> None:
        """Emergency stop: cancel every pending cascade wake."""
        for tasks in list(self._active.values()):
            for task in tasks:
                task.cancel()
        self._active.clear()
        logger.info("All active cascades cancelled")

    # ── History ──────────────────────────────────────────────────────────

    @property
    def history(self) -> tuple[CascadeEvent, ...]:
        return tuple(self._history)

    @property
    def last_event(self) -> CascadeEvent | None:
        return self._history[-1] if self._history else None

    def recent_history(self, limit: int = 10) -> list[CascadeEvent]:
        """Most recent cascade events, newest first."""
        if limit <= 0:
            return []
        return list(reversed(self._history[-limit:]))

    def clear_history(self) -> None:
        self._history.clear()

    def _append(self, event: CascadeEvent) -> None:
        self._history.append(event)
        if self.activity is not None:
            self.activity.record(
                event.triggering_agent_id,
                ActivityEventType.CASCADE_EVALUATED,
                cascade_id=event.id,
                mentions=list(event.mentions),
                target_agent_ids=list(event.target_agent_ids),
                depth=event.cascade_depth,
            )
        dead: list[asyncio.Queue[CascadeEvent]] = []
        for queue in self._subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                dead.append(queue)
        for q in dead:
            self._subscribers.remove(q)

    def subscribe(self, maxsize: int = 1000) -> asyncio.Queue[CascadeEvent]:
        """Live stream of cascade events as they are recorded."""
        queue: asyncio.Queue[CascadeEvent] = asyncio.Queue(maxsize=maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[CascadeEvent]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    # ── Statistics ───────────────────────────────────────────────────────

    @property
    def statistics(self) -> CascadeStatistics:
        history = self._history
        total = len(history)
        if total == 0:
            return CascadeStatistics(active_cascades=len(self._active))
        depths = [e.cascade_depth for e in history]
        return CascadeStatistics(
            total_cascades=total,
            successful_cascades=sum(1 for e in history if e.target_agent_ids),
            active_cascades=len(self._active),
            average_cascade_depth=sum(depths) / total,
            average_targets_per_cascade=sum(len(e.target_agent_ids) for e in history) / total,
            max_depth_reached=max(depths),
        )

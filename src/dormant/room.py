"""Conversation Room — drives agent turns from the messages posted to a room.

Responsible for:
- The ordered room transcript and live delivery to subscribers
- Human mention routing: wake each mentioned agent with the transcript
- Agent turns: generate, post the reply, evaluate cascades, sleep
- Running cascaded turns concurrently at ``depth + 1``
- Optional System notifications (agent_wake, agent_sleep, error)

A turn that fails leaves the agent AWAKE and posts a System error message;
a human mentioning the agent again retries it. Only one turn per agent runs
at a time.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from dormant.agent_state import AgentStateManager
from dormant.cascade import CascadeWakeEngine
from dormant.context_builder import ContextBuilder
from dormant.errors import GenerationCancelled
from dormant.models import (
    AgentSender,
    AgentState,
    HumanSender,
    RoomMessage,
    SystemMessageType,
    SystemSender,
    new_id,
)
from dormant.providers.credentials import EnvCredentialResolver

if TYPE_CHECKING:
    from dormant.activity import ActivityLog
    from dormant.config import DormantConfig
    from dormant.providers.credentials import CredentialResolver
    from dormant.providers.registry import ProviderRegistry
    from dormant.store import AgentStore

logger = logging.getLogger(__name__)


class ConversationRoom:
    """A chat room where dormant agents wake on mention and reply."""

    def __init__(
        self,
        agent_manager: AgentStateManager,
        cascade_engine: CascadeWakeEngine,
        *,
        room_id: str | None = None,
        name: str = "lobby",
        notify_transitions: bool = True,
        sleep_after_reply: bool = True,
    ):
        self.agent_manager = agent_manager
        self.cascade_engine = cascade_engine
        self.room_id = room_id or new_id()
        self.name = name
        self.notify_transitions = notify_transitions
        self.sleep_after_reply = sleep_after_reply

        self._messages: list[RoomMessage] = []
        self._subscribers: list[asyncio.Queue[RoomMessage]] = []
        # agent id -> running turn task
        self._turns: dict[str, asyncio.Task] = {}
        self._running = True

    # ── Transcript ───────────────────────────────────────────────────────

    @property
    def messages(self) -> list[RoomMessage]:
        return list(self._messages)

    @property
    def active_turn_count(self) -> int:
        return len(self._turns)

    def post_message(self, message: RoomMessage) -> None:
        """Append a message and deliver it to subscribers. No routing."""
        self._messages.append(message)
        dead: list[asyncio.Queue[RoomMessage]] = []
        for queue in self._subscribers:
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                dead.append(queue)
        for q in dead:
            self._subscribers.remove(q)
            logger.warning("Dropped slow room subscriber in %s", self.name)

    def subscribe(self, maxsize: int = 1000) -> asyncio.Queue[RoomMessage]:
        queue: asyncio.Queue[RoomMessage] = asyncio.Queue(maxsize=maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[RoomMessage]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    # ── Inbound ──────────────────────────────────────────────────────────

    async def post_human_message(
        self, content: str, *, user_id: str = "local", username: str = "You"
    ) -> RoomMessage:
        """Post a human message and start a turn for every agent it mentions."""
        message = RoomMessage(
            content=content,
            sender=HumanSender(user_id=user_id, username=username),
            room_id=self.room_id,
        )
        self.post_message(message)
        await self._route_human_mentions(message)
        return message

    async def _route_human_mentions(self, message: RoomMessage) -> None:
        if not self._running:
            logger.debug("Room %s is stopped — not routing mentions", self.name)
            return
        mentions = self.cascade_engine.scanner.extract_mentions(message.content)
        if not mentions:
            logger.debug("Message %s has no mentions — skipping", message.id)
            return

        seen: set[str] = set()
        for mention in mentions:
            agent = self.agent_manager.get_agent_by_name(mention)
            if agent is None:
                logger.info("Mentioned agent @%s not in room — ignoring", mention)
                continue
            if agent.id in seen:
                continue
            seen.add(agent.id)

            if agent.state is AgentState.THINKING or agent.id in self._turns:
                logger.info("Agent %s is busy — mention ignored", agent.name)
                continue

            # Awake agents (e.g. after a failed turn) are re-woken with a fresh context
            await self.agent_manager.wake(agent.id, self.messages)
            if self.agent_manager.is_awake(agent.id):
                self._notify(SystemMessageType.AGENT_WAKE, f"{agent.name} is now awake")
                self._start_turn(agent.id, depth=0)

    # ── Turns ────────────────────────────────────────────────────────────

    def _start_turn(self, agent_id: str, depth: int) -> None:
        if not self._running or agent_id in self._turns:
            return
        task = asyncio.create_task(self._run_turn(agent_id, depth), name=f"turn-{agent_id}")
        self._turns[agent_id] = task
        task.add_done_callback(lambda t: self._turn_done(agent_id, t))

    def _turn_done(self, agent_id: str, task: asyncio.Task) -> None:
        if self._turns.get(agent_id) is task:
            del self._turns[agent_id]

    async def _run_turn(self, agent_id: str, depth: int) -> None:
        """Generate a reply, post it, cascade it, then sleep the agent."""
        try:
            reply = await self.agent_manager.generate_response(agent_id)
        except GenerationCancelled:
            logger.info("Turn for agent %s cancelled", agent_id)
            return
        except Exception as e:
            agent = self.agent_manager.get_agent(agent_id)
            label = agent.name if agent else agent_id
            logger.warning("Turn for %s failed: %s", label, e)
            self._notify(SystemMessageType.ERROR, f"{label} failed to respond: {e}", force=True)
            return

        agent = self.agent_manager.get_agent(agent_id)
        if agent is None:
            logger.info("Agent %s was removed during its turn", agent_id)
            return

        woken = []
        if reply.strip():
            context = self.messages
            message = RoomMessage(
                content=reply,
                sender=AgentSender.for_agent(agent),
                room_id=self.room_id,
            )
            self.post_message(message)
            woken = await self.cascade_engine.process_triggers(message, context, depth)
        else:
            logger.warning("Agent %s returned an empty reply", agent.name)

        if self.sleep_after_reply:
            await self.agent_manager.sleep(agent_id)
            self._notify(SystemMessageType.AGENT_SLEEP, f"{agent.name} returned to dormant state")

        for target in woken:
            self._notify(
                SystemMessageType.AGENT_WAKE, f"{target.name} was awakened by {agent.name}"
            )
            self._start_turn(target.id, depth + 1)

    async def wait_until_idle(self) -> None:
        """Wait for every running turn, including turns started by cascades."""
        while self._turns:
            await asyncio.gather(*list(self._turns.values()), return_exceptions=True)

    # ── Shutdown ─────────────────────────────────────────────────────────

    async def stop(self) -> None:
        """Cancel running turns and pending cascades, then sleep every agent."""
        self._running = False
        self.cascade_engine.cancel_all_active_cascades()

        tasks = list(self._turns.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._turns.clear()

        await self.agent_manager.sleep_all()
        logger.info("Room %s stopped", self.name)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _notify(self, kind: SystemMessageType, content: str, *, force: bool = False) -> None:
        if not (self.notify_transitions or force):
            return
        self.post_message(
            RoomMessage(content=content, sender=SystemSender(kind=kind), room_id=self.room_id)
        )


def create_room(
    config: DormantConfig,
    providers: ProviderRegistry,
    credentials: CredentialResolver | None = None,
    *,
    store: AgentStore | None = None,
    activity: ActivityLog | None = None,
) -> ConversationRoom:
    """Wire a room, its state manager and cascade engine from configuration."""
    builder = ContextBuilder(
        providers,
        default_context_window=config.context.default_context_window,
        recent_message_window=config.context.recent_message_window,
    )
    manager = AgentStateManager(
        providers,
        credentials or EnvCredentialResolver(config.providers),
        context_builder=builder,
        store=store,
        activity=activity,
    )
    engine = CascadeWakeEngine(
        manager,
        max_cascade_depth=config.cascade.max_depth,
        stagger_delay=config.cascade.stagger_delay,
        activity=activity,
    )
    return ConversationRoom(
        manager,
        engine,
        name=config.room.name,
        notify_transitions=config.room.notify_transitions,
        sleep_after_reply=config.room.sleep_after_reply,
    )

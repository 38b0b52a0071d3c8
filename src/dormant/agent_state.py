"""Agent State Manager — owns the agent roster and every lifecycle transition.

Responsible for:
- The authoritative agent set (add/update/remove, lookups)
- DORMANT/AWAKE/THINKING transitions (wake, sleep, generate)
- Per-agent contexts built by the ContextBuilder on wake
- One cancellable in-flight generation per agent

Concurrency: every transition on one agent runs under that agent's
``asyncio.Lock``; different agents proceed independently. A generation
holds the lock only while entering THINKING, so ``sleep`` can always
cancel it. Sleep waits for the cancelled stream to finish tearing down
before marking the agent DORMANT, so no chunk is delivered afterwards.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Sequence

from dormant.activity import ActivityEventType
from dormant.context_builder import ContextBuilder
from dormant.errors import ConfigurationError, CredentialError, GenerationCancelled
from dormant.mentions import MentionScanner, is_mentionable
from dormant.models import Agent, AgentState, Context, RoomMessage
from dormant.store import InMemoryAgentStore

if TYPE_CHECKING:
    from dormant.activity import ActivityLog
    from dormant.providers.credentials import CredentialResolver
    from dormant.providers.registry import ProviderRegistry
    from dormant.store import AgentStore

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], "Awaitable[Any] | Any"]


@dataclass
class _Operation:
    """An in-flight generation. ``cancel_requested`` marks a deliberate stop."""

    task: asyncio.Task | None = None
    cancel_requested: bool = False
    chunks: list[str] = field(default_factory=list)


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class AgentStateManager:
    """Manages the lifecycle state of all agents."""

    def __init__(
        self,
        providers: ProviderRegistry,
        credentials: CredentialResolver,
        *,
        context_builder: ContextBuilder | None = None,
        store: AgentStore | None = None,
        activity: ActivityLog | None = None,
    ):
        self.providers = providers
        self.credentials = credentials
        self.context_builder = context_builder or ContextBuilder(providers)
        self.store = store if store is not None else InMemoryAgentStore()
        self.activity = activity
        self.scanner = MentionScanner()

        # Insertion-ordered roster, keyed by agent id
        self._agents: dict[str, Agent] = {}
        self._contexts: dict[str, Context] = {}
        self._operations: dict[str, _Operation] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def initialize(self) -> None:
        """Load the roster from the store. Every loaded agent starts DORMANT."""
        for agent in await self.store.load_agents():
            agent.state = AgentState.DORMANT
            self._agents[agent.id] = agent
        logger.info("Agent state manager loaded %d agents", len(self._agents))

    # ── Roster ───────────────────────────────────────────────────────────

    @property
    def agents(self) -> list[Agent]:
        """Snapshot of every agent with its live state (for UI display)."""
        return [a.model_copy() for a in self._agents.values()]

    async def add_agent(self, agent: Agent) -> Agent:
        """Register a new agent. Names must be unique (case-insensitive) and mentionable."""
        if agent.id in self._agents:
            raise ConfigurationError(f"Agent id already registered: {agent.id}")
        self._check_name(agent)

        record = agent.model_copy()
        record.state = AgentState.DORMANT
        self._agents[record.id] = record
        await self._persist(record)
        logger.info("Added agent %s (%s/%s)", record.name, record.provider, record.model)
        return record.model_copy()

    async def update_agent(self, agent: Agent) -> None:
        """Replace an agent's configuration. Lifecycle fields stay with the manager."""
        current = self._agents.get(agent.id)
        if current is None:
            raise ConfigurationError(f"Unknown agent: {agent.id}")
        self._check_name(agent)

        async with self._lock(agent.id):
            updated = agent.model_copy()
            updated.state = current.state
            updated.last_wake_time = current.last_wake_time
            self._agents[agent.id] = updated
            await self._persist(updated)

    async def remove_agent(self, agent_id: str) -> None:
        """Remove an agent, cancelling any in-flight generation first."""
        if agent_id not in self._agents:
            logger.warning("Attempted to remove unknown agent %s", agent_id)
            return
        async with self._lock(agent_id):
            await self._cancel_operation(agent_id)
            self._contexts.pop(agent_id, None)
            agent = self._agents.pop(agent_id)
            try:
                await self.store.delete_agent(agent_id)
            except Exception:
                logger.exception("Failed to delete agent %s from store", agent_id)
        self._locks.pop(agent_id, None)
        logger.info("Removed agent %s", agent.name)

    def _check_name(self, agent: Agent) -> None:
        if not is_mentionable(agent.name):
            raise ConfigurationError(
                f"Agent name {agent.name!r} cannot be mentioned; use letters, digits, '_' or '-'"
            )
        wanted = agent.name.lower()
        for other in self._agents.values():
            if other.id != agent.id and other.name.lower() == wanted:
                raise ConfigurationError(f"Agent name already in use: {agent.name}")

    # ── State transitions ────────────────────────────────────────────────

    async def wake(
        self,
        agent_id: str,
        history: Sequence[RoomMessage] | None = None,
        *,
        only_if_dormant: bool = False,
    ) -> bool:
        """Wake an agent, building its context from ``history`` when given.

        Without ``history`` only the state and wake time change; this is the
        human-triggered first wake used before any context is available.
        With ``only_if_dormant`` an agent that is already AWAKE is left alone.
        Unknown ids are a logged no-op.

        Returns True if this call woke the agent.
        """
        agent = self._agents.get(agent_id)
        if agent is None:
            logger.warning("Attempted to wake unknown agent %s", agent_id)
            return False

        async with self._lock(agent_id):
            if agent.state is AgentState.THINKING:
                logger.warning("Agent %s is thinking — wake ignored", agent.name)
                return False
            if only_if_dormant and agent.state is not AgentState.DORMANT:
                logger.info("Agent %s is already awake, skipping wake", agent.name)
                return False
            agent.state = AgentState.AWAKE
            agent.last_wake_time = datetime.now(timezone.utc)
            if history is not None:
                self._contexts[agent_id] = self.context_builder.build(agent, history)
            await self._persist(agent)

        if history is None:
            logger.info("Agent %s awakened", agent.name)
        else:
            logger.info("Agent %s awakened with %d messages in context", agent.name, len(history))
        self._record(agent_id, ActivityEventType.AGENT_WOKE, with_context=history is not None)
        return True

    async def sleep(self, agent_id: str) -> None:
        """Return an agent to DORMANT, cancelling in-flight work. Idempotent."""
        agent = self._agents.get(agent_id)
        if agent is None:
            logger.warning("Attempted to sleep unknown agent %s", agent_id)
            return

        async with self._lock(agent_id):
            await self._cancel_operation(agent_id)
            previous = agent.state
            self._contexts.pop(agent_id, None)
            agent.state = AgentState.DORMANT
            await self._persist(agent)

        if previous is not AgentState.DORMANT:
            logger.info("Agent %s returned to dormant state", agent.name)
            self._record(agent_id, ActivityEventType.AGENT_SLEEPING)

    async def generate_response(
        self,
        agent_id: str,
        on_chunk: ChunkCallback | None = None,
        on_complete: ChunkCallback | None = None,
    ) -> str:
        """Stream a reply from an awake agent and return the full text.

        The agent is THINKING for the duration of the call and AWAKE again
        afterwards, whether the call succeeded or failed.

        Raises:
            ConfigurationError: unknown agent, dormant/busy agent, or no context.
            CredentialError: no credential for the agent's provider.
            ProviderError: passed through from the provider.
            GenerationCancelled: ``sleep``/``cancel_generation`` interrupted the stream.
        """
        agent = self._agents.get(agent_id)
        if agent is None:
            raise ConfigurationError(f"Unknown agent: {agent_id}")

        async with self._lock(agent_id):
            if agent.state is AgentState.DORMANT:
                raise ConfigurationError(f"Agent {agent.name} is dormant")
            if agent.state is AgentState.THINKING:
                raise ConfigurationError(f"Agent {agent.name} is already generating")
            context = self._contexts.get(agent_id)
            if context is None:
                raise ConfigurationError(f"Agent {agent.name} has no context")

            agent.state = AgentState.THINKING
            op = _Operation()
            op.task = asyncio.create_task(
                self._stream(agent.model_copy(), context, op, on_chunk),
                name=f"generate-{agent_id}",
            )
            self._operations[agent_id] = op

        self._record(agent_id, ActivityEventType.GENERATION_STARTED)
        try:
            content = await op.task
        except asyncio.CancelledError:
            if op.cancel_requested:
                logger.info("Generation for %s cancelled", agent.name)
                self._record(agent_id, ActivityEventType.GENERATION_CANCELLED)
                raise GenerationCancelled(agent_id) from None
            raise
        except Exception as e:
            logger.warning("Generation for %s failed: %s", agent.name, e)
            self._record(
                agent_id,
                ActivityEventType.GENERATION_FAILED,
                content=str(e),
                error_type=type(e).__name__,
            )
            raise
        finally:
            if self._operations.get(agent_id) is op:
                del self._operations[agent_id]
            # A sleep that already ran leaves the agent DORMANT
            if agent.state is AgentState.THINKING:
                agent.state = AgentState.AWAKE

        self._record(
            agent_id,
            ActivityEventType.GENERATION_COMPLETED,
            content=content[:200],
            length=len(content),
        )
        if on_complete is not None:
            await _maybe_await(on_complete(content))
        return content

    async def _stream(
        self,
        agent: Agent,
        context: Context,
        op: _Operation,
        on_chunk: ChunkCallback | None,
    ) -> str:
        provider = self.providers.get(agent.provider)

        credential = ""
        if getattr(provider, "requires_credential", True):
            credential = self.credentials.resolve(agent.provider) or ""
            if not credential:
                raise CredentialError(agent.provider)

        stream = provider.generate_response(context, agent, credential)
        if inspect.isawaitable(stream):
            stream = await stream

        try:
            async for chunk in stream:
                if op.cancel_requested:
                    break
                op.chunks.append(chunk)
                if on_chunk is not None:
                    await _maybe_await(on_chunk(chunk))
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if op.cancel_requested:
            raise asyncio.CancelledError()
        return "".join(op.chunks)

    async def cancel_generation(self, agent_id: str) -> bool:
        """Stop an in-flight generation without sleeping; the agent ends AWAKE."""
        async with self._lock(agent_id):
            return await self._cancel_operation(agent_id)

    async def _cancel_operation(self, agent_id: str) -> bool:
        op = self._operations.get(agent_id)
        if op is None or op.task is None:
            return False
        op.cancel_requested = True
        op.task.cancel()
        if op.task is asyncio.current_task():
            # Called from inside the stream (e.g. an on_chunk callback)
            return True
        # Wait for teardown without propagating the task's outcome here
        await asyncio.wait({op.task})
        if self._operations.get(agent_id) is op:
            del self._operations[agent_id]
        agent = self._agents.get(agent_id)
        if agent is not None and agent.state is AgentState.THINKING:
            agent.state = AgentState.AWAKE
        return True

    async def update_context(self, agent_id: str, new_messages: Sequence[RoomMessage]) -> None:
        """Rebuild an awake agent's context with messages that arrived since waking."""
        agent = self._agents.get(agent_id)
        if agent is None or not agent.state.is_active:
            return
        async with self._lock(agent_id):
            existing = self._contexts.get(agent_id)
            history = list(existing.conversation_history) if existing else []
            self._contexts[agent_id] = self.context_builder.build(
                agent, history + list(new_messages)
            )

    # ── Batch operations ─────────────────────────────────────────────────

    async def wake_many(self, agent_ids: Sequence[str], history: Sequence[RoomMessage]) -> None:
        """Wake several agents concurrently and wait for all of them."""
        results = await asyncio.gather(
            *(self.wake(agent_id, history) for agent_id in agent_ids),
            return_exceptions=True,
        )
        for agent_id, result in zip(agent_ids, results):
            if isinstance(result, BaseException):
                logger.error("Failed to wake agent %s: %s", agent_id, result)

    async def sleep_many(self, agent_ids: Sequence[str]) -> None:
        """Sleep agents one at a time, in the given order."""
        for agent_id in agent_ids:
            await self.sleep(agent_id)

    async def sleep_all(self) -> None:
        """Emergency stop: cancel every generation, then sleep every active agent."""
        await self.cancel_all_operations()
        await self.sleep_many([a.id for a in self._agents.values() if a.state.is_active])

    async def cancel_all_operations(self) -> None:
        await asyncio.gather(*(self._cancel_operation(aid) for aid in list(self._operations)))

    # ── Queries ──────────────────────────────────────────────────────────

    def get_agent(self, agent_id: str) -> Agent | None:
        agent = self._agents.get(agent_id)
        return agent.model_copy() if agent else None

    def get_agent_by_name(self, name: str) -> Agent | None:
        agent = self.scanner.resolve(name, self._agents.values())
        return agent.model_copy() if agent else None

    def is_awake(self, agent_id: str) -> bool:
        agent = self._agents.get(agent_id)
        return agent is not None and agent.state.is_active

    def awake_agents(self) -> list[Agent]:
        return [a.model_copy() for a in self._agents.values() if a.state.is_active]

    def dormant_agents(self) -> list[Agent]:
        return [a.model_copy() for a in self._agents.values() if a.state is AgentState.DORMANT]

    def get_context(self, agent_id: str) -> Context | None:
        return self._contexts.get(agent_id)

    def has_context(self, agent_id: str) -> bool:
        return agent_id in self._contexts

    @property
    def active_operation_count(self) -> int:
        return len(self._operations)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _lock(self, agent_id: str) -> asyncio.Lock:
        lock = self._locks.get(agent_id)
        if lock is None:
            lock = self._locks[agent_id] = asyncio.Lock()
        return lock

    async def _persist(self, agent: Agent) -> None:
        try:
            await self.store.save_agent(agent)
        except Exception:
            logger.exception("Failed to save agent %s to store", agent.id)

    def _record(self, agent_id: str, event_type: ActivityEventType, **kwargs: Any) -> None:
        if self.activity is not None:
            self.activity.record(agent_id, event_type, **kwargs)

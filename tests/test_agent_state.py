"""Tests for the agent state manager.

Validates:
- roster management (unique, mentionable names)
- DORMANT/AWAKE/THINKING transitions for wake, sleep and generate
- failures leave the agent AWAKE and propagate typed errors
- sleep cancels in-flight generation and waits for teardown
- batch operations and persistence through the injected store
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import ScriptedProvider, human_message, make_agent
from dormant.activity import ActivityEventType
from dormant.agent_state import AgentStateManager
from dormant.errors import (
    ConfigurationError,
    CredentialError,
    GenerationCancelled,
    ProviderError,
    ProviderErrorKind,
)
from dormant.models import AgentState
from dormant.providers import ProviderRegistry, StaticCredentialResolver
from dormant.store import InMemoryAgentStore


async def _wait_for(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


# ── Roster ───────────────────────────────────────────────────────────────────


class TestRoster:
    async def test_add_agent_starts_dormant(self, manager):
        agent = await manager.add_agent(make_agent("Claude", state=AgentState.AWAKE))
        assert agent.state is AgentState.DORMANT
        assert manager.get_agent(agent.id).name == "Claude"

    async def test_duplicate_name_rejected_case_insensitively(self, manager):
        await manager.add_agent(make_agent("Claude"))
        with pytest.raises(ConfigurationError, match="already in use"):
            await manager.add_agent(make_agent("CLAUDE").model_copy(update={"id": "other"}))

    async def test_duplicate_id_rejected(self, manager):
        await manager.add_agent(make_agent("Claude"))
        with pytest.raises(ConfigurationError, match="already registered"):
            await manager.add_agent(make_agent("Claude"))

    async def test_unmentionable_name_rejected(self, manager):
        with pytest.raises(ConfigurationError, match="cannot be mentioned"):
            await manager.add_agent(make_agent("two words"))

    async def test_lookup_by_name_is_case_insensitive(self, manager, roster):
        assert manager.get_agent_by_name("claude").id == roster["Claude"].id
        assert manager.get_agent_by_name("Ghost") is None

    async def test_returned_agents_are_copies(self, manager, roster):
        snapshot = manager.get_agent(roster["A"].id)
        snapshot.state = AgentState.THINKING
        assert manager.get_agent(roster["A"].id).state is AgentState.DORMANT

    async def test_update_agent_keeps_lifecycle_fields(self, manager, roster):
        await manager.wake(roster["A"].id)
        updated = roster["A"].model_copy(update={"personality": "Terse.", "state": AgentState.DORMANT})
        await manager.update_agent(updated)

        agent = manager.get_agent(roster["A"].id)
        assert agent.personality == "Terse."
        assert agent.state is AgentState.AWAKE
        assert agent.last_wake_time is not None

    async def test_update_unknown_agent(self, manager):
        with pytest.raises(ConfigurationError):
            await manager.update_agent(make_agent("Nobody"))

    async def test_remove_agent(self, manager, roster):
        await manager.wake(roster["A"].id, [human_message("hi")])
        await manager.remove_agent(roster["A"].id)
        assert manager.get_agent(roster["A"].id) is None
        assert not manager.has_context(roster["A"].id)

    async def test_remove_unknown_agent_is_noop(self, manager):
        await manager.remove_agent("missing")


# ── Wake / Sleep ─────────────────────────────────────────────────────────────


class TestWakeSleep:
    async def test_simple_wake_and_sleep(self, manager, roster):
        claude = manager.get_agent_by_name("Claude")
        await manager.wake(claude.id, [human_message("hi @Claude")])

        assert manager.is_awake(claude.id)
        assert manager.get_agent(claude.id).last_wake_time is not None
        context = manager.get_context(claude.id)
        assert [m.content for m in context.conversation_history] == ["hi @Claude"]

        await manager.sleep(claude.id)
        assert manager.get_agent(claude.id).state is AgentState.DORMANT
        assert not manager.has_context(claude.id)

    async def test_wake_without_history_has_no_context(self, manager, roster):
        await manager.wake(roster["Claude"].id)
        assert manager.is_awake(roster["Claude"].id)
        assert not manager.has_context(roster["Claude"].id)

    async def test_wake_only_if_dormant(self, manager, roster, activity):
        agent_id = roster["B"].id
        assert await manager.wake(agent_id, [human_message("hi")], only_if_dormant=True)
        assert not await manager.wake(agent_id, [], only_if_dormant=True)

        assert len(manager.get_context(agent_id).conversation_history) == 1
        wakes = activity.query(agent_id=agent_id, event_type=ActivityEventType.AGENT_WOKE)
        assert len(wakes) == 1

    async def test_wake_unknown_agent_is_noop(self, manager, roster):
        assert not await manager.wake("missing", [])
        assert manager.awake_agents() == []

    async def test_sleep_is_idempotent(self, manager, roster, activity):
        agent_id = roster["A"].id
        await manager.wake(agent_id, [human_message("hi")])
        await manager.sleep(agent_id)
        await manager.sleep(agent_id)

        assert manager.get_agent(agent_id).state is AgentState.DORMANT
        assert not manager.has_context(agent_id)
        assert manager.active_operation_count == 0
        sleeps = activity.query(agent_id=agent_id, event_type=ActivityEventType.AGENT_SLEEPING)
        assert len(sleeps) == 1

    async def test_awake_and_dormant_queries(self, manager, roster):
        await manager.wake(roster["B"].id)
        assert [a.name for a in manager.awake_agents()] == ["B"]
        assert [a.name for a in manager.dormant_agents()] == ["Claude", "A", "C"]

    async def test_update_context_adds_new_messages(self, manager, roster):
        agent_id = roster["A"].id
        await manager.wake(agent_id, [human_message("first", 0)])
        await manager.update_context(agent_id, [human_message("second", 1)])
        history = manager.get_context(agent_id).conversation_history
        assert [m.content for m in history] == ["first", "second"]

    async def test_update_context_ignored_for_dormant_agent(self, manager, roster):
        await manager.update_context(roster["A"].id, [human_message("x")])
        assert not manager.has_context(roster["A"].id)


# ── Generate ─────────────────────────────────────────────────────────────────


class TestGenerate:
    async def test_streams_and_returns_full_text(self, manager, roster, provider, activity):
        provider.replies["A"] = "hello there friend"
        agent_id = roster["A"].id
        await manager.wake(agent_id, [human_message("hi @A")])

        chunks: list[str] = []
        completed: list[str] = []
        content = await manager.generate_response(
            agent_id, on_chunk=chunks.append, on_complete=completed.append
        )

        assert content == "hello there friend"
        assert "".join(chunks) == content
        assert completed == [content]
        assert manager.get_agent(agent_id).state is AgentState.AWAKE
        assert provider.calls[0][2] == "sk-test"
        assert activity.query(agent_id=agent_id, event_type=ActivityEventType.GENERATION_COMPLETED)

    async def test_async_chunk_callback(self, manager, roster):
        agent_id = roster["A"].id
        await manager.wake(agent_id, [human_message("hi")])
        seen = AsyncMock()
        await manager.generate_response(agent_id, on_chunk=seen)
        seen.assert_awaited_with("ok")

    async def test_thinking_while_streaming(self, manager, roster, provider):
        provider.gate = asyncio.Event()
        agent_id = roster["A"].id
        await manager.wake(agent_id, [human_message("hi")])

        task = asyncio.create_task(manager.generate_response(agent_id))
        await _wait_for(lambda: manager.active_operation_count == 1)
        assert manager.get_agent(agent_id).state is AgentState.THINKING
        assert manager.is_awake(agent_id)

        with pytest.raises(ConfigurationError, match="already generating"):
            await manager.generate_response(agent_id)

        provider.gate.set()
        await task
        assert manager.get_agent(agent_id).state is AgentState.AWAKE

    async def test_dormant_agent_cannot_generate(self, manager, roster):
        with pytest.raises(ConfigurationError, match="dormant"):
            await manager.generate_response(roster["A"].id)

    async def test_missing_context(self, manager, roster):
        await manager.wake(roster["A"].id)
        with pytest.raises(ConfigurationError, match="no context"):
            await manager.generate_response(roster["A"].id)

    async def test_unknown_agent(self, manager):
        with pytest.raises(ConfigurationError, match="Unknown agent"):
            await manager.generate_response("missing")

    async def test_missing_credential_leaves_agent_awake(self, providers):
        manager = AgentStateManager(providers, StaticCredentialResolver())
        agent = await manager.add_agent(make_agent("Solo"))
        await manager.wake(agent.id, [human_message("hi")])

        with pytest.raises(CredentialError) as exc_info:
            await manager.generate_response(agent.id)
        assert exc_info.value.kind is ProviderErrorKind.INVALID_API_KEY
        assert manager.get_agent(agent.id).state is AgentState.AWAKE

    async def test_credential_free_provider(self):
        local = ScriptedProvider("ollama")
        registry = ProviderRegistry()
        registry.add("ollama", local)
        manager = AgentStateManager(registry, StaticCredentialResolver())
        agent = await manager.add_agent(make_agent("Llama", provider="ollama", model="llama3"))
        await manager.wake(agent.id, [human_message("hi")])

        assert await manager.generate_response(agent.id) == "ok"
        assert local.calls[0][2] == ""

    async def test_provider_error_passes_through(self, manager, roster, provider, activity):
        error = ProviderError(ProviderErrorKind.RATE_LIMITED, "slow down", provider="openai")
        provider.replies["A"] = error
        agent_id = roster["A"].id
        await manager.wake(agent_id, [human_message("hi")])

        with pytest.raises(ProviderError) as exc_info:
            await manager.generate_response(agent_id)
        assert exc_info.value is error
        assert manager.get_agent(agent_id).state is AgentState.AWAKE
        assert manager.active_operation_count == 0
        failed = activity.query(agent_id=agent_id, event_type=ActivityEventType.GENERATION_FAILED)
        assert failed[0].metadata["error_type"] == "ProviderError"

    async def test_unsupported_provider(self, manager):
        agent = await manager.add_agent(make_agent("Odd", provider="nobody"))
        await manager.wake(agent.id, [human_message("hi")])
        with pytest.raises(ConfigurationError, match="Unsupported provider"):
            await manager.generate_response(agent.id)
        assert manager.get_agent(agent.id).state is AgentState.AWAKE


# ── Cancellation ─────────────────────────────────────────────────────────────


class TestCancellation:
    async def _start_blocked_generation(self, manager, provider, agent_id):
        provider.gate = asyncio.Event()
        provider.replies["A"] = "first second third"
        await manager.wake(agent_id, [human_message("hi")])
        chunks: list[str] = []
        task = asyncio.create_task(manager.generate_response(agent_id, on_chunk=chunks.append))
        await _wait_for(lambda: bool(chunks))
        return task, chunks

    async def test_sleep_cancels_generation(self, manager, roster, provider, activity):
        agent_id = roster["A"].id
        task, chunks = await self._start_blocked_generation(manager, provider, agent_id)

        await manager.sleep(agent_id)
        # Teardown finished before sleep returned
        assert provider.closed_streams == 1
        provider.gate.set()

        with pytest.raises(GenerationCancelled):
            await task
        assert chunks == ["first "]
        assert manager.get_agent(agent_id).state is AgentState.DORMANT
        assert not manager.has_context(agent_id)
        assert manager.active_operation_count == 0
        assert activity.query(agent_id=agent_id, event_type=ActivityEventType.GENERATION_CANCELLED)

    async def test_cancellation_is_not_a_provider_error(self, manager, roster, provider):
        agent_id = roster["A"].id
        task, _ = await self._start_blocked_generation(manager, provider, agent_id)
        await manager.sleep(agent_id)

        error = await asyncio.gather(task, return_exceptions=True)
        assert isinstance(error[0], GenerationCancelled)
        assert not isinstance(error[0], ProviderError)

    async def test_cancel_generation_leaves_agent_awake(self, manager, roster, provider):
        agent_id = roster["A"].id
        task, _ = await self._start_blocked_generation(manager, provider, agent_id)

        assert await manager.cancel_generation(agent_id)
        with pytest.raises(GenerationCancelled):
            await task
        assert manager.get_agent(agent_id).state is AgentState.AWAKE
        assert manager.has_context(agent_id)

    async def test_cancel_generation_without_operation(self, manager, roster):
        assert not await manager.cancel_generation(roster["A"].id)

    async def test_remove_agent_cancels_generation(self, manager, roster, provider):
        agent_id = roster["A"].id
        task, _ = await self._start_blocked_generation(manager, provider, agent_id)

        await manager.remove_agent(agent_id)
        with pytest.raises(GenerationCancelled):
            await task
        assert manager.active_operation_count == 0

    async def test_sleep_from_chunk_callback(self, manager, roster, provider):
        agent_id = roster["A"].id
        provider.replies["A"] = "one two three"
        await manager.wake(agent_id, [human_message("hi")])
        chunks: list[str] = []

        async def on_chunk(chunk: str) -> None:
            chunks.append(chunk)
            await manager.cancel_generation(agent_id)

        with pytest.raises(GenerationCancelled):
            await manager.generate_response(agent_id, on_chunk=on_chunk)
        assert chunks == ["one "]
        assert manager.get_agent(agent_id).state is AgentState.AWAKE


# ── Batch operations ─────────────────────────────────────────────────────────


class TestBatch:
    async def test_wake_many(self, manager, roster):
        ids = [roster["A"].id, roster["B"].id, "missing"]
        await manager.wake_many(ids, [human_message("hi")])
        assert sorted(a.name for a in manager.awake_agents()) == ["A", "B"]
        assert manager.has_context(roster["A"].id)
        assert manager.has_context(roster["B"].id)

    async def test_sleep_many_in_given_order(self, manager, roster, activity):
        ids = [roster["C"].id, roster["A"].id, roster["B"].id]
        await manager.wake_many(ids, [])
        await manager.sleep_many(ids)

        events = activity.query(event_type=ActivityEventType.AGENT_SLEEPING)
        assert [e.agent_id for e in reversed(events)] == ids
        assert manager.awake_agents() == []

    async def test_sleep_all_stops_generations(self, manager, roster, provider):
        provider.gate = asyncio.Event()
        history = [human_message("hi")]
        tasks = []
        for name in ("A", "B", "C"):
            await manager.wake(roster[name].id, history)
            tasks.append(asyncio.create_task(manager.generate_response(roster[name].id)))
        await _wait_for(lambda: manager.active_operation_count == 3)

        await asyncio.wait_for(manager.sleep_all(), timeout=5)

        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(r, GenerationCancelled) for r in results)
        assert manager.awake_agents() == []
        assert manager.active_operation_count == 0


# ── Persistence ──────────────────────────────────────────────────────────────


class TestPersistence:
    async def test_transitions_are_persisted(self, providers, credentials):
        store = InMemoryAgentStore()
        manager = AgentStateManager(providers, credentials, store=store)
        agent = await manager.add_agent(make_agent("A"))

        await manager.wake(agent.id, [human_message("hi")])
        (saved,) = await store.load_agents()
        assert saved.state is AgentState.AWAKE

        await manager.sleep(agent.id)
        (saved,) = await store.load_agents()
        assert saved.state is AgentState.DORMANT

        await manager.remove_agent(agent.id)
        assert await store.load_agents() == []

    async def test_initialize_resets_loaded_agents_to_dormant(self, providers, credentials):
        store = InMemoryAgentStore([make_agent("A", state=AgentState.THINKING)])
        manager = AgentStateManager(providers, credentials, store=store)
        await manager.initialize()
        assert manager.get_agent_by_name("A").state is AgentState.DORMANT

    async def test_store_failure_does_not_block_wake(self, providers, credentials):
        store = MagicMock()
        store.load_agents = AsyncMock(return_value=[])
        store.save_agent = AsyncMock(side_effect=OSError("disk full"))
        store.delete_agent = AsyncMock()
        manager = AgentStateManager(providers, credentials, store=store)
        agent = await manager.add_agent(make_agent("A"))

        await manager.wake(agent.id, [human_message("hi")])
        assert manager.is_awake(agent.id)

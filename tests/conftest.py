"""Shared fixtures: a scripted streaming provider and a wired-up core."""

from __future__ import annotations

import asyncio
import re
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from dormant.activity import ActivityLog
from dormant.agent_state import AgentStateManager
from dormant.cascade import CascadeWakeEngine
from dormant.models import Agent, AgentSender, HumanSender, RoomMessage
from dormant.providers import CatalogProvider, ProviderRegistry, StaticCredentialResolver
from dormant.room import ConversationRoom

ROOM_ID = "room-1"
BASE_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class ScriptedProvider(CatalogProvider):
    """Streams canned replies word by word.

    ``replies`` maps agent name → reply text, a list of replies consumed in
    order, or an exception to raise when the stream starts. ``gate`` (when
    set) blocks every stream after its first chunk until the event is set.
    """

    def __init__(self, provider_id: str = "openai"):
        self.provider_id = provider_id
        self.replies: dict[str, object] = {}
        self.default_reply = "ok"
        self.calls: list[tuple[str, object, str]] = []
        self.gate: asyncio.Event | None = None
        self.closed_streams = 0

    async def generate_response(self, context, agent, credential):
        self.calls.append((agent.name, context, credential))
        script = self.replies.get(agent.name, self.default_reply)
        if isinstance(script, list):
            script = script.pop(0) if script else self.default_reply
        if isinstance(script, BaseException):
            raise script
        try:
            for index, chunk in enumerate(re.findall(r"\S+\s*", str(script))):
                yield chunk
                if index == 0 and self.gate is not None:
                    await self.gate.wait()
                await asyncio.sleep(0)
        finally:
            self.closed_streams += 1


def make_agent(name: str, provider: str = "openai", **kwargs) -> Agent:
    kwargs.setdefault("model", "gpt-4o")
    return Agent(id=f"id-{name.lower()}", name=name, provider=provider, **kwargs)


def human_message(content: str, minutes: int = 0, **kwargs) -> RoomMessage:
    return RoomMessage(
        content=content,
        sender=HumanSender(user_id="u1", username="alice"),
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        room_id=ROOM_ID,
        **kwargs,
    )


def agent_message(agent: Agent, content: str, minutes: int = 0) -> RoomMessage:
    return RoomMessage(
        content=content,
        sender=AgentSender.for_agent(agent),
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        room_id=ROOM_ID,
    )


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider("openai")


@pytest.fixture
def providers(provider) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.add("openai", provider)
    return registry


@pytest.fixture
def credentials() -> StaticCredentialResolver:
    return StaticCredentialResolver({"openai": "sk-test"})


@pytest.fixture
def activity() -> ActivityLog:
    return ActivityLog()


@pytest_asyncio.fixture
async def manager(providers, credentials, activity) -> AgentStateManager:
    mgr = AgentStateManager(providers, credentials, activity=activity)
    await mgr.initialize()
    return mgr


@pytest_asyncio.fixture
async def roster(manager) -> dict[str, Agent]:
    """Claude, A, B and C registered and dormant."""
    agents = {}
    for name in ("Claude", "A", "B", "C"):
        agents[name] = await manager.add_agent(make_agent(name))
    return agents


@pytest.fixture
def engine(manager, activity) -> CascadeWakeEngine:
    return CascadeWakeEngine(manager, stagger_delay=0, activity=activity)


@pytest.fixture
def room(manager, engine) -> ConversationRoom:
    return ConversationRoom(manager, engine, room_id=ROOM_ID)

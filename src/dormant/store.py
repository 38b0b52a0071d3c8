"""Agent stores — where the agent roster is persisted between runs.

The state manager only depends on the :class:`AgentStore` protocol. Two
implementations ship with the package:

- InMemoryAgentStore: the default, keeps copies in a dict (tests, embedding)
- SqliteAgentStore: aiosqlite-backed table for the agent roster

Lifecycle state is stored for inspection only; the manager resets every
loaded agent to DORMANT because contexts and in-flight calls do not survive
a restart.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

import aiosqlite

from dormant.models import Agent, AgentState

logger = logging.getLogger(__name__)


class AgentStore(Protocol):
    async def load_agents(self) -> list[Agent]: ...

    async def save_agent(self, agent: Agent) -> None: ...

    async def delete_agent(self, agent_id: str) -> None: ...


class InMemoryAgentStore:
    """Dict-backed store preserving insertion order."""

    def __init__(self, agents: list[Agent] | None = None):
        self._agents: dict[str, Agent] = {a.id: a.model_copy() for a in agents or []}

    async def load_agents(self) -> list[Agent]:
        return [a.model_copy() for a in self._agents.values()]

    async def save_agent(self, agent: Agent) -> None:
        self._agents[agent.id] = agent.model_copy()

    async def delete_agent(self, agent_id: str) -> None:
        self._agents.pop(agent_id, None)


SCHEMA = """
CREATE TABLE IF NOT EXISTS agents (
    agent_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    provider TEXT NOT NULL,
    model TEXT NOT NULL,
    personality TEXT NOT NULL DEFAULT '',
    temperature REAL NOT NULL DEFAULT 0.7,
    max_tokens INTEGER NOT NULL DEFAULT 1000,
    state TEXT NOT NULL DEFAULT 'dormant',
    last_wake_time TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_agents_name ON agents(name COLLATE NOCASE);
"""


class SqliteAgentStore:
    """SQLite-backed agent roster with async access."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open database and create tables."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.executescript(SCHEMA)
        await self._db.commit()
        logger.info("Agent store initialized: %s", self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Agent store not initialized — call initialize() first")
        return self._db

    async def load_agents(self) -> list[Agent]:
        cursor = await self.db.execute("SELECT * FROM agents ORDER BY rowid")
        rows = await cursor.fetchall()
        return [self._row_to_agent(row) for row in rows]

    async def save_agent(self, agent: Agent) -> None:
        """Insert or update an agent, keeping its original row order."""
        await self.db.execute(
            """INSERT INTO agents
               (agent_id, name, provider, model, personality, temperature,
                max_tokens, state, last_wake_time)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(agent_id) DO UPDATE SET
                 name=excluded.name, provider=excluded.provider, model=excluded.model,
                 personality=excluded.personality, temperature=excluded.temperature,
                 max_tokens=excluded.max_tokens, state=excluded.state,
                 last_wake_time=excluded.last_wake_time""",
            (
                agent.id,
                agent.name,
                agent.provider,
                agent.model,
                agent.personality,
                agent.temperature,
                agent.max_tokens,
                agent.state.value,
                agent.last_wake_time.isoformat() if agent.last_wake_time else None,
            ),
        )
        await self.db.commit()

    async def delete_agent(self, agent_id: str) -> None:
        await self.db.execute("DELETE FROM agents WHERE agent_id = ?", (agent_id,))
        await self.db.commit()
        logger.info("Deleted agent record: %s", agent_id)

    @staticmethod
    def _row_to_agent(row: aiosqlite.Row) -> Agent:
        return Agent(
            id=row["agent_id"],
            name=row["name"],
            provider=row["provider"],
            model=row["model"],
            personality=row["personality"],
            temperature=row["temperature"],
            max_tokens=row["max_tokens"],
            state=AgentState(row["state"]),
            last_wake_time=datetime.fromisoformat(row["last_wake_time"])
            if row["last_wake_time"]
            else None,
        )

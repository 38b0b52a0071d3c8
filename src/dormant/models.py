"""Core data models for Dormant."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Agent State ──────────────────────────────────────────────────────────────


class AgentState(str, enum.Enum):
    """Agent lifecycle states.

    DORMANT --wake--> AWAKE --generate--> THINKING --done/failed--> AWAKE --sleep--> DORMANT
    """

    DORMANT = "dormant"
    AWAKE = "awake"
    THINKING = "thinking"

    @property
    def is_active(self) -> bool:
        return self is not AgentState.DORMANT

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


# ── Agent ────────────────────────────────────────────────────────────────────


class Agent(BaseModel):
    """A configured AI participant in a room.

    ``name`` is the mention handle and must be unique (case-insensitive)
    within a manager. Only the AgentStateManager mutates ``state`` and
    ``last_wake_time``.
    """

    id: str = Field(default_factory=new_id, description="Stable agent identifier")
    name: str = Field(description="Display name, also the @mention handle")
    provider: str = Field(description="Provider id, e.g. 'openai', 'anthropic'")
    model: str
    personality: str = ""
    temperature: float = 0.7
    max_tokens: int = Field(default=1000, description="Tokens reserved for the reply")
    state: AgentState = AgentState.DORMANT
    last_wake_time: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.state.is_active


# ── Message Senders ──────────────────────────────────────────────────────────


class SystemMessageType(str, enum.Enum):
    AGENT_WAKE = "agent_wake"
    AGENT_SLEEP = "agent_sleep"
    ROOM_JOIN = "room_join"
    ROOM_LEAVE = "room_leave"
    ERROR = "error"


class HumanSender(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender_type: Literal["human"] = "human"
    user_id: str
    username: str

    @property
    def display_name(self) -> str:
        return self.username


class AgentSender(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender_type: Literal["agent"] = "agent"
    agent_id: str
    name: str
    provider: str

    @property
    def display_name(self) -> str:
        return self.name

    @classmethod
    def for_agent(cls, agent: Agent) -> AgentSender:
        return cls(agent_id=agent.id, name=agent.name, provider=agent.provider)


class SystemSender(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender_type: Literal["system"] = "system"
    kind: SystemMessageType

    @property
    def display_name(self) -> str:
        return "System"


MessageSender = Annotated[
    Union[HumanSender, AgentSender, SystemSender],
    Field(discriminator="sender_type"),
]


# ── Room Messages ────────────────────────────────────────────────────────────


class RoomMessage(BaseModel):
    """An immutable message in a conversation room.

    Ordering key is ``timestamp``; ties keep insertion order (all sorting in
    this package is stable).
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    content: str
    sender: MessageSender
    timestamp: datetime = Field(default_factory=_utcnow)
    room_id: str

    @property
    def is_human(self) -> bool:
        return isinstance(self.sender, HumanSender)

    @property
    def is_agent(self) -> bool:
        return isinstance(self.sender, AgentSender)

    @property
    def is_system(self) -> bool:
        return isinstance(self.sender, SystemSender)


# ── Context ──────────────────────────────────────────────────────────────────


class ContextMetadata(BaseModel):
    room_id: str | None = None
    agent_id: str
    wake_time: datetime = Field(default_factory=_utcnow)
    total_messages: int = Field(default=0, description="Messages seen before trimming")
    context_window_size: int
    budget_exhausted: bool = Field(
        default=False, description="System prompt plus reply reservation filled the window"
    )


class Context(BaseModel):
    """Everything a provider needs for one generation call.

    Built fresh on every wake and discarded on sleep.
    """

    system_prompt: str
    conversation_history: list[RoomMessage] = Field(default_factory=list)
    metadata: ContextMetadata


# ── Cascades ─────────────────────────────────────────────────────────────────


class CascadeEvent(BaseModel):
    """Record of one cascade trigger evaluation. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    triggering_message: RoomMessage
    triggering_agent_id: str
    target_agent_ids: tuple[str, ...] = ()
    mentions: tuple[str, ...] = ()
    cascade_depth: int = 0
    timestamp: datetime = Field(default_factory=_utcnow)


class CascadeStatistics(BaseModel):
    total_cascades: int = 0
    successful_cascades: int = 0
    active_cascades: int = 0
    average_cascade_depth: float = 0.0
    average_targets_per_cascade: float = 0.0
    max_depth_reached: int = 0

    @property
    def success_rate(self) -> float:
        if self.total_cascades == 0:
            return 0.0
        return self.successful_cascades / self.total_cascades


# ── Validation ───────────────────────────────────────────────────────────────


class ValidationResult(BaseModel):
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    @property
    def all_issues(self) -> list[str]:
        return self.errors + self.warnings

"""Configuration loading for dormant.

Reads .dormant/config.yaml and agent definitions from .dormant/agents/.
Pydantic models validate the config schema; agent files are markdown with
YAML frontmatter whose body becomes the agent's personality.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, Field, field_validator

from dormant.mentions import is_mentionable
from dormant.models import Agent, ValidationResult, new_id
from dormant.providers.catalog import DEFAULT_CONTEXT_WINDOW

if TYPE_CHECKING:
    from dormant.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".dormant"

# Temperatures above this produce a warning, not an error
HIGH_TEMPERATURE = 1.5
# max_tokens above this produce a warning, not an error
HIGH_MAX_TOKENS = 4096


# ── Config Models ────────────────────────────────────────────────────────────


class RoomConfig(BaseModel):
    name: str = "lobby"
    notify_transitions: bool = True  # post System agent_wake/agent_sleep messages
    sleep_after_reply: bool = True


class CascadeConfig(BaseModel):
    max_depth: int = Field(default=5, ge=1)
    stagger_delay: float = Field(default=0.1, ge=0)  # seconds


class ContextConfig(BaseModel):
    recent_message_window: int = Field(default=20, ge=1, le=200)
    default_context_window: int = Field(default=DEFAULT_CONTEXT_WINDOW, gt=0)


class ProviderConfig(BaseModel):
    api_key_env: str = ""

    @property
    def api_key(self) -> str | None:
        return os.environ.get(self.api_key_env) if self.api_key_env else None


class DormantConfig(BaseModel):
    room: RoomConfig = Field(default_factory=RoomConfig)
    cascade: CascadeConfig = Field(default_factory=CascadeConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    providers: dict[str, ProviderConfig] = Field(default_factory=dict)


# ── Agent Definitions ────────────────────────────────────────────────────────


class AgentDefinition(BaseModel):
    """An agent parsed from a .dormant/agents/<slug>.md file."""

    slug: str  # file stem, e.g. "claude"
    name: str
    provider: str
    model: str
    personality: str = ""
    temperature: float = 0.7
    max_tokens: int = 1000
    id: str | None = None

    @field_validator("name")
    @classmethod
    def _validate_name(cls, v: str) -> str:
        if not is_mentionable(v):
            raise ValueError(
                f"agent name must be letters, digits, '_' or '-' to be mentionable: {v!r}"
            )
        return v

    def to_agent(self) -> Agent:
        return Agent(
            id=self.id or new_id(),
            name=self.name,
            provider=self.provider,
            model=self.model,
            personality=self.personality,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )


def _split_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Split YAML frontmatter from markdown body.

    Returns (frontmatter_dict, body_markdown).
    If no frontmatter found, returns ({}, full_content).
    """
    if not content.lstrip().startswith("---"):
        return {}, content

    lines = content.split("\n")
    fences = [i for i, line in enumerate(lines) if line.strip() == "---"][:2]
    if len(fences) < 2:
        return {}, content

    start, end = fences
    try:
        fm = yaml.safe_load("\n".join(lines[start + 1 : end])) or {}
    except yaml.YAMLError:
        logger.warning("Failed to parse YAML frontmatter — treating as plain markdown")
        return {}, content
    if not isinstance(fm, dict):
        return {}, content

    return fm, "\n".join(lines[end + 1 :]).strip()


def parse_agent_definition(slug: str, content: str) -> AgentDefinition:
    """Parse an agent markdown definition with YAML frontmatter.

    Frontmatter keys: name, provider, model, temperature, max_tokens, id.
    The markdown body is the agent's personality.

    Raises:
        ValueError: missing provider/model or invalid values.
    """
    fm, body = _split_frontmatter(content)
    data: dict[str, Any] = {
        key: fm[key]
        for key in ("provider", "model", "temperature", "max_tokens", "id")
        if fm.get(key) is not None
    }
    return AgentDefinition(slug=slug, name=fm.get("name", slug), personality=body, **data)


# ── Config Loader ────────────────────────────────────────────────────────────


def load_config(config_dir: Path) -> DormantConfig:
    """Load configuration from a .dormant/ directory.

    Raises:
        FileNotFoundError: If config.yaml doesn't exist.
        ValueError: If config validation fails.
    """
    config_path = config_dir / "config.yaml"
    if not config_path.exists():
        raise FileNotFoundError(f"dormant config not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{config_path} must contain a YAML mapping")

    config = DormantConfig(**raw)

    # Environment variable overrides for deployment
    max_depth = os.environ.get("DORMANT_MAX_CASCADE_DEPTH")
    if max_depth:
        config.cascade = CascadeConfig(
            max_depth=int(max_depth), stagger_delay=config.cascade.stagger_delay
        )

    stagger = os.environ.get("DORMANT_CASCADE_STAGGER_DELAY")
    if stagger:
        config.cascade = CascadeConfig(
            max_depth=config.cascade.max_depth, stagger_delay=float(stagger)
        )

    logger.info("Loaded dormant config: room=%s", config.room.name)
    return config


def load_agent_definitions(config_dir: Path) -> dict[str, AgentDefinition]:
    """Load all agent definition files from .dormant/agents/.

    Returns:
        Dict mapping file stem → AgentDefinition, in file name order.
    """
    agents_dir = config_dir / "agents"
    definitions: dict[str, AgentDefinition] = {}

    if not agents_dir.exists():
        logger.warning("No agents directory found at %s", agents_dir)
        return definitions

    for md_file in sorted(agents_dir.glob("*.md")):
        slug = md_file.stem
        definitions[slug] = parse_agent_definition(slug, md_file.read_text())
        logger.info("Loaded agent definition: %s", slug)

    return definitions


# ── Validation ───────────────────────────────────────────────────────────────


def validate_agent(agent: Agent, registry: ProviderRegistry | None = None) -> ValidationResult:
    """Check an agent's configuration. Errors block use; warnings do not."""
    result = ValidationResult()

    if not agent.name.strip():
        result.errors.append("Agent name cannot be empty")
    elif not is_mentionable(agent.name):
        result.errors.append(
            f"Agent name {agent.name!r} can only contain letters, digits, '_' and '-'"
        )

    if not agent.model.strip():
        result.errors.append("Model name cannot be empty")

    if not 0.0 <= agent.temperature <= 2.0:
        result.errors.append("Temperature must be between 0.0 and 2.0")
    elif agent.temperature > HIGH_TEMPERATURE:
        result.warnings.append("High temperature may produce unpredictable responses")

    if agent.max_tokens <= 0:
        result.errors.append("Max tokens must be greater than 0")
    elif agent.max_tokens > HIGH_MAX_TOKENS:
        result.warnings.append("High max tokens may result in expensive API calls")

    if registry is not None:
        if not registry.is_supported(agent.provider):
            result.errors.append(f"Unsupported provider: {agent.provider}")
        elif not result.errors and not registry.validate_agent_configuration(agent):
            result.errors.append(f"Provider {agent.provider} rejected the agent configuration")

    return result

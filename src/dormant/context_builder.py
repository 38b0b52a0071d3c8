"""Context Builder — fits a room's history into an agent's token budget.

Given an agent and the candidate history, produces a :class:`Context`:

1. History is sorted chronologically (stable, so timestamp ties keep their
   arrival order).
2. A deterministic system prompt is composed from the agent's name,
   personality and provider/model parameters.
3. ``available = window - tokens(system_prompt) - agent.max_tokens``.
4. Messages are accepted newest-first while the running token total stays
   within ``available``; the walk stops at the first message that does not
   fit, so the result is always a contiguous suffix of the sorted input.

The builder never raises: capability lookups that fail fall back to a
default window and a word-count token estimate, and an exhausted budget
yields an empty (but valid) history.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Sequence

from dormant.models import (
    AgentSender,
    Context,
    ContextMetadata,
    HumanSender,
    RoomMessage,
    SystemSender,
)
from dormant.providers.catalog import (
    DEFAULT_CONTEXT_WINDOW,
    PROVIDER_VENDORS,
    provider_display_name,
)

if TYPE_CHECKING:
    from dormant.models import Agent
    from dormant.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

DEFAULT_RECENT_MESSAGE_WINDOW = 20


def estimate_tokens_by_words(text: str) -> int:
    """Fallback estimate: 1.3 tokens per whitespace-separated word, at least 1."""
    return max(1, math.floor(len(text.split()) * 1.3))


def _sort_key(message: RoomMessage) -> datetime:
    ts = message.timestamp
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def format_message(message: RoomMessage) -> str:
    """Render one message the way it appears in a prompt: ``[HH:MM:SS] sender: content``."""
    stamp = message.timestamp.strftime("%H:%M:%S")
    sender = message.sender
    if isinstance(sender, HumanSender):
        label = sender.username
    elif isinstance(sender, AgentSender):
        label = f"{sender.name} ({provider_display_name(sender.provider)})"
    elif isinstance(sender, SystemSender):
        label = f"System ({sender.kind.value})"
    else:
        label = "Unknown"
    return f"[{stamp}] {label}: {message.content}"


class ContextBuilder:
    """Builds bounded per-wake contexts for agents."""

    def __init__(
        self,
        providers: ProviderRegistry | None = None,
        *,
        default_context_window: int = DEFAULT_CONTEXT_WINDOW,
        recent_message_window: int = DEFAULT_RECENT_MESSAGE_WINDOW,
    ):
        self.providers = providers
        self.default_context_window = default_context_window
        self.recent_message_window = recent_message_window

    # ── Build ────────────────────────────────────────────────────────────

    def build(self, agent: Agent, messages: Sequence[RoomMessage]) -> Context:
        """Build the context ``agent`` sees when it wakes."""
        ordered = sorted(messages, key=_sort_key)
        system_prompt = self.format_system_prompt(agent)
        window = self.context_window_size(agent)

        available = window - self.estimate_tokens(system_prompt, agent) - agent.max_tokens
        budget_exhausted = available <= 0
        if budget_exhausted:
            logger.warning(
                "No room for history in %s's context (window=%d, max_tokens=%d)",
                agent.name,
                window,
                agent.max_tokens,
            )
            history: list[RoomMessage] = []
        else:
            history = self._fit_history(ordered, agent, available)

        metadata = ContextMetadata(
            room_id=ordered[0].room_id if ordered else None,
            agent_id=agent.id,
            total_messages=len(ordered),
            context_window_size=window,
            budget_exhausted=budget_exhausted,
        )
        return Context(system_prompt=system_prompt, conversation_history=history, metadata=metadata)

    def _fit_history(
        self, ordered: list[RoomMessage], agent: Agent, available: int
    ) -> list[RoomMessage]:
        used = 0
        start = len(ordered)
        for index in range(len(ordered) - 1, -1, -1):
            cost = self.estimate_tokens(format_message(ordered[index]), agent)
            if used + cost > available:
                break
            used += cost
            start = index

        if start > 0:
            logger.info(
                "Context window limit reached for %s: using %d of %d messages",
                agent.name,
                len(ordered) - start,
                len(ordered),
            )
        return ordered[start:]

    # ── System prompt ────────────────────────────────────────────────────

    def format_system_prompt(self, agent: Agent) -> str:
        lines = [
            f"You are {agent.name}, an AI assistant participating in a chat room conversation.",
            "",
            "IMPORTANT INSTRUCTIONS:",
            "- You are currently AWAKE and can see and respond to messages",
            f"- You were awakened because someone mentioned you with @{agent.name}",
            "- After you respond, you will return to DORMANT state and won't see "
            "further messages until mentioned again",
            "- If you want to wake another AI agent, mention them with @agentname in your response",
            "- Be conversational and helpful while staying true to your personality",
            "- Keep responses concise unless specifically asked for detailed explanations",
            "",
        ]

        if agent.personality.strip():
            lines += ["PERSONALITY:", agent.personality, ""]

        lines.append("TECHNICAL DETAILS:")
        vendor = PROVIDER_VENDORS.get(agent.provider)
        if vendor:
            lines.append(f"- You are powered by {vendor} {agent.model} model")
        else:
            lines.append(f"- Provider: {provider_display_name(agent.provider)}")
            lines.append(f"- Model: {agent.model}")
        lines += [
            f"- Temperature: {agent.temperature}",
            f"- Max tokens: {agent.max_tokens}",
            "",
            f"Now respond to the conversation below as {agent.name}:",
        ]
        return "\n".join(lines)

    # ── Transcript ───────────────────────────────────────────────────────

    def transcript(self, context: Context, window: int | None = None) -> str:
        """Flatten the most recent ``window`` history messages into prompt lines.

        Independent of the token walk in :meth:`build`; used by providers
        that send history as a single text block.
        """
        limit = self.recent_message_window if window is None else window
        if limit <= 0:
            return ""
        recent = context.conversation_history[-limit:]
        return "\n".join(format_message(m) for m in recent)

    # ── Provider capabilities (with fallbacks) ───────────────────────────

    def context_window_size(self, agent: Agent) -> int:
        if self.providers is not None:
            try:
                size = self.providers.context_window_size(agent)
            except Exception as e:
                logger.warning(
                    "Could not get context window size for %s (%s), using %d",
                    agent.name,
                    e,
                    self.default_context_window,
                )
            else:
                if size > 0:
                    return size
        return self.default_context_window

    def estimate_tokens(self, text: str, agent: Agent) -> int:
        if self.providers is not None:
            try:
                return max(0, int(self.providers.estimate_tokens(text, agent.provider)))
            except Exception as e:
                logger.debug("Token estimation unavailable for %s: %s", agent.provider, e)
        return estimate_tokens_by_words(text)

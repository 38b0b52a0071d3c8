"""Mention scanning — ``@name`` extraction, autocomplete and resolution.

Stateless and total: every method degrades to an empty result or ``None``
instead of raising, since a message without mentions is the normal case.
"""

from __future__ import annotations

import re
from typing import Iterable

from dormant.models import Agent

# A mention token. Names are restricted to the same alphabet so every
# configured agent is mentionable.
MENTION_TOKEN = r"[A-Za-z0-9_-]+"

# ``@token`` not preceded by a word character (rejects the local part of
# ``user@example.com``; ``@@name`` still mentions ``name``) and not
# followed by a dot-qualified suffix (rejects ``@example.com``). A trailing
# sentence dot still counts: ``ask @Claude.`` mentions Claude.
_MENTION_RE = re.compile(
    rf"(?<![A-Za-z0-9_])@({MENTION_TOKEN})(?![A-Za-z0-9_-]|\.[A-Za-z0-9_])"
)

_NAME_RE = re.compile(rf"^{MENTION_TOKEN}$")

_PARTIAL_RE = re.compile(r"@\w*")


def is_mentionable(name: str) -> bool:
    """Whether ``name`` can be written as an ``@name`` mention."""
    return bool(_NAME_RE.match(name))


class MentionScanner:
    """Finds and resolves ``@name`` mentions in message text."""

    def extract_mentions(self, text: str) -> list[str]:
        """Return mention names (without ``@``) in left-to-right order.

        Duplicates are preserved; callers de-duplicate if they need to.
        """
        if not text:
            return []
        return _MENTION_RE.findall(text)

    def suggestions(self, partial: str, agents: Iterable[Agent]) -> list[str]:
        """Autocomplete candidates for a partially typed mention (without ``@``)."""
        names = [agent.name for agent in agents]
        prefix = partial.lower()
        if prefix:
            names = [name for name in names if name.lower().startswith(prefix)]
        return sorted(names, key=lambda n: (n.lower(), n))

    def resolve(self, name: str, agents: Iterable[Agent]) -> Agent | None:
        """Case-insensitive exact match of a mention against known agents."""
        wanted = name.lower()
        for agent in agents:
            if agent.name.lower() == wanted:
                return agent
        return None

    def partial_mention_at(self, text: str, cursor: int) -> str | None:
        """The mention being typed at ``cursor``, or None.

        Looks back from the cursor to the nearest ``@``; any whitespace
        between the two ends the mention.
        """
        if cursor < 0 or cursor > len(text):
            return None
        before = text[:cursor]
        at = before.rfind("@")
        if at == -1:
            return None
        fragment = before[at + 1 :]
        if any(ch.isspace() for ch in fragment):
            return None
        return fragment

    def find_partial_mentions(self, text: str) -> list[str]:
        """Every ``@word`` fragment in ``text``, ``@`` included (may be just ``@``)."""
        return _PARTIAL_RE.findall(text)

    def replace_mention(self, text: str, partial_mention: str, complete_name: str) -> str:
        """Replace a typed fragment such as ``@cla`` with ``@Claude``."""
        if not partial_mention:
            return text
        return text.replace(partial_mention, f"@{complete_name}")

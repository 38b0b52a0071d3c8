"""Provider registry — maps provider ids to capability implementations."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from dormant.errors import ConfigurationError

if TYPE_CHECKING:
    from dormant.models import Agent
    from dormant.providers.base import Provider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry mapping provider ids to :class:`Provider` instances.

    Usage::

        providers = ProviderRegistry()

        @providers.register("echo")
        class EchoProvider(CatalogProvider):
            ...

    Lookups raise :class:`ConfigurationError` for unknown ids.
    """

    def __init__(self) -> None:
        self._providers: dict[str, Provider] = {}

    # ── Registration ──────────────────────────────────────────────────────────

    def register(self, provider_id: str) -> Callable[[type], type]:
        """Class decorator: instantiate and register a provider class."""

        def decorator(cls: type) -> type:
            self.add(provider_id, cls())
            return cls

        return decorator

    def add(self, provider_id: str, provider: Provider) -> None:
        """Directly register a provider instance under ``provider_id``."""
        self._providers[provider_id] = provider
        logger.debug("Registered provider: %s (%s)", provider_id, type(provider).__name__)

    def remove(self, provider_id: str) -> None:
        self._providers.pop(provider_id, None)

    # ── Lookup ────────────────────────────────────────────────────────────────

    def get(self, provider_id: str) -> Provider:
        provider = self._providers.get(provider_id)
        if provider is None:
            raise ConfigurationError(f"Unsupported provider: {provider_id!r}")
        return provider

    def is_supported(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def supported_providers(self) -> list[str]:
        return sorted(self._providers)

    # ── Capability shortcuts ─────────────────────────────────────────────────

    def context_window_size(self, agent: Agent) -> int:
        return self.get(agent.provider).context_window_size(agent.model)

    def estimate_tokens(self, text: str, provider_id: str) -> int:
        return self.get(provider_id).estimate_tokens(text)

    def validate_agent_configuration(self, agent: Agent) -> bool:
        return self.get(agent.provider).validate_configuration(agent)

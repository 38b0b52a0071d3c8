"""Provider capability interface.

The orchestration core only talks to providers through this interface; wire
formats live in the concrete implementations.

``generate_response`` returns a finite, non-restartable async iterator of text
fragments. Implementations may be async generator functions or coroutines
that return such an iterator; both are accepted by the state manager.
Failures are raised as :class:`dormant.errors.ProviderError`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Protocol, Union, runtime_checkable

from dormant.providers.catalog import (
    CREDENTIAL_FREE_PROVIDERS,
    context_window_for,
)

if TYPE_CHECKING:
    from dormant.models import Agent, Context

ResponseStream = Union[AsyncIterator[str], Awaitable[AsyncIterator[str]]]


@runtime_checkable
class Provider(Protocol):
    """Capability a provider exposes to the core."""

    provider_id: str
    requires_credential: bool

    def generate_response(self, context: Context, agent: Agent, credential: str) -> ResponseStream:
        """Stream the reply for ``context`` as text fragments."""
        ...

    def estimate_tokens(self, text: str) -> int: ...

    def context_window_size(self, model: str) -> int: ...

    def validate_configuration(self, agent: Agent) -> bool: ...


class CatalogProvider:
    """Base class giving the non-streaming capabilities from the model catalog.

    Subclasses set ``provider_id`` and implement ``generate_response``.
    """

    provider_id: str = "custom"
    max_output_tokens: int = 4096

    @property
    def requires_credential(self) -> bool:
        return self.provider_id not in CREDENTIAL_FREE_PROVIDERS

    def generate_response(self, context: Context, agent: Agent, credential: str) -> ResponseStream:
        raise NotImplementedError(f"{type(self).__name__} does not implement generate_response")

    def estimate_tokens(self, text: str) -> int:
        # ~4 characters per token for English text
        return max(1, len(text) // 4)

    def context_window_size(self, model: str) -> int:
        return context_window_for(self.provider_id, model)

    def validate_configuration(self, agent: Agent) -> bool:
        if agent.provider != self.provider_id:
            return False
        if not agent.name.strip() or not agent.model.strip():
            return False
        if not 0.0 <= agent.temperature <= 2.0:
            return False
        return 0 < agent.max_tokens <= self.max_output_tokens

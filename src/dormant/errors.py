"""Exception types raised by the orchestration core.

ConfigurationError and GenerationCancelled originate here; ProviderError is
raised by provider implementations and passed through untouched.
"""

from __future__ import annotations

import enum


class ProviderErrorKind(str, enum.Enum):
    INVALID_API_KEY = "invalid_api_key"
    INVALID_CONFIGURATION = "invalid_configuration"
    RATE_LIMITED = "rate_limited"
    CONTENT_FILTERED = "content_filtered"
    CONTEXT_TOO_LONG = "context_too_long"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    INVALID_RESPONSE = "invalid_response"
    UNKNOWN = "unknown"


class DormantError(Exception):
    """Base exception for Dormant domain errors."""

    pass


class ConfigurationError(DormantError):
    """Raised for programmer-visible misuse: unknown agent, missing context, bad config."""

    kind = ProviderErrorKind.INVALID_CONFIGURATION


class CredentialError(DormantError):
    """Raised when no usable credential exists for an agent's provider."""

    kind = ProviderErrorKind.INVALID_API_KEY

    def __init__(self, provider: str, message: str | None = None):
        self.provider = provider
        super().__init__(message or f"No credential available for provider {provider!r}")


class ProviderError(DormantError):
    """Raised by a provider capability; the core never retries it."""

    def __init__(
        self,
        kind: ProviderErrorKind = ProviderErrorKind.UNKNOWN,
        message: str = "",
        *,
        provider: str | None = None,
    ):
        self.kind = kind
        self.provider = provider
        super().__init__(message or kind.value)


class GenerationCancelled(DormantError):
    """Raised by generate_response when sleep/cancel interrupted the stream."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Generation for agent {agent_id} was cancelled")

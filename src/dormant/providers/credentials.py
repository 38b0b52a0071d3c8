"""Credential resolution for providers.

The core never stores keys; it asks a resolver for one right before each
generation call.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Mapping, Protocol

if TYPE_CHECKING:
    from dormant.config import ProviderConfig


class CredentialResolver(Protocol):
    def resolve(self, provider_id: str) -> str | None: ...


class StaticCredentialResolver:
    """Resolves credentials from an in-memory mapping (tests, embedding apps)."""

    def __init__(self, credentials: Mapping[str, str] | None = None):
        self._credentials = dict(credentials or {})

    def resolve(self, provider_id: str) -> str | None:
        return self._credentials.get(provider_id) or None


class EnvCredentialResolver:
    """Resolves credentials from the env var named by each provider's config.

    Providers without an entry fall back to ``<PROVIDER>_API_KEY``.
    """

    def __init__(self, providers: Mapping[str, ProviderConfig] | None = None):
        self._providers = dict(providers or {})

    def env_var_for(self, provider_id: str) -> str:
        config = self._providers.get(provider_id)
        if config is not None and config.api_key_env:
            return config.api_key_env
        return f"{provider_id.upper().replace('-', '_')}_API_KEY"

    def resolve(self, provider_id: str) -> str | None:
        return os.environ.get(self.env_var_for(provider_id)) or None

"""Provider capabilities used by the orchestration core.

Key exports:
    Provider — capability protocol (generate, estimate tokens, context window)
    CatalogProvider — base class backed by the built-in model catalog
    ProviderRegistry — provider id -> Provider lookup
    CredentialResolver — provider id -> credential lookup
"""

from dormant.providers.base import CatalogProvider, Provider, ResponseStream
from dormant.providers.catalog import (
    DEFAULT_CONTEXT_WINDOW,
    context_window_for,
    provider_display_name,
)
from dormant.providers.credentials import (
    CredentialResolver,
    EnvCredentialResolver,
    StaticCredentialResolver,
)
from dormant.providers.registry import ProviderRegistry

__all__ = [
    "CatalogProvider",
    "CredentialResolver",
    "DEFAULT_CONTEXT_WINDOW",
    "EnvCredentialResolver",
    "Provider",
    "ProviderRegistry",
    "ResponseStream",
    "StaticCredentialResolver",
    "context_window_for",
    "provider_display_name",
]

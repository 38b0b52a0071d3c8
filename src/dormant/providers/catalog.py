"""Static provider metadata: display names and model context windows."""

from __future__ import annotations

DEFAULT_CONTEXT_WINDOW = 4096

PROVIDER_DISPLAY_NAMES: dict[str, str] = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "huggingface": "Hugging Face",
    "ollama": "Ollama",
    "gemini": "Google Gemini",
    "grok": "xAI Grok",
    "cohere": "Cohere",
    "mistral": "Mistral AI",
    "perplexity": "Perplexity",
    "together": "Together AI",
    "replicate": "Replicate",
    "groq": "Groq",
    "custom": "Custom",
}

# Vendor names used in the "powered by" line of the system prompt.
PROVIDER_VENDORS: dict[str, str] = {
    "openai": "OpenAI's",
    "anthropic": "Anthropic's",
    "gemini": "Google's",
    "grok": "xAI's",
    "cohere": "Cohere's",
    "mistral": "Mistral AI's",
    "perplexity": "Perplexity's",
    "together": "Together AI's",
    "replicate": "Replicate's",
    "groq": "Groq's",
}

# Providers that run locally and need no credential.
CREDENTIAL_FREE_PROVIDERS: frozenset[str] = frozenset({"ollama"})

# provider -> {model -> window}; "*" is the provider-wide fallback.
CONTEXT_WINDOWS: dict[str, dict[str, int]] = {
    "openai": {
        "gpt-4": 128_000,
        "gpt-4-turbo": 128_000,
        "gpt-4-turbo-preview": 128_000,
        "gpt-4o": 128_000,
        "gpt-4o-mini": 128_000,
        "gpt-3.5-turbo": 4096,
        "gpt-3.5-turbo-16k": 16_384,
        "*": 4096,
    },
    "anthropic": {"*": 200_000},
    "gemini": {
        "gemini-pro": 32_768,
        "gemini-pro-vision": 16_384,
        "gemini-1.5-pro": 1_000_000,
        "gemini-1.5-flash": 1_000_000,
        "*": 32_768,
    },
    "grok": {"*": 131_072},
    "cohere": {"command-r": 128_000, "command-r-plus": 128_000, "*": 4096},
    "mistral": {"mixtral-8x7b": 32_768, "*": 32_768},
    "perplexity": {"*": 32_768},
    "groq": {
        "llama3-8b-8192": 8192,
        "llama3-70b-8192": 8192,
        "mixtral-8x7b-32768": 32_768,
        "gemma-7b-it": 8192,
        "*": 8192,
    },
    "ollama": {
        "llama2": 4096,
        "codellama": 16_384,
        "mistral": 8192,
        "llama3": 8192,
        "phi3": 4096,
        "gemma": 8192,
        "*": 4096,
    },
    "together": {"*": 4096},
    "replicate": {"*": 4096},
    "huggingface": {"*": 1024},
}


def provider_display_name(provider: str) -> str:
    return PROVIDER_DISPLAY_NAMES.get(provider, provider)


def context_window_for(provider: str, model: str) -> int:
    """Look up a model's context window, falling back per provider then globally."""
    table = CONTEXT_WINDOWS.get(provider, {})
    return table.get(model) or table.get(model.lower()) or table.get("*", DEFAULT_CONTEXT_WINDOW)

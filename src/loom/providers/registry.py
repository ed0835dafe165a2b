"""
Provider Registry — pick the adapter for a request's settings.

A dict of factories keyed by provider name. Add a provider? Register a
factory. The orchestrator never changes.
"""

from __future__ import annotations

import re
from typing import Callable

import loom.core.config as config_module
from loom.providers.base import ProviderAdapter
from loom.session.models import ChatSettings

AdapterFactory = Callable[[ChatSettings], ProviderAdapter]

_REASONING_MODEL = re.compile(r"^(gpt-5(\b|[.-])|o[134])")


def _max_tokens() -> int:
    return config_module.config.turn.max_output_tokens


def is_openai_reasoning_model(model: str) -> bool:
    """gpt-5*, o1/o3/o4* — served by the Responses API."""
    return bool(_REASONING_MODEL.match(model)) or any(
        marker in model for marker in ("o1-", "o3-", "o4-")
    )


def _openai(settings: ChatSettings) -> ProviderAdapter:
    if is_openai_reasoning_model(settings.model):
        from loom.providers.openai_responses import OpenAIResponsesAdapter

        return OpenAIResponsesAdapter(
            settings, max_output_tokens=config_module.config.turn.reasoning_max_output_tokens
        )
    from loom.providers.openai_llm import OpenAIChatAdapter

    return OpenAIChatAdapter(settings, max_output_tokens=_max_tokens())


def _cerebras(settings: ChatSettings) -> ProviderAdapter:
    from loom.providers.openai_llm import CerebrasAdapter

    return CerebrasAdapter(settings, max_output_tokens=_max_tokens())


def _mistral(settings: ChatSettings) -> ProviderAdapter:
    from loom.providers.openai_llm import MistralAdapter

    return MistralAdapter(settings, max_output_tokens=_max_tokens())


def _anthropic(settings: ChatSettings) -> ProviderAdapter:
    from loom.providers.anthropic_llm import AnthropicAdapter

    return AnthropicAdapter(settings, max_output_tokens=_max_tokens())


def _google(settings: ChatSettings) -> ProviderAdapter:
    from loom.providers.google_llm import GoogleAdapter

    return GoogleAdapter(settings, max_output_tokens=_max_tokens())


def _ollama(settings: ChatSettings) -> ProviderAdapter:
    from loom.providers.ollama_llm import OllamaAdapter

    return OllamaAdapter(settings, max_output_tokens=_max_tokens())


_FACTORIES: dict[str, AdapterFactory] = {
    "openai": _openai,
    "cerebras": _cerebras,
    "mistral": _mistral,
    "anthropic": _anthropic,
    "google": _google,
    "ollama": _ollama,
}


def register_provider(name: str, factory: AdapterFactory) -> None:
    _FACTORIES[name.lower()] = factory


def available_providers() -> list[str]:
    return sorted(_FACTORIES)


def create_adapter(settings: ChatSettings) -> ProviderAdapter:
    provider = settings.provider.lower()
    factory = _FACTORIES.get(provider)
    if factory is None:
        raise ValueError(f"Unknown LLM provider: {settings.provider}")
    return factory(settings)

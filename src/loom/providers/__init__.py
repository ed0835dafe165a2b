"""
Loom Providers — one adapter per upstream protocol.

OpenAI Chat Completions (and the Cerebras / Mistral compatibles), OpenAI
Responses, Anthropic Messages, Gemini streamGenerateContent, Ollama.
Pick one by setting ChatSettings.provider.
"""

from loom.providers.base import ProviderAdapter, ProviderError
from loom.providers.registry import available_providers, create_adapter

__all__ = [
    "ProviderAdapter",
    "ProviderError",
    "available_providers",
    "create_adapter",
]

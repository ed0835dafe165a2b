"""
Provider base class — the one boundary every upstream LLM sits behind.

An adapter turns (history, system prompt, round tools, prior tool
executions) into a vendor request and the vendor's stream back into
StreamChunks. That's the whole deal. Nothing vendor-shaped crosses it.

Subclasses implement _stream(). The public stream() wraps it so that:
- SDK and transport failures surface as ProviderError
- a stream that produced nothing but malformed lines is an error too
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Sequence

import anthropic
import httpx
import openai

from loom.llm.contracts import StreamChunk, ToolExecutionResult
from loom.session.models import ChatMessage, ChatSettings
from loom.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Upstream transport or HTTP failure. Ends the turn."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


def describe_provider_error(exc: BaseException) -> str:
    """
    One-line summary of an SDK error: `[status] message (code: ..) (param: ..) (type: ..)`.

    Vendor SDKs bury the useful part in a JSON body; surface it.
    """
    status = getattr(exc, "status_code", None)
    body = getattr(exc, "body", None)
    message = str(exc) or exc.__class__.__name__
    details: dict[str, Any] = {}

    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict):
            details = error
            message = error.get("message") or message

    parts = []
    if status:
        parts.append(f"[{status}]")
    parts.append(message)
    for key in ("code", "param", "type"):
        if details.get(key):
            parts.append(f"({key}: {details[key]})")
    return " ".join(parts)


_SDK_ERRORS = (openai.APIError, anthropic.APIError, httpx.HTTPError)


class ProviderAdapter(ABC):
    """Base class for one upstream protocol."""

    name: str = "base"

    def __init__(self, settings: ChatSettings, max_output_tokens: int = 8192):
        self.settings = settings
        self.model = settings.model
        self.max_output_tokens = settings.max_output_tokens or max_output_tokens
        self._malformed = 0

    async def stream(
        self,
        messages: Sequence[ChatMessage],
        system_prompt: str | None,
        tools: ToolRegistry,
        tool_executions: Sequence[ToolExecutionResult] = (),
    ) -> AsyncIterator[StreamChunk]:
        """Stream one round. Yields StreamChunks, raises ProviderError."""
        self._malformed = 0
        emitted = 0
        logger.debug(
            f"{self.name} round: model={self.model}, messages={len(messages)}, "
            f"tools={len(tools)}, replayed={len(tool_executions)}"
        )
        inner = self._stream(
            list(messages), system_prompt, tools, list(tool_executions)
        )
        try:
            async for chunk in inner:
                emitted += 1
                yield chunk
        except ProviderError:
            raise
        except _SDK_ERRORS as e:
            message = describe_provider_error(e)
            logger.error(f"{self.name} request failed: {message}")
            raise ProviderError(message, getattr(e, "status_code", None)) from e
        finally:
            await inner.aclose()

        if emitted == 0 and self._malformed:
            raise ProviderError(
                f"{self.name} stream ended with no usable output "
                f"({self._malformed} malformed lines skipped)"
            )

    @abstractmethod
    def _stream(
        self,
        messages: list[ChatMessage],
        system_prompt: str | None,
        tools: ToolRegistry,
        tool_executions: list[ToolExecutionResult],
    ) -> AsyncIterator[StreamChunk]:
        ...

    def _note_malformed(self, what: str, raw: Any = "") -> None:
        self._malformed += 1
        logger.warning(f"{self.name}: skipping malformed {what}: {str(raw)[:100]}")

    def _api_key(self, fallback: str) -> str:
        return self.settings.api_key or fallback

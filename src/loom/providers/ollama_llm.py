"""
Ollama adapter — /api/chat streaming NDJSON.

Ollama has no tool protocol here: tool results from earlier rounds are
folded into the system prompt under "## Tool Results" and no tools are
declared. Each response line is one JSON object; the last one carries
done=true and the eval counts.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from loom.core.config import ProviderConfig, config
from loom.llm.contracts import StreamChunk, TokenUsage, ToolExecutionResult
from loom.providers.base import ProviderAdapter, ProviderError
from loom.providers.content import images, to_flat_text
from loom.session.models import ChatMessage, ChatSettings
from loom.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def system_prompt_with_results(
    system_prompt: str | None, tool_executions: list[ToolExecutionResult]
) -> str:
    if not tool_executions:
        return system_prompt or ""
    results = "\n\n".join(
        f'Tool "{te.tool_name}" returned:\n{te.result}' for te in tool_executions
    )
    section = f"## Tool Results\n\n{results}"
    return f"{system_prompt}\n\n{section}" if system_prompt else section


def build_ollama_messages(
    messages: list[ChatMessage],
    system_prompt: str | None,
    tool_executions: list[ToolExecutionResult],
) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    full_prompt = system_prompt_with_results(system_prompt, tool_executions)
    if full_prompt:
        out.append({"role": "system", "content": full_prompt})
    for message in messages:
        entry: dict[str, Any] = {
            "role": message.role.value,
            "content": to_flat_text(message),
        }
        attached_images = [image.data for image in images(message)]
        if attached_images:
            entry["images"] = attached_images
        out.append(entry)
    return out


class OllamaAdapter(ProviderAdapter):
    name = "ollama"

    def __init__(
        self,
        settings: ChatSettings,
        client: httpx.AsyncClient | None = None,
        provider_config: ProviderConfig | None = None,
        max_output_tokens: int = 8192,
    ):
        super().__init__(settings, max_output_tokens)
        self.provider_config = provider_config or config.providers
        self.client = client
        self.base_url = (settings.base_url or self.provider_config.ollama_url).rstrip("/")

    async def _stream(
        self,
        messages: list[ChatMessage],
        system_prompt: str | None,
        tools: ToolRegistry,
        tool_executions: list[ToolExecutionResult],
    ) -> AsyncIterator[StreamChunk]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": build_ollama_messages(messages, system_prompt, tool_executions),
            "stream": True,
        }
        if self.settings.temperature is not None:
            body["options"] = {"temperature": self.settings.temperature}

        client = self.client or httpx.AsyncClient(
            timeout=self.provider_config.request_timeout
        )
        prompt_eval_count = 0
        eval_count = 0

        try:
            async with client.stream(
                "POST", f"{self.base_url}/api/chat", json=body
            ) as response:
                if response.status_code >= 400:
                    error_text = (await response.aread()).decode("utf-8", "replace")
                    raise ProviderError(
                        f"Ollama error: {response.status_code} {error_text}",
                        response.status_code,
                    )

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        self._note_malformed("NDJSON line", line)
                        continue
                    if not isinstance(data, dict):
                        self._note_malformed("NDJSON line", line)
                        continue

                    message = data.get("message") or {}
                    if message.get("thinking"):
                        yield StreamChunk.reasoning_delta(message["thinking"])
                    if message.get("content"):
                        yield StreamChunk.content_delta(message["content"])
                    if data.get("done"):
                        prompt_eval_count = data.get("prompt_eval_count") or 0
                        eval_count = data.get("eval_count") or 0
        finally:
            if self.client is None:
                await client.aclose()

        if prompt_eval_count or eval_count:
            yield StreamChunk.usage_report(
                TokenUsage(
                    input_tokens=prompt_eval_count,
                    output_tokens=eval_count,
                    total_tokens=prompt_eval_count + eval_count,
                )
            )

"""
OpenAI Chat Completions adapter — also spoken by Cerebras and Mistral.

Streams text tokens AND tool calls. Tool calls arrive incrementally
(index, then id and name, then argument fragments), are accumulated per
index, and are emitted as one tool_call / tool_calls chunk when the
choice finishes with finish_reason "tool_calls". Usage arrives in the
final chunk (stream_options.include_usage).
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

from openai import AsyncOpenAI

from loom.core.config import ProviderConfig, config
from loom.llm.contracts import StreamChunk, TokenUsage, ToolExecutionResult
from loom.providers.base import ProviderAdapter
from loom.providers.content import to_openai_content
from loom.session.models import ChatMessage, ChatSettings, Role
from loom.tools.naming import resolve_call
from loom.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def build_chat_messages(
    messages: list[ChatMessage],
    system_prompt: str | None,
    tool_executions: list[ToolExecutionResult],
) -> list[dict[str, Any]]:
    chat: list[dict[str, Any]] = []
    if system_prompt:
        chat.append({"role": "system", "content": system_prompt})

    for message in messages:
        if message.role == Role.USER:
            chat.append({"role": "user", "content": to_openai_content(message)})
        else:
            # Assistant history is replayed as plain text
            chat.append({"role": "assistant", "content": message.content})

    if tool_executions:
        chat.append(
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {
                        "id": te.tool_call_id,
                        "type": "function",
                        "function": {
                            "name": te.replay_name,
                            "arguments": json.dumps(te.tool_params),
                        },
                    }
                    for te in tool_executions
                ],
            }
        )
        for te in tool_executions:
            chat.append(
                {"role": "tool", "tool_call_id": te.tool_call_id, "content": te.result}
            )
    return chat


def usage_from_completion(usage: Any) -> TokenUsage:
    prompt_details = getattr(usage, "prompt_tokens_details", None)
    completion_details = getattr(usage, "completion_tokens_details", None)
    return TokenUsage(
        input_tokens=usage.prompt_tokens or 0,
        output_tokens=usage.completion_tokens or 0,
        total_tokens=usage.total_tokens or 0,
        cached_tokens=getattr(prompt_details, "cached_tokens", None),
        reasoning_tokens=getattr(completion_details, "reasoning_tokens", None),
    )


class OpenAIChatAdapter(ProviderAdapter):
    """OpenAI Chat Completions streaming with function calling."""

    name = "openai"

    def __init__(
        self,
        settings: ChatSettings,
        client: AsyncOpenAI | None = None,
        provider_config: ProviderConfig | None = None,
        max_output_tokens: int = 8192,
    ):
        super().__init__(settings, max_output_tokens)
        self.provider_config = provider_config or config.providers
        self.client = client or self._make_client()

    def _make_client(self) -> AsyncOpenAI:
        client_kwargs: dict[str, Any] = {
            "api_key": self._api_key(self.provider_config.openai_api_key),
            "timeout": self.provider_config.request_timeout,
        }
        base_url = self._base_url()
        if base_url:
            client_kwargs["base_url"] = base_url
            logger.info(f"{self.name} using base_url: {base_url}")
        return AsyncOpenAI(**client_kwargs)

    def _base_url(self) -> str:
        return self.settings.base_url

    def _request_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"max_tokens": self.max_output_tokens}
        if self.settings.temperature is not None:
            options["temperature"] = self.settings.temperature
        return options

    async def _stream(
        self,
        messages: list[ChatMessage],
        system_prompt: str | None,
        tools: ToolRegistry,
        tool_executions: list[ToolExecutionResult],
    ) -> AsyncIterator[StreamChunk]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": build_chat_messages(messages, system_prompt, tool_executions),
            "stream": True,
            "stream_options": {"include_usage": True},
            **self._request_options(),
        }
        if len(tools):
            kwargs["tools"] = tools.to_openai_tools()
            kwargs["tool_choice"] = "auto"

        stream = await self.client.chat.completions.create(**kwargs)

        # Accumulate tool calls across chunks, keyed by index
        pending: dict[int, dict[str, str]] = {}

        async for chunk in stream:
            choice = chunk.choices[0] if chunk.choices else None
            delta = choice.delta if choice else None

            if delta is not None and delta.tool_calls:
                for tc in delta.tool_calls:
                    entry = pending.setdefault(tc.index, {"id": "", "name": "", "args": ""})
                    if tc.id:
                        entry["id"] = tc.id
                    if tc.function and tc.function.name:
                        entry["name"] = tc.function.name
                    if tc.function and tc.function.arguments:
                        entry["args"] += tc.function.arguments

            if delta is not None and delta.content:
                yield StreamChunk.content_delta(delta.content)

            if choice is not None and choice.finish_reason == "tool_calls":
                calls_chunk = StreamChunk.for_calls(self._parse_calls(pending))
                pending = {}
                if calls_chunk:
                    yield calls_chunk

            usage = getattr(chunk, "usage", None)
            if usage:
                yield StreamChunk.usage_report(usage_from_completion(usage))

    def _parse_calls(self, pending: dict[int, dict[str, str]]) -> list:
        calls = []
        for index in sorted(pending):
            entry = pending[index]
            try:
                params = json.loads(entry["args"]) if entry["args"] else {}
            except json.JSONDecodeError:
                self._note_malformed("tool arguments", entry["args"])
                continue
            calls.append(resolve_call(entry["name"], entry["id"], params))
        return calls


class CerebrasAdapter(OpenAIChatAdapter):
    name = "cerebras"

    def _make_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=self._api_key(self.provider_config.cerebras_api_key),
            base_url=self._base_url(),
            timeout=self.provider_config.request_timeout,
        )

    def _base_url(self) -> str:
        return self.settings.base_url or self.provider_config.cerebras_base_url

    def _request_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"max_completion_tokens": self.max_output_tokens}
        if self.settings.temperature is not None:
            options["temperature"] = self.settings.temperature
        return options


class MistralAdapter(OpenAIChatAdapter):
    name = "mistral"

    def _make_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=self._api_key(self.provider_config.mistral_api_key),
            base_url=self._base_url(),
            timeout=self.provider_config.request_timeout,
        )

    def _base_url(self) -> str:
        return self.settings.base_url or self.provider_config.mistral_base_url

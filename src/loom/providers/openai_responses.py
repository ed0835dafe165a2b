"""
OpenAI Responses adapter — reasoning models (gpt-5*, o1/o3/o4*).

Chat Completions does not expose reasoning for these models; the
Responses API streams a reasoning summary. History is flattened into a
single input string:

    User: …

    Assistant: …

    [Tool Result for web_search]: …

and the system prompt travels as `instructions`.

Reasoning sources, first one that shows up wins:
summary deltas → summary done → reasoning text deltas → reasoning text done.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

from openai import AsyncOpenAI

from loom.core.config import ProviderConfig
from loom.llm.contracts import StreamChunk, TokenUsage, ToolExecutionResult
from loom.providers.content import to_flat_text
from loom.providers.openai_llm import OpenAIChatAdapter
from loom.session.models import ChatMessage, ChatSettings, Role
from loom.tools.naming import resolve_call
from loom.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def build_responses_input(
    messages: list[ChatMessage], tool_executions: list[ToolExecutionResult]
) -> str:
    parts = []
    for message in messages:
        role = "User" if message.role == Role.USER else "Assistant"
        parts.append(f"{role}: {to_flat_text(message)}")
    for te in tool_executions:
        parts.append(f"[Tool Result for {te.replay_name}]: {te.result}")
    return "\n\n".join(parts)


class OpenAIResponsesAdapter(OpenAIChatAdapter):
    name = "openai-responses"

    def __init__(
        self,
        settings: ChatSettings,
        client: AsyncOpenAI | None = None,
        provider_config: ProviderConfig | None = None,
        max_output_tokens: int = 16384,
    ):
        super().__init__(settings, client, provider_config, max_output_tokens)

    async def _stream(
        self,
        messages: list[ChatMessage],
        system_prompt: str | None,
        tools: ToolRegistry,
        tool_executions: list[ToolExecutionResult],
    ) -> AsyncIterator[StreamChunk]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "input": build_responses_input(messages, tool_executions),
            "stream": True,
            "reasoning": {"effort": "medium", "summary": "auto"},
            "max_output_tokens": self.max_output_tokens,
        }
        if system_prompt:
            kwargs["instructions"] = system_prompt
        if len(tools):
            kwargs["tools"] = tools.to_responses_tools()
            kwargs["tool_choice"] = "auto"

        stream = await self.client.responses.create(**kwargs)

        saw_summary_delta = False
        saw_reasoning_delta = False
        # output_index -> {id, name, arguments}
        function_calls: dict[int, dict[str, str]] = {}
        usage: TokenUsage | None = None

        async for event in stream:
            event_type = _field(event, "type", "")

            if event_type == "response.output_text.delta":
                delta = _field(event, "delta")
                if delta:
                    yield StreamChunk.content_delta(delta)

            elif event_type == "response.reasoning_summary_text.delta":
                delta = _field(event, "delta")
                if delta:
                    saw_summary_delta = True
                    yield StreamChunk.reasoning_delta(delta)

            elif event_type == "response.reasoning_summary_text.done":
                text = _field(event, "text")
                if text and not saw_summary_delta:
                    yield StreamChunk.reasoning_delta(text)

            elif event_type == "response.reasoning_text.delta":
                delta = _field(event, "delta")
                if delta and not saw_summary_delta:
                    saw_reasoning_delta = True
                    yield StreamChunk.reasoning_delta(delta)

            elif event_type == "response.reasoning_text.done":
                text = _field(event, "text")
                if text and not saw_summary_delta and not saw_reasoning_delta:
                    yield StreamChunk.reasoning_delta(text)

            elif event_type == "response.output_item.added":
                item = _field(event, "item")
                index = _field(event, "output_index", 0)
                if _field(item, "type") == "function_call":
                    function_calls[index] = {
                        "id": _field(item, "call_id") or f"call_{index}",
                        "name": _field(item, "name", ""),
                        "arguments": "",
                    }

            elif event_type == "response.function_call_arguments.delta":
                entry = function_calls.get(_field(event, "output_index", 0))
                delta = _field(event, "delta")
                if entry is not None and delta:
                    entry["arguments"] += delta

            elif event_type == "response.completed":
                usage = self._usage(_field(_field(event, "response"), "usage"))

        calls = []
        for index in sorted(function_calls):
            entry = function_calls[index]
            try:
                params = json.loads(entry["arguments"] or "{}")
            except json.JSONDecodeError:
                self._note_malformed("function call arguments", entry["arguments"])
                continue
            calls.append(resolve_call(entry["name"], entry["id"], params))

        calls_chunk = StreamChunk.for_calls(calls)
        if calls_chunk:
            yield calls_chunk
        if usage:
            yield StreamChunk.usage_report(usage)

    @staticmethod
    def _usage(raw: Any) -> TokenUsage | None:
        if raw is None:
            return None
        input_tokens = _field(raw, "input_tokens", 0) or 0
        output_tokens = _field(raw, "output_tokens", 0) or 0
        details = _field(raw, "output_tokens_details")
        reasoning = _field(details, "reasoning_tokens") if details is not None else None
        cached_details = _field(raw, "input_tokens_details")
        cached = (
            _field(cached_details, "cached_tokens") if cached_details is not None else None
        )
        return TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=_field(raw, "total_tokens") or input_tokens + output_tokens,
            cached_tokens=cached,
            reasoning_tokens=reasoning or None,
        )

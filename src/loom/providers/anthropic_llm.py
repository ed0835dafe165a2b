"""
Anthropic Messages adapter — streaming with tool use and extended thinking.

Raw stream events:
  message_start         → input / cache-read usage
  content_block_start   → thinking (signature) or tool_use (id, name)
  content_block_delta   → text_delta | thinking_delta | signature_delta | input_json_delta
  content_block_stop    → a tool_use block is complete
  message_delta         → output usage

With thinking enabled, Anthropic requires the signed thinking block to
precede tool_use blocks when tool results are sent back. The signature
and thinking text ride along on each ToolCallInfo and are replayed from
the ToolExecutionResult on the next round. Without a signature, thinking
is switched off for that round.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

from anthropic import AsyncAnthropic

from loom.core.config import ProviderConfig, config
from loom.llm.contracts import StreamChunk, TokenUsage, ToolExecutionResult
from loom.providers.base import ProviderAdapter
from loom.providers.content import to_anthropic_content
from loom.session.models import BlockType, ChatMessage, ChatSettings, Role
from loom.tools.naming import resolve_call
from loom.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

INTERLEAVED_THINKING_BETA = "interleaved-thinking-2025-05-14"
MIN_THINKING_BUDGET = 1024


def _assistant_content(message: ChatMessage) -> str | list[dict[str, Any]]:
    # Thinking blocks cannot be replayed without their signature, send as text
    blocks = []
    for block in message.content_blocks:
        if block.type == BlockType.TEXT and block.text:
            blocks.append({"type": "text", "text": block.text})
        elif block.type == BlockType.REASONING and block.reasoning:
            blocks.append({"type": "text", "text": block.reasoning})
    if blocks:
        return blocks
    return message.content or "..."


def thinking_budget(requested: int | None, max_tokens: int) -> int:
    budget = int(requested) if requested else MIN_THINKING_BUDGET
    return max(MIN_THINKING_BUDGET, min(budget, max_tokens - 1))


def build_anthropic_messages(
    messages: list[ChatMessage],
    tool_executions: list[ToolExecutionResult],
    thinking_enabled: bool,
) -> tuple[list[dict[str, Any]], bool]:
    """
    Vendor messages plus whether a signed thinking block was replayed.
    """
    out: list[dict[str, Any]] = []
    for message in messages:
        if message.role == Role.ASSISTANT:
            out.append({"role": "assistant", "content": _assistant_content(message)})
        else:
            out.append({"role": "user", "content": to_anthropic_content(message)})

    replayed_thinking = False
    if tool_executions:
        signed = next(
            (te for te in tool_executions if te.anthropic_thinking_signature),
            None,
        )
        assistant_blocks: list[dict[str, Any]] = []
        if thinking_enabled and signed is not None:
            assistant_blocks.append(
                {
                    "type": "thinking",
                    "signature": signed.anthropic_thinking_signature,
                    "thinking": signed.anthropic_thinking or "",
                }
            )
            replayed_thinking = True
        assistant_blocks.extend(
            {
                "type": "tool_use",
                "id": te.tool_call_id,
                "name": te.replay_name,
                "input": te.tool_params,
            }
            for te in tool_executions
        )
        out.append({"role": "assistant", "content": assistant_blocks})
        out.append(
            {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": te.tool_call_id,
                        "content": te.result,
                        "is_error": te.is_error,
                    }
                    for te in tool_executions
                ],
            }
        )
    return out, replayed_thinking


class AnthropicAdapter(ProviderAdapter):
    name = "anthropic"

    def __init__(
        self,
        settings: ChatSettings,
        client: AsyncAnthropic | None = None,
        provider_config: ProviderConfig | None = None,
        max_output_tokens: int = 8192,
    ):
        super().__init__(settings, max_output_tokens)
        self.provider_config = provider_config or config.providers
        self.client = client or AsyncAnthropic(
            api_key=self._api_key(self.provider_config.anthropic_api_key),
            default_headers={"anthropic-beta": INTERLEAVED_THINKING_BETA},
            timeout=self.provider_config.request_timeout,
        )

    async def _stream(
        self,
        messages: list[ChatMessage],
        system_prompt: str | None,
        tools: ToolRegistry,
        tool_executions: list[ToolExecutionResult],
    ) -> AsyncIterator[StreamChunk]:
        thinking_enabled = self.settings.anthropic_thinking_enabled
        vendor_messages, replayed_thinking = build_anthropic_messages(
            messages, tool_executions, thinking_enabled
        )

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_output_tokens,
            "messages": vendor_messages,
            "stream": True,
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        if self.settings.temperature is not None and not thinking_enabled:
            kwargs["temperature"] = self.settings.temperature

        can_think = thinking_enabled and (not tool_executions or replayed_thinking)
        if can_think and self.max_output_tokens > MIN_THINKING_BUDGET:
            kwargs["thinking"] = {
                "type": "enabled",
                "budget_tokens": thinking_budget(
                    self.settings.anthropic_thinking_budget_tokens,
                    self.max_output_tokens,
                ),
            }
        elif thinking_enabled:
            logger.debug("No signed thinking block to replay, thinking disabled this round")

        if len(tools):
            kwargs["tools"] = tools.to_anthropic_tools()

        stream = await self.client.messages.create(**kwargs)

        input_tokens = 0
        output_tokens = 0
        cached_tokens = 0
        saw_usage = False
        thinking_signature = ""
        thinking_text = ""
        current_tool: dict[str, str] | None = None
        calls = []

        async for event in stream:
            event_type = event.type

            if event_type == "message_start":
                thinking_signature = ""
                thinking_text = ""
                usage = getattr(event.message, "usage", None)
                if usage is not None:
                    saw_usage = True
                    input_tokens = usage.input_tokens or 0
                    cached_tokens = getattr(usage, "cache_read_input_tokens", 0) or 0

            elif event_type == "content_block_start":
                block = event.content_block
                if block.type == "thinking":
                    thinking_signature = getattr(block, "signature", "") or ""
                    thinking_text = getattr(block, "thinking", "") or ""
                elif block.type == "tool_use":
                    current_tool = {"id": block.id, "name": block.name, "input": ""}

            elif event_type == "content_block_delta":
                delta = event.delta
                if delta.type == "text_delta":
                    yield StreamChunk.content_delta(delta.text)
                elif delta.type == "thinking_delta":
                    thinking_text += delta.thinking
                    yield StreamChunk.reasoning_delta(delta.thinking)
                elif delta.type == "signature_delta":
                    thinking_signature = delta.signature
                elif delta.type == "input_json_delta" and current_tool is not None:
                    current_tool["input"] += delta.partial_json

            elif event_type == "content_block_stop" and current_tool is not None:
                try:
                    params = json.loads(current_tool["input"] or "{}")
                except json.JSONDecodeError:
                    self._note_malformed("tool input", current_tool["input"])
                else:
                    calls.append(
                        resolve_call(
                            current_tool["name"],
                            current_tool["id"],
                            params,
                            thinking_signature=thinking_signature or None,
                            thinking=thinking_text or None,
                        )
                    )
                current_tool = None

            elif event_type == "message_delta":
                usage = getattr(event, "usage", None)
                if usage is not None:
                    saw_usage = True
                    output_tokens = usage.output_tokens or 0

        calls_chunk = StreamChunk.for_calls(calls)
        if calls_chunk:
            yield calls_chunk
        if saw_usage:
            yield StreamChunk.usage_report(
                TokenUsage(
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    total_tokens=input_tokens + output_tokens,
                    cached_tokens=cached_tokens or None,
                )
            )

"""
Google Gemini adapter — streamGenerateContent over SSE.

No SDK: POST {base}/models/{model}:streamGenerateContent?alt=sse and
read `data: {...}` lines off the response with httpx. Each payload
carries candidates[].content.parts[]:

  {"text": "..."}                      content
  {"text": "...", "thought": true}     reasoning
  {"functionCall": {"name", "args"}}   tool call (Gemini assigns no id)

Gemini 3 models attach a part-level thoughtSignature to function calls;
it must be echoed on the replayed functionCall part.
"""

from __future__ import annotations

import json
import logging
import random
import string
import time
from typing import Any, AsyncIterator

import httpx

from loom.core.config import ProviderConfig, config
from loom.llm.contracts import StreamChunk, TokenUsage, ToolExecutionResult
from loom.providers.base import ProviderAdapter, ProviderError
from loom.providers.content import to_gemini_parts
from loom.session.models import ChatMessage, ChatSettings, Role
from loom.tools.naming import resolve_call
from loom.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

SKIP_THOUGHT_SIGNATURE = "skip_thought_signature_validator"


def generate_call_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"gc_{int(time.time() * 1000)}_{suffix}"


def is_gemini_3(model: str) -> bool:
    return "gemini-3" in model


def is_thinking_capable(model: str) -> bool:
    return "gemini-2.5" in model or is_gemini_3(model)


def build_gemini_contents(
    messages: list[ChatMessage],
    tool_executions: list[ToolExecutionResult],
    model: str,
) -> list[dict[str, Any]]:
    contents: list[dict[str, Any]] = []
    for message in messages:
        if message.role == Role.ASSISTANT:
            contents.append({"role": "model", "parts": [{"text": message.content}]})
        else:
            contents.append({"role": "user", "parts": to_gemini_parts(message)})

    if tool_executions:
        call_parts = []
        for te in tool_executions:
            part: dict[str, Any] = {
                "functionCall": {"name": te.replay_name, "args": te.tool_params}
            }
            if is_gemini_3(model):
                if not te.gemini_thought_signature:
                    logger.warning(
                        f"No thought signature for tool {te.tool_name}, using validator skip"
                    )
                part["thoughtSignature"] = (
                    te.gemini_thought_signature or SKIP_THOUGHT_SIGNATURE
                )
            call_parts.append(part)
        contents.append({"role": "model", "parts": call_parts})
        contents.append(
            {
                "role": "user",
                "parts": [
                    {
                        "functionResponse": {
                            "name": te.replay_name,
                            "response": {"content": te.result, "isError": te.is_error},
                        }
                    }
                    for te in tool_executions
                ],
            }
        )
    return contents


class GoogleAdapter(ProviderAdapter):
    name = "google"

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

    def _generation_config(self) -> dict[str, Any]:
        generation: dict[str, Any] = {"maxOutputTokens": self.max_output_tokens}
        if self.settings.temperature is not None:
            generation["temperature"] = self.settings.temperature

        if is_thinking_capable(self.model):
            thinking: dict[str, Any] = {"includeThoughts": True}
            if self.settings.google_thinking_enabled:
                if is_gemini_3(self.model) and self.settings.google_thinking_level:
                    thinking["thinkingLevel"] = self.settings.google_thinking_level.upper()
                elif (
                    not is_gemini_3(self.model)
                    and self.settings.google_thinking_budget is not None
                ):
                    thinking["thinkingBudget"] = self.settings.google_thinking_budget
            generation["thinkingConfig"] = thinking
        return generation

    def _endpoint(self) -> str:
        base = (self.settings.base_url or self.provider_config.google_base_url).rstrip("/")
        return f"{base}/models/{self.model}:streamGenerateContent"

    async def _stream(
        self,
        messages: list[ChatMessage],
        system_prompt: str | None,
        tools: ToolRegistry,
        tool_executions: list[ToolExecutionResult],
    ) -> AsyncIterator[StreamChunk]:
        body: dict[str, Any] = {
            "contents": build_gemini_contents(messages, tool_executions, self.model),
            "generationConfig": self._generation_config(),
        }
        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        gemini_tools = tools.to_gemini_tools()
        if gemini_tools:
            body["tools"] = gemini_tools
            body["toolConfig"] = {"functionCallingConfig": {"mode": "AUTO"}}

        api_key = self._api_key(self.provider_config.google_api_key)
        client = self.client or httpx.AsyncClient(
            timeout=self.provider_config.request_timeout
        )
        usage: TokenUsage | None = None
        calls = []

        try:
            async with client.stream(
                "POST",
                self._endpoint(),
                params={"alt": "sse", "key": api_key},
                json=body,
                headers={"Accept": "text/event-stream"},
            ) as response:
                if response.status_code >= 400:
                    error_text = (await response.aread()).decode("utf-8", "replace")
                    raise ProviderError(
                        f"Google Gemini API error: {response.status_code} {error_text}",
                        response.status_code,
                    )

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    raw = line[len("data:"):].strip()
                    if not raw or raw == "[DONE]":
                        continue
                    try:
                        payload = json.loads(raw)
                    except json.JSONDecodeError:
                        self._note_malformed("SSE line", raw)
                        continue
                    if not isinstance(payload, dict):
                        self._note_malformed("SSE line", raw)
                        continue

                    usage = self._usage(payload.get("usageMetadata")) or usage
                    for chunk in self._parse_candidates(payload, calls):
                        yield chunk
        finally:
            if self.client is None:
                await client.aclose()

        calls_chunk = StreamChunk.for_calls(calls)
        if calls_chunk:
            yield calls_chunk
        if usage:
            yield StreamChunk.usage_report(usage)

    def _parse_candidates(self, payload: dict[str, Any], calls: list) -> list[StreamChunk]:
        chunks = []
        for candidate in payload.get("candidates") or []:
            parts = (candidate.get("content") or {}).get("parts") or []
            for part in parts:
                text = part.get("text")
                if part.get("thought") is True:
                    if text:
                        chunks.append(StreamChunk.reasoning_delta(text))
                    continue
                if text:
                    chunks.append(StreamChunk.content_delta(text))

                function_call = part.get("functionCall")
                if function_call and function_call.get("name"):
                    args = function_call.get("args", function_call.get("arguments", {}))
                    if isinstance(args, str):
                        try:
                            args = json.loads(args)
                        except json.JSONDecodeError:
                            self._note_malformed("function call args", args)
                            continue
                    calls.append(
                        resolve_call(
                            function_call["name"],
                            generate_call_id(),
                            args or {},
                            thought_signature=part.get("thoughtSignature"),
                        )
                    )
        return chunks

    @staticmethod
    def _usage(metadata: dict[str, Any] | None) -> TokenUsage | None:
        if not metadata:
            return None
        input_tokens = metadata.get("promptTokenCount", 0) or 0
        output_tokens = metadata.get("candidatesTokenCount", 0) or 0
        return TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=metadata.get("totalTokenCount") or input_tokens + output_tokens,
            cached_tokens=metadata.get("cachedContentTokenCount"),
            reasoning_tokens=metadata.get("thoughtsTokenCount"),
        )

"""
LLM Contracts — the fixed structures that cross the adapter boundary.

Every provider adapter yields StreamChunks and nothing else. Every tool
round produces ToolExecutionResults that the next round replays. Every
turn emits TurnEvents to whoever is listening (HTTP stream, tests).

- StreamChunk: content | reasoning | usage | tool_call | tool_calls
- ToolCallInfo: one call as the model asked for it
- ToolExecutionResult: one settled call, with replay metadata
- TokenUsage: token counts summed across rounds
- TurnEvent: what the orchestrator reports while a turn runs
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class StreamChunkType(str, Enum):
    """The five kinds of chunk an adapter may emit."""

    CONTENT = "content"
    REASONING = "reasoning"
    USAGE = "usage"
    TOOL_CALL = "tool_call"
    TOOL_CALLS = "tool_calls"


# ═══════════════════════════════════════════════════════════════════════════════
# USAGE
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cached_tokens: int | None = None
    reasoning_tokens: int | None = None

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            cached_tokens=_add_optional(self.cached_tokens, other.cached_tokens),
            reasoning_tokens=_add_optional(
                self.reasoning_tokens, other.reasoning_tokens
            ),
        )

    def to_dict(self) -> dict[str, int]:
        data = {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }
        if self.cached_tokens is not None:
            data["cached_tokens"] = self.cached_tokens
        if self.reasoning_tokens is not None:
            data["reasoning_tokens"] = self.reasoning_tokens
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenUsage:
        return cls(
            input_tokens=int(data.get("input_tokens", 0)),
            output_tokens=int(data.get("output_tokens", 0)),
            total_tokens=int(data.get("total_tokens", 0)),
            cached_tokens=data.get("cached_tokens"),
            reasoning_tokens=data.get("reasoning_tokens"),
        )


def _add_optional(a: int | None, b: int | None) -> int | None:
    if a is None and b is None:
        return None
    return (a or 0) + (b or 0)


# ═══════════════════════════════════════════════════════════════════════════════
# TOOL CALLS
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class ToolCallInfo:
    """
    A tool call exactly as the model requested it.

    `name` is the bare logical name (``search_issues``); `original_name`
    is what the provider saw (``mcp_github_search_issues``) and must be
    echoed back verbatim on replay.
    """

    id: str
    name: str
    original_name: str
    params: dict[str, Any] = field(default_factory=dict)
    source: str | None = None
    server_id: str | None = None
    # Anthropic: signed thinking block preceding the tool_use
    thinking_signature: str | None = None
    thinking: str | None = None
    # Gemini 3: part-level thoughtSignature
    thought_signature: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "original_name": self.original_name,
            "params": self.params,
        }
        if self.source:
            data["source"] = self.source
        if self.server_id:
            data["server_id"] = self.server_id
        if self.thinking_signature:
            data["thinking_signature"] = self.thinking_signature
        if self.thought_signature:
            data["thought_signature"] = self.thought_signature
        return data


@dataclass
class ToolExecutionResult:
    """
    A settled tool call, replayed to the provider on the next round.

    The replay fields are opaque tokens some providers insist on seeing
    again before they accept the tool output.
    """

    tool_call_id: str
    tool_name: str
    tool_params: dict[str, Any]
    result: str
    is_error: bool = False
    original_tool_name: str | None = None
    anthropic_thinking_signature: str | None = None
    anthropic_thinking: str | None = None
    gemini_thought_signature: str | None = None

    @property
    def replay_name(self) -> str:
        """The name the provider originally used for this call."""
        return self.original_tool_name or self.tool_name

    @classmethod
    def for_call(
        cls, call: ToolCallInfo, result: str, is_error: bool = False
    ) -> ToolExecutionResult:
        return cls(
            tool_call_id=call.id,
            tool_name=call.name,
            original_tool_name=call.original_name,
            tool_params=call.params,
            result=result,
            is_error=is_error,
            anthropic_thinking_signature=call.thinking_signature,
            anthropic_thinking=call.thinking,
            gemini_thought_signature=call.thought_signature,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_call_id": self.tool_call_id,
            "tool_name": self.tool_name,
            "original_tool_name": self.original_tool_name,
            "tool_params": self.tool_params,
            "result": self.result,
            "is_error": self.is_error,
            "anthropic_thinking_signature": self.anthropic_thinking_signature,
            "anthropic_thinking": self.anthropic_thinking,
            "gemini_thought_signature": self.gemini_thought_signature,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolExecutionResult:
        return cls(
            tool_call_id=data["tool_call_id"],
            tool_name=data["tool_name"],
            tool_params=data.get("tool_params") or {},
            result=data.get("result", ""),
            is_error=bool(data.get("is_error", False)),
            original_tool_name=data.get("original_tool_name"),
            anthropic_thinking_signature=data.get("anthropic_thinking_signature"),
            anthropic_thinking=data.get("anthropic_thinking"),
            gemini_thought_signature=data.get("gemini_thought_signature"),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# STREAM CHUNKS
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class StreamChunk:
    """
    One normalized unit from a provider stream.

    Usage:
        yield StreamChunk.content_delta("Hello")
        yield StreamChunk.single_call(call)
        yield StreamChunk.batch_calls([call_a, call_b])
    """

    type: StreamChunkType
    content: str = ""
    reasoning: str = ""
    usage: TokenUsage | None = None
    tool_call: ToolCallInfo | None = None
    tool_calls: list[ToolCallInfo] = field(default_factory=list)

    @classmethod
    def content_delta(cls, text: str) -> StreamChunk:
        return cls(type=StreamChunkType.CONTENT, content=text)

    @classmethod
    def reasoning_delta(cls, text: str) -> StreamChunk:
        return cls(type=StreamChunkType.REASONING, reasoning=text)

    @classmethod
    def usage_report(cls, usage: TokenUsage) -> StreamChunk:
        return cls(type=StreamChunkType.USAGE, usage=usage)

    @classmethod
    def single_call(cls, call: ToolCallInfo) -> StreamChunk:
        return cls(type=StreamChunkType.TOOL_CALL, tool_call=call)

    @classmethod
    def batch_calls(cls, calls: list[ToolCallInfo]) -> StreamChunk:
        return cls(type=StreamChunkType.TOOL_CALLS, tool_calls=list(calls))

    @classmethod
    def for_calls(cls, calls: list[ToolCallInfo]) -> StreamChunk | None:
        """tool_call for one call, tool_calls for several, None for none."""
        if not calls:
            return None
        if len(calls) == 1:
            return cls.single_call(calls[0])
        return cls.batch_calls(calls)

    @property
    def calls(self) -> list[ToolCallInfo]:
        if self.type == StreamChunkType.TOOL_CALL and self.tool_call:
            return [self.tool_call]
        if self.type == StreamChunkType.TOOL_CALLS:
            return list(self.tool_calls)
        return []

    def to_frame(self) -> dict[str, Any]:
        """The SSE payload for this chunk."""
        if self.type == StreamChunkType.CONTENT:
            return {"content": self.content}
        if self.type == StreamChunkType.REASONING:
            return {"reasoning": self.reasoning}
        if self.type == StreamChunkType.USAGE:
            return {"usage": self.usage.to_dict() if self.usage else {}}
        if self.type == StreamChunkType.TOOL_CALL:
            return {"tool_call": self.tool_call.to_dict() if self.tool_call else {}}
        return {"tool_calls": [tc.to_dict() for tc in self.tool_calls]}


# ═══════════════════════════════════════════════════════════════════════════════
# TURN EVENTS
# ═══════════════════════════════════════════════════════════════════════════════


class TurnEventType(str, Enum):
    """Events emitted by the orchestrator while a turn runs."""

    CONTENT = "content"
    REASONING = "reasoning"
    TOOL_CALL = "tool_call"  # call announced, block appended as running
    TOOL_RESULT = "tool_result"  # call settled in place
    ARTIFACT = "artifact"
    USAGE = "usage"
    STATUS = "status"  # search status line, None clears it
    TOKEN_REFRESH = "token_refresh"
    DONE = "done"
    ERROR = "error"


@dataclass
class TurnEvent:
    type: TurnEventType
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def content(cls, text: str) -> TurnEvent:
        return cls(TurnEventType.CONTENT, {"content": text})

    @classmethod
    def reasoning(cls, text: str) -> TurnEvent:
        return cls(TurnEventType.REASONING, {"reasoning": text})

    @classmethod
    def tool_call(cls, tool_call: dict[str, Any]) -> TurnEvent:
        return cls(TurnEventType.TOOL_CALL, {"tool_call": tool_call})

    @classmethod
    def tool_result(cls, tool_call: dict[str, Any]) -> TurnEvent:
        return cls(TurnEventType.TOOL_RESULT, {"tool_call": tool_call})

    @classmethod
    def artifact(cls, artifact: dict[str, Any]) -> TurnEvent:
        return cls(TurnEventType.ARTIFACT, {"artifact": artifact})

    @classmethod
    def usage(cls, usage: TokenUsage) -> TurnEvent:
        return cls(TurnEventType.USAGE, {"usage": usage.to_dict()})

    @classmethod
    def status(cls, message: str | None, tool_call_id: str | None = None) -> TurnEvent:
        return cls(
            TurnEventType.STATUS, {"status": message, "tool_call_id": tool_call_id}
        )

    @classmethod
    def token_refresh(cls, access_token: str, expires_at: Any = None) -> TurnEvent:
        return cls(
            TurnEventType.TOKEN_REFRESH,
            {"access_token": access_token, "expires_at": expires_at},
        )

    @classmethod
    def done(cls, phase: str, message: dict[str, Any]) -> TurnEvent:
        return cls(TurnEventType.DONE, {"phase": phase, "message": message})

    @classmethod
    def error(cls, message: str) -> TurnEvent:
        return cls(TurnEventType.ERROR, {"error": message})

    def to_frame(self) -> dict[str, Any]:
        return {"type": self.type.value, **self.payload}

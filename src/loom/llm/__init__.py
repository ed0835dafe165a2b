"""
LLM Package — the turn driver and the structures it exchanges.

This package provides:
- StreamChunk: what every provider adapter yields
- ToolCallInfo / ToolExecutionResult: one call asked for, one call settled
- TurnEvent: what a running turn reports
- TurnOrchestrator (loom.llm.core): the explicit tool-round loop
"""

from loom.llm.contracts import (
    StreamChunk,
    StreamChunkType,
    TokenUsage,
    ToolCallInfo,
    ToolExecutionResult,
    TurnEvent,
    TurnEventType,
)

__all__ = [
    "StreamChunk",
    "StreamChunkType",
    "TokenUsage",
    "ToolCallInfo",
    "ToolExecutionResult",
    "TurnEvent",
    "TurnEventType",
]

"""
Turn accumulator — everything one turn builds up, owned by that turn.

Content blocks keep strict arrival order. Text and reasoning are open
spans that are mutually exclusive: opening one flushes the other.
Tool calls are appended as running blocks and settled in place by id.
Nothing here outlives the turn; build_message() produces the committed
assistant message.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

from loom.artifacts.extractor import ExtractorState
from loom.llm.contracts import TokenUsage, ToolCallInfo, ToolExecutionResult
from loom.session.models import (
    BlockType,
    ChatMessage,
    ContentBlock,
    Role,
    ToolCall,
    ToolCallStatus,
)
from loom.tools.artifacts import ArtifactWorkspace


@dataclass
class RecursionState:
    """Round depth plus per-tool call counts for one turn. Never persisted."""

    depth: int = 0
    call_counts: Counter = field(default_factory=Counter)

    def record(self, tool_name: str) -> int:
        self.call_counts[tool_name] += 1
        return self.call_counts[tool_name]

    def count(self, tool_name: str) -> int:
        return self.call_counts[tool_name]


class TurnState:
    def __init__(self, workspace: ArtifactWorkspace | None = None):
        self.workspace = workspace or ArtifactWorkspace()
        self.blocks: list[ContentBlock] = []
        self.executions: list[ToolExecutionResult] = []
        self.extractor = ExtractorState()
        self.recursion = RecursionState()
        self.usage: TokenUsage | None = None
        self._text = ""
        self._reasoning = ""
        # call id -> index of its block in self.blocks
        self._call_blocks: dict[str, int] = {}
        self._call_order: list[int] = []

    # ─── Spans ────────────────────────────────────────────────

    def append_text(self, text: str) -> None:
        if not text:
            return
        self.flush_reasoning()
        self._text += text

    def append_reasoning(self, reasoning: str) -> None:
        if not reasoning:
            return
        self.flush_text()
        self._reasoning += reasoning

    def flush_text(self) -> None:
        if self._text:
            self.blocks.append(ContentBlock.text_block(self._text))
            self._text = ""

    def flush_reasoning(self) -> None:
        if not self._reasoning:
            return
        last = self.blocks[-1] if self.blocks else None
        if last is not None and last.type == BlockType.REASONING:
            self.blocks[-1] = ContentBlock.reasoning_block(
                (last.reasoning or "") + self._reasoning
            )
        else:
            self.blocks.append(ContentBlock.reasoning_block(self._reasoning))
        self._reasoning = ""

    def close_spans(self) -> None:
        self.flush_reasoning()
        self.flush_text()

    def add_text_block(self, text: str) -> None:
        """A standalone text block, never merged into the open span."""
        self.close_spans()
        self.blocks.append(ContentBlock.text_block(text))

    def add_artifact_block(self, artifact_id: str) -> None:
        self.close_spans()
        self.blocks.append(ContentBlock.artifact_block(artifact_id))

    # ─── Tool calls ───────────────────────────────────────────

    def start_tool_call(self, call: ToolCallInfo) -> ToolCall:
        self.close_spans()
        tool_call = ToolCall(
            id=call.id,
            name=call.name,
            original_name=call.original_name,
            params=call.params,
            source=call.source,
            server_id=call.server_id,
        ).with_status(ToolCallStatus.RUNNING)
        self.blocks.append(ContentBlock.tool_call_block(tool_call))
        index = len(self.blocks) - 1
        self._call_blocks[call.id] = index
        self._call_order.append(index)
        return tool_call

    def settle_tool_call(self, call_id: str, result: str, is_error: bool) -> ToolCall:
        index = self._call_blocks[call_id]
        settled = self.blocks[index].tool_call.settle(result, is_error)
        self.blocks[index] = ContentBlock.tool_call_block(settled)
        return settled

    @property
    def tool_calls(self) -> list[ToolCall]:
        return [self.blocks[index].tool_call for index in self._call_order]

    # ─── Usage & output ───────────────────────────────────────

    def add_usage(self, usage: TokenUsage) -> None:
        self.usage = usage if self.usage is None else self.usage + usage

    @property
    def content(self) -> str:
        text = "".join(b.text or "" for b in self.blocks if b.type == BlockType.TEXT)
        return text + self._text

    def build_message(self, model: str | None = None) -> ChatMessage:
        self.close_spans()
        return ChatMessage(
            role=Role.ASSISTANT,
            content=self.content,
            content_blocks=tuple(self.blocks),
            tool_calls=tuple(self.tool_calls),
            usage=self.usage,
            model=model,
        )

"""
Session Models — conversations, messages, content blocks, artifacts.

  Conversation → ChatMessage → ContentBlock
               → Artifact → ArtifactVersion

Content blocks keep strict arrival order: text, reasoning, tool calls
and artifacts interleave exactly as they streamed.

All models are frozen dataclasses — create new instances for modifications.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from loom.llm.contracts import TokenUsage


def generate_id() -> str:
    return uuid.uuid4().hex


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class BlockType(str, Enum):
    TEXT = "text"
    REASONING = "reasoning"
    TOOL_CALL = "tool_call"
    ARTIFACT = "artifact"


class ToolCallStatus(str, Enum):
    """pending → running → completed | error. Never backwards."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def settled(self) -> bool:
        return self in (ToolCallStatus.COMPLETED, ToolCallStatus.ERROR)


class ArtifactType(str, Enum):
    CODE = "code"
    HTML = "html"
    REACT = "react"
    MARKDOWN = "markdown"
    SVG = "svg"
    MERMAID = "mermaid"
    DOCUMENT = "document"
    SPREADSHEET = "spreadsheet"
    PRESENTATION = "presentation"

    @classmethod
    def values(cls) -> list[str]:
        return [t.value for t in cls]

    @classmethod
    def is_valid(cls, value: str | None) -> bool:
        return value in cls.values()


class InvalidTransition(ValueError):
    """A tool call was asked to move to a status it cannot reach."""


# ═══════════════════════════════════════════════════════════════════════════════
# ATTACHMENTS
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Attachment:
    """An image or file riding along with a user message. data is base64."""

    type: str  # "image" | "file"
    name: str
    mime_type: str
    data: str

    @property
    def is_image(self) -> bool:
        return self.type == "image"

    def to_dict(self) -> dict[str, str]:
        return {
            "type": self.type,
            "name": self.name,
            "mime_type": self.mime_type,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Attachment:
        return cls(
            type=data.get("type", "file"),
            name=data.get("name", ""),
            mime_type=data.get("mime_type", "application/octet-stream"),
            data=data.get("data", ""),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# TOOL CALLS & CONTENT BLOCKS
# ═══════════════════════════════════════════════════════════════════════════════


_ALLOWED_TRANSITIONS = {
    ToolCallStatus.PENDING: {ToolCallStatus.RUNNING, ToolCallStatus.COMPLETED, ToolCallStatus.ERROR},
    ToolCallStatus.RUNNING: {ToolCallStatus.COMPLETED, ToolCallStatus.ERROR},
    ToolCallStatus.COMPLETED: set(),
    ToolCallStatus.ERROR: set(),
}


@dataclass(frozen=True)
class ToolCall:
    """A tool call as recorded on the assistant message."""

    id: str
    name: str
    original_name: str = ""
    params: dict[str, Any] = field(default_factory=dict)
    source: str | None = None
    server_id: str | None = None
    status: ToolCallStatus = ToolCallStatus.PENDING
    started_at: float = field(default_factory=time.time)
    completed_at: float | None = None
    result: str | None = None
    error: str | None = None

    def with_status(self, status: ToolCallStatus) -> ToolCall:
        if status == self.status:
            return self
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"Tool call {self.id} cannot move from {self.status.value} to {status.value}"
            )
        return replace(self, status=status)

    def settle(self, result: str, is_error: bool) -> ToolCall:
        """Return the completed/error copy carrying the result text."""
        status = ToolCallStatus.ERROR if is_error else ToolCallStatus.COMPLETED
        settled = self.with_status(status)
        return replace(
            settled,
            result=result,
            error=result if is_error else None,
            completed_at=time.time(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "original_name": self.original_name or self.name,
            "params": self.params,
            "source": self.source,
            "server_id": self.server_id,
            "status": self.status.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "result": self.result,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        return cls(
            id=data["id"],
            name=data["name"],
            original_name=data.get("original_name") or data["name"],
            params=data.get("params") or {},
            source=data.get("source"),
            server_id=data.get("server_id"),
            status=ToolCallStatus(data.get("status", "pending")),
            started_at=data.get("started_at") or time.time(),
            completed_at=data.get("completed_at"),
            result=data.get("result"),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class ContentBlock:
    """One typed unit of assistant output. Exactly one payload field is set."""

    type: BlockType
    text: str | None = None
    reasoning: str | None = None
    tool_call: ToolCall | None = None
    artifact_id: str | None = None

    @classmethod
    def text_block(cls, text: str) -> ContentBlock:
        return cls(type=BlockType.TEXT, text=text)

    @classmethod
    def reasoning_block(cls, reasoning: str) -> ContentBlock:
        return cls(type=BlockType.REASONING, reasoning=reasoning)

    @classmethod
    def tool_call_block(cls, tool_call: ToolCall) -> ContentBlock:
        return cls(type=BlockType.TOOL_CALL, tool_call=tool_call)

    @classmethod
    def artifact_block(cls, artifact_id: str) -> ContentBlock:
        return cls(type=BlockType.ARTIFACT, artifact_id=artifact_id)

    def to_dict(self) -> dict[str, Any]:
        if self.type == BlockType.TEXT:
            return {"type": "text", "text": self.text}
        if self.type == BlockType.REASONING:
            return {"type": "reasoning", "reasoning": self.reasoning}
        if self.type == BlockType.TOOL_CALL:
            return {"type": "tool_call", "tool_call": self.tool_call.to_dict()}
        return {"type": "artifact", "artifact_id": self.artifact_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentBlock:
        block_type = BlockType(data["type"])
        if block_type == BlockType.TEXT:
            return cls.text_block(data.get("text", ""))
        if block_type == BlockType.REASONING:
            return cls.reasoning_block(data.get("reasoning", ""))
        if block_type == BlockType.TOOL_CALL:
            return cls.tool_call_block(ToolCall.from_dict(data["tool_call"]))
        return cls.artifact_block(data["artifact_id"])


# ═══════════════════════════════════════════════════════════════════════════════
# ARTIFACTS
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ArtifactVersion:
    id: str
    content: str
    created_at: float

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "content": self.content, "created_at": self.created_at}


@dataclass(frozen=True)
class Artifact:
    """
    A named, versioned document the assistant can create, update and read.

    Versions are append-only: updating snapshots the current content
    into `versions` before replacing it.
    """

    id: str
    type: ArtifactType
    title: str
    content: str
    language: str | None = None
    output_format: str | None = None
    versions: tuple[ArtifactVersion, ...] = ()
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @classmethod
    def new(
        cls,
        type: ArtifactType | str,
        title: str,
        content: str,
        language: str | None = None,
        output_format: str | None = None,
    ) -> Artifact:
        artifact_type = ArtifactType(type)
        now = time.time()
        return cls(
            id=generate_id(),
            type=artifact_type,
            title=title,
            content=content,
            language=language if artifact_type == ArtifactType.CODE else None,
            output_format=output_format,
            created_at=now,
            updated_at=now,
        )

    def with_update(
        self,
        content: str,
        title: str | None = None,
        output_format: str | None = None,
    ) -> Artifact:
        snapshot = ArtifactVersion(
            id=generate_id(), content=self.content, created_at=self.updated_at
        )
        return replace(
            self,
            content=content,
            title=title or self.title,
            output_format=output_format or self.output_format,
            versions=self.versions + (snapshot,),
            updated_at=time.time(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "content": self.content,
            "language": self.language,
            "output_format": self.output_format,
            "versions": [v.to_dict() for v in self.versions],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Artifact:
        return cls(
            id=data["id"],
            type=ArtifactType(data["type"]),
            title=data.get("title", ""),
            content=data.get("content", ""),
            language=data.get("language"),
            output_format=data.get("output_format"),
            versions=tuple(
                ArtifactVersion(
                    id=v["id"], content=v["content"], created_at=v["created_at"]
                )
                for v in data.get("versions", [])
            ),
            created_at=data.get("created_at") or time.time(),
            updated_at=data.get("updated_at") or time.time(),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# MESSAGES & CONVERSATIONS
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ChatMessage:
    """A single message. Immutable once sent; conversations only append."""

    role: Role
    content: str = ""
    id: str = field(default_factory=generate_id)
    content_blocks: tuple[ContentBlock, ...] = ()
    attachments: tuple[Attachment, ...] = ()
    project_files: tuple[Attachment, ...] = ()
    tool_calls: tuple[ToolCall, ...] = ()
    usage: TokenUsage | None = None
    model: str | None = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "content_blocks": [b.to_dict() for b in self.content_blocks],
            "attachments": [a.to_dict() for a in self.attachments],
            "project_files": [a.to_dict() for a in self.project_files],
            "tool_calls": [tc.to_dict() for tc in self.tool_calls],
            "usage": self.usage.to_dict() if self.usage else None,
            "model": self.model,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        usage = data.get("usage")
        return cls(
            id=data.get("id") or generate_id(),
            role=Role(data.get("role", "user")),
            content=data.get("content") or "",
            content_blocks=tuple(
                ContentBlock.from_dict(b) for b in data.get("content_blocks") or []
            ),
            attachments=tuple(
                Attachment.from_dict(a) for a in data.get("attachments") or []
            ),
            project_files=tuple(
                Attachment.from_dict(a) for a in data.get("project_files") or []
            ),
            tool_calls=tuple(
                ToolCall.from_dict(tc) for tc in data.get("tool_calls") or []
            ),
            usage=TokenUsage.from_dict(usage) if usage else None,
            model=data.get("model"),
            timestamp=data.get("timestamp") or time.time(),
        )


@dataclass(frozen=True)
class Conversation:
    id: str = field(default_factory=generate_id)
    messages: tuple[ChatMessage, ...] = ()
    artifacts: tuple[Artifact, ...] = ()
    system_prompt: str | None = None
    project_instructions: str | None = None
    project_files: tuple[Attachment, ...] = ()
    updated_at: float = field(default_factory=time.time)

    def with_message(self, message: ChatMessage) -> Conversation:
        return replace(
            self, messages=self.messages + (message,), updated_at=time.time()
        )

    def with_artifacts(self, artifacts: list[Artifact] | tuple[Artifact, ...]) -> Conversation:
        return replace(self, artifacts=tuple(artifacts), updated_at=time.time())

    def without_last_assistant(self) -> Conversation:
        """History for a regenerate: drop the trailing assistant message."""
        messages = self.messages
        if messages and messages[-1].role == Role.ASSISTANT:
            messages = messages[:-1]
        return replace(self, messages=messages, updated_at=time.time())

    def edited_at(self, message_id: str, content: str) -> Conversation:
        """History for an edit: truncate after message_id and replace its content."""
        for index, message in enumerate(self.messages):
            if message.id == message_id:
                edited = replace(message, content=content, timestamp=time.time())
                return replace(
                    self,
                    messages=self.messages[:index] + (edited,),
                    updated_at=time.time(),
                )
        raise KeyError(f"Message not found: {message_id}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "messages": [m.to_dict() for m in self.messages],
            "artifacts": [a.to_dict() for a in self.artifacts],
            "system_prompt": self.system_prompt,
            "project_instructions": self.project_instructions,
            "project_files": [a.to_dict() for a in self.project_files],
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Conversation:
        return cls(
            id=data.get("id") or generate_id(),
            messages=tuple(
                ChatMessage.from_dict(m) for m in data.get("messages") or []
            ),
            artifacts=tuple(
                Artifact.from_dict(a) for a in data.get("artifacts") or []
            ),
            system_prompt=data.get("system_prompt"),
            project_instructions=data.get("project_instructions"),
            project_files=tuple(
                Attachment.from_dict(a) for a in data.get("project_files") or []
            ),
            updated_at=data.get("updated_at") or time.time(),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# SETTINGS
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ChatSettings:
    """
    Per-request provider/model selection and feature toggles.

    Keys left empty fall back to the process config (env vars).
    """

    provider: str = "openai"
    model: str = "gpt-4o"
    api_key: str = ""
    base_url: str = ""
    global_system_prompt: str | None = None
    web_search_enabled: bool = False
    google_drive_enabled: bool = False
    memory_search_enabled: bool = False
    rag_enabled: bool = False
    artifacts_enabled: bool = True
    anthropic_thinking_enabled: bool = False
    anthropic_thinking_budget_tokens: int | None = None
    google_thinking_enabled: bool = False
    google_thinking_budget: int | None = None
    google_thinking_level: str | None = None  # minimal | low | medium | high
    temperature: float | None = None
    max_output_tokens: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatSettings:
        known = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in known})

"""
Downstream capabilities — the narrow interfaces tools call out through.

The executor knows nothing about how search, Drive, memory, document
retrieval or MCP transport work. It holds objects satisfying these
protocols and nothing more.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from loom.tools.base import ToolResult


class ToolClientError(Exception):
    """A 4xx-class failure from a tool backend. Never retried."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class ToolTimeoutError(Exception):
    """A tool call exceeded its absolute timeout. Never retried."""


# ─── Result shapes ────────────────────────────────────────────


@dataclass(frozen=True)
class WebSearchResult:
    title: str
    url: str
    snippet: str


@dataclass(frozen=True)
class WebSearchResponse:
    query: str
    results: list[WebSearchResult] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WebSearchResponse:
        return cls(
            query=data.get("query", ""),
            results=[
                WebSearchResult(
                    title=r.get("title", ""),
                    url=r.get("url", ""),
                    snippet=r.get("snippet", ""),
                )
                for r in data.get("results") or []
            ],
        )


@dataclass(frozen=True)
class DriveFile:
    file_name: str
    mime_type: str
    modified_time: str
    web_view_link: str
    owner: str | None = None


@dataclass(frozen=True)
class DriveSearchResponse:
    query: str
    results: list[DriveFile] = field(default_factory=list)
    # Set when the backend had to refresh the OAuth token to run the search
    new_access_token: str | None = None
    new_token_expiry: Any = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DriveSearchResponse:
        return cls(
            query=data.get("query", ""),
            results=[
                DriveFile(
                    file_name=r.get("file_name", ""),
                    mime_type=r.get("mime_type", ""),
                    modified_time=r.get("modified_time", ""),
                    web_view_link=r.get("web_view_link", ""),
                    owner=r.get("owner"),
                )
                for r in data.get("results") or []
            ],
            new_access_token=data.get("new_access_token"),
            new_token_expiry=data.get("new_token_expiry"),
        )


# ─── Protocols ────────────────────────────────────────────────


@runtime_checkable
class WebSearchBackend(Protocol):
    async def search(self, query: str) -> WebSearchResponse: ...


@runtime_checkable
class DriveSearchBackend(Protocol):
    async def search(self, query: str) -> DriveSearchResponse: ...


@runtime_checkable
class MemorySearchBackend(Protocol):
    async def search(
        self, query: str, exclude_conversation_id: str | None = None
    ) -> str | None:
        """Formatted, model-ready text. None means the search failed."""
        ...


@runtime_checkable
class DocumentSearchBackend(Protocol):
    async def search(self, query: str) -> str | None: ...


@runtime_checkable
class ExternalToolClient(Protocol):
    async def call_tool(
        self,
        name: str,
        params: dict[str, Any],
        source: str,
        server_id: str | None = None,
    ) -> ToolResult:
        """Run one MCP/builtin tool. Raise ToolClientError for 4xx-class failures."""
        ...


@dataclass
class ToolBackends:
    """Whichever backends this deployment has. Missing ones yield error results."""

    web_search: WebSearchBackend | None = None
    drive_search: DriveSearchBackend | None = None
    memory_search: MemorySearchBackend | None = None
    document_search: DocumentSearchBackend | None = None
    external: ExternalToolClient | None = None

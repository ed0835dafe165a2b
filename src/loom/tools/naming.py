"""
Tool naming — routing prefixes for external tools.

External tools share one flat namespace with the built-ins, so their
provider-visible names carry a routing prefix:

    mcp_<serverId>_<name>   tool served by an MCP server
    builtin_<name>          tool served by the built-in tool host
    <name>                  built-in Loom tool (web_search, create_artifact, …)

parse_tool_name() reverses the prefix. Server ids must not contain "_".
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from loom.llm.contracts import ToolCallInfo

MCP_PREFIX = "mcp_"
BUILTIN_PREFIX = "builtin_"


class ToolSource(str, Enum):
    WEB_SEARCH = "web_search"
    GOOGLE_DRIVE = "google_drive"
    MEMORY_SEARCH = "memory_search"
    RAG_SEARCH = "rag_search"
    ARTIFACT = "artifact"
    MCP = "mcp"
    BUILTIN = "builtin"
    OTHER = "other"

    @property
    def is_external(self) -> bool:
        return self in (ToolSource.MCP, ToolSource.BUILTIN)


_NATIVE_SOURCES = {
    "web_search": ToolSource.WEB_SEARCH,
    "google_drive_search": ToolSource.GOOGLE_DRIVE,
    "memory_search": ToolSource.MEMORY_SEARCH,
    "rag_search": ToolSource.RAG_SEARCH,
    "create_artifact": ToolSource.ARTIFACT,
    "update_artifact": ToolSource.ARTIFACT,
    "read_artifact": ToolSource.ARTIFACT,
}


@dataclass(frozen=True)
class ParsedToolName:
    name: str
    source: ToolSource
    server_id: str | None = None


def prefixed_name(name: str, source: ToolSource | str, server_id: str | None = None) -> str:
    """The provider-visible name for a tool."""
    source = ToolSource(source)
    if source == ToolSource.MCP and server_id:
        return f"{MCP_PREFIX}{server_id}_{name}"
    if source == ToolSource.BUILTIN:
        return f"{BUILTIN_PREFIX}{name}"
    return name


def parse_tool_name(full_name: str) -> ParsedToolName:
    """Reverse prefixed_name(): split a provider-visible name into its parts."""
    if full_name.startswith(MCP_PREFIX):
        parts = full_name.split("_")
        if len(parts) >= 3:
            return ParsedToolName(
                name="_".join(parts[2:]), source=ToolSource.MCP, server_id=parts[1]
            )
        return ParsedToolName(name=full_name[len(MCP_PREFIX):], source=ToolSource.MCP)

    if full_name.startswith(BUILTIN_PREFIX):
        return ParsedToolName(
            name=full_name[len(BUILTIN_PREFIX):], source=ToolSource.BUILTIN
        )

    return ParsedToolName(
        name=full_name, source=_NATIVE_SOURCES.get(full_name, ToolSource.OTHER)
    )


def resolve_call(
    raw_name: str, call_id: str, params: dict[str, Any] | None, **replay: Any
) -> ToolCallInfo:
    """Build a ToolCallInfo from the name a provider used."""
    parsed = parse_tool_name(raw_name)
    return ToolCallInfo(
        id=call_id,
        name=parsed.name,
        original_name=raw_name,
        params=params if isinstance(params, dict) else {},
        source=parsed.source.value,
        server_id=parsed.server_id,
        **replay,
    )

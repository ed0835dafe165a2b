"""
Tool Registry — register declarations, pick a round's tools, render schemas.

Register tools once, ask for the subset a round may use, render that
subset in whichever provider format the adapter speaks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Mapping

from loom.session.models import ChatSettings
from loom.tools.base import ToolSchema
from loom.tools.definitions import (
    ARTIFACT_TOOL_NAMES,
    BUILTIN_TOOLS,
    GOOGLE_DRIVE_SEARCH,
    MEMORY_SEARCH,
    RAG_SEARCH,
    WEB_SEARCH,
)
from loom.tools.naming import ToolSource, parse_tool_name, prefixed_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeclaredTool:
    """A schema plus where calls to it are routed."""

    schema: ToolSchema
    source: ToolSource
    server_id: str | None = None

    @property
    def name(self) -> str:
        return self.schema.name

    @property
    def provider_name(self) -> str:
        return prefixed_name(self.schema.name, self.source, self.server_id)


@dataclass(frozen=True)
class ExternalTool:
    """A tool supplied at request time by an MCP server or the built-in host."""

    name: str
    description: str
    parameters: dict[str, Any]
    source: str = ToolSource.MCP.value  # "mcp" | "builtin"
    server_id: str | None = None

    def declare(self) -> DeclaredTool:
        source = ToolSource(self.source)
        if not source.is_external:
            raise ValueError(f"External tool source must be mcp or builtin, got {self.source}")
        return DeclaredTool(
            schema=ToolSchema(self.name, self.description, self.parameters),
            source=source,
            server_id=self.server_id,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExternalTool:
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            parameters=data.get("parameters")
            or {"type": "object", "properties": {}, "required": []},
            source=data.get("source", ToolSource.MCP.value),
            server_id=data.get("server_id"),
        )


@dataclass(frozen=True)
class RoundToolOptions:
    """Feature toggles and limits that decide a round's declarations."""

    web_search: bool = False
    google_drive: bool = False
    memory_search: bool = False
    rag_search: bool = False
    artifacts: bool = True
    has_web_results: bool = False  # precomputed results already in context
    has_drive_results: bool = False
    max_calls_per_tool: int = 3

    @classmethod
    def from_settings(
        cls,
        settings: ChatSettings,
        max_calls_per_tool: int,
        has_web_results: bool = False,
        has_drive_results: bool = False,
    ) -> RoundToolOptions:
        return cls(
            web_search=settings.web_search_enabled,
            google_drive=settings.google_drive_enabled,
            memory_search=settings.memory_search_enabled,
            rag_search=settings.rag_enabled,
            artifacts=settings.artifacts_enabled,
            has_web_results=has_web_results,
            has_drive_results=has_drive_results,
            max_calls_per_tool=max_calls_per_tool,
        )


class ToolRegistry:
    """Declarations keyed by provider-visible name."""

    def __init__(self):
        self._tools: dict[str, DeclaredTool] = {}

    def register(
        self,
        schema: ToolSchema,
        source: ToolSource | None = None,
        server_id: str | None = None,
    ) -> DeclaredTool:
        """Register a schema. Overwrites if the provider name already exists."""
        if not schema.name:
            raise ValueError(f"Tool must have a name: {schema}")
        declared = DeclaredTool(
            schema=schema,
            source=source or parse_tool_name(schema.name).source,
            server_id=server_id,
        )
        self._tools[declared.provider_name] = declared
        logger.debug(f"Registered tool: {declared.provider_name}")
        return declared

    def register_external(self, tool: ExternalTool) -> DeclaredTool:
        declared = tool.declare()
        self._tools[declared.provider_name] = declared
        logger.debug(f"Registered external tool: {declared.provider_name}")
        return declared

    def get(self, provider_name: str) -> DeclaredTool | None:
        return self._tools.get(provider_name)

    def list_tools(self) -> list[DeclaredTool]:
        return list(self._tools.values())

    def tool_names(self) -> list[str]:
        """Provider-visible names of all registered tools."""
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[DeclaredTool]:
        return iter(self._tools.values())

    def __contains__(self, provider_name: object) -> bool:
        return provider_name in self._tools

    def without(self, *names: str) -> ToolRegistry:
        """Return a new registry excluding the named tools."""
        filtered = ToolRegistry()
        for name, tool in self._tools.items():
            if name not in names:
                filtered._tools[name] = tool
        return filtered

    # --- Round selection ---

    def for_round(
        self,
        options: RoundToolOptions,
        call_counts: Mapping[str, int] | None = None,
    ) -> ToolRegistry:
        """
        The declarations a round may offer.

        A tool whose bare name has been called max_calls_per_tool times this
        turn is dropped. Artifact tools are exempt from that ceiling. Search
        tools with precomputed results are dropped as well.
        """
        counts = call_counts or {}
        limit = options.max_calls_per_tool

        def under_limit(name: str) -> bool:
            return counts.get(name, 0) < limit

        enabled = {
            WEB_SEARCH.name: options.web_search and not options.has_web_results,
            GOOGLE_DRIVE_SEARCH.name: options.google_drive
            and not options.has_drive_results,
            MEMORY_SEARCH.name: options.memory_search,
            RAG_SEARCH.name: options.rag_search,
        }

        selected = ToolRegistry()
        for provider_name, tool in self._tools.items():
            if tool.name in ARTIFACT_TOOL_NAMES and tool.source == ToolSource.ARTIFACT:
                keep = options.artifacts
            elif tool.source.is_external:
                keep = under_limit(tool.name)
            elif tool.name in enabled:
                keep = enabled[tool.name] and under_limit(tool.name)
            else:
                keep = under_limit(tool.name)
            if keep:
                selected._tools[provider_name] = tool
        return selected

    # --- Schema export for different providers ---

    def to_openai_tools(self) -> list[dict]:
        return [t.schema.to_openai_schema(t.provider_name) for t in self]

    def to_responses_tools(self) -> list[dict]:
        return [t.schema.to_responses_schema(t.provider_name) for t in self]

    def to_anthropic_tools(self) -> list[dict]:
        return [t.schema.to_anthropic_schema(t.provider_name) for t in self]

    def to_gemini_tools(self) -> list[dict]:
        """Gemini wants one tools entry wrapping every declaration."""
        declarations = [t.schema.to_gemini_declaration(t.provider_name) for t in self]
        if not declarations:
            return []
        return [{"functionDeclarations": declarations}]


def build_registry(external_tools: Iterable[ExternalTool] = ()) -> ToolRegistry:
    """A registry with every built-in tool plus the given external tools."""
    registry = ToolRegistry()
    for schema in BUILTIN_TOOLS:
        registry.register(schema)
    for tool in external_tools:
        registry.register_external(tool)
    return registry

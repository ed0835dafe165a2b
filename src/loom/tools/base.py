"""
Tool schemas — one canonical record per tool.

A ToolSchema is provider-agnostic: name + description + JSON-schema
parameters. The registry renders it into whatever shape a provider wants
(OpenAI function, Responses function, Anthropic input_schema, Gemini
function declaration). Adapters never hold their own copies.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ToolParam:
    """A single parameter for a tool."""
    name: str
    type: str  # "string", "integer", "boolean", "array", "object"
    description: str
    required: bool = True
    enum: list[str] | None = None
    items: dict | None = None  # For array types


@dataclass(frozen=True)
class ToolSchema:
    name: str
    description: str
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    @classmethod
    def from_params(
        cls, name: str, description: str, params: list[ToolParam]
    ) -> ToolSchema:
        properties: dict[str, Any] = {}
        required: list[str] = []

        for param in params:
            prop: dict[str, Any] = {
                "type": param.type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.items:
                prop["items"] = param.items
            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return cls(
            name=name,
            description=description,
            parameters={
                "type": "object",
                "properties": properties,
                "required": required,
            },
        )

    # --- Renderers. `name` overrides for prefixed external tools. ---

    def to_openai_schema(self, name: str | None = None) -> dict:
        """OpenAI Chat Completions function tool (also Cerebras, Mistral)."""
        return {
            "type": "function",
            "function": {
                "name": name or self.name,
                "description": self.description,
                "parameters": copy.deepcopy(self.parameters),
            },
        }

    def to_responses_schema(self, name: str | None = None) -> dict:
        """OpenAI Responses API function tool. Closed object schema."""
        parameters = copy.deepcopy(self.parameters)
        parameters["additionalProperties"] = False
        return {
            "type": "function",
            "name": name or self.name,
            "description": self.description,
            "parameters": parameters,
        }

    def to_anthropic_schema(self, name: str | None = None) -> dict:
        return {
            "name": name or self.name,
            "description": self.description,
            "input_schema": copy.deepcopy(self.parameters),
        }

    def to_gemini_declaration(self, name: str | None = None) -> dict:
        return {
            "name": name or self.name,
            "description": self.description,
            "parameters": copy.deepcopy(self.parameters),
        }


@dataclass
class ToolResult:
    """What a tool backend hands back: model-ready text plus an error flag."""
    output: str
    metadata: dict = field(default_factory=dict)
    error: bool = False

    @classmethod
    def success(cls, output: str, **metadata) -> ToolResult:
        return cls(output=output, metadata=metadata)

    @classmethod
    def fail(cls, error_msg: str, **metadata) -> ToolResult:
        return cls(output=error_msg, metadata=metadata, error=True)

"""Loom Tools — declarations, naming, and execution."""

from loom.tools.base import ToolResult, ToolSchema
from loom.tools.registry import ToolRegistry, build_registry

__all__ = ["ToolResult", "ToolSchema", "ToolRegistry", "build_registry"]

"""Loom — streaming chat turns, tool rounds, and artifacts across LLM providers."""

__version__ = "0.1.0"

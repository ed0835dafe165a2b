"""Shared fixtures: a scripted provider adapter and fake tool backends."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import pytest

from loom.core.config import ToolConfig, TurnConfig
from loom.core.metrics import metrics
from loom.llm.contracts import StreamChunk, ToolExecutionResult
from loom.providers.base import ProviderAdapter
from loom.session.models import ChatMessage, ChatSettings, Conversation, Role
from loom.tools.base import ToolResult
from loom.tools.capabilities import WebSearchResponse, WebSearchResult
from loom.tools.naming import resolve_call
from loom.tools.registry import ToolRegistry


# ─── Scripted provider ────────────────────────────────────────


@dataclass
class RoundRecord:
    """What the adapter was handed for one round."""

    system_prompt: str | None
    tool_names: list[str]
    executions: list[ToolExecutionResult]
    message_count: int


class ScriptedAdapter(ProviderAdapter):
    """
    Plays back one script per round.

    A script entry is a StreamChunk, an Exception (raised at that point),
    or the string "hang" (block until cancelled).
    """

    name = "scripted"

    def __init__(self, settings: ChatSettings, rounds: list[list[Any]]):
        super().__init__(settings)
        self.rounds = rounds
        self.records: list[RoundRecord] = []

    async def _stream(
        self,
        messages: list[ChatMessage],
        system_prompt: str | None,
        tools: ToolRegistry,
        tool_executions: list[ToolExecutionResult],
    ) -> AsyncIterator[StreamChunk]:
        index = len(self.records)
        self.records.append(
            RoundRecord(
                system_prompt=system_prompt,
                tool_names=tools.tool_names(),
                executions=list(tool_executions),
                message_count=len(messages),
            )
        )
        script = self.rounds[min(index, len(self.rounds) - 1)]
        for item in script:
            if isinstance(item, Exception):
                raise item
            if item == "hang":
                await asyncio.Event().wait()
            yield item


@pytest.fixture
def scripted():
    """Factory: scripted(rounds) → (adapter_factory, adapter)."""

    def make(rounds: list[list[Any]]):
        holder: dict[str, ScriptedAdapter] = {}

        def factory(settings: ChatSettings) -> ScriptedAdapter:
            if "adapter" not in holder:
                holder["adapter"] = ScriptedAdapter(settings, rounds)
            return holder["adapter"]

        return factory, holder

    return make


def text(content: str) -> StreamChunk:
    return StreamChunk.content_delta(content)


def call(name: str, call_id: str, **params: Any) -> StreamChunk:
    return StreamChunk.single_call(resolve_call(name, call_id, params))


def calls(*specs: tuple[str, str, dict]) -> StreamChunk:
    return StreamChunk.batch_calls(
        [resolve_call(name, call_id, params) for name, call_id, params in specs]
    )


# ─── Fake backends ────────────────────────────────────────────


class FakeWebSearch:
    def __init__(self, results: int = 3, failures: int = 0):
        self.results = results
        self.failures = failures
        self.queries: list[str] = []

    async def search(self, query: str) -> WebSearchResponse:
        self.queries.append(query)
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("search backend unreachable")
        return WebSearchResponse(
            query=query,
            results=[
                WebSearchResult(
                    title=f"Result {i}",
                    url=f"https://example.com/{i}",
                    snippet=f"Snippet {i}",
                )
                for i in range(1, self.results + 1)
            ],
        )


@dataclass
class FakeToolClient:
    output: str = "ok"
    error: bool = False
    raises: list[BaseException] = field(default_factory=list)
    delay: float = 0.0
    calls: list[tuple[str, dict, str, str | None]] = field(default_factory=list)

    async def call_tool(
        self, name: str, params: dict, source: str, server_id: str | None = None
    ) -> ToolResult:
        self.calls.append((name, params, source, server_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raises:
            raise self.raises.pop(0)
        return ToolResult(output=self.output, error=self.error)


# ─── Common objects ───────────────────────────────────────────


@pytest.fixture
def settings() -> ChatSettings:
    return ChatSettings(provider="openai", model="gpt-4o", api_key="sk-test")


@pytest.fixture
def conversation() -> Conversation:
    return Conversation(
        id="conv-1",
        messages=(ChatMessage(role=Role.USER, content="Hello there"),),
    )


@pytest.fixture
def fast_tools() -> ToolConfig:
    return ToolConfig(retry_delay_base=0.0, passthrough_timeout=1.0)


@pytest.fixture
def turn_config() -> TurnConfig:
    return TurnConfig()


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()

"""Tests for TurnOrchestrator — the explicit tool-round loop."""

import asyncio
import logging
import re

import pytest

from conftest import FakeWebSearch, call, calls, text
from loom.core.config import TurnConfig
from loom.core.metrics import metrics
from loom.llm.contracts import (
    StreamChunk,
    TokenUsage,
    ToolExecutionResult,
    TurnEventType,
)
from loom.llm.core import TurnHandle, TurnOrchestrator, TurnPhase, TurnRequest
from loom.providers.base import ProviderError
from loom.providers.registry import create_adapter
from loom.session.models import (
    Artifact,
    BlockType,
    ChatMessage,
    ChatSettings,
    Conversation,
    Role,
    ToolCallStatus,
)
from loom.tools.base import ToolResult
from loom.tools.capabilities import ToolBackends, WebSearchResponse, WebSearchResult
from loom.tools.executor import ToolExecutor

DEPTH_NOTICE = "\n\n[Tool call limit reached (10 calls). Stopping to prevent infinite loop.]"


def _orchestrator(factory, fast_tools, backends=None, turn_config=None):
    return TurnOrchestrator(
        executor=ToolExecutor(backends or ToolBackends(), fast_tools),
        adapter_factory=factory,
        turn_config=turn_config or TurnConfig(),
    )


async def _run(orchestrator, request, on_event=None):
    handle = TurnHandle(request.conversation.id, request.turn_id)
    events = []
    async for event in orchestrator.run_turn(request, handle):
        events.append(event)
        if on_event is not None:
            on_event(event, handle)
    return events, await handle.wait()


def _types(events):
    return [e.type for e in events]


def _block_types(message):
    return [b.type for b in message.content_blocks]


# ─── Plain rounds ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_text_only_turn(scripted, fast_tools, conversation, settings):
    usage = TokenUsage(input_tokens=12, output_tokens=3, total_tokens=15)
    factory, _ = scripted([[text("Hel"), text("lo"), StreamChunk.usage_report(usage)]])
    orchestrator = _orchestrator(factory, fast_tools)

    events, outcome = await _run(orchestrator, TurnRequest(conversation, settings))

    assert _types(events) == [
        TurnEventType.CONTENT,
        TurnEventType.CONTENT,
        TurnEventType.USAGE,
        TurnEventType.DONE,
    ]
    assert outcome.phase == TurnPhase.DONE
    assert outcome.message.content == "Hello"
    assert _block_types(outcome.message) == [BlockType.TEXT]
    assert outcome.message.usage == usage
    assert outcome.message.model == "gpt-4o"
    assert len(outcome.conversation.messages) == 2
    assert events[-1].payload["phase"] == "done"
    assert events[-1].payload["message"]["content"] == "Hello"


@pytest.mark.asyncio
async def test_reasoning_and_text_become_separate_blocks(scripted, fast_tools, conversation, settings):
    factory, _ = scripted(
        [
            [
                StreamChunk.reasoning_delta("Think"),
                StreamChunk.reasoning_delta("ing..."),
                text("Answer"),
            ]
        ]
    )
    _, outcome = await _run(
        _orchestrator(factory, fast_tools), TurnRequest(conversation, settings)
    )

    blocks = outcome.message.content_blocks
    assert [b.type for b in blocks] == [BlockType.REASONING, BlockType.TEXT]
    assert blocks[0].reasoning == "Thinking..."
    assert outcome.message.content == "Answer"


@pytest.mark.asyncio
async def test_inline_artifact_is_extracted(scripted, fast_tools, conversation, settings):
    factory, _ = scripted(
        [
            [
                text("Here:\n<artifact type=\"markdown\" ti"),
                text('tle="Notes"># Notes\n</arti'),
                text("fact>\nEnjoy."),
            ]
        ]
    )
    events, outcome = await _run(
        _orchestrator(factory, fast_tools), TurnRequest(conversation, settings)
    )

    assert outcome.message.content == "Here:\n\nEnjoy."
    assert _block_types(outcome.message) == [BlockType.TEXT, BlockType.ARTIFACT, BlockType.TEXT]
    assert len(outcome.artifacts) == 1
    assert outcome.artifacts[0].title == "Notes"
    assert outcome.artifacts[0].content == "# Notes"
    assert outcome.message.content_blocks[1].artifact_id == outcome.artifacts[0].id
    assert TurnEventType.ARTIFACT in _types(events)


# ─── Tool rounds ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_single_tool_call_round_trip(scripted, fast_tools, conversation):
    settings = ChatSettings(web_search_enabled=True)
    factory, holder = scripted(
        [
            [text("Let me check."), call("web_search", "c1", query="python")],
            [text("Found 3 results.")],
        ]
    )
    backend = FakeWebSearch(results=3)
    orchestrator = _orchestrator(factory, fast_tools, ToolBackends(web_search=backend))

    events, outcome = await _run(orchestrator, TurnRequest(conversation, settings))

    assert _types(events) == [
        TurnEventType.CONTENT,
        TurnEventType.TOOL_CALL,
        TurnEventType.STATUS,
        TurnEventType.STATUS,
        TurnEventType.TOOL_RESULT,
        TurnEventType.CONTENT,
        TurnEventType.DONE,
    ]
    assert events[1].payload["tool_call"]["status"] == "running"
    assert events[4].payload["tool_call"]["status"] == "completed"

    message = outcome.message
    assert _block_types(message) == [BlockType.TEXT, BlockType.TOOL_CALL, BlockType.TEXT]
    assert message.content == "Let me check.Found 3 results."
    assert message.tool_calls[0].status == ToolCallStatus.COMPLETED
    assert "[3] Result 3" in message.tool_calls[0].result

    adapter = holder["adapter"]
    assert len(adapter.records) == 2
    assert "web_search" in adapter.records[0].tool_names
    replayed = adapter.records[1].executions
    assert [e.tool_call_id for e in replayed] == ["c1"]
    assert replayed[0].tool_name == "web_search"


@pytest.mark.asyncio
async def test_weather_search_feeds_back_numbered_entries(scripted, fast_tools, conversation):
    settings = ChatSettings(web_search_enabled=True)
    factory, holder = scripted(
        [
            [call("web_search", "w1", query="weather in Paris")],
            [text("It is mild in Paris.")],
        ]
    )
    backend = FakeWebSearch(results=3)
    orchestrator = _orchestrator(factory, fast_tools, ToolBackends(web_search=backend))

    _, outcome = await _run(orchestrator, TurnRequest(conversation, settings))

    assert backend.queries == ["weather in Paris"]
    replayed = holder["adapter"].records[1].executions[0].result
    assert len(re.findall(r"^\[\d+\] ", replayed, re.MULTILINE)) == 3
    assert outcome.phase == TurnPhase.DONE


@pytest.mark.asyncio
async def test_blocks_never_leave_adjacent_reasoning(scripted, fast_tools, conversation, settings):
    factory, _ = scripted(
        [
            [
                StreamChunk.reasoning_delta("a"),
                text("x"),
                StreamChunk.reasoning_delta("b"),
                StreamChunk.reasoning_delta("c"),
                call("read_artifact", "r1", artifact_id="none"),
            ],
            [StreamChunk.reasoning_delta("d"), text("done")],
        ]
    )
    _, outcome = await _run(
        _orchestrator(factory, fast_tools), TurnRequest(conversation, settings)
    )

    kinds = _block_types(outcome.message)
    assert kinds == [
        BlockType.REASONING,
        BlockType.TEXT,
        BlockType.REASONING,
        BlockType.TOOL_CALL,
        BlockType.REASONING,
        BlockType.TEXT,
    ]
    for first, second in zip(kinds, kinds[1:]):
        assert not (first == second == BlockType.REASONING)
    assert outcome.message.content == "xdone"


@pytest.mark.asyncio
async def test_batch_calls_run_and_settle_in_order(scripted, fast_tools, conversation):
    settings = ChatSettings(web_search_enabled=True)
    factory, holder = scripted(
        [
            [
                calls(
                    ("web_search", "c1", {"query": "a"}),
                    ("create_artifact", "c2", {"type": "code", "title": "T", "content": "x=1"}),
                )
            ],
            [text("Both done.")],
        ]
    )
    orchestrator = _orchestrator(
        factory, fast_tools, ToolBackends(web_search=FakeWebSearch())
    )

    events, outcome = await _run(orchestrator, TurnRequest(conversation, settings))

    assert _block_types(outcome.message) == [
        BlockType.TOOL_CALL,
        BlockType.TOOL_CALL,
        BlockType.ARTIFACT,
        BlockType.TEXT,
    ]
    results = [e for e in events if e.type == TurnEventType.TOOL_RESULT]
    assert [r.payload["tool_call"]["id"] for r in results] == ["c1", "c2"]
    assert len(outcome.artifacts) == 1
    assert outcome.artifacts[0].content == "x=1"
    assert len(holder["adapter"].records[1].executions) == 2


@pytest.mark.asyncio
async def test_tool_error_is_fed_back_not_fatal(scripted, fast_tools, conversation, settings):
    factory, holder = scripted(
        [
            [call("read_artifact", "r1", artifact_id="missing")],
            [text("That artifact does not exist.")],
        ]
    )
    _, outcome = await _run(
        _orchestrator(factory, fast_tools), TurnRequest(conversation, settings)
    )

    assert outcome.phase == TurnPhase.DONE
    assert outcome.message.tool_calls[0].status == ToolCallStatus.ERROR
    replayed = holder["adapter"].records[1].executions[0]
    assert replayed.is_error
    assert 'Artifact with ID "missing" not found' in replayed.result


@pytest.mark.asyncio
async def test_depth_limit_appends_notice(scripted, fast_tools, conversation, settings):
    factory, holder = scripted([[call("read_artifact", "r", artifact_id="nope")]])

    events, outcome = await _run(
        _orchestrator(factory, fast_tools), TurnRequest(conversation, settings)
    )

    assert len(holder["adapter"].records) == 10
    assert outcome.phase == TurnPhase.DEPTH_LIMITED
    assert events[-1].payload["phase"] == "done"
    last_block = outcome.message.content_blocks[-1]
    assert last_block.type == BlockType.TEXT
    assert last_block.text == DEPTH_NOTICE
    assert outcome.message.content.endswith(DEPTH_NOTICE)
    assert len(outcome.message.tool_calls) == 10


@pytest.mark.asyncio
async def test_per_tool_limit(scripted, fast_tools, conversation):
    settings = ChatSettings(web_search_enabled=True)
    rounds = [[call("web_search", f"c{i}", query=f"q{i}")] for i in range(1, 5)]
    rounds.append([text("Enough searching.")])
    factory, holder = scripted(rounds)
    backend = FakeWebSearch()
    orchestrator = _orchestrator(factory, fast_tools, ToolBackends(web_search=backend))

    _, outcome = await _run(orchestrator, TurnRequest(conversation, settings))

    assert backend.queries == ["q1", "q2", "q3"]
    records = holder["adapter"].records
    assert "web_search" in records[2].tool_names
    assert "web_search" not in records[3].tool_names

    over = outcome.message.tool_calls[3]
    assert over.status == ToolCallStatus.ERROR
    assert "already been called 3 times" in over.result
    assert outcome.phase == TurnPhase.DONE


@pytest.mark.asyncio
async def test_replayed_executions_count_against_limit(scripted, fast_tools, conversation):
    settings = ChatSettings(web_search_enabled=True)
    prior = [
        ToolExecutionResult(
            tool_call_id=f"p{i}", tool_name="web_search", tool_params={}, result="..."
        )
        for i in range(3)
    ]
    factory, holder = scripted([[text("ok")]])

    await _run(
        _orchestrator(factory, fast_tools),
        TurnRequest(conversation, settings, tool_executions=prior),
    )

    record = holder["adapter"].records[0]
    assert "web_search" not in record.tool_names
    assert len(record.executions) == 3


@pytest.mark.asyncio
async def test_usage_is_summed_across_rounds(scripted, fast_tools, conversation, settings):
    factory, _ = scripted(
        [
            [
                call("read_artifact", "r1", artifact_id="x"),
                StreamChunk.usage_report(TokenUsage(10, 5, 15)),
            ],
            [text("done"), StreamChunk.usage_report(TokenUsage(20, 7, 27, cached_tokens=4))],
        ]
    )
    _, outcome = await _run(
        _orchestrator(factory, fast_tools), TurnRequest(conversation, settings)
    )

    assert outcome.usage == TokenUsage(30, 12, 42, cached_tokens=4)
    assert outcome.message.usage == outcome.usage


# ─── Prompt assembly ──────────────────────────────────────────


@pytest.mark.asyncio
async def test_system_prompt_layers_and_precomputed_results(scripted, fast_tools):
    conversation = Conversation(
        id="c",
        system_prompt="Answer in French.",
        project_instructions="Project: moon base.",
        artifacts=(Artifact.new(type="code", title="Main", content="x"),),
    ).with_message(ChatMessage(role=Role.USER, content="hi"))
    settings = ChatSettings(web_search_enabled=True, global_system_prompt="Be brief.")
    web = WebSearchResponse(
        query="moon", results=[WebSearchResult(title="Moon", url="https://m", snippet="s")]
    )
    factory, holder = scripted([[text("ok")]])

    await _run(
        _orchestrator(factory, fast_tools),
        TurnRequest(conversation, settings, web_results=web),
    )

    record = holder["adapter"].records[0]
    prompt = record.system_prompt
    assert prompt.index("Be brief.") < prompt.index("Project: moon base.")
    assert prompt.index("Project: moon base.") < prompt.index("Answer in French.")
    assert "## Artifacts" in prompt
    assert '(code): "Main"' in prompt
    assert prompt.index("## Artifacts") < prompt.index("## Search Context")
    assert "web_search" not in record.tool_names


# ─── Abort, timeout, errors ───────────────────────────────────


@pytest.mark.asyncio
async def test_abort_while_tool_runs_commits_partial(scripted, fast_tools, conversation, settings):
    factory, holder = scripted(
        [
            [text("one "), text("two "), call("builtin_wait", "t1")],
            [text("never streamed")],
        ]
    )

    class AbortingClient:
        handle = None

        async def call_tool(self, name, params, source, server_id=None):
            self.handle.abort()
            return ToolResult(output="finished anyway")

    client = AbortingClient()
    orchestrator = _orchestrator(factory, fast_tools, ToolBackends(external=client))
    request = TurnRequest(conversation, settings)
    handle = TurnHandle(conversation.id, request.turn_id)
    client.handle = handle

    events = [e async for e in orchestrator.run_turn(request, handle)]
    outcome = await handle.wait()

    assert outcome.phase == TurnPhase.ABORTED
    assert len(holder["adapter"].records) == 1
    assert outcome.message.content == "one two "
    assert outcome.message.tool_calls[0].status == ToolCallStatus.COMPLETED
    assert events[-1].payload["phase"] == "aborted"
    assert outcome.conversation.messages[-1] == outcome.message


@pytest.mark.asyncio
async def test_abort_mid_stream(scripted, fast_tools, conversation, settings):
    factory, _ = scripted([[text("partial"), "hang"]])
    orchestrator = _orchestrator(factory, fast_tools)
    request = TurnRequest(conversation, settings)

    def abort_soon(event, handle):
        if event.type == TurnEventType.CONTENT:
            asyncio.get_running_loop().call_later(0.05, handle.abort)

    events, outcome = await _run(orchestrator, request, abort_soon)

    assert outcome.phase == TurnPhase.ABORTED
    assert outcome.message.content == "partial"
    assert events[-1].type == TurnEventType.DONE


@pytest.mark.asyncio
async def test_stream_timeout_ends_turn(scripted, fast_tools, conversation, settings):
    factory, _ = scripted([[text("slow"), "hang"]])
    orchestrator = _orchestrator(
        factory, fast_tools, turn_config=TurnConfig(stream_timeout=0.1)
    )

    _, outcome = await _run(orchestrator, TurnRequest(conversation, settings))

    assert outcome.phase == TurnPhase.ABORTED
    assert outcome.message.content == "slow"


@pytest.mark.asyncio
async def test_provider_error_becomes_error_message(scripted, fast_tools, conversation, settings):
    existing = Artifact.new(type="markdown", title="Keep", content="k")
    conversation = Conversation(
        id=conversation.id, messages=conversation.messages, artifacts=(existing,)
    )
    factory, _ = scripted([[text("Hi"), ProviderError("rate limited", status=429)]])

    events, outcome = await _run(
        _orchestrator(factory, fast_tools), TurnRequest(conversation, settings)
    )

    assert outcome.phase == TurnPhase.ERROR
    assert outcome.message.content == "Error: rate limited"
    assert outcome.artifacts == [existing]
    assert _types(events)[-2:] == [TurnEventType.ERROR, TurnEventType.DONE]
    assert events[-1].payload["phase"] == "error"


@pytest.mark.asyncio
async def test_unexpected_stream_failure_becomes_error_message(
    scripted, fast_tools, conversation, settings, caplog
):
    factory, _ = scripted([[text("Hi"), RuntimeError("decoder exploded")]])

    with caplog.at_level(logging.ERROR, logger="loom.llm.core"):
        events, outcome = await _run(
            _orchestrator(factory, fast_tools), TurnRequest(conversation, settings)
        )

    assert outcome.phase == TurnPhase.ERROR
    assert outcome.message.content == "Error: decoder exploded"
    assert outcome.conversation.messages[-1] == outcome.message
    assert events[-1].payload["phase"] == "error"
    record = next(r for r in caplog.records if "failed while streaming" in r.getMessage())
    assert record.exc_info is not None
    assert record.conversation_id == "conv-1"
    assert record.provider == "openai"


@pytest.mark.asyncio
async def test_turn_logs_carry_structured_fields(scripted, fast_tools, conversation, settings, caplog):
    factory, _ = scripted([[text("x")]])
    request = TurnRequest(conversation, settings)

    with caplog.at_level(logging.INFO, logger="loom.llm.core"):
        await _run(_orchestrator(factory, fast_tools), request)

    finished = next(r for r in caplog.records if "finished" in r.getMessage())
    assert finished.turn_id == request.turn_id
    assert finished.conversation_id == "conv-1"
    assert finished.model == "gpt-4o"
    assert finished.status == "done"


@pytest.mark.asyncio
async def test_unknown_provider(fast_tools, conversation):
    orchestrator = _orchestrator(create_adapter, fast_tools)
    _, outcome = await _run(
        orchestrator, TurnRequest(conversation, ChatSettings(provider="nope"))
    )
    assert outcome.phase == TurnPhase.ERROR
    assert outcome.message.content == "Error: Unknown LLM provider: nope"


@pytest.mark.asyncio
async def test_turn_metrics(scripted, fast_tools, conversation, settings):
    factory, _ = scripted([[text("x")]])
    await _run(_orchestrator(factory, fast_tools), TurnRequest(conversation, settings))

    assert metrics.counter("turn.completed", {"phase": "done"}) == 1
    assert metrics.snapshot()["gauges"]["turn.active"] == 0

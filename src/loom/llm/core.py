"""
LLM Core — the turn driver.

One turn = one user message → one committed assistant message, possibly
spanning several provider rounds. The loop is explicit:

    INIT → STREAMING → (TOOL_PENDING → EXECUTING → STREAMING)* → DONE
                     ↘ ABORTED | DEPTH_LIMITED | ERROR

Usage:
    orchestrator = TurnOrchestrator(ToolExecutor(backends))

    async for event in orchestrator.run_turn(request):
        # content, reasoning, tool_call, tool_result, artifact,
        # usage, status, token_refresh, error, done
        ...

All per-turn state lives in a TurnState created inside run_turn(); two
turns never share anything but the orchestrator's collaborators.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, AsyncIterator, Callable

from loom.artifacts import extractor
from loom.artifacts.prompt import build_artifact_system_prompt, merge_system_prompts
from loom.core.config import TurnConfig, config
from loom.core.metrics import metrics
from loom.llm.accumulator import TurnState
from loom.llm.contracts import (
    StreamChunk,
    StreamChunkType,
    TokenUsage,
    ToolCallInfo,
    ToolExecutionResult,
    TurnEvent,
)
from loom.providers.base import ProviderAdapter, ProviderError
from loom.providers.registry import create_adapter
from loom.session.models import (
    Artifact,
    ChatMessage,
    ChatSettings,
    Conversation,
    Role,
    generate_id,
)
from loom.tools.artifacts import ArtifactWorkspace
from loom.tools.capabilities import DriveSearchResponse, WebSearchResponse
from loom.tools.definitions import is_artifact_tool
from loom.tools.executor import ToolExecutor, ToolOutcome, limit_reached_result
from loom.tools.formatting import format_precomputed_context
from loom.tools.naming import ToolSource
from loom.tools.registry import ExternalTool, RoundToolOptions, ToolRegistry, build_registry

logger = logging.getLogger(__name__)

DEPTH_LIMIT_NOTICE = (
    "\n\n[Tool call limit reached ({limit} calls). "
    "Stopping to prevent infinite loop.]"
)


class TurnPhase(str, Enum):
    INIT = "init"
    STREAMING = "streaming"
    TOOL_PENDING = "tool_pending"
    EXECUTING = "executing"
    DONE = "done"
    ABORTED = "aborted"
    DEPTH_LIMITED = "depth_limited"
    ERROR = "error"

    @property
    def committed(self) -> TurnPhase:
        """How the phase is recorded once the turn ends."""
        return TurnPhase.DONE if self == TurnPhase.DEPTH_LIMITED else self


# ═══════════════════════════════════════════════════════════════════════════════
# REQUEST / OUTCOME / HANDLE
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class TurnRequest:
    """
    Everything a turn needs.

    `conversation` is the history the provider sees, already ending with
    the user message this turn answers.
    """

    conversation: Conversation
    settings: ChatSettings
    web_results: WebSearchResponse | None = None
    drive_results: DriveSearchResponse | None = None
    tool_executions: list[ToolExecutionResult] = field(default_factory=list)
    depth: int = 0
    external_tools: list[ExternalTool] = field(default_factory=list)
    turn_id: str = field(default_factory=generate_id)

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self.conversation.messages)


@dataclass
class TurnOutcome:
    phase: TurnPhase
    message: ChatMessage
    artifacts: list[Artifact]
    conversation: Conversation
    error: str | None = None
    usage: TokenUsage | None = None


class TurnHandle:
    """
    A running turn as seen from outside: abort it, watch it, await it.
    """

    def __init__(self, conversation_id: str, turn_id: str | None = None):
        self.conversation_id = conversation_id
        self.turn_id = turn_id or generate_id()
        self.abort_event = asyncio.Event()
        self.task: asyncio.Task | None = None
        self._queue: asyncio.Queue[TurnEvent | None] = asyncio.Queue()
        self._outcome: asyncio.Future[TurnOutcome] = (
            asyncio.get_running_loop().create_future()
        )

    def abort(self) -> None:
        if not self.abort_event.is_set():
            logger.info(f"Turn {self.turn_id} abort requested")
            self.abort_event.set()

    @property
    def aborted(self) -> bool:
        return self.abort_event.is_set()

    @property
    def done(self) -> bool:
        return self._outcome.done()

    def publish(self, event: TurnEvent) -> None:
        self._queue.put_nowait(event)

    def resolve(self, outcome: TurnOutcome) -> None:
        if not self._outcome.done():
            self._outcome.set_result(outcome)
        self._queue.put_nowait(None)

    def fail(self, exc: BaseException) -> None:
        if not self._outcome.done():
            self._outcome.set_exception(exc)
        self._queue.put_nowait(None)

    def discard(self) -> None:
        """The turn ended without an outcome (its consumer went away)."""
        if not self._outcome.done():
            self._outcome.cancel()
        self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[TurnEvent]:
        """Published events until the turn ends."""
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def wait(self) -> TurnOutcome:
        return await asyncio.shield(self._outcome)


# ═══════════════════════════════════════════════════════════════════════════════
# ORCHESTRATOR
# ═══════════════════════════════════════════════════════════════════════════════

_END = object()
_ABORTED = object()
_TIMED_OUT = object()


async def _pull(stream: AsyncIterator[StreamChunk]) -> Any:
    try:
        return await stream.__anext__()
    except StopAsyncIteration:
        return _END


class TurnOrchestrator:
    """
    Drives turns. Stateless between turns.

    The adapter factory maps settings to a ProviderAdapter; the default is
    the provider registry. Tests swap in factories returning scripted fakes.
    """

    def __init__(
        self,
        executor: ToolExecutor | None = None,
        registry: ToolRegistry | None = None,
        adapter_factory: Callable[[ChatSettings], ProviderAdapter] = create_adapter,
        turn_config: TurnConfig | None = None,
    ):
        self.executor = executor or ToolExecutor()
        self.registry = registry if registry is not None else build_registry()
        self.adapter_factory = adapter_factory
        self.turn_config = turn_config or config.turn

    async def run(self, request: TurnRequest, handle: TurnHandle | None = None) -> TurnOutcome:
        """Run a turn to completion, publishing every event to the handle."""
        handle = handle or TurnHandle(request.conversation.id, request.turn_id)
        async for event in self.run_turn(request, handle):
            handle.publish(event)
        return await handle.wait()

    async def run_turn(
        self, request: TurnRequest, handle: TurnHandle | None = None
    ) -> AsyncIterator[TurnEvent]:
        handle = handle or TurnHandle(request.conversation.id, request.turn_id)
        settings = request.settings
        started = time.monotonic()
        deadline = started + self.turn_config.stream_timeout
        max_depth = self.turn_config.max_tool_recursion_depth

        state = TurnState(ArtifactWorkspace(request.conversation.artifacts))
        state.recursion.depth = request.depth
        state.executions = list(request.tool_executions)
        for execution in state.executions:
            if not _exempt_from_limit(execution.tool_name, None):
                state.recursion.record(execution.tool_name)

        phase = TurnPhase.INIT
        error: str | None = None
        tool_names = self.registry.without()
        for tool in request.external_tools:
            tool_names.register_external(tool)

        log_fields = {
            "conversation_id": request.conversation.id,
            "turn_id": handle.turn_id,
            "provider": settings.provider,
            "model": settings.model,
        }
        metrics.gauge_inc("turn.active")
        logger.info(
            f"Turn {handle.turn_id} started: conversation={request.conversation.id}, "
            f"provider={settings.provider}, model={settings.model}",
            extra=log_fields,
        )

        try:
            try:
                adapter = self.adapter_factory(settings)
            except ValueError as e:
                phase, error = TurnPhase.ERROR, str(e)
                adapter = None

            while adapter is not None:
                if state.recursion.depth >= max_depth:
                    phase = TurnPhase.DEPTH_LIMITED
                    break

                phase = TurnPhase.STREAMING
                round_tools = tool_names.for_round(
                    self._round_options(request), state.recursion.call_counts
                )
                system_prompt = self._system_prompt(request, state.workspace)
                metrics.inc("turn.rounds", labels={"provider": settings.provider})
                logger.debug(
                    f"Turn {handle.turn_id} round {state.recursion.depth}: "
                    f"{len(round_tools)} tools, {len(state.executions)} replayed"
                )

                calls: list[ToolCallInfo] = []
                interrupted = None
                stream = adapter.stream(
                    request.messages, system_prompt, round_tools, state.executions
                )
                try:
                    while True:
                        item = await self._next_chunk(stream, handle.abort_event, deadline)
                        if item is _END:
                            break
                        if item is _ABORTED or item is _TIMED_OUT:
                            interrupted = item
                            break
                        for event in self._apply_chunk(state, item, calls):
                            yield event
                except ProviderError as e:
                    phase, error = TurnPhase.ERROR, str(e)
                    logger.error(f"Turn {handle.turn_id} provider error: {e}", extra=log_fields)
                    break
                except Exception as e:
                    phase, error = TurnPhase.ERROR, str(e)
                    logger.error(
                        f"Turn {handle.turn_id} failed while streaming: {e}",
                        exc_info=True,
                        extra=log_fields,
                    )
                    break
                finally:
                    await stream.aclose()

                for event in self._apply_segments(state, extractor.finish(state.extractor)):
                    yield event

                if interrupted is not None:
                    phase = TurnPhase.ABORTED
                    if interrupted is _TIMED_OUT:
                        logger.warning(
                            f"Turn {handle.turn_id} timed out after "
                            f"{self.turn_config.stream_timeout:g}s"
                        )
                    break

                if not calls:
                    phase = TurnPhase.DONE
                    break

                # ─── Tools ───
                phase = TurnPhase.TOOL_PENDING
                for call in calls:
                    yield TurnEvent.tool_call(state.start_tool_call(call).to_dict())

                phase = TurnPhase.EXECUTING
                outcomes: list[ToolOutcome] = []
                async for event in self._execute_calls(calls, state, request, outcomes):
                    yield event

                for call, outcome in zip(calls, outcomes):
                    settled = state.settle_tool_call(
                        call.id, outcome.execution.result, outcome.execution.is_error
                    )
                    yield TurnEvent.tool_result(settled.to_dict())
                    artifact = outcome.new_artifact or outcome.updated_artifact
                    if artifact is not None and not outcome.is_error:
                        state.add_artifact_block(artifact.id)
                        yield TurnEvent.artifact(artifact.to_dict())
                    state.executions.append(outcome.execution)

                state.recursion.depth += 1

                if handle.aborted or time.monotonic() >= deadline:
                    phase = TurnPhase.ABORTED
                    break

            # ─── Commit ───
            if phase == TurnPhase.DEPTH_LIMITED:
                notice = DEPTH_LIMIT_NOTICE.format(limit=max_depth)
                state.add_text_block(notice)
                yield TurnEvent.content(notice)
                logger.warning(f"Turn {handle.turn_id} hit the tool recursion ceiling")

            outcome = self._commit(request, state, phase, error)
            if error is not None:
                yield TurnEvent.error(error)
            yield TurnEvent.done(phase.committed.value, outcome.message.to_dict())

            duration_ms = (time.monotonic() - started) * 1000
            metrics.inc("turn.completed", labels={"phase": phase.value})
            metrics.observe("turn.duration_ms", duration_ms)
            logger.info(
                f"Turn {handle.turn_id} finished: phase={phase.value}, "
                f"rounds={state.recursion.depth - request.depth + 1}, "
                f"duration={duration_ms:.0f}ms",
                extra={**log_fields, "status": phase.value, "duration_ms": round(duration_ms)},
            )
            handle.resolve(outcome)
        finally:
            metrics.gauge_dec("turn.active")
            if not handle.done:
                handle.discard()

    # ─── Round setup ──────────────────────────────────────────

    def _round_options(self, request: TurnRequest) -> RoundToolOptions:
        options = RoundToolOptions.from_settings(
            request.settings,
            max_calls_per_tool=self.turn_config.max_calls_per_tool,
            has_web_results=request.web_results is not None,
            has_drive_results=request.drive_results is not None,
        )
        return replace(
            options,
            artifacts=options.artifacts and self.executor.tool_config.artifacts_enabled,
        )

    def _system_prompt(self, request: TurnRequest, workspace: ArtifactWorkspace) -> str | None:
        artifact_prompt = None
        if request.settings.artifacts_enabled and self.executor.tool_config.artifacts_enabled:
            artifact_prompt = build_artifact_system_prompt(workspace.all())
        return merge_system_prompts(
            request.settings.global_system_prompt,
            request.conversation.project_instructions,
            request.conversation.system_prompt,
            artifact_prompt,
            format_precomputed_context(request.web_results, request.drive_results),
        )

    # ─── Streaming ────────────────────────────────────────────

    async def _next_chunk(
        self,
        stream: AsyncIterator[StreamChunk],
        abort_event: asyncio.Event,
        deadline: float,
    ) -> Any:
        """The next chunk, _END, or _ABORTED / _TIMED_OUT if the read lost the race."""
        if abort_event.is_set():
            return _ABORTED
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return _TIMED_OUT

        pull = asyncio.ensure_future(_pull(stream))
        abort_wait = asyncio.ensure_future(abort_event.wait())
        done, _ = await asyncio.wait(
            {pull, abort_wait}, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
        )
        if pull in done:
            abort_wait.cancel()
            await asyncio.gather(abort_wait, return_exceptions=True)
            return pull.result()

        pull.cancel()
        abort_wait.cancel()
        await asyncio.gather(pull, abort_wait, return_exceptions=True)
        return _ABORTED if abort_wait in done else _TIMED_OUT

    def _apply_chunk(
        self, state: TurnState, chunk: StreamChunk, calls: list[ToolCallInfo]
    ) -> list[TurnEvent]:
        if chunk.type == StreamChunkType.CONTENT:
            result = extractor.consume(state.extractor, chunk.content)
            return self._apply_segments(state, result)

        if chunk.type == StreamChunkType.REASONING:
            state.append_reasoning(chunk.reasoning)
            return [TurnEvent.reasoning(chunk.reasoning)] if chunk.reasoning else []

        if chunk.type == StreamChunkType.USAGE and chunk.usage is not None:
            state.add_usage(chunk.usage)
            return [TurnEvent.usage(chunk.usage)]

        calls.extend(chunk.calls)
        return []

    def _apply_segments(
        self, state: TurnState, result: extractor.ExtractResult
    ) -> list[TurnEvent]:
        state.extractor = result.state
        events = []
        for segment in result.segments:
            if isinstance(segment, str):
                state.append_text(segment)
                events.append(TurnEvent.content(segment))
            else:
                artifact = segment.to_artifact()
                state.workspace.add(artifact)
                state.add_artifact_block(artifact.id)
                events.append(TurnEvent.artifact(artifact.to_dict()))
        return events

    # ─── Tools ────────────────────────────────────────────────

    async def _execute_calls(
        self,
        calls: list[ToolCallInfo],
        state: TurnState,
        request: TurnRequest,
        outcomes: list[ToolOutcome],
    ) -> AsyncIterator[TurnEvent]:
        """
        Run every call concurrently, yielding status events as they happen.

        Fills `outcomes` in call order once the whole batch has settled.
        """
        limit = self.turn_config.max_calls_per_tool
        side_events: asyncio.Queue[TurnEvent] = asyncio.Queue()

        async def run_one(call: ToolCallInfo) -> ToolOutcome:
            if not _exempt_from_limit(call.name, call.source):
                if state.recursion.record(call.name) > limit:
                    logger.warning(f"Tool {call.name} over its per-turn limit ({limit})")
                    return ToolOutcome(execution=limit_reached_result(call, limit))
            return await self.executor.execute(
                call, state.workspace, request.conversation.id, side_events.put_nowait
            )

        batch = asyncio.ensure_future(asyncio.gather(*(run_one(c) for c in calls)))
        while not batch.done() or not side_events.empty():
            if not side_events.empty():
                yield side_events.get_nowait()
                continue
            getter = asyncio.ensure_future(side_events.get())
            await asyncio.wait({batch, getter}, return_when=asyncio.FIRST_COMPLETED)
            if not getter.done():
                getter.cancel()
            await asyncio.gather(getter, return_exceptions=True)
            if not getter.cancelled():
                yield getter.result()

        outcomes.extend(batch.result())

    def _commit(
        self,
        request: TurnRequest,
        state: TurnState,
        phase: TurnPhase,
        error: str | None,
    ) -> TurnOutcome:
        model = request.settings.model
        if phase == TurnPhase.ERROR:
            message = ChatMessage(role=Role.ASSISTANT, content=f"Error: {error}", model=model)
            artifacts = list(request.conversation.artifacts)
        else:
            message = state.build_message(model)
            artifacts = state.workspace.merged()

        conversation = request.conversation.with_message(message).with_artifacts(artifacts)
        return TurnOutcome(
            phase=phase,
            message=message,
            artifacts=artifacts,
            conversation=conversation,
            error=error,
            usage=state.usage,
        )


def _exempt_from_limit(tool_name: str, source: str | None) -> bool:
    """Artifact tools never count against the per-tool ceiling."""
    if source is not None and source != ToolSource.ARTIFACT.value:
        return False
    return is_artifact_tool(tool_name)

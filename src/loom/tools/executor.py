"""
Tool Executor — run one tool call and settle it into a result.

This is the bridge between the orchestrator and the tool backends:
1. The orchestrator hands over a ToolCallInfo plus the turn's workspace
2. The executor routes it by source (search, memory, documents,
   artifacts, MCP/builtin passthrough)
3. Whatever happens, a ToolExecutionResult comes back. Tool-level
   failures never raise past this module.

Status lines ("Searching: …") and Drive token refreshes are reported
through the `emit` callback while the call runs.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from loom.core.config import ToolConfig, config
from loom.core.metrics import metrics
from loom.llm.contracts import ToolCallInfo, ToolExecutionResult, TurnEvent
from loom.session.models import Artifact
from loom.tools.artifacts import ArtifactWorkspace, run_artifact_tool
from loom.tools.capabilities import ToolBackends, ToolClientError, ToolTimeoutError
from loom.tools.definitions import is_artifact_tool
from loom.tools.formatting import (
    DOCUMENT_SEARCH_FAILED,
    DRIVE_SEARCH_FAILED,
    MEMORY_SEARCH_FAILED,
    WEB_SEARCH_FAILED,
    format_drive_results,
    format_web_results,
    search_status,
)
from loom.tools.naming import ToolSource

logger = logging.getLogger(__name__)

EmitFn = Callable[[TurnEvent], None]


def _discard(event: TurnEvent) -> None:
    pass


@dataclass
class ToolOutcome:
    """A settled call plus any artifact it created or changed."""

    execution: ToolExecutionResult
    new_artifact: Artifact | None = None
    updated_artifact: Artifact | None = None

    @property
    def is_error(self) -> bool:
        return self.execution.is_error


def limit_reached_result(call: ToolCallInfo, limit: int) -> ToolExecutionResult:
    """Answer for a call that arrived after its tool hit the per-turn ceiling."""
    return ToolExecutionResult.for_call(
        call,
        f'Error: Tool "{call.name}" has already been called {limit} times '
        "this turn. Use the results you already have.",
        is_error=True,
    )


class ToolExecutor:
    """
    Executes tool calls against the configured backends.

    Backends the deployment does not provide yield error results, so the
    model sees why a tool did nothing.
    """

    def __init__(
        self,
        backends: ToolBackends | None = None,
        tool_config: ToolConfig | None = None,
    ):
        self.backends = backends or ToolBackends()
        self.tool_config = tool_config or config.tools

    async def execute(
        self,
        call: ToolCallInfo,
        workspace: ArtifactWorkspace,
        conversation_id: str | None = None,
        emit: EmitFn | None = None,
    ) -> ToolOutcome:
        emit = emit or _discard
        started = time.time()
        logger.info(
            f"Executing tool: {call.original_name} (source={call.source})",
            extra={"tool": call.name, "conversation_id": conversation_id},
        )

        try:
            outcome = await self._dispatch(call, workspace, conversation_id, emit)
        except Exception as e:
            logger.error(f"Tool {call.original_name} crashed: {e}", exc_info=True)
            outcome = ToolOutcome(
                execution=ToolExecutionResult.for_call(call, f"Error: {e}", is_error=True)
            )

        duration_ms = (time.time() - started) * 1000
        status = "error" if outcome.is_error else "ok"
        metrics.inc("tool.executed", labels={"tool": call.name, "status": status})
        metrics.observe("tool.duration_ms", duration_ms, labels={"tool": call.name})
        logger.info(
            f"Tool {call.original_name} finished ({status}, {duration_ms:.0f}ms)",
            extra={"tool": call.name, "status": status, "duration_ms": round(duration_ms)},
        )
        return outcome

    async def _dispatch(
        self,
        call: ToolCallInfo,
        workspace: ArtifactWorkspace,
        conversation_id: str | None,
        emit: EmitFn,
    ) -> ToolOutcome:
        source = call.source or ToolSource.OTHER.value

        if source == ToolSource.ARTIFACT.value and is_artifact_tool(call.name):
            artifact_result = run_artifact_tool(call.name, call.params, workspace)
            return ToolOutcome(
                execution=ToolExecutionResult.for_call(
                    call, artifact_result.result, artifact_result.is_error
                ),
                new_artifact=artifact_result.new_artifact,
                updated_artifact=artifact_result.updated_artifact,
            )

        if source == ToolSource.WEB_SEARCH.value:
            result, is_error = await self._web_search(call, emit)
        elif source == ToolSource.GOOGLE_DRIVE.value:
            result, is_error = await self._drive_search(call, emit)
        elif source == ToolSource.MEMORY_SEARCH.value:
            result, is_error = await self._memory_search(call, conversation_id)
        elif source == ToolSource.RAG_SEARCH.value:
            result, is_error = await self._document_search(call)
        elif ToolSource(source).is_external:
            result, is_error = await self._passthrough(call)
        else:
            result, is_error = f'Error: Unknown tool "{call.original_name}".', True

        return ToolOutcome(execution=ToolExecutionResult.for_call(call, result, is_error))

    # ─── Search family ────────────────────────────────────────

    async def _search_with_retry(
        self,
        call: ToolCallInfo,
        label: str,
        run: Callable[[str], Awaitable[str]],
        failure_message: str,
        emit: EmitFn,
    ) -> tuple[str, bool]:
        """
        Up to 1 + search_retries attempts with exponential backoff.

        A status line is emitted before each attempt and cleared once the
        call settles, whichever way it settles.
        """
        query = call.params.get("query")
        if not query:
            return f"Error: {call.name} requires a query parameter.", True

        attempts = 1 + self.tool_config.search_retries
        try:
            for attempt in range(attempts):
                emit(TurnEvent.status(search_status(label, query, attempt), call.id))
                try:
                    return await run(query), False
                except Exception as e:
                    logger.warning(
                        f"{call.name} attempt {attempt + 1}/{attempts} failed: {e}"
                    )
                    if attempt < attempts - 1:
                        await asyncio.sleep(
                            self.tool_config.retry_delay_base * 2**attempt
                        )
            logger.error(f"{call.name} failed after {attempts} attempts")
            return failure_message, True
        finally:
            emit(TurnEvent.status(None, call.id))

    async def _web_search(self, call: ToolCallInfo, emit: EmitFn) -> tuple[str, bool]:
        backend = self.backends.web_search
        if backend is None:
            return "Error: Web search is not available.", True

        async def run(query: str) -> str:
            return format_web_results(await backend.search(query))

        return await self._search_with_retry(
            call, "Searching", run, WEB_SEARCH_FAILED, emit
        )

    async def _drive_search(self, call: ToolCallInfo, emit: EmitFn) -> tuple[str, bool]:
        backend = self.backends.drive_search
        if backend is None:
            return "Error: Google Drive search is not available.", True

        async def run(query: str) -> str:
            response = await backend.search(query)
            if response.new_access_token:
                logger.info("Drive access token refreshed during search")
                emit(
                    TurnEvent.token_refresh(
                        response.new_access_token, response.new_token_expiry
                    )
                )
            return format_drive_results(response)

        return await self._search_with_retry(
            call, "Searching Drive", run, DRIVE_SEARCH_FAILED, emit
        )

    async def _memory_search(
        self, call: ToolCallInfo, conversation_id: str | None
    ) -> tuple[str, bool]:
        backend = self.backends.memory_search
        query = call.params.get("query")
        if backend is None:
            return "Error: Memory search is not available.", True
        if not query:
            return "Error: memory_search requires a query parameter.", True

        try:
            text = await backend.search(query, exclude_conversation_id=conversation_id)
        except Exception as e:
            logger.error(f"Memory search failed: {e}", exc_info=True)
            return MEMORY_SEARCH_FAILED, True
        if text is None:
            return MEMORY_SEARCH_FAILED, True
        return text, False

    async def _document_search(self, call: ToolCallInfo) -> tuple[str, bool]:
        backend = self.backends.document_search
        query = call.params.get("query")
        if backend is None:
            return "Error: Document search is not available.", True
        if not query:
            return "Error: rag_search requires a query parameter.", True

        try:
            text = await backend.search(query)
        except Exception as e:
            logger.error(f"Document search failed: {e}", exc_info=True)
            return DOCUMENT_SEARCH_FAILED, True
        if text is None:
            return DOCUMENT_SEARCH_FAILED, True
        return text, False

    # ─── MCP / builtin passthrough ────────────────────────────

    async def _passthrough(self, call: ToolCallInfo) -> tuple[str, bool]:
        """
        Forward to the external tool client.

        Transient failures are retried with the search backoff. A 4xx-class
        ToolClientError or a timeout ends the call on the spot.
        """
        client = self.backends.external
        if client is None:
            return f'Error: No tool client available for "{call.original_name}".', True

        timeout = self.tool_config.passthrough_timeout
        attempts = 1 + self.tool_config.search_retries
        last_error: Exception | None = None

        for attempt in range(attempts):
            try:
                result = await asyncio.wait_for(
                    client.call_tool(
                        call.name, call.params, call.source or "", call.server_id
                    ),
                    timeout=timeout,
                )
            except (asyncio.TimeoutError, ToolTimeoutError):
                logger.error(f"Tool {call.original_name} timed out after {timeout:g}s")
                return f'Error: Tool "{call.name}" timed out after {timeout:g}s.', True
            except ToolClientError as e:
                logger.warning(f"Tool {call.original_name} rejected: {e}")
                return f"Error: {e}", True
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Tool {call.original_name} attempt {attempt + 1}/{attempts} failed: {e}"
                )
                if attempt < attempts - 1:
                    await asyncio.sleep(self.tool_config.retry_delay_base * 2**attempt)
                continue

            return result.output, result.error

        return f"Error: {last_error}", True

"""
Chat HTTP API — provider rounds and whole turns as SSE streams.

Endpoints:
    POST /v1/chat/stream                 → One provider round, StreamChunk frames
    POST /v1/turns                       → Send / regenerate / edit, TurnEvent frames
    POST /v1/turns/{conversation_id}/abort → Abort the running turn

Every stream ends with `data: [DONE]`. Failures inside a stream arrive
as an `{"error": ...}` frame; request validation failures are plain
JSON errors with a 4xx status.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from loom.http.framing import DONE_FRAME, encode_frame
from loom.llm.contracts import ToolExecutionResult, TurnEvent
from loom.providers.base import ProviderAdapter, ProviderError
from loom.session.models import Attachment, ChatMessage, ChatSettings, Conversation
from loom.session.turns import TurnManager
from loom.tools.capabilities import DriveSearchResponse, WebSearchResponse
from loom.tools.registry import ExternalTool, RoundToolOptions, ToolRegistry

if TYPE_CHECKING:
    from loom.llm.core import TurnHandle, TurnOrchestrator

logger = logging.getLogger(__name__)

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def create_chat_router(
    orchestrator: "TurnOrchestrator",
    manager: TurnManager | None = None,
) -> APIRouter:
    """Create the chat router bound to an orchestrator (and its turn manager)."""

    router = APIRouter(prefix="/v1", tags=["chat"])
    manager = manager or TurnManager(orchestrator)

    # ─── Single round ─────────────────────────────────────────

    @router.post("/chat/stream", response_model=None)
    async def chat_stream(request: Request):
        body = await request.json()
        settings = ChatSettings.from_dict(body.get("settings") or {})

        try:
            adapter = orchestrator.adapter_factory(settings)
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=400)

        messages = [ChatMessage.from_dict(m) for m in body.get("messages") or []]
        if not messages:
            return JSONResponse({"error": "messages is required"}, status_code=400)

        tools = _round_tools(orchestrator, settings, body)
        executions = [
            ToolExecutionResult.from_dict(e) for e in body.get("tool_executions") or []
        ]

        return StreamingResponse(
            _stream_round(adapter, messages, body.get("system_prompt"), tools, executions),
            media_type="text/event-stream",
            headers=_SSE_HEADERS,
        )

    # ─── Turns ────────────────────────────────────────────────

    @router.post("/turns", response_model=None)
    async def start_turn(request: Request):
        body = await request.json()
        conversation = Conversation.from_dict(body.get("conversation") or {})
        settings = ChatSettings.from_dict(body.get("settings") or {})
        options = _turn_options(body)

        try:
            if body.get("regenerate"):
                handle = await manager.regenerate(conversation, settings, **options)
            elif body.get("edit_message_id"):
                handle = await manager.edit(
                    conversation,
                    body["edit_message_id"],
                    body.get("content", ""),
                    settings,
                    **options,
                )
            else:
                content = body.get("content", "")
                attachments = [Attachment.from_dict(a) for a in body.get("attachments") or []]
                if not content and not attachments:
                    return JSONResponse({"error": "content is required"}, status_code=400)
                handle = await manager.send(
                    conversation, content, settings, attachments, **options
                )
        except (KeyError, ValueError) as e:
            return JSONResponse({"error": str(e).strip("'\"")}, status_code=400)

        return StreamingResponse(
            _stream_turn(handle),
            media_type="text/event-stream",
            headers=_SSE_HEADERS,
        )

    @router.post("/turns/{conversation_id}/abort")
    async def abort_turn(conversation_id: str) -> JSONResponse:
        aborted = manager.abort(conversation_id)
        if not aborted:
            return JSONResponse(
                {"error": "No running turn", "conversation_id": conversation_id},
                status_code=404,
            )
        return JSONResponse({"conversation_id": conversation_id, "aborted": True})

    return router


# ─── Helpers ─────────────────────────────────────────────────────


def _external_tools(body: dict[str, Any]) -> list[ExternalTool]:
    return [ExternalTool.from_dict(t) for t in body.get("external_tools") or []]


def _round_tools(
    orchestrator: "TurnOrchestrator", settings: ChatSettings, body: dict[str, Any]
) -> ToolRegistry:
    tools = orchestrator.registry.without()
    for tool in _external_tools(body):
        tools.register_external(tool)
    options = RoundToolOptions.from_settings(
        settings, max_calls_per_tool=orchestrator.turn_config.max_calls_per_tool
    )
    return tools.for_round(options, body.get("call_counts") or {})


def _turn_options(body: dict[str, Any]) -> dict[str, Any]:
    options: dict[str, Any] = {"external_tools": _external_tools(body)}
    if body.get("web_results"):
        options["web_results"] = WebSearchResponse.from_dict(body["web_results"])
    if body.get("drive_results"):
        options["drive_results"] = DriveSearchResponse.from_dict(body["drive_results"])
    return options


# ─── Streaming Responses ─────────────────────────────────────────


async def _stream_round(
    adapter: ProviderAdapter,
    messages: list[ChatMessage],
    system_prompt: str | None,
    tools: ToolRegistry,
    executions: list[ToolExecutionResult],
) -> AsyncGenerator[str, None]:
    try:
        async for chunk in adapter.stream(messages, system_prompt, tools, executions):
            yield encode_frame(chunk.to_frame())
    except ProviderError as e:
        logger.error(f"Round failed ({adapter.name}): {e}")
        yield encode_frame({"error": str(e)})
    yield DONE_FRAME


async def _stream_turn(handle: "TurnHandle") -> AsyncGenerator[str, None]:
    async for event in handle.events():
        yield encode_frame(event.to_frame())
    try:
        await handle.wait()
    except Exception as e:
        yield encode_frame(TurnEvent.error(str(e)).to_frame())
    yield DONE_FRAME

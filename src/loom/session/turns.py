"""
Turn Manager — launch turns (send / regenerate / edit), one per conversation.

Starting a turn for a conversation that already has one running aborts
the earlier turn. The earlier turn still commits its partial content
through the persistence callbacks when it winds down.

Usage:
    manager = TurnManager(orchestrator, persist_conversation=store.save)
    handle = await manager.send(conversation, "hello", settings)
    async for event in handle.events():
        ...
    outcome = await handle.wait()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable

from loom.llm.core import TurnHandle, TurnOrchestrator, TurnOutcome, TurnRequest
from loom.session.models import (
    Artifact,
    Attachment,
    ChatMessage,
    ChatSettings,
    Conversation,
    Role,
)

logger = logging.getLogger(__name__)

PersistConversation = Callable[[Conversation], Awaitable[None]]
PersistArtifacts = Callable[[str, list[Artifact]], Awaitable[None]]


class TurnManager:
    def __init__(
        self,
        orchestrator: TurnOrchestrator,
        persist_conversation: PersistConversation | None = None,
        persist_artifacts: PersistArtifacts | None = None,
    ):
        self.orchestrator = orchestrator
        self.persist_conversation = persist_conversation
        self.persist_artifacts = persist_artifacts
        self._running: dict[str, TurnHandle] = {}

    # ─── Launch variants ──────────────────────────────────────

    async def send(
        self,
        conversation: Conversation,
        content: str,
        settings: ChatSettings,
        attachments: Iterable[Attachment] = (),
        **options: Any,
    ) -> TurnHandle:
        """Append a user message and answer it."""
        message = ChatMessage(
            role=Role.USER,
            content=content,
            attachments=tuple(attachments),
            project_files=conversation.project_files,
        )
        return await self._launch(conversation.with_message(message), settings, options)

    async def regenerate(
        self, conversation: Conversation, settings: ChatSettings, **options: Any
    ) -> TurnHandle:
        """Drop the last assistant message and answer the user message again."""
        prepared = conversation.without_last_assistant()
        if not prepared.messages or prepared.messages[-1].role != Role.USER:
            raise ValueError("Nothing to regenerate: conversation does not end with a user message")
        return await self._launch(prepared, settings, options)

    async def edit(
        self,
        conversation: Conversation,
        message_id: str,
        content: str,
        settings: ChatSettings,
        **options: Any,
    ) -> TurnHandle:
        """Replace a user message, drop everything after it, answer again."""
        prepared = conversation.edited_at(message_id, content)
        if prepared.messages[-1].role != Role.USER:
            raise ValueError(f"Message {message_id} is not a user message")
        return await self._launch(prepared, settings, options)

    # ─── Control ──────────────────────────────────────────────

    def running(self, conversation_id: str) -> TurnHandle | None:
        handle = self._running.get(conversation_id)
        if handle is None or handle.done:
            return None
        return handle

    def abort(self, conversation_id: str) -> bool:
        handle = self.running(conversation_id)
        if handle is None:
            return False
        handle.abort()
        return True

    async def shutdown(self) -> None:
        """Abort everything still running and wait for the commits."""
        handles = [h for h in self._running.values() if h.task is not None]
        for handle in handles:
            handle.abort()
        await asyncio.gather(*(h.task for h in handles), return_exceptions=True)

    # ─── Internals ────────────────────────────────────────────

    async def _launch(
        self,
        conversation: Conversation,
        settings: ChatSettings,
        options: dict[str, Any],
    ) -> TurnHandle:
        previous = self.running(conversation.id)
        if previous is not None:
            logger.info(
                f"Superseding turn {previous.turn_id} in conversation {conversation.id}"
            )
            previous.abort()
            # A started tool call runs to completion; the old turn must
            # commit before the new one starts so commits land in launch order.
            await asyncio.gather(previous.task, return_exceptions=True)

        handle = TurnHandle(conversation.id)
        request = TurnRequest(
            conversation=conversation,
            settings=settings,
            turn_id=handle.turn_id,
            **options,
        )
        self._running[conversation.id] = handle
        handle.task = asyncio.create_task(self._drive(request, handle))
        return handle

    async def _drive(self, request: TurnRequest, handle: TurnHandle) -> None:
        try:
            async for event in self.orchestrator.run_turn(request, handle):
                handle.publish(event)
            outcome = await handle.wait()
        except Exception as e:
            logger.error(f"Turn {handle.turn_id} crashed: {e}", exc_info=True)
            handle.fail(e)
            return
        finally:
            if self._running.get(handle.conversation_id) is handle:
                del self._running[handle.conversation_id]

        await self._commit(outcome)

    async def _commit(self, outcome: TurnOutcome) -> None:
        conversation = outcome.conversation
        try:
            if self.persist_conversation is not None:
                await self.persist_conversation(conversation)
            if self.persist_artifacts is not None:
                await self.persist_artifacts(conversation.id, outcome.artifacts)
        except Exception as e:
            logger.error(
                f"Failed to persist conversation {conversation.id}: {e}", exc_info=True
            )

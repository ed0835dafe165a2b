"""
Session models — conversations, messages, content blocks, artifacts.

The turn manager lives in loom.session.turns.
"""

from loom.session.models import (
    Artifact,
    ArtifactType,
    Attachment,
    ChatMessage,
    ChatSettings,
    ContentBlock,
    Conversation,
    Role,
    ToolCall,
    ToolCallStatus,
)

__all__ = [
    "Artifact",
    "ArtifactType",
    "Attachment",
    "ChatMessage",
    "ChatSettings",
    "ContentBlock",
    "Conversation",
    "Role",
    "ToolCall",
    "ToolCallStatus",
]

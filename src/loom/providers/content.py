"""
Attachment inlining — per-vendor user message content.

Images become the vendor's image part. Files are base64 text documents
and are decoded and inlined as text:

    [File: notes.md]
    <decoded text>

Project files come before the message's own attachments.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

from loom.session.models import Attachment, ChatMessage


def decode_file(attachment: Attachment) -> str:
    try:
        text = base64.b64decode(attachment.data, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return f"[File: {attachment.name}] (Unable to decode content)"
    return f"[File: {attachment.name}]\n{text}"


def _all_attachments(message: ChatMessage) -> list[Attachment]:
    return list(message.project_files) + list(message.attachments)


def file_texts(message: ChatMessage) -> list[str]:
    return [decode_file(a) for a in _all_attachments(message) if not a.is_image]


def images(message: ChatMessage) -> list[Attachment]:
    return [a for a in _all_attachments(message) if a.is_image]


def has_attachments(message: ChatMessage) -> bool:
    return bool(message.attachments or message.project_files)


def data_url(image: Attachment) -> str:
    return f"data:{image.mime_type};base64,{image.data}"


def to_openai_content(message: ChatMessage) -> str | list[dict[str, Any]]:
    """Text first, then files, then image_url parts."""
    if not has_attachments(message):
        return message.content

    parts: list[dict[str, Any]] = []
    if message.content:
        parts.append({"type": "text", "text": message.content})
    for text in file_texts(message):
        parts.append({"type": "text", "text": text})
    for image in images(message):
        parts.append({"type": "image_url", "image_url": {"url": data_url(image)}})
    return parts


def to_anthropic_content(message: ChatMessage) -> str | list[dict[str, Any]]:
    """Images first, then files, then the message text."""
    if not has_attachments(message):
        return message.content

    parts: list[dict[str, Any]] = []
    for image in images(message):
        parts.append(
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image.mime_type,
                    "data": image.data,
                },
            }
        )
    for text in file_texts(message):
        parts.append({"type": "text", "text": text})
    if message.content:
        parts.append({"type": "text", "text": message.content})
    return parts


def to_gemini_parts(message: ChatMessage) -> list[dict[str, Any]]:
    """inline_data parts, then files, then the message text."""
    parts: list[dict[str, Any]] = []
    for image in images(message):
        parts.append(
            {"inline_data": {"mime_type": image.mime_type, "data": image.data}}
        )
    for text in file_texts(message):
        parts.append({"text": text})
    if message.content or not parts:
        parts.append({"text": message.content})
    return parts


def to_flat_text(message: ChatMessage) -> str:
    """Message text with decoded files appended, for text-only protocols."""
    texts = file_texts(message)
    if not texts:
        return message.content
    return "\n\n".join([message.content, *texts]) if message.content else "\n\n".join(texts)

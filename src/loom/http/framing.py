"""
SSE framing — one JSON object per `data:` line, `[DONE]` to finish.

    data: {"content": "Hel"}

    data: {"content": "lo"}

    data: [DONE]

Decoding is forgiving: a frame that is not valid JSON is skipped and the
stream carries on.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Iterable, Iterator

logger = logging.getLogger(__name__)

DONE_FRAME = "data: [DONE]\n\n"
_DONE = object()


def encode_frame(data: dict[str, Any]) -> str:
    """Format a dict as an SSE data line."""
    return f"data: {json.dumps(data)}\n\n"


def parse_frame(line: str) -> Any:
    """
    The payload of one SSE line.

    Returns the decoded dict, the _DONE marker for `[DONE]`, or None for
    anything that is not a usable data line.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None
    raw = line[len("data:"):].strip()
    if raw == "[DONE]":
        return _DONE
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Skipping malformed frame: {raw[:100]}")
        return None
    return payload if isinstance(payload, dict) else None


async def iter_frames(lines: AsyncIterable[str]) -> AsyncIterator[dict[str, Any]]:
    """Decoded frames from an async line source, stopping at [DONE]."""
    async for line in lines:
        frame = parse_frame(line)
        if frame is _DONE:
            return
        if frame is not None:
            yield frame


def decode_frames(text: str | Iterable[str]) -> Iterator[dict[str, Any]]:
    """Decoded frames from a complete body (or its lines), stopping at [DONE]."""
    lines = text.splitlines() if isinstance(text, str) else text
    for line in lines:
        frame = parse_frame(line)
        if frame is _DONE:
            return
        if frame is not None:
            yield frame

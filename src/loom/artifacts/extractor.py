"""
Artifact Stream Extractor — pull <artifact> documents out of a token stream.

Models that are not using the artifact tools may still write artifacts
inline:

    Here you go:
    <artifact type="code" title="Fibonacci" language="python">
    def fib(n): ...
    </artifact>

consume() is fed content deltas as they arrive and returns the text that
is safe to display plus any artifacts completed by this delta. A chunk
boundary may fall anywhere, including inside a delimiter: text that could
still turn into an opening tag is held back in `pending` until the next
delta settles it. The result is the same however the stream is split.

State is immutable; every call returns a new ExtractorState.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Union

from loom.session.models import Artifact, ArtifactType

logger = logging.getLogger(__name__)

OPEN_TAG = re.compile(r"<artifact\s+([^>]*)>", re.IGNORECASE)
CLOSE_TAG = re.compile(r"</artifact>", re.IGNORECASE)
ATTRIBUTE = re.compile(r"(\w+)=[\"']([^\"']*)[\"']")

_OPEN_PREFIX = "<artifact"
_CLOSE_LEN = len("</artifact>")


@dataclass(frozen=True)
class ParsedArtifact:
    """An artifact lifted out of the text stream, not yet given an id."""

    type: ArtifactType
    title: str
    content: str
    language: str | None = None

    def to_artifact(self) -> Artifact:
        return Artifact.new(
            type=self.type,
            title=self.title,
            content=self.content,
            language=self.language,
        )


Segment = Union[str, ParsedArtifact]


@dataclass(frozen=True)
class ExtractorState:
    pending: str = ""  # withheld text that may be the start of an opening tag
    in_artifact: bool = False
    meta: dict[str, str] = field(default_factory=dict)
    buffer: str = ""  # artifact body received so far
    raw_open: str = ""  # the opening tag as written, released if never closed


@dataclass(frozen=True)
class ExtractResult:
    state: ExtractorState
    display_text: str = ""
    # Text and artifacts in stream order, adjacent text merged
    segments: tuple[Segment, ...] = ()
    completed_artifacts: tuple[ParsedArtifact, ...] = ()

    @property
    def completed_artifact(self) -> ParsedArtifact | None:
        return self.completed_artifacts[-1] if self.completed_artifacts else None


def parse_attributes(raw: str) -> dict[str, str]:
    return {key.lower(): value for key, value in ATTRIBUTE.findall(raw)}


def _valid_meta(attributes: dict[str, str]) -> bool:
    return ArtifactType.is_valid(attributes.get("type", "").lower()) and bool(
        attributes.get("title")
    )


def _holdback_index(data: str, start: int) -> int:
    """
    Index of the earliest '<' that could still grow into an opening tag.

    That is a '<' with no '>' after it whose text is either a prefix of
    "<artifact" or "<artifact" followed by whitespace and attributes.
    """
    index = data.find("<", start)
    while index != -1:
        suffix = data[index:]
        if ">" not in suffix:
            lowered = suffix.lower()
            if _OPEN_PREFIX.startswith(lowered):
                return index
            if (
                lowered.startswith(_OPEN_PREFIX)
                and len(lowered) > len(_OPEN_PREFIX)
                and lowered[len(_OPEN_PREFIX)].isspace()
            ):
                return index
        index = data.find("<", index + 1)
    return len(data)


class _Segments:
    def __init__(self):
        self.items: list[Segment] = []

    def text(self, text: str) -> None:
        if not text:
            return
        if self.items and isinstance(self.items[-1], str):
            self.items[-1] += text
        else:
            self.items.append(text)

    def artifact(self, artifact: ParsedArtifact) -> None:
        self.items.append(artifact)

    def result(self, state: ExtractorState) -> ExtractResult:
        return ExtractResult(
            state=state,
            display_text="".join(s for s in self.items if isinstance(s, str)),
            segments=tuple(self.items),
            completed_artifacts=tuple(
                s for s in self.items if isinstance(s, ParsedArtifact)
            ),
        )


def consume(state: ExtractorState, chunk: str) -> ExtractResult:
    segments = _Segments()
    in_artifact = state.in_artifact
    meta = state.meta
    raw_open = state.raw_open

    if in_artifact:
        data = state.buffer + chunk
        search_from = max(0, len(state.buffer) - _CLOSE_LEN)
    else:
        data = state.pending + chunk
        search_from = 0

    while True:
        if in_artifact:
            close = CLOSE_TAG.search(data, search_from)
            if close is None:
                return segments.result(
                    ExtractorState(
                        in_artifact=True, meta=meta, buffer=data, raw_open=raw_open
                    )
                )
            artifact = ParsedArtifact(
                type=ArtifactType(meta["type"].lower()),
                title=meta["title"],
                content=data[: close.start()].strip(),
                language=meta.get("language"),
            )
            logger.debug(f"Extracted inline artifact: {artifact.title}")
            segments.artifact(artifact)
            data = data[close.end():]
            in_artifact, meta, raw_open = False, {}, ""
            search_from = 0
            continue

        opening = OPEN_TAG.search(data, search_from)
        if opening is None:
            hold = _holdback_index(data, search_from)
            segments.text(data[search_from:hold])
            return segments.result(ExtractorState(pending=data[hold:]))

        attributes = parse_attributes(opening.group(1))
        if not _valid_meta(attributes):
            # Not one of ours: show the tag as written and keep scanning
            segments.text(data[search_from: opening.end()])
            search_from = opening.end()
            continue

        segments.text(data[search_from: opening.start()])
        in_artifact, meta, raw_open = True, attributes, opening.group(0)
        data = data[opening.end():]
        search_from = 0


def finish(state: ExtractorState) -> ExtractResult:
    """Release whatever is still withheld at end of stream."""
    segments = _Segments()
    if state.in_artifact:
        logger.debug("Stream ended inside an artifact, releasing it as text")
        segments.text(state.raw_open + state.buffer)
    else:
        segments.text(state.pending)
    return segments.result(ExtractorState())

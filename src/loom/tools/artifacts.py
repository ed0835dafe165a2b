"""
Artifact tools — create / update / read against the turn's workspace.

These run locally and synchronously. Validation failures come back as
"Error: …" strings with is_error set, so the model can correct itself on
the next round instead of the turn crashing.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from loom.session.models import Artifact, ArtifactType

logger = logging.getLogger(__name__)


class ArtifactWorkspace:
    """
    Committed artifacts plus the ones created or updated during this turn.

    Owned by exactly one turn. merged() is what gets committed back to
    the conversation when the turn ends.
    """

    def __init__(self, committed: list[Artifact] | tuple[Artifact, ...] = ()):
        self._committed: dict[str, Artifact] = {a.id: a for a in committed}
        self._order: list[str] = [a.id for a in committed]
        self._created: list[str] = []

    def all(self) -> list[Artifact]:
        return [self._committed[artifact_id] for artifact_id in self._order]

    def get(self, artifact_id: str) -> Artifact | None:
        return self._committed.get(artifact_id)

    def add(self, artifact: Artifact) -> None:
        self._committed[artifact.id] = artifact
        self._order.append(artifact.id)
        self._created.append(artifact.id)

    def replace(self, artifact: Artifact) -> None:
        if artifact.id not in self._committed:
            raise KeyError(artifact.id)
        self._committed[artifact.id] = artifact

    @property
    def in_flight(self) -> list[Artifact]:
        """Artifacts created this turn, in creation order."""
        return [self._committed[artifact_id] for artifact_id in self._created]

    def merged(self) -> list[Artifact]:
        return self.all()


@dataclass
class ArtifactToolResult:
    result: str
    is_error: bool = False
    new_artifact: Artifact | None = None
    updated_artifact: Artifact | None = None


def _not_found(artifact_id: str, workspace: ArtifactWorkspace) -> ArtifactToolResult:
    available = "\n".join(f'  - {a.id} ("{a.title}")' for a in workspace.all())
    message = f'Error: Artifact with ID "{artifact_id}" not found.'
    if available:
        message += f"\nAvailable artifacts:\n{available}"
    else:
        message += "\nNo artifacts exist in this conversation."
    return ArtifactToolResult(result=message, is_error=True)


def create_artifact(params: dict[str, Any], workspace: ArtifactWorkspace) -> ArtifactToolResult:
    artifact_type = params.get("type")
    title = params.get("title")
    content = params.get("content")

    if not artifact_type or not title or not content:
        return ArtifactToolResult(
            result="Error: create_artifact requires type, title, and content parameters.",
            is_error=True,
        )
    if not ArtifactType.is_valid(artifact_type):
        return ArtifactToolResult(
            result=(
                f'Error: Invalid artifact type "{artifact_type}". '
                f"Valid types: {', '.join(ArtifactType.values())}"
            ),
            is_error=True,
        )

    artifact = Artifact.new(
        type=artifact_type,
        title=title,
        content=content,
        language=params.get("language"),
        output_format=params.get("output_format"),
    )
    workspace.add(artifact)
    logger.info(f"Artifact created: {artifact.id} ({artifact.type.value})")

    return ArtifactToolResult(
        result=json.dumps(
            {
                "success": True,
                "artifact_id": artifact.id,
                "title": artifact.title,
                "type": artifact.type.value,
            }
        ),
        new_artifact=artifact,
    )


def update_artifact(params: dict[str, Any], workspace: ArtifactWorkspace) -> ArtifactToolResult:
    artifact_id = params.get("artifact_id")
    content = params.get("content")

    if not artifact_id or not content:
        return ArtifactToolResult(
            result="Error: update_artifact requires artifact_id and content parameters.",
            is_error=True,
        )

    existing = workspace.get(artifact_id)
    if existing is None:
        return _not_found(artifact_id, workspace)

    updated = existing.with_update(
        content=content,
        title=params.get("title"),
        output_format=params.get("output_format"),
    )
    workspace.replace(updated)
    logger.info(f"Artifact updated: {updated.id} (version {len(updated.versions)})")

    return ArtifactToolResult(
        result=json.dumps(
            {
                "success": True,
                "artifact_id": updated.id,
                "title": updated.title,
                "version": len(updated.versions),
            }
        ),
        updated_artifact=updated,
    )


def read_artifact(params: dict[str, Any], workspace: ArtifactWorkspace) -> ArtifactToolResult:
    artifact_id = params.get("artifact_id")
    if not artifact_id:
        return ArtifactToolResult(
            result="Error: read_artifact requires artifact_id parameter.",
            is_error=True,
        )

    existing = workspace.get(artifact_id)
    if existing is None:
        return _not_found(artifact_id, workspace)

    return ArtifactToolResult(
        result=json.dumps(
            {
                "artifact_id": existing.id,
                "type": existing.type.value,
                "title": existing.title,
                "language": existing.language,
                "content": existing.content,
                "versions": len(existing.versions),
            }
        )
    )


_HANDLERS = {
    "create_artifact": create_artifact,
    "update_artifact": update_artifact,
    "read_artifact": read_artifact,
}


def run_artifact_tool(
    name: str, params: dict[str, Any], workspace: ArtifactWorkspace
) -> ArtifactToolResult:
    handler = _HANDLERS.get(name)
    if handler is None:
        return ArtifactToolResult(
            result=f'Error: Unknown artifact tool "{name}".', is_error=True
        )
    return handler(params or {}, workspace)

"""
System prompt assembly — merge the prompt layers, describe artifacts.
"""

from __future__ import annotations

from typing import Iterable

from loom.session.models import Artifact, ArtifactType

ARTIFACT_INSTRUCTIONS = """## Artifacts

You can create artifacts: substantial, self-contained content shown to the user in a dedicated panel.

Use artifacts for content the user is likely to save, reuse or iterate on:
- Complete programs, scripts or components longer than a few lines
- HTML pages, React components, SVG graphics, Mermaid diagrams
- Documents, reports, spreadsheets and presentations

Do not use artifacts for short snippets, brief answers or conversational replies.

Tools:
- create_artifact(type, title, content, language?, output_format?) creates a new artifact.
- update_artifact(artifact_id, content, title?, output_format?) replaces an artifact's content. Always send the complete new content, never a diff.
- read_artifact(artifact_id) returns an artifact's current content. Use it before updating an artifact whose content is not in the recent conversation.

Supported types: {types}."""


def build_artifact_system_prompt(artifacts: Iterable[Artifact] = ()) -> str:
    """Artifact tool instructions plus the artifacts that already exist."""
    prompt = ARTIFACT_INSTRUCTIONS.format(types=", ".join(ArtifactType.values()))

    existing = list(artifacts)
    if existing:
        lines = [
            f'- {a.id} ({a.type.value}): "{a.title}"'
            + (f" [{len(a.versions)} previous versions]" if a.versions else "")
            for a in existing
        ]
        prompt += (
            "\n\nArtifacts in this conversation (use these ids with "
            "update_artifact and read_artifact):\n" + "\n".join(lines)
        )
    return prompt


def merge_system_prompts(*parts: str | None) -> str | None:
    """Join the non-blank layers (global, project, conversation) with blank lines."""
    stripped = [p.strip() for p in parts if p and p.strip()]
    if not stripped:
        return None
    return "\n\n".join(stripped)

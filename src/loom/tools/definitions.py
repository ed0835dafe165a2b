"""
Built-in tool definitions — the single source of truth for their schemas.
"""

from __future__ import annotations

from loom.session.models import ArtifactType
from loom.tools.base import ToolParam, ToolSchema

OUTPUT_FORMATS = ["source", "docx", "pdf", "xlsx", "pptx"]

WEB_SEARCH = ToolSchema.from_params(
    name="web_search",
    description=(
        "Search the web for current information. Use this when you need "
        "up-to-date information, facts you are not certain about, or when the "
        "user asks about recent events, news, or anything that might have "
        "changed after your knowledge cutoff."
    ),
    params=[
        ToolParam(
            name="query",
            type="string",
            description="The search query to look up on the web",
        ),
    ],
)

GOOGLE_DRIVE_SEARCH = ToolSchema.from_params(
    name="google_drive_search",
    description=(
        "Search files in the user's Google Drive. Use this when the user asks "
        "about their documents, files, spreadsheets, presentations, or any "
        "content stored in their Google Drive. This searches file names and "
        "content."
    ),
    params=[
        ToolParam(
            name="query",
            type="string",
            description="The search query to find files in Google Drive",
        ),
    ],
)

MEMORY_SEARCH = ToolSchema.from_params(
    name="memory_search",
    description=(
        "Search through previous conversations to find relevant context, "
        "information, or discussions. Use this when the user references "
        "something from a past conversation, asks about previous discussions, "
        "or when you need to recall information that may have been discussed "
        "before."
    ),
    params=[
        ToolParam(
            name="query",
            type="string",
            description=(
                "The search query to find relevant past conversations. Be "
                "specific and use keywords that are likely to appear in the "
                "content."
            ),
        ),
    ],
)

RAG_SEARCH = ToolSchema.from_params(
    name="rag_search",
    description=(
        "Search through user-uploaded documents for relevant information. Use "
        "this when the user asks about content from their uploaded files, "
        "documents, or knowledge base. This performs semantic search across "
        "all uploaded documents."
    ),
    params=[
        ToolParam(
            name="query",
            type="string",
            description=(
                "The search query to find relevant content in uploaded "
                "documents. Use natural language to describe what you are "
                "looking for."
            ),
        ),
    ],
)

CREATE_ARTIFACT = ToolSchema.from_params(
    name="create_artifact",
    description=(
        "Create a new artifact. Supported types: "
        + ", ".join(ArtifactType.values())
        + ". Use this for substantial, self-contained content that benefits "
        "from a dedicated preview panel. Do NOT use this for short code "
        "snippets shown inline in conversation."
    ),
    params=[
        ToolParam(
            name="type",
            type="string",
            description="The artifact type.",
            enum=ArtifactType.values(),
        ),
        ToolParam(
            name="title",
            type="string",
            description="A short descriptive title for the artifact",
        ),
        ToolParam(
            name="content",
            type="string",
            description=(
                "The full content of the artifact. For document: markdown or "
                "JSON blocks/sections. For spreadsheet: CSV/TSV, markdown "
                "table, or array-of-objects JSON. For presentation: JSON "
                '{"slides":[...]} or markdown with --- slide breaks.'
            ),
        ),
        ToolParam(
            name="language",
            type="string",
            description=(
                'Programming language for code artifacts (e.g. "python", '
                '"typescript"). Only needed when type is "code".'
            ),
            required=False,
        ),
        ToolParam(
            name="output_format",
            type="string",
            description="Optional preferred file format for export/download.",
            required=False,
            enum=OUTPUT_FORMATS,
        ),
    ],
)

UPDATE_ARTIFACT = ToolSchema.from_params(
    name="update_artifact",
    description=(
        "Update an existing artifact with new content. Always provide the "
        "complete updated content, not a diff. Use read_artifact first if you "
        "need to see the current content. You may optionally update "
        "output_format."
    ),
    params=[
        ToolParam(
            name="artifact_id",
            type="string",
            description="The ID of the artifact to update",
        ),
        ToolParam(
            name="content",
            type="string",
            description=(
                "The complete new content for the artifact (not a diff). Same "
                "supported formats as create_artifact."
            ),
        ),
        ToolParam(
            name="title",
            type="string",
            description="Optional new title for the artifact",
            required=False,
        ),
        ToolParam(
            name="output_format",
            type="string",
            description="Optional preferred file format for export/download.",
            required=False,
            enum=OUTPUT_FORMATS,
        ),
    ],
)

READ_ARTIFACT = ToolSchema.from_params(
    name="read_artifact",
    description=(
        "Read the current content of an existing artifact. Use this before "
        "update_artifact if the artifact content is not in the recent "
        "conversation context."
    ),
    params=[
        ToolParam(
            name="artifact_id",
            type="string",
            description="The ID of the artifact to read",
        ),
    ],
)

ARTIFACT_TOOLS = (CREATE_ARTIFACT, UPDATE_ARTIFACT, READ_ARTIFACT)
ARTIFACT_TOOL_NAMES = frozenset(t.name for t in ARTIFACT_TOOLS)
SEARCH_TOOLS = (WEB_SEARCH, GOOGLE_DRIVE_SEARCH, MEMORY_SEARCH, RAG_SEARCH)
BUILTIN_TOOLS = SEARCH_TOOLS + ARTIFACT_TOOLS


def is_artifact_tool(name: str) -> bool:
    return name in ARTIFACT_TOOL_NAMES

"""
Tool result formatting — turn backend responses into model-ready text.
"""

from __future__ import annotations

from loom.tools.capabilities import DriveSearchResponse, WebSearchResponse

WEB_SEARCH_FAILED = "Web search failed. Please try again."
DRIVE_SEARCH_FAILED = "Google Drive search failed. Please try again."
MEMORY_SEARCH_FAILED = "Memory search failed. Please try again."
DOCUMENT_SEARCH_FAILED = "Document search failed. Please try again."

_WEB_RESULTS_INSTRUCTION = (
    "\nThese are the search results. Please use the information above to "
    "answer the user's question. Do not search again unless the user asks a "
    "new question."
)


def format_web_results(response: WebSearchResponse, instruct: bool = True) -> str:
    """Numbered entries, one per result.

    [1] Title
        URL: https://…
        snippet
    """
    if not response.results:
        return f'Web search for "{response.query}" returned no results.'

    formatted = f'Web search results for "{response.query}":\n\n'
    for index, result in enumerate(response.results, start=1):
        formatted += f"[{index}] {result.title}\n"
        formatted += f"    URL: {result.url}\n"
        formatted += f"    {result.snippet}\n\n"

    if instruct:
        formatted += _WEB_RESULTS_INSTRUCTION
    return formatted


def format_drive_results(response: DriveSearchResponse) -> str:
    if not response.results:
        return f'Google Drive search for "{response.query}" returned no files.'

    formatted = f'Google Drive search results for "{response.query}":\n\n'
    for index, item in enumerate(response.results, start=1):
        formatted += f"[{index}] {item.file_name} ({item.mime_type})\n"
        formatted += f"    Modified: {item.modified_time}\n"
        if item.owner:
            formatted += f"    Owner: {item.owner}\n"
        formatted += f"    Link: {item.web_view_link}\n\n"
    return formatted


def search_status(label: str, query: str, attempt: int) -> str:
    """`Searching: "q"`, `Searching: "q" (retry 1)`, …"""
    status = f'{label}: "{query}"'
    if attempt > 0:
        status += f" (retry {attempt})"
    return status


def format_precomputed_context(
    web: WebSearchResponse | None = None,
    drive: DriveSearchResponse | None = None,
) -> str | None:
    """Search results gathered before the turn, folded into the system prompt."""
    parts = []
    if web is not None:
        parts.append(format_web_results(web, instruct=False).rstrip())
    if drive is not None:
        parts.append(format_drive_results(drive).rstrip())
    if not parts:
        return None
    return "## Search Context\n\n" + "\n\n".join(parts)

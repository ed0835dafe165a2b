"""Tests for tool naming, the declaration registry, artifact tools and formatting."""

import json

import pytest

from loom.session.models import Artifact, ArtifactType, ChatSettings
from loom.tools.artifacts import ArtifactWorkspace, run_artifact_tool
from loom.tools.base import ToolParam, ToolSchema
from loom.tools.capabilities import (
    DriveFile,
    DriveSearchResponse,
    WebSearchResponse,
    WebSearchResult,
)
from loom.tools.formatting import (
    format_drive_results,
    format_precomputed_context,
    format_web_results,
    search_status,
)
from loom.tools.naming import ToolSource, parse_tool_name, prefixed_name, resolve_call
from loom.tools.registry import ExternalTool, RoundToolOptions, build_registry


# ─── Naming ───────────────────────────────────────────────────


def test_mcp_names_carry_server_id():
    name = prefixed_name("search_issues", ToolSource.MCP, "github")
    assert name == "mcp_github_search_issues"

    parsed = parse_tool_name(name)
    assert parsed.name == "search_issues"
    assert parsed.source == ToolSource.MCP
    assert parsed.server_id == "github"


def test_builtin_prefix_round_trips():
    assert prefixed_name("fetch_url", "builtin") == "builtin_fetch_url"
    parsed = parse_tool_name("builtin_fetch_url")
    assert parsed.name == "fetch_url"
    assert parsed.source == ToolSource.BUILTIN
    assert parsed.server_id is None


def test_native_names_map_to_their_source():
    assert parse_tool_name("web_search").source == ToolSource.WEB_SEARCH
    assert parse_tool_name("google_drive_search").source == ToolSource.GOOGLE_DRIVE
    assert parse_tool_name("update_artifact").source == ToolSource.ARTIFACT
    assert parse_tool_name("mystery").source == ToolSource.OTHER


def test_resolve_call_keeps_original_name_and_drops_bad_params():
    call = resolve_call("mcp_jira_create_ticket", "c1", None, thought_signature="sig")
    assert call.name == "create_ticket"
    assert call.original_name == "mcp_jira_create_ticket"
    assert call.params == {}
    assert call.source == "mcp"
    assert call.server_id == "jira"
    assert call.thought_signature == "sig"


# ─── Registry ─────────────────────────────────────────────────


def _jira_tool():
    return ExternalTool(
        name="create_ticket",
        description="Create a Jira ticket",
        parameters={"type": "object", "properties": {"title": {"type": "string"}}},
        source="mcp",
        server_id="jira",
    )


def test_build_registry_has_every_builtin_tool():
    registry = build_registry()
    assert set(registry.tool_names()) == {
        "web_search",
        "google_drive_search",
        "memory_search",
        "rag_search",
        "create_artifact",
        "update_artifact",
        "read_artifact",
    }


def test_external_tools_register_under_prefixed_name():
    registry = build_registry([_jira_tool()])
    assert "mcp_jira_create_ticket" in registry
    assert registry.get("mcp_jira_create_ticket").name == "create_ticket"


def test_external_tool_rejects_native_source():
    with pytest.raises(ValueError):
        ExternalTool(name="x", description="", parameters={}, source="web_search").declare()


def test_round_respects_feature_toggles():
    registry = build_registry()
    settings = ChatSettings(web_search_enabled=True, artifacts_enabled=False)
    options = RoundToolOptions.from_settings(settings, max_calls_per_tool=3)

    assert registry.for_round(options).tool_names() == ["web_search"]


def test_round_drops_search_tool_with_precomputed_results():
    registry = build_registry()
    settings = ChatSettings(web_search_enabled=True, google_drive_enabled=True)
    options = RoundToolOptions.from_settings(
        settings, max_calls_per_tool=3, has_web_results=True
    )
    names = registry.for_round(options).tool_names()
    assert "web_search" not in names
    assert "google_drive_search" in names


def test_round_drops_tools_at_their_call_limit_but_not_artifact_tools():
    registry = build_registry([_jira_tool()])
    settings = ChatSettings(web_search_enabled=True)
    options = RoundToolOptions.from_settings(settings, max_calls_per_tool=3)
    counts = {"web_search": 3, "create_ticket": 3, "create_artifact": 7}

    names = registry.for_round(options, counts).tool_names()
    assert "web_search" not in names
    assert "mcp_jira_create_ticket" not in names
    assert "create_artifact" in names


def test_without_returns_a_filtered_copy():
    registry = build_registry()
    smaller = registry.without("web_search")
    assert "web_search" not in smaller
    assert "web_search" in registry
    assert len(smaller) == len(registry) - 1


def test_renderers_use_provider_visible_names():
    registry = build_registry([_jira_tool()]).without(
        "web_search", "google_drive_search", "memory_search", "rag_search",
        "create_artifact", "update_artifact", "read_artifact",
    )
    assert registry.to_openai_tools()[0]["function"]["name"] == "mcp_jira_create_ticket"
    assert registry.to_anthropic_tools()[0]["name"] == "mcp_jira_create_ticket"

    responses = registry.to_responses_tools()[0]
    assert responses["name"] == "mcp_jira_create_ticket"
    assert responses["parameters"]["additionalProperties"] is False

    gemini = registry.to_gemini_tools()
    assert gemini[0]["functionDeclarations"][0]["name"] == "mcp_jira_create_ticket"


def test_schema_from_params():
    schema = ToolSchema.from_params(
        "lookup",
        "Look something up",
        [
            ToolParam("query", "string", "What to look up"),
            ToolParam("limit", "integer", "Max results", required=False),
        ],
    )
    assert schema.parameters["required"] == ["query"]
    assert schema.parameters["properties"]["limit"]["type"] == "integer"


# ─── Artifact tools ───────────────────────────────────────────


def test_create_artifact_adds_to_workspace():
    workspace = ArtifactWorkspace()
    result = run_artifact_tool(
        "create_artifact",
        {"type": "code", "title": "Script", "content": "print(1)", "language": "python"},
        workspace,
    )
    assert not result.is_error
    payload = json.loads(result.result)
    assert payload["success"] is True
    assert workspace.get(payload["artifact_id"]).content == "print(1)"
    assert workspace.in_flight == [result.new_artifact]


def test_create_artifact_rejects_unknown_type():
    result = run_artifact_tool(
        "create_artifact", {"type": "video", "title": "t", "content": "c"}, ArtifactWorkspace()
    )
    assert result.is_error
    assert 'Invalid artifact type "video"' in result.result


def test_create_artifact_requires_all_fields():
    result = run_artifact_tool("create_artifact", {"type": "code"}, ArtifactWorkspace())
    assert result.is_error
    assert result.result.startswith("Error: create_artifact requires")


def test_update_artifact_snapshots_previous_version():
    original = Artifact.new(type=ArtifactType.MARKDOWN, title="Notes", content="v1")
    workspace = ArtifactWorkspace([original])

    result = run_artifact_tool(
        "update_artifact", {"artifact_id": original.id, "content": "v2"}, workspace
    )
    assert not result.is_error
    updated = workspace.get(original.id)
    assert updated.content == "v2"
    assert [v.content for v in updated.versions] == ["v1"]
    assert json.loads(result.result)["version"] == 1
    assert workspace.in_flight == []


def test_update_unknown_artifact_lists_available_ids():
    existing = Artifact.new(type="html", title="Page", content="<p/>")
    result = run_artifact_tool(
        "update_artifact",
        {"artifact_id": "nope", "content": "x"},
        ArtifactWorkspace([existing]),
    )
    assert result.is_error
    assert 'Artifact with ID "nope" not found' in result.result
    assert existing.id in result.result


def test_read_artifact_returns_content():
    existing = Artifact.new(type="code", title="Main", content="x = 1", language="python")
    result = run_artifact_tool(
        "read_artifact", {"artifact_id": existing.id}, ArtifactWorkspace([existing])
    )
    payload = json.loads(result.result)
    assert payload["content"] == "x = 1"
    assert payload["language"] == "python"
    assert payload["versions"] == 0


def test_read_artifact_in_empty_conversation():
    result = run_artifact_tool("read_artifact", {"artifact_id": "a"}, ArtifactWorkspace())
    assert result.is_error
    assert "No artifacts exist in this conversation." in result.result


# ─── Formatting ───────────────────────────────────────────────


def _web(count):
    return WebSearchResponse(
        query="python",
        results=[
            WebSearchResult(title=f"T{i}", url=f"https://x/{i}", snippet=f"s{i}")
            for i in range(1, count + 1)
        ],
    )


def test_web_results_are_numbered():
    text = format_web_results(_web(3))
    assert text.startswith('Web search results for "python":')
    assert "[1] T1\n    URL: https://x/1\n    s1" in text
    assert "[3] T3" in text
    assert "Do not search again" in text


def test_empty_web_results():
    assert format_web_results(_web(0)) == 'Web search for "python" returned no results.'


def test_drive_results_include_owner_when_known():
    response = DriveSearchResponse(
        query="budget",
        results=[
            DriveFile(
                file_name="Budget.xlsx",
                mime_type="application/vnd.ms-excel",
                modified_time="2024-01-01",
                web_view_link="https://drive/f1",
                owner="ana@example.com",
            )
        ],
    )
    text = format_drive_results(response)
    assert "[1] Budget.xlsx (application/vnd.ms-excel)" in text
    assert "Owner: ana@example.com" in text


def test_search_status_marks_retries():
    assert search_status("Searching", "q", 0) == 'Searching: "q"'
    assert search_status("Searching Drive", "q", 2) == 'Searching Drive: "q" (retry 2)'


def test_precomputed_context_header():
    assert format_precomputed_context() is None
    context = format_precomputed_context(web=_web(1))
    assert context.startswith("## Search Context\n\n")
    assert "Do not search again" not in context

"""Human-readable progress lines for agent tool calls.

The upstream agent invokes tools by name (``postgres_run_query``,
``mcp/code_exec_python`` ...). Clients only get a short status line per call,
looked up from an ordered prefix table. First match wins.
"""
from __future__ import annotations

import json
import re
from typing import NamedTuple

import structlog

from luminaire.schemas.chat import StreamMessage

log = structlog.get_logger(__name__)


class ToolDescription(NamedTuple):
    pattern: re.Pattern[str]
    tool: str
    template: str


def _entry(prefix: str, tool: str, template: str) -> ToolDescription:
    return ToolDescription(re.compile(prefix), tool, template)


TOOL_DESCRIPTIONS: tuple[ToolDescription, ...] = (
    _entry(r"^html_to_markdown", "html_to_markdown", "Fetching the page {url} ..."),
    _entry(r"^code_exec_ruby", "code_exec_ruby", "Executing Ruby code..."),
    _entry(r"^(?:mcp/)?code_exec_python", "code_exec_python", "Executing Python code..."),
    _entry(r"^code_exec_node", "code_exec_node", "Executing Node.js code..."),
    _entry(r"^code_exec_go", "code_exec_go", "Compiling and executing Go code..."),
    _entry(r"^postgres_get_schema", "postgres_get_schema", "Fetching the schema for the database..."),
    _entry(r"^postgres_run_query", "postgres_run_query", "Querying the database..."),
    _entry(r"^database_get_schema", "database_get_schema", "Fetching the schema for the database..."),
    _entry(r"^database_run_query", "database_run_query", "Querying the database..."),
    _entry(r"^web_browsing_multi_page", "web_browsing_multi_page", "Browsing the web..."),
    _entry(r"^dyno_run_command", "dyno_run_command", "Running the command on the Heroku dyno..."),
    _entry(r"^pdf_to_markdown", "pdf_to_markdown", "Reading the PDF at {url} ..."),
)

PROCESSING_MESSAGE = "Processing tool response..."


class _Args(dict):
    def __missing__(self, key: str) -> str:
        return ""


def describe_tool(name: str, args: dict) -> tuple[str, str]:
    """Return ``(tool, description)`` for a tool name and its parsed arguments."""
    for entry in TOOL_DESCRIPTIONS:
        if entry.pattern.match(name):
            return entry.tool, entry.template.format_map(_Args(args))
    return name or "unknown", f"Running the {name or 'requested'} tool..."


def summarize_tool_call(
    name: str, arguments_json: str, session_id: str | None = None
) -> StreamMessage:
    try:
        args = json.loads(arguments_json or "{}")
        if not isinstance(args, dict):
            raise ValueError("tool arguments must be a JSON object")
    except ValueError as exc:
        log.error("tool_arguments_unparseable", tool=name, error=str(exc))
        return StreamMessage(
            role="tool", tool="unknown", content=PROCESSING_MESSAGE, session_id=session_id
        )

    tool, description = describe_tool(name, args)
    log.info("agent_tool_call", tool=name, args=sorted(args))
    return StreamMessage(role="tool", tool=tool, content=description, session_id=session_id)

"""MCP server factory binding sprint tool handlers to an engine."""

from typing import Any

from claude_agent_sdk import create_sdk_mcp_server, tool

from ..board.loader import BoardSnapshotLoader
from ..sprint.engine import SprintEngine
from . import handlers


def create_sprint_server(engine: SprintEngine, loader: BoardSnapshotLoader | None = None):
    """Create an MCP server with read-only sprint tools.

    Each handler is bound to its dependency via closure so the @tool wrappers
    are clean single-argument async functions as the SDK expects.
    """

    @tool(
        "get_sprint_status",
        "Get the current sprint: status, ticket counts, blockers, completion and velocity",
        {},
    )
    async def get_sprint_status(args: dict[str, Any]) -> dict[str, Any]:
        return await handlers.get_sprint_status_handler(args, engine)

    @tool(
        "list_blockers",
        "List blocked tickets in the active sprint",
        {},
    )
    async def list_blockers(args: dict[str, Any]) -> dict[str, Any]:
        return await handlers.list_blockers_handler(args, engine)

    @tool(
        "list_sprint_records",
        "List closed sprints with completion percentage. Optional limit keeps the most recent.",
        {"limit": int},
    )
    async def list_sprint_records(args: dict[str, Any]) -> dict[str, Any]:
        return await handlers.list_sprint_records_handler(args, engine)

    all_tools = [get_sprint_status, list_blockers, list_sprint_records]

    if loader is not None:
        @tool(
            "preview_kickoff",
            "Preview which board tickets a new sprint would commit to. Does not start a sprint.",
            {"name": str},
        )
        async def preview_kickoff(args: dict[str, Any]) -> dict[str, Any]:
            return await handlers.preview_kickoff_handler(args, engine, loader)

        all_tools.append(preview_kickoff)

    return create_sdk_mcp_server(
        name="sprintbot",
        version="0.1.0",
        tools=all_tools,
    )

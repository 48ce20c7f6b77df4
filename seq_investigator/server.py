"""
MCP server entrypoint for Seq Investigator.
"""
import asyncio
import logging
import threading
from typing import Annotated, Any, Callable, Dict, List, Optional

from mcp.server.fastmcp import FastMCP
from pydantic import Field

from .tools import MAX_HOURS, SeqTools

logger = logging.getLogger(__name__)

mcp = FastMCP("SeqInvestigator", instructions="""
This MCP server provides tools for investigating application logs stored in Seq.
Prefer AppSearch, ErrorDashboard, InvocationTrace, EntityTrace and SlowExecutions,
which build Seq filters for you; use SeqSearch only when you need a custom filter.
App names accept short aliases such as 'pims', 'scribing' or 'fx-charta'.
              """)

# Initialize Seq tools
seq_tools = SeqTools()

Workspace = Annotated[Optional[str], Field(description="Optional workspace identifier for multi-tenant scenarios")]
Hours = Annotated[int, Field(ge=1, le=MAX_HOURS, description="Hours to search back (default: 24)")]


async def _run_tool(func: Callable[..., List[Dict[str, Any]]], *args: Any, **kwargs: Any) -> List[Dict[str, Any]]:
    """
    Run a blocking tool in a worker thread, cancelling it if the request is cancelled.

    Cancellation is cooperative: the worker stops at its next check, i.e. before
    the next result page or stream poll. A page request already in flight keeps
    running until Seq answers or the client request timeout fires.
    """
    cancel = threading.Event()
    try:
        return await asyncio.to_thread(func, *args, cancel=cancel, **kwargs)
    except asyncio.CancelledError:
        cancel.set()
        raise


@mcp.tool(name="SeqSearch", description="Search Seq events with filters, returning up to the specified count")
async def seq_search(
    filter: Annotated[str, Field(description="Seq filter expression (e.g., \"@Level = 'Error'\")")],
    count: Annotated[int, Field(ge=1, le=1000, description="Maximum number of events to return (1-1000)")] = 100,
    workspace: Workspace = None,
) -> List[Dict[str, Any]]:
    return await _run_tool(seq_tools.seq_search, filter, count=count, workspace=workspace)


@mcp.tool(
    name="SeqWaitForEvents",
    description="Wait for and capture live events from Seq (times out after 5 seconds, returns captured events as a snapshot)",
)
async def seq_wait_for_events(
    filter: Annotated[Optional[str], Field(description="Optional Seq filter expression to apply to the stream")] = None,
    count: Annotated[int, Field(ge=1, le=100, description="Maximum number of events to capture (1-100)")] = 10,
    workspace: Workspace = None,
) -> List[Dict[str, Any]]:
    return await _run_tool(seq_tools.seq_wait_for_events, filter, count=count, workspace=workspace)


@mcp.tool(name="SignalList", description="List available signals in Seq (read-only access to shared signals)")
async def signal_list(workspace: Workspace = None) -> List[Dict[str, Any]]:
    return await _run_tool(seq_tools.signal_list, workspace=workspace)


@mcp.tool(name="AppSearch", description="Search logs by application name with alias support and time window")
async def app_search(
    app: Annotated[str, Field(description="App name or alias (e.g., 'pims', 'fx-charta', 'scribing')")],
    level: Annotated[
        str, Field(pattern=r"(?i)^(error|warning|info|all)$", description="Log level: 'error', 'warning', 'info', or 'all'")
    ] = "all",
    hours: Hours = 24,
    functionName: Annotated[Optional[str], Field(description="Filter by Azure Function name")] = None,
    count: Annotated[int, Field(ge=1, le=500, description="Max results (1-500)")] = 50,
    workspace: Workspace = None,
) -> List[Dict[str, Any]]:
    return await _run_tool(
        seq_tools.app_search,
        app,
        level=level,
        hours=hours,
        function_name=functionName,
        count=count,
        workspace=workspace,
    )


@mcp.tool(name="InvocationTrace", description="Trace all logs for a specific Azure Function invocation")
async def invocation_trace(
    invocationId: Annotated[str, Field(description="The InvocationId UUID from Azure Functions")],
    workspace: Workspace = None,
) -> List[Dict[str, Any]]:
    return await _run_tool(seq_tools.invocation_trace, invocationId, workspace=workspace)


@mcp.tool(name="SlowExecutions", description="Find slow operations exceeding duration threshold")
async def slow_executions(
    thresholdMs: Annotated[int, Field(ge=1, description="Minimum duration in milliseconds (default: 5000)")] = 5000,
    app: Annotated[Optional[str], Field(description="Filter by app name or alias")] = None,
    functionName: Annotated[Optional[str], Field(description="Filter by function name")] = None,
    hours: Hours = 24,
    count: Annotated[int, Field(ge=1, le=100, description="Max results (1-100)")] = 20,
    workspace: Workspace = None,
) -> List[Dict[str, Any]]:
    return await _run_tool(
        seq_tools.slow_executions,
        threshold_ms=thresholdMs,
        app=app,
        function_name=functionName,
        hours=hours,
        count=count,
        workspace=workspace,
    )


@mcp.tool(name="EntityTrace", description="Track an entity across all services")
async def entity_trace(
    entityType: Annotated[str, Field(description="Entity type (e.g., 'Job', 'Patient', 'Payment')")],
    entityId: Annotated[str, Field(description="Entity ID value")],
    hours: Hours = 24,
    count: Annotated[int, Field(ge=1, le=200, description="Max results (1-200)")] = 100,
    workspace: Workspace = None,
) -> List[Dict[str, Any]]:
    return await _run_tool(
        seq_tools.entity_trace,
        entityType,
        entityId,
        hours=hours,
        count=count,
        workspace=workspace,
    )


@mcp.tool(name="ErrorDashboard", description="Get error events for analysis (AI will summarize and group)")
async def error_dashboard(
    hours: Hours = 24,
    app: Annotated[Optional[str], Field(description="Filter to specific app (optional)")] = None,
    count: Annotated[int, Field(ge=1, le=500, description="Max results (1-500)")] = 200,
    workspace: Workspace = None,
) -> List[Dict[str, Any]]:
    return await _run_tool(seq_tools.error_dashboard, hours=hours, app=app, count=count, workspace=workspace)


def main() -> None:
    connection = seq_tools.factory.create()
    if connection.check_health():
        logger.info(f"Seq is reachable at {connection.server_url}")
    else:
        logger.warning(f"Seq is not reachable at {connection.server_url}; tools will fail until it is")
    mcp.run()


if __name__ == "__main__":
    main()

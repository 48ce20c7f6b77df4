#!/usr/bin/env python3
# Python 3.10
"""
Seq investigation tools.

Each tool validates its parameters, builds a Seq filter expression from them
(resolving app aliases and escaping every embedded value), runs the query
through a workspace connection and returns the matching events unmodified.

Cancellation contract:
- A cancelled or timed-out query is not an error. Enumerating tools return
  an empty list. The live wait returns whatever it captured when its own
  timeout fires, but an empty list when the caller cancels it.
- Every other failure propagates to the caller unchanged, with no retry.

Usage:
    tools = SeqTools()
    errors = tools.error_dashboard(hours=4, app="pims")
    trace = tools.invocation_trace("5b0f3c9e-...")
"""

import logging
import threading
import time
from contextlib import closing
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .filters import (
    ERROR_LEVEL,
    equals_clause,
    join_clauses,
    level_clause,
    resolve_app_name,
    since_hours_clause,
)
from .seq_client import SeqCancelledError, SeqConnectionFactory, SeqTimeoutError

LIVE_WAIT_TIMEOUT_SECONDS = 5
INVOCATION_TRACE_LIMIT = 1000
MAX_HOURS = 8760
LEVELS = ("error", "warning", "info", "all")

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    """Outcome of a single query: the collected items, and whether it was cut short."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    cancelled: bool = False
    timed_out: bool = False


def _require(value: Optional[str], label: str) -> None:
    if value is None or not value.strip():
        raise ValueError(f"{label} cannot be empty")


def _check_range(value: int, name: str, low: int, high: Optional[int] = None) -> None:
    if value < low or (high is not None and value > high):
        bounds = f"between {low} and {high}" if high is not None else f"at least {low}"
        raise ValueError(f"Invalid {name}: {value}. Must be {bounds}")


def build_app_search_filter(
    app: str,
    level: str = "all",
    hours: int = 24,
    function_name: Optional[str] = None
) -> str:
    """
    Build the filter for an application search.

    The level clause is omitted for 'all' or a blank level; any other value
    is title-cased without being checked against known levels.
    """
    clauses = [equals_clause("AppName", resolve_app_name(app))]

    if level and level.strip() and level.lower() != "all":
        clauses.append(level_clause(level))

    if function_name:
        clauses.append(equals_clause("FunctionName", function_name))

    clauses.append(since_hours_clause(hours))
    return join_clauses(clauses)


def build_invocation_filter(invocation_id: str) -> str:
    return equals_clause("InvocationId", invocation_id)


def build_slow_executions_filter(
    threshold_ms: int = 5000,
    app: Optional[str] = None,
    function_name: Optional[str] = None,
    hours: int = 24
) -> str:
    clauses = [f"DurationMs > {threshold_ms}"]

    if app:
        clauses.append(equals_clause("AppName", resolve_app_name(app)))
    if function_name:
        clauses.append(equals_clause("FunctionName", function_name))

    clauses.append(since_hours_clause(hours))
    return join_clauses(clauses)


def build_entity_filter(entity_type: str, entity_id: str, hours: int = 24) -> str:
    return join_clauses([
        equals_clause("EntityType", entity_type),
        equals_clause("EntityId", entity_id),
        since_hours_clause(hours),
    ])


def build_error_dashboard_filter(hours: int = 24, app: Optional[str] = None) -> str:
    clauses = [f"@Level = '{ERROR_LEVEL}'"]
    if app:
        clauses.append(equals_clause("AppName", resolve_app_name(app)))
    clauses.append(since_hours_clause(hours))
    return join_clauses(clauses)


class SeqTools:
    """
    The investigation tool set.

    Attributes:
        factory (SeqConnectionFactory): Source of per-workspace connections
    """

    def __init__(self, factory: Optional[SeqConnectionFactory] = None):
        self.factory = factory or SeqConnectionFactory()

    def _run(
        self,
        operation: str,
        fetch: Callable[[List[Dict[str, Any]]], None],
        keep_partial: bool = False
    ) -> QueryResult:
        """
        Run ``fetch`` and turn a cancellation into a normal result.

        Args:
            operation: Tool name, used for logging
            fetch: Callable that appends results to the list it is given
            keep_partial: Keep items collected before a timeout instead of
                          discarding them. A caller cancellation always
                          discards them.

        Returns:
            QueryResult: Collected items, flagged as cancelled if cut short
        """
        items: List[Dict[str, Any]] = []
        try:
            fetch(items)
        except SeqCancelledError as e:
            timed_out = isinstance(e, SeqTimeoutError)
            logger.info(f"{operation} cancelled after {len(items)} items: {e}")
            return QueryResult(
                items=items if keep_partial and timed_out else [],
                cancelled=True,
                timed_out=timed_out,
            )
        return QueryResult(items=items)

    def _search(
        self,
        operation: str,
        filter: str,
        count: int,
        workspace: Optional[str],
        cancel: Optional[threading.Event]
    ) -> List[Dict[str, Any]]:
        logger.debug(f"{operation} filter: {filter} (count={count}, workspace={workspace})")

        def fetch(items: List[Dict[str, Any]]) -> None:
            connection = self.factory.create(workspace)
            items.extend(connection.enumerate_events(filter, count, render=True, cancel=cancel))

        return self._run(operation, fetch).items

    def seq_search(
        self,
        filter: str,
        count: int = 100,
        workspace: Optional[str] = None,
        cancel: Optional[threading.Event] = None
    ) -> List[Dict[str, Any]]:
        """
        Search historical events with a caller-supplied filter.

        Args:
            filter: Seq filter expression, passed through verbatim
            count: Maximum number of events to return (1-1000)
            workspace: Optional workspace identifier
            cancel: Optional cancellation event

        Returns:
            List[dict]: Matching events, or [] if cancelled
        """
        _require(filter, "Filter")
        _check_range(count, "count", 1, 1000)
        return self._search("SeqSearch", filter, count, workspace, cancel)

    def seq_wait_for_events(
        self,
        filter: Optional[str] = None,
        count: int = 10,
        workspace: Optional[str] = None,
        cancel: Optional[threading.Event] = None
    ) -> List[Dict[str, Any]]:
        """
        Capture live events for up to LIVE_WAIT_TIMEOUT_SECONDS.

        The MCP protocol is request/response, so the live stream is sampled
        into a finite snapshot rather than streamed to the caller.

        Args:
            filter: Optional Seq filter expression; None matches everything
            count: Maximum number of events to capture (1-100)
            workspace: Optional workspace identifier
            cancel: Optional cancellation event

        Returns:
            List[dict]: Events captured before the cap or the timeout (may be
                        empty), or [] if the caller cancelled
        """
        _check_range(count, "count", 1, 100)
        deadline = time.monotonic() + LIVE_WAIT_TIMEOUT_SECONDS

        def fetch(items: List[Dict[str, Any]]) -> None:
            connection = self.factory.create(workspace)
            with closing(connection.stream_events(filter or "", cancel=cancel, deadline=deadline)) as stream:
                for event in stream:
                    items.append(event)
                    if len(items) >= count:
                        break

        return self._run("SeqWaitForEvents", fetch, keep_partial=True).items

    def signal_list(
        self,
        workspace: Optional[str] = None,
        cancel: Optional[threading.Event] = None
    ) -> List[Dict[str, Any]]:
        """List shared signals (saved searches); private signals are never returned."""
        def fetch(items: List[Dict[str, Any]]) -> None:
            connection = self.factory.create(workspace)
            items.extend(connection.list_signals(shared=True, cancel=cancel))

        return self._run("SignalList", fetch).items

    def app_search(
        self,
        app: str,
        level: str = "all",
        hours: int = 24,
        function_name: Optional[str] = None,
        count: int = 50,
        workspace: Optional[str] = None,
        cancel: Optional[threading.Event] = None
    ) -> List[Dict[str, Any]]:
        """
        Search logs of one application, with alias support and a time window.

        Args:
            app: App name or alias (e.g., 'pims', 'fx-charta', 'scribing')
            level: 'error', 'warning', 'info' or 'all'
            hours: Hours to search back (1-8760)
            function_name: Optional Azure Function name filter
            count: Maximum number of results (1-500)
            workspace: Optional workspace identifier
            cancel: Optional cancellation event

        Returns:
            List[dict]: Matching events, or [] if cancelled

        Raises:
            ValueError: If app is empty or a bound is out of range
        """
        _require(app, "App name")
        _check_range(hours, "hours", 1, MAX_HOURS)
        _check_range(count, "count", 1, 500)

        filter = build_app_search_filter(app, level, hours, function_name)
        return self._search("AppSearch", filter, count, workspace, cancel)

    def invocation_trace(
        self,
        invocation_id: str,
        workspace: Optional[str] = None,
        cancel: Optional[threading.Event] = None
    ) -> List[Dict[str, Any]]:
        """
        Fetch every event logged by one Azure Function invocation.

        Events come back in Seq's order; typical invocations log far fewer
        than INVOCATION_TRACE_LIMIT events.
        """
        _require(invocation_id, "Invocation ID")
        filter = build_invocation_filter(invocation_id)
        return self._search("InvocationTrace", filter, INVOCATION_TRACE_LIMIT, workspace, cancel)

    def slow_executions(
        self,
        threshold_ms: int = 5000,
        app: Optional[str] = None,
        function_name: Optional[str] = None,
        hours: int = 24,
        count: int = 20,
        workspace: Optional[str] = None,
        cancel: Optional[threading.Event] = None
    ) -> List[Dict[str, Any]]:
        """
        Find events whose DurationMs exceeds a threshold.

        Results are ordered by time, newest first, as Seq returns them. Seq
        filters have no ORDER BY, so they are not sorted by duration.

        Args:
            threshold_ms: Minimum duration in milliseconds (>= 1)
            app: Optional app name or alias
            function_name: Optional function name
            hours: Hours to search back (1-8760)
            count: Maximum number of results (1-100)
            workspace: Optional workspace identifier
            cancel: Optional cancellation event

        Returns:
            List[dict]: Slow execution events, or [] if cancelled
        """
        _check_range(threshold_ms, "threshold_ms", 1)
        _check_range(hours, "hours", 1, MAX_HOURS)
        _check_range(count, "count", 1, 100)

        filter = build_slow_executions_filter(threshold_ms, app, function_name, hours)
        return self._search("SlowExecutions", filter, count, workspace, cancel)

    def entity_trace(
        self,
        entity_type: str,
        entity_id: str,
        hours: int = 24,
        count: int = 100,
        workspace: Optional[str] = None,
        cancel: Optional[threading.Event] = None
    ) -> List[Dict[str, Any]]:
        """
        Track one entity (e.g. a Job or Payment) across all services.

        Args:
            entity_type: Entity type (e.g., 'Job', 'Patient', 'Payment')
            entity_id: Entity ID value
            hours: Hours to search back (1-8760)
            count: Maximum number of results (1-200)
            workspace: Optional workspace identifier
            cancel: Optional cancellation event

        Returns:
            List[dict]: Events mentioning the entity, or [] if cancelled
        """
        _require(entity_type, "Entity type")
        _require(entity_id, "Entity ID")
        _check_range(hours, "hours", 1, MAX_HOURS)
        _check_range(count, "count", 1, 200)

        filter = build_entity_filter(entity_type, entity_id, hours)
        return self._search("EntityTrace", filter, count, workspace, cancel)

    def error_dashboard(
        self,
        hours: int = 24,
        app: Optional[str] = None,
        count: int = 200,
        workspace: Optional[str] = None,
        cancel: Optional[threading.Event] = None
    ) -> List[Dict[str, Any]]:
        """
        Get raw error events for analysis.

        No aggregation happens here; grouping and summarising is left to the
        calling agent.
        """
        _check_range(hours, "hours", 1, MAX_HOURS)
        _check_range(count, "count", 1, 500)

        filter = build_error_dashboard_filter(hours, app)
        return self._search("ErrorDashboard", filter, count, workspace, cancel)

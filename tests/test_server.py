"""
Unit tests for the MCP server layer.

This test suite covers:
- Tool registration and parameter schemas
- Parameter validation before any tool body runs
- Delegation to SeqTools with renamed parameters
- Cancellation of the worker thread when a request is cancelled
- The startup health check in main()
"""

import asyncio
import logging
import threading
from unittest.mock import patch

import pytest
from mcp.server.fastmcp.exceptions import ToolError

from seq_investigator import server
from seq_investigator.server import mcp


TOOL_NAMES = {
    "SeqSearch",
    "SeqWaitForEvents",
    "SignalList",
    "AppSearch",
    "InvocationTrace",
    "SlowExecutions",
    "EntityTrace",
    "ErrorDashboard",
}


def _schemas():
    tools = asyncio.run(mcp.list_tools())
    return {tool.name: tool.inputSchema for tool in tools}


class TestToolRegistration:
    """Test suite for the published tool surface."""

    def test_all_tools_registered(self):
        assert set(_schemas()) == TOOL_NAMES

    def test_required_parameters(self):
        schemas = _schemas()

        assert schemas["SeqSearch"]["required"] == ["filter"]
        assert schemas["AppSearch"]["required"] == ["app"]
        assert schemas["InvocationTrace"]["required"] == ["invocationId"]
        assert sorted(schemas["EntityTrace"]["required"]) == ["entityId", "entityType"]
        for name in ("SeqWaitForEvents", "SignalList", "SlowExecutions", "ErrorDashboard"):
            assert not schemas[name].get("required")

    @pytest.mark.parametrize("tool,param,minimum,maximum,default", [
        ("SeqSearch", "count", 1, 1000, 100),
        ("SeqWaitForEvents", "count", 1, 100, 10),
        ("AppSearch", "hours", 1, 8760, 24),
        ("AppSearch", "count", 1, 500, 50),
        ("SlowExecutions", "count", 1, 100, 20),
        ("EntityTrace", "count", 1, 200, 100),
        ("ErrorDashboard", "count", 1, 500, 200),
    ])
    def test_bounded_parameters(self, tool, param, minimum, maximum, default):
        prop = _schemas()[tool]["properties"][param]

        assert prop["minimum"] == minimum
        assert prop["maximum"] == maximum
        assert prop["default"] == default

    def test_threshold_has_lower_bound_only(self):
        prop = _schemas()["SlowExecutions"]["properties"]["thresholdMs"]

        assert prop["minimum"] == 1
        assert "maximum" not in prop
        assert prop["default"] == 5000

    def test_every_tool_accepts_workspace(self):
        for name, schema in _schemas().items():
            assert "workspace" in schema["properties"], name


class TestToolValidation:
    """Out-of-range arguments are rejected before SeqTools is called."""

    @pytest.mark.parametrize("tool,arguments", [
        ("SeqSearch", {"filter": "@Level = 'Error'", "count": 0}),
        ("SeqSearch", {"filter": "@Level = 'Error'", "count": 1001}),
        ("SeqWaitForEvents", {"count": 101}),
        ("AppSearch", {"app": "pims", "hours": 8761}),
        ("AppSearch", {"app": "pims", "level": "debug"}),
        ("SlowExecutions", {"thresholdMs": 0}),
        ("EntityTrace", {"entityType": "Job", "entityId": "1", "count": 201}),
        ("ErrorDashboard", {"hours": 0}),
        ("InvocationTrace", {}),
    ])
    def test_rejected(self, tool, arguments):
        with patch('seq_investigator.server.seq_tools') as mock_tools:
            with pytest.raises(ToolError):
                asyncio.run(mcp.call_tool(tool, arguments))

            assert mock_tools.method_calls == []


class TestToolDelegation:
    """Test suite for delegation from MCP tools to SeqTools."""

    def test_app_search(self):
        with patch('seq_investigator.server.seq_tools') as mock_tools:
            mock_tools.app_search.return_value = [{"Id": "event-1"}]

            result = asyncio.run(server.app_search(
                "pims", level="ERROR", hours=1, functionName="Sync", count=5, workspace="eu"
            ))

        assert result == [{"Id": "event-1"}]
        args, kwargs = mock_tools.app_search.call_args
        assert args == ("pims",)
        assert kwargs["level"] == "ERROR"
        assert kwargs["function_name"] == "Sync"
        assert kwargs["count"] == 5
        assert kwargs["workspace"] == "eu"
        assert isinstance(kwargs["cancel"], threading.Event)

    def test_slow_executions(self):
        with patch('seq_investigator.server.seq_tools') as mock_tools:
            mock_tools.slow_executions.return_value = []

            asyncio.run(server.slow_executions(thresholdMs=750, app="data"))

        kwargs = mock_tools.slow_executions.call_args.kwargs
        assert kwargs["threshold_ms"] == 750
        assert kwargs["app"] == "data"
        assert kwargs["function_name"] is None
        assert kwargs["hours"] == 24
        assert kwargs["count"] == 20

    def test_entity_trace(self):
        with patch('seq_investigator.server.seq_tools') as mock_tools:
            mock_tools.entity_trace.return_value = []

            asyncio.run(server.entity_trace("Job", "JOB-123"))

        args, kwargs = mock_tools.entity_trace.call_args
        assert args == ("Job", "JOB-123")
        assert kwargs["hours"] == 24
        assert kwargs["count"] == 100

    def test_invocation_trace_and_signals(self):
        with patch('seq_investigator.server.seq_tools') as mock_tools:
            mock_tools.invocation_trace.return_value = [{"Id": "event-1"}]
            mock_tools.signal_list.return_value = [{"Id": "signal-1"}]

            assert asyncio.run(server.invocation_trace("abc")) == [{"Id": "event-1"}]
            assert asyncio.run(server.signal_list()) == [{"Id": "signal-1"}]

        assert mock_tools.invocation_trace.call_args.args == ("abc",)
        assert mock_tools.signal_list.call_args.kwargs["workspace"] is None

    def test_call_tool_runs_search(self):
        with patch('seq_investigator.server.seq_tools') as mock_tools:
            mock_tools.error_dashboard.return_value = []

            asyncio.run(mcp.call_tool("ErrorDashboard", {"app": "pims", "hours": 2}))

        kwargs = mock_tools.error_dashboard.call_args.kwargs
        assert kwargs["app"] == "pims"
        assert kwargs["hours"] == 2
        assert kwargs["count"] == 200

    def test_tool_errors_propagate(self):
        with patch('seq_investigator.server.seq_tools') as mock_tools:
            mock_tools.seq_search.side_effect = ValueError("Filter cannot be empty")

            with pytest.raises(ValueError, match="Filter cannot be empty"):
                asyncio.run(server.seq_search(" "))

    def test_cancelled_request_sets_cancel_event(self):
        started = threading.Event()
        seen = {}

        def blocking_search(*args, cancel, **kwargs):
            seen["cancel"] = cancel
            started.set()
            cancel.wait(timeout=5)
            return []

        async def run_and_cancel():
            task = asyncio.create_task(server.seq_search("@Level = 'Error'"))
            await asyncio.to_thread(started.wait, 5)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        with patch('seq_investigator.server.seq_tools') as mock_tools:
            mock_tools.seq_search.side_effect = blocking_search
            asyncio.run(run_and_cancel())

        assert seen["cancel"].is_set()


class TestMain:
    """Test suite for the server entry point."""

    def test_main_checks_seq_health_before_serving(self, caplog):
        caplog.set_level(logging.INFO, logger="seq_investigator.server")
        with patch('seq_investigator.server.seq_tools') as mock_tools, \
                patch.object(server.mcp, 'run') as mock_run:
            connection = mock_tools.factory.create.return_value
            connection.check_health.return_value = True
            connection.server_url = "http://seq.local:5341"

            server.main()

        mock_tools.factory.create.assert_called_once_with()
        connection.check_health.assert_called_once_with()
        mock_run.assert_called_once_with()
        assert "Seq is reachable at http://seq.local:5341" in caplog.text

    def test_main_warns_and_still_serves_when_seq_is_down(self, caplog):
        with patch('seq_investigator.server.seq_tools') as mock_tools, \
                patch.object(server.mcp, 'run') as mock_run:
            connection = mock_tools.factory.create.return_value
            connection.check_health.return_value = False
            connection.server_url = "http://seq.local:5341"

            server.main()

        mock_run.assert_called_once_with()
        assert any(
            record.levelno == logging.WARNING and "not reachable" in record.getMessage()
            for record in caplog.records
        )


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

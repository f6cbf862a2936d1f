"""Tests for the MCP tool tracing wrapper."""

import json
from unittest.mock import patch

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from mcp_server.utils.tracing import trace_tool


@pytest.fixture
def exporter():
    """Route tracer lookups to an in-memory SDK provider."""
    span_exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    with patch("opentelemetry.trace.get_tracer") as mock_get_tracer:
        mock_get_tracer.side_effect = lambda name: provider.get_tracer(name)
        yield span_exporter


@pytest.mark.asyncio
async def test_successful_call(exporter):
    @trace_tool("execute_sql")
    async def handler():
        return json.dumps({"rows": []})

    response = await handler()

    [span] = exporter.get_finished_spans()
    assert span.name == "mcp.tool.execute_sql"
    assert span.attributes["mcp.tool.name"] == "execute_sql"
    assert span.attributes["mcp.tool.status"] == "ok"
    assert span.attributes["mcp.tool.response.size_bytes"] == len(response)


@pytest.mark.asyncio
async def test_error_envelope_marks_span(exporter):
    @trace_tool("execute_sql")
    async def handler():
        return json.dumps({"error": {"category": "mutation_blocked", "message": "no"}})

    await handler()

    [span] = exporter.get_finished_spans()
    assert span.attributes["mcp.tool.status"] == "error"
    assert span.attributes["mcp.tool.error.category"] == "mutation_blocked"
    assert span.status.status_code == StatusCode.ERROR


@pytest.mark.asyncio
async def test_exception_is_recorded_and_reraised(exporter):
    @trace_tool("begin_transaction")
    async def handler():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await handler()

    [span] = exporter.get_finished_spans()
    assert span.attributes["mcp.tool.status"] == "error"
    assert span.status.status_code == StatusCode.ERROR
    assert any(event.name == "exception" for event in span.events)


@pytest.mark.asyncio
async def test_non_json_response_is_ok(exporter):
    @trace_tool("list_servers")
    async def handler():
        return "not json"

    assert await handler() == "not json"
    assert exporter.get_finished_spans()[0].attributes["mcp.tool.status"] == "ok"

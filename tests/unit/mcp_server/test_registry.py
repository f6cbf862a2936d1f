"""Tests for the central tool registry."""

import json

import pytest

from mcp_server.tools import registry


class _RecordingMCP:
    """Stands in for FastMCP and records every tool registration."""

    def __init__(self):
        self.tools = {}

    def tool(self, name, description):
        def decorator(func):
            self.tools[name] = (func, description)
            return func

        return decorator


def test_canonical_names():
    names = registry.get_all_tool_names()
    assert names == sorted(names)
    assert len(names) == 17
    assert registry.validate_tool_names() is True


def test_tool_suffix_is_rejected(monkeypatch):
    monkeypatch.setattr(registry, "CANONICAL_TOOLS", {"execute_sql_tool"})
    with pytest.raises(ValueError, match="must not end with '_tool'"):
        registry.validate_tool_names()


def test_every_module_declares_a_canonical_tool():
    declared = {module.TOOL_NAME for module in registry._tool_modules()}
    assert declared == registry.CANONICAL_TOOLS


def test_register_all():
    mcp = _RecordingMCP()

    registry.register_all(mcp)

    assert set(mcp.tools) == registry.CANONICAL_TOOLS
    func, description = mcp.tools["execute_sql"]
    assert description.startswith("Execute SQL")
    assert func.__name__ == "handler"


@pytest.mark.asyncio
async def test_registered_tools_return_error_envelopes():
    """Registered tools turn exceptions into the JSON error envelope."""
    mcp = _RecordingMCP()
    registry.register_all(mcp)
    list_active_transactions, _ = mcp.tools["list_active_transactions"]

    payload = json.loads(await list_active_transactions())

    assert payload["error"]["message"] == "Connection manager is not initialized"

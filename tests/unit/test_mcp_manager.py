"""Tests for MCP manager lifecycle and tool routing."""

from __future__ import annotations

import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from parley.config import ToolServerConfig
from parley.services.mcp_manager import McpManager, parse_headers


def _tool(name: str, server: str, description: str = "") -> dict:
    return {"name": name, "server_name": server, "description": description, "input_schema": {}}


class TestParseHeaders:
    def test_key_value_pairs(self) -> None:
        assert parse_headers(["Authorization: Bearer abc", "X-Trace:1"]) == {
            "Authorization": "Bearer abc",
            "X-Trace": "1",
        }

    def test_value_may_contain_colons(self) -> None:
        assert parse_headers(["X-Url: http://a:1"]) == {"X-Url": "http://a:1"}

    def test_malformed_entries_skipped(self) -> None:
        assert parse_headers(["no separator", ": empty key"]) == {}


class TestMcpManagerLifecycle:
    @pytest.fixture()
    def manager(self) -> McpManager:
        return McpManager({"test-server": ToolServerConfig(name="test-server", command="echo")})

    @pytest.mark.asyncio()
    async def test_startup_without_mcp_sdk(self, manager: McpManager) -> None:
        with patch.dict("sys.modules", {"mcp": None}):
            await manager.startup()
        assert manager.get_openai_tools() is None
        assert manager.get_server_statuses()["test-server"]["status"] == "error"

    @pytest.mark.asyncio()
    async def test_startup_records_connection_failure(
        self, manager: McpManager, caplog: pytest.LogCaptureFixture
    ) -> None:
        with (
            caplog.at_level(logging.WARNING, logger="parley.services.mcp_manager"),
            patch("mcp.client.stdio.stdio_client", side_effect=OSError("No such file")),
        ):
            await manager.startup()
        assert "Failed to connect to MCP server 'test-server': No such file" in caplog.text
        status = manager.get_server_statuses()["test-server"]
        assert status["status"] == "error"
        assert status["error_message"] == "No such file"
        info = manager.get_tools_info()
        assert info[0].name == "test-server"
        assert info[0].error == "No such file"

    def test_get_server_statuses_default(self, manager: McpManager) -> None:
        statuses = manager.get_server_statuses()
        assert statuses["test-server"]["status"] == "disconnected"
        assert statuses["test-server"]["transport"] == "stdio"

    def test_get_openai_tools_empty(self, manager: McpManager) -> None:
        assert manager.get_openai_tools() is None

    @pytest.mark.asyncio()
    async def test_shutdown_empty(self, manager: McpManager) -> None:
        await manager.shutdown()
        assert manager._sessions == {}
        assert manager._tools == []


class TestMcpManagerTools:
    @pytest.fixture()
    def manager(self) -> McpManager:
        mgr = McpManager(
            {
                "files": ToolServerConfig(name="files", command="npx", args=["fs"]),
                "remote": ToolServerConfig(
                    name="remote", url="http://mcp/sse", headers=["Authorization: x"], interface="rag"
                ),
                "broken": ToolServerConfig(name="broken", command="missing"),
            }
        )
        mgr._tools = [_tool("read_file", "files", "Read a file"), _tool("search", "remote")]
        mgr._tool_to_server = {"read_file": "files", "search": "remote"}
        mgr._server_status = {
            "files": {"status": "connected", "tool_count": 1},
            "remote": {"status": "connected", "tool_count": 1},
            "broken": {"status": "error", "tool_count": 0, "error_message": "spawn failed"},
        }
        return mgr

    def test_openai_tools_format(self, manager: McpManager) -> None:
        tools = manager.get_openai_tools()
        assert tools[0] == {
            "type": "function",
            "function": {
                "name": "read_file",
                "description": "Read a file",
                "parameters": {"type": "object", "properties": {}},
            },
        }

    def test_tools_info_groups_by_server(self, manager: McpManager) -> None:
        info = {s.name: s for s in manager.get_tools_info()}
        assert [t.name for t in info["files"].tools] == ["read_file"]
        assert info["files"].tools[0].description == "Read a file"
        assert info["broken"].error == "spawn failed"

    def test_servers_info(self, manager: McpManager) -> None:
        info = {s.name: s for s in manager.get_servers_info()}
        assert info["files"].command == "npx"
        assert info["files"].is_sse() is False
        assert info["remote"].is_sse() is True
        assert info["remote"].interface == "rag"

    @pytest.mark.asyncio()
    async def test_call_tool_routes_to_session(self, manager: McpManager) -> None:
        session = AsyncMock()
        session.call_tool.return_value = SimpleNamespace(
            isError=False, content=[SimpleNamespace(text="line 1"), SimpleNamespace(text="line 2")]
        )
        manager._sessions["files"] = session
        result = await manager.call_tool("read_file", {"path": "a"})
        session.call_tool.assert_awaited_once_with("read_file", {"path": "a"})
        assert result == {"content": "line 1\nline 2"}

    @pytest.mark.asyncio()
    async def test_call_tool_error_result_raises(self, manager: McpManager) -> None:
        session = AsyncMock()
        session.call_tool.return_value = SimpleNamespace(isError=True, content=[SimpleNamespace(text="denied")])
        manager._sessions["files"] = session
        with pytest.raises(RuntimeError, match="denied"):
            await manager.call_tool("read_file", {})

    @pytest.mark.asyncio()
    async def test_call_unknown_tool(self, manager: McpManager) -> None:
        with pytest.raises(ValueError, match="not found"):
            await manager.call_tool("nope", {})

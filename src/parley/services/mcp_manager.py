"""MCP client lifecycle and tool routing manager."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from typing import Any

from ..config import ToolServerConfig
from ..models import ServerInfo, ServerTools, ToolInfo

logger = logging.getLogger(__name__)


def parse_headers(headers: list[str]) -> dict[str, str]:
    """Turn ``["Key: Value", ...]`` into a dict, skipping malformed entries."""
    result: dict[str, str] = {}
    for header in headers:
        key, sep, value = header.partition(":")
        if not sep or not key.strip():
            logger.warning("Ignoring malformed header entry (no 'Key: Value' form)")
            continue
        result[key.strip()] = value.strip()
    return result


class McpManager:
    def __init__(self, server_configs: dict[str, ToolServerConfig]) -> None:
        self._configs = dict(server_configs)
        self._exit_stack = AsyncExitStack()
        self._sessions: dict[str, Any] = {}
        self._tools: list[dict[str, Any]] = []
        self._tool_to_server: dict[str, str] = {}
        self._server_status: dict[str, dict[str, Any]] = {}

    async def startup(self) -> None:
        """Connect every configured server. Per-server failures are recorded, not raised."""
        if not self._configs:
            return

        try:
            from mcp import ClientSession, StdioServerParameters
            from mcp.client.sse import sse_client
            from mcp.client.stdio import stdio_client
        except ImportError:
            logger.warning("MCP SDK not installed, skipping MCP server connections")
            for name in self._configs:
                self._server_status[name] = {"status": "error", "error_message": "MCP SDK not installed"}
            return

        for config in self._configs.values():
            try:
                if config.transport == "sse":
                    transport = await self._exit_stack.enter_async_context(
                        sse_client(config.url, headers=parse_headers(config.headers) or None)
                    )
                else:
                    server_params = StdioServerParameters(
                        command=config.command,
                        args=config.args,
                        env=config.env or None,
                    )
                    transport = await self._exit_stack.enter_async_context(stdio_client(server_params))
                read_stream, write_stream = transport
                session = await self._exit_stack.enter_async_context(ClientSession(read_stream, write_stream))
                await session.initialize()
                self._sessions[config.name] = session

                tools_result = await session.list_tools()
                tool_count = 0
                for tool in tools_result.tools:
                    self._tools.append(
                        {
                            "name": tool.name,
                            "server_name": config.name,
                            "description": tool.description or "",
                            "input_schema": tool.inputSchema if hasattr(tool, "inputSchema") else {},
                        }
                    )
                    self._tool_to_server[tool.name] = config.name
                    tool_count += 1

                self._server_status[config.name] = {"status": "connected", "tool_count": tool_count}
                logger.info(f"MCP server '{config.name}' connected with {tool_count} tools")

            except Exception as e:
                logger.warning(f"Failed to connect to MCP server '{config.name}': {e}")
                self._server_status[config.name] = {
                    "status": "error",
                    "tool_count": 0,
                    "error_message": str(e) or type(e).__name__,
                }

    def get_openai_tools(self) -> list[dict[str, Any]] | None:
        if not self._tools:
            return None
        return [
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool["description"],
                    "parameters": tool["input_schema"] or {"type": "object", "properties": {}},
                },
            }
            for tool in self._tools
        ]

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        server_name = self._tool_to_server.get(tool_name)
        if not server_name or server_name not in self._sessions:
            raise ValueError(f"Tool '{tool_name}' not found in any connected MCP server")

        session = self._sessions[server_name]
        result = await session.call_tool(tool_name, arguments)

        if getattr(result, "isError", False):
            raise RuntimeError(_content_text(result) or f"Tool '{tool_name}' reported an error")
        if hasattr(result, "content"):
            return {"content": _content_text(result)}

        return {"result": str(result)}

    def get_server_statuses(self) -> dict[str, dict[str, Any]]:
        result = {}
        for config in self._configs.values():
            status = self._server_status.get(config.name, {"status": "disconnected", "tool_count": 0})
            result[config.name] = {
                "name": config.name,
                "transport": config.transport,
                **status,
            }
        return result

    def get_servers_info(self) -> list[ServerInfo]:
        return [
            ServerInfo(
                name=c.name,
                command=c.command,
                args=list(c.args),
                url=c.url,
                headers=list(c.headers),
                interface=c.interface,
            )
            for c in self._configs.values()
        ]

    def get_tools_info(self) -> list[ServerTools]:
        """Tools grouped per server; servers that failed carry an error instead."""
        result = []
        for name, status in self.get_server_statuses().items():
            if status["status"] != "connected":
                result.append(
                    ServerTools(name=name, error=status.get("error_message") or status["status"])
                )
                continue
            tools = [
                ToolInfo(name=t["name"], description=t["description"])
                for t in self._tools
                if t["server_name"] == name
            ]
            result.append(ServerTools(name=name, tools=tools))
        return result

    async def shutdown(self) -> None:
        await self._exit_stack.aclose()
        self._sessions.clear()
        self._tools.clear()
        self._tool_to_server.clear()
        for status in self._server_status.values():
            if status.get("status") == "connected":
                status["status"] = "disconnected"


def _content_text(result: Any) -> str:
    contents = []
    for item in getattr(result, "content", None) or []:
        if hasattr(item, "text"):
            contents.append(item.text)
        elif hasattr(item, "data"):
            contents.append(str(item.data))
        else:
            contents.append(str(item))
    return "\n".join(contents)

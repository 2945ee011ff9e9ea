"""Agentic tool-call loop: model call, tool calls, repeat until a plain answer."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Awaitable, Callable

from .ai_service import AIService

logger = logging.getLogger(__name__)

ToolExecutor = Callable[[str, dict[str, Any]], Awaitable[dict[str, Any]]]


@dataclass
class AgentEvent:
    kind: str
    data: dict[str, Any] = field(default_factory=dict)


async def run_agent_loop(
    ai_service: AIService,
    messages: list[dict[str, Any]],
    tool_executor: ToolExecutor,
    tools_openai: list[dict[str, Any]] | None,
    max_iterations: int = 50,
) -> AsyncGenerator[AgentEvent, None]:
    """Run the agentic tool-call loop, yielding events.

    ``messages`` is the OpenAI-format request history and is extended in
    place with the assistant and tool messages produced along the way.

    Event kinds: ``thinking``, ``assistant_message``, ``tool_call_start``,
    ``tool_call_end``, ``done`` and ``error``. A failing model call ends the
    loop with ``error``; a failing tool call does not.
    """
    iteration = 0
    while iteration < max_iterations:
        iteration += 1
        yield AgentEvent(kind="thinking", data={"iteration": iteration})

        try:
            reply = await ai_service.complete(messages, tools=tools_openai)
        except Exception as e:
            logger.debug("Model call failed on iteration %d", iteration, exc_info=True)
            yield AgentEvent(kind="error", data={"message": str(e), "exception": e})
            return

        content = reply.get("content", "")
        tool_calls = reply.get("tool_calls") or []

        if not tool_calls:
            yield AgentEvent(kind="assistant_message", data={"content": content, "tool_calls": []})
            yield AgentEvent(kind="done", data={"content": content})
            return

        yield AgentEvent(kind="assistant_message", data={"content": content, "tool_calls": tool_calls})
        messages.append(
            {
                "role": "assistant",
                "content": content,
                "tool_calls": [_openai_tool_call(tc) for tc in tool_calls],
            }
        )

        for tc in tool_calls:
            yield AgentEvent(
                kind="tool_call_start",
                data={"id": tc["id"], "tool_name": tc["function_name"], "arguments": tc["arguments"]},
            )
            try:
                result = await tool_executor(tc["function_name"], tc["arguments"])
                status = "success"
            except Exception as e:
                logger.info("Tool %s failed: %s", tc["function_name"], e)
                result = {"error": str(e) or type(e).__name__}
                status = "error"
            yield AgentEvent(
                kind="tool_call_end",
                data={"id": tc["id"], "tool_name": tc["function_name"], "output": result, "status": status},
            )
            messages.append({"role": "tool", "tool_call_id": tc["id"], "content": _result_text(result)})

    yield AgentEvent(kind="error", data={"message": f"Max iterations ({max_iterations}) reached"})


def _openai_tool_call(tc: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": tc["id"],
        "type": "function",
        "function": {"name": tc["function_name"], "arguments": json.dumps(tc["arguments"])},
    }


def _result_text(result: dict[str, Any]) -> str:
    if set(result) == {"content"} and isinstance(result["content"], str):
        return result["content"]
    return json.dumps(result, default=str)

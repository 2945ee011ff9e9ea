"""Chat engine: owns the model client, MCP servers and the conversation history.

The engine runs its own asyncio event loop on a background thread.
:meth:`ChatEngine.submit_prompt` is synchronous for the caller; lifecycle
callbacks fire on the engine thread while the turn is in progress.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

from ..config import EffectiveConfig
from ..models import HistoryMessage, ServerInfo, ServerTools, TextBlock, ToolResultBlock, ToolUseBlock
from .agent_loop import run_agent_loop
from .ai_service import AIService, ModelSpecError, create_ai_service
from .mcp_manager import McpManager

logger = logging.getLogger(__name__)


class EngineConstructionError(Exception):
    """Raised when the engine cannot be initialized."""


class PromptError(Exception):
    """Raised when a prompt turn fails."""


class ToolCallError(Exception):
    """Passed to ``tool_call_failed`` callbacks."""


@dataclass
class EngineCallbacks:
    """Lifecycle callback slots. Unset slots are skipped."""

    started_prompt_processing: Callable[[str], None] | None = None
    started_thinking: Callable[[], None] | None = None
    tool_calling: Callable[[str], None] | None = None
    tool_call_failed: Callable[[str, Exception], None] | None = None
    response_received: Callable[[str], None] | None = None


def window_history(history: list[HistoryMessage], size: int) -> list[HistoryMessage]:
    """Keep the last ``size`` messages (0 keeps everything).

    The window never starts on a tool result whose tool call was cut off.
    """
    if size <= 0 or len(history) <= size:
        return list(history)
    trimmed = history[-size:]
    while trimmed and trimmed[0].tool_results():
        trimmed = trimmed[1:]
    return trimmed


def to_openai_messages(history: list[HistoryMessage]) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    for msg in history:
        if msg.role == "assistant":
            entry: dict[str, Any] = {"role": "assistant", "content": msg.text()}
            uses = msg.tool_uses()
            if uses:
                entry["tool_calls"] = [
                    {
                        "id": u.id,
                        "type": "function",
                        "function": {"name": u.name, "arguments": json.dumps(u.input)},
                    }
                    for u in uses
                ]
            messages.append(entry)
            continue
        results = msg.tool_results()
        for r in results:
            if isinstance(r.content, str):
                content = r.content
            else:
                content = "\n".join(b.text for b in r.content)
            messages.append({"role": "tool", "tool_call_id": r.tool_use_id, "content": content})
        text = msg.text()
        if text or not results:
            messages.append({"role": msg.role, "content": text})
    return messages


class ChatEngine:
    def __init__(
        self,
        config: EffectiveConfig,
        ai_service: AIService,
        mcp_manager: McpManager,
        *,
        max_iterations: int = 50,
        startup_timeout: float = 60.0,
        shutdown_timeout: float = 10.0,
    ) -> None:
        self.config = config
        self.callbacks = EngineCallbacks()
        self._ai = ai_service
        self._mcp = mcp_manager
        self._max_iterations = max_iterations
        self._startup_timeout = startup_timeout
        self._shutdown_timeout = shutdown_timeout
        self._history: list[HistoryMessage] = []

        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, name="parley-engine", daemon=True)
        self._ready: concurrent.futures.Future[None] = concurrent.futures.Future()
        self._lifecycle: concurrent.futures.Future[None] | None = None
        self._stopping: asyncio.Event | None = None
        self._state_lock = threading.Lock()
        self._closed = False

    # -- lifecycle ---------------------------------------------------------

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    async def _serve(self) -> None:
        # MCP transports must be opened and closed from the same task.
        self._stopping = asyncio.Event()
        try:
            await self._mcp.startup()
        except Exception as e:
            self._ready.set_exception(e)
            await self._close_services()
            return
        self._ready.set_result(None)
        await self._stopping.wait()
        await self._close_services()

    async def _close_services(self) -> None:
        try:
            await self._mcp.shutdown()
        except Exception:
            logger.warning("Error while closing MCP servers", exc_info=True)
        try:
            await self._ai.close()
        except Exception:
            logger.debug("Error while closing the model client", exc_info=True)

    def start(self) -> None:
        self._thread.start()
        self._lifecycle = asyncio.run_coroutine_threadsafe(self._serve(), self._loop)
        try:
            self._ready.result(timeout=self._startup_timeout)
        except concurrent.futures.TimeoutError as e:
            self.shutdown()
            raise EngineConstructionError(f"tool servers did not start within {self._startup_timeout:.0f}s") from e
        except Exception as e:
            self.shutdown()
            raise EngineConstructionError(f"cannot start tool servers: {e}") from e
        logger.debug("Chat engine started with model %s", self.config.model)

    def _request_stop(self) -> None:
        if self._stopping is not None:
            self._stopping.set()

    def shutdown(self) -> None:
        """Close tool servers and stop the engine thread. Safe to call repeatedly."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
        if self._lifecycle is None:
            self._loop.close()
            return

        self._loop.call_soon_threadsafe(self._request_stop)
        try:
            self._lifecycle.result(timeout=self._shutdown_timeout)
        except Exception:
            logger.warning("Chat engine did not shut down cleanly", exc_info=True)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=self._shutdown_timeout)
        if not self._thread.is_alive():
            self._loop.close()
        logger.debug("Chat engine stopped")

    # -- prompting ---------------------------------------------------------

    def _emit(self, slot: str, *args: Any) -> None:
        callback = getattr(self.callbacks, slot)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            # A broken display handler must not end the turn
            logger.warning("Lifecycle callback %s failed", slot, exc_info=True)

    def submit_prompt(self, text: str) -> str:
        """Run one prompt turn and return the final response text.

        Blocks until the turn completes. Raises :class:`PromptError` on failure.
        """
        if self._closed or self._lifecycle is None:
            raise PromptError("the chat engine is not running")

        try:
            self._emit("started_prompt_processing", text)
            future = asyncio.run_coroutine_threadsafe(self._run_turn(text), self._loop)
            return future.result()
        except PromptError:
            raise
        except Exception as e:
            raise PromptError(str(e) or type(e).__name__) from e

    async def _run_turn(self, text: str) -> str:
        self._history.append(HistoryMessage(role="user", content=[TextBlock(text=text)]))

        messages: list[dict[str, Any]] = []
        if self.config.system_instruction:
            messages.append({"role": "system", "content": self.config.system_instruction})
        messages.extend(to_openai_messages(window_history(self._history, self.config.message_window)))

        async for event in run_agent_loop(
            self._ai,
            messages,
            self._mcp.call_tool,
            self._mcp.get_openai_tools(),
            max_iterations=self._max_iterations,
        ):
            if event.kind == "thinking":
                self._emit("started_thinking")
            elif event.kind == "assistant_message":
                self._record_assistant(event.data["content"], event.data["tool_calls"])
            elif event.kind == "tool_call_start":
                self._emit("tool_calling", event.data["tool_name"])
            elif event.kind == "tool_call_end":
                self._record_tool_result(event.data)
                if event.data["status"] != "success":
                    error = event.data["output"].get("error", "tool call failed")
                    self._emit("tool_call_failed", event.data["tool_name"], ToolCallError(error))
            elif event.kind == "done":
                content = event.data["content"]
                self._emit("response_received", content)
                return content
            elif event.kind == "error":
                cause = event.data.get("exception")
                raise PromptError(event.data["message"]) from cause

        raise PromptError("the agent loop ended without a response")

    def _record_assistant(self, content: str, tool_calls: list[dict[str, Any]]) -> None:
        blocks: list[Any] = []
        if content:
            blocks.append(TextBlock(text=content))
        for tc in tool_calls:
            blocks.append(ToolUseBlock(id=tc["id"], name=tc["function_name"], input=tc["arguments"]))
        self._history.append(HistoryMessage(role="assistant", content=blocks))

    def _record_tool_result(self, data: dict[str, Any]) -> None:
        output = data["output"]
        if "content" in output and isinstance(output["content"], str):
            content = output["content"]
        else:
            content = str(output.get("error", output))
        block = ToolResultBlock(tool_use_id=data["id"], content=content, is_error=data["status"] != "success")
        last = self._history[-1] if self._history else None
        # Results of one assistant turn share a single user message
        if last is not None and last.role == "user" and last.tool_results() and not last.text():
            last.content.append(block)
        else:
            self._history.append(HistoryMessage(role="user", content=[block]))

    # -- introspection -----------------------------------------------------

    @property
    def model(self) -> str:
        return self.config.model

    def get_servers_info(self) -> list[ServerInfo]:
        return self._mcp.get_servers_info()

    def get_tools_info(self) -> list[ServerTools]:
        return self._mcp.get_tools_info()

    def get_messages(self) -> list[HistoryMessage]:
        return list(self._history)


def create_engine(config: EffectiveConfig) -> ChatEngine:
    """Build and start a :class:`ChatEngine` for ``config``."""
    try:
        ai_service = create_ai_service(config)
    except ModelSpecError as e:
        raise EngineConstructionError(str(e)) from e
    engine = ChatEngine(config, ai_service, McpManager(config.tool_servers))
    engine.start()
    return engine

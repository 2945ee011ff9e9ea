"""Translate chat engine lifecycle callbacks into indicator changes and terminal output."""

from __future__ import annotations

import logging

from ..services.engine import EngineCallbacks
from . import renderer
from .busy import BusyIndicator

logger = logging.getLogger(__name__)

THINKING_LABEL = "Thinking..."
TOOL_LABEL_PREFIX = "Using tool: "


class LifecycleRouter:
    """One handler per lifecycle event.

    Handlers run on the engine's thread. Anything that writes to the terminal
    hides the busy indicator first so the two never draw at the same time.
    """

    def __init__(self, busy: BusyIndicator) -> None:
        self.busy = busy

    def attach(self, callbacks: EngineCallbacks) -> None:
        callbacks.started_prompt_processing = self.on_prompt_submitted
        callbacks.started_thinking = self.on_thinking
        callbacks.tool_calling = self.on_tool_calling
        callbacks.tool_call_failed = self.on_tool_call_failed
        callbacks.response_received = self.on_response_received

    def on_prompt_submitted(self, prompt: str) -> None:
        renderer.render_prompt_echo(prompt)

    def on_thinking(self) -> None:
        self.busy.show(THINKING_LABEL)

    def on_tool_calling(self, tool_name: str) -> None:
        self.busy.show(TOOL_LABEL_PREFIX + tool_name)

    def on_tool_call_failed(self, tool_name: str, error: Exception) -> None:
        self.busy.hide()
        logger.info("Tool call %s failed: %s", tool_name, error)
        renderer.render_tool_error(tool_name, error)

    def on_response_received(self, response: str) -> None:
        self.busy.hide()
        renderer.render_response(response)

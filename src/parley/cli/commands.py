"""Reserved slash commands handled locally instead of going to the chat engine."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from . import renderer

if TYPE_CHECKING:
    from ..services.engine import ChatEngine

logger = logging.getLogger(__name__)

COMMAND_PREFIX = "/"


class ReservedCommand(Enum):
    TOOLS = "/tools"
    HELP = "/help"
    HISTORY = "/history"
    SERVERS = "/servers"
    QUIT = "/quit"
    UNKNOWN = ""

    @classmethod
    def parse(cls, line: str) -> ReservedCommand | None:
        """Return the command for ``line``, or None when it is not a command at all."""
        token = line.strip().lower()
        if not token.startswith(COMMAND_PREFIX):
            return None
        for command in cls:
            if command is not cls.UNKNOWN and command.value == token:
                return command
        return cls.UNKNOWN


class DispatchOutcome(Enum):
    FORWARD = "forward"  # send the line to the chat engine
    HANDLED = "handled"  # consumed locally, keep reading input
    EXIT = "exit"  # end the session

    @property
    def handled_locally(self) -> bool:
        return self is not DispatchOutcome.FORWARD


class CommandDispatcher:
    def dispatch(self, line: str, engine: ChatEngine) -> DispatchOutcome:
        if not line.strip():
            return DispatchOutcome.HANDLED

        command = ReservedCommand.parse(line)
        if command is None:
            return DispatchOutcome.FORWARD

        logger.debug("Handling command %s", command.name)
        if command is ReservedCommand.QUIT:
            renderer.render_farewell()
            return DispatchOutcome.EXIT
        if command is ReservedCommand.HELP:
            renderer.render_help()
        elif command is ReservedCommand.TOOLS:
            self._show(lambda: renderer.render_tools(engine.get_tools_info()), "tools")
        elif command is ReservedCommand.SERVERS:
            self._show(lambda: self._show_servers(engine), "servers")
        elif command is ReservedCommand.HISTORY:
            self._show(lambda: renderer.render_history(engine.get_messages()), "history")
        else:
            renderer.render_unknown_command(line.strip())
        return DispatchOutcome.HANDLED

    @staticmethod
    def _show(view, what: str) -> None:
        try:
            view()
        except Exception as e:
            logger.warning("Failed to show %s", what, exc_info=True)
            renderer.render_error(f"Error showing {what}: {e}")

    @staticmethod
    def _show_servers(engine: ChatEngine) -> None:
        with renderer.loading_step("Loading server configuration..."):
            servers = engine.get_servers_info()
        renderer.render_servers(servers)

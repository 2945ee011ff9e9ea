"""Interactive session loop for the Parley CLI."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable

from .. import __version__
from ..config import EffectiveConfig
from ..services.engine import ChatEngine, EngineConstructionError, PromptError, create_engine
from . import renderer
from .busy import BusyIndicator
from .commands import CommandDispatcher, DispatchOutcome, ReservedCommand
from .events import LifecycleRouter
from .renderer import CHROME, GOLD, MUTED

logger = logging.getLogger(__name__)

EngineFactory = Callable[[EffectiveConfig], ChatEngine]
LineReader = Callable[[], str]


class SessionState(Enum):
    INIT = "init"
    AWAITING_INPUT = "awaiting_input"
    PROCESSING = "processing"
    TERMINATED = "terminated"


def _make_prompt_reader() -> LineReader:
    """Build a prompt_toolkit line reader.

    Enter submits; Alt+Enter / Ctrl+J inserts a newline. Ctrl+C and Ctrl+D
    raise ``KeyboardInterrupt`` / ``EOFError`` out of the reader.
    """
    from prompt_toolkit import PromptSession
    from prompt_toolkit.completion import Completer, Completion
    from prompt_toolkit.document import Document
    from prompt_toolkit.formatted_text import HTML
    from prompt_toolkit.history import InMemoryHistory
    from prompt_toolkit.key_binding import KeyBindings
    from prompt_toolkit.styles import Style as PtStyle

    commands = [c.value for c in ReservedCommand if c is not ReservedCommand.UNKNOWN]

    class SlashCompleter(Completer):
        """Tab completer for / commands."""

        def get_completions(self, document: Document, complete_event: Any) -> Any:
            text = document.text_before_cursor.lstrip()
            if not text.startswith("/") or " " in text:
                return
            for cmd in commands:
                if cmd.startswith(text.lower()):
                    yield Completion(cmd, start_position=-len(text))

    kb = KeyBindings()

    @kb.add("enter")
    def _submit(event: Any) -> None:
        event.current_buffer.validate_and_handle()

    @kb.add("escape", "enter")
    @kb.add("c-j")
    def _newline(event: Any) -> None:
        event.current_buffer.insert_text("\n")

    style = PtStyle.from_dict(
        {
            "completion-menu": f"bg:#1a1a2e {CHROME}",
            "completion-menu.completion.current": f"bg:{GOLD} #1a1a2e",
            "bottom-toolbar": f"noreverse {MUTED}",
        }
    )
    session: PromptSession[str] = PromptSession(
        history=InMemoryHistory(),
        key_bindings=kb,
        multiline=True,
        prompt_continuation="  ",
        completer=SlashCompleter(),
        style=style,
    )
    message = HTML(f"<style fg='{GOLD}'>❯</style> ")
    toolbar = HTML("Enter your prompt (Type /help for commands, Ctrl+C to quit)")

    def _read() -> str:
        return session.prompt(message, bottom_toolbar=toolbar)

    return _read


class SessionLoop:
    """Init -> AwaitingInput <-> Processing -> Terminated.

    ``run`` returns the process exit code. The engine's ``shutdown`` runs
    exactly once however the session ends.
    """

    def __init__(
        self,
        config: EffectiveConfig,
        *,
        engine_factory: EngineFactory = create_engine,
        read_line: LineReader | None = None,
        busy: BusyIndicator | None = None,
        dispatcher: CommandDispatcher | None = None,
    ) -> None:
        self.config = config
        self.state = SessionState.INIT
        self.busy = busy or BusyIndicator()
        self.dispatcher = dispatcher or CommandDispatcher()
        self._engine_factory = engine_factory
        self._read_line = read_line
        self._engine: ChatEngine | None = None

    def run(self) -> int:
        self.state = SessionState.INIT
        try:
            engine = self._engine_factory(self.config)
        except EngineConstructionError as e:
            logger.error("Engine construction failed: %s", e)
            renderer.render_error(f"Error creating assistant: {e}")
            self.state = SessionState.TERMINATED
            return 1

        self._engine = engine
        LifecycleRouter(self.busy).attach(engine.callbacks)
        renderer.render_welcome(self.config.model, len(self.config.tool_servers), __version__)

        try:
            return self._interact(engine)
        finally:
            self._terminate()

    def _interact(self, engine: ChatEngine) -> int:
        read_line = self._read_line or _make_prompt_reader()
        while True:
            self.state = SessionState.AWAITING_INPUT
            try:
                line = read_line()
            except (KeyboardInterrupt, EOFError):
                renderer.render_farewell()
                return 0

            self.state = SessionState.PROCESSING
            outcome = self.dispatcher.dispatch(line, engine)
            if outcome is DispatchOutcome.EXIT:
                return 0
            if outcome.handled_locally:
                continue

            try:
                engine.submit_prompt(line)
            except PromptError as e:
                logger.error("Prompt failed: %s", e)
                self.busy.hide()
                renderer.render_error(str(e))
                return 1
            finally:
                # Never leave an indicator running while waiting for input
                self.busy.hide()

    def _terminate(self) -> None:
        if self.state is SessionState.TERMINATED:
            return
        self.state = SessionState.TERMINATED
        self.busy.hide()
        if self._engine is not None:
            logger.info("Shutting down chat engine...")
            self._engine.shutdown()


def run_session(config: EffectiveConfig, **kwargs: Any) -> int:
    """Run an interactive session; returns the exit code."""
    return SessionLoop(config, **kwargs).run()

"""Rich-based terminal output for the chat session."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.padding import Padding
from rich.status import Status
from rich.text import Text
from rich.tree import Tree

from ..models import HistoryMessage, ServerInfo, ServerTools, TextBlock, ToolResultBlock, ToolUseBlock

console = Console(stderr=True)
# Separate console for stdout markdown rendering (not stderr)
_stdout_console = Console()

# ---------------------------------------------------------------------------
# Color palette, tuned for dark terminals.
# ---------------------------------------------------------------------------

GOLD = "#C5A059"  # accents, busy indicator text
SLATE = "#94A3B8"  # labels ("You:", "Assistant:")
MUTED = "#8b8b8b"  # secondary text
CHROME = "#6b7280"  # UI chrome (hints, status messages)
CYAN = "#7dcfff"  # tool names
ERROR_RED = "#CD6B6B"  # pale red for inline errors


# ---------------------------------------------------------------------------
# Markdown
# ---------------------------------------------------------------------------


def _make_markdown(text: str) -> Markdown:
    """Create a Markdown renderable with left-aligned headings."""
    _patch_heading_left()
    return Markdown(text)


_heading_patched = False


def _patch_heading_left() -> None:
    """Monkey-patch Rich's Heading to render left-aligned instead of centered."""
    global _heading_patched
    if _heading_patched:
        return
    from rich.markdown import Heading

    def _left_aligned(self, console, options):
        self.text.justify = "left"
        if self.tag == "h2":
            yield Text("")
        yield self.text

    Heading.__rich_console__ = _left_aligned
    _heading_patched = True


def _print_markdown(text: str, what: str, padding: tuple[int, int, int, int] = (0, 2, 0, 2)) -> bool:
    """Print ``text`` as markdown on stdout. Returns False after reporting a rendering failure."""
    try:
        _stdout_console.print(Padding(_make_markdown(text), padding))
    except Exception as e:
        render_error(f"Error rendering {what}: {e}")
        return False
    return True


# ---------------------------------------------------------------------------
# Conversation turn
# ---------------------------------------------------------------------------


def render_prompt_echo(prompt: str) -> None:
    console.print(f"\n[{SLATE}]You:[/] {escape(prompt)}\n")


def render_response(text: str) -> None:
    console.print(f"\n[{SLATE}]Assistant:[/]")
    if not _print_markdown(text, "response"):
        _stdout_console.print(Text(text))
    console.print()


def render_tool_error(tool_name: str, error: Any = None) -> None:
    console.print(f"\n  [bold {ERROR_RED}]Error using tool: {escape(tool_name)}[/]")
    if error:
        first_line = str(error).split("\n")[0]
        if len(first_line) > 80:
            first_line = first_line[:77] + "..."
        console.print(f"    [{MUTED}]{escape(first_line)}[/{MUTED}]")


def busy_status(label: str) -> Status:
    """Animated busy indicator; a sync context manager that owns the line while active."""
    return console.status(f"[{GOLD}]{escape(label)}[/]", spinner="dots12")


def loading_step(message: str) -> Status:
    """Create a dim animated spinner for a short blocking step::

    with renderer.loading_step("Loading server configuration..."):
        servers = engine.get_servers_info()
    """
    return console.status(f"  [{MUTED}]{message}[/{MUTED}]", spinner="dots12", spinner_style=MUTED)


# ---------------------------------------------------------------------------
# Errors and session chrome
# ---------------------------------------------------------------------------


def render_error(message: str) -> None:
    console.print(f"\n[bold {ERROR_RED}]Error:[/] {escape(message)}")


def render_unknown_command(command: str) -> None:
    console.print(f"\n[bold {ERROR_RED}]Unknown command: {escape(command)}[/]")
    console.print(f"[{CHROME}]Type /help to see available commands[/{CHROME}]\n")


def render_farewell() -> None:
    console.print("\nGoodbye!")


_BOX_TOP = "╭" + "─" * 29 + "╮"
_BOX_BOT = "╰" + "─" * 29 + "╯"
_SEP = " · "


def render_welcome(model: str, server_count: int, version: str = "") -> None:
    console.print()
    console.print(f"[{GOLD}]  {_BOX_TOP}[/]")
    console.print(f"[{GOLD}]  │         [bold]P A R L E Y[/bold]         │[/]")
    console.print(f"[{GOLD}]  │  [{SLATE}]chat with tools, in a tty[/]  │[/]")
    console.print(f"[{GOLD}]  {_BOX_BOT}[/]")
    console.print()
    parts = [escape(model), f"{server_count} tool server{'s' if server_count != 1 else ''}"]
    if version:
        parts.insert(0, f"v{version}")
    console.print(f"  [{MUTED}]{_SEP.join(parts)}[/{MUTED}]")
    console.print(f"  [{MUTED}]Type /help for commands, Ctrl+C to quit[/{MUTED}]\n")


# ---------------------------------------------------------------------------
# /help
# ---------------------------------------------------------------------------

HELP_MARKDOWN = """\
# Available Commands

The following commands are available:

- **/help**: Show this help message
- **/tools**: List all available tools
- **/servers**: List configured MCP servers
- **/history**: Display conversation history
- **/quit**: Exit the application

You can also press Ctrl+C at any time to quit.

## Available Models

Specify models using the --model or -m flag:

- **Anthropic Claude**: `anthropic:claude-3-5-sonnet-latest`
- **OpenAI**: `openai:gpt-4o`
- **Google Gemini**: `google:gemini-2.0-flash`
- **Ollama Models**: `ollama:modelname`

Examples:
```
parley -m anthropic:claude-3-5-sonnet-latest
parley -m ollama:qwen2.5:3b
```
"""


def render_help() -> None:
    _print_markdown(HELP_MARKDOWN, "help")


# ---------------------------------------------------------------------------
# /tools
# ---------------------------------------------------------------------------


def render_tools(servers: list[ServerTools]) -> None:
    if not servers:
        console.print(f"\n  [{MUTED}]Tools are currently disabled for this model.[/{MUTED}]\n")
        return

    tree = Tree("[bold]Tools[/bold]", guide_style=CHROME)
    for server in servers:
        if server.error:
            console.print(
                f"\n[bold {ERROR_RED}]  Error fetching tools from {escape(server.name)}: {escape(server.error)}[/]"
            )
            continue
        branch = tree.add(f"[bold]{escape(server.name)}[/bold]")
        if not server.tools:
            branch.add(f"[{MUTED}]No tools available[/{MUTED}]")
            continue
        for tool in server.tools:
            node = branch.add(f"[bold {CYAN}]{escape(tool.name)}[/]")
            if tool.description:
                node.add(Text(tool.description, style=MUTED))

    console.print()
    console.print(Padding(tree, (0, 2, 1, 2)))


# ---------------------------------------------------------------------------
# /servers
# ---------------------------------------------------------------------------


def servers_markdown(servers: list[ServerInfo]) -> str:
    """Describe configured tool servers; header values are always redacted."""
    if not servers:
        return "No servers configured.\n"
    parts: list[str] = []
    for server in servers:
        parts.append(f"# {server.name}\n\n")
        if server.interface:
            parts.append(f"*Interface*\n`{server.interface}`\n\n")
        if server.is_sse():
            parts.append("*Url*\n")
            parts.append(f"`{server.url}`\n\n")
            parts.append("*headers*\n")
            keys = []
            for header in server.headers:
                key, sep, _value = header.partition(":")
                if sep and key.strip():
                    keys.append(key.strip())
            if keys:
                for key in keys:
                    parts.append(f"`{key}: [REDACTED]`\n")
            else:
                parts.append("*None*\n")
        else:
            parts.append("*Command*\n")
            parts.append(f"`{server.command}`\n\n")
            parts.append("*Arguments*\n")
            if server.args:
                parts.append(f"`{' '.join(server.args)}`\n")
            else:
                parts.append("*None*\n")
        parts.append("\n")
    return "".join(parts)


def render_servers(servers: list[ServerInfo]) -> None:
    console.print()
    _print_markdown(servers_markdown(servers), "servers", padding=(0, 4, 0, 4))


# ---------------------------------------------------------------------------
# /history
# ---------------------------------------------------------------------------

_ROLE_TITLES = {"user": "## User", "assistant": "## Assistant", "system": "## System"}


def history_markdown(messages: list[HistoryMessage]) -> str:
    parts = ["# Conversation History\n\n"]
    for msg in messages:
        parts.append(_ROLE_TITLES.get(msg.role, "## User") + "\n\n")
        for block in msg.content:
            if isinstance(block, TextBlock):
                parts.append("### Text\n")
                parts.append(block.text + "\n\n")
            elif isinstance(block, ToolUseBlock):
                parts.append("### Tool Use\n")
                parts.append(f"**Tool:** {block.name}\n\n")
                if block.input:
                    try:
                        pretty = json.dumps(block.input, indent=2)
                    except (TypeError, ValueError) as e:
                        parts.append(f"Error formatting input: {e}\n\n")
                    else:
                        parts.append("**Input:**\n```json\n" + pretty + "\n```\n\n")
            elif isinstance(block, ToolResultBlock):
                parts.append("### Tool Result\n")
                parts.append(f"**Tool ID:** {block.tool_use_id}\n\n")
                if isinstance(block.content, str):
                    parts.append("```\n" + block.content + "\n```\n\n")
                else:
                    for item in block.content:
                        parts.append("```\n" + item.text + "\n```\n\n")
        parts.append("---\n\n")
    return "".join(parts)


def render_history(messages: list[HistoryMessage]) -> None:
    console.print()
    _print_markdown(history_markdown(messages), "history")

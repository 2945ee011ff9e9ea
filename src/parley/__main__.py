"""CLI entry point for Parley."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from . import __version__
from .config import ConfigFlags, ConfigLoadError, EffectiveConfig, resolve_config

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(config: EffectiveConfig) -> None:
    """Send log records to the configured file, or to stderr when there is none."""
    if config.debug_mode:
        level = logging.DEBUG
    elif config.log_file_path:
        level = logging.INFO
    else:
        level = logging.WARNING

    if config.log_file_path:
        logging.basicConfig(level=level, format=_LOG_FORMAT, filename=config.log_file_path, force=True)
    else:
        logging.basicConfig(level=level, format=_LOG_FORMAT, stream=sys.stderr, force=True)
    # Request-level chatter from the HTTP stack drowns out our own records
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="parley", description="Parley - chat with LLMs and MCP tools in a terminal")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a config file (created with defaults if missing; default: ./config.json)",
    )
    parser.add_argument(
        "--message-window",
        dest="message_window",
        type=int,
        default=0,
        help="Number of recent messages sent to the model (0 keeps the whole conversation)",
    )
    parser.add_argument(
        "-m",
        "--model",
        default="",
        help="Model as provider:model (e.g. anthropic:claude-3-5-sonnet-latest, ollama:qwen2.5:3b)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--openai-url", dest="openai_url", default="", help="Base URL for the OpenAI API")
    parser.add_argument("--anthropic-url", dest="anthropic_url", default="", help="Base URL for the Anthropic API")
    parser.add_argument("--openai-api-key", dest="openai_api_key", default="", help="OpenAI API key")
    parser.add_argument("--anthropic-api-key", dest="anthropic_api_key", default="", help="Anthropic API key")
    parser.add_argument("--google-api-key", dest="google_api_key", default="", help="Google (Gemini) API key")
    return parser


def flags_from_args(args: argparse.Namespace) -> ConfigFlags:
    return ConfigFlags(
        message_window=max(args.message_window, 0),
        model=args.model,
        debug=args.debug,
        openai_url=args.openai_url,
        anthropic_url=args.anthropic_url,
        openai_api_key=args.openai_api_key,
        anthropic_api_key=args.anthropic_api_key,
        google_api_key=args.google_api_key,
    )


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    config_path = Path(args.config).expanduser() if args.config else None

    try:
        config = resolve_config(flags_from_args(args), config_path)
    except ConfigLoadError as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config)

    from .cli.repl import run_session

    try:
        code = run_session(config)
    except KeyboardInterrupt:
        # Ctrl+C while a prompt was being processed
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    sys.exit(code)


if __name__ == "__main__":
    main()

"""Parley: terminal chat with LLM providers and MCP tool servers."""

__version__ = "0.1.0"

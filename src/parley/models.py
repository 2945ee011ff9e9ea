"""Pydantic models for the chat engine's introspection surface."""

from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, Field


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: Union[str, list[TextBlock]] = ""
    is_error: bool = False


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: list[ContentBlock] = Field(default_factory=list)

    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    def tool_results(self) -> list[ToolResultBlock]:
        return [b for b in self.content if isinstance(b, ToolResultBlock)]


class ToolInfo(BaseModel):
    name: str
    description: str = ""


class ServerTools(BaseModel):
    name: str
    tools: list[ToolInfo] = Field(default_factory=list)
    error: str | None = None


class ServerInfo(BaseModel):
    name: str
    command: str = ""
    args: list[str] = Field(default_factory=list)
    url: str = ""
    headers: list[str] = Field(default_factory=list)
    interface: str = ""

    def is_sse(self) -> bool:
        return bool(self.url)

"""Data models for MCP tool and prompt descriptors."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ToolDescriptor(BaseModel):
    """A tool as advertised by the MCP server's ``tools/list``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    description: str = ""
    input_schema: Optional[Dict[str, Any]] = Field(default=None, alias="inputSchema")


class PromptArgument(BaseModel):
    """A single argument a server-defined prompt accepts."""

    name: str
    description: str = ""
    required: bool = False


class PromptDescriptor(BaseModel):
    """A prompt as advertised by the MCP server's ``prompts/list``."""

    name: str
    description: str = ""
    arguments: List[PromptArgument] = Field(default_factory=list)

    def argument_names(self) -> List[str]:
        return [a.name for a in self.arguments]


class PromptMessage(BaseModel):
    """One message of a rendered prompt (``prompts/get``)."""

    role: str = "user"
    content: Dict[str, Any] = Field(default_factory=dict)

    @property
    def text(self) -> str:
        """Text of the message; non-text content is returned as-is in string form."""
        if self.content.get("type") == "text":
            return self.content.get("text", "")
        return str(self.content)

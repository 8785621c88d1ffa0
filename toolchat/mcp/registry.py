"""Tool registry adapter: turns MCP tool descriptors into model-facing specs."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Union

from toolchat.mcp.schema import ToolDescriptor


def empty_object_schema() -> Dict[str, Any]:
    return {"type": "object", "properties": {}}


@dataclass(frozen=True)
class ModelToolSpec:
    """A tool in the shape the model's function-calling API expects."""

    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=empty_object_schema)

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_anthropic(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }


def _normalize_schema(schema: Any) -> Dict[str, Any]:
    # Model APIs reject missing or property-less object schemas.
    if not schema:
        return empty_object_schema()
    schema = copy.deepcopy(schema)
    if schema.get("type", "object") == "object":
        schema.setdefault("type", "object")
        schema.setdefault("properties", {})
    return schema


def build_descriptors(raw: Iterable[Union[ToolDescriptor, ModelToolSpec]]) -> List[ModelToolSpec]:
    """
    Convert tool descriptors to model tool specs, preserving order.

    Pure and total: an absent or empty input schema becomes
    ``{"type": "object", "properties": {}}``, and no tools yields ``[]``.
    Already-built specs pass through unchanged, so the function is idempotent.
    """
    specs: List[ModelToolSpec] = []
    for tool in raw:
        if isinstance(tool, ModelToolSpec):
            schema = tool.parameters
        else:
            schema = tool.input_schema
        specs.append(ModelToolSpec(
            name=tool.name,
            description=tool.description or "",
            parameters=_normalize_schema(schema),
        ))
    return specs

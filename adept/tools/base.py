from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping

from pydantic import BaseModel

__all__ = ["ToolHandler", "ToolSpec", "ToolSummary", "normalize_result"]

ToolHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


class ToolSummary(BaseModel):
    """Compact description returned by registry search."""

    name: str
    description: str
    integration_id: str | None = None


@dataclass(slots=True)
class ToolSpec:
    """A callable tool exposed to the executor phase.

    ``handler`` receives the validated argument mapping and may return any
    JSON-friendly value; the result is normalized before it reaches the model.
    """

    name: str
    description: str
    handler: ToolHandler
    input_schema: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    integration_id: str | None = None

    async def invoke(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        result = await self.handler(dict(payload))
        return normalize_result(result)

    def to_schema(self) -> Dict[str, Any]:
        """Render the tool in the function-calling format accepted by ``bind_tools``."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }

    def summary(self) -> ToolSummary:
        return ToolSummary(name=self.name, description=self.description, integration_id=self.integration_id)


def normalize_result(result: Any) -> Dict[str, Any]:
    if isinstance(result, BaseModel):
        payload = result.model_dump()
    elif isinstance(result, dict):
        payload = dict(result)
    else:
        try:
            json.dumps(result)
        except (TypeError, ValueError):
            return {"result": str(result)}
        return {"result": result}
    return _json_safe_dict(payload)


def _json_safe(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return _json_safe(value.model_dump())
    if isinstance(value, dict):
        return _json_safe_dict(value)
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return [_json_safe(item) for item in sorted(value, key=repr)]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def _json_safe_dict(payload: Mapping[str, Any]) -> Dict[str, Any]:
    return {str(key): _json_safe(value) for key, value in payload.items()}

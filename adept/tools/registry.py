from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, Tuple

from .base import ToolSpec, ToolSummary
from .exceptions import ToolNotFoundError

__all__ = ["normalize_tool_name", "ToolMetadata", "ToolRegistry"]


_NAME_PATTERN = re.compile(r"[\\/\s.\-]+")
_TOKEN_PATTERN = re.compile(r"[a-z0-9]+")


def normalize_tool_name(name: str) -> str:
    """Return a normalized identifier used for registry lookups."""
    if not isinstance(name, str):
        raise TypeError("Tool name must be a string")
    collapsed = _NAME_PATTERN.sub("_", name.strip())
    return collapsed.strip("_").lower()


@dataclass(slots=True, frozen=True)
class ToolMetadata:
    name: str
    integration_id: str | None
    input_schema: Dict[str, Any]


class ToolRegistry:
    """Registry of executor tools with usage tracking for hot-tool promotion."""

    def __init__(self, *, hot_limit: int = 12, pinned: Iterable[str] | None = None) -> None:
        self._registry: Dict[str, ToolSpec] = {}
        self._usage: Counter[str] = Counter()
        self._hot_limit = max(0, int(hot_limit))
        self._pinned = [normalize_tool_name(name) for name in pinned or ()]

    def register(self, tool: ToolSpec) -> None:
        key = normalize_tool_name(tool.name)
        self._registry[key] = tool

    def register_many(self, tools: Iterable[ToolSpec]) -> None:
        for tool in tools:
            self.register(tool)

    def unregister(self, name: str) -> None:
        key = normalize_tool_name(name)
        self._registry.pop(key, None)
        self._usage.pop(key, None)

    def clear(self) -> None:
        self._registry.clear()
        self._usage.clear()

    def get_tool(self, name: str) -> ToolSpec | None:
        return self._registry.get(normalize_tool_name(name))

    def require_tool(self, name: str) -> ToolSpec:
        tool = self.get_tool(name)
        if tool is None:
            raise ToolNotFoundError(f"Tool '{name}' is not registered")
        return tool

    def get_tool_metadata(self, name: str) -> ToolMetadata | None:
        tool = self.get_tool(name)
        if tool is None:
            return None
        return ToolMetadata(name=tool.name, integration_id=tool.integration_id, input_schema=tool.input_schema)

    def record_usage(self, name: str) -> None:
        key = normalize_tool_name(name)
        if key in self._registry:
            self._usage[key] += 1

    def usage(self, name: str) -> int:
        return self._usage.get(normalize_tool_name(name), 0)

    def get_hot_tools(self, limit: int | None = None) -> Dict[str, ToolSpec]:
        """Pinned tools first, then the most used ones, up to ``limit`` entries."""
        budget = self._hot_limit if limit is None else max(0, int(limit))
        hot: Dict[str, ToolSpec] = {}
        for key in self._pinned:
            if len(hot) >= budget:
                break
            tool = self._registry.get(key)
            if tool is not None:
                hot[tool.name] = tool
        for key, _count in self._usage.most_common():
            if len(hot) >= budget:
                break
            tool = self._registry.get(key)
            if tool is not None and tool.name not in hot:
                hot[tool.name] = tool
        return hot

    def search_tools(self, query: str, limit: int = 8) -> list[ToolSummary]:
        tokens = set(_TOKEN_PATTERN.findall(query.lower()))
        if not tokens:
            return []
        scored: list[Tuple[int, int, str, ToolSpec]] = []
        for key, tool in self._registry.items():
            name_tokens = set(_TOKEN_PATTERN.findall(key))
            text_tokens = set(_TOKEN_PATTERN.findall(tool.description.lower()))
            if tool.integration_id:
                name_tokens.update(_TOKEN_PATTERN.findall(tool.integration_id.lower()))
            score = 3 * len(tokens & name_tokens) + len(tokens & text_tokens)
            if score:
                scored.append((score, self._usage.get(key, 0), key, tool))
        scored.sort(key=lambda item: (-item[0], -item[1], item[2]))
        return [tool.summary() for *_rest, tool in scored[: max(0, limit)]]

    def list(self) -> list[str]:
        return sorted(tool.name for tool in self._registry.values())

    def items(self) -> Iterator[Tuple[str, ToolSpec]]:
        for tool in self._registry.values():
            yield tool.name, tool

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_tool_name(name) in self._registry

    def __len__(self) -> int:
        return len(self._registry)

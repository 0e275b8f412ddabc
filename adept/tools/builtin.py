from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .base import ToolSpec
from .exceptions import ToolErrorType, create_tool_error
from .registry import ToolRegistry

__all__ = [
    "CURRENT_TIME_TOOL",
    "REGISTRY_SEARCH_TOOL",
    "REGISTRY_EXECUTE_TOOL",
    "build_current_time_tool",
    "build_registry_tools",
]

CURRENT_TIME_TOOL = "get_current_time"
REGISTRY_SEARCH_TOOL = "tool_registry_search"
REGISTRY_EXECUTE_TOOL = "tool_registry_execute"

RegistryExecutor = Callable[[str, Dict[str, Any]], Awaitable[Any]]


def build_current_time_tool(clock: Callable[[], datetime] | None = None) -> ToolSpec:
    now_fn = clock or (lambda: datetime.now(timezone.utc))

    async def _current_time(args: Dict[str, Any]) -> Dict[str, Any]:
        zone_name = (args.get("timezone") or "UTC").strip()
        try:
            zone = ZoneInfo(zone_name)
        except (ZoneInfoNotFoundError, ValueError):
            return create_tool_error(
                None,
                f"Unknown timezone '{zone_name}'.",
                kind=ToolErrorType.INVALID_REQUEST,
                hint='Use an IANA timezone name such as "America/New_York".',
            )
        now = now_fn().astimezone(zone)
        return {
            "datetime": now.strftime("%A, %B %d, %Y at %I:%M:%S %p %Z"),
            "iso": now.isoformat(),
            "timezone": zone_name,
        }

    return ToolSpec(
        name=CURRENT_TIME_TOOL,
        description="Get the current date and time",
        handler=_current_time,
        input_schema={
            "type": "object",
            "properties": {
                "timezone": {
                    "type": "string",
                    "description": 'Timezone like "America/New_York"',
                }
            },
        },
    )


def build_registry_tools(
    registry: ToolRegistry,
    execute: RegistryExecutor,
    *,
    search_limit: int = 8,
) -> list[ToolSpec]:
    """Expose registry search and execute as tools.

    ``execute`` receives the target tool name and its arguments; the pipeline
    routes it through the same interception as directly bound tools.
    """

    async def _search(args: Dict[str, Any]) -> Dict[str, Any]:
        query = str(args.get("query") or "").strip()
        limit = args.get("limit") or search_limit
        try:
            limit = max(1, min(int(limit), 50))
        except (TypeError, ValueError):
            limit = search_limit
        matches = registry.search_tools(query, limit)
        return {
            "query": query,
            "tools": [
                {
                    **match.model_dump(exclude_none=True),
                    "input_schema": _schema_for(registry, match.name),
                }
                for match in matches
            ],
        }

    async def _execute(args: Dict[str, Any]) -> Any:
        target = str(args.get("tool_name") or "").strip()
        arguments = args.get("arguments") or {}
        if not target or registry.get_tool(target) is None:
            return create_tool_error(
                None,
                f"Tool '{target}' was not found in the registry.",
                kind=ToolErrorType.NOT_FOUND,
                hint=f"Call {REGISTRY_SEARCH_TOOL} to discover available tools.",
            )
        if not isinstance(arguments, dict):
            return create_tool_error(
                None,
                "Tool arguments must be an object.",
                kind=ToolErrorType.INVALID_REQUEST,
            )
        return await execute(target, arguments)

    return [
        ToolSpec(
            name=REGISTRY_SEARCH_TOOL,
            description="Search the tool registry for tools that are not loaded yet",
            handler=_search,
            input_schema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Keywords describing the capability needed"},
                    "limit": {"type": "integer", "minimum": 1, "maximum": 50},
                },
                "required": ["query"],
            },
        ),
        ToolSpec(
            name=REGISTRY_EXECUTE_TOOL,
            description="Execute a registry tool found via tool_registry_search",
            handler=_execute,
            input_schema={
                "type": "object",
                "properties": {
                    "tool_name": {"type": "string"},
                    "arguments": {"type": "object"},
                },
                "required": ["tool_name"],
            },
        ),
    ]


def _schema_for(registry: ToolRegistry, name: str) -> Dict[str, Any]:
    metadata = registry.get_tool_metadata(name)
    return metadata.input_schema if metadata else {}

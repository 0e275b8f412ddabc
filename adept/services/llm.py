from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, ClassVar, Mapping, Sequence

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage

from ..core.config import Settings
from ..core.logging import get_logger
from ..tools.base import ToolSpec
from ..tools.exceptions import IntegrationError, format_integration_error

try:  # pragma: no cover - optional heavy dependency
    from langchain_ollama import ChatOllama
except ModuleNotFoundError:  # pragma: no cover
    ChatOllama = None  # type: ignore[misc, assignment]

logger = get_logger(name=__name__)

ToolCallsCallback = Callable[[list[str]], Awaitable[None]]


def _build_base_url(host: str, port: int) -> str:
    if ":" in host.rsplit("/", maxsplit=1)[-1]:
        return host.rstrip("/")
    return f"{host.rstrip('/')}:{port}"


@dataclass(slots=True)
class ExecutorRun:
    """Outcome of a tool-calling run: final text plus the full transcript."""

    text: str
    steps: int
    messages: list[BaseMessage] = field(default_factory=list)
    tool_calls: list[str] = field(default_factory=list)
    exhausted: bool = False


@dataclass
class ReasoningService:
    """LangChain chat-model runner used for both the executor and presenter phases."""

    settings: Settings
    _client: Any
    model: str
    _client_cache: ClassVar[dict[str, Any]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        model: str | None = None,
        client: Any | None = None,
    ) -> "ReasoningService":
        model_name = model or settings.ollama.model
        if client is None:
            cache_key = f"{settings.ollama.host}:{settings.ollama.port}:{model_name}"
            cached = cls._client_cache.get(cache_key)
            if cached is None:
                if ChatOllama is None:  # pragma: no cover - handled in runtime logs
                    raise RuntimeError("langchain_ollama is not installed")
                base_url = _build_base_url(settings.ollama.host, settings.ollama.port)
                cached = ChatOllama(model=model_name, base_url=base_url, temperature=settings.agent.temperature)
                cls._client_cache[cache_key] = cached
            client = cached
        return cls(settings=settings, _client=client, model=model_name)

    async def generate(self, messages: Sequence[BaseMessage]) -> str:
        """Run the model once without tools."""
        result = await self._client.ainvoke(list(messages))
        return _extract_content(result)

    async def run_with_tools(
        self,
        messages: Sequence[BaseMessage],
        tools: Mapping[str, ToolSpec],
        *,
        max_steps: int,
        on_tool_calls: ToolCallsCallback | None = None,
    ) -> ExecutorRun:
        """Alternate model turns and tool execution for at most ``max_steps`` model turns.

        Tool calls requested in the same turn run concurrently. When the budget
        runs out the text of the last turn is returned as-is.
        """
        model = self._client.bind_tools([tool.to_schema() for tool in tools.values()]) if tools else self._client
        conversation: list[BaseMessage] = list(messages)
        called: list[str] = []
        text = ""
        for step in range(1, max(1, max_steps) + 1):
            result = await model.ainvoke(conversation)
            text = _extract_content(result)
            requested = list(getattr(result, "tool_calls", None) or [])
            if not requested:
                return ExecutorRun(text=text, steps=step, messages=conversation, tool_calls=called)

            conversation.append(result)
            names = [str(call.get("name") or "") for call in requested]
            called.extend(names)
            if on_tool_calls is not None:
                await on_tool_calls(names)
            outputs = await asyncio.gather(*(self._run_tool_call(call, tools) for call in requested))
            conversation.extend(outputs)

        logger.warning("executor_step_budget_exhausted", model=self.model, max_steps=max_steps, tool_calls=len(called))
        return ExecutorRun(text=text, steps=max(1, max_steps), messages=conversation, tool_calls=called, exhausted=True)

    async def _run_tool_call(self, call: Mapping[str, Any], tools: Mapping[str, ToolSpec]) -> ToolMessage:
        name = str(call.get("name") or "")
        call_id = str(call.get("id") or name)
        tool = tools.get(name)
        if tool is None:
            return ToolMessage(
                content=json.dumps({"error": f"Unknown tool '{name}'."}),
                tool_call_id=call_id,
                name=name,
                status="error",
            )
        args = call.get("args") or {}
        try:
            result = await tool.invoke(args if isinstance(args, dict) else {})
        except Exception as exc:
            logger.warning("executor_tool_failed", tool=name, error=str(exc), error_type=type(exc).__name__)
            if isinstance(exc, IntegrationError):
                message = format_integration_error(exc)
            else:
                message = f"Tool {name} failed: {exc}"
            return ToolMessage(
                content=json.dumps({"error": message}),
                tool_call_id=call_id,
                name=name,
                status="error",
            )
        return ToolMessage(content=json.dumps(result, default=str), tool_call_id=call_id, name=name)


def _extract_content(result: Any) -> str:
    content = result.content if isinstance(result, AIMessage) or hasattr(result, "content") else result
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, dict):
                parts.append(str(item.get("text", "")))
            else:
                parts.append(str(item))
        return "".join(parts)
    return str(content)


__all__ = ["ExecutorRun", "ReasoningService", "ToolCallsCallback"]

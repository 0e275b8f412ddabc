"""Two-phase assistant pipeline.

The executor phase works with tools and must end with an execution handoff.
The handoff is parsed, repaired once if malformed, and replaced by a
deterministic fallback when repair fails. The presenter phase then writes the
user-facing reply from the handoff without tool access.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from ..core import metrics
from ..core.config import Settings
from ..core.logging import get_logger
from ..services.formatting import describe_tool_status, to_chat_markup
from ..services.llm import ExecutorRun, ReasoningService
from ..tools.base import ToolSpec
from ..tools.builtin import build_current_time_tool, build_registry_tools
from ..tools.registry import ToolRegistry
from .directives import build_presenter_directive
from .guardrails import ToolGuardrails
from .handoff import (
    ExecutionHandoff,
    HandoffParseResult,
    build_fallback_handoff,
    format_execution_handoff,
    parse_execution_handoff,
)
from .handoff_monitor import HandoffMonitor
from .interceptor import CallerContext, ToolCallInterceptor
from .prompts import (
    build_executor_system_prompt,
    build_presenter_prompt,
    build_presenter_system_prompt,
    build_repair_prompt,
)

logger = get_logger(name=__name__)

StatusCallback = Callable[[str], Awaitable[None]]
ConversationMessage = Mapping[str, Any] | BaseMessage

THINKING_STATUS = "is thinking..."


class PipelineStage(str, Enum):
    EXECUTING = "executing"
    PARSED_OK = "parsed_ok"
    PARSE_FAILED = "parse_failed"
    REPAIRING = "repairing"
    REPAIRED_OK = "repaired_ok"
    REPAIR_FAILED = "repair_failed"
    PRESENTING = "presenting"
    DONE = "done"


@dataclass(slots=True)
class PipelineResult:
    reply: str
    handoff: ExecutionHandoff
    stages: list[PipelineStage] = field(default_factory=list)
    executor_steps: int = 0
    parse_errors: list[str] = field(default_factory=list)


def to_langchain_messages(messages: Sequence[ConversationMessage]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for message in messages:
        if isinstance(message, BaseMessage):
            converted.append(message)
            continue
        role = str(message.get("role") or "user")
        content = str(message.get("content") or "")
        if role == "assistant":
            converted.append(AIMessage(content=content))
        elif role == "system":
            converted.append(SystemMessage(content=content))
        else:
            converted.append(HumanMessage(content=content))
    return converted


def _latest_user_text(messages: Sequence[BaseMessage]) -> str:
    for message in reversed(messages):
        if isinstance(message, HumanMessage):
            return str(message.content)
    return ""


def _describe_parse_failure(result: HandoffParseResult) -> str:
    parts = list(result.errors)
    fields = [name for name in result.missing_fields if name != "header"]
    if fields:
        parts.append("missing " + ", ".join(fields))
    return "; ".join(parts) or "unknown format error"


def _parse_problems(result: HandoffParseResult) -> list[str]:
    problems = list(result.errors)
    problems.extend(f"Missing section: {name}" for name in result.missing_fields if name != "header")
    return problems


class AssistantPipeline:
    def __init__(
        self,
        *,
        settings: Settings,
        executor: ReasoningService,
        presenter: ReasoningService,
        registry: ToolRegistry,
        guardrails: ToolGuardrails,
        interceptor: ToolCallInterceptor,
        handoff_monitor: HandoffMonitor,
        today: Callable[[], date] | None = None,
    ) -> None:
        self._settings = settings
        self._executor = executor
        self._presenter = presenter
        self._registry = registry
        self._guardrails = guardrails
        self._interceptor = interceptor
        self._handoff_monitor = handoff_monitor
        self._today = today or (lambda: datetime.now(timezone.utc).date())

    async def respond(
        self,
        messages: Sequence[ConversationMessage],
        context: CallerContext,
        on_status_update: StatusCallback | None = None,
        *,
        announce: bool = True,
    ) -> str:
        result = await self.run(messages, context, on_status_update, announce=announce)
        return result.reply

    def build_tools(self, context: CallerContext) -> dict[str, ToolSpec]:
        """Hot registry tools plus the built-ins, each wrapped for interception."""

        async def _execute_from_registry(name: str, arguments: dict[str, Any]) -> Any:
            return await self._interceptor.execute(self._registry.require_tool(name), arguments, context)

        candidates = list(self._registry.get_hot_tools(self._settings.agent.hot_tool_limit).values())
        candidates += build_registry_tools(
            self._registry,
            _execute_from_registry,
            search_limit=self._settings.agent.registry_search_limit,
        )
        candidates.append(build_current_time_tool())
        return {tool.name: self._interceptor.wrap(tool, context) for tool in candidates}

    async def run(
        self,
        messages: Sequence[ConversationMessage],
        context: CallerContext,
        on_status_update: StatusCallback | None = None,
        *,
        announce: bool = True,
    ) -> PipelineResult:
        """Run one request through both reasoning phases.

        ``announce`` sends the thinking status before the executor starts;
        callers that already posted it pass False.
        """
        history = to_langchain_messages(messages)
        stages: list[PipelineStage] = []
        started = time.perf_counter()
        metrics.mark_pipeline_started()
        status_label = "error"
        try:
            self._enter(stages, PipelineStage.EXECUTING, context)
            if announce and on_status_update is not None:
                await on_status_update(THINKING_STATUS)
            run = await self._run_executor(history, context, on_status_update)
            metrics.observe_phase_latency(phase="executor", latency=time.perf_counter() - started)
            metrics.observe_executor_steps(steps=run.steps)

            handoff, first, parse_errors = await self._resolve_handoff(run, stages, context)
            blocked_reasons = handoff.missing or handoff.errors
            self._handoff_monitor.record(
                parsed=first.ok or PipelineStage.REPAIRED_OK in stages,
                missing_fields=first.missing_fields,
                status=handoff.status,
                blocked_reasons=blocked_reasons,
            )

            self._enter(stages, PipelineStage.PRESENTING, context, status=handoff.status.value)
            presenting_started = time.perf_counter()
            reply = await self._run_presenter(history, handoff)
            metrics.observe_phase_latency(phase="presenter", latency=time.perf_counter() - presenting_started)
            self._enter(stages, PipelineStage.DONE, context)
            status_label = handoff.status.value
            return PipelineResult(
                reply=reply,
                handoff=handoff,
                stages=stages,
                executor_steps=run.steps,
                parse_errors=parse_errors,
            )
        finally:
            metrics.mark_pipeline_completed(status=status_label)
            metrics.observe_phase_latency(phase="total", latency=time.perf_counter() - started)

    def _enter(self, stages: list[PipelineStage], stage: PipelineStage, context: CallerContext, **fields: Any) -> None:
        stages.append(stage)
        logger.info(
            "pipeline_stage",
            stage=stage.value,
            workspace_id=context.workspace_id,
            session_id=context.session_id,
            **fields,
        )

    async def _run_executor(
        self,
        history: list[BaseMessage],
        context: CallerContext,
        on_status_update: StatusCallback | None,
    ) -> ExecutorRun:
        system_prompt = build_executor_system_prompt(
            agent_name=self._settings.agent.name,
            today=self._today(),
            tool_hints=self._guardrails.get_tool_hints(context.workspace_id),
            allowlist_summary=self._guardrails.get_allowlist_summary(context.workspace_id),
        )
        tools = self.build_tools(context)

        async def _announce(names: list[str]) -> None:
            if on_status_update is not None and names:
                await on_status_update(describe_tool_status(names[0]))

        return await self._executor.run_with_tools(
            [SystemMessage(content=system_prompt), *history],
            tools,
            max_steps=self._settings.agent.max_tool_steps,
            on_tool_calls=_announce,
        )

    async def _resolve_handoff(
        self,
        run: ExecutorRun,
        stages: list[PipelineStage],
        context: CallerContext,
    ) -> tuple[ExecutionHandoff, HandoffParseResult, list[str]]:
        first = parse_execution_handoff(run.text)
        metrics.record_handoff_parse(stage="executor", ok=first.ok)
        if first.ok and first.handoff is not None:
            self._enter(stages, PipelineStage.PARSED_OK, context)
            return first.handoff, first, []

        self._enter(stages, PipelineStage.PARSE_FAILED, context, missing_fields=first.missing_fields, errors=first.errors)
        self._enter(stages, PipelineStage.REPAIRING, context)
        repair_messages = [
            *run.messages,
            AIMessage(content=run.text),
            HumanMessage(content=build_repair_prompt(run.text, _parse_problems(first))),
        ]
        repaired_text = await self._executor.generate(repair_messages)
        second = parse_execution_handoff(repaired_text)
        metrics.record_handoff_parse(stage="repair", ok=second.ok)
        if second.ok and second.handoff is not None:
            self._enter(stages, PipelineStage.REPAIRED_OK, context)
            return second.handoff, first, list(first.errors)

        first_reason = _describe_parse_failure(first)
        second_reason = _describe_parse_failure(second)
        self._enter(stages, PipelineStage.REPAIR_FAILED, context, errors=second.errors, missing_fields=second.missing_fields)
        fallback = build_fallback_handoff(
            f"Executor handoff was malformed ({first_reason}) and the repair attempt also failed ({second_reason})."
        )
        return fallback, first, [*first.errors, *second.errors]

    async def _run_presenter(self, history: list[BaseMessage], handoff: ExecutionHandoff) -> str:
        directive = build_presenter_directive(handoff, _latest_user_text(history))
        messages = [
            SystemMessage(content=build_presenter_system_prompt(agent_name=self._settings.agent.name, today=self._today())),
            *history,
            HumanMessage(content=build_presenter_prompt(format_execution_handoff(handoff), directive)),
        ]
        text = await self._presenter.generate(messages)
        return to_chat_markup(text)


__all__ = [
    "THINKING_STATUS",
    "PipelineStage",
    "PipelineResult",
    "AssistantPipeline",
    "to_langchain_messages",
]

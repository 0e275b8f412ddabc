from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends

from .core.audit import ToolAuditLog
from .core.config import Settings, get_settings
from .orchestration.guardrails import ToolGuardrails
from .orchestration.handoff_monitor import HandoffMonitor
from .orchestration.interceptor import ToolCallInterceptor
from .orchestration.pipeline import AssistantPipeline
from .services.approvals import InMemoryApprovalStore
from .services.llm import ReasoningService
from .services.outcomes import OutcomeMonitor
from .services.rate_limit import ToolRateLimiter, build_tool_rate_limiter
from .tools.registry import ToolRegistry

_tool_registry: ToolRegistry | None = None
_guardrails: ToolGuardrails | None = None
_rate_limiter: ToolRateLimiter | None = None
_approval_store: InMemoryApprovalStore | None = None
_audit_log: ToolAuditLog | None = None
_outcome_monitor: OutcomeMonitor | None = None
_handoff_monitor: HandoffMonitor | None = None


def get_app_settings() -> Settings:
    return get_settings()


def get_tool_registry_singleton(settings: Settings) -> ToolRegistry:
    global _tool_registry
    if _tool_registry is None:
        _tool_registry = ToolRegistry(
            hot_limit=settings.agent.hot_tool_limit,
            pinned=settings.agent.pinned_hot_tools,
        )
    return _tool_registry


def get_guardrails_singleton(settings: Settings) -> ToolGuardrails:
    global _guardrails
    if _guardrails is None:
        _guardrails = ToolGuardrails(settings.tool_routing)
    return _guardrails


def get_approval_store_singleton(settings: Settings) -> InMemoryApprovalStore:
    global _approval_store
    if _approval_store is None:
        _approval_store = InMemoryApprovalStore(settings.approvals)
    return _approval_store


def get_handoff_monitor_singleton() -> HandoffMonitor:
    global _handoff_monitor
    if _handoff_monitor is None:
        _handoff_monitor = HandoffMonitor()
    return _handoff_monitor


def get_interceptor_singleton(settings: Settings) -> ToolCallInterceptor:
    global _rate_limiter, _audit_log, _outcome_monitor
    if _rate_limiter is None:
        _rate_limiter = build_tool_rate_limiter(settings.tool_rate_limit)
    if _audit_log is None:
        _audit_log = ToolAuditLog(history_size=settings.observability.audit_history_size)
    if _outcome_monitor is None:
        _outcome_monitor = OutcomeMonitor()
    return ToolCallInterceptor(
        guardrails=get_guardrails_singleton(settings),
        registry=get_tool_registry_singleton(settings),
        rate_limiter=_rate_limiter,
        approvals=get_approval_store_singleton(settings),
        audit=_audit_log,
        outcomes=_outcome_monitor,
    )


def build_pipeline(settings: Settings) -> AssistantPipeline:
    executor = ReasoningService.from_settings(settings, model=settings.agent.executor_model)
    presenter = ReasoningService.from_settings(settings, model=settings.agent.presenter_model)
    return AssistantPipeline(
        settings=settings,
        executor=executor,
        presenter=presenter,
        registry=get_tool_registry_singleton(settings),
        guardrails=get_guardrails_singleton(settings),
        interceptor=get_interceptor_singleton(settings),
        handoff_monitor=get_handoff_monitor_singleton(),
    )


async def get_assistant_pipeline(
    settings: Settings = Depends(get_app_settings),
) -> AsyncIterator[AssistantPipeline]:
    yield build_pipeline(settings)


async def get_handoff_monitor() -> AsyncIterator[HandoffMonitor]:
    yield get_handoff_monitor_singleton()


async def get_approval_store(
    settings: Settings = Depends(get_app_settings),
) -> AsyncIterator[InMemoryApprovalStore]:
    yield get_approval_store_singleton(settings)

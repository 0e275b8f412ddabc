from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Any, Mapping
from uuid import uuid4

from ..core import metrics
from ..core.audit import ToolAuditLog
from ..core.logging import get_logger
from ..services.approvals import InMemoryApprovalStore
from ..services.outcomes import OutcomeMonitor
from ..services.rate_limit import ToolRateLimiter
from ..tools.base import ToolSpec
from ..tools.builtin import REGISTRY_SEARCH_TOOL
from ..tools.exceptions import (
    IntegrationError,
    ToolErrorType,
    create_tool_error,
    is_tool_error_response,
    to_tool_error,
)
from ..tools.registry import ToolRegistry
from .guardrails import ToolGuardrails, has_dedupe_override, strip_override_flags

logger = get_logger(name=__name__)

APPROVAL_KIND = "tool_call"


@dataclass(slots=True)
class CallerContext:
    user_id: str | None = None
    workspace_id: str | None = None
    channel_id: str | None = None
    session_id: str | None = None
    message_id: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return asdict(self)


class ToolCallInterceptor:
    """Admission control and telemetry around every tool invocation.

    Checks run in order: allow-list, duplicate action, rate limit, approval
    gate. A failed check returns a structured tool error and the tool never
    runs. A mutating call is remembered for duplicate detection only once it
    has cleared every check. Calls that run are audited before and after
    execution and their outcome is recorded whether they succeed or raise.
    """

    def __init__(
        self,
        *,
        guardrails: ToolGuardrails,
        registry: ToolRegistry,
        rate_limiter: ToolRateLimiter,
        approvals: InMemoryApprovalStore,
        audit: ToolAuditLog,
        outcomes: OutcomeMonitor,
    ) -> None:
        self._guardrails = guardrails
        self._registry = registry
        self._rate_limiter = rate_limiter
        self._approvals = approvals
        self._audit = audit
        self._outcomes = outcomes

    def wrap(self, tool: ToolSpec, context: CallerContext) -> ToolSpec:
        async def _intercepted(args: dict[str, Any]) -> Any:
            return await self.execute(tool, args, context)

        return ToolSpec(
            name=tool.name,
            description=tool.description,
            handler=_intercepted,
            input_schema=tool.input_schema,
            integration_id=tool.integration_id,
        )

    def _reject(
        self,
        tool: ToolSpec,
        integration_id: str | None,
        context: CallerContext,
        message: str,
        *,
        kind: ToolErrorType,
        hint: str | None = None,
        retry_after_seconds: int | None = None,
        approval_id: str | None = None,
    ) -> dict[str, Any]:
        metrics.increment_guardrail_rejection(tool=tool.name, reason=kind.value)
        logger.info(
            "tool_call_rejected",
            tool=tool.name,
            integration=integration_id,
            reason=kind.value,
            workspace_id=context.workspace_id,
            user_id=context.user_id,
        )
        return create_tool_error(
            integration_id,
            message,
            kind=kind,
            hint=hint,
            retry_after_seconds=retry_after_seconds,
            approval_id=approval_id,
        )

    def _reject_duplicate(self, tool: ToolSpec, integration_id: str | None, context: CallerContext) -> dict[str, Any]:
        return self._reject(
            tool,
            integration_id,
            context,
            f"Duplicate action blocked: {tool.name} already ran with the same input recently.",
            kind=ToolErrorType.DUPLICATE_ACTION,
            hint='If the user explicitly asked to repeat this action, call the tool again with "force": true.',
        )

    async def execute(self, tool: ToolSpec, args: Mapping[str, Any], context: CallerContext) -> Any:
        integration_id = tool.integration_id
        if integration_id is None:
            metadata = self._registry.get_tool_metadata(tool.name)
            integration_id = metadata.integration_id if metadata else None

        decision = self._guardrails.is_tool_allowed(context.workspace_id, tool.name, integration_id)
        if not decision.allowed:
            return self._reject(
                tool,
                integration_id,
                context,
                decision.reason or f"Tool {tool.name} is not allowed.",
                kind=ToolErrorType.NOT_ALLOWED,
                hint=f"Use {REGISTRY_SEARCH_TOOL} to find an allowed tool, or ask an admin to update the allowlist.",
            )

        mutating = self._guardrails.should_dedupe(tool.name)
        payload = strip_override_flags(args) if mutating else dict(args)
        dedupe = mutating and not has_dedupe_override(args)
        if dedupe and self._guardrails.was_recently_run(context.workspace_id, tool.name, payload):
            return self._reject_duplicate(tool, integration_id, context)

        call_id = uuid4().hex
        rate = await self._rate_limiter.check(tool.name, context.user_id)
        if not rate.allowed:
            self._audit.log_tool_call(
                call_id=call_id,
                tool=tool.name,
                integration_id=integration_id,
                inputs=payload,
                status="rate_limited",
                user_id=context.user_id,
                workspace_id=context.workspace_id,
                channel_id=context.channel_id,
                session_id=context.session_id,
            )
            return self._reject(
                tool,
                integration_id,
                context,
                rate.reason or f"Rate limit reached for {tool.name}.",
                kind=ToolErrorType.RATE_LIMIT,
                hint="Wait before calling this tool again or continue without it.",
                retry_after_seconds=rate.retry_after_seconds,
            )

        if await self._approvals.requires_approval(tool.name, integration_id, payload):
            request = await self._approvals.request_approval(
                APPROVAL_KIND,
                tool.name,
                integration_id,
                payload,
                context.user_id,
                context.to_dict(),
            )
            return self._reject(
                tool,
                integration_id,
                context,
                f"{tool.name} requires approval before it can run.",
                kind=ToolErrorType.APPROVAL_REQUIRED,
                hint=f"Approval request {request.id} is pending. Tell the user it will run once approved.",
                approval_id=request.id,
            )

        # Only calls that cleared every gate count toward the dedupe window.
        if dedupe and self._guardrails.is_duplicate(context.workspace_id, tool.name, payload):
            return self._reject_duplicate(tool, integration_id, context)
        await self._approvals.consume_approval(tool.name, integration_id, payload)

        self._audit.log_tool_call(
            call_id=call_id,
            tool=tool.name,
            integration_id=integration_id,
            inputs=payload,
            user_id=context.user_id,
            workspace_id=context.workspace_id,
            channel_id=context.channel_id,
            session_id=context.session_id,
        )
        start = time.perf_counter()
        try:
            result = await tool.invoke(payload)
        except IntegrationError as exc:
            await self._finish(call_id, tool, integration_id, context, start, success=False, error=exc)
            return to_tool_error(integration_id, exc)
        except Exception as exc:
            await self._finish(call_id, tool, integration_id, context, start, success=False, error=exc)
            raise
        success = not is_tool_error_response(result)
        await self._finish(
            call_id,
            tool,
            integration_id,
            context,
            start,
            success=success,
            error=None if success else result,
        )
        return result

    async def _finish(
        self,
        call_id: str,
        tool: ToolSpec,
        integration_id: str | None,
        context: CallerContext,
        start: float,
        *,
        success: bool,
        error: Any,
    ) -> None:
        duration_ms = (time.perf_counter() - start) * 1000.0
        if isinstance(error, BaseException):
            message: str | None = str(error)
        elif isinstance(error, Mapping):
            message = str(error.get("error"))
        else:
            message = None
        self._audit.log_tool_result(
            call_id=call_id,
            tool=tool.name,
            integration_id=integration_id,
            success=success,
            duration_ms=duration_ms,
            error=message,
            user_id=context.user_id,
            workspace_id=context.workspace_id,
        )
        self._registry.record_usage(tool.name)
        try:
            await self._rate_limiter.record(tool.name, context.user_id)
            self._outcomes.record_outcome(tool.name, integration_id, success, duration_ms, error)
        except Exception as exc:  # pragma: no cover - telemetry must not mask the tool result
            logger.warning("tool_telemetry_failed", tool=tool.name, error=str(exc))


__all__ = ["APPROVAL_KIND", "CallerContext", "ToolCallInterceptor"]

"""
Orchestration Package

Core control loop for the assistant:
- Two-phase executor/presenter pipeline
- Execution handoff codec and quality monitor
- Tool guardrails and tool-call interception
"""

from .assistant_flow import DEFAULT_ERROR_MESSAGE, run_assistant_flow
from .guardrails import DedupeCache, ToolGuardDecision, ToolGuardrails
from .handoff import (
    ExecutionHandoff,
    HandoffParseResult,
    HandoffStatus,
    build_fallback_handoff,
    format_execution_handoff,
    parse_execution_handoff,
)
from .handoff_monitor import HandoffMonitor
from .interceptor import CallerContext, ToolCallInterceptor
from .pipeline import AssistantPipeline, PipelineResult, PipelineStage

__all__ = [
    # Pipeline
    "AssistantPipeline",
    "PipelineResult",
    "PipelineStage",
    "run_assistant_flow",
    "DEFAULT_ERROR_MESSAGE",
    # Handoff
    "ExecutionHandoff",
    "HandoffParseResult",
    "HandoffStatus",
    "HandoffMonitor",
    "build_fallback_handoff",
    "format_execution_handoff",
    "parse_execution_handoff",
    # Guardrails
    "CallerContext",
    "DedupeCache",
    "ToolCallInterceptor",
    "ToolGuardDecision",
    "ToolGuardrails",
]

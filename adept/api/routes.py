from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ..core.logging import bind_request_context, clear_request_context, get_logger
from ..dependencies import get_approval_store, get_assistant_pipeline, get_handoff_monitor
from ..orchestration.assistant_flow import run_assistant_flow
from ..orchestration.handoff_monitor import HandoffMonitor
from ..orchestration.interceptor import CallerContext
from ..orchestration.pipeline import AssistantPipeline
from ..schemas.assistant import (
    ApprovalModel,
    ApprovalResolutionRequest,
    AssistantRequest,
    AssistantResponse,
    HandoffMetricsResponse,
)
from ..services.approvals import InMemoryApprovalStore

router = APIRouter()
logger = get_logger(name=__name__)


@router.post("/assistant/respond", response_model=AssistantResponse, tags=["assistant"])
async def respond(
    payload: AssistantRequest,
    pipeline: AssistantPipeline = Depends(get_assistant_pipeline),
) -> AssistantResponse:
    context = CallerContext(
        user_id=payload.user_id,
        workspace_id=payload.workspace_id,
        channel_id=payload.channel_id,
        session_id=payload.session_id,
    )
    replies: list[str] = []
    status_updates: list[str] = []

    async def _send(text: str) -> None:
        replies.append(text)

    async def _status(update: str) -> None:
        status_updates.append(update)

    history = [turn.model_dump() for turn in payload.history]
    history.append({"role": "user", "content": payload.text})
    bind_request_context(
        user_id=payload.user_id,
        workspace_id=payload.workspace_id,
        channel_id=payload.channel_id,
        session_id=payload.session_id,
    )
    try:
        await run_assistant_flow(
            payload.text,
            _send,
            pipeline,
            context,
            history=history,
            on_status_update=_status,
        )
    finally:
        clear_request_context()
    return AssistantResponse(reply=replies[-1] if replies else "", status_updates=status_updates)


@router.get("/handoff/metrics", response_model=HandoffMetricsResponse, tags=["observability"])
async def handoff_metrics(
    day: str | None = None,
    monitor: HandoffMonitor = Depends(get_handoff_monitor),
) -> HandoffMetricsResponse:
    bucket = monitor.snapshot(day)
    return HandoffMetricsResponse(**bucket.to_dict())


@router.get("/approvals", response_model=list[ApprovalModel], tags=["approvals"])
async def list_pending_approvals(
    store: InMemoryApprovalStore = Depends(get_approval_store),
) -> list[ApprovalModel]:
    pending = await store.list_pending()
    return [ApprovalModel(**request.to_dict()) for request in pending]


@router.post("/approvals/{approval_id}/resolve", response_model=ApprovalModel, tags=["approvals"])
async def resolve_approval(
    approval_id: str,
    payload: ApprovalResolutionRequest,
    store: InMemoryApprovalStore = Depends(get_approval_store),
) -> ApprovalModel:
    try:
        request = await store.resolve(approval_id, approved=payload.approved, reviewer=payload.reviewer)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Approval not found") from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    logger.info("approval_resolved_via_api", approval_id=approval_id, approved=payload.approved)
    return ApprovalModel(**request.to_dict())

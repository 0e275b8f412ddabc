from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class ConversationTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class AssistantRequest(BaseModel):
    text: str = Field(..., min_length=1)
    history: list[ConversationTurn] = Field(default_factory=list)
    user_id: str | None = Field(default=None)
    workspace_id: str | None = Field(default=None)
    channel_id: str | None = Field(default=None)
    session_id: str | None = Field(default=None)


class AssistantResponse(BaseModel):
    reply: str
    status_updates: list[str] = Field(default_factory=list)


class HandoffMetricsResponse(BaseModel):
    day: str
    total: int
    parse_failures: int
    missing_fields: dict[str, int] = Field(default_factory=dict)
    blocked_reasons: dict[str, int] = Field(default_factory=dict)
    last_updated: datetime | None = None


class ApprovalModel(BaseModel):
    id: str
    kind: str
    tool: str
    integration_id: str | None = None
    inputs: dict[str, Any] = Field(default_factory=dict)
    user_id: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    status: Literal["pending", "approved", "rejected"]
    created_at: datetime
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    consumed_at: datetime | None = None


class ApprovalResolutionRequest(BaseModel):
    approved: bool
    reviewer: str | None = Field(default=None, min_length=1)

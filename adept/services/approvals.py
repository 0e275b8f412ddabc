from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping
from uuid import uuid4

from ..core.audit import hash_payload
from ..core.config import ApprovalSettings
from ..core.logging import get_logger

logger = get_logger(name=__name__)


def approval_fingerprint(tool: str, integration_id: str | None, inputs: Mapping[str, Any]) -> str:
    integration = (integration_id or "").lower()
    return f"{tool.lower()}:{integration}:{hash_payload(inputs) or ''}"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(slots=True)
class ApprovalRequest:
    id: str
    kind: str
    tool: str
    integration_id: str | None
    inputs: dict[str, Any]
    user_id: str | None
    context: dict[str, Any]
    status: ApprovalStatus = ApprovalStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    consumed_at: datetime | None = None

    @property
    def fingerprint(self) -> str:
        return approval_fingerprint(self.tool, self.integration_id, self.inputs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "tool": self.tool,
            "integration_id": self.integration_id,
            "inputs": dict(self.inputs),
            "user_id": self.user_id,
            "context": dict(self.context),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
            "consumed_at": self.consumed_at.isoformat() if self.consumed_at else None,
        }


class InMemoryApprovalStore:
    """Approval gate whose pending requests live in process memory.

    Creating a request never runs the tool; an operator resolves it out of band
    and the user re-issues the call afterwards. An approval covers one run of
    the exact tool, integration and inputs it was requested for. Repeating a
    gated call while its request is still pending returns that same request.
    """

    def __init__(self, settings: ApprovalSettings | None = None) -> None:
        self._settings = settings or ApprovalSettings()
        self._patterns = [re.compile(pattern, re.IGNORECASE) for pattern in self._settings.required_patterns]
        self._integrations = {item.lower() for item in self._settings.required_integrations}
        self._requests: dict[str, ApprovalRequest] = {}
        self._lock = asyncio.Lock()

    async def requires_approval(
        self,
        tool: str,
        integration_id: str | None,
        inputs: Mapping[str, Any],
    ) -> bool:
        if not self._settings.enabled:
            return False
        gated = bool(integration_id and integration_id.lower() in self._integrations) or any(
            pattern.search(tool) for pattern in self._patterns
        )
        if not gated:
            return False
        fingerprint = approval_fingerprint(tool, integration_id, inputs)
        async with self._lock:
            return self._match(fingerprint, ApprovalStatus.APPROVED) is None

    def _match(self, fingerprint: str, status: ApprovalStatus) -> ApprovalRequest | None:
        for request in self._requests.values():
            if request.status is status and request.consumed_at is None and request.fingerprint == fingerprint:
                return request
        return None

    async def consume_approval(
        self,
        tool: str,
        integration_id: str | None,
        inputs: Mapping[str, Any],
    ) -> ApprovalRequest | None:
        """Mark the approval matching this call as used so it cannot run twice."""
        fingerprint = approval_fingerprint(tool, integration_id, inputs)
        async with self._lock:
            request = self._match(fingerprint, ApprovalStatus.APPROVED)
            if request is None:
                return None
            request.consumed_at = datetime.now(timezone.utc)
        logger.info("approval_consumed", approval_id=request.id, tool=tool)
        return request

    async def request_approval(
        self,
        kind: str,
        tool: str,
        integration_id: str | None,
        inputs: Mapping[str, Any],
        user_id: str | None,
        context: Mapping[str, Any] | None = None,
    ) -> ApprovalRequest:
        fingerprint = approval_fingerprint(tool, integration_id, inputs)
        async with self._lock:
            existing = self._match(fingerprint, ApprovalStatus.PENDING)
            if existing is None:
                request = ApprovalRequest(
                    id=uuid4().hex,
                    kind=kind,
                    tool=tool,
                    integration_id=integration_id,
                    inputs=dict(inputs),
                    user_id=user_id,
                    context=dict(context or {}),
                )
                self._requests[request.id] = request
        if existing is not None:
            logger.info("approval_request_reused", approval_id=existing.id, tool=tool, user_id=user_id)
            return existing
        logger.info(
            "approval_requested",
            approval_id=request.id,
            kind=kind,
            tool=tool,
            integration=integration_id,
            user_id=user_id,
        )
        return request

    async def get(self, approval_id: str) -> ApprovalRequest | None:
        async with self._lock:
            return self._requests.get(approval_id)

    async def list_pending(self) -> list[ApprovalRequest]:
        async with self._lock:
            pending = [item for item in self._requests.values() if item.status is ApprovalStatus.PENDING]
        return sorted(pending, key=lambda item: item.created_at)

    async def resolve(self, approval_id: str, *, approved: bool, reviewer: str | None = None) -> ApprovalRequest:
        async with self._lock:
            request = self._requests.get(approval_id)
            if request is None:
                raise KeyError("approval_not_found")
            if request.status is not ApprovalStatus.PENDING:
                raise ValueError(f"Approval {approval_id} is already {request.status.value}")
            request.status = ApprovalStatus.APPROVED if approved else ApprovalStatus.REJECTED
            request.resolved_at = datetime.now(timezone.utc)
            request.resolved_by = reviewer
        logger.info(
            "approval_resolved",
            approval_id=approval_id,
            status=request.status.value,
            reviewer=reviewer,
        )
        return request


__all__ = ["ApprovalStatus", "ApprovalRequest", "InMemoryApprovalStore", "approval_fingerprint"]

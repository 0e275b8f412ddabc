from __future__ import annotations

import hashlib
import json
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from .logging import get_logger


@dataclass(slots=True)
class AuditRecord:
    event: str
    tool: str
    call_id: str
    status: str
    integration_id: str | None = None
    user_id: str | None = None
    workspace_id: str | None = None
    channel_id: str | None = None
    session_id: str | None = None
    payload_hash: str | None = None
    duration_ms: float | None = None
    error: str | None = None
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def hash_payload(payload: Mapping[str, Any] | None) -> str | None:
    if not payload:
        return None
    encoded = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class ToolAuditLog:
    """Append-only audit trail of tool calls emitted as structured log events.

    Tool inputs are recorded as a sha256 digest only. A bounded copy of recent
    records is retained for inspection.
    """

    def __init__(self, *, history_size: int = 500) -> None:
        self._logger = get_logger(name="audit")
        self._history: deque[AuditRecord] = deque(maxlen=max(0, history_size))

    def log_tool_call(
        self,
        *,
        call_id: str,
        tool: str,
        integration_id: str | None,
        inputs: Mapping[str, Any] | None,
        status: str = "started",
        user_id: str | None = None,
        workspace_id: str | None = None,
        channel_id: str | None = None,
        session_id: str | None = None,
    ) -> None:
        self._append(
            AuditRecord(
                event="tool_call",
                tool=tool,
                call_id=call_id,
                status=status,
                integration_id=integration_id,
                user_id=user_id,
                workspace_id=workspace_id,
                channel_id=channel_id,
                session_id=session_id,
                payload_hash=hash_payload(inputs),
            )
        )

    def log_tool_result(
        self,
        *,
        call_id: str,
        tool: str,
        integration_id: str | None,
        success: bool,
        duration_ms: float,
        error: str | None = None,
        user_id: str | None = None,
        workspace_id: str | None = None,
    ) -> None:
        self._append(
            AuditRecord(
                event="tool_result",
                tool=tool,
                call_id=call_id,
                status="success" if success else "failure",
                integration_id=integration_id,
                user_id=user_id,
                workspace_id=workspace_id,
                duration_ms=round(duration_ms, 3),
                error=error,
            )
        )

    def records(self, *, call_id: str | None = None) -> list[AuditRecord]:
        if call_id is None:
            return list(self._history)
        return [record for record in self._history if record.call_id == call_id]

    def clear(self) -> None:
        self._history.clear()

    def _append(self, record: AuditRecord) -> None:
        try:
            self._history.append(record)
            self._logger.info(
                "audit_log",
                audit_event=record.event,
                tool=record.tool,
                call_id=record.call_id,
                status=record.status,
                integration=record.integration_id,
                user_id=record.user_id or "anonymous",
                workspace_id=record.workspace_id,
                channel_id=record.channel_id,
                session_id=record.session_id,
                payload_hash=record.payload_hash,
                duration_ms=record.duration_ms,
                error=record.error,
            )
        except Exception as exc:  # pragma: no cover - audit must never block tool execution
            self._logger.warning("audit_log_failed", tool=record.tool, call_id=record.call_id, error=str(exc))


__all__ = ["AuditRecord", "ToolAuditLog", "hash_payload"]

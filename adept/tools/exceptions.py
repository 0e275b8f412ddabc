from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field


class ToolErrorType(str, Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    INVALID_REQUEST = "invalid_request"
    NOT_FOUND = "not_found"
    UPSTREAM = "upstream"
    NOT_ALLOWED = "not_allowed"
    DUPLICATE_ACTION = "duplicate_action"
    APPROVAL_REQUIRED = "approval_required"


class ToolError(RuntimeError):
    """Base class for tooling-related failures."""


class ToolNotFoundError(ToolError):
    """Raised when a requested tool cannot be resolved."""


class IntegrationError(ToolError):
    """Failure reported by an integration, carrying a machine-usable kind."""

    def __init__(
        self,
        kind: ToolErrorType,
        message: str,
        *,
        integration_id: str | None = None,
        hint: str | None = None,
        retry_after_seconds: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.integration_id = integration_id
        self.hint = hint
        self.retry_after_seconds = retry_after_seconds


class IntegrationAuthError(IntegrationError):
    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(ToolErrorType.AUTH, message, **kwargs)


class IntegrationRateLimitError(IntegrationError):
    """Terminal rate-limit failure; the caller should wait ``retry_after_seconds``."""

    def __init__(self, message: str, *, retry_at: datetime | None = None, **kwargs: Any) -> None:
        super().__init__(ToolErrorType.RATE_LIMIT, message, **kwargs)
        self.retry_at = retry_at


class ToolErrorResponse(BaseModel):
    """In-band error payload returned to the executor instead of raising."""

    model_config = ConfigDict(use_enum_values=True)

    error: str
    error_type: ToolErrorType | None = Field(default=None, serialization_alias="errorType")
    integration_id: str | None = Field(default=None, serialization_alias="integrationId")
    hint: str | None = None
    retry_after_seconds: int | None = Field(default=None, serialization_alias="retryAfterSeconds")
    approval_id: str | None = Field(default=None, serialization_alias="approvalId")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def create_tool_error(
    integration_id: str | None,
    message: str,
    *,
    kind: ToolErrorType | None = None,
    hint: str | None = None,
    retry_after_seconds: int | None = None,
    approval_id: str | None = None,
) -> dict[str, Any]:
    return ToolErrorResponse(
        error=message,
        error_type=kind,
        integration_id=integration_id,
        hint=hint,
        retry_after_seconds=retry_after_seconds,
        approval_id=approval_id,
    ).to_payload()


def to_tool_error(integration_id: str | None, error: BaseException) -> dict[str, Any]:
    if isinstance(error, IntegrationError):
        return create_tool_error(
            error.integration_id or integration_id,
            str(error),
            kind=error.kind,
            hint=error.hint,
            retry_after_seconds=error.retry_after_seconds,
        )
    return create_tool_error(integration_id, str(error), kind=ToolErrorType.UPSTREAM)


def is_tool_error_response(value: Any) -> bool:
    return isinstance(value, Mapping) and isinstance(value.get("error"), str)


def format_integration_error(error: IntegrationError) -> str:
    parts = [str(error)]
    if error.kind is ToolErrorType.RATE_LIMIT and error.retry_after_seconds:
        parts.append(f"Try again in {int(error.retry_after_seconds)}s.")
    if error.hint:
        parts.append(error.hint)
    return " ".join(parts)


__all__ = [
    "ToolErrorType",
    "ToolError",
    "ToolNotFoundError",
    "IntegrationError",
    "IntegrationAuthError",
    "IntegrationRateLimitError",
    "ToolErrorResponse",
    "create_tool_error",
    "to_tool_error",
    "is_tool_error_response",
    "format_integration_error",
]

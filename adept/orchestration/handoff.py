"""Execution handoff: the plain-text contract between the executor and presenter phases.

Wire format::

    EXECUTION_HANDOFF
    Status: done | needs_info | blocked | planning
    Plan:
    - step
    Actions:
    - what was changed
    Data:
    - what was found
    Errors:
    - none
    Verification:
    - checks run
    Missing:
    - none
    Follow-up:
    - question for the user, or none
    Draft:
    - optional reply fragment, or none

A bullet whose text is exactly ``none`` marks an empty section, so ``none``
cannot be carried as a real item.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

__all__ = [
    "HANDOFF_HEADER",
    "DEFAULT_FOLLOW_UP",
    "FALLBACK_MISSING_FIELD",
    "REQUIRED_SECTIONS",
    "HandoffStatus",
    "ExecutionHandoff",
    "HandoffParseResult",
    "parse_execution_handoff",
    "format_execution_handoff",
    "build_fallback_handoff",
]

HANDOFF_HEADER = "EXECUTION_HANDOFF"
DEFAULT_FOLLOW_UP = "Could you restate the request or provide more detail?"
FALLBACK_MISSING_FIELD = "executor_handoff_format"

_HEADER_PATTERN = re.compile(r"^EXECUTION[_ ]HANDOFF", re.IGNORECASE)
_STATUS_PATTERN = re.compile(r"^Status:\s*(.+)$", re.IGNORECASE)
_SECTION_PATTERN = re.compile(r"^([A-Za-z_\- ]+):\s*(.*)$")
_BULLET_PATTERN = re.compile(r"^[-*•]\s*")

_LIST_SECTIONS = ("plan", "actions", "data", "errors", "verification", "missing")
_SCALAR_SECTIONS = ("follow_up", "draft")

_SECTION_LABELS = {
    "plan": "plan",
    "actions": "actions",
    "data": "data",
    "errors": "errors",
    "verification": "verification",
    "missing": "missing",
    "follow-up": "follow_up",
    "follow up": "follow_up",
    "follow_up": "follow_up",
    "followup": "follow_up",
    "draft": "draft",
}

REQUIRED_SECTIONS = ("actions", "data", "errors", "missing", "follow_up", "draft")


class HandoffStatus(str, Enum):
    DONE = "done"
    NEEDS_INFO = "needs_info"
    BLOCKED = "blocked"
    PLANNING = "planning"


_VALID_STATUSES = {status.value for status in HandoffStatus}


class ExecutionHandoff(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: HandoffStatus = HandoffStatus.BLOCKED
    plan: list[str] = Field(default_factory=list)
    actions: list[str] = Field(default_factory=list)
    data: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    verification: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
    follow_up: str | None = None
    draft: str | None = None
    raw: str = ""

    @field_validator("plan", "actions", "data", "errors", "verification", "missing")
    @classmethod
    def _reject_blank_items(cls, value: list[str]) -> list[str]:
        for item in value:
            if not item.strip():
                raise ValueError("handoff list items cannot be blank")
        return value


@dataclass(slots=True)
class HandoffParseResult:
    ok: bool
    handoff: ExecutionHandoff | None = None
    errors: list[str] = field(default_factory=list)
    missing_fields: list[str] = field(default_factory=list)


def _normalize_label(label: str) -> str:
    return " ".join(label.strip().lower().split())


def _strip_bullet(line: str) -> str:
    return _BULLET_PATTERN.sub("", line, count=1).strip()


def _is_none(value: str) -> bool:
    return value.strip().lower() == "none"


class _Accumulator:
    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {name: [] for name in _LIST_SECTIONS}
        self.scalars: dict[str, str | None] = {name: None for name in _SCALAR_SECTIONS}

    def append(self, section: str, item: str) -> None:
        if not item or _is_none(item):
            return
        if section in self.scalars:
            current = self.scalars[section]
            self.scalars[section] = f"{current}\n{item}" if current else item
            return
        self.lists[section].append(item)


def parse_execution_handoff(raw: str) -> HandoffParseResult:
    """Parse executor output into a handoff and report what is wrong with it.

    A missing header aborts the parse with no handoff. Otherwise a handoff is
    always returned (status defaults to ``blocked``) together with the errors
    and missing fields that make the parse not-ok.
    """
    errors: list[str] = []
    missing_fields: list[str] = []
    lines = raw.splitlines()
    start = next((index for index, line in enumerate(lines) if _HEADER_PATTERN.match(line.strip())), None)
    if start is None:
        errors.append(f"Missing {HANDOFF_HEADER} header.")
        missing_fields.append("header")
        return HandoffParseResult(ok=False, errors=errors, missing_fields=missing_fields)

    status: str | None = None
    current: str | None = None
    seen: set[str] = set()
    acc = _Accumulator()

    for raw_line in lines[start + 1 :]:
        line = raw_line.strip()
        if not line:
            continue

        status_match = _STATUS_PATTERN.match(line)
        if status_match:
            candidate = status_match.group(1).strip()
            if candidate.lower() in _VALID_STATUSES:
                status = candidate.lower()
            else:
                errors.append(f'Invalid status "{candidate}".')
            current = None
            continue

        section_match = _SECTION_PATTERN.match(line)
        if section_match:
            section = _SECTION_LABELS.get(_normalize_label(section_match.group(1)))
            if section:
                current = section
                seen.add(section)
                inline = section_match.group(2).strip()
                if inline:
                    acc.append(section, _strip_bullet(inline))
                continue

        if current is None:
            continue
        acc.append(current, _strip_bullet(line))

    if status is None:
        missing_fields.append("status")
    missing_fields.extend(section for section in REQUIRED_SECTIONS if section not in seen)

    payload: dict[str, Any] = {
        "status": status or HandoffStatus.BLOCKED.value,
        **acc.lists,
        **acc.scalars,
        "raw": raw,
    }
    try:
        handoff = ExecutionHandoff.model_validate(payload)
    except ValidationError as exc:
        errors.extend(str(issue.get("msg")) for issue in exc.errors())
        handoff = ExecutionHandoff.model_construct(**{**payload, "status": HandoffStatus(payload["status"])})

    ok = not errors and not missing_fields
    return HandoffParseResult(ok=ok, handoff=handoff, errors=errors, missing_fields=missing_fields)


def _format_list(items: list[str]) -> list[str]:
    if not items:
        return ["- none"]
    return [f"- {item}" for item in items]


def _format_optional(value: str | None) -> list[str]:
    lines = [line for line in (value or "").splitlines() if line.strip()]
    return [f"- {line}" for line in lines] or ["- none"]


def format_execution_handoff(handoff: ExecutionHandoff) -> str:
    lines = [HANDOFF_HEADER, f"Status: {handoff.status.value}"]
    lines += ["Plan:", *_format_list(handoff.plan)]
    lines += ["Actions:", *_format_list(handoff.actions)]
    lines += ["Data:", *_format_list(handoff.data)]
    lines += ["Errors:", *_format_list(handoff.errors)]
    lines += ["Verification:", *_format_list(handoff.verification)]
    lines += ["Missing:", *_format_list(handoff.missing)]
    lines += ["Follow-up:", *_format_optional(handoff.follow_up)]
    lines += ["Draft:", *_format_optional(handoff.draft)]
    return "\n".join(lines)


def build_fallback_handoff(reason: str, follow_up: str | None = None) -> ExecutionHandoff:
    return ExecutionHandoff(
        status=HandoffStatus.BLOCKED,
        errors=[reason],
        missing=[FALLBACK_MISSING_FIELD],
        follow_up=follow_up or DEFAULT_FOLLOW_UP,
        draft=None,
        raw="",
    )

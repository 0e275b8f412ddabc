from __future__ import annotations

import hashlib
import json
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from ..core.config import ToolRoutingSettings
from ..core.logging import get_logger

logger = get_logger(name=__name__)

__all__ = [
    "ALLOWLIST_PREVIEW_LIMIT",
    "DEDUPE_OVERRIDE_KEYS",
    "ToolGuardDecision",
    "DedupeCache",
    "ToolGuardrails",
    "canonical_json",
    "has_dedupe_override",
    "strip_override_flags",
]

ALLOWLIST_PREVIEW_LIMIT = 12
DEDUPE_OVERRIDE_KEYS = ("force", "allow_duplicate")
_GLOBAL_SCOPE = "global"
_WILDCARD = "*"


@dataclass(slots=True)
class ToolGuardDecision:
    allowed: bool
    reason: str | None = None


def canonical_json(value: Any) -> str:
    """Serialize ``value`` with object keys sorted at every depth; arrays keep their order."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def has_dedupe_override(payload: Mapping[str, Any]) -> bool:
    return any(payload.get(key) is True for key in DEDUPE_OVERRIDE_KEYS)


def strip_override_flags(payload: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if key not in DEDUPE_OVERRIDE_KEYS}


def _normalize_list(values: Iterable[str] | None) -> list[str]:
    return [value.strip() for value in values or () if value and value.strip()]


class DedupeCache:
    """Bounded map of action fingerprints to the time they were first accepted.

    Entries past the window are treated as absent. Once the map grows beyond
    ``max_entries`` the oldest expired entries are dropped until it fits again;
    unexpired entries are never evicted, so the bound is best-effort.
    """

    def __init__(self, *, max_entries: int = 1500, clock: Callable[[], float] = time.time) -> None:
        self._max_entries = max(1, int(max_entries))
        self._clock = clock
        self._entries: dict[str, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def seen_within(self, key: str, *, window_seconds: float) -> bool:
        """Return True when ``key`` was accepted within the window, without recording it."""
        with self._lock:
            previous = self._entries.get(key)
            return previous is not None and self._clock() - previous < window_seconds

    def check_and_record(self, key: str, *, window_seconds: float) -> bool:
        """Return True when ``key`` was accepted within the window, else record it."""
        with self._lock:
            now = self._clock()
            previous = self._entries.get(key)
            if previous is not None and now - previous < window_seconds:
                return True
            self._entries.pop(key, None)
            self._entries[key] = now
            if len(self._entries) > self._max_entries:
                self._evict(now, window_seconds)
            return False

    def _evict(self, now: float, window_seconds: float) -> None:
        for entry_key, timestamp in list(self._entries.items()):
            if len(self._entries) <= self._max_entries:
                break
            if now - timestamp > window_seconds:
                del self._entries[entry_key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class ToolGuardrails:
    """Workspace allow-listing, prompt hints and duplicate-action suppression for tool calls."""

    def __init__(
        self,
        settings: ToolRoutingSettings | None = None,
        *,
        cache: DedupeCache | None = None,
    ) -> None:
        self._settings = settings or ToolRoutingSettings()
        self._always_allowed = frozenset(self._settings.always_allowed_tools)
        self._dedupe_patterns = [re.compile(pattern, re.IGNORECASE) for pattern in self._settings.dedupe_patterns]
        self.cache = cache or DedupeCache(max_entries=self._settings.dedupe_max_entries)

    def _resolve_scoped(self, mapping: Mapping[str, list[str]], workspace_id: str | None) -> list[str]:
        if workspace_id and mapping.get(workspace_id):
            return _normalize_list(mapping[workspace_id])
        if mapping.get(_WILDCARD):
            return _normalize_list(mapping[_WILDCARD])
        return []

    def resolve_allowlist(self, workspace_id: str | None) -> list[str]:
        return self._resolve_scoped(self._settings.allowlist_by_workspace, workspace_id)

    def get_allowlist_summary(self, workspace_id: str | None) -> str | None:
        allowlist = self.resolve_allowlist(workspace_id)
        if not allowlist:
            return None
        preview = allowlist[:ALLOWLIST_PREVIEW_LIMIT]
        suffix = " (truncated)" if len(allowlist) > len(preview) else ""
        return "- " + "\n- ".join(preview) + suffix

    def get_tool_hints(self, workspace_id: str | None) -> list[str]:
        return self._resolve_scoped(self._settings.must_use_tool_hints_by_workspace, workspace_id)

    def is_always_allowed(self, tool_name: str) -> bool:
        return tool_name in self._always_allowed

    def is_tool_allowed(
        self,
        workspace_id: str | None,
        tool_name: str,
        integration_id: str | None = None,
    ) -> ToolGuardDecision:
        if self.is_always_allowed(tool_name) or not workspace_id:
            return ToolGuardDecision(allowed=True)

        allowlist = self.resolve_allowlist(workspace_id)
        if not allowlist:
            return ToolGuardDecision(allowed=True)

        tool = tool_name.lower()
        integration = integration_id.lower() if integration_id else None
        for entry in allowlist:
            candidate = entry.lower()
            if candidate == tool or (integration and candidate == integration):
                return ToolGuardDecision(allowed=True)
            if candidate.endswith(_WILDCARD) and tool.startswith(candidate[:-1]):
                return ToolGuardDecision(allowed=True)

        return ToolGuardDecision(
            allowed=False,
            reason=f"Tool {tool_name} is not allowed for workspace {workspace_id}.",
        )

    def should_dedupe(self, tool_name: str) -> bool:
        if self.is_always_allowed(tool_name):
            return False
        return any(pattern.search(tool_name) for pattern in self._dedupe_patterns)

    def dedupe_window_seconds(self, workspace_id: str | None) -> float:
        minutes = self._settings.dedupe_window_minutes
        if workspace_id:
            minutes = self._settings.dedupe_window_minutes_by_workspace.get(workspace_id, minutes)
        return max(1, minutes) * 60.0

    @staticmethod
    def fingerprint(workspace_id: str | None, tool_name: str, payload: Mapping[str, Any]) -> str:
        material = f"{workspace_id or _GLOBAL_SCOPE}:{tool_name}:{canonical_json(payload)}"
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    def was_recently_run(self, workspace_id: str | None, tool_name: str, payload: Mapping[str, Any]) -> bool:
        key = self.fingerprint(workspace_id, tool_name, payload)
        return self.cache.seen_within(key, window_seconds=self.dedupe_window_seconds(workspace_id))

    def is_duplicate(self, workspace_id: str | None, tool_name: str, payload: Mapping[str, Any]) -> bool:
        """Record the action as accepted unless it already was within the window."""
        key = self.fingerprint(workspace_id, tool_name, payload)
        duplicate = self.cache.check_and_record(key, window_seconds=self.dedupe_window_seconds(workspace_id))
        if duplicate:
            logger.info("duplicate_action_blocked", tool=tool_name, workspace_id=workspace_id)
        return duplicate

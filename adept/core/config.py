from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class OllamaSettings(BaseModel):
    host: str = Field("http://localhost", description="Base URL where Ollama is running.")
    port: int = Field(11434, ge=1, le=65535)
    model: str = Field("llama3.1", description="Default tool-calling model served via Ollama.")


class AgentSettings(BaseModel):
    name: str = Field("Adept", min_length=1, description="Assistant name used in system prompts.")
    provider: Literal["ollama"] = Field("ollama", description="Reasoning backend used for both phases.")
    executor_model: str | None = Field(default=None, description="Override model for the executor phase.")
    presenter_model: str | None = Field(default=None, description="Override model for the presenter phase.")
    temperature: float = Field(0.1, ge=0.0, le=1.0)
    max_tool_steps: int = Field(15, ge=1, description="Hard cap on tool-calling rounds in the executor phase.")
    hot_tool_limit: int = Field(12, ge=0, description="Maximum number of hot tools loaded into the executor.")
    pinned_hot_tools: list[str] = Field(
        default_factory=list,
        description="Tools always loaded into the executor regardless of usage.",
    )
    registry_search_limit: int = Field(8, ge=1, le=50)


class ToolRoutingSettings(BaseModel):
    allowlist_by_workspace: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Per-workspace allowlist entries; the '*' key applies to workspaces without their own list.",
    )
    must_use_tool_hints_by_workspace: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Per-workspace hints injected into the executor prompt; '*' is the fallback.",
    )
    always_allowed_tools: list[str] = Field(
        default_factory=lambda: ["tool_registry_search", "tool_registry_execute", "get_current_time"],
    )
    dedupe_window_minutes: int = Field(60, ge=1)
    dedupe_window_minutes_by_workspace: dict[str, int] = Field(default_factory=dict)
    dedupe_max_entries: int = Field(1500, ge=1)
    dedupe_patterns: list[str] = Field(
        default_factory=lambda: [
            r"create[_-]?(issue|ticket|bug)",
            r"create[_-]?(pr|pull[_-]?request|merge[_-]?request)",
        ],
        description="Case-insensitive regular expressions naming mutating, duplicate-prone tools.",
    )


class RetrySettings(BaseModel):
    max_attempts: int = Field(3, ge=1)
    base_delay_seconds: float = Field(0.5, ge=0.0)
    max_delay_seconds: float = Field(5.0, ge=0.0)
    jitter_seconds: float = Field(0.25, ge=0.0)


class ToolRateLimitRule(BaseModel):
    max_calls: int = Field(30, ge=1, description="Maximum tool invocations per user within the window.")
    window_seconds: int = Field(60, ge=1)


class ToolRateLimitSettings(BaseModel):
    enabled: bool = Field(True)
    backend: Literal["memory", "redis"] = Field("memory")
    redis_url: RedisDsn = Field("redis://localhost:6379/0")
    namespace: str = Field("adept:tool_ratelimit", min_length=1)
    default: ToolRateLimitRule = Field(default_factory=ToolRateLimitRule)  # type: ignore[arg-type]
    per_tool: dict[str, ToolRateLimitRule] = Field(default_factory=dict)


class ApprovalSettings(BaseModel):
    enabled: bool = Field(True)
    required_patterns: list[str] = Field(
        default_factory=lambda: [r"(^|_)(delete|remove|refund|void)(_|$)"],
        description="Case-insensitive patterns; matching tool names need human approval before execution.",
    )
    required_integrations: list[str] = Field(default_factory=list)


class ObservabilitySettings(BaseModel):
    prometheus_enabled: bool = Field(True)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    audit_history_size: int = Field(500, ge=0, description="Audit records retained in memory for inspection.")


class Settings(BaseSettings):
    environment: Literal["local", "test", "production"] = Field("local")
    api_v1_prefix: str = Field("/api/v1")

    ollama: OllamaSettings = Field(default_factory=OllamaSettings)  # type: ignore[arg-type]
    agent: AgentSettings = Field(default_factory=AgentSettings)  # type: ignore[arg-type]
    tool_routing: ToolRoutingSettings = Field(default_factory=ToolRoutingSettings)  # type: ignore[arg-type]
    retry: RetrySettings = Field(default_factory=RetrySettings)  # type: ignore[arg-type]
    tool_rate_limit: ToolRateLimitSettings = Field(default_factory=ToolRateLimitSettings)  # type: ignore[arg-type]
    approvals: ApprovalSettings = Field(default_factory=ApprovalSettings)  # type: ignore[arg-type]
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)  # type: ignore[arg-type]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )


@lru_cache(maxsize=1)
def _get_cached_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def get_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Return settings, using cached defaults unless overrides are provided."""
    if overrides:
        return Settings(**dict(overrides))
    return _get_cached_settings()

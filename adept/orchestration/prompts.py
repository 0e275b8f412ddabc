from __future__ import annotations

from datetime import date

from .handoff import HANDOFF_HEADER

HANDOFF_CONTRACT = f"""When you are finished, reply with ONLY the following document and nothing else:

{HANDOFF_HEADER}
Status: done | needs_info | blocked | planning
Plan:
- short step (optional)
Actions:
- each change you made, with a link when one exists
Data:
- each fact you gathered, with its source
Errors:
- each failure you hit
Verification:
- each check you ran, or "not run"
Missing:
- each piece of information you still need
Follow-up:
- one question for the user, or none
Draft:
- an optional reply fragment, or none

Write "- none" under any section that has nothing to report. Keep every section header."""

REPAIR_INSTRUCTION = (
    f"Your previous reply did not follow the {HANDOFF_HEADER} format. "
    "Do not call any tools. Rewrite the same information using exactly the required sections."
)


def build_executor_system_prompt(
    *,
    agent_name: str,
    today: date,
    tool_hints: list[str] | None = None,
    allowlist_summary: str | None = None,
) -> str:
    sections = [
        f"You are {agent_name}, an assistant for business operations. You gather information and carry out "
        "work across the user's connected systems using the tools provided.",
        "Guidelines:\n"
        "- Use tools proactively and search multiple systems efficiently.\n"
        "- Never repeat a create action that already succeeded.\n"
        "- If a tool returns an error object, read its hint and adapt instead of retrying blindly.\n"
        "- Use tool_registry_search to find tools that are not loaded, then tool_registry_execute to run them.\n"
        f"- Current date: {today.isoformat()}",
    ]
    if tool_hints:
        sections.append("Preferred tools for this workspace:\n" + "\n".join(f"- {hint}" for hint in tool_hints))
    if allowlist_summary:
        sections.append("Only these tools and integrations are allowed in this workspace:\n" + allowlist_summary)
    sections.append(HANDOFF_CONTRACT)
    return "\n\n".join(sections)


def build_repair_prompt(malformed: str, problems: list[str]) -> str:
    details = "\n".join(f"- {problem}" for problem in problems) if problems else "- unknown format error"
    return f"{REPAIR_INSTRUCTION}\n\nProblems found:\n{details}\n\nPrevious reply:\n{malformed}"


def build_presenter_system_prompt(*, agent_name: str, today: date) -> str:
    return (
        f"You are {agent_name}, an assistant for business operations. You write the final reply to the user "
        "from an execution handoff prepared by a colleague who already did the work. You cannot call tools.\n\n"
        "Guidelines:\n"
        "- Be concise and direct.\n"
        "- Only state facts present in the handoff and cite their sources.\n"
        "- Format for chat: *bold*, _italic_, bullet points.\n"
        f"- Current date: {today.isoformat()}"
    )


def build_presenter_prompt(handoff_text: str, directive: str) -> str:
    return f"{handoff_text}\n\nInstructions for this reply:\n{directive}"


__all__ = [
    "HANDOFF_CONTRACT",
    "REPAIR_INSTRUCTION",
    "build_executor_system_prompt",
    "build_repair_prompt",
    "build_presenter_system_prompt",
    "build_presenter_prompt",
]

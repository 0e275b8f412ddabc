from __future__ import annotations

import re

from .handoff import ExecutionHandoff, HandoffStatus

__all__ = [
    "BRIEFING_SECTIONS",
    "is_briefing_request",
    "looks_side_effecting",
    "build_presenter_directive",
]

BRIEFING_SECTIONS = ("Summary", "Key details", "Recent activity", "Suggested next steps")

_BRIEFING_INTENT = re.compile(
    r"\b(brief(ing)?|tell me about|what do (we|you) know about|background on|overview of|prep me|catch me up|rundown)\b",
    re.IGNORECASE,
)
_BRIEFING_ENTITY = re.compile(
    r"\b(company|companies|account|customer|client|deal|opportunit(y|ies)|contact|person|prospect|lead|vendor|partner)\b",
    re.IGNORECASE,
)
_SIDE_EFFECT = re.compile(
    r"\b(creat|updat|clos|delet|remov|sen[dt]|fil(e|ed|ing)\b|merg|assign|archiv|cancel|refund|post(ed)?\b|publish|schedul|invit)",
    re.IGNORECASE,
)
_VERIFICATION_FAILED = re.compile(r"\b(not run|skipped|failed|unverified)\b", re.IGNORECASE)


def is_briefing_request(text: str) -> bool:
    """A briefing needs both an intent phrase and an entity word in the user's message."""
    return bool(_BRIEFING_INTENT.search(text) and _BRIEFING_ENTITY.search(text))


def looks_side_effecting(action: str) -> bool:
    return bool(_SIDE_EFFECT.search(action))


def _bullets(items: list[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def _incomplete_directive(handoff: ExecutionHandoff) -> str:
    lines = [
        "The task is not complete. Start with a one-line receipt restating what the user asked for.",
    ]
    if handoff.plan:
        lines.append("Share this plan as short numbered steps:\n" + _bullets(handoff.plan))
    else:
        lines.append("Synthesize a short plan of the steps you would take.")
    lines.append("Never claim that anything was completed or changed.")
    if handoff.status is HandoffStatus.BLOCKED:
        if handoff.missing:
            lines.append("Explain what is missing:\n" + _bullets(handoff.missing))
        if handoff.errors:
            lines.append("Explain what went wrong in plain words:\n" + _bullets(handoff.errors))
        lines.append("Suggest concrete next steps the user can take to unblock the request.")
    if handoff.follow_up:
        lines.append(f"End by asking exactly this question: {handoff.follow_up}")
    elif handoff.status is HandoffStatus.PLANNING:
        lines.append("End by asking the user to confirm the plan before you proceed.")
    else:
        lines.append("End by asking the user for the detail needed to continue.")
    return "\n".join(lines)


def _done_directive(handoff: ExecutionHandoff, user_message: str) -> str:
    lines = [
        "The task is complete. Answer using only the actions, data and errors in the handoff.",
        "Cite the source of every fact and keep links exactly as given.",
    ]
    if handoff.plan:
        lines.append("You may open with the plan as a brief receipt of what was done.")
    changes = [action for action in handoff.actions if looks_side_effecting(action)]
    if changes:
        lines.append("If you made a change, start the reply with \"Done.\" and summarize each change with its link.")
        unverified = not handoff.verification or any(_VERIFICATION_FAILED.search(item) for item in handoff.verification)
        if unverified:
            lines.append("Call out that these changes were not verified:\n" + _bullets(changes))
    if handoff.errors:
        lines.append("Mention any errors that affected the result.")
    if handoff.draft:
        lines.append(f"Use this draft as a starting point:\n{handoff.draft}")
    if is_briefing_request(user_message):
        sections = "\n".join(f"*{section}*" for section in BRIEFING_SECTIONS)
        lines.append(
            "Format the reply as a briefing with exactly these sections, in order, "
            "each ending with the sources it draws on:\n" + sections
        )
    return "\n".join(lines)


def build_presenter_directive(handoff: ExecutionHandoff, user_message: str = "") -> str:
    if handoff.status is HandoffStatus.DONE:
        return _done_directive(handoff, user_message)
    return _incomplete_directive(handoff)

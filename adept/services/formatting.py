from __future__ import annotations

import re

_MARKDOWN_LINK = re.compile(r"\[(.*?)\]\((.*?)\)")


def to_chat_markup(text: str) -> str:
    """Convert markdown links and bold markers into chat-surface markup."""
    converted = _MARKDOWN_LINK.sub(lambda match: f"<{match.group(2)}|{match.group(1)}>", text)
    return converted.replace("**", "*")


def describe_tool_status(tool_name: str) -> str:
    return f"Using {tool_name.replace('_', ' ')}..."


__all__ = ["to_chat_markup", "describe_tool_status"]

from __future__ import annotations

from typing import Any, Awaitable, Callable, Sequence

from ..core.logging import get_logger
from .interceptor import CallerContext
from .pipeline import THINKING_STATUS, AssistantPipeline, ConversationMessage, StatusCallback

logger = get_logger(name=__name__)

DEFAULT_ERROR_MESSAGE = "_Sorry, I encountered an error processing your request._"

SendResponse = Callable[[str], Awaitable[None]]


async def run_assistant_flow(
    text: str,
    send_response: SendResponse,
    pipeline: AssistantPipeline,
    context: CallerContext,
    *,
    history: Sequence[ConversationMessage] | None = None,
    on_status_update: StatusCallback | None = None,
    set_initial_status: bool = False,
    error_message: str = DEFAULT_ERROR_MESSAGE,
    on_error: Callable[[BaseException], Any] | None = None,
    on_finally: Callable[[], Awaitable[None]] | None = None,
) -> None:
    """Run one chat turn end to end and always deliver some reply.

    ``history`` replaces ``text`` as the conversation when given, so callers
    replying inside a thread pass the whole thread.
    """
    try:
        if set_initial_status and on_status_update is not None:
            await on_status_update(THINKING_STATUS)
        messages = list(history) if history else [{"role": "user", "content": text}]
        reply = await pipeline.respond(messages, context, on_status_update, announce=not set_initial_status)
        await send_response(reply)
    except Exception as exc:
        logger.exception("assistant_flow_failed", error=str(exc), workspace_id=context.workspace_id)
        if on_error is not None:
            on_error(exc)
        await send_response(error_message)
    finally:
        if on_finally is not None:
            await on_finally()


__all__ = ["DEFAULT_ERROR_MESSAGE", "SendResponse", "run_assistant_flow"]

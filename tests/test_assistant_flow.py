from __future__ import annotations

import pytest

from adept.orchestration.assistant_flow import DEFAULT_ERROR_MESSAGE, run_assistant_flow
from adept.orchestration.interceptor import CallerContext
from adept.orchestration.pipeline import THINKING_STATUS


class _StubPipeline:
    def __init__(self, reply: str = "All set.", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.received = []

    async def respond(self, messages, context, on_status_update=None, *, announce=True):
        self.received.append(list(messages))
        self.announce = announce
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.mark.asyncio
async def test_flow_sends_reply_and_runs_finally():
    sent: list[str] = []
    statuses: list[str] = []
    finished: list[bool] = []
    pipeline = _StubPipeline()

    async def _send(text: str) -> None:
        sent.append(text)

    async def _status(text: str) -> None:
        statuses.append(text)

    async def _finally() -> None:
        finished.append(True)

    await run_assistant_flow(
        "What is open?",
        _send,
        pipeline,  # type: ignore[arg-type]
        CallerContext(workspace_id="T1"),
        on_status_update=_status,
        set_initial_status=True,
        on_finally=_finally,
    )

    assert sent == ["All set."]
    assert statuses == [THINKING_STATUS]
    assert finished == [True]
    assert pipeline.announce is False
    assert pipeline.received == [[{"role": "user", "content": "What is open?"}]]


@pytest.mark.asyncio
async def test_flow_prefers_thread_history():
    pipeline = _StubPipeline()
    history = [{"role": "user", "content": "first"}, {"role": "assistant", "content": "ok"}, {"role": "user", "content": "second"}]

    async def _send(text: str) -> None:
        return None

    await run_assistant_flow("second", _send, pipeline, CallerContext(), history=history)  # type: ignore[arg-type]

    assert pipeline.received == [history]


@pytest.mark.asyncio
async def test_flow_apologises_on_failure():
    sent: list[str] = []
    errors: list[BaseException] = []
    finished: list[bool] = []
    failure = RuntimeError("model offline")

    async def _send(text: str) -> None:
        sent.append(text)

    async def _finally() -> None:
        finished.append(True)

    await run_assistant_flow(
        "hi",
        _send,
        _StubPipeline(error=failure),  # type: ignore[arg-type]
        CallerContext(),
        on_error=errors.append,
        on_finally=_finally,
    )

    assert sent == [DEFAULT_ERROR_MESSAGE]
    assert errors == [failure]
    assert finished == [True]

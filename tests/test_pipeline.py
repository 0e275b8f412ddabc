from __future__ import annotations

import json

import pytest
from langchain_core.messages import HumanMessage, SystemMessage, ToolMessage

from adept.core.config import get_settings
from adept.orchestration.handoff import FALLBACK_MISSING_FIELD, HandoffStatus
from adept.orchestration.assistant_flow import run_assistant_flow
from adept.orchestration.interceptor import CallerContext
from adept.orchestration.pipeline import THINKING_STATUS, PipelineStage, to_langchain_messages
from tests.helpers.stubs import PipelineHarness, make_tool, tool_call, tool_turn

CONTEXT = CallerContext(user_id="U1", workspace_id="T1", channel_id="C1", session_id="S1")
ISSUE_URL = "https://linear.app/acme/issue/ENG-123"

CREATED_HANDOFF = f"""EXECUTION_HANDOFF
Status: done
Actions:
- Filed issue ENG-123 "Login fails on Safari" ({ISSUE_URL})
Data:
- none
Errors:
- none
Missing:
- none
Follow-up:
- none
Draft:
- none
"""

NEEDS_INFO_HANDOFF = """EXECUTION_HANDOFF
Status: needs_info
Actions:
- none
Data:
- none
Errors:
- none
Missing:
- Target team
Follow-up:
- Which team should own this bug?
Draft:
- none
"""


def _tool_messages(messages) -> list[ToolMessage]:
    return [message for message in messages if isinstance(message, ToolMessage)]


@pytest.mark.asyncio
async def test_pipeline_files_issue_and_presents_done_reply():
    calls: list[dict] = []
    create_issue = make_tool(
        "linear_create_issue",
        integration_id="linear",
        result={"id": "ENG-123", "url": ISSUE_URL},
        calls=calls,
    )
    harness = PipelineHarness(
        executor_replies=[
            tool_turn(tool_call("linear_create_issue", {"title": "Login fails on Safari"})),
            CREATED_HANDOFF,
        ],
        presenter_replies=[f"Done. Filed **ENG-123** [Login fails on Safari]({ISSUE_URL})"],
        tools=[create_issue],
    )
    updates: list[str] = []

    async def _status(update: str) -> None:
        updates.append(update)

    result = await harness.pipeline.run(
        [{"role": "user", "content": "File a bug: login fails on Safari"}],
        CONTEXT,
        _status,
    )

    assert result.reply == f"Done. Filed *ENG-123* <{ISSUE_URL}|Login fails on Safari>"
    assert result.handoff.status is HandoffStatus.DONE
    assert result.stages == [
        PipelineStage.EXECUTING,
        PipelineStage.PARSED_OK,
        PipelineStage.PRESENTING,
        PipelineStage.DONE,
    ]
    assert result.executor_steps == 2
    assert calls == [{"title": "Login fails on Safari"}]
    assert updates == [THINKING_STATUS, "Using linear create issue..."]

    bound = {schema["function"]["name"] for schema in harness.executor_model.bound_tools[0]}
    assert {"linear_create_issue", "tool_registry_search", "tool_registry_execute", "get_current_time"} <= bound

    second_turn = harness.executor_model.calls[1]
    assert isinstance(second_turn[0], SystemMessage)
    assert "EXECUTION_HANDOFF" in second_turn[0].content
    tool_outputs = _tool_messages(second_turn)
    assert json.loads(tool_outputs[0].content)["id"] == "ENG-123"

    presenter_prompt = harness.presenter_model.calls[0][-1]
    assert isinstance(presenter_prompt, HumanMessage)
    assert 'start the reply with "Done."' in presenter_prompt.content
    assert "not verified" in presenter_prompt.content


@pytest.mark.asyncio
async def test_duplicate_create_in_same_turn_runs_once():
    calls: list[dict] = []
    create_issue = make_tool("linear_create_issue", integration_id="linear", result={"id": "ENG-123"}, calls=calls)
    args = {"title": "Login fails on Safari"}
    harness = PipelineHarness(
        executor_replies=[
            tool_turn(
                tool_call("linear_create_issue", args, "call_1"),
                tool_call("linear_create_issue", args, "call_2"),
            ),
            CREATED_HANDOFF.replace("Errors:\n- none", "Errors:\n- Second create blocked as a duplicate"),
        ],
        presenter_replies=["Done. Filed ENG-123."],
        tools=[create_issue],
    )

    result = await harness.pipeline.run([{"role": "user", "content": "File it twice"}], CONTEXT)

    assert len(calls) == 1
    outputs = [json.loads(message.content) for message in _tool_messages(harness.executor_model.calls[1])]
    assert {"id": "ENG-123"} in outputs
    assert any(output.get("errorType") == "duplicate_action" for output in outputs)
    assert result.handoff.errors == ["Second create blocked as a duplicate"]


@pytest.mark.asyncio
async def test_registry_execute_routes_through_guardrails():
    calls: list[dict] = []
    hidden = make_tool("slack_post_message", integration_id="slack", calls=calls)
    harness = PipelineHarness(
        executor_replies=[
            tool_turn(
                tool_call(
                    "tool_registry_execute",
                    {"tool_name": "slack_post_message", "arguments": {"text": "hi"}},
                )
            ),
            NEEDS_INFO_HANDOFF,
        ],
        presenter_replies=["Which team should own this bug?"],
        settings=get_settings({"environment": "test", "tool_routing": {"allowlist_by_workspace": {"T1": ["linear"]}}}),
    )
    harness.registry.register(hidden)

    await harness.pipeline.run([{"role": "user", "content": "Post hi to slack"}], CONTEXT)

    assert calls == []
    output = json.loads(_tool_messages(harness.executor_model.calls[1])[0].content)
    assert output["errorType"] == "not_allowed"


@pytest.mark.asyncio
async def test_malformed_handoff_is_repaired_once():
    harness = PipelineHarness(
        executor_replies=["I could not tell which team owns this.", NEEDS_INFO_HANDOFF],
        presenter_replies=["Which team should own this bug?"],
    )

    result = await harness.pipeline.run([{"role": "user", "content": "File a bug"}], CONTEXT)

    assert result.stages == [
        PipelineStage.EXECUTING,
        PipelineStage.PARSE_FAILED,
        PipelineStage.REPAIRING,
        PipelineStage.REPAIRED_OK,
        PipelineStage.PRESENTING,
        PipelineStage.DONE,
    ]
    assert result.handoff.status is HandoffStatus.NEEDS_INFO
    assert result.parse_errors == ["Missing EXECUTION_HANDOFF header."]
    repair_request = harness.executor_model.calls[1][-1]
    assert isinstance(repair_request, HumanMessage)
    assert "Missing EXECUTION_HANDOFF header." in repair_request.content
    assert "I could not tell which team owns this." in repair_request.content

    presenter_prompt = harness.presenter_model.calls[0][-1].content
    assert "End by asking exactly this question: Which team should own this bug?" in presenter_prompt

    snapshot = harness.monitor.snapshot()
    assert snapshot.total == 1
    assert snapshot.parse_failures == 0
    assert snapshot.missing_fields == {"header": 1}


@pytest.mark.asyncio
async def test_failed_repair_falls_back_to_blocked_handoff():
    harness = PipelineHarness(
        executor_replies=["Sure thing!", "EXECUTION_HANDOFF\nStatus: done\n"],
        presenter_replies=["I could not finish that. Could you restate the request?"],
    )

    result = await harness.pipeline.run([{"role": "user", "content": "Do the thing"}], CONTEXT)

    assert PipelineStage.REPAIR_FAILED in result.stages
    assert result.handoff.status is HandoffStatus.BLOCKED
    assert result.handoff.missing == [FALLBACK_MISSING_FIELD]
    assert result.handoff.errors[0].startswith("Executor handoff was malformed (Missing EXECUTION_HANDOFF header.)")
    assert "missing actions, data, errors, missing, follow_up, draft" in result.handoff.errors[0]

    presenter_prompt = harness.presenter_model.calls[0][-1].content
    assert "Never claim that anything was completed or changed." in presenter_prompt

    snapshot = harness.monitor.snapshot()
    assert snapshot.parse_failures == 1
    assert snapshot.blocked_reasons == {FALLBACK_MISSING_FIELD: 1}


@pytest.mark.asyncio
async def test_step_budget_exhaustion_still_produces_a_reply():
    settings_overrides = {"environment": "test", "agent": {"max_tool_steps": 2}}
    harness = PipelineHarness(
        executor_replies=[
            tool_turn(tool_call("get_current_time", {}, "call_1")),
            tool_turn(tool_call("get_current_time", {}, "call_2")),
            NEEDS_INFO_HANDOFF,
        ],
        presenter_replies=["Which team should own this bug?"],
        settings=get_settings(settings_overrides),
    )

    result = await harness.pipeline.run([{"role": "user", "content": "What time is it?"}], CONTEXT)

    assert result.executor_steps == 2
    assert PipelineStage.REPAIRED_OK in result.stages
    assert result.reply == "Which team should own this bug?"


@pytest.mark.asyncio
async def test_respond_returns_reply_text_with_history():
    harness = PipelineHarness(executor_replies=[NEEDS_INFO_HANDOFF], presenter_replies=["Which team?"])

    reply = await harness.pipeline.respond(
        [
            {"role": "user", "content": "File a bug"},
            {"role": "assistant", "content": "What is the bug?"},
            {"role": "user", "content": "Login fails"},
        ],
        CONTEXT,
    )

    assert reply == "Which team?"
    executor_messages = harness.executor_model.calls[0]
    assert [type(message).__name__ for message in executor_messages] == [
        "SystemMessage",
        "HumanMessage",
        "AIMessage",
        "HumanMessage",
    ]


@pytest.mark.asyncio
async def test_executor_failure_propagates():
    def _explode(_messages):
        raise ConnectionError("model offline")

    harness = PipelineHarness(executor_replies=[_explode])

    with pytest.raises(ConnectionError):
        await harness.pipeline.run([{"role": "user", "content": "hi"}], CONTEXT)


CLOSED_HANDOFF = f"""EXECUTION_HANDOFF
Status: done
Plan:
- Look up ENG-123
- Close it if the fix shipped
Actions:
- Closed ENG-123 ({ISSUE_URL})
Data:
- ENG-123 was In Review with the fix merged
Errors:
- none
Verification:
- Fetched ENG-123 after closing; state is Done
Missing:
- none
Follow-up:
- none
Draft:
- none
"""


@pytest.mark.asyncio
async def test_lookup_then_close_issue_reports_done():
    lookups: list[dict] = []
    closes: list[dict] = []
    get_issue = make_tool(
        "linear_get_issue",
        integration_id="linear",
        result={"id": "ENG-123", "state": "In Review", "url": ISSUE_URL},
        calls=lookups,
    )
    close_issue = make_tool(
        "linear_close_issue",
        integration_id="linear",
        result={"id": "ENG-123", "state": "Done", "url": ISSUE_URL},
        calls=closes,
    )
    harness = PipelineHarness(
        executor_replies=[
            tool_turn(tool_call("linear_get_issue", {"id": "ENG-123"}, "call_1")),
            tool_turn(tool_call("linear_close_issue", {"id": "ENG-123"}, "call_2")),
            CLOSED_HANDOFF,
        ],
        presenter_replies=[f"Done. Closed [ENG-123]({ISSUE_URL}) since the fix was merged."],
        tools=[get_issue, close_issue],
    )

    result = await harness.pipeline.run(
        [{"role": "user", "content": "What's the status of ENG-123 and can you close it if it's done?"}],
        CONTEXT,
    )

    assert lookups == [{"id": "ENG-123"}]
    assert closes == [{"id": "ENG-123"}]
    assert result.handoff.status is HandoffStatus.DONE
    assert result.handoff.actions == [f"Closed ENG-123 ({ISSUE_URL})"]
    assert result.reply == f"Done. Closed <{ISSUE_URL}|ENG-123> since the fix was merged."
    outputs = [json.loads(message.content) for message in _tool_messages(harness.executor_model.calls[2])]
    assert [output["state"] for output in outputs] == ["In Review", "Done"]
    presenter_prompt = harness.presenter_model.calls[0][-1].content
    assert 'start the reply with "Done."' in presenter_prompt
    assert ISSUE_URL in presenter_prompt
    assert "not verified" not in presenter_prompt


@pytest.mark.asyncio
async def test_invalid_status_falls_back_after_failed_repair():
    invalid = NEEDS_INFO_HANDOFF.replace("Status: needs_info", "Status: finished")
    harness = PipelineHarness(
        executor_replies=[invalid, invalid],
        presenter_replies=["I could not finish that. Which team should own this bug?"],
    )

    result = await harness.pipeline.run([{"role": "user", "content": "File a bug"}], CONTEXT)

    assert PipelineStage.REPAIR_FAILED in result.stages
    assert result.handoff.status is HandoffStatus.BLOCKED
    assert result.handoff.missing == [FALLBACK_MISSING_FIELD]
    assert 'Invalid status "finished".' in result.handoff.errors[0]
    assert result.handoff.follow_up


@pytest.mark.asyncio
async def test_flow_with_initial_status_announces_thinking_once():
    harness = PipelineHarness(executor_replies=[NEEDS_INFO_HANDOFF], presenter_replies=["Which team?"])
    sent: list[str] = []
    updates: list[str] = []

    async def _send(text: str) -> None:
        sent.append(text)

    async def _status(update: str) -> None:
        updates.append(update)

    await run_assistant_flow(
        "File a bug",
        _send,
        harness.pipeline,
        CONTEXT,
        on_status_update=_status,
        set_initial_status=True,
    )

    assert sent == ["Which team?"]
    assert updates == [THINKING_STATUS]


def test_to_langchain_messages_maps_roles():
    converted = to_langchain_messages(
        [{"role": "system", "content": "s"}, {"role": "assistant", "content": "a"}, {"content": "u"}]
    )

    assert [type(message).__name__ for message in converted] == ["SystemMessage", "AIMessage", "HumanMessage"]

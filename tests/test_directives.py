from __future__ import annotations

from adept.orchestration.directives import (
    BRIEFING_SECTIONS,
    build_presenter_directive,
    is_briefing_request,
    looks_side_effecting,
)
from adept.orchestration.handoff import ExecutionHandoff, HandoffStatus


def test_briefing_requires_intent_and_entity():
    assert is_briefing_request("Can you brief me on the Acme account?") is True
    assert is_briefing_request("Tell me about this customer before my call") is True
    assert is_briefing_request("Brief me on the weather") is False
    assert is_briefing_request("Update the Acme account owner") is False


def test_side_effect_detection():
    assert looks_side_effecting("Created issue ENG-123") is True
    assert looks_side_effecting("Sent the follow-up email to Dana") is True
    assert looks_side_effecting("Read 4 open tickets") is False


def test_done_with_changes_requires_done_prefix_and_unverified_callout():
    handoff = ExecutionHandoff(status=HandoffStatus.DONE, actions=["Created issue ENG-123"])

    directive = build_presenter_directive(handoff, "file a bug")

    assert 'start the reply with "Done."' in directive
    assert "not verified:\n- Created issue ENG-123" in directive


def test_done_with_passing_verification_skips_callout():
    handoff = ExecutionHandoff(
        status=HandoffStatus.DONE,
        actions=["Created issue ENG-123"],
        verification=["Fetched ENG-123 and confirmed the title"],
    )

    directive = build_presenter_directive(handoff)

    assert "Done." in directive
    assert "not verified" not in directive


def test_failed_verification_is_called_out():
    handoff = ExecutionHandoff(
        status=HandoffStatus.DONE,
        actions=["Updated deal stage"],
        verification=["Read-back skipped"],
    )

    assert "not verified" in build_presenter_directive(handoff)


def test_read_only_done_has_no_done_prefix():
    handoff = ExecutionHandoff(status=HandoffStatus.DONE, data=["3 open incidents"], draft="Here is the summary")

    directive = build_presenter_directive(handoff)

    assert "Done." not in directive
    assert "Use this draft as a starting point:\nHere is the summary" in directive


def test_briefing_layout_lists_sections_in_order():
    handoff = ExecutionHandoff(status=HandoffStatus.DONE, data=["Acme renewed in May (hubspot)"])

    directive = build_presenter_directive(handoff, "Prep me on the Acme account")

    positions = [directive.index(f"*{section}*") for section in BRIEFING_SECTIONS]
    assert positions == sorted(positions)


def test_needs_info_asks_the_follow_up_verbatim():
    handoff = ExecutionHandoff(status=HandoffStatus.NEEDS_INFO, follow_up="Which repo?")

    directive = build_presenter_directive(handoff)

    assert directive.startswith("The task is not complete.")
    assert "Synthesize a short plan" in directive
    assert "Never claim that anything was completed or changed." in directive
    assert directive.endswith("End by asking exactly this question: Which repo?")


def test_planning_shares_plan_and_asks_for_confirmation():
    handoff = ExecutionHandoff(status=HandoffStatus.PLANNING, plan=["Draft the email", "Send after review"])

    directive = build_presenter_directive(handoff)

    assert "- Draft the email\n- Send after review" in directive
    assert directive.endswith("End by asking the user to confirm the plan before you proceed.")


def test_blocked_surfaces_missing_errors_and_next_steps():
    handoff = ExecutionHandoff(
        status=HandoffStatus.BLOCKED,
        errors=["GitHub token expired"],
        missing=["Repository name"],
    )

    directive = build_presenter_directive(handoff)

    assert "Explain what is missing:\n- Repository name" in directive
    assert "Explain what went wrong in plain words:\n- GitHub token expired" in directive
    assert "Suggest concrete next steps" in directive
    assert directive.endswith("End by asking the user for the detail needed to continue.")

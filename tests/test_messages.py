"""Tests for outcome confirmation messages."""

from __future__ import annotations

from datetime import datetime

from slack_hitl_engine.hitl import build_error_text, build_outcome_confirmation
from slack_hitl_engine.models import ApprovalStatus

from conftest import build_approval


def test_error_text_is_prefixed():
    assert build_error_text("Approval has expired") == ":x: Approval has expired"


def test_approved_confirmation():
    message = build_outcome_confirmation(
        record=build_approval(),
        outcome=ApprovalStatus.APPROVED,
        slack_user_id="U1",
        actioned_at=datetime(2026, 10, 16, 12, 0),
    )

    assert message["text"] == "Email Draft approved by <@U1>."
    headline = message["blocks"][0]["text"]["text"]
    assert headline.startswith(":white_check_mark: *Approved* by <@U1>")
    assert "_Email Draft - Intro email_" in headline
    assert len(message["blocks"]) == 2
    assert "2026-10-16T12:00:00+00:00" in message["blocks"][-1]["elements"][0]["text"]


def test_edited_confirmation_includes_feedback():
    message = build_outcome_confirmation(
        record=build_approval(resource_type="task_list", resource_name=None),
        outcome=ApprovalStatus.EDITED,
        slack_user_id="U2",
        feedback="Fewer tasks",
    )

    assert message["text"] == "Task List edited & approved by <@U2>."
    assert "_Task List - Task List_" in message["blocks"][0]["text"]["text"]
    assert message["blocks"][1]["elements"][0]["text"] == ":pencil2: Fewer tasks"

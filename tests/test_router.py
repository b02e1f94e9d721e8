"""Tests for routing decoded interactions to HITL flows and domain handlers."""

from __future__ import annotations

import json
from datetime import timedelta
from urllib.error import URLError

import pytest
from structlog.testing import capture_logs

from slack_hitl_engine.errors import ApprovalStoreError
from slack_hitl_engine.hitl import ApprovalStore, HITLStateMachine
from slack_hitl_engine.models import utcnow
from slack_hitl_engine.payloads import decode_interaction
from slack_hitl_engine.router import (
    ACK_EMPTY,
    ACK_OK,
    DomainHandlerRegistry,
    InteractionResponse,
    InteractionRouter,
)
from slack_hitl_engine.slack_client import SlackClient
from slack_hitl_engine.users import ACCOUNT_NOT_LINKED_MESSAGE, UserContextResolver

from conftest import DummyResponder, DummySlackClient, RecordingDispatcher

RESPONSE_URL = "https://hooks.slack.test/actions/1"


@pytest.fixture
def env(session_factory, inline_background):
    class Env:
        pass

    env = Env()
    env.dispatcher = RecordingDispatcher()
    env.store = ApprovalStore(session_factory)
    env.responder = DummyResponder()
    env.slack = DummySlackClient()
    env.registry = DomainHandlerRegistry()
    env.state_machine = HITLStateMachine(env.store, env.dispatcher)

    def build(**options):
        return InteractionRouter(
            state_machine=env.state_machine,
            users=UserContextResolver(session_factory),
            responder=env.responder,
            slack_client_for_team=options.pop("lookup", lambda team_id: env.slack),
            registry=env.registry,
            **options,
        )

    env.build = build
    env.router = build()
    return env


def block_action(action_id, *, trigger_id="trig-1", user_id="U1"):
    return decode_interaction(
        json.dumps(
            {
                "type": "block_actions",
                "user": {"id": user_id, "team_id": "T1"},
                "team": {"id": "T1"},
                "channel": {"id": "C1"},
                "response_url": RESPONSE_URL,
                "trigger_id": trigger_id,
                "message": {"ts": "1700000000.000100"},
                "actions": [{"action_id": action_id, "type": "button"}],
            }
        )
    )


def edit_submission(values, metadata=None, *, callback_id="hitl_edit_modal"):
    if metadata is None:
        metadata = {"approval_id": "appr-1", "resource_type": "email_draft", "response_url": RESPONSE_URL}
    state = {
        block_id: {action_id: {"type": "plain_text_input", "value": value} for action_id, value in actions.items()}
        for block_id, actions in values.items()
    }
    return decode_interaction(
        json.dumps(
            {
                "type": "view_submission",
                "user": {"id": "U1", "team_id": "T1"},
                "view": {
                    "callback_id": callback_id,
                    "private_metadata": json.dumps(metadata) if isinstance(metadata, dict) else metadata,
                    "state": {"values": state},
                },
            }
        )
    )


def test_approve_button_applies_and_replaces_message(env, make_approval, link_user):
    make_approval()
    link_user("U1", "user-1")

    response = env.router.dispatch(block_action("approve::email_draft::appr-1"))

    assert response == ACK_OK
    stored = env.store.get("appr-1")
    assert stored.status == "approved"
    assert stored.actioned_by == "user-1"
    assert env.dispatcher.calls[0]["content"] == stored.original_content
    assert env.responder.ephemeral == []
    replaced = env.responder.replaced[0]
    assert replaced["response_url"] == RESPONSE_URL
    assert replaced["text"] == "Email Draft approved by <@U1>."


def test_reject_button_by_unlinked_user_still_applies(env, make_approval):
    make_approval()

    env.router.dispatch(block_action("reject::email_draft::appr-1", user_id="U9"))

    stored = env.store.get("appr-1")
    assert stored.status == "rejected"
    assert stored.actioned_by is None
    assert stored.response == {"slack_user_id": "U9"}


def test_unlinked_user_is_refused_when_linking_required(env, make_approval):
    make_approval()
    router = env.build(require_linked_account=True)

    assert router.dispatch(block_action("approve::email_draft::appr-1")) == ACK_OK
    assert env.store.get("appr-1").status == "pending"
    assert env.responder.ephemeral == [{"response_url": RESPONSE_URL, "text": ACCOUNT_NOT_LINKED_MESSAGE}]


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"status": "approved"}, ":x: Approval already approved"),
        ({"id": "other"}, ":x: Approval not found"),
    ],
)
def test_lifecycle_errors_are_reported_ephemerally(env, make_approval, overrides, message):
    make_approval(**overrides)

    assert env.router.dispatch(block_action("approve::email_draft::appr-1")) == ACK_OK
    assert env.responder.ephemeral == [{"response_url": RESPONSE_URL, "text": message}]
    assert env.dispatcher.calls == []


def test_second_click_reports_already_actioned(env, make_approval):
    make_approval()
    env.router.dispatch(block_action("approve::email_draft::appr-1"))

    env.router.dispatch(block_action("reject::email_draft::appr-1", user_id="U2"))

    assert env.store.get("appr-1").status == "approved"
    assert env.responder.ephemeral[-1]["text"] == ":x: Approval already approved"
    assert len(env.dispatcher.calls) == 1


def test_store_failure_reports_generic_message(env, make_approval, monkeypatch):
    make_approval()

    def broken(*args, **kwargs):
        raise ApprovalStoreError("database unavailable")

    monkeypatch.setattr(env.store, "transition", broken)

    with capture_logs() as logs:
        assert env.router.dispatch(block_action("reject::email_draft::appr-1")) == ACK_OK

    assert env.responder.ephemeral[-1]["text"] == ":x: Failed to process rejection. Please try again."
    assert any(entry["event"] == "hitl_store_failed" for entry in logs)


def test_resource_type_mismatch_is_ignored(env, make_approval):
    make_approval()

    with capture_logs() as logs:
        assert env.router.dispatch(block_action("approve::task_list::appr-1")) == ACK_OK

    assert env.store.get("appr-1").status == "pending"
    assert env.responder.ephemeral == []
    assert any(entry["event"] == "hitl_resource_type_mismatch" for entry in logs)


def test_edit_button_opens_modal_without_changing_record(env, make_approval):
    make_approval()

    assert env.router.dispatch(block_action("edit::email_draft::appr-1")) == ACK_OK

    assert env.store.get("appr-1").status == "pending"
    opened = env.slack.opened[0]
    assert opened["trigger_id"] == "trig-1"
    metadata = json.loads(opened["view"]["private_metadata"])
    assert metadata == {
        "approval_id": "appr-1",
        "resource_type": "email_draft",
        "channel_id": "C1",
        "message_ts": "1700000000.000100",
        "response_url": RESPONSE_URL,
    }


def test_edit_button_without_trigger(env, make_approval):
    make_approval()

    env.router.dispatch(block_action("edit::email_draft::appr-1", trigger_id=None))

    assert env.slack.opened == []
    assert env.responder.ephemeral[-1]["text"] == ":x: Unable to open edit dialog."


def test_edit_button_without_bot_client(env, make_approval):
    make_approval()
    router = env.build(lookup=lambda team_id: None)

    router.dispatch(block_action("edit::email_draft::appr-1"))

    assert env.responder.ephemeral[-1]["text"] == ":x: Slack is not connected for this workspace."


def test_edit_button_when_slack_refuses_modal(env, make_approval):
    make_approval()
    env.slack.succeed = False

    env.router.dispatch(block_action("edit::email_draft::appr-1"))

    assert env.responder.ephemeral[-1]["text"] == ":x: Failed to open edit dialog. Please try again."


def test_edit_button_on_expired_approval(env, make_approval):
    make_approval(expires_at=utcnow() - timedelta(minutes=5))

    env.router.dispatch(block_action("edit::email_draft::appr-1"))

    assert env.slack.opened == []
    assert env.responder.ephemeral[-1]["text"] == ":x: Approval has expired"


def test_edit_submission_applies_edited_content(env, make_approval):
    make_approval()
    payload = edit_submission(
        {"subject": {"subject_input": "New subject"}, "body": {"body_input": "New body"}, "feedback": {"feedback_input": "Tone"}}
    )

    assert env.router.dispatch(payload) == ACK_EMPTY

    stored = env.store.get("appr-1")
    assert stored.status == "edited"
    assert stored.edited_content == {"subject": "New subject", "body": "New body"}
    assert env.dispatcher.calls[0]["content"] == {"subject": "New subject", "body": "New body"}
    assert env.responder.replaced[0]["text"] == "Email Draft edited & approved by <@U1>."


def test_edit_submission_for_actioned_approval_returns_field_error(env, make_approval):
    make_approval(status="rejected")

    response = env.router.dispatch(edit_submission({"subject": {"subject_input": "x"}, "body": {"body_input": "y"}}))

    assert response == InteractionResponse(
        {"response_action": "errors", "errors": {"body": "Approval already rejected"}}
    )
    assert env.dispatcher.calls == []


def test_edit_submission_store_failure_returns_field_error(env, make_approval, monkeypatch):
    make_approval(resource_type="summary")

    def broken(*args, **kwargs):
        raise ApprovalStoreError("database unavailable")

    monkeypatch.setattr(env.store, "transition", broken)
    metadata = {"approval_id": "appr-1", "resource_type": "summary"}

    response = env.router.dispatch(edit_submission({"content": {"content_input": "x"}}, metadata))

    assert response.body == {
        "response_action": "errors",
        "errors": {"content": "Failed to save changes. Please try again."},
    }


@pytest.mark.parametrize("metadata", ["not json", {"resource_type": "email_draft"}])
def test_edit_submission_with_bad_metadata_is_acknowledged(env, make_approval, metadata):
    make_approval()

    assert env.router.dispatch(edit_submission({}, metadata)) == ACK_EMPTY
    assert env.store.get("appr-1").status == "pending"


def test_domain_action_handlers_exact_before_prefix(env):
    calls = []

    @env.registry.action("open_", prefix=True)
    def by_prefix(payload):
        calls.append(("prefix", payload.first_action.action_id))

    @env.registry.action("open_request_modal")
    def exact(payload):
        calls.append(("exact", payload.first_action.action_id))
        return InteractionResponse({"ok": True, "handled": "exact"})

    assert env.router.dispatch(block_action("open_request_modal")).body == {"ok": True, "handled": "exact"}
    assert env.router.dispatch(block_action("open_settings")) == ACK_OK
    assert calls == [("exact", "open_request_modal"), ("prefix", "open_settings")]


def test_unmatched_interactions_are_acknowledged(env):
    with capture_logs() as logs:
        assert env.router.dispatch(block_action("something_else")) == ACK_OK
        assert env.router.dispatch(edit_submission({}, callback_id="unknown_modal")) == ACK_EMPTY

    assert [entry["event"] for entry in logs].count("interaction_unmatched") == 2


def test_empty_actions_list_is_acknowledged(env):
    payload = decode_interaction(json.dumps({"type": "block_actions", "user": {"id": "U1"}, "actions": []}))

    assert env.router.dispatch(payload) == ACK_OK


def test_domain_view_shortcut_and_message_action_handlers(env):
    seen = []

    @env.registry.view("request_form")
    def view_handler(payload):
        seen.append(("view", payload.view.callback_id))
        return InteractionResponse({"response_action": "clear"})

    @env.registry.shortcut("new_request")
    def shortcut_handler(payload):
        seen.append(("shortcut", payload.callback_id))

    @env.registry.message_action("save_note")
    def message_handler(payload):
        seen.append(("message_action", payload.message.ts))

    view_response = env.router.dispatch(edit_submission({}, {}, callback_id="request_form"))
    shortcut_response = env.router.dispatch(
        decode_interaction(json.dumps({"type": "shortcut", "callback_id": "new_request", "user": {"id": "U1"}}))
    )
    message_response = env.router.dispatch(
        decode_interaction(
            json.dumps(
                {"type": "message_action", "callback_id": "save_note", "user": {"id": "U1"}, "message": {"ts": "9.9"}}
            )
        )
    )

    assert view_response.body == {"response_action": "clear"}
    assert shortcut_response == ACK_OK
    assert message_response == ACK_OK
    assert seen == [("view", "request_form"), ("shortcut", "new_request"), ("message_action", "9.9")]


def test_edit_button_when_slack_is_unreachable(env, make_approval):
    class UnreachableWebClient:
        def views_open(self, **kwargs):
            raise URLError("connection refused")

    make_approval()
    router = env.build(lookup=lambda team_id: SlackClient(client=UnreachableWebClient()))

    assert router.dispatch(block_action("edit::email_draft::appr-1")) == ACK_OK
    assert env.responder.ephemeral[-1]["text"] == ":x: Failed to open edit dialog. Please try again."
    assert env.store.get("appr-1").status == "pending"

"""Shared fixtures: isolated settings, a throwaway SQLite database and record factories."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:  # pragma: no cover - import-time guard
    sys.path.insert(0, str(ROOT))

from slack_hitl_engine import config  # noqa: E402
from slack_hitl_engine.db import Base, build_engine, build_session_factory, get_engine, get_session_factory  # noqa: E402
from slack_hitl_engine.hitl import state as state_module  # noqa: E402
from slack_hitl_engine.models import ApprovalRecord, SlackOrgSettings, SlackUserMapping, utcnow  # noqa: E402
from slack_hitl_engine import router as router_module  # noqa: E402


@pytest.fixture(autouse=True)
def seed_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'hitl.db'}")
    monkeypatch.setenv("SLACK_SIGNING_SECRET", "secret")
    monkeypatch.setenv("SLACK_BOT_TOKEN", "xoxb-test")
    for var in (
        "ALLOW_INSECURE_SLACK_SIGNATURES",
        "FUNCTIONS_BASE_URL",
        "SERVICE_ROLE_KEY",
        "HITL_REQUIRE_LINKED_ACCOUNT",
    ):
        monkeypatch.delenv(var, raising=False)
    config.get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()

    yield

    config.get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'approvals.db'}")
    Base.metadata.create_all(engine)
    yield build_session_factory(engine)
    Base.metadata.drop_all(engine)
    engine.dispose()


def _run_inline(func, /, *args, **kwargs):
    """Execute run_async workloads synchronously while ignoring trace context metadata."""

    kwargs.pop("trace_id", None)
    return func(*args, **kwargs)


@pytest.fixture
def inline_background(monkeypatch):
    monkeypatch.setattr(state_module, "run_async", _run_inline)
    monkeypatch.setattr(router_module, "run_async", _run_inline)


def build_approval(**overrides) -> ApprovalRecord:
    values = {
        "id": "appr-1",
        "org_id": "org-1",
        "created_by": "user-author",
        "resource_type": "email_draft",
        "resource_id": "draft-1",
        "resource_name": "Intro email",
        "slack_team_id": "T1",
        "slack_channel_id": "C1",
        "slack_message_ts": "1700000000.000100",
        "status": "pending",
        "expires_at": utcnow() + timedelta(hours=1),
        "original_content": {"subject": "Hello", "body": "Hi Ann,", "recipient": "ann@example.test"},
        "callback_metadata": {"sequence_id": "seq-9"},
        "metadata_json": {},
    }
    values.update(overrides)
    return ApprovalRecord(**values)


@pytest.fixture
def make_approval(session_factory):
    def factory(**overrides) -> ApprovalRecord:
        record = build_approval(**overrides)
        with session_factory() as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            session.expunge(record)
        return record

    return factory


@pytest.fixture
def link_user(session_factory):
    def factory(slack_user_id: str, internal_user_id: str, *, org_id: str = "org-1", team_id: str | None = "T1"):
        with session_factory() as session:
            if team_id and session.query(SlackOrgSettings).filter_by(slack_team_id=team_id).one_or_none() is None:
                session.add(SlackOrgSettings(org_id=org_id, slack_team_id=team_id, is_connected=True))
            session.add(
                SlackUserMapping(org_id=org_id, slack_user_id=slack_user_id, internal_user_id=internal_user_id)
            )
            session.commit()

    return factory


class RecordingDispatcher:
    """Stand-in for CallbackDispatcher that records deliveries."""

    def __init__(self) -> None:
        self.calls = []

    def dispatch(self, record, outcome, content):
        self.calls.append({"approval_id": record.id, "outcome": outcome, "content": content})
        return "sent"


class DummyResponder:
    """Stand-in for ResponseUrlClient."""

    def __init__(self) -> None:
        self.ephemeral = []
        self.replaced = []

    def send_ephemeral(self, response_url, *, text):
        self.ephemeral.append({"response_url": response_url, "text": text})
        return True

    def replace_original(self, response_url, *, text, blocks):
        self.replaced.append({"response_url": response_url, "text": text, "blocks": blocks})
        return True


class DummySlackClient:
    """Stand-in for SlackClient that records opened views."""

    def __init__(self, *, succeed: bool = True) -> None:
        self.succeed = succeed
        self.opened = []

    def open_view(self, *, trigger_id, view):
        self.opened.append({"trigger_id": trigger_id, "view": view})
        return self.succeed

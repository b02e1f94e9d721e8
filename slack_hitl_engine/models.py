"""SQLAlchemy models for HITL approvals and Slack identity mappings."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Dict, List

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from slack_hitl_engine.db import Base


class ResourceType(StrEnum):
    EMAIL_DRAFT = "email_draft"
    FOLLOW_UP = "follow_up"
    TASK_LIST = "task_list"
    SUMMARY = "summary"
    MEETING_NOTES = "meeting_notes"
    PROPOSAL_SECTION = "proposal_section"
    COACHING_TIP = "coaching_tip"

    @property
    def label(self) -> str:
        return _RESOURCE_LABELS[self]


_RESOURCE_LABELS = {
    ResourceType.EMAIL_DRAFT: "Email Draft",
    ResourceType.FOLLOW_UP: "Follow-up",
    ResourceType.TASK_LIST: "Task List",
    ResourceType.SUMMARY: "Summary",
    ResourceType.MEETING_NOTES: "Meeting Notes",
    ResourceType.PROPOSAL_SECTION: "Proposal Section",
    ResourceType.COACHING_TIP: "Coaching Tip",
}


class ApprovalStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EDITED = "edited"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# Outcomes a reviewer can apply from Slack.
ACTIONABLE_OUTCOMES = frozenset({ApprovalStatus.APPROVED, ApprovalStatus.REJECTED, ApprovalStatus.EDITED})


class CallbackType(StrEnum):
    EDGE_FUNCTION = "edge_function"
    WEBHOOK = "webhook"
    WORKFLOW = "workflow"


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Return *value* in UTC; naive values are taken to be UTC already.

    SQLite drops the offset on write, so every stored datetime must be UTC.
    """

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class ApprovalRecord(Base):
    """A pending or resolved human decision point surfaced in Slack."""

    __tablename__ = "hitl_pending_approvals"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    actioned_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    resource_type: Mapped[str] = mapped_column(String(32), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(128), nullable=False)
    resource_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    slack_team_id: Mapped[str] = mapped_column(String(32), nullable=False)
    slack_channel_id: Mapped[str] = mapped_column(String(32), nullable=False)
    slack_message_ts: Mapped[str] = mapped_column(String(32), nullable=False)
    slack_thread_ts: Mapped[str | None] = mapped_column(String(32), nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ApprovalStatus.PENDING.value, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    actioned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    original_content: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    edited_content: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    response: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    callback_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    callback_target: Mapped[str | None] = mapped_column(Text, nullable=True)
    callback_metadata: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    metadata_json: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    history: Mapped[List["ApprovalHistory"]] = relationship(
        "ApprovalHistory",
        back_populates="approval",
        cascade="all, delete-orphan",
        order_by="ApprovalHistory.changed_at",
    )

    @validates("created_at", "updated_at", "expires_at", "actioned_at")
    def _normalise_timestamp(self, key: str, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @property
    def resource(self) -> ResourceType:
        return ResourceType(self.resource_type)

    @property
    def display_name(self) -> str:
        return self.resource_name or self.resource.label

    def is_expired(self, now: datetime | None = None) -> bool:
        return (as_utc(now) or utcnow()) > as_utc(self.expires_at)


class ApprovalHistory(Base):
    """Audit log of approval status transitions."""

    __tablename__ = "hitl_approval_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    approval_id: Mapped[str] = mapped_column(
        ForeignKey("hitl_pending_approvals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    from_status: Mapped[str] = mapped_column(String(16), nullable=False)
    to_status: Mapped[str] = mapped_column(String(16), nullable=False)
    changed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    details: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    approval: Mapped[ApprovalRecord] = relationship("ApprovalRecord", back_populates="history")


class SlackOrgSettings(Base):
    """Connection between a Slack workspace and an internal organization."""

    __tablename__ = "slack_org_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    slack_team_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    is_connected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class SlackUserMapping(Base):
    """Maps a Slack user to an internal user within an organization."""

    __tablename__ = "slack_user_mappings"
    __table_args__ = (
        UniqueConstraint("org_id", "slack_user_id", name="uq_slack_user_mappings_org_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    slack_user_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    internal_user_id: Mapped[str] = mapped_column(String(64), nullable=False)

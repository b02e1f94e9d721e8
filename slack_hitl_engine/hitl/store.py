"""Persistence gateway for HITL approval records."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from slack_hitl_engine.db import session_scope
from slack_hitl_engine.errors import (
    ApprovalAlreadyActionedError,
    ApprovalExpiredError,
    ApprovalNotFoundError,
    ApprovalStoreError,
)
from slack_hitl_engine.models import (
    ACTIONABLE_OUTCOMES,
    ApprovalHistory,
    ApprovalRecord,
    ApprovalStatus,
    as_utc,
    utcnow,
)


class ApprovalStore:
    """Read approvals and apply guarded status transitions.

    Transitions are a single conditional ``UPDATE`` on ``status = 'pending'``
    so concurrent duplicate clicks can never both succeed.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def add(self, record: ApprovalRecord) -> ApprovalRecord:
        try:
            with session_scope(self._session_factory) as session:
                session.add(record)
                session.flush()
                session.refresh(record)
                session.expunge(record)
                return record
        except SQLAlchemyError as exc:
            raise ApprovalStoreError(f"Failed to save approval {record.id}") from exc

    def get(self, approval_id: str) -> ApprovalRecord | None:
        try:
            with session_scope(self._session_factory) as session:
                record = session.get(ApprovalRecord, approval_id)
                if record is not None:
                    session.expunge(record)
                return record
        except SQLAlchemyError as exc:
            raise ApprovalStoreError(f"Failed to load approval {approval_id}") from exc

    def transition(
        self,
        approval_id: str,
        *,
        to_status: ApprovalStatus,
        actioned_by: str | None,
        changed_by: str,
        response: Dict[str, Any] | None = None,
        edited_content: Dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> ApprovalRecord:
        """Move a pending, unexpired approval to *to_status* exactly once."""

        if to_status not in ACTIONABLE_OUTCOMES:
            raise ValueError(f"Cannot transition an approval to {to_status}")

        actioned_at = as_utc(now) or utcnow()
        values: Dict[str, Any] = {
            "status": to_status.value,
            "actioned_by": actioned_by,
            "actioned_at": actioned_at,
            "updated_at": actioned_at,
            "response": response or {},
        }
        if edited_content is not None:
            values["edited_content"] = edited_content

        try:
            with session_scope(self._session_factory) as session:
                stmt = (
                    update(ApprovalRecord)
                    .where(
                        ApprovalRecord.id == approval_id,
                        ApprovalRecord.status == ApprovalStatus.PENDING.value,
                        ApprovalRecord.expires_at > actioned_at,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                result = session.execute(stmt)
                if result.rowcount != 1:
                    session.rollback()
                    self._raise_guard_failure(session, approval_id)

                session.add(
                    ApprovalHistory(
                        approval_id=approval_id,
                        from_status=ApprovalStatus.PENDING.value,
                        to_status=to_status.value,
                        changed_by=changed_by,
                        changed_at=actioned_at,
                        details=dict(response or {}),
                    )
                )
                session.flush()

                record = session.execute(
                    select(ApprovalRecord).where(ApprovalRecord.id == approval_id)
                ).scalar_one()
                session.expunge(record)
                return record
        except SQLAlchemyError as exc:
            raise ApprovalStoreError(f"Failed to update approval {approval_id}") from exc

    @staticmethod
    def _raise_guard_failure(session: Session, approval_id: str) -> None:
        current = session.execute(
            select(ApprovalRecord.status).where(ApprovalRecord.id == approval_id)
        ).scalar_one_or_none()
        if current is None:
            raise ApprovalNotFoundError(approval_id)
        if current != ApprovalStatus.PENDING.value:
            raise ApprovalAlreadyActionedError(approval_id, current)
        raise ApprovalExpiredError(approval_id)

    def expire_stale(self, now: datetime | None = None) -> int:
        """Mark pending approvals past their deadline as expired; return the count."""

        cutoff = as_utc(now) or utcnow()
        try:
            with session_scope(self._session_factory) as session:
                result = session.execute(
                    update(ApprovalRecord)
                    .where(
                        ApprovalRecord.status == ApprovalStatus.PENDING.value,
                        ApprovalRecord.expires_at <= cutoff,
                    )
                    .values(status=ApprovalStatus.EXPIRED.value, updated_at=cutoff)
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount or 0
        except SQLAlchemyError as exc:
            raise ApprovalStoreError("Failed to expire stale approvals") from exc

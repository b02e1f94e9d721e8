"""Lifecycle rules for HITL approvals.

An approval starts ``pending`` and moves exactly once to a terminal status.
Expiry is evaluated lazily: a pending record whose ``expires_at`` has passed
is rejected here without being rewritten.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Mapping

import structlog

from slack_hitl_engine.background import run_async
from slack_hitl_engine.errors import (
    ApprovalAlreadyActionedError,
    ApprovalExpiredError,
    ApprovalNotFoundError,
)
from slack_hitl_engine.models import ApprovalRecord, ApprovalStatus, utcnow

from .callbacks import CallbackDispatcher
from .forms import FormValues, build_edit_modal, extract_feedback, form_for
from .store import ApprovalStore


@dataclass(frozen=True)
class TransitionResult:
    record: ApprovalRecord
    outcome: ApprovalStatus
    content: Dict[str, Any]
    feedback: str | None = None
    response: Dict[str, Any] = field(default_factory=dict)


class HITLStateMachine:
    """Validate and apply reviewer decisions on approval records."""

    def __init__(
        self,
        store: ApprovalStore,
        callbacks: CallbackDispatcher,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._callbacks = callbacks
        self._clock = clock

    def validate_approval(self, approval_id: str) -> ApprovalRecord:
        record = self._store.get(approval_id)
        if record is None:
            raise ApprovalNotFoundError(approval_id)
        if record.status != ApprovalStatus.PENDING.value:
            raise ApprovalAlreadyActionedError(approval_id, record.status)
        if record.is_expired(self._clock()):
            raise ApprovalExpiredError(approval_id)
        return record

    def apply_approve(
        self, record: ApprovalRecord, acting_user_id: str | None, *, slack_user_id: str | None = None
    ) -> TransitionResult:
        return self._apply(
            record,
            ApprovalStatus.APPROVED,
            content=dict(record.original_content or {}),
            acting_user_id=acting_user_id,
            slack_user_id=slack_user_id,
        )

    def apply_reject(
        self, record: ApprovalRecord, acting_user_id: str | None, *, slack_user_id: str | None = None
    ) -> TransitionResult:
        # Rejection always reports the original content; unsaved edits are dropped.
        return self._apply(
            record,
            ApprovalStatus.REJECTED,
            content=dict(record.original_content or {}),
            acting_user_id=acting_user_id,
            slack_user_id=slack_user_id,
        )

    def begin_edit(self, record: ApprovalRecord, metadata: Mapping[str, Any]) -> Dict[str, Any]:
        """Return the edit modal for *record*; the record is not modified."""

        return build_edit_modal(record, metadata)

    def apply_edit_submit(
        self,
        record: ApprovalRecord,
        form_values: FormValues,
        acting_user_id: str | None,
        *,
        slack_user_id: str | None = None,
    ) -> TransitionResult:
        edited_content = form_for(record.resource_type).extract(form_values)
        feedback = extract_feedback(form_values)
        return self._apply(
            record,
            ApprovalStatus.EDITED,
            content=edited_content,
            acting_user_id=acting_user_id,
            slack_user_id=slack_user_id,
            edited_content=edited_content,
            feedback=feedback,
        )

    def _apply(
        self,
        record: ApprovalRecord,
        outcome: ApprovalStatus,
        *,
        content: Dict[str, Any],
        acting_user_id: str | None,
        slack_user_id: str | None,
        edited_content: Dict[str, Any] | None = None,
        feedback: str | None = None,
    ) -> TransitionResult:
        log = structlog.get_logger().bind(
            approval_id=record.id,
            resource_type=record.resource_type,
            outcome=outcome.value,
        )

        response: Dict[str, Any] = {"slack_user_id": slack_user_id}
        if outcome is ApprovalStatus.EDITED:
            response["feedback"] = feedback

        try:
            updated = self._store.transition(
                record.id,
                to_status=outcome,
                actioned_by=acting_user_id,
                changed_by=acting_user_id or slack_user_id or "unknown",
                response=response,
                edited_content=edited_content,
                now=self._clock(),
            )
        except (ApprovalAlreadyActionedError, ApprovalExpiredError, ApprovalNotFoundError) as exc:
            log.info("hitl_transition_lost", reason=type(exc).__name__, detail=str(exc))
            raise

        log.info(
            "hitl_action_applied",
            org_id=updated.org_id,
            resource_id=updated.resource_id,
            actioned_by=acting_user_id,
            slack_user_id=slack_user_id,
        )

        run_async(self._callbacks.dispatch, updated, outcome, content)

        return TransitionResult(
            record=updated,
            outcome=outcome,
            content=content,
            feedback=feedback,
            response=response,
        )

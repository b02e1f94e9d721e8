"""Block Kit builders for HITL outcome messages."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from slack_hitl_engine.models import ApprovalRecord, ApprovalStatus, as_utc, utcnow

_OUTCOME_DISPLAY = {
    ApprovalStatus.APPROVED: (":white_check_mark:", "Approved"),
    ApprovalStatus.REJECTED: (":x:", "Rejected"),
    ApprovalStatus.EDITED: (":pencil2:", "Edited & Approved"),
}

MAX_NAME_LENGTH = 60
MAX_NOTE_LENGTH = 150


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def build_error_text(message: str) -> str:
    return f":x: {message}"


def build_outcome_confirmation(
    *,
    record: ApprovalRecord,
    outcome: ApprovalStatus,
    slack_user_id: str,
    feedback: str | None = None,
    actioned_at: datetime | None = None,
) -> Dict[str, Any]:
    """Return the message that replaces the approval request once actioned."""

    emoji, label = _OUTCOME_DISPLAY.get(outcome, (":information_source:", outcome.value.capitalize()))
    type_label = record.resource.label
    name = _truncate(record.display_name, MAX_NAME_LENGTH)

    blocks: List[Dict[str, Any]] = [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"{emoji} *{label}* by <@{slack_user_id}>\n_{type_label} - {name}_",
            },
        }
    ]

    if outcome is ApprovalStatus.EDITED and feedback:
        blocks.append(
            {
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": f":pencil2: {_truncate(feedback, MAX_NOTE_LENGTH)}"}],
            }
        )

    when = as_utc(actioned_at) or utcnow()
    epoch = int(when.timestamp())
    blocks.append(
        {
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": f"<!date^{epoch}^{{date_short_pretty}} at {{time}}|{when.isoformat()}>",
                }
            ],
        }
    )

    return {
        "text": f"{type_label} {label.lower()} by <@{slack_user_id}>.",
        "blocks": blocks,
    }

"""Parsing of HITL action identifiers carried on Slack buttons.

Buttons rendered for an approval use ``{action}::{resource_type}::{approval_id}``
as their ``action_id``, e.g. ``approve::email_draft::abc123``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from slack_hitl_engine.models import ResourceType

SEPARATOR = "::"


class HITLAction(StrEnum):
    APPROVE = "approve"
    REJECT = "reject"
    EDIT = "edit"


@dataclass(frozen=True)
class ActionIdentifier:
    """Parsed form of a HITL button ``action_id``."""

    action: HITLAction
    resource_type: ResourceType
    approval_id: str

    def encode(self) -> str:
        return build_action_id(self.action, self.resource_type, self.approval_id)


def build_action_id(action: HITLAction | str, resource_type: ResourceType | str, approval_id: str) -> str:
    return SEPARATOR.join((str(action), str(resource_type), approval_id))


def parse_action_id(action_id: str | None) -> ActionIdentifier | None:
    """Return the parsed identifier, or None when *action_id* is not a HITL token."""

    if not action_id:
        return None

    parts = action_id.split(SEPARATOR)
    if len(parts) != 3:
        return None

    raw_action, raw_resource, approval_id = parts
    try:
        action = HITLAction(raw_action)
        resource_type = ResourceType(raw_resource)
    except ValueError:
        return None

    if not approval_id:
        return None

    return ActionIdentifier(action=action, resource_type=resource_type, approval_id=approval_id)

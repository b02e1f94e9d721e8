"""Resource-type specific edit forms for HITL approvals.

Each form knows how to render a record's content as modal inputs and how to
read the submitted values back into structured content. Resource types
without a dedicated form use :class:`GenericContentForm`.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Protocol

from slack_hitl_engine.models import ApprovalRecord, ResourceType

EDIT_MODAL_CALLBACK_ID = "hitl_edit_modal"
FEEDBACK_BLOCK_ID = "feedback"
FEEDBACK_ACTION_ID = "feedback_input"

MAX_TITLE_LENGTH = 24

FormValues = Mapping[str, Mapping[str, str | None]]


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def _input_value(values: FormValues, block_id: str, action_id: str) -> str:
    return (values.get(block_id) or {}).get(action_id) or ""


def _text_input(
    *,
    block_id: str,
    label: str,
    initial_value: str,
    placeholder: str,
    multiline: bool = False,
    optional: bool = False,
) -> Dict[str, Any]:
    element: Dict[str, Any] = {
        "type": "plain_text_input",
        "action_id": f"{block_id}_input",
        "placeholder": {"type": "plain_text", "text": placeholder},
    }
    if initial_value:
        element["initial_value"] = initial_value
    if multiline:
        element["multiline"] = True

    return {
        "type": "input",
        "block_id": block_id,
        "optional": optional,
        "label": {"type": "plain_text", "text": label},
        "element": element,
    }


class EditForm(Protocol):
    # Block that receives ``response_action: errors`` messages.
    error_block_id: str

    def build_blocks(self, content: Mapping[str, Any]) -> List[Dict[str, Any]]:
        ...

    def extract(self, values: FormValues) -> Dict[str, Any]:
        ...


class EmailDraftForm:
    error_block_id = "body"

    def build_blocks(self, content: Mapping[str, Any]) -> List[Dict[str, Any]]:
        blocks: List[Dict[str, Any]] = []
        recipient = content.get("recipient")
        if recipient:
            blocks.append(
                {
                    "type": "context",
                    "elements": [{"type": "mrkdwn", "text": f"*To:* {recipient}"}],
                }
            )
        blocks.append(
            _text_input(
                block_id="subject",
                label="Subject",
                initial_value=str(content.get("subject") or ""),
                placeholder="Email subject",
            )
        )
        blocks.append(
            _text_input(
                block_id="body",
                label="Message",
                initial_value=str(content.get("body") or ""),
                placeholder="Email body",
                multiline=True,
            )
        )
        return blocks

    def extract(self, values: FormValues) -> Dict[str, Any]:
        return {
            "subject": _input_value(values, "subject", "subject_input"),
            "body": _input_value(values, "body", "body_input"),
        }


class TaskListForm:
    error_block_id = "tasks"

    def build_blocks(self, content: Mapping[str, Any]) -> List[Dict[str, Any]]:
        tasks = content.get("tasks")
        if isinstance(tasks, list):
            initial = "\n".join(str(task) for task in tasks)
        else:
            initial = str(content.get("body") or "")
        return [
            _text_input(
                block_id="tasks",
                label="Tasks (one per line)",
                initial_value=initial,
                placeholder="Enter tasks, one per line",
                multiline=True,
            )
        ]

    def extract(self, values: FormValues) -> Dict[str, Any]:
        text = _input_value(values, "tasks", "tasks_input")
        return {
            "tasks": [line.strip() for line in text.split("\n") if line.strip()],
            "body": text,
        }


class GenericContentForm:
    error_block_id = "content"

    def build_blocks(self, content: Mapping[str, Any]) -> List[Dict[str, Any]]:
        initial = content.get("body") or content.get("content") or ""
        return [
            _text_input(
                block_id="content",
                label="Content",
                initial_value=str(initial),
                placeholder="Edit content...",
                multiline=True,
            )
        ]

    def extract(self, values: FormValues) -> Dict[str, Any]:
        text = _input_value(values, "content", "content_input")
        return {"content": text, "body": text}


DEFAULT_FORM: EditForm = GenericContentForm()

EDIT_FORMS: Dict[ResourceType, EditForm] = {
    ResourceType.EMAIL_DRAFT: EmailDraftForm(),
    ResourceType.TASK_LIST: TaskListForm(),
}


def form_for(resource_type: ResourceType | str) -> EditForm:
    try:
        key = ResourceType(resource_type)
    except ValueError:
        return DEFAULT_FORM
    return EDIT_FORMS.get(key, DEFAULT_FORM)


def extract_feedback(values: FormValues) -> str | None:
    feedback = _input_value(values, FEEDBACK_BLOCK_ID, FEEDBACK_ACTION_ID).strip()
    return feedback or None


def build_edit_modal(record: ApprovalRecord, metadata: Mapping[str, Any]) -> Dict[str, Any]:
    """Build the Slack modal used to edit *record* before approving it."""

    blocks = form_for(record.resource_type).build_blocks(record.original_content or {})
    blocks.append(
        _text_input(
            block_id=FEEDBACK_BLOCK_ID,
            label="Feedback (optional)",
            initial_value="",
            placeholder="What should be improved in the future?",
            multiline=True,
            optional=True,
        )
    )

    return {
        "type": "modal",
        "callback_id": EDIT_MODAL_CALLBACK_ID,
        "private_metadata": json.dumps(dict(metadata)),
        "title": {
            "type": "plain_text",
            "text": _truncate(f"Edit {record.resource.label}", MAX_TITLE_LENGTH),
            "emoji": True,
        },
        "submit": {"type": "plain_text", "text": "Save & Approve", "emoji": True},
        "close": {"type": "plain_text", "text": "Cancel", "emoji": True},
        "blocks": blocks,
    }

"""Decoding of Slack interactivity request bodies into typed payloads."""

from __future__ import annotations

import json
from typing import Annotated, Any, Dict, List, Literal, Union
from urllib.parse import parse_qs

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from slack_hitl_engine.errors import PayloadValidationError

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json"


class _SlackModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SlackUser(_SlackModel):
    id: str = Field(..., min_length=1)
    name: str | None = None
    username: str | None = None
    team_id: str | None = None


class SlackTeam(_SlackModel):
    id: str
    domain: str | None = None


class SlackChannel(_SlackModel):
    id: str
    name: str | None = None


class SlackMessage(_SlackModel):
    ts: str
    text: str | None = None
    user: str | None = None
    thread_ts: str | None = None
    blocks: List[Dict[str, Any]] = Field(default_factory=list)


class SlackAction(_SlackModel):
    action_id: str
    type: str | None = None
    block_id: str | None = None
    value: str | None = None


class FieldState(_SlackModel):
    """Value of a single input element inside modal state."""

    type: str | None = None
    value: str | None = None
    selected_option: Dict[str, Any] | None = None


class ViewState(_SlackModel):
    values: Dict[str, Dict[str, FieldState]] = Field(default_factory=dict)


class SlackView(_SlackModel):
    id: str | None = None
    callback_id: str = ""
    private_metadata: str | None = None
    state: ViewState = Field(default_factory=ViewState)


class _InteractionBase(_SlackModel):
    user: SlackUser
    team: SlackTeam | None = None
    channel: SlackChannel | None = None
    response_url: str | None = None
    trigger_id: str | None = None

    @property
    def team_id(self) -> str | None:
        if self.team is not None:
            return self.team.id
        return self.user.team_id

    @property
    def channel_id(self) -> str | None:
        return self.channel.id if self.channel else None


class BlockActionsPayload(_InteractionBase):
    type: Literal["block_actions"]
    actions: List[SlackAction] = Field(default_factory=list)
    message: SlackMessage | None = None

    @property
    def first_action(self) -> SlackAction | None:
        return self.actions[0] if self.actions else None


class ViewSubmissionPayload(_InteractionBase):
    type: Literal["view_submission"]
    view: SlackView


class ShortcutPayload(_InteractionBase):
    type: Literal["shortcut"]
    callback_id: str = ""


class MessageActionPayload(_InteractionBase):
    type: Literal["message_action"]
    callback_id: str = ""
    message: SlackMessage | None = None


InteractionPayload = Annotated[
    Union[BlockActionsPayload, ViewSubmissionPayload, ShortcutPayload, MessageActionPayload],
    Field(discriminator="type"),
]

_PAYLOAD_ADAPTER: TypeAdapter[InteractionPayload] = TypeAdapter(InteractionPayload)


def _form_payload(raw_body: bytes) -> str | None:
    fields = parse_qs(raw_body.decode("utf-8", errors="replace"), keep_blank_values=False)
    values = fields.get("payload")
    return values[0] if values else None


def extract_payload_json(raw_body: bytes, content_type: str | None) -> str:
    """Return the JSON text of the interaction payload carried by *raw_body*.

    Slack posts form-encoded bodies with a ``payload`` field. JSON bodies are
    accepted for intermediaries that re-encode the request.
    """

    media_type = (content_type or "").split(";", 1)[0].strip().lower()

    payload: str | None
    if media_type == JSON_CONTENT_TYPE:
        try:
            parsed = json.loads(raw_body)
            if isinstance(parsed, dict) and isinstance(parsed.get("payload"), str):
                payload = parsed["payload"]
            else:
                payload = raw_body.decode("utf-8")
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise PayloadValidationError("Request body is not valid JSON.") from exc
    else:
        # Form-encoded, or a best-effort attempt for unlabelled bodies.
        payload = _form_payload(raw_body)

    if not payload:
        raise PayloadValidationError("No interaction payload found in request body.")
    return payload


def decode_interaction(payload_json: str) -> InteractionPayload:
    """Validate *payload_json* against the closed set of interaction kinds."""

    try:
        return _PAYLOAD_ADAPTER.validate_json(payload_json)
    except ValidationError as exc:
        raise PayloadValidationError(f"Unsupported interaction payload: {exc.error_count()} error(s)") from exc


def parse_private_metadata(raw: str | None) -> Dict[str, Any]:
    """Decode modal ``private_metadata``; raise ``PayloadValidationError`` if malformed."""

    if not raw:
        return {}
    try:
        metadata = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PayloadValidationError("Invalid modal metadata.") from exc
    if not isinstance(metadata, dict):
        raise PayloadValidationError("Invalid modal metadata.")
    return metadata

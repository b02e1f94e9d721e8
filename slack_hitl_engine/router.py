"""Top-level dispatch of Slack interactions.

HITL buttons and the HITL edit modal are handled here. Everything else is
delegated to handlers registered on a :class:`DomainHandlerRegistry`.
Every path answers Slack with HTTP 200 so the platform does not retry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Tuple

import structlog

from slack_hitl_engine.actions import ActionIdentifier, HITLAction, parse_action_id
from slack_hitl_engine.background import run_async
from slack_hitl_engine.errors import (
    ApprovalLifecycleError,
    PayloadValidationError,
    StoreError,
)
from slack_hitl_engine.hitl import (
    EDIT_MODAL_CALLBACK_ID,
    HITLStateMachine,
    TransitionResult,
    build_error_text,
    build_outcome_confirmation,
    form_for,
)
from slack_hitl_engine.models import ApprovalRecord
from slack_hitl_engine.payloads import (
    BlockActionsPayload,
    InteractionPayload,
    MessageActionPayload,
    ShortcutPayload,
    ViewState,
    ViewSubmissionPayload,
    parse_private_metadata,
)
from slack_hitl_engine.slack_client import ResponseUrlClient, SlackClient
from slack_hitl_engine.users import ACCOUNT_NOT_LINKED_MESSAGE, UserContext, UserContextResolver


@dataclass(frozen=True)
class InteractionResponse:
    """HTTP answer for Slack; ``body=None`` means an empty 200 acknowledgement."""

    body: Dict[str, Any] | None = None
    status: int = 200


ACK_OK = InteractionResponse({"ok": True})
ACK_EMPTY = InteractionResponse(None)

DomainHandler = Callable[[InteractionPayload], "InteractionResponse | None"]
SlackClientLookup = Callable[[str | None], "SlackClient | None"]

_FAILURE_MESSAGES = {
    HITLAction.APPROVE: "Failed to process approval. Please try again.",
    HITLAction.REJECT: "Failed to process rejection. Please try again.",
}


def view_errors(block_id: str, message: str) -> InteractionResponse:
    return InteractionResponse({"response_action": "errors", "errors": {block_id: message}})


class DomainHandlerRegistry:
    """Handlers for non-HITL interactions, registered with decorators.

    Action handlers match an ``action_id`` exactly, or by prefix when
    registered with ``prefix=True``. Exact matches win over prefixes.
    """

    def __init__(self) -> None:
        self._actions: Dict[str, DomainHandler] = {}
        self._action_prefixes: List[Tuple[str, DomainHandler]] = []
        self._views: Dict[str, DomainHandler] = {}
        self._shortcuts: Dict[str, DomainHandler] = {}
        self._message_actions: Dict[str, DomainHandler] = {}

    def action(self, action_id: str, *, prefix: bool = False) -> Callable[[DomainHandler], DomainHandler]:
        def decorator(func: DomainHandler) -> DomainHandler:
            if prefix:
                self._action_prefixes.append((action_id, func))
            else:
                self._actions[action_id] = func
            return func

        return decorator

    def view(self, callback_id: str) -> Callable[[DomainHandler], DomainHandler]:
        return self._register(self._views, callback_id)

    def shortcut(self, callback_id: str) -> Callable[[DomainHandler], DomainHandler]:
        return self._register(self._shortcuts, callback_id)

    def message_action(self, callback_id: str) -> Callable[[DomainHandler], DomainHandler]:
        return self._register(self._message_actions, callback_id)

    @staticmethod
    def _register(table: Dict[str, DomainHandler], key: str) -> Callable[[DomainHandler], DomainHandler]:
        def decorator(func: DomainHandler) -> DomainHandler:
            table[key] = func
            return func

        return decorator

    def find_action(self, action_id: str) -> DomainHandler | None:
        handler = self._actions.get(action_id)
        if handler is not None:
            return handler
        for prefix, candidate in self._action_prefixes:
            if action_id.startswith(prefix):
                return candidate
        return None

    def find_view(self, callback_id: str) -> DomainHandler | None:
        return self._views.get(callback_id)

    def find_shortcut(self, callback_id: str) -> DomainHandler | None:
        return self._shortcuts.get(callback_id)

    def find_message_action(self, callback_id: str) -> DomainHandler | None:
        return self._message_actions.get(callback_id)


def _form_values(state: ViewState) -> Dict[str, Dict[str, str | None]]:
    return {
        block_id: {action_id: field.value for action_id, field in actions.items()}
        for block_id, actions in state.values.items()
    }


class InteractionRouter:
    """Route a decoded interaction to the HITL flow or a domain handler."""

    def __init__(
        self,
        *,
        state_machine: HITLStateMachine,
        users: UserContextResolver,
        responder: ResponseUrlClient,
        slack_client_for_team: SlackClientLookup,
        registry: DomainHandlerRegistry | None = None,
        require_linked_account: bool = False,
    ) -> None:
        self._state_machine = state_machine
        self._users = users
        self._responder = responder
        self._slack_client_for_team = slack_client_for_team
        self._registry = registry or DomainHandlerRegistry()
        self._require_linked_account = require_linked_account

    @property
    def registry(self) -> DomainHandlerRegistry:
        return self._registry

    def dispatch(self, payload: InteractionPayload) -> InteractionResponse:
        log = structlog.get_logger().bind(interaction_type=payload.type, user_id=payload.user.id)
        log.info("interaction_received")

        if isinstance(payload, BlockActionsPayload):
            return self._handle_block_actions(payload)
        if isinstance(payload, ViewSubmissionPayload):
            return self._handle_view_submission(payload)
        if isinstance(payload, ShortcutPayload):
            return self._delegate(self._registry.find_shortcut(payload.callback_id), payload, ACK_OK)
        if isinstance(payload, MessageActionPayload):
            return self._delegate(self._registry.find_message_action(payload.callback_id), payload, ACK_OK)

        log.warning("interaction_type_unhandled")
        return ACK_OK

    def _delegate(
        self, handler: DomainHandler | None, payload: InteractionPayload, default: InteractionResponse
    ) -> InteractionResponse:
        if handler is None:
            structlog.get_logger().info("interaction_unmatched", interaction_type=payload.type)
            return default
        return handler(payload) or default

    def _handle_block_actions(self, payload: BlockActionsPayload) -> InteractionResponse:
        action = payload.first_action
        if action is None:
            return ACK_OK

        identifier = parse_action_id(action.action_id)
        if identifier is not None:
            return self._handle_hitl_action(payload, identifier)

        return self._delegate(self._registry.find_action(action.action_id), payload, ACK_OK)

    def _resolve_actor(self, payload: InteractionPayload) -> UserContext | None:
        return self._users.resolve(payload.user.id, payload.team_id)

    def _handle_hitl_action(self, payload: BlockActionsPayload, identifier: ActionIdentifier) -> InteractionResponse:
        log = structlog.get_logger().bind(
            approval_id=identifier.approval_id,
            hitl_action=identifier.action.value,
            resource_type=identifier.resource_type.value,
        )
        log.info("hitl_action_received")

        try:
            actor = self._resolve_actor(payload)
            if actor is None and self._require_linked_account:
                log.info("hitl_action_unlinked_account")
                self._responder.send_ephemeral(payload.response_url, text=ACCOUNT_NOT_LINKED_MESSAGE)
                return ACK_OK

            if identifier.action is HITLAction.EDIT:
                return self._open_edit_modal(payload, identifier)

            record = self._state_machine.validate_approval(identifier.approval_id)
            if not self._matches(record, identifier):
                return ACK_OK

            acting_user_id = actor.user_id if actor else None
            if identifier.action is HITLAction.APPROVE:
                result = self._state_machine.apply_approve(record, acting_user_id, slack_user_id=payload.user.id)
            else:
                result = self._state_machine.apply_reject(record, acting_user_id, slack_user_id=payload.user.id)
        except ApprovalLifecycleError as exc:
            log.info("hitl_action_refused", reason=str(exc))
            self._responder.send_ephemeral(payload.response_url, text=build_error_text(str(exc)))
            return ACK_OK
        except StoreError:
            log.exception("hitl_store_failed")
            self._responder.send_ephemeral(
                payload.response_url,
                text=build_error_text(_FAILURE_MESSAGES.get(identifier.action, "Something went wrong. Please try again.")),
            )
            return ACK_OK

        self._schedule_confirmation(payload.response_url, result, payload.user.id)
        return ACK_OK

    @staticmethod
    def _matches(record: ApprovalRecord, identifier: ActionIdentifier) -> bool:
        if record.resource_type == identifier.resource_type.value:
            return True
        structlog.get_logger().warning(
            "hitl_resource_type_mismatch",
            approval_id=record.id,
            stored=record.resource_type,
            requested=identifier.resource_type.value,
        )
        return False

    def _open_edit_modal(self, payload: BlockActionsPayload, identifier: ActionIdentifier) -> InteractionResponse:
        log = structlog.get_logger().bind(approval_id=identifier.approval_id)

        if not payload.trigger_id:
            log.warning("edit_modal_trigger_missing")
            self._responder.send_ephemeral(payload.response_url, text=build_error_text("Unable to open edit dialog."))
            return ACK_OK

        record = self._state_machine.validate_approval(identifier.approval_id)
        if not self._matches(record, identifier):
            return ACK_OK

        client = self._slack_client_for_team(payload.team_id)
        if client is None:
            log.warning("edit_modal_no_bot_token", team_id=payload.team_id)
            self._responder.send_ephemeral(
                payload.response_url, text=build_error_text("Slack is not connected for this workspace.")
            )
            return ACK_OK

        metadata = {
            "approval_id": record.id,
            "resource_type": record.resource_type,
            "channel_id": payload.channel_id,
            "message_ts": payload.message.ts if payload.message else None,
            "response_url": payload.response_url,
        }
        view = self._state_machine.begin_edit(record, metadata)

        if not client.open_view(trigger_id=payload.trigger_id, view=view):
            self._responder.send_ephemeral(
                payload.response_url, text=build_error_text("Failed to open edit dialog. Please try again.")
            )
        else:
            log.info("edit_modal_opened")
        return ACK_OK

    def _handle_view_submission(self, payload: ViewSubmissionPayload) -> InteractionResponse:
        callback_id = payload.view.callback_id
        if callback_id == EDIT_MODAL_CALLBACK_ID:
            return self._handle_edit_submission(payload)
        return self._delegate(self._registry.find_view(callback_id), payload, ACK_EMPTY)

    def _handle_edit_submission(self, payload: ViewSubmissionPayload) -> InteractionResponse:
        log = structlog.get_logger()

        try:
            metadata = parse_private_metadata(payload.view.private_metadata)
        except PayloadValidationError:
            log.warning("edit_submission_metadata_invalid")
            return ACK_EMPTY

        approval_id = metadata.get("approval_id")
        resource_type = metadata.get("resource_type")
        if not approval_id or not resource_type:
            log.warning("edit_submission_metadata_incomplete")
            return ACK_EMPTY

        log = log.bind(approval_id=approval_id, resource_type=resource_type)
        error_block = form_for(resource_type).error_block_id

        try:
            actor = self._resolve_actor(payload)
            if actor is None and self._require_linked_account:
                return view_errors(error_block, ACCOUNT_NOT_LINKED_MESSAGE)

            record = self._state_machine.validate_approval(approval_id)
            result = self._state_machine.apply_edit_submit(
                record,
                _form_values(payload.view.state),
                actor.user_id if actor else None,
                slack_user_id=payload.user.id,
            )
        except ApprovalLifecycleError as exc:
            log.info("edit_submission_refused", reason=str(exc))
            return view_errors(error_block, str(exc))
        except StoreError:
            log.exception("hitl_store_failed")
            return view_errors(error_block, "Failed to save changes. Please try again.")

        self._schedule_confirmation(metadata.get("response_url"), result, payload.user.id)
        return ACK_EMPTY

    def _schedule_confirmation(self, response_url: str | None, result: TransitionResult, slack_user_id: str) -> None:
        if not response_url:
            return
        message = build_outcome_confirmation(
            record=result.record,
            outcome=result.outcome,
            slack_user_id=slack_user_id,
            feedback=result.feedback,
            actioned_at=result.record.actioned_at,
        )
        run_async(
            self._responder.replace_original,
            response_url,
            text=message["text"],
            blocks=message["blocks"],
        )

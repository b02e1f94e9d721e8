"""Delivery of approval outcomes to the system that requested the approval."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Mapping

import httpx
import structlog

from slack_hitl_engine.models import ApprovalRecord, ApprovalStatus, CallbackType, utcnow


def build_callback_payload(
    record: ApprovalRecord,
    outcome: ApprovalStatus,
    content: Mapping[str, Any] | None,
    actioned_at: datetime | None = None,
) -> Dict[str, Any]:
    """Return the notification body sent to edge function and webhook targets."""

    return {
        "approval_id": record.id,
        "resource_type": record.resource_type,
        "resource_id": record.resource_id,
        "resource_name": record.resource_name,
        "action": outcome.value,
        "content": dict(content or {}),
        "original_content": dict(record.original_content or {}),
        "callback_metadata": dict(record.callback_metadata or {}),
        "actioned_at": (actioned_at or utcnow()).isoformat(),
    }


class CallbackDispatcher:
    """Notify an approval's callback target of its outcome.

    Delivery is attempted once. Failures are logged and reported in the
    returned status string; they are never raised, because the approval has
    already been committed by the time a callback runs.
    """

    def __init__(
        self,
        *,
        functions_base_url: str | None,
        service_role_key: str | None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._functions_base_url = (functions_base_url or "").rstrip("/")
        self._service_role_key = service_role_key or ""
        self._timeout = timeout
        self._transport = transport

    def dispatch(
        self,
        record: ApprovalRecord,
        outcome: ApprovalStatus,
        content: Mapping[str, Any] | None,
    ) -> str:
        log = structlog.get_logger().bind(
            approval_id=record.id,
            callback_type=record.callback_type,
            outcome=outcome.value,
        )

        if not record.callback_type or not record.callback_target:
            log.info("callback_skipped", reason="not_configured")
            return "skipped:not_configured"

        try:
            callback_type = CallbackType(record.callback_type)
        except ValueError:
            log.warning("callback_skipped", reason="unknown_callback_type")
            return "skipped:unknown_callback_type"

        if callback_type is CallbackType.WORKFLOW:
            log.info("callback_skipped", reason="workflow_not_implemented", target=record.callback_target)
            return "skipped:workflow_not_implemented"

        payload = build_callback_payload(record, outcome, content)
        headers = {"Content-Type": "application/json"}

        if callback_type is CallbackType.EDGE_FUNCTION:
            if not self._functions_base_url:
                log.error("callback_skipped", reason="functions_base_url_not_configured")
                return "skipped:functions_base_url_not_configured"
            url = f"{self._functions_base_url}/{record.callback_target.lstrip('/')}"
            if self._service_role_key:
                headers["Authorization"] = f"Bearer {self._service_role_key}"
        else:
            url = record.callback_target

        return self._post(url, payload, headers, log)

    def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str], log) -> str:
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            log.error("callback_failed", url=url, error=str(exc), error_type=type(exc).__name__)
            return f"failed:{type(exc).__name__}"

        if response.is_success:
            log.info("callback_delivered", url=url, status_code=response.status_code)
            return "sent"

        log.error(
            "callback_failed",
            url=url,
            status_code=response.status_code,
            body=response.text[:500],
        )
        return f"failed:http_{response.status_code}"

"""Thin wrapper utilities around the Slack Web API and response URLs."""

from __future__ import annotations

from typing import Any, Callable, Mapping, Sequence

import structlog
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError, SlackClientError
from slack_sdk.webhook import WebhookClient


class SlackClient:
    """Encapsulate Slack WebClient interactions for easier testing."""

    def __init__(self, *, token: str | None = None, client: WebClient | None = None) -> None:
        if client is None and token is None:
            raise ValueError("Either an instantiated client or a bot token must be provided.")

        self._client = client or WebClient(token=token)

    @property
    def client(self) -> WebClient:
        """Expose the underlying WebClient for advanced use cases."""

        return self._client

    def open_view(self, *, trigger_id: str, view: Mapping[str, Any]) -> bool:
        """Open a modal; return False when Slack refuses it."""

        log = structlog.get_logger().bind(callback_id=view.get("callback_id"))
        try:
            self._client.views_open(trigger_id=trigger_id, view=dict(view))
        except SlackApiError as exc:
            status_code = getattr(exc.response, "status_code", None) if getattr(exc, "response", None) else None
            error_code = exc.response.get("error") if getattr(exc, "response", None) else str(exc)
            log.error("views_open_failed", error=error_code, status_code=status_code)
            return False
        except (SlackClientError, OSError) as exc:
            log.error("views_open_failed", error=str(exc), error_type=type(exc).__name__)
            return False
        return True


class ResponseUrlClient:
    """Post ephemeral replies and message replacements to an interaction's ``response_url``."""

    def __init__(self, *, webhook_factory: Callable[[str], WebhookClient] = WebhookClient) -> None:
        self._webhook_factory = webhook_factory

    def send_ephemeral(self, response_url: str | None, *, text: str) -> bool:
        blocks = [{"type": "section", "text": {"type": "mrkdwn", "text": text}}]
        return self._send(
            response_url,
            operation="send_ephemeral",
            text=text,
            blocks=blocks,
            response_type="ephemeral",
            replace_original=False,
        )

    def replace_original(self, response_url: str | None, *, text: str, blocks: Sequence[Mapping[str, Any]]) -> bool:
        return self._send(
            response_url,
            operation="replace_original",
            text=text,
            blocks=list(blocks),
            replace_original=True,
        )

    def _send(self, response_url: str | None, *, operation: str, **payload: Any) -> bool:
        log = structlog.get_logger().bind(operation=operation)
        if not response_url:
            log.info("response_url_missing")
            return False

        try:
            response = self._webhook_factory(response_url).send(**payload)
        except (SlackClientError, OSError) as exc:
            log.error("response_url_failed", error=str(exc))
            return False

        if response.status_code != 200:
            log.error("response_url_failed", status_code=response.status_code, body=response.body)
            return False
        return True

"""Application entry point for the Slack HITL interactivity endpoint."""

from __future__ import annotations

from pathlib import Path
from typing import Callable
from uuid import uuid4

import httpx
import structlog
from flask import Flask, jsonify, request
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker
from structlog.contextvars import bind_contextvars, unbind_contextvars

from slack_hitl_engine.config import AppSettings, get_settings
from slack_hitl_engine.db import build_engine, build_session_factory, session_scope
from slack_hitl_engine.errors import AuthenticationError, PayloadValidationError
from slack_hitl_engine.hitl import ApprovalStore, CallbackDispatcher, HITLStateMachine
from slack_hitl_engine.logging_config import configure_logging
from slack_hitl_engine.payloads import decode_interaction, extract_payload_json
from slack_hitl_engine.router import DomainHandlerRegistry, InteractionRouter
from slack_hitl_engine.security import (
    SLACK_SIGNATURE_HEADER,
    SLACK_TIMESTAMP_HEADER,
    verify_slack_request,
)
from slack_hitl_engine.slack_client import ResponseUrlClient, SlackClient
from slack_hitl_engine.users import UserContextResolver


def _register_error_handlers(flask_app: Flask) -> None:
    """Register a JSON error handler that attaches a trace identifier."""

    @flask_app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):  # type: ignore[override]
        trace_id = str(uuid4())
        flask_app.logger.exception(
            "Unhandled application error", extra={"trace_id": trace_id}, exc_info=error
        )
        response = jsonify({"error": "internal_server_error", "trace_id": trace_id})
        response.status_code = 500
        return response


def _client_lookup(settings: AppSettings) -> Callable[[str | None], SlackClient | None]:
    """Return the bot client used for a workspace.

    A single configured bot token serves every workspace; per-organization
    token storage lives outside this service.
    """

    def lookup(team_id: str | None) -> SlackClient | None:
        if not settings.bot_token:
            return None
        return SlackClient(token=settings.bot_token)

    return lookup


def build_router(
    settings: AppSettings,
    session_factory: sessionmaker[Session],
    *,
    registry: DomainHandlerRegistry | None = None,
    callback_transport: httpx.BaseTransport | None = None,
) -> InteractionRouter:
    """Wire the HITL components for *settings*."""

    callbacks = CallbackDispatcher(
        functions_base_url=settings.functions_base_url,
        service_role_key=settings.service_role_key,
        timeout=settings.callback_timeout_seconds,
        transport=callback_transport,
    )
    state_machine = HITLStateMachine(ApprovalStore(session_factory), callbacks)
    return InteractionRouter(
        state_machine=state_machine,
        users=UserContextResolver(session_factory),
        responder=ResponseUrlClient(),
        slack_client_for_team=_client_lookup(settings),
        registry=registry,
        require_linked_account=settings.require_linked_account,
    )


_LOGGING_CONFIGURED = False


def _load_version() -> str:
    version_file = Path(__file__).resolve().parent / "VERSION"
    if version_file.exists():
        return version_file.read_text(encoding="utf-8").strip()
    return "unknown"


def create_app(
    settings: AppSettings | None = None,
    *,
    registry: DomainHandlerRegistry | None = None,
    session_factory: sessionmaker[Session] | None = None,
    callback_transport: httpx.BaseTransport | None = None,
) -> Flask:
    """Create and configure the Flask application."""

    global _LOGGING_CONFIGURED

    settings = settings or get_settings()
    if not _LOGGING_CONFIGURED:
        configure_logging(settings.log_level)
        _LOGGING_CONFIGURED = True

    if session_factory is None:
        session_factory = build_session_factory(build_engine(settings.database_url))

    router = build_router(
        settings,
        session_factory,
        registry=registry,
        callback_transport=callback_transport,
    )

    flask_app = Flask(__name__)
    flask_app.config["APP_VERSION"] = _load_version()
    flask_app.extensions["hitl_router"] = router
    flask_app.logger.setLevel(settings.log_level)

    _register_error_handlers(flask_app)

    if not settings.signing_secret and settings.allow_insecure_signatures:
        structlog.get_logger().warning("insecure_signatures_enabled")

    @flask_app.route("/slack/interactive", methods=["POST"])
    def slack_interactive():
        trace_id = str(uuid4())
        bind_contextvars(trace_id=trace_id)
        log = structlog.get_logger()

        try:
            # Signatures cover the raw bytes; read them before any form parsing.
            raw_body = request.get_data(cache=True)

            try:
                verify_slack_request(
                    signing_secret=settings.signing_secret,
                    timestamp=request.headers.get(SLACK_TIMESTAMP_HEADER, ""),
                    body=raw_body,
                    signature=request.headers.get(SLACK_SIGNATURE_HEADER, ""),
                    tolerance=settings.signature_tolerance_seconds,
                    allow_insecure=settings.allow_insecure_signatures,
                )
            except AuthenticationError:
                log.warning("signature_rejected")
                response = jsonify({"error": "invalid_signature"})
                response.status_code = 401
                return response

            try:
                payload_json = extract_payload_json(raw_body, request.content_type)
            except PayloadValidationError as exc:
                log.warning("payload_missing", error=str(exc))
                response = jsonify({"error": "no_payload"})
                response.status_code = 400
                return response

            try:
                payload = decode_interaction(payload_json)
            except PayloadValidationError as exc:
                log.warning("payload_rejected", error=str(exc))
                return jsonify({"ok": True}), 200

            result = router.dispatch(payload)
            if result.body is None:
                return "", result.status
            return jsonify(result.body), result.status
        finally:
            unbind_contextvars("trace_id")

    @flask_app.route("/healthz", methods=["GET"])
    def healthz():
        health: dict[str, object] = {"ok": True}
        health["version"] = flask_app.config.get("APP_VERSION", "unknown")
        health["config"] = "valid"
        health["signing"] = "enabled" if settings.signing_secret else "disabled"

        try:
            with session_scope(session_factory) as session:
                session.execute(text("SELECT 1"))
            health["db"] = "up"
        except Exception as exc:
            health["db"] = "down"
            health["db_error"] = str(exc)
            health["ok"] = False

        status = 200 if health["ok"] else 503
        return jsonify(health), status

    return flask_app


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    application = create_app()
    application.run(host="0.0.0.0", port=3000, debug=True)

"""Resolution of Slack identities to internal users."""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from slack_hitl_engine.db import session_scope
from slack_hitl_engine.errors import StoreError
from slack_hitl_engine.models import SlackOrgSettings, SlackUserMapping

ACCOUNT_NOT_LINKED_MESSAGE = (
    "Your Slack account is not linked yet. Connect it from Settings > Integrations and try again."
)


@dataclass(frozen=True)
class UserContext:
    user_id: str
    org_id: str | None = None


class UserContextResolver:
    """Look up the internal user behind a Slack user id.

    A missing mapping is an expected outcome and yields ``None``.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def resolve(self, slack_user_id: str, team_id: str | None = None) -> UserContext | None:
        try:
            return self._lookup(slack_user_id, team_id)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to resolve Slack user {slack_user_id}") from exc

    def _lookup(self, slack_user_id: str, team_id: str | None) -> UserContext | None:
        log = structlog.get_logger().bind(slack_user_id=slack_user_id, team_id=team_id)

        with session_scope(self._session_factory) as session:
            stmt = select(SlackUserMapping).where(SlackUserMapping.slack_user_id == slack_user_id)

            if team_id:
                org_id = session.execute(
                    select(SlackOrgSettings.org_id).where(
                        SlackOrgSettings.slack_team_id == team_id,
                        SlackOrgSettings.is_connected.is_(True),
                    )
                ).scalar_one_or_none()
                if org_id is not None:
                    stmt = stmt.where(SlackUserMapping.org_id == org_id)

            mapping = session.execute(stmt.order_by(SlackUserMapping.id).limit(1)).scalar_one_or_none()

            if mapping is None:
                log.info("user_mapping_missing")
                return None

            return UserContext(user_id=mapping.internal_user_id, org_id=mapping.org_id)

"""Mark pending approvals whose deadline has passed as expired.

Usage:
    python scripts/expire_approvals.py

Expiry is already enforced when a reviewer clicks a button; this sweep only
keeps stored statuses tidy and can be run from cron.
"""

from __future__ import annotations

import structlog

from slack_hitl_engine import configure_logging, get_session_factory, get_settings
from slack_hitl_engine.hitl import ApprovalStore


def expire_approvals() -> int:
    expired = ApprovalStore(get_session_factory()).expire_stale()
    structlog.get_logger().info("approvals_expired", count=expired)
    return expired


if __name__ == "__main__":
    configure_logging(get_settings().log_level)
    expire_approvals()

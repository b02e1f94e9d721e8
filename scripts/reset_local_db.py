"""Utility script to reset the local approvals database.

Usage:
    python scripts/reset_local_db.py

Environment:
    Ensure DATABASE_URL is available in the current shell before running
    this script. Every HITL table is dropped and recreated.
"""

from __future__ import annotations

import structlog

from slack_hitl_engine import configure_logging
from slack_hitl_engine.db import get_engine
from slack_hitl_engine.models import Base


def reset_database() -> None:
    engine = get_engine()
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    structlog.get_logger().info("database_reset", tables=sorted(Base.metadata.tables))


if __name__ == "__main__":
    configure_logging()
    reset_database()

"""Slack HITL engine package initialisation."""

from .background import run_async  # noqa: F401
from .config import AppSettings, get_settings  # noqa: F401
from .db import Base, build_engine, build_session_factory, get_engine, get_session_factory, session_scope  # noqa: F401
from .logging_config import configure_logging  # noqa: F401
from .models import ApprovalHistory, ApprovalRecord, SlackOrgSettings, SlackUserMapping  # noqa: F401

__all__ = [
    "AppSettings",
    "get_settings",
    "run_async",
    "Base",
    "build_engine",
    "build_session_factory",
    "get_engine",
    "get_session_factory",
    "session_scope",
    "ApprovalRecord",
    "ApprovalHistory",
    "SlackOrgSettings",
    "SlackUserMapping",
    "configure_logging",
]

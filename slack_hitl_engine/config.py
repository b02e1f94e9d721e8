"""Pydantic-based configuration helpers for the Slack HITL engine."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Iterable, List

from pydantic import BaseModel, Field, ValidationError, field_validator


class AppSettings(BaseModel):
    """Settings required to verify, route and act on Slack interactions."""

    database_url: str = Field(..., alias="DATABASE_URL")
    signing_secret: str | None = Field(None, alias="SLACK_SIGNING_SECRET")
    allow_insecure_signatures: bool = Field(False, alias="ALLOW_INSECURE_SLACK_SIGNATURES")
    bot_token: str | None = Field(None, alias="SLACK_BOT_TOKEN")
    functions_base_url: str | None = Field(None, alias="FUNCTIONS_BASE_URL")
    service_role_key: str | None = Field(None, alias="SERVICE_ROLE_KEY")
    callback_timeout_seconds: float = Field(10.0, alias="CALLBACK_TIMEOUT_SECONDS")
    signature_tolerance_seconds: int = Field(300, alias="SIGNATURE_TOLERANCE_SECONDS")
    require_linked_account: bool = Field(False, alias="HITL_REQUIRE_LINKED_ACCOUNT")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    @field_validator("signing_secret", "bot_token", "functions_base_url", "service_role_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        trimmed = str(value).strip()
        return trimmed or None

    @field_validator("functions_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        return value.rstrip("/") if value else value

    @field_validator("callback_timeout_seconds", "signature_tolerance_seconds")
    @classmethod
    def _ensure_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Timeouts and tolerances must be greater than zero")
        return value

    @field_validator("log_level")
    @classmethod
    def _normalise_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"


def _format_missing(fields: Iterable[str]) -> str:
    """Return a human-friendly comma-separated list of missing env vars."""

    unique: List[str] = []
    for field in fields:
        if field not in unique:
            unique.append(field)
    return ", ".join(unique)


@lru_cache()
def get_settings() -> AppSettings:
    """Fetch and cache settings from environment variables."""

    try:
        return AppSettings.model_validate(os.environ)
    except ValidationError as exc:  # pragma: no cover - exercised via tests
        missing = [str(error["loc"][0]) for error in exc.errors() if error["type"] == "missing"]
        if not missing:
            raise RuntimeError(f"Invalid configuration: {exc}") from exc
        message = (
            "Missing required environment variables: "
            f"{_format_missing(missing)}"
        )
        raise RuntimeError(message) from exc

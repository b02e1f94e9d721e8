"""Utilities for validating Slack request signatures."""

from __future__ import annotations

import hmac
import time
from hashlib import sha256

import structlog

from slack_hitl_engine.errors import AuthenticationError


SLACK_SIGNATURE_HEADER = "X-Slack-Signature"
SLACK_TIMESTAMP_HEADER = "X-Slack-Request-Timestamp"
VERSION = "v0"
DEFAULT_TOLERANCE = 60 * 5  # five minutes


def _as_bytes(value: str | bytes) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


def compute_signature(signing_secret: str, timestamp: str, body: str | bytes) -> str:
    """Return Slack-compatible signature for the provided raw body."""

    basestring = f"{VERSION}:{timestamp}:".encode("utf-8") + _as_bytes(body)
    secret = signing_secret.encode("utf-8")
    digest = hmac.new(secret, basestring, sha256).hexdigest()
    return f"{VERSION}={digest}"


def is_valid_slack_request(
    *,
    signing_secret: str | None,
    timestamp: str,
    body: str | bytes,
    signature: str,
    tolerance: int = DEFAULT_TOLERANCE,
    allow_insecure: bool = False,
    now: float | None = None,
) -> bool:
    """Validate Slack signature and timestamp to guard against replay attacks.

    *body* must be the exact bytes received; decoding it first can change the
    byte representation and break verification.
    """

    log = structlog.get_logger()

    if not signing_secret:
        if allow_insecure:
            log.warning("signature_check_bypassed", reason="insecure_mode_enabled")
            return True
        log.error("signature_check_refused", reason="signing_secret_not_configured")
        return False

    if not timestamp or not signature:
        return False

    try:
        request_ts = int(timestamp)
    except (TypeError, ValueError):
        return False

    current_ts = int(time.time() if now is None else now)
    if abs(current_ts - request_ts) > tolerance:
        log.info("signature_stale", request_ts=request_ts, skew=current_ts - request_ts)
        return False

    expected = compute_signature(signing_secret, timestamp, body)
    # Header values are untrusted and may carry non-ASCII text.
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8", "surrogateescape"))


def verify_slack_request(
    *,
    signing_secret: str | None,
    timestamp: str,
    body: str | bytes,
    signature: str,
    tolerance: int = DEFAULT_TOLERANCE,
    allow_insecure: bool = False,
) -> None:
    """Raise ``AuthenticationError`` unless the request is authentic and fresh."""

    if not is_valid_slack_request(
        signing_secret=signing_secret,
        timestamp=timestamp,
        body=body,
        signature=signature,
        tolerance=tolerance,
        allow_insecure=allow_insecure,
    ):
        raise AuthenticationError("Invalid or stale Slack request signature.")

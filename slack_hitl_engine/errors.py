"""Exception taxonomy for Slack interaction handling."""

from __future__ import annotations


class InteractionError(Exception):
    """Base class for errors raised while handling an interaction."""


class AuthenticationError(InteractionError):
    """Raised when a request signature is missing, stale or wrong."""


class PayloadValidationError(InteractionError):
    """Raised when an interaction payload cannot be decoded or validated."""


class ApprovalLifecycleError(InteractionError):
    """Raised when an approval cannot be actioned in its current state.

    ``user_message`` is safe to show to the Slack user.
    """

    user_message = "This approval is no longer valid."

    def __init__(self, approval_id: str, message: str | None = None) -> None:
        self.approval_id = approval_id
        super().__init__(message or self.user_message)


class ApprovalNotFoundError(ApprovalLifecycleError):
    user_message = "Approval not found"


class ApprovalAlreadyActionedError(ApprovalLifecycleError):
    user_message = "Approval already actioned"

    def __init__(self, approval_id: str, status: str | None = None) -> None:
        self.status = status
        message = f"Approval already {status}" if status else None
        super().__init__(approval_id, message)


class ApprovalExpiredError(ApprovalLifecycleError):
    user_message = "Approval has expired"


class StoreError(InteractionError):
    """Raised when a backing store fails to read or write."""


class ApprovalStoreError(StoreError):
    """Raised when the approval store fails to read or write."""

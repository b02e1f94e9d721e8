"""Human-in-the-loop approval lifecycle, forms and outcome delivery."""

from .callbacks import CallbackDispatcher, build_callback_payload
from .forms import EDIT_FORMS, EDIT_MODAL_CALLBACK_ID, build_edit_modal, form_for
from .messages import build_error_text, build_outcome_confirmation
from .state import HITLStateMachine, TransitionResult
from .store import ApprovalStore

__all__ = [
    "ApprovalStore",
    "CallbackDispatcher",
    "EDIT_FORMS",
    "EDIT_MODAL_CALLBACK_ID",
    "HITLStateMachine",
    "TransitionResult",
    "build_callback_payload",
    "build_edit_modal",
    "build_error_text",
    "build_outcome_confirmation",
    "form_for",
]

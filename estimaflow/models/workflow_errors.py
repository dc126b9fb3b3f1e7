"""
Workflow Error Taxonomy.

Typed exceptions raised by the approval engine and the enumeration of
their stable codes.  Services catch :class:`WorkflowError` and convert it
into a :class:`~estimaflow.models.service_models.ServiceResult` so the
calling layer never has to parse exception messages.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Optional


class WorkflowErrorCode(StrEnum):
    """Exhaustive enumeration of workflow failure categories."""

    INVALID_TRANSITION = "invalid_transition"
    TERMINAL_STATE = "terminal_state"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    MISSING_INVOICE_FILE = "missing_invoice_file"
    UNKNOWN_STATUS = "unknown_status"
    NOT_FOUND = "not_found"


class WorkflowError(Exception):
    """Base class for every error the approval engine reports."""

    code: WorkflowErrorCode
    status_code: int = 400
    user_message: str = "The request could not be completed."

    def __init__(self, message: str, estimation_id: Optional[str] = None) -> None:
        self.message: str = message
        self.estimation_id: Optional[str] = estimation_id
        super().__init__(self.message)


class InvalidTransition(WorkflowError):
    """The acting role is not the one required at the current status."""

    code = WorkflowErrorCode.INVALID_TRANSITION
    status_code = 403
    user_message = "You cannot act on this item right now."


class TerminalState(WorkflowError):
    """The estimation is already paid."""

    code = WorkflowErrorCode.TERMINAL_STATE
    status_code = 409
    user_message = "This estimation is already paid."


class ConcurrentModification(WorkflowError):
    """Another approver committed first; the caller saw a stale version."""

    code = WorkflowErrorCode.CONCURRENT_MODIFICATION
    status_code = 409
    user_message = "This estimation changed in the meantime. Please refresh and retry."


class MissingInvoiceFile(WorkflowError):
    """The invoice upload gate needs both the PDF and the XML reference."""

    code = WorkflowErrorCode.MISSING_INVOICE_FILE
    status_code = 422
    user_message = "Both the PDF and the XML invoice files are required."


class UnknownStatus(WorkflowError):
    """A stored status is not one of the eight workflow values.

    Never produced by the engine itself; seeing it means the stored data
    is corrupt.
    """

    code = WorkflowErrorCode.UNKNOWN_STATUS
    status_code = 500
    user_message = "This estimation has an invalid status. Contact support."


class EstimationNotFound(WorkflowError):
    """No estimation exists with the requested id."""

    code = WorkflowErrorCode.NOT_FOUND
    status_code = 404
    user_message = "Estimation not found."


class ProjectNotFound(WorkflowError):
    """No project exists with the requested id."""

    code = WorkflowErrorCode.NOT_FOUND
    status_code = 404
    user_message = "Project not found."

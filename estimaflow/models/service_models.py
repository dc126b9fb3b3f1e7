"""
Service Layer Data Transfer Objects.

Pydantic models for validated input/output at service boundaries.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from estimaflow.models.enums import AppRole, EstimationStatus, ProjectStatus
from estimaflow.models.workflow_errors import WorkflowError, WorkflowErrorCode

T = TypeVar("T")

__all__ = [
    "ApproverInfo",
    "DelayedStep",
    "InheritedSignature",
    "NotificationRequest",
    "ProjectSummary",
    "ServiceResult",
    "TransitionOutcome",
]


# ---------------------------------------------------------------------------
# Workflow engine models
# ---------------------------------------------------------------------------

class InheritedSignature(BaseModel):
    """An automatic attribution for an optional role that was skipped."""

    model_config = ConfigDict(frozen=True)

    role: AppRole
    approved_at: datetime
    signed_by: str


class TransitionOutcome(BaseModel):
    """What a committed transition did to an estimation."""

    estimation_id: str
    previous_status: Optional[EstimationStatus] = None
    new_status: EstimationStatus
    acting_role: AppRole
    inherited: list[InheritedSignature] = Field(default_factory=list)
    version: int
    notify_role: Optional[AppRole] = None
    notification_queued: bool = False


class NotificationRequest(BaseModel):
    """A queued request to tell *recipient_role* that work is waiting."""

    estimation_id: str
    new_status: EstimationStatus
    recipient_role: AppRole
    actor_name: Optional[str] = None
    actor_role: Optional[AppRole] = None


# ---------------------------------------------------------------------------
# Audit history models
# ---------------------------------------------------------------------------

class ApproverInfo(BaseModel):
    """Who signed an optional approval step, and whether it was inherited."""

    role: AppRole
    approved: bool
    approver_name: Optional[str] = None
    approved_at: Optional[datetime] = None
    is_inherited: bool = False


class DelayedStep(BaseModel):
    """A history step that took longer than the delay threshold."""

    status: EstimationStatus
    role: AppRole
    user_name: str
    previous_timestamp: datetime
    timestamp: datetime
    hours_elapsed: float


class ProjectSummary(BaseModel):
    """Aggregated view of a project for the support dashboard."""

    status: ProjectStatus
    estimation_count: int = 0
    active_count: int = 0
    total_amount: Decimal = Decimal("0")
    last_activity: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Generic service models
# ---------------------------------------------------------------------------

class ServiceResult(BaseModel, Generic[T]):
    """
    Standard service return envelope.

    All service methods return this, providing a consistent contract for
    the calling layer.  ``error_code`` carries the
    :class:`WorkflowErrorCode` of a workflow failure so callers can branch
    on it (e.g. reload and retry on ``concurrent_modification``).
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[WorkflowErrorCode] = None
    status_code: int = 200

    @classmethod
    def from_error(cls, exc: WorkflowError) -> "ServiceResult[T]":
        """Build a failed result from a workflow exception."""
        return cls(
            success=False,
            error=exc.user_message,
            error_code=exc.code,
            status_code=exc.status_code,
        )

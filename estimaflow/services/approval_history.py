"""
Approval History Helpers.

Read-only views over estimations and their approval history, used by the
timeline, the approver inbox and the support dashboard.  The module-level
helpers are pure functions; :class:`ApprovalHistoryService` feeds them
from the repository.  Nothing here writes.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional

from estimaflow.config import AppConfig
from estimaflow.logger import StructuredLogger
from estimaflow.models.enums import AppRole, EstimationStatus, ProjectStatus
from estimaflow.models.estimation import ApprovalHistoryEntry, Estimation
from estimaflow.models.service_models import (
    ApproverInfo,
    DelayedStep,
    ProjectSummary,
    ServiceResult,
)
from estimaflow.models.workflow_errors import WorkflowError
from estimaflow.repositories.estimation_repository import EstimationRepository
from estimaflow.services.base_service import BaseService
from estimaflow.services.signature_inheritance import SIGNATURE_FIELDS
from estimaflow.services.workflow_rules import GATED_STATUS_ROLES, required_role

DEFAULT_DELAY_THRESHOLD_HOURS: float = 24.0

_STATUS_BY_GATED_ROLE: dict[AppRole, EstimationStatus] = {
    role: status for status, role in GATED_STATUS_ROLES.items()
}


def approver_for(estimation: Estimation, role: AppRole) -> ApproverInfo:
    """Who signed the optional step owned by *role*.

    An inherited ``signed_by`` wins; otherwise the most recent history
    entry with the status *role* produces is used.

    Raises:
        ValueError: If *role* is not one of the optional approvers.
    """
    if role not in SIGNATURE_FIELDS:
        raise ValueError(f"{role} is not an optional approver role")

    approved_field, signed_field = SIGNATURE_FIELDS[role]
    approved_at = getattr(estimation, approved_field)
    signed_by: Optional[str] = getattr(estimation, signed_field)

    if signed_by:
        return ApproverInfo(
            role=role,
            approved=True,
            approver_name=signed_by,
            approved_at=approved_at,
            is_inherited=True,
        )

    status = _STATUS_BY_GATED_ROLE[role]
    entry = next(
        (item for item in reversed(estimation.history) if item.status == status),
        None,
    )
    if entry is not None:
        return ApproverInfo(
            role=role,
            approved=True,
            approver_name=entry.user_name,
            approved_at=approved_at or entry.timestamp,
        )

    return ApproverInfo(role=role, approved=approved_at is not None, approved_at=approved_at)


def approval_summary(estimation: Estimation) -> dict[AppRole, ApproverInfo]:
    """:func:`approver_for` for every optional approver, in chain order."""
    return {role: approver_for(estimation, role) for role in SIGNATURE_FIELDS}


def detect_delays(
    history: list[ApprovalHistoryEntry],
    threshold_hours: float = DEFAULT_DELAY_THRESHOLD_HOURS,
) -> list[DelayedStep]:
    """Steps that came more than *threshold_hours* after the previous one.

    The gap must be strictly greater than the threshold; exactly 24 hours
    is on time.
    """
    ordered = sorted(history, key=lambda item: item.timestamp)
    delays: list[DelayedStep] = []
    for previous, current in zip(ordered, ordered[1:]):
        hours = (current.timestamp - previous.timestamp).total_seconds() / 3600
        if hours > threshold_hours:
            delays.append(
                DelayedStep(
                    status=current.status,
                    role=current.role,
                    user_name=current.user_name,
                    previous_timestamp=previous.timestamp,
                    timestamp=current.timestamp,
                    hours_elapsed=round(hours, 2),
                )
            )
    return delays


def pending_for_role(estimations: Iterable[Estimation], role: AppRole) -> list[Estimation]:
    """Estimations waiting on *role* (the approver's inbox)."""
    return [
        estimation
        for estimation in estimations
        if not estimation.is_paid
        and required_role(estimation.status, estimation.activation) == role
    ]


def project_status(estimations: Iterable[Estimation]) -> ProjectStatus:
    """``New`` without estimations, ``Finished`` once all are paid."""
    statuses = [estimation.status for estimation in estimations]
    if not statuses:
        return ProjectStatus.NEW
    if all(status == EstimationStatus.PAID for status in statuses):
        return ProjectStatus.FINISHED
    return ProjectStatus.ACTIVE


def project_summary(estimations: Iterable[Estimation]) -> ProjectSummary:
    estimations = list(estimations)
    activity = [
        estimation.updated_at or estimation.created_at
        for estimation in estimations
        if estimation.updated_at or estimation.created_at
    ]
    return ProjectSummary(
        status=project_status(estimations),
        estimation_count=len(estimations),
        active_count=sum(1 for estimation in estimations if not estimation.is_paid),
        total_amount=sum((estimation.amount for estimation in estimations), Decimal("0")),
        last_activity=max(activity) if activity else None,
    )


# ---------------------------------------------------------------------------
# Service wrapper
# ---------------------------------------------------------------------------

class ApprovalHistoryService(BaseService):
    """Repository-backed access to the helpers above."""

    def __init__(
        self,
        estimation_repo: EstimationRepository,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._estimation_repo = estimation_repo
        self._threshold_hours: float = config.DELAY_THRESHOLD_HOURS

    def delays_for(self, estimation_id: str) -> ServiceResult[list[DelayedStep]]:
        """Delayed steps of one estimation, using the configured threshold."""
        try:
            history = self._estimation_repo.list_history(estimation_id)
        except WorkflowError as exc:
            return ServiceResult.from_error(exc)
        return ServiceResult(success=True, data=detect_delays(history, self._threshold_hours))

    def inbox(self, project_id: str, role: AppRole) -> ServiceResult[list[Estimation]]:
        """Estimations of a project currently waiting on *role*."""
        try:
            estimations = self._estimation_repo.list_by_project(project_id)
        except WorkflowError as exc:
            self._logger.error("Inbox for project %s failed: %s", project_id, exc.message)
            return ServiceResult.from_error(exc)
        return ServiceResult(success=True, data=pending_for_role(estimations, role))

    def project_overview(self, project_id: str) -> ServiceResult[ProjectSummary]:
        try:
            estimations = self._estimation_repo.list_by_project(project_id)
        except WorkflowError as exc:
            self._logger.error("Overview for project %s failed: %s", project_id, exc.message)
            return ServiceResult.from_error(exc)
        return ServiceResult(success=True, data=project_summary(estimations))

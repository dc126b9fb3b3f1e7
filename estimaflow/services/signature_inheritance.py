"""
Signature Inheritance Calculator.

When a jump skips one or more disabled optional approvers, each skipped
step is still attributed to whoever performed the real approval, so the
record never silently shows an empty signature.

Pure functions: the calculator does not look at what is already stored.
:func:`apply_inherited_signatures` is the write-side guard that keeps each
``(approved_at, signed_by)`` pair set at most once.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from estimaflow.models.enums import AppRole, EstimationStatus
from estimaflow.models.estimation import Estimation, RoleActivation
from estimaflow.models.service_models import InheritedSignature
from estimaflow.services.workflow_rules import (
    GATED_STATUS_ROLES,
    index_of,
    is_step_enabled,
)

SIGNATURE_FIELDS: dict[AppRole, tuple[str, str]] = {
    AppRole.RESIDENTE: ("resident_approved_at", "resident_signed_by"),
    AppRole.SUPERINTENDENTE: ("superintendent_approved_at", "superintendent_signed_by"),
    AppRole.LIDER_PROYECTO: ("leader_approved_at", "leader_signed_by"),
}


def inherited_signatures(
    previous: Optional[EstimationStatus],
    new: EstimationStatus,
    activation: RoleActivation,
    signer_name: str,
    at: datetime,
) -> tuple[InheritedSignature, ...]:
    """Compute the inherited signatures produced by a ``previous -> new`` jump.

    Args:
        previous: Status before the transition (``None`` for the virtual
            position before ``registered``).
        new: Status returned by the transition resolver.
        activation: Role activation snapshot used for the transition.
        signer_name: Display name of the acting approver.
        at: Timestamp of the approval.

    Returns:
        One :class:`InheritedSignature` per gated status lying strictly
        between *previous* and *new* whose role is disabled, in workflow
        order.  Empty for a plain one-step transition.
    """
    low: int = -1 if previous is None else index_of(previous)
    high: int = index_of(new)

    return tuple(
        InheritedSignature(role=role, approved_at=at, signed_by=signer_name)
        for status, role in GATED_STATUS_ROLES.items()
        if low < index_of(status) < high and not is_step_enabled(status, activation)
    )


def apply_inherited_signatures(
    estimation: Estimation,
    signatures: tuple[InheritedSignature, ...],
) -> list[AppRole]:
    """Write *signatures* onto *estimation*, skipping pairs already set.

    Returns:
        The roles whose pair was actually written.
    """
    written: list[AppRole] = []
    for signature in signatures:
        approved_field, signed_field = SIGNATURE_FIELDS[signature.role]
        if getattr(estimation, approved_field) is not None or getattr(estimation, signed_field):
            continue
        setattr(estimation, approved_field, signature.approved_at)
        setattr(estimation, signed_field, signature.signed_by)
        written.append(signature.role)
    return written

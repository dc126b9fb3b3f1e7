"""
Workflow Rules Engine.

Pure-function module holding the estimation status ordering, the
transition resolver and the status/role lookup tables.

Functions are stateless: status + role activation in, status or role out.
No clock, no I/O, so the same persisted state always resolves the same way.

Gating
------
``auth_resident``, ``auth_super`` and ``auth_leader`` record the signature
of an optional approver and are skipped when that approver is disabled.
The role that must act while an estimation rests at a status is the owner
of whatever status the resolver would produce next, so with every role
active the chain reads::

    registered          -> residente
    auth_resident       -> superintendente
    auth_super          -> lider_proyecto
    auth_leader         -> compras
    validated_compras   -> contratista (invoice upload)
    factura_subida      -> finanzas
    validated_finanzas  -> pagos
"""

from __future__ import annotations

from typing import Optional

from estimaflow.models.enums import AppRole, EstimationStatus, parse_status
from estimaflow.models.estimation import RoleActivation
from estimaflow.models.workflow_errors import TerminalState, UnknownStatus

__all__ = [
    "APPROVED_AT_FIELDS",
    "GATED_STATUS_ROLES",
    "STATUS_OWNER",
    "STATUS_SEQUENCE",
    "index_of",
    "initial_status",
    "is_at_or_past",
    "is_before",
    "is_step_enabled",
    "next_status",
    "notification_recipient",
    "parse_status",
    "progress_percentage",
    "required_role",
    "status_owner",
    "step_position",
]

# ---------------------------------------------------------------------------
# Status ordering
# ---------------------------------------------------------------------------

STATUS_SEQUENCE: tuple[EstimationStatus, ...] = tuple(EstimationStatus)

_STATUS_INDEX: dict[EstimationStatus, int] = {
    status: position for position, status in enumerate(STATUS_SEQUENCE)
}

# ---------------------------------------------------------------------------
# Lookup tables
# ---------------------------------------------------------------------------

STATUS_OWNER: dict[EstimationStatus, AppRole] = {
    EstimationStatus.REGISTERED: AppRole.CONTRATISTA,
    EstimationStatus.AUTH_RESIDENT: AppRole.RESIDENTE,
    EstimationStatus.AUTH_SUPER: AppRole.SUPERINTENDENTE,
    EstimationStatus.AUTH_LEADER: AppRole.LIDER_PROYECTO,
    EstimationStatus.VALIDATED_COMPRAS: AppRole.COMPRAS,
    EstimationStatus.FACTURA_SUBIDA: AppRole.CONTRATISTA,
    EstimationStatus.VALIDATED_FINANZAS: AppRole.FINANZAS,
    EstimationStatus.PAID: AppRole.PAGOS,
}
"""The role whose action produces each status."""

GATED_STATUS_ROLES: dict[EstimationStatus, AppRole] = {
    EstimationStatus.AUTH_RESIDENT: AppRole.RESIDENTE,
    EstimationStatus.AUTH_SUPER: AppRole.SUPERINTENDENTE,
    EstimationStatus.AUTH_LEADER: AppRole.LIDER_PROYECTO,
}
"""Statuses that can be skipped, keyed to the optional role they record."""

_GATE_FLAGS: dict[EstimationStatus, str] = {
    EstimationStatus.AUTH_RESIDENT: "resident_active",
    EstimationStatus.AUTH_SUPER: "superintendent_active",
    EstimationStatus.AUTH_LEADER: "leader_active",
}

APPROVED_AT_FIELDS: dict[AppRole, str] = {
    AppRole.RESIDENTE: "resident_approved_at",
    AppRole.SUPERINTENDENTE: "superintendent_approved_at",
    AppRole.LIDER_PROYECTO: "leader_approved_at",
    AppRole.COMPRAS: "compras_approved_at",
    AppRole.FINANZAS: "finanzas_approved_at",
    AppRole.PAGOS: "paid_at",
}
"""Estimation timestamp column stamped when each approver role acts."""


# ---------------------------------------------------------------------------
# Ordering helpers
# ---------------------------------------------------------------------------

def index_of(status: EstimationStatus) -> int:
    """Return the ordinal (0..7) of *status* in the workflow.

    Raises:
        UnknownStatus: If *status* is not one of the eight workflow values.
    """
    try:
        return _STATUS_INDEX[status]
    except (KeyError, TypeError):
        raise UnknownStatus(f"Unknown estimation status: {status!r}") from None


def is_at_or_past(status: EstimationStatus, step: EstimationStatus) -> bool:
    """``True`` when *status* has reached *step* or gone beyond it."""
    return index_of(status) >= index_of(step)


def is_before(status: EstimationStatus, step: EstimationStatus) -> bool:
    """``True`` when *status* has not reached *step* yet."""
    return index_of(status) < index_of(step)


def step_position(status: EstimationStatus) -> int:
    """One-based step number of *status* ("step N of 8")."""
    return index_of(status) + 1


def progress_percentage(status: EstimationStatus) -> int:
    """Share of the workflow completed at *status*, as a whole percentage."""
    return round(step_position(status) * 100 / len(STATUS_SEQUENCE))


# ---------------------------------------------------------------------------
# Transition resolver
# ---------------------------------------------------------------------------

def is_step_enabled(status: EstimationStatus, activation: RoleActivation) -> bool:
    """``False`` only for a gated status whose optional role is disabled."""
    flag: Optional[str] = _GATE_FLAGS.get(status)
    if flag is None:
        return True
    return bool(getattr(activation, flag))


def next_status(
    current: Optional[EstimationStatus],
    activation: RoleActivation,
) -> EstimationStatus:
    """Return the first enabled status strictly after *current*.

    Args:
        current: The status the estimation rests at, or ``None`` for the
            virtual position before ``registered`` (used at creation).
        activation: The role activation snapshot to honour.

    Raises:
        TerminalState: If *current* is ``paid``.
        UnknownStatus: If *current* is not a workflow status.
    """
    if current is None:
        start: int = 0
    else:
        start = index_of(current) + 1
        if start >= len(STATUS_SEQUENCE):
            raise TerminalState("Estimation is already paid; no next status exists.")

    for candidate in STATUS_SEQUENCE[start:]:
        if is_step_enabled(candidate, activation):
            return candidate

    # ``paid`` is never gated, so the walk always returns above.
    raise TerminalState("No enabled status remains after the current one.")


def status_owner(status: EstimationStatus) -> AppRole:
    """Role whose action produces *status*."""
    try:
        return STATUS_OWNER[status]
    except KeyError:
        raise UnknownStatus(f"Unknown estimation status: {status!r}") from None


def initial_status(activation: RoleActivation) -> EstimationStatus:
    """Status a newly registered estimation starts in."""
    return next_status(None, activation)


def required_role(
    current: EstimationStatus,
    activation: RoleActivation,
) -> AppRole:
    """Role that must act while an estimation rests at *current*.

    Raises:
        TerminalState: If *current* is ``paid``.
    """
    return status_owner(next_status(current, activation))


def notification_recipient(
    status: EstimationStatus,
    activation: RoleActivation,
) -> AppRole:
    """Role to notify once an estimation reaches *status*.

    The role that must act next, or the contractor once the estimation
    is paid.
    """
    if status == EstimationStatus.PAID:
        return AppRole.CONTRATISTA
    return required_role(status, activation)

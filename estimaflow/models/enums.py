"""
Shared Enumerations for EstimaFlow Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents, so values read
back from SQLite or Supabase rows can be compared without conversion.
"""

from __future__ import annotations
from enum import StrEnum

from estimaflow.models.workflow_errors import UnknownStatus


class EstimationStatus(StrEnum):
    """Estimation workflow states, declared in workflow order.

    Declaration order is significant: :mod:`estimaflow.services.workflow_rules`
    derives the ordinal of each status from it.  There is no rejected
    state; an estimation only ever moves forward.
    """

    REGISTERED = "registered"
    AUTH_RESIDENT = "auth_resident"
    AUTH_SUPER = "auth_super"
    AUTH_LEADER = "auth_leader"
    VALIDATED_COMPRAS = "validated_compras"
    FACTURA_SUBIDA = "factura_subida"
    VALIDATED_FINANZAS = "validated_finanzas"
    PAID = "paid"


def parse_status(raw: object) -> EstimationStatus:
    """Convert a stored value into an :class:`EstimationStatus`.

    Raises:
        UnknownStatus: If *raw* is not one of the eight workflow values.
    """
    if isinstance(raw, EstimationStatus):
        return raw
    try:
        return EstimationStatus(str(raw))
    except ValueError:
        raise UnknownStatus(f"Unknown estimation status: {raw!r}") from None


class AppRole(StrEnum):
    """Project membership roles.

    ``SOPORTE_TECNICO`` is the supervisory role allowed to edit role
    activation on an estimation; it never takes part in the approval chain.
    """

    CONTRATISTA = "contratista"
    RESIDENTE = "residente"
    SUPERINTENDENTE = "superintendente"
    LIDER_PROYECTO = "lider_proyecto"
    COMPRAS = "compras"
    FINANZAS = "finanzas"
    PAGOS = "pagos"
    SOPORTE_TECNICO = "soporte_tecnico"


class ProjectStatus(StrEnum):
    """Aggregated project state shown on the support dashboard."""

    NEW = "New"
    ACTIVE = "Active"
    FINISHED = "Finished"


class OutboxStatus(StrEnum):
    """Delivery state of a queued notification."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"

"""
Estimation Model.

Pydantic models for a contractor's progress-payment request, its role
activation snapshot and its append-only approval history.  Field names
follow the persisted column names so rows map across without renaming.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from estimaflow.models.enums import AppRole, EstimationStatus


class RoleActivation(BaseModel):
    """Which optional intermediate approvers take part in the chain.

    Snapshotted from the project defaults when an estimation is created,
    then editable per estimation.  Treated as an immutable value: an edit
    replaces the whole snapshot.
    """

    model_config = ConfigDict(frozen=True)

    resident_active: bool = True
    superintendent_active: bool = True
    leader_active: bool = True


class ApprovalHistoryEntry(BaseModel):
    """One recorded status change.  Never mutated once written."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    status: EstimationStatus
    role: AppRole
    user_id: Optional[str] = None
    user_name: str
    timestamp: datetime


class Project(BaseModel):
    """A construction project and its default role activation."""

    id: str
    name: str
    description: Optional[str] = None
    default_activation: RoleActivation = Field(default_factory=RoleActivation)
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class Estimation(BaseModel):
    """A progress-payment request moving through the approval chain."""

    id: str
    folio: str
    project_id: str
    project_number: str = ""
    contractor_name: str = ""
    estimation_text: str = ""
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    pdf_url: Optional[str] = None

    status: EstimationStatus = EstimationStatus.REGISTERED
    activation: RoleActivation = Field(default_factory=RoleActivation)

    # Optional approvers: (approved_at, signed_by).  ``signed_by`` is only
    # set when the signature was inherited from a later approver.
    resident_approved_at: Optional[datetime] = None
    resident_signed_by: Optional[str] = None
    superintendent_approved_at: Optional[datetime] = None
    superintendent_signed_by: Optional[str] = None
    leader_approved_at: Optional[datetime] = None
    leader_signed_by: Optional[str] = None

    # Downstream approvers
    compras_approved_at: Optional[datetime] = None
    finanzas_approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    # Invoice pair (references only; contents live in file storage)
    invoice_pdf_url: Optional[str] = None
    invoice_xml_url: Optional[str] = None
    invoice_uploaded_at: Optional[datetime] = None

    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Optimistic concurrency token, bumped on every committed write.
    version: int = Field(default=1, ge=1)

    # Populated by the repository layer, ascending by timestamp.
    history: list[ApprovalHistoryEntry] = Field(default_factory=list)

    @property
    def is_paid(self) -> bool:
        return self.status == EstimationStatus.PAID

    model_config = {"from_attributes": True}

"""
Data Models Package.

Re-exports the Pydantic models for convenient imports:
    from estimaflow.models import Estimation, RoleActivation, ApprovalHistoryEntry
    from estimaflow.models import EstimationStatus, AppRole
"""

from __future__ import annotations

from estimaflow.models.enums import AppRole, EstimationStatus, OutboxStatus, ProjectStatus
from estimaflow.models.estimation import (
    ApprovalHistoryEntry,
    Estimation,
    Project,
    RoleActivation,
)
from estimaflow.models.user import ActingUser, Profile

__all__ = [
    "ActingUser",
    "AppRole",
    "ApprovalHistoryEntry",
    "Estimation",
    "EstimationStatus",
    "OutboxStatus",
    "Profile",
    "Project",
    "ProjectStatus",
    "RoleActivation",
]

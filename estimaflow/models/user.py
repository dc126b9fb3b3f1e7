"""
User Models.

``Profile`` mirrors the ``profiles`` table used to resolve notification
recipients.  ``ActingUser`` is the identity handed to the engine by the
caller's identity provider; the engine trusts it as given.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from estimaflow.models.enums import AppRole


class Profile(BaseModel):
    """Represents a user account."""

    id: str  # Supabase UUID
    email: str
    full_name: str = ""
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ActingUser(BaseModel):
    """The caller performing a workflow action, in the role it acts under."""

    model_config = ConfigDict(frozen=True)

    id: str
    full_name: str
    role: AppRole

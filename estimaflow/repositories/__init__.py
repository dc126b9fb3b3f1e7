"""
Repository Layer Package.

Provides data-access abstractions over the local SQLite store (the
transactional source of truth) and Supabase (the shared cloud mirror).
Services read and write estimations and projects only through these classes.

Usage:
    from estimaflow.repositories.estimation_repository import EstimationRepository
    from estimaflow.repositories.project_repository import ProjectRepository
"""

from estimaflow.repositories.base_repository import BaseRepository
from estimaflow.repositories.estimation_repository import EstimationRepository
from estimaflow.repositories.notification_repository import (
    NotificationRepository,
    OutboxItem,
)
from estimaflow.repositories.project_repository import ProjectRepository

__all__ = [
    "BaseRepository",
    "EstimationRepository",
    "NotificationRepository",
    "OutboxItem",
    "ProjectRepository",
]

"""Shared fixtures: in-memory database, seeded project, pinned clock."""

from __future__ import annotations

import os

# Keep test runs off the real log file and the cloud mirror.
os.environ["LOG_FILE"] = ""
os.environ["SUPABASE_URL"] = ""
os.environ["SUPABASE_ANON_KEY"] = ""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

from estimaflow.config import AppConfig
from estimaflow.database import DatabaseManager
from estimaflow.logger import StructuredLogger
from estimaflow.models.enums import AppRole
from estimaflow.models.estimation import Project, RoleActivation
from estimaflow.models.user import ActingUser, Profile
from estimaflow.repositories.estimation_repository import EstimationRepository
from estimaflow.repositories.notification_repository import NotificationRepository
from estimaflow.repositories.project_repository import ProjectRepository
from estimaflow.schema import initialize_schema
from estimaflow.services.approval_workflow import ApprovalWorkflowService
from estimaflow.services.notification_dispatcher import NotificationDispatcher

USER_NAMES: dict[AppRole, str] = {
    AppRole.CONTRATISTA: "Carlos Contreras",
    AppRole.RESIDENTE: "Rosa Ramírez",
    AppRole.SUPERINTENDENTE: "Sergio Salinas",
    AppRole.LIDER_PROYECTO: "Laura León",
    AppRole.COMPRAS: "Carmen Cruz",
    AppRole.FINANZAS: "Fernando Flores",
    AppRole.PAGOS: "Paula Peña",
    AppRole.SOPORTE_TECNICO: "Tomás Torres",
}


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger(name="estimaflow.tests")


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        LOG_FILE="",
        SUPABASE_URL="",
        MAIL_SERVER="smtp.test",
        MAIL_PORT=2525,
        MAIL_USERNAME="notificaciones@example.com",
        MAIL_PASSWORD="secret",
        NOTIFICATION_MAX_ATTEMPTS=2,
        SYNC_INTERVAL_S=0.01,
    )


@pytest.fixture
def db(logger: StructuredLogger) -> Iterator[DatabaseManager]:
    manager = DatabaseManager(
        supabase_url="",
        supabase_key="",
        sqlite_path=Path(":memory:"),
        logger=logger,
    )
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def estimation_repo(db: DatabaseManager, logger: StructuredLogger) -> EstimationRepository:
    return EstimationRepository(db=db, logger=logger)


@pytest.fixture
def project_repo(db: DatabaseManager, logger: StructuredLogger) -> ProjectRepository:
    return ProjectRepository(db=db, logger=logger)


@pytest.fixture
def outbox_repo(db: DatabaseManager, logger: StructuredLogger) -> NotificationRepository:
    return NotificationRepository(db=db, logger=logger)


@pytest.fixture
def dispatcher(outbox_repo: NotificationRepository, logger: StructuredLogger) -> NotificationDispatcher:
    return NotificationDispatcher(outbox_repo=outbox_repo, logger=logger)


@pytest.fixture
def workflow(
    estimation_repo: EstimationRepository,
    project_repo: ProjectRepository,
    dispatcher: NotificationDispatcher,
    db: DatabaseManager,
    logger: StructuredLogger,
    clock: FakeClock,
) -> ApprovalWorkflowService:
    return ApprovalWorkflowService(
        estimation_repo=estimation_repo,
        project_repo=project_repo,
        dispatcher=dispatcher,
        db=db,
        logger=logger,
        clock=clock,
    )


@pytest.fixture
def users() -> dict[AppRole, ActingUser]:
    return {
        role: ActingUser(id=f"u-{role}", full_name=name, role=role)
        for role, name in USER_NAMES.items()
    }


@pytest.fixture
def make_project(project_repo: ProjectRepository) -> Callable[..., str]:
    """Create a project whose members hold every role, one user per role."""
    counter = {"n": 0}

    def _make(activation: RoleActivation = RoleActivation()) -> str:
        counter["n"] += 1
        project_id = f"p-{counter['n']}"
        project_repo.create(
            Project(id=project_id, name=f"Torre {counter['n']}", default_activation=activation)
        )
        for role, name in USER_NAMES.items():
            project_repo.upsert_profile(
                Profile(id=f"u-{role}", email=f"{role}@example.com", full_name=name)
            )
            project_repo.add_member(project_id, f"u-{role}", role)
        return project_id

    return _make


@pytest.fixture
def register(
    workflow: ApprovalWorkflowService,
    users: dict[AppRole, ActingUser],
) -> Callable[..., str]:
    """Register an estimation on *project_id* and return its id."""

    def _register(project_id: str, folio: str = "F-001", amount: str = "125000.50") -> str:
        result = workflow.create_estimation(
            project_id=project_id,
            acting_user=users[AppRole.CONTRATISTA],
            folio=folio,
            project_number="OBR-17",
            contractor_name="Constructora Norte",
            amount=Decimal(amount),
            estimation_text="Cimentación etapa 1",
            pdf_url="estimations/f-001.pdf",
        )
        assert result.success, result.error
        return result.data.estimation_id

    return _register

"""
Business Logic Services Package.

Services depend on the Repository layer for data access and receive the
acting user from the caller's identity provider.

The ``create_services()`` factory wires every repository and service
together, returning a typed dict that the application layer can consume
without knowing the internal dependency graph.
"""

from __future__ import annotations

from typing import TypedDict

from estimaflow.config import AppConfig
from estimaflow.database import DatabaseManager
from estimaflow.logger import get_logger
from estimaflow.repositories.estimation_repository import EstimationRepository
from estimaflow.repositories.notification_repository import NotificationRepository
from estimaflow.repositories.project_repository import ProjectRepository
from estimaflow.services.approval_history import ApprovalHistoryService
from estimaflow.services.approval_workflow import ApprovalWorkflowService
from estimaflow.services.email_service import EmailService
from estimaflow.services.notification_dispatcher import (
    NotificationDispatcher,
    NotificationWorker,
)
from estimaflow.services.sync_worker import SyncWorkerService


class ServiceContainer(TypedDict):
    """Typed container for all application services."""

    # --- Repositories exposed for administration tooling ---
    project_repository: ProjectRepository

    # --- Core ---
    approval_workflow_service: ApprovalWorkflowService
    approval_history_service: ApprovalHistoryService
    notification_dispatcher: NotificationDispatcher
    email_service: EmailService

    # --- Background workers (started by the entry-point) ---
    notification_worker: NotificationWorker
    sync_worker: SyncWorkerService


def create_services(db: DatabaseManager, config: AppConfig) -> ServiceContainer:
    """
    Wire all repositories and services together.

    This is the single composition root for the service layer.  The
    entry-point calls it once at startup; workers are returned stopped.

    Args:
        db: Initialised DatabaseManager with the schema in place.
        config: Application configuration.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = get_logger("services", component="engine")

    # ------------------------------------------------------------------
    # 1. Repositories (data-access layer)
    # ------------------------------------------------------------------
    estimation_repo = EstimationRepository(db=db, logger=logger)
    project_repo = ProjectRepository(db=db, logger=logger)
    outbox_repo = NotificationRepository(db=db, logger=logger)

    # ------------------------------------------------------------------
    # 2. Leaf services
    # ------------------------------------------------------------------
    email_service = EmailService(config=config, logger=logger)
    dispatcher = NotificationDispatcher(outbox_repo=outbox_repo, logger=logger)
    history_service = ApprovalHistoryService(
        estimation_repo=estimation_repo, config=config, logger=logger,
    )

    # ------------------------------------------------------------------
    # 3. Orchestration
    # ------------------------------------------------------------------
    workflow_service = ApprovalWorkflowService(
        estimation_repo=estimation_repo,
        project_repo=project_repo,
        dispatcher=dispatcher,
        db=db,
        logger=logger,
    )

    # ------------------------------------------------------------------
    # 4. Background workers
    # ------------------------------------------------------------------
    notification_worker = NotificationWorker(
        outbox_repo=outbox_repo,
        estimation_repo=estimation_repo,
        project_repo=project_repo,
        email_service=email_service,
        config=config,
        logger=get_logger("notifications", component="notification_worker"),
    )
    sync_worker = SyncWorkerService(
        db=db, config=config, logger=get_logger("sync", component="sync_worker"),
    )

    return ServiceContainer(
        project_repository=project_repo,
        approval_workflow_service=workflow_service,
        approval_history_service=history_service,
        notification_dispatcher=dispatcher,
        email_service=email_service,
        notification_worker=notification_worker,
        sync_worker=sync_worker,
    )

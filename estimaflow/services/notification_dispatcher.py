"""
Notification Dispatcher & Worker.

:class:`NotificationDispatcher` is what the approval service talks to: it
records a "work is waiting" request in the ``notification_outbox`` table
and returns immediately.  :class:`NotificationWorker` is a daemon thread
that drains the outbox, resolves recipients and sends the email.

Delivery is best-effort and fully decoupled from approvals: a send
failure, whatever raised it, only bumps the outbox row's attempt counter
and never stops the rest of the batch.
"""

from __future__ import annotations

import threading
from typing import Optional

from estimaflow.config import AppConfig
from estimaflow.logger import StructuredLogger
from estimaflow.models.enums import AppRole, EstimationStatus
from estimaflow.models.service_models import NotificationRequest
from estimaflow.models.workflow_errors import WorkflowError
from estimaflow.repositories.estimation_repository import EstimationRepository
from estimaflow.repositories.notification_repository import (
    NotificationRepository,
    OutboxItem,
)
from estimaflow.repositories.project_repository import ProjectRepository
from estimaflow.services.base_service import BaseService
from estimaflow.services.email_service import EmailService


class NotificationDispatcher(BaseService):
    """Queues notifications for background delivery."""

    def __init__(
        self,
        outbox_repo: NotificationRepository,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._outbox_repo = outbox_repo

    def notify(
        self,
        estimation_id: str,
        new_status: EstimationStatus,
        recipient_role: AppRole,
        actor_name: Optional[str] = None,
        actor_role: Optional[AppRole] = None,
    ) -> int:
        """Queue a notification.  Returns the outbox row id.

        Raises whatever the outbox write raises; callers treat that as a
        non-fatal warning.
        """
        request = NotificationRequest(
            estimation_id=estimation_id,
            new_status=new_status,
            recipient_role=recipient_role,
            actor_name=actor_name,
            actor_role=actor_role,
        )
        outbox_id = self._outbox_repo.enqueue(request)
        self._logger.info(
            "Notification %d queued: estimation %s reached %s, notify %s",
            outbox_id, estimation_id, new_status, recipient_role,
        )
        return outbox_id


class NotificationWorker(BaseService):
    """Daemon thread that delivers queued notifications by email.

    Parameters
    ----------
    outbox_repo:
        Source of pending notifications.
    estimation_repo / project_repo:
        Used to render the email and resolve recipient addresses.
    email_service:
        SMTP sender.
    config:
        ``NOTIFICATION_POLL_INTERVAL_S`` and ``NOTIFICATION_MAX_ATTEMPTS``.
    """

    _BATCH_SIZE: int = 20

    def __init__(
        self,
        outbox_repo: NotificationRepository,
        estimation_repo: EstimationRepository,
        project_repo: ProjectRepository,
        email_service: EmailService,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._outbox_repo = outbox_repo
        self._estimation_repo = estimation_repo
        self._project_repo = project_repo
        self._email_service = email_service
        self._poll_interval_s: float = config.NOTIFICATION_POLL_INTERVAL_S
        self._max_attempts: int = config.NOTIFICATION_MAX_ATTEMPTS
        self._thread: Optional[threading.Thread] = None
        self._stop_event: threading.Event = threading.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the worker on a daemon thread.  No-op when already running."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop, name="NotificationWorker", daemon=True,
        )
        self._thread.start()
        self._logger.info("Notification worker started.")

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=10.0)
        if self._thread.is_alive():
            self._logger.warning("Notification worker did not terminate within 10 s.")
        else:
            self._logger.info("Notification worker stopped.")
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        try:
            while not self._stop_event.wait(timeout=self._poll_interval_s):
                try:
                    self.drain()
                except Exception:
                    self._logger.warning("Notification cycle failed", exc_info=True)
        except Exception:
            self._logger.error(
                "Notification worker terminated due to unhandled exception.",
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def drain(self) -> int:
        """Deliver one batch of pending notifications.

        Returns:
            Number of notifications delivered (or skipped for lack of
            recipients) in this cycle.
        """
        delivered = 0
        for item in self._outbox_repo.fetch_pending(limit=self._BATCH_SIZE):
            try:
                error = self._deliver(item)
            except Exception as exc:
                # Counted like any other failure so the row still gets parked.
                self._logger.warning(
                    "Notification %d raised during delivery", item.id, exc_info=True
                )
                error = f"{type(exc).__name__}: {exc}"
            if error is None:
                self._outbox_repo.mark_sent(item.id)
                delivered += 1
                continue

            parked = self._outbox_repo.record_failure(item.id, error, self._max_attempts)
            if parked:
                self._logger.error(
                    "Notification %d for estimation %s abandoned after %d attempts: %s",
                    item.id, item.estimation_id, self._max_attempts, error,
                )
            else:
                self._logger.warning(
                    "Notification %d for estimation %s failed, will retry: %s",
                    item.id, item.estimation_id, error,
                )
        return delivered

    def _deliver(self, item: OutboxItem) -> Optional[str]:
        """Send one notification.  Returns an error message, or ``None``."""
        try:
            estimation = self._estimation_repo.get_by_id(item.estimation_id, with_history=False)
        except WorkflowError as exc:
            return exc.message

        # The outbox row records the status that triggered it; the email
        # describes that transition even if the estimation has moved on.
        estimation.status = item.new_status

        project = self._project_repo.get_by_id(estimation.project_id)
        recipients = self._resolve_recipients(
            estimation.project_id, estimation.created_by, item.recipient_role
        )
        if not recipients:
            self._logger.warning(
                "No %s recipients for estimation %s; notification skipped.",
                item.recipient_role, item.estimation_id,
            )
            return None

        result = self._email_service.send_authorization_email(
            estimation=estimation,
            project_name=project.name if project else None,
            recipients=recipients,
            approver_name=item.actor_name,
            approver_role=item.actor_role,
        )
        return None if result.success else (result.error or "Email delivery failed")

    def _resolve_recipients(
        self,
        project_id: str,
        created_by: Optional[str],
        role: AppRole,
    ) -> list[str]:
        """Creator for contractor notifications, project members otherwise."""
        if role == AppRole.CONTRATISTA and created_by:
            creator_email = self._project_repo.get_email(created_by)
            if creator_email:
                return [creator_email]
        return self._project_repo.get_member_emails(project_id, role)

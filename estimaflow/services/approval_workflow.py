"""
Approval Workflow Service.

Drives an estimation through its approval chain: registration, the
generic approve step, the contractor's invoice upload and the support
team's role-activation edits.  Every public method returns a
ServiceResult; workflow exceptions never reach the caller.

Each transition:
    1. loads status and role activation fresh from the store,
    2. checks the acting role against the role the workflow requires,
    3. resolves the next status and any inherited signatures,
    4. persists status, timestamps, signatures and one history entry in a
       single version-checked transaction,
    5. after commit, queues a notification for whoever must act next.
"""

from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, TypeVar

from pydantic import ValidationError

from estimaflow.database import DatabaseManager
from estimaflow.logger import StructuredLogger
from estimaflow.models.enums import AppRole, EstimationStatus
from estimaflow.models.estimation import ApprovalHistoryEntry, Estimation, RoleActivation
from estimaflow.models.service_models import (
    InheritedSignature,
    ServiceResult,
    TransitionOutcome,
)
from estimaflow.models.user import ActingUser
from estimaflow.models.workflow_errors import (
    InvalidTransition,
    MissingInvoiceFile,
    ProjectNotFound,
    TerminalState,
    UnknownStatus,
    WorkflowError,
)
from estimaflow.repositories.estimation_repository import EstimationRepository
from estimaflow.repositories.project_repository import ProjectRepository
from estimaflow.services.base_service import BaseService
from estimaflow.services.notification_dispatcher import NotificationDispatcher
from estimaflow.services.signature_inheritance import (
    apply_inherited_signatures,
    inherited_signatures,
)
from estimaflow.services.workflow_rules import (
    APPROVED_AT_FIELDS,
    initial_status,
    next_status,
    notification_recipient,
    required_role,
)
from estimaflow.utils.audit import DetailValue, log_audit_event

T = TypeVar("T")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ApprovalWorkflowService(BaseService):
    """
    Service handling estimation state transitions.

    Dependencies are injected via __init__.  ``clock`` exists so tests
    can pin timestamps.
    """

    def __init__(
        self,
        estimation_repo: EstimationRepository,
        project_repo: ProjectRepository,
        dispatcher: NotificationDispatcher,
        db: DatabaseManager,
        logger: StructuredLogger,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        super().__init__(logger)
        self._estimation_repo = estimation_repo
        self._project_repo = project_repo
        self._dispatcher = dispatcher
        self._db = db
        self._clock = clock

    # ------------------------------------------------------------------
    # Public: reads
    # ------------------------------------------------------------------

    def get_estimation(self, estimation_id: str) -> ServiceResult[Estimation]:
        """Load an estimation with its full approval history."""
        return self._run(
            "get_estimation",
            estimation_id,
            lambda: self._estimation_repo.get_by_id(estimation_id),
        )

    # ------------------------------------------------------------------
    # Public: create_estimation
    # ------------------------------------------------------------------

    def create_estimation(
        self,
        project_id: str,
        acting_user: ActingUser,
        folio: str,
        project_number: str,
        contractor_name: str,
        amount: Decimal,
        estimation_text: str = "",
        pdf_url: Optional[str] = None,
    ) -> ServiceResult[TransitionOutcome]:
        """
        Register a new estimation on a project.

        The project's default role activation is snapshotted onto the
        estimation; later edits to the project do not affect it.

        Returns:
            ServiceResult wrapping a TransitionOutcome whose
            ``previous_status`` is ``None``.
        """
        return self._run(
            "create_estimation",
            project_id,
            lambda: self._create(
                project_id, acting_user, folio, project_number,
                contractor_name, amount, estimation_text, pdf_url,
            ),
            on_success=lambda outcome: self._after_commit(outcome, acting_user, "CREATE"),
        )

    def _create(
        self,
        project_id: str,
        acting_user: ActingUser,
        folio: str,
        project_number: str,
        contractor_name: str,
        amount: Decimal,
        estimation_text: str,
        pdf_url: Optional[str],
    ) -> TransitionOutcome:
        if acting_user.role != AppRole.CONTRATISTA:
            raise InvalidTransition(
                f"Role {acting_user.role} cannot register estimations."
            )
        project = self._project_repo.get_by_id(project_id)
        if project is None:
            raise ProjectNotFound(f"Project {project_id} does not exist.")

        now = self._clock()
        activation = project.default_activation
        status = initial_status(activation)
        estimation = Estimation(
            id=str(uuid.uuid4()),
            folio=folio.strip(),
            project_id=project_id,
            project_number=project_number,
            contractor_name=contractor_name,
            estimation_text=estimation_text,
            amount=amount,
            pdf_url=pdf_url,
            status=status,
            activation=activation,
            created_by=acting_user.id,
            created_at=now,
            updated_at=now,
        )
        entry = ApprovalHistoryEntry(
            status=status,
            role=AppRole.CONTRATISTA,
            user_id=acting_user.id,
            user_name=acting_user.full_name,
            timestamp=now,
        )
        self._estimation_repo.create(estimation, entry)

        return TransitionOutcome(
            estimation_id=estimation.id,
            previous_status=None,
            new_status=status,
            acting_role=acting_user.role,
            version=estimation.version,
            notify_role=notification_recipient(status, activation),
        )

    # ------------------------------------------------------------------
    # Public: approve
    # ------------------------------------------------------------------

    def approve(
        self,
        estimation_id: str,
        acting_user: ActingUser,
    ) -> ServiceResult[TransitionOutcome]:
        """
        Advance an estimation by one effective step on behalf of
        *acting_user*.

        Optional approvers that are disabled are skipped; their signature
        pair is inherited from the acting approver.

        Returns:
            ServiceResult wrapping the TransitionOutcome, or a failed
            result carrying the WorkflowErrorCode.
        """
        return self._run(
            "approve",
            estimation_id,
            lambda: self._approve(estimation_id, acting_user),
            on_success=lambda outcome: self._after_commit(outcome, acting_user, "APPROVE"),
        )

    def _approve(self, estimation_id: str, acting_user: ActingUser) -> TransitionOutcome:
        estimation = self._estimation_repo.get_by_id(estimation_id, with_history=False)
        current = estimation.status
        self._check_actor(estimation, acting_user)

        if current == EstimationStatus.VALIDATED_COMPRAS:
            raise InvalidTransition(
                "The invoice upload is required before finance can validate.",
                estimation_id,
            )

        new = next_status(current, estimation.activation)
        now = self._clock()

        signatures = inherited_signatures(
            current, new, estimation.activation, acting_user.full_name, now
        )
        written = apply_inherited_signatures(estimation, signatures)

        approved_field = APPROVED_AT_FIELDS.get(acting_user.role)
        if approved_field and getattr(estimation, approved_field) is None:
            setattr(estimation, approved_field, now)

        return self._commit_transition(
            estimation,
            new,
            acting_user,
            now,
            [signature for signature in signatures if signature.role in written],
        )

    # ------------------------------------------------------------------
    # Public: upload_invoice
    # ------------------------------------------------------------------

    def upload_invoice(
        self,
        estimation_id: str,
        acting_user: ActingUser,
        pdf_ref: Optional[str],
        xml_ref: Optional[str],
    ) -> ServiceResult[TransitionOutcome]:
        """
        Attach the contractor's invoice (PDF + XML) and move the
        estimation to ``factura_subida``.

        Both references are required; contents are not inspected.
        """
        return self._run(
            "upload_invoice",
            estimation_id,
            lambda: self._upload_invoice(estimation_id, acting_user, pdf_ref, xml_ref),
            on_success=lambda outcome: self._after_commit(outcome, acting_user, "UPLOAD_INVOICE"),
        )

    def _upload_invoice(
        self,
        estimation_id: str,
        acting_user: ActingUser,
        pdf_ref: Optional[str],
        xml_ref: Optional[str],
    ) -> TransitionOutcome:
        estimation = self._estimation_repo.get_by_id(estimation_id, with_history=False)
        if estimation.status != EstimationStatus.VALIDATED_COMPRAS:
            if estimation.is_paid:
                raise TerminalState("Estimation is already paid.", estimation_id)
            raise InvalidTransition(
                f"Invoices can only be uploaded after purchasing validation "
                f"(current status {estimation.status}).",
                estimation_id,
            )
        self._check_actor(estimation, acting_user)

        pdf_ref = (pdf_ref or "").strip()
        xml_ref = (xml_ref or "").strip()
        if not pdf_ref or not xml_ref:
            raise MissingInvoiceFile(
                "Both the PDF and the XML invoice references are required.",
                estimation_id,
            )

        now = self._clock()
        estimation.invoice_pdf_url = pdf_ref
        estimation.invoice_xml_url = xml_ref
        estimation.invoice_uploaded_at = now

        return self._commit_transition(
            estimation, EstimationStatus.FACTURA_SUBIDA, acting_user, now, [],
        )

    # ------------------------------------------------------------------
    # Public: update_role_activation
    # ------------------------------------------------------------------

    def update_role_activation(
        self,
        estimation_id: str,
        acting_user: ActingUser,
        activation: RoleActivation,
    ) -> ServiceResult[Estimation]:
        """
        Replace which optional approvers take part for one estimation.

        Only technical support may do this, and never once the estimation
        is paid.  No status is recomputed and history is untouched; the
        next approval simply reads the new snapshot.
        """
        return self._run(
            "update_role_activation",
            estimation_id,
            lambda: self._update_activation(estimation_id, acting_user, activation),
        )

    def _update_activation(
        self,
        estimation_id: str,
        acting_user: ActingUser,
        activation: RoleActivation,
    ) -> Estimation:
        if acting_user.role != AppRole.SOPORTE_TECNICO:
            raise InvalidTransition(
                f"Role {acting_user.role} cannot change role activation.",
                estimation_id,
            )
        estimation = self._estimation_repo.get_by_id(estimation_id, with_history=False)
        if estimation.is_paid:
            raise TerminalState("Estimation is already paid.", estimation_id)

        previous = estimation.activation
        now = self._clock()
        estimation.version = self._estimation_repo.update_activation(
            estimation_id, activation, estimation.version, now
        )
        estimation.activation = activation
        estimation.updated_at = now

        self._audit(
            "UPDATE_ACTIVATION",
            estimation_id,
            acting_user,
            {
                "resident_active": activation.resident_active,
                "superintendent_active": activation.superintendent_active,
                "leader_active": activation.leader_active,
                "previous_resident_active": previous.resident_active,
                "previous_superintendent_active": previous.superintendent_active,
                "previous_leader_active": previous.leader_active,
            },
        )
        return estimation

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _check_actor(self, estimation: Estimation, acting_user: ActingUser) -> None:
        """Raise unless *acting_user* holds the role required right now."""
        if estimation.is_paid:
            raise TerminalState("Estimation is already paid.", estimation.id)
        expected = required_role(estimation.status, estimation.activation)
        if acting_user.role != expected:
            raise InvalidTransition(
                f"Role {acting_user.role} cannot act at {estimation.status}; "
                f"{expected} is required.",
                estimation.id,
            )

    def _commit_transition(
        self,
        estimation: Estimation,
        new: EstimationStatus,
        acting_user: ActingUser,
        now: datetime,
        inherited: list[InheritedSignature],
    ) -> TransitionOutcome:
        previous = estimation.status
        expected_version = estimation.version
        estimation.status = new
        estimation.updated_at = now

        entry = ApprovalHistoryEntry(
            status=new,
            role=acting_user.role,
            user_id=acting_user.id,
            user_name=acting_user.full_name,
            timestamp=now,
        )
        self._estimation_repo.save_transition(estimation, expected_version, entry)

        return TransitionOutcome(
            estimation_id=estimation.id,
            previous_status=previous,
            new_status=new,
            acting_role=acting_user.role,
            inherited=inherited,
            version=estimation.version,
            notify_role=notification_recipient(new, estimation.activation),
        )

    def _after_commit(
        self,
        outcome: TransitionOutcome,
        acting_user: ActingUser,
        action: str,
    ) -> None:
        """Audit and queue the next notification.  Never raises."""
        self._audit(
            action,
            outcome.estimation_id,
            acting_user,
            {
                "previous_status": outcome.previous_status,
                "new_status": outcome.new_status,
                "acting_role": outcome.acting_role,
                "inherited_roles": ",".join(s.role for s in outcome.inherited) or None,
                "version": outcome.version,
            },
        )
        if outcome.notify_role is None:
            return

        try:
            self._dispatcher.notify(
                estimation_id=outcome.estimation_id,
                new_status=outcome.new_status,
                recipient_role=outcome.notify_role,
                actor_name=acting_user.full_name,
                actor_role=acting_user.role,
            )
            outcome.notification_queued = True
        except Exception as exc:
            self._logger.warning(
                "Estimation %s reached %s, but queuing the notification failed: %s",
                outcome.estimation_id, outcome.new_status, exc,
            )

    def _audit(
        self,
        action: str,
        estimation_id: str,
        acting_user: ActingUser,
        details: dict[str, DetailValue],
    ) -> None:
        # audit_log commits; hold the lock so it cannot land inside another batch.
        with self._db.write_lock:
            log_audit_event(
                logger=self._logger,
                action=action,
                entity_type="Estimation",
                entity_id=estimation_id,
                user_id=acting_user.id,
                details={"user_name": acting_user.full_name, **details},
                conn=self._db.sqlite,
            )

    def _run(
        self,
        operation: str,
        entity_id: str,
        work: Callable[[], T],
        on_success: Optional[Callable[[T], None]] = None,
    ) -> ServiceResult[T]:
        """Execute *work*, translating failures into a ServiceResult."""
        try:
            data = work()
        except UnknownStatus as exc:
            self._logger.critical(
                "%s aborted: corrupt status on %s: %s", operation, entity_id, exc.message
            )
            return ServiceResult.from_error(exc)
        except WorkflowError as exc:
            self._logger.warning(
                "%s rejected for %s [%s]: %s", operation, entity_id, exc.code, exc.message
            )
            return ServiceResult.from_error(exc)
        except ValidationError as exc:
            self._logger.warning("%s received invalid data for %s: %s", operation, entity_id, exc)
            return ServiceResult(success=False, error=str(exc), status_code=422)
        except sqlite3.Error as exc:
            self._logger.error(
                "Database error during %s for %s: %s", operation, entity_id, exc,
                exc_info=True,
            )
            return ServiceResult(success=False, error=f"Database error: {exc}", status_code=500)

        if on_success is not None:
            on_success(data)
        return ServiceResult(success=True, data=data)

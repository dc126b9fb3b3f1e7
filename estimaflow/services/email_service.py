"""
Email Notification Service.

Handles outbound "authorization" emails for the estimation workflow.
Sends synchronously via SMTP with structured audit logging for every
attempt; callers receive a ServiceResult instead of raw SMTP exceptions.

Architectural notes:
    - Configuration injected as an AppConfig instance.
    - Email config validated lazily on first send (instance-level flag).
    - Subject and body wording follow the status reached by the estimation.
"""

from __future__ import annotations

import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import Optional, Union

from estimaflow.config import AppConfig
from estimaflow.logger import StructuredLogger
from estimaflow.models.enums import AppRole, EstimationStatus
from estimaflow.models.estimation import Estimation
from estimaflow.models.service_models import ServiceResult
from estimaflow.services.base_service import BaseService
from estimaflow.utils.audit import log_audit_event

ROLE_LABELS: dict[AppRole, str] = {
    AppRole.CONTRATISTA: "Contratista",
    AppRole.RESIDENTE: "Residente",
    AppRole.SUPERINTENDENTE: "Superintendente",
    AppRole.LIDER_PROYECTO: "Líder de Proyecto",
    AppRole.COMPRAS: "Compras",
    AppRole.FINANZAS: "Finanzas",
    AppRole.PAGOS: "Pagos",
    AppRole.SOPORTE_TECNICO: "Soporte Técnico",
}

SUBJECT_PREFIXES: dict[EstimationStatus, str] = {
    EstimationStatus.REGISTERED: "AUTORIZACIÓN REQUERIDA",
    EstimationStatus.AUTH_RESIDENT: "PRE-ESTIMACIÓN AUTORIZADA POR RESIDENTE",
    EstimationStatus.AUTH_SUPER: "PRE-ESTIMACIÓN AUTORIZADA POR SUPERINTENDENTE",
    EstimationStatus.AUTH_LEADER: "ESTIMACIÓN AUTORIZADA POR LÍDER",
    EstimationStatus.VALIDATED_COMPRAS: "ESTIMACIÓN VALIDADA POR COMPRAS",
    EstimationStatus.FACTURA_SUBIDA: "FACTURA SUBIDA - REQUIERE VALIDACIÓN",
    EstimationStatus.VALIDATED_FINANZAS: "ESTIMACIÓN VALIDADA POR FINANZAS",
    EstimationStatus.PAID: "ESTIMACIÓN PAGADA",
}

_FALLBACK_ACTOR: str = "Sistema"


def build_subject(status: EstimationStatus, folio: str) -> str:
    """``"<prefix> - Folio: <folio>"`` for the status just reached."""
    return f"{SUBJECT_PREFIXES[status]} - Folio: {folio}"


class EmailService(BaseService):
    """Service for composing and sending email notifications."""

    def __init__(self, config: AppConfig, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._config = config
        self._validated: bool = False

    # ------------------------------------------------------------------
    # Core send method
    # ------------------------------------------------------------------

    def send_email(
        self,
        to_addresses: Union[str, list[str]],
        subject: str,
        body_text: str,
    ) -> ServiceResult:
        """
        Compose and send an email synchronously via SMTP.

        Validates email configuration on first invocation (lazy, one-time).
        """
        if not self._validated:
            try:
                self._config.validate_email_config()
                self._validated = True
            except ValueError as exc:
                self._logger.error("Email configuration error: %s", exc)
                return ServiceResult(
                    success=False,
                    error=f"Email configuration error: {exc}",
                    status_code=500,
                )

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = formataddr((self._config.MAIL_FROM_NAME, self._config.MAIL_USERNAME))

        if isinstance(to_addresses, list):
            recipients_str = ", ".join(to_addresses)
        else:
            recipients_str = to_addresses
        msg["To"] = recipients_str

        msg.set_content(body_text)

        log_audit_event(
            logger=self._logger,
            action="EMAIL_SEND_ATTEMPT",
            entity_type="Email",
            entity_id=subject,
            user_id="system",
            details={"to": recipients_str, "subject": subject},
        )

        return self._dispatch_smtp(msg)

    # ------------------------------------------------------------------
    # Domain-specific notification helpers
    # ------------------------------------------------------------------

    def send_authorization_email(
        self,
        estimation: Estimation,
        project_name: Optional[str],
        recipients: list[str],
        approver_name: Optional[str],
        approver_role: Optional[AppRole],
    ) -> ServiceResult:
        """
        Tell the recipients that *estimation* reached its current status
        and, unless it is paid, that their authorization is now required.

        Duplicate addresses are dropped; an empty list is a no-op success.
        """
        unique_recipients: list[str] = list(dict.fromkeys(recipients))
        if not unique_recipients:
            self._logger.info(
                "No recipients for estimation %s at %s; nothing sent.",
                estimation.id, estimation.status,
            )
            return ServiceResult(success=True, data={"message": "No recipients found"})

        subject = build_subject(estimation.status, estimation.folio)
        actor_name = approver_name or _FALLBACK_ACTOR
        actor_label = ROLE_LABELS.get(approver_role, _FALLBACK_ACTOR) if approver_role else _FALLBACK_ACTOR

        body = (
            f"{SUBJECT_PREFIXES[estimation.status]}\n\n"
            f"Proyecto: {project_name or estimation.project_number}\n"
            f"Número de folio: {estimation.folio}\n"
            f"Texto descriptivo: {estimation.estimation_text or 'Sin descripción'}\n\n"
            f"Autorizado por: {actor_name} ({actor_label})\n\n"
            f"Ver estimación: {self._config.APP_BASE_URL.rstrip('/')}/estimaciones\n\n"
            "Este es un correo automático. Por favor no respondas a este mensaje."
        )

        return self.send_email(unique_recipients, subject, body)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _dispatch_smtp(self, msg: EmailMessage) -> ServiceResult:
        """Open an SMTP connection, authenticate, send, and close."""
        config = self._config
        smtp: Optional[smtplib.SMTP] = None
        try:
            smtp = smtplib.SMTP(config.MAIL_SERVER, config.MAIL_PORT)
            smtp.starttls()
            smtp.login(config.MAIL_USERNAME, config.MAIL_PASSWORD.get_secret_value())
            smtp.send_message(msg)

            self._logger.info("Email sent successfully to %s", msg["To"])
            log_audit_event(
                logger=self._logger,
                action="EMAIL_SENT",
                entity_type="Email",
                entity_id=msg["Subject"] or "",
                user_id="system",
                details={"to": msg["To"], "subject": msg["Subject"]},
            )
            return ServiceResult(success=True)

        except smtplib.SMTPAuthenticationError as exc:
            self._logger.error(
                "SMTP authentication failed for '%s': %s", config.MAIL_USERNAME, exc
            )
            return ServiceResult(
                success=False,
                error=f"SMTP authentication failed: {exc}",
                status_code=500,
            )

        except smtplib.SMTPException as exc:
            self._logger.error("SMTP error sending to %s: %s", msg["To"], exc)
            return ServiceResult(success=False, error=f"SMTP error: {exc}", status_code=500)

        except OSError as exc:
            self._logger.error(
                "Network error connecting to %s:%d: %s",
                config.MAIL_SERVER, config.MAIL_PORT, exc,
            )
            return ServiceResult(success=False, error=f"Network error: {exc}", status_code=500)

        finally:
            if smtp is not None:
                try:
                    smtp.quit()
                except smtplib.SMTPException:
                    self._logger.debug("SMTP quit failed", exc_info=True)

"""Tests for outbox delivery: recipients, email content, retry and parking."""

from __future__ import annotations

import smtplib
from unittest.mock import patch

import pytest

from estimaflow.models.enums import AppRole, EstimationStatus as S
from estimaflow.models.estimation import Estimation, Project
from estimaflow.services.email_service import EmailService, build_subject
from estimaflow.services.notification_dispatcher import NotificationWorker


@pytest.fixture
def smtp():
    with patch("estimaflow.services.email_service.smtplib.SMTP") as smtp_cls:
        yield smtp_cls


@pytest.fixture
def worker(outbox_repo, estimation_repo, project_repo, config, logger):
    return NotificationWorker(
        outbox_repo=outbox_repo,
        estimation_repo=estimation_repo,
        project_repo=project_repo,
        email_service=EmailService(config=config, logger=logger),
        config=config,
        logger=logger,
    )


def sent_messages(smtp_cls):
    return [call.args[0] for call in smtp_cls.return_value.send_message.call_args_list]


def outbox_rows(db):
    return [dict(row) for row in db.sqlite.execute("SELECT * FROM notification_outbox ORDER BY id")]


def test_subject_prefixes():
    assert build_subject(S.REGISTERED, "F-9") == "AUTORIZACIÓN REQUERIDA - Folio: F-9"
    assert build_subject(S.PAID, "F-9") == "ESTIMACIÓN PAGADA - Folio: F-9"


def test_registration_email_reaches_the_residents(worker, smtp, make_project, register, db, config):
    register(make_project())

    assert worker.drain() == 1

    smtp.assert_called_once_with("smtp.test", 2525)
    smtp.return_value.login.assert_called_once_with("notificaciones@example.com", "secret")
    [message] = sent_messages(smtp)
    assert message["Subject"] == "AUTORIZACIÓN REQUERIDA - Folio: F-001"
    assert message["To"] == "residente@example.com"
    body = message.get_content()
    assert "Proyecto: Torre 1" in body
    assert "Autorizado por: Carlos Contreras (Contratista)" in body
    assert f"{config.APP_BASE_URL.rstrip('/')}/estimaciones" in body
    assert [row["status"] for row in outbox_rows(db)] == ["sent"]


def test_email_describes_the_status_that_triggered_it(worker, smtp, workflow, users, make_project, register):
    estimation_id = register(make_project())
    workflow.approve(estimation_id, users[AppRole.RESIDENTE])

    assert worker.drain() == 2

    subjects = [message["Subject"] for message in sent_messages(smtp)]
    assert subjects == [
        "AUTORIZACIÓN REQUERIDA - Folio: F-001",
        "PRE-ESTIMACIÓN AUTORIZADA POR RESIDENTE - Folio: F-001",
    ]
    assert sent_messages(smtp)[1]["To"] == "superintendente@example.com"


def test_contractor_notifications_go_to_the_creator(
    worker, smtp, workflow, users, make_project, register, project_repo, outbox_repo
):
    project_id = make_project()
    estimation_id = register(project_id)
    for role in (AppRole.RESIDENTE, AppRole.SUPERINTENDENTE, AppRole.LIDER_PROYECTO, AppRole.COMPRAS):
        workflow.approve(estimation_id, users[role])
    # A second contractor on the project must not receive this one.
    project_repo.add_member(project_id, f"u-{AppRole.PAGOS}", AppRole.CONTRATISTA)

    worker.drain()

    [message] = [m for m in sent_messages(smtp) if m["Subject"].startswith("ESTIMACIÓN VALIDADA POR COMPRAS")]
    assert message["To"] == "contratista@example.com"
    assert outbox_repo.fetch_pending() == []


def test_failed_delivery_is_retried_then_parked(worker, smtp, make_project, register, db):
    smtp.return_value.send_message.side_effect = smtplib.SMTPException("mailbox unavailable")
    register(make_project())

    assert worker.drain() == 0
    [row] = outbox_rows(db)
    assert (row["status"], row["attempts"]) == ("pending", 1)
    assert "mailbox unavailable" in row["last_error"]

    assert worker.drain() == 0
    [row] = outbox_rows(db)
    assert (row["status"], row["attempts"]) == ("failed", 2)

    # Parked rows are not picked up again.
    assert worker.drain() == 0
    assert smtp.return_value.send_message.call_count == 2


def test_unexpected_errors_count_as_attempts_and_do_not_stop_the_batch(
    worker, smtp, make_project, register, db
):
    smtp.return_value.send_message.side_effect = [ValueError("bad header"), None]
    register(make_project(), folio="F-001")
    register(make_project(), folio="F-002")

    assert worker.drain() == 1
    first, second = outbox_rows(db)
    assert (first["status"], first["attempts"]) == ("pending", 1)
    assert first["last_error"] == "ValueError: bad header"
    assert second["status"] == "sent"

    smtp.return_value.send_message.side_effect = ValueError("bad header")
    assert worker.drain() == 0
    first, _ = outbox_rows(db)
    assert (first["status"], first["attempts"]) == ("failed", 2)


def test_no_recipients_is_skipped_not_retried(worker, smtp, project_repo, register, db):
    project_repo.create(Project(id="p-empty", name="Bodega"))
    register("p-empty")

    assert worker.drain() == 1

    smtp.assert_not_called()
    assert [row["status"] for row in outbox_rows(db)] == ["sent"]


def test_missing_mail_credentials_fail_the_delivery(
    outbox_repo, estimation_repo, project_repo, config, logger, smtp, make_project, register, db
):
    broken = config.model_copy(update={"MAIL_USERNAME": ""})
    worker = NotificationWorker(
        outbox_repo=outbox_repo,
        estimation_repo=estimation_repo,
        project_repo=project_repo,
        email_service=EmailService(config=broken, logger=logger),
        config=config,
        logger=logger,
    )
    register(make_project())

    assert worker.drain() == 0

    smtp.assert_not_called()
    [row] = outbox_rows(db)
    assert "Email configuration error" in row["last_error"]


def test_send_authorization_email_dedups_and_handles_empty_lists(config, logger, smtp):
    service = EmailService(config=config, logger=logger)
    estimation = Estimation(
        id="e-1", folio="F-7", project_id="p-1", project_number="OBR-1", status=S.AUTH_LEADER
    )

    empty = service.send_authorization_email(estimation, "Torre", [], None, None)
    assert empty.success
    smtp.assert_not_called()

    result = service.send_authorization_email(
        estimation, "Torre", ["a@example.com", "a@example.com", "b@example.com"], None, None
    )
    assert result.success
    [message] = sent_messages(smtp)
    assert message["To"] == "a@example.com, b@example.com"
    assert "Autorizado por: Sistema (Sistema)" in message.get_content()
    assert "Texto descriptivo: Sin descripción" in message.get_content()


def test_worker_lifecycle(worker):
    worker.start()
    assert worker.is_running
    worker.start()
    worker.stop()
    assert not worker.is_running

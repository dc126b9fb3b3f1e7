"""Tests for the read-side helpers: approver attribution, delays, inbox, project state."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from estimaflow.models.enums import AppRole, EstimationStatus as S, ProjectStatus
from estimaflow.models.estimation import ApprovalHistoryEntry, Estimation, RoleActivation
from estimaflow.services.approval_history import (
    ApprovalHistoryService,
    approval_summary,
    approver_for,
    detect_delays,
    pending_for_role,
    project_status,
)

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def entry(status, role, name, at):
    return ApprovalHistoryEntry(status=status, role=role, user_id=f"u-{role}", user_name=name, timestamp=at)


def estimation(status=S.REGISTERED, activation=None, **fields):
    return Estimation(
        id=fields.pop("id", "e-1"),
        folio="F-1",
        project_id="p-1",
        status=status,
        activation=activation or RoleActivation(),
        **fields,
    )


class TestApproverFor:
    def test_inherited_signature_wins(self):
        item = estimation(
            S.AUTH_SUPER,
            RoleActivation(resident_active=False),
            resident_approved_at=T0,
            resident_signed_by="Sergio Salinas",
        )
        info = approver_for(item, AppRole.RESIDENTE)
        assert info.approved and info.is_inherited
        assert info.approver_name == "Sergio Salinas"
        assert info.approved_at == T0

    def test_falls_back_to_history(self):
        item = estimation(S.AUTH_RESIDENT, resident_approved_at=T0 + timedelta(hours=1))
        item.history = [
            entry(S.REGISTERED, AppRole.CONTRATISTA, "Carlos", T0),
            entry(S.AUTH_RESIDENT, AppRole.RESIDENTE, "Rosa", T0 + timedelta(hours=1)),
        ]
        info = approver_for(item, AppRole.RESIDENTE)
        assert info.approved and not info.is_inherited
        assert info.approver_name == "Rosa"

    def test_not_yet_approved(self):
        info = approver_for(estimation(), AppRole.LIDER_PROYECTO)
        assert not info.approved
        assert info.approver_name is None

    def test_only_optional_roles(self):
        with pytest.raises(ValueError):
            approver_for(estimation(), AppRole.COMPRAS)

    def test_summary_covers_the_three_optional_roles(self):
        assert list(approval_summary(estimation())) == [
            AppRole.RESIDENTE,
            AppRole.SUPERINTENDENTE,
            AppRole.LIDER_PROYECTO,
        ]


class TestDetectDelays:
    def test_gap_must_exceed_the_threshold(self):
        history = [
            entry(S.REGISTERED, AppRole.CONTRATISTA, "Carlos", T0),
            entry(S.AUTH_RESIDENT, AppRole.RESIDENTE, "Rosa", T0 + timedelta(hours=24)),
            entry(S.AUTH_SUPER, AppRole.SUPERINTENDENTE, "Sergio", T0 + timedelta(hours=54)),
        ]
        [delay] = detect_delays(history)
        assert delay.status == S.AUTH_SUPER
        assert delay.user_name == "Sergio"
        assert delay.hours_elapsed == 30.0

    def test_input_order_does_not_matter(self):
        history = [
            entry(S.AUTH_RESIDENT, AppRole.RESIDENTE, "Rosa", T0 + timedelta(hours=48)),
            entry(S.REGISTERED, AppRole.CONTRATISTA, "Carlos", T0),
        ]
        assert [d.status for d in detect_delays(history)] == [S.AUTH_RESIDENT]

    def test_custom_threshold_and_short_histories(self):
        history = [
            entry(S.REGISTERED, AppRole.CONTRATISTA, "Carlos", T0),
            entry(S.AUTH_RESIDENT, AppRole.RESIDENTE, "Rosa", T0 + timedelta(hours=5)),
        ]
        assert len(detect_delays(history, threshold_hours=4)) == 1
        assert detect_delays(history[:1]) == []
        assert detect_delays([]) == []


class TestProjectViews:
    def test_pending_for_role_respects_activation(self):
        items = [
            estimation(S.REGISTERED, id="e-1"),
            estimation(S.REGISTERED, RoleActivation(resident_active=False), id="e-2"),
            estimation(S.AUTH_RESIDENT, id="e-3"),
            estimation(S.PAID, id="e-4"),
        ]
        assert [e.id for e in pending_for_role(items, AppRole.SUPERINTENDENTE)] == ["e-2", "e-3"]
        assert [e.id for e in pending_for_role(items, AppRole.RESIDENTE)] == ["e-1"]
        assert pending_for_role(items, AppRole.PAGOS) == []

    @pytest.mark.parametrize(
        "statuses, expected",
        [
            ([], ProjectStatus.NEW),
            ([S.PAID, S.PAID], ProjectStatus.FINISHED),
            ([S.PAID, S.FACTURA_SUBIDA], ProjectStatus.ACTIVE),
            ([S.REGISTERED], ProjectStatus.ACTIVE),
        ],
    )
    def test_project_status(self, statuses, expected):
        assert project_status(estimation(status, id=f"e-{i}") for i, status in enumerate(statuses)) == expected


class TestApprovalHistoryService:
    @pytest.fixture
    def history_service(self, estimation_repo, config, logger):
        return ApprovalHistoryService(estimation_repo=estimation_repo, config=config, logger=logger)

    def test_inbox_and_overview(self, history_service, workflow, users, make_project, register):
        project_id = make_project()
        first = register(project_id, folio="F-001", amount="100")
        second = register(project_id, folio="F-002", amount="50.25")
        workflow.approve(first, users[AppRole.RESIDENTE])

        inbox = history_service.inbox(project_id, AppRole.RESIDENTE)
        assert [e.id for e in inbox.data] == [second]

        overview = history_service.project_overview(project_id).data
        assert overview.status == ProjectStatus.ACTIVE
        assert overview.estimation_count == 2
        assert overview.active_count == 2
        assert overview.total_amount == Decimal("150.25")

    def test_empty_project_is_new(self, history_service, make_project):
        overview = history_service.project_overview(make_project()).data
        assert overview.status == ProjectStatus.NEW
        assert overview.last_activity is None

    def test_delays_use_configured_threshold(self, history_service, workflow, users, make_project, register, clock):
        estimation_id = register(make_project())
        clock.advance(hours=25)
        workflow.approve(estimation_id, users[AppRole.RESIDENTE])
        clock.advance(hours=2)
        workflow.approve(estimation_id, users[AppRole.SUPERINTENDENTE])

        result = history_service.delays_for(estimation_id)

        assert result.success
        assert [(d.status, d.role) for d in result.data] == [(S.AUTH_RESIDENT, AppRole.RESIDENTE)]

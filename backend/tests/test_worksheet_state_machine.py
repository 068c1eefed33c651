# Overview: Pytest coverage for the worksheet production state machine and rollback.

"""
Worksheet lifecycle tests.

Verifies:
- Allowed transitions succeed and write exactly one audit row
- Disallowed transitions fail without mutating state or writing audit rows
- DELIVERED is reachable only through invoice finalization
- Rollback IN_PRODUCTION -> DRAFT requires a reason and the exact source status
- Void QC_APPROVED | DELIVERED -> VOIDED requires a reason and VOID_WORKSHEETS
- Permission checks depend on the target status and, for some edges, the source
- Status changes and their audit rows commit together or not at all
- Non-object JSON bodies are rejected with 400
"""

import pytest

from labdesk.extensions import db
from labdesk.models import AuditLog, SecurityEvent, Worksheet
from labdesk.services import invoice_service, worksheet_service
from labdesk.services.worksheet_service import InvalidTransitionError
from labdesk.services.permission_service import PermissionDeniedError
from labdesk.validation import ValidationError, NotFoundError, ConflictError

from conftest import make_worksheet


def _audit_count(ws_id: int) -> int:
    return db.session.query(AuditLog).filter_by(entity_type="Worksheet", entity_id=ws_id).count()


class TestTransitionTable:

    @pytest.mark.parametrize(
        "from_status,to_status,allowed",
        [
            ("DRAFT", "IN_PRODUCTION", True),
            ("DRAFT", "QC_PENDING", False),
            ("IN_PRODUCTION", "QC_PENDING", True),
            ("IN_PRODUCTION", "DRAFT", False),
            ("QC_PENDING", "QC_APPROVED", True),
            ("QC_PENDING", "QC_REJECTED", True),
            ("QC_PENDING", "CANCELLED", True),
            ("QC_REJECTED", "IN_PRODUCTION", True),
            ("QC_APPROVED", "DELIVERED", True),
            ("QC_APPROVED", "IN_PRODUCTION", False),
            ("QC_APPROVED", "CANCELLED", True),
            ("QC_APPROVED", "VOIDED", False),
            ("DELIVERED", "VOIDED", False),
            ("VOIDED", "CANCELLED", False),
            ("VOIDED", "QC_APPROVED", False),
            ("DELIVERED", "CANCELLED", False),
            ("CANCELLED", "DRAFT", False),
        ],
    )
    def test_can_transition(self, from_status, to_status, allowed):
        assert worksheet_service.can_transition(from_status, to_status) is allowed

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            worksheet_service.can_transition("DRAFT", "SHIPPED")

    def test_available_transitions_filtered_by_permission(self):
        assert worksheet_service.get_available_transitions("QC_PENDING", {"MANAGE_PRODUCTION"}) == ["CANCELLED"]
        assert worksheet_service.get_available_transitions("QC_PENDING", {"PERFORM_QC"}) == [
            "QC_APPROVED",
            "QC_REJECTED",
        ]

    def test_delivered_never_offered(self):
        perms = {"MANAGE_PRODUCTION", "PERFORM_QC"}
        assert worksheet_service.get_available_transitions("QC_APPROVED", perms) == []

    def test_cancel_after_approval_needs_void_permission(self):
        perms = {"MANAGE_PRODUCTION", "PERFORM_QC", "VOID_WORKSHEETS"}
        assert worksheet_service.get_available_transitions("QC_APPROVED", perms) == ["CANCELLED"]
        assert worksheet_service.required_permission("QC_APPROVED", "CANCELLED") == "VOID_WORKSHEETS"
        assert worksheet_service.required_permission("QC_PENDING", "CANCELLED") == "MANAGE_PRODUCTION"

    def test_voided_is_terminal(self):
        perms = {"MANAGE_PRODUCTION", "PERFORM_QC", "VOID_WORKSHEETS"}
        assert worksheet_service.get_available_transitions("VOIDED", perms) == []


class TestTransitions:

    def test_create_assigns_sequential_numbers(self, lab_a, dentist_a, technician_a):
        ws1 = make_worksheet(lab_a, dentist_a, technician_a)
        ws2 = make_worksheet(lab_a, dentist_a, technician_a)
        assert ws1.worksheet_number == "WS-001"
        assert ws2.worksheet_number == "WS-002"
        assert ws1.status == "DRAFT"

    def test_allowed_transition_writes_one_audit_row(self, lab_a, dentist_a, technician_a):
        ws = make_worksheet(lab_a, dentist_a, technician_a)
        before = _audit_count(ws.id)

        worksheet_service.transition_worksheet(
            worksheet_id=ws.id, lab_id=lab_a.id, to_status="IN_PRODUCTION", actor_user_id=technician_a.id
        )

        assert ws.status == "IN_PRODUCTION"
        assert ws.manufacture_date is not None
        assert _audit_count(ws.id) == before + 1
        row = (
            db.session.query(AuditLog)
            .filter_by(entity_type="Worksheet", entity_id=ws.id)
            .order_by(AuditLog.id.desc())
            .first()
        )
        assert row.action == "STATUS_CHANGE"
        assert '"IN_PRODUCTION"' in row.new_values

    def test_rejected_transition_does_not_mutate(self, lab_a, dentist_a, technician_a):
        ws = make_worksheet(lab_a, dentist_a, technician_a)
        before = _audit_count(ws.id)

        with pytest.raises(InvalidTransitionError):
            worksheet_service.transition_worksheet(
                worksheet_id=ws.id, lab_id=lab_a.id, to_status="QC_APPROVED", actor_user_id=technician_a.id
            )

        db.session.expire_all()
        assert db.session.get(Worksheet, ws.id).status == "DRAFT"
        assert _audit_count(ws.id) == before

    def test_delivered_cannot_be_requested_directly(self, lab_a, dentist_a, technician_a, crown):
        ws = make_worksheet(lab_a, dentist_a, technician_a, [(crown, 1)], "QC_APPROVED")
        with pytest.raises(InvalidTransitionError):
            worksheet_service.transition_worksheet(
                worksheet_id=ws.id, lab_id=lab_a.id, to_status="DELIVERED", actor_user_id=technician_a.id
            )
        assert ws.status == "QC_APPROVED"

    def test_qc_requires_perform_qc(self, lab_a, dentist_a, technician_a, staff_a):
        ws = make_worksheet(lab_a, dentist_a, technician_a, status="QC_PENDING")
        denied_before = db.session.query(SecurityEvent).filter_by(event_type="PERMISSION_DENIED").count()

        with pytest.raises(PermissionDeniedError):
            worksheet_service.transition_worksheet(
                worksheet_id=ws.id, lab_id=lab_a.id, to_status="QC_APPROVED", actor_user_id=staff_a.id
            )

        assert ws.status == "QC_PENDING"
        denied_after = db.session.query(SecurityEvent).filter_by(event_type="PERMISSION_DENIED").count()
        assert denied_after == denied_before + 1

    def test_qc_inspector_cannot_start_production(self, lab_a, dentist_a, technician_a, qc_a):
        ws = make_worksheet(lab_a, dentist_a, technician_a)
        with pytest.raises(PermissionDeniedError):
            worksheet_service.transition_worksheet(
                worksheet_id=ws.id, lab_id=lab_a.id, to_status="IN_PRODUCTION", actor_user_id=qc_a.id
            )

    def test_products_only_added_to_drafts(self, lab_a, dentist_a, technician_a, crown):
        ws = make_worksheet(lab_a, dentist_a, technician_a, status="IN_PRODUCTION")
        with pytest.raises(InvalidTransitionError):
            worksheet_service.add_worksheet_product(
                worksheet_id=ws.id, lab_id=lab_a.id, product_id=crown.id, actor_user_id=technician_a.id
            )

    def test_price_frozen_at_selection(self, db_session, lab_a, dentist_a, technician_a, crown):
        ws = make_worksheet(lab_a, dentist_a, technician_a, [(crown, 2)])
        crown.price_cents = 9999
        db_session.commit()

        assert ws.products[0].price_at_selection_cents == 5000
        assert ws.subtotal_cents == 10000

    def test_quantity_accepts_digit_string(self, lab_a, dentist_a, technician_a, crown):
        ws = make_worksheet(lab_a, dentist_a, technician_a)

        line = worksheet_service.add_worksheet_product(
            worksheet_id=ws.id, lab_id=lab_a.id, product_id=crown.id, quantity="2", actor_user_id=technician_a.id
        )

        assert line.quantity == 2
        assert ws.subtotal_cents == 10000

    @pytest.mark.parametrize("quantity", [0, -1, "0", True, 1.5, "two", None])
    def test_quantity_rejected(self, lab_a, dentist_a, technician_a, crown, quantity):
        ws = make_worksheet(lab_a, dentist_a, technician_a)

        with pytest.raises(ValidationError):
            worksheet_service.add_worksheet_product(
                worksheet_id=ws.id,
                lab_id=lab_a.id,
                product_id=crown.id,
                quantity=quantity,
                actor_user_id=technician_a.id,
            )

        assert ws.products == []


class TestCancelEdges:

    def test_technician_cancels_pending_qc(self, lab_a, dentist_a, technician_a):
        ws = make_worksheet(lab_a, dentist_a, technician_a, status="QC_PENDING")

        worksheet_service.transition_worksheet(
            worksheet_id=ws.id, lab_id=lab_a.id, to_status="CANCELLED", actor_user_id=technician_a.id
        )

        assert ws.status == "CANCELLED"

    def test_technician_cannot_cancel_approved(self, lab_a, dentist_a, technician_a, crown):
        ws = make_worksheet(lab_a, dentist_a, technician_a, [(crown, 1)], "QC_APPROVED")
        before = _audit_count(ws.id)

        with pytest.raises(PermissionDeniedError):
            worksheet_service.transition_worksheet(
                worksheet_id=ws.id, lab_id=lab_a.id, to_status="CANCELLED", actor_user_id=technician_a.id
            )

        db.session.expire_all()
        assert db.session.get(Worksheet, ws.id).status == "QC_APPROVED"
        assert _audit_count(ws.id) == before

    def test_admin_cancels_approved(self, lab_a, dentist_a, technician_a, admin_a, crown):
        ws = make_worksheet(lab_a, dentist_a, technician_a, [(crown, 1)], "QC_APPROVED")

        worksheet_service.transition_worksheet(
            worksheet_id=ws.id, lab_id=lab_a.id, to_status="CANCELLED", actor_user_id=admin_a.id
        )

        assert ws.status == "CANCELLED"

    def test_cannot_cancel_while_on_draft_invoice(
        self, lab_a, dentist_a, admin_a, invoicing_a, approved_worksheets
    ):
        ws = approved_worksheets[0]
        invoice_service.create_invoice(
            lab_id=lab_a.id, dentist_id=dentist_a.id, worksheet_ids=[ws.id], actor_user_id=invoicing_a.id
        )

        with pytest.raises(ConflictError):
            worksheet_service.transition_worksheet(
                worksheet_id=ws.id, lab_id=lab_a.id, to_status="CANCELLED", actor_user_id=admin_a.id
            )

        db.session.expire_all()
        assert db.session.get(Worksheet, ws.id).status == "QC_APPROVED"

    def test_voided_cannot_be_requested_through_transition(self, lab_a, dentist_a, admin_a, crown):
        ws = make_worksheet(lab_a, dentist_a, admin_a, [(crown, 1)], "QC_APPROVED")

        with pytest.raises(InvalidTransitionError):
            worksheet_service.transition_worksheet(
                worksheet_id=ws.id, lab_id=lab_a.id, to_status="VOIDED", actor_user_id=admin_a.id
            )

        assert ws.status == "QC_APPROVED"


class TestRollback:

    def test_rollback_from_in_production(self, lab_a, dentist_a, technician_a):
        ws = make_worksheet(lab_a, dentist_a, technician_a, status="IN_PRODUCTION")
        before = _audit_count(ws.id)

        worksheet_service.rollback_worksheet(
            worksheet_id=ws.id, lab_id=lab_a.id, reason="  wrong shade  ", actor_user_id=technician_a.id
        )

        assert ws.status == "DRAFT"
        assert _audit_count(ws.id) == before + 1
        row = (
            db.session.query(AuditLog)
            .filter_by(entity_type="Worksheet", entity_id=ws.id)
            .order_by(AuditLog.id.desc())
            .first()
        )
        assert row.reason == "wrong shade"

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_rollback_requires_reason(self, lab_a, dentist_a, technician_a, reason):
        ws = make_worksheet(lab_a, dentist_a, technician_a, status="IN_PRODUCTION")
        with pytest.raises(ValidationError):
            worksheet_service.rollback_worksheet(
                worksheet_id=ws.id, lab_id=lab_a.id, reason=reason, actor_user_id=technician_a.id
            )
        assert ws.status == "IN_PRODUCTION"

    @pytest.mark.parametrize("status", ["DRAFT", "QC_PENDING", "QC_REJECTED"])
    def test_rollback_only_from_in_production(self, lab_a, dentist_a, technician_a, status):
        ws = make_worksheet(lab_a, dentist_a, technician_a, status=status)
        before = _audit_count(ws.id)

        with pytest.raises(InvalidTransitionError):
            worksheet_service.rollback_worksheet(
                worksheet_id=ws.id, lab_id=lab_a.id, reason="redo", actor_user_id=technician_a.id
            )

        assert ws.status == status
        assert _audit_count(ws.id) == before

    def test_rollback_unknown_worksheet(self, lab_a, technician_a):
        with pytest.raises(NotFoundError):
            worksheet_service.rollback_worksheet(
                worksheet_id=99999, lab_id=lab_a.id, reason="redo", actor_user_id=technician_a.id
            )

    def test_audit_failure_keeps_status(self, monkeypatch, lab_a, dentist_a, technician_a):
        ws = make_worksheet(lab_a, dentist_a, technician_a, status="IN_PRODUCTION")
        before = _audit_count(ws.id)

        def failing_audit(**kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(worksheet_service, "record_audit_event", failing_audit)

        with pytest.raises(RuntimeError):
            worksheet_service.rollback_worksheet(
                worksheet_id=ws.id, lab_id=lab_a.id, reason="redo", actor_user_id=technician_a.id
            )

        db.session.expire_all()
        assert db.session.get(Worksheet, ws.id).status == "IN_PRODUCTION"
        assert _audit_count(ws.id) == before


class TestVoid:

    def test_void_approved(self, lab_a, dentist_a, technician_a, admin_a, crown):
        ws = make_worksheet(lab_a, dentist_a, technician_a, [(crown, 1)], "QC_APPROVED")
        before = _audit_count(ws.id)

        worksheet_service.void_worksheet(
            worksheet_id=ws.id, lab_id=lab_a.id, reason="  patient moved abroad ", actor_user_id=admin_a.id
        )

        db.session.expire_all()
        stored = db.session.get(Worksheet, ws.id)
        assert stored.status == "VOIDED"
        assert stored.effective_status == "VOIDED"
        assert stored.void_reason == "patient moved abroad"
        assert stored.voided_by_user_id == admin_a.id
        assert stored.voided_at is not None
        assert _audit_count(ws.id) == before + 1
        row = (
            db.session.query(AuditLog)
            .filter_by(entity_type="Worksheet", entity_id=ws.id)
            .order_by(AuditLog.id.desc())
            .first()
        )
        assert row.action == "UPDATE"
        assert row.old_values == '{"status": "QC_APPROVED"}'
        assert '"VOIDED"' in row.new_values
        assert row.reason == "patient moved abroad"

    def test_void_delivered_survives_invoice_cancel(
        self, lab_a, dentist_a, admin_a, invoicing_a, approved_worksheets
    ):
        ws1, ws2 = approved_worksheets
        invoice = invoice_service.create_invoice(
            lab_id=lab_a.id,
            dentist_id=dentist_a.id,
            worksheet_ids=[ws1.id, ws2.id],
            actor_user_id=invoicing_a.id,
        )
        invoice_service.finalize_invoice(invoice_id=invoice.id, lab_id=lab_a.id, actor_user_id=invoicing_a.id)
        assert ws1.status == "DELIVERED"

        worksheet_service.void_worksheet(
            worksheet_id=ws1.id, lab_id=lab_a.id, reason="remake under warranty", actor_user_id=admin_a.id
        )
        assert ws1.is_invoiced is True
        assert ws1.effective_status == "VOIDED"
        assert ws1.completed_at is not None

        invoice_service.cancel_invoice(invoice_id=invoice.id, lab_id=lab_a.id, actor_user_id=invoicing_a.id)

        db.session.expire_all()
        assert db.session.get(Worksheet, ws1.id).status == "VOIDED"
        assert db.session.get(Worksheet, ws2.id).status == "QC_APPROVED"
        assert worksheet_service.list_invoiceable_worksheets(lab_a.id, dentist_a.id) == [
            db.session.get(Worksheet, ws2.id)
        ]

    @pytest.mark.parametrize("reason", [None, "", "   ", 42])
    def test_void_requires_reason(self, lab_a, dentist_a, technician_a, admin_a, crown, reason):
        ws = make_worksheet(lab_a, dentist_a, technician_a, [(crown, 1)], "QC_APPROVED")

        with pytest.raises(ValidationError):
            worksheet_service.void_worksheet(
                worksheet_id=ws.id, lab_id=lab_a.id, reason=reason, actor_user_id=admin_a.id
            )

        assert ws.status == "QC_APPROVED"

    @pytest.mark.parametrize("status", ["DRAFT", "IN_PRODUCTION", "QC_PENDING", "QC_REJECTED", "CANCELLED"])
    def test_void_only_from_approved_or_delivered(self, lab_a, dentist_a, technician_a, admin_a, status):
        ws = make_worksheet(lab_a, dentist_a, technician_a, status=status)
        before = _audit_count(ws.id)

        with pytest.raises(InvalidTransitionError) as exc:
            worksheet_service.void_worksheet(
                worksheet_id=ws.id, lab_id=lab_a.id, reason="x", actor_user_id=admin_a.id
            )

        assert str(exc.value) == (
            f"Cannot void worksheet with status {status}. "
            "Only QC_APPROVED or DELIVERED worksheets can be voided."
        )
        assert ws.status == status
        assert _audit_count(ws.id) == before

    def test_void_twice_rejected(self, lab_a, dentist_a, admin_a, crown):
        ws = make_worksheet(lab_a, dentist_a, admin_a, [(crown, 1)], "QC_APPROVED")
        worksheet_service.void_worksheet(worksheet_id=ws.id, lab_id=lab_a.id, reason="x", actor_user_id=admin_a.id)

        with pytest.raises(InvalidTransitionError):
            worksheet_service.void_worksheet(
                worksheet_id=ws.id, lab_id=lab_a.id, reason="again", actor_user_id=admin_a.id
            )

    def test_technician_cannot_void(self, lab_a, dentist_a, technician_a, crown):
        ws = make_worksheet(lab_a, dentist_a, technician_a, [(crown, 1)], "QC_APPROVED")

        with pytest.raises(PermissionDeniedError):
            worksheet_service.void_worksheet(
                worksheet_id=ws.id, lab_id=lab_a.id, reason="x", actor_user_id=technician_a.id
            )

        assert ws.status == "QC_APPROVED"

    def test_cannot_void_while_on_draft_invoice(
        self, lab_a, dentist_a, admin_a, invoicing_a, approved_worksheets
    ):
        ws = approved_worksheets[0]
        invoice_service.create_invoice(
            lab_id=lab_a.id, dentist_id=dentist_a.id, worksheet_ids=[ws.id], actor_user_id=invoicing_a.id
        )

        with pytest.raises(ConflictError):
            worksheet_service.void_worksheet(
                worksheet_id=ws.id, lab_id=lab_a.id, reason="x", actor_user_id=admin_a.id
            )

        db.session.expire_all()
        assert db.session.get(Worksheet, ws.id).status == "QC_APPROVED"

    def test_voided_worksheet_is_read_only(self, lab_a, dentist_a, admin_a, crown):
        ws = make_worksheet(lab_a, dentist_a, admin_a, [(crown, 1)], "QC_APPROVED")
        worksheet_service.void_worksheet(worksheet_id=ws.id, lab_id=lab_a.id, reason="x", actor_user_id=admin_a.id)

        with pytest.raises(ConflictError):
            worksheet_service.update_worksheet(
                worksheet_id=ws.id, lab_id=lab_a.id, patch={"patient_name": "Other"}, actor_user_id=admin_a.id
            )

    def test_voided_worksheet_cannot_be_invoiced(self, lab_a, dentist_a, admin_a, crown):
        ws = make_worksheet(lab_a, dentist_a, admin_a, [(crown, 1)], "QC_APPROVED")
        worksheet_service.void_worksheet(worksheet_id=ws.id, lab_id=lab_a.id, reason="x", actor_user_id=admin_a.id)

        with pytest.raises(ValidationError):
            invoice_service.create_invoice(
                lab_id=lab_a.id, dentist_id=dentist_a.id, worksheet_ids=[ws.id], actor_user_id=admin_a.id
            )

    def test_audit_failure_keeps_status(self, monkeypatch, lab_a, dentist_a, admin_a, crown):
        ws = make_worksheet(lab_a, dentist_a, admin_a, [(crown, 1)], "QC_APPROVED")

        def failing_audit(**kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(worksheet_service, "record_audit_event", failing_audit)

        with pytest.raises(RuntimeError):
            worksheet_service.void_worksheet(
                worksheet_id=ws.id, lab_id=lab_a.id, reason="x", actor_user_id=admin_a.id
            )

        db.session.expire_all()
        stored = db.session.get(Worksheet, ws.id)
        assert stored.status == "QC_APPROVED"
        assert stored.void_reason is None


class TestWorksheetRoutes:

    def test_rollback_route(self, client, lab_a, dentist_a, technician_a, technician_headers):
        ws = make_worksheet(lab_a, dentist_a, technician_a, status="IN_PRODUCTION")

        resp = client.post(
            f"/api/worksheets/{ws.id}/rollback", json={"reason": "impression redo"}, headers=technician_headers
        )

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["worksheet"]["status"] == "DRAFT"
        assert body["message"] == f"Worksheet {ws.worksheet_number} has been rolled back to DRAFT"

    def test_rollback_route_missing_reason(self, client, lab_a, dentist_a, technician_a, technician_headers):
        ws = make_worksheet(lab_a, dentist_a, technician_a, status="IN_PRODUCTION")
        resp = client.post(f"/api/worksheets/{ws.id}/rollback", json={}, headers=technician_headers)
        assert resp.status_code == 400

    def test_rollback_route_wrong_status(self, client, lab_a, dentist_a, technician_a, technician_headers):
        ws = make_worksheet(lab_a, dentist_a, technician_a)
        resp = client.post(
            f"/api/worksheets/{ws.id}/rollback", json={"reason": "x"}, headers=technician_headers
        )
        assert resp.status_code == 400

    def test_rollback_route_not_found(self, client, technician_headers):
        resp = client.post("/api/worksheets/99999/rollback", json={"reason": "x"}, headers=technician_headers)
        assert resp.status_code == 404

    def test_transition_route_reports_available_transitions(
        self, client, lab_a, dentist_a, technician_a, technician_headers
    ):
        ws = make_worksheet(lab_a, dentist_a, technician_a)
        resp = client.post(
            f"/api/worksheets/{ws.id}/transition", json={"status": "IN_PRODUCTION"}, headers=technician_headers
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "IN_PRODUCTION"
        assert body["available_transitions"] == ["CANCELLED", "QC_PENDING"]

    def test_transition_route_permission_denied(self, client, lab_a, dentist_a, technician_a, staff_headers):
        ws = make_worksheet(lab_a, dentist_a, technician_a)
        resp = client.post(
            f"/api/worksheets/{ws.id}/transition", json={"status": "IN_PRODUCTION"}, headers=staff_headers
        )
        assert resp.status_code == 403

    def test_void_route(self, client, lab_a, dentist_a, technician_a, crown, admin_headers):
        ws = make_worksheet(lab_a, dentist_a, technician_a, [(crown, 1)], "QC_APPROVED")

        resp = client.post(
            f"/api/worksheets/{ws.id}/void", json={"reason": "duplicate case"}, headers=admin_headers
        )

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["worksheet"]["status"] == "VOIDED"
        assert body["worksheet"]["void_reason"] == "duplicate case"
        assert body["message"] == f"Worksheet {ws.worksheet_number} has been voided"

    def test_void_route_denied_for_technician(
        self, client, lab_a, dentist_a, technician_a, crown, technician_headers
    ):
        ws = make_worksheet(lab_a, dentist_a, technician_a, [(crown, 1)], "QC_APPROVED")

        resp = client.post(f"/api/worksheets/{ws.id}/void", json={"reason": "x"}, headers=technician_headers)

        assert resp.status_code == 403
        db.session.expire_all()
        assert db.session.get(Worksheet, ws.id).status == "QC_APPROVED"

    def test_void_route_errors(self, client, lab_a, dentist_a, technician_a, admin_headers):
        ws = make_worksheet(lab_a, dentist_a, technician_a)

        assert client.post(f"/api/worksheets/{ws.id}/void", json={}, headers=admin_headers).status_code == 400
        resp = client.post(f"/api/worksheets/{ws.id}/void", json={"reason": "x"}, headers=admin_headers)
        assert resp.status_code == 400
        assert "Only QC_APPROVED or DELIVERED" in resp.get_json()["error"]
        resp = client.post("/api/worksheets/99999/void", json={"reason": "x"}, headers=admin_headers)
        assert resp.status_code == 404

    @pytest.mark.parametrize("action", ["transition", "rollback", "products", "void"])
    @pytest.mark.parametrize("payload", [["IN_PRODUCTION"], "IN_PRODUCTION", 7])
    def test_non_object_body_is_400(self, client, lab_a, dentist_a, admin_a, admin_headers, action, payload):
        ws = make_worksheet(lab_a, dentist_a, admin_a, status="IN_PRODUCTION")
        before = _audit_count(ws.id)

        resp = client.post(f"/api/worksheets/{ws.id}/{action}", json=payload, headers=admin_headers)

        assert resp.status_code == 400
        assert resp.get_json() == {"error": "Invalid JSON payload"}
        db.session.expire_all()
        assert db.session.get(Worksheet, ws.id).status == "IN_PRODUCTION"
        assert _audit_count(ws.id) == before

    @pytest.mark.parametrize(
        "action,payload",
        [
            ("transition", {"status": ["QC_PENDING"]}),
            ("products", {"productId": "crown"}),
            ("products", {"productId": 1, "quantity": "many"}),
        ],
    )
    def test_malformed_fields_are_400(self, client, lab_a, dentist_a, admin_a, admin_headers, action, payload):
        ws = make_worksheet(lab_a, dentist_a, admin_a)

        resp = client.post(f"/api/worksheets/{ws.id}/{action}", json=payload, headers=admin_headers)

        assert resp.status_code == 400
        assert ws.products == []

    def test_add_product_route_accepts_string_quantity(
        self, client, lab_a, dentist_a, technician_a, crown, technician_headers
    ):
        ws = make_worksheet(lab_a, dentist_a, technician_a)

        resp = client.post(
            f"/api/worksheets/{ws.id}/products",
            json={"productId": crown.id, "quantity": "3"},
            headers=technician_headers,
        )

        assert resp.status_code == 201
        assert resp.get_json()["products"][0]["quantity"] == 3

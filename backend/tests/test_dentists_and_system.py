# Overview: Pytest coverage for dentist routes, health check and CLI maintenance commands.

import pytest

from labdesk.extensions import db
from labdesk.models import AuditLog, Dentist, Invoice, Laboratory, User
from labdesk.services import invoice_service


class TestDentistRoutes:

    def test_create_dentist(self, client, lab_a, admin_headers):
        resp = client.post(
            "/api/dentists",
            json={"clinicName": "Bright Smile", "name": "Dr. Petra Kos", "email": "petra@bright.test"},
            headers=admin_headers,
        )

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["dentist_name"] == "Dr. Petra Kos"
        assert body["lab_id"] == lab_a.id
        assert db.session.query(AuditLog).filter_by(entity_type="Dentist", action="CREATE").count() == 1

    @pytest.mark.parametrize(
        "payload",
        [
            {"clinic_name": "No dentist"},
            {"clinic_name": "X", "dentist_name": "Y", "email": "not-an-address"},
            {"clinic_name": "X", "dentist_name": "Y", "payment_terms_days": 400},
            {"clinic_name": "X", "dentist_name": "Y", "lab_id": 2},
        ],
    )
    def test_create_validation(self, client, lab_a, admin_headers, payload):
        resp = client.post("/api/dentists", json=payload, headers=admin_headers)
        assert resp.status_code == 400
        assert db.session.query(Dentist).count() == 0

    def test_update_dentist(self, client, dentist_a, admin_headers):
        resp = client.patch(
            f"/api/dentists/{dentist_a.id}", json={"paymentTermsDays": 15}, headers=admin_headers
        )

        assert resp.status_code == 200
        assert resp.get_json()["payment_terms_days"] == 15
        audit = db.session.query(AuditLog).filter_by(entity_type="Dentist", action="UPDATE").one()
        assert audit.old_values == '{"payment_terms_days": 30}'

    def test_inactive_hidden_by_default(self, client, db_session, dentist_a, other_dentist_a, staff_headers):
        other_dentist_a.is_active = False
        db_session.commit()

        resp = client.get("/api/dentists", headers=staff_headers)
        assert [d["id"] for d in resp.get_json()["items"]] == [dentist_a.id]

        resp = client.get("/api/dentists?include_inactive=true", headers=staff_headers)
        assert resp.get_json()["count"] == 2

    def test_unknown_dentist_is_404(self, client, lab_a, staff_headers):
        assert client.get("/api/dentists/99999", headers=staff_headers).status_code == 404


class TestHealth:

    def test_health_is_public(self, client, lab_a):
        resp = client.get("/health")

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["permissions"]["details"]["permission_count"] > 0


class TestCli:

    def test_system_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        first = runner.invoke(args=["system", "init", "--lab", "Smile Dental Lab", "--lab-code", "SMILE"])
        assert first.exit_code == 0, first.output
        assert "DONE LabDesk initialized" in first.output

        second = runner.invoke(args=["system", "init", "--lab-code", "SMILE"])
        assert second.exit_code == 0, second.output
        assert "already exists" in second.output

        lab = db.session.query(Laboratory).filter_by(code="SMILE").one()
        assert lab.name == "Smile Dental Lab"
        assert db.session.query(User).filter_by(lab_id=lab.id).count() == 5

    def test_verify_totals_passes(self, app, lab_a, dentist_a, invoicing_a, approved_worksheets):
        invoice_service.create_invoice(
            lab_id=lab_a.id,
            dentist_id=dentist_a.id,
            worksheet_ids=[ws.id for ws in approved_worksheets],
            actor_user_id=invoicing_a.id,
        )

        result = app.test_cli_runner().invoke(args=["invoices", "verify-totals"])

        assert result.exit_code == 0, result.output
        assert "PASS All invoice totals match" in result.output

    def test_verify_totals_reports_mismatch(
        self, app, db_session, lab_a, dentist_a, invoicing_a, approved_worksheets
    ):
        invoice = invoice_service.create_invoice(
            lab_id=lab_a.id,
            dentist_id=dentist_a.id,
            worksheet_ids=[ws.id for ws in approved_worksheets],
            actor_user_id=invoicing_a.id,
        )
        db_session.query(Invoice).filter_by(id=invoice.id).update({"total_cents": 1})
        db_session.commit()

        result = app.test_cli_runner().invoke(args=["invoices", "verify-totals", "--lab-id", str(lab_a.id)])

        assert result.exit_code == 1
        assert f"FAIL Invoice {invoice.id} (draft, lab {lab_a.id}): stored 1 != computed 8000" in result.output

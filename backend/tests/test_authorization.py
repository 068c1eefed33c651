"""
Authorization tests for LabDesk.

Verifies:
- Unauthenticated requests return 401
- Login issues a bearer token; failed logins are recorded
- Read-only staff are denied every mutating operation (403)
- Denials are written to security_events with the caller's laboratory
"""

import pytest

from labdesk.extensions import db
from labdesk.models import SecurityEvent, SessionToken

from conftest import PASSWORD


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("GET", "/api/dentists"),
            ("POST", "/api/dentists"),
            ("GET", "/api/products"),
            ("POST", "/api/products/bulk-update"),
            ("POST", "/api/products/bulk-delete"),
            ("GET", "/api/worksheets"),
            ("POST", "/api/worksheets/1/rollback"),
            ("POST", "/api/worksheets/1/transition"),
            ("POST", "/api/worksheets/1/void"),
            ("GET", "/api/invoices"),
            ("POST", "/api/invoices"),
            ("POST", "/api/invoices/1/send-email"),
            ("GET", "/api/settings/bank-accounts"),
            ("POST", "/api/settings/bank-accounts"),
            ("GET", "/api/audit-logs"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client, db_session):
        resp = client.get("/api/products", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401


# =============================================================================
# LOGIN / LOGOUT
# =============================================================================


class TestLogin:

    def test_login_and_me(self, client, lab_a, admin_a):
        resp = client.post(
            "/api/auth/login", json={"email": admin_a.email, "password": PASSWORD, "labCode": "LABA"}
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["lab_id"] == lab_a.id
        assert "MANAGE_PRODUCT_CATALOG" in body["permissions"]

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.status_code == 200
        assert me.get_json()["roles"] == ["admin"]

    def test_wrong_password_logged(self, client, lab_a, admin_a):
        resp = client.post("/api/auth/login", json={"email": admin_a.email, "password": "Wrong123!"})

        assert resp.status_code == 401
        event = db.session.query(SecurityEvent).filter_by(event_type="LOGIN_FAILED").one()
        assert event.success is False

    def test_wrong_lab_code(self, client, lab_a, lab_b, admin_a):
        resp = client.post(
            "/api/auth/login", json={"email": admin_a.email, "password": PASSWORD, "lab_code": "LABB"}
        )
        assert resp.status_code == 401

    def test_missing_fields(self, client, db_session):
        resp = client.post("/api/auth/login", json={"email": "x@y.test"})
        assert resp.status_code == 400

    def test_non_object_body(self, client, db_session):
        resp = client.post("/api/auth/login", json=["x@y.test", "Password123!"])
        assert resp.status_code == 400
        assert resp.get_json() == {"error": "Invalid JSON payload"}

    def test_logout_revokes_token(self, client, lab_a, admin_a):
        token = client.post(
            "/api/auth/login", json={"email": admin_a.email, "password": PASSWORD}
        ).get_json()["token"]
        headers = {"Authorization": f"Bearer {token}"}

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401
        assert db.session.query(SessionToken).filter_by(is_revoked=True).count() == 1

    def test_deactivated_user_loses_session(self, client, db_session, admin_a, admin_headers):
        admin_a.is_active = False
        db_session.commit()
        assert client.get("/api/auth/me", headers=admin_headers).status_code == 401


# =============================================================================
# STAFF DENIED MUTATIONS (403)
# =============================================================================


class TestStaffDenied:
    """The read-only staff role cannot change anything."""

    @pytest.mark.parametrize(
        "method,path,payload",
        [
            ("POST", "/api/dentists", {"clinic_name": "X", "dentist_name": "Y"}),
            ("POST", "/api/products", {"code": "X", "name": "Y"}),
            ("POST", "/api/products/bulk-update", {"ids": [1], "data": {"active": False}}),
            ("POST", "/api/products/bulk-delete", {"ids": [1]}),
            ("POST", "/api/worksheets", {"dentist_id": 1}),
            ("POST", "/api/worksheets/1/rollback", {"reason": "x"}),
            ("POST", "/api/worksheets/1/void", {"reason": "x"}),
            ("POST", "/api/invoices", {"dentist_id": 1}),
            ("POST", "/api/invoices/1/send-email", {}),
            ("POST", "/api/invoices/1/cancel", {}),
            ("POST", "/api/settings/bank-accounts", {"bank_name": "X", "iban": "HR1210010051863000160"}),
            ("GET", "/api/audit-logs", None),
        ],
    )
    def test_staff_denied(self, client, lab_a, staff_headers, method, path, payload):
        resp = getattr(client, method.lower())(path, json=payload, headers=staff_headers)
        assert resp.status_code == 403, f"{method} {path} returned {resp.status_code}"

    def test_denial_is_logged_with_lab(self, client, lab_a, staff_a, staff_headers):
        client.get("/api/audit-logs", headers=staff_headers)

        event = db.session.query(SecurityEvent).filter_by(event_type="PERMISSION_DENIED").one()
        assert event.user_id == staff_a.id
        assert event.lab_id == lab_a.id
        assert event.action == "VIEW_AUDIT_LOG"
        assert event.resource == "/api/audit-logs"

    def test_staff_can_read(self, client, lab_a, staff_headers):
        assert client.get("/api/products", headers=staff_headers).status_code == 200
        assert client.get("/api/worksheets", headers=staff_headers).status_code == 200
        assert client.get("/api/dentists", headers=staff_headers).status_code == 200

    def test_staff_cannot_read_invoices(self, client, lab_a, staff_headers):
        assert client.get("/api/invoices", headers=staff_headers).status_code == 403


class TestAdminAllowed:

    def test_admin_reads_audit_log(self, client, lab_a, admin_headers, bank_account_a):
        client.post(
            "/api/settings/bank-accounts",
            json={"bank_name": "Erste", "iban": "DE89370400440532013000"},
            headers=admin_headers,
        )

        resp = client.get("/api/audit-logs?entity_type=BankAccount", headers=admin_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["total"] == 1
        assert body["items"][0]["action"] == "CREATE"

# Overview: Pytest coverage for invoice e-mail dispatch.

"""
Invoice e-mail tests.

Verifies:
- The dentist's address is the default recipient; an override wins
- Every attempt leaves an EmailLog row, successful or not
- A DRAFT invoice becomes SENT on the first successful send only
- Delivery failures leave the invoice untouched and surface as HTTP 500
- Missing recipients and unknown invoices map to 400 / 404
"""

import pytest

from labdesk.extensions import db
from labdesk.models import AuditLog, EmailLog, Invoice
from labdesk.services import invoice_service
from labdesk.services.invoice_service import NoRecipientError
from labdesk.services.notification_service import DispatchError, OutgoingEmail, SmtpDispatcher
from labdesk.validation import ValidationError

from conftest import auth_headers, make_dentist


def _draft(lab, dentist, worksheets, actor, **kwargs):
    return invoice_service.create_invoice(
        lab_id=lab.id,
        dentist_id=dentist.id,
        worksheet_ids=[ws.id for ws in worksheets],
        actor_user_id=actor.id,
        **kwargs,
    )


class TestSendService:

    def test_sends_to_dentist_and_marks_sent(
        self, mailer, lab_a, dentist_a, invoicing_a, approved_worksheets, bank_account_a
    ):
        invoice = _draft(lab_a, dentist_a, approved_worksheets, invoicing_a)

        result = invoice_service.send_invoice_email(
            invoice_id=invoice.id, lab_id=lab_a.id, actor_user_id=invoicing_a.id
        )

        assert result["sent_to"] == "ana@smile.test"
        assert result["message_id"] == "<test-1@labdesk.test>"
        assert invoice.payment_status == "SENT"
        assert invoice.sent_at is not None
        assert invoice.is_draft is True

        assert len(mailer.sent) == 1
        email = mailer.sent[0]
        assert email.recipient == "ana@smile.test"
        assert email.subject == f"Invoice draft #{invoice.id} from {lab_a.name}"
        assert "Total: 80.00 EUR" in email.body
        assert "HR1210010051863000160" in email.body

        log = db.session.query(EmailLog).filter_by(invoice_id=invoice.id).one()
        assert log.status == "SENT"
        assert log.sent_by_user_id == invoicing_a.id

        audit = db.session.query(AuditLog).filter_by(
            entity_type="Invoice", entity_id=invoice.id, action="EMAIL_SEND"
        ).one()
        assert audit.actor_user_id == invoicing_a.id

    def test_override_recipient(self, mailer, lab_a, dentist_a, invoicing_a, approved_worksheets):
        invoice = _draft(lab_a, dentist_a, approved_worksheets, invoicing_a)

        result = invoice_service.send_invoice_email(
            invoice_id=invoice.id,
            lab_id=lab_a.id,
            recipient_override="billing@smile.test",
            actor_user_id=invoicing_a.id,
        )

        assert result["sent_to"] == "billing@smile.test"
        assert mailer.sent[0].recipient == "billing@smile.test"

    def test_invalid_override_rejected(self, mailer, lab_a, dentist_a, invoicing_a, approved_worksheets):
        invoice = _draft(lab_a, dentist_a, approved_worksheets, invoicing_a)
        with pytest.raises(ValidationError):
            invoice_service.send_invoice_email(
                invoice_id=invoice.id, lab_id=lab_a.id, recipient_override="not-an-address",
                actor_user_id=invoicing_a.id,
            )
        assert mailer.sent == []

    def test_no_recipient(self, db_session, mailer, lab_a, invoicing_a):
        dentist = make_dentist(db_session, lab_a, email=None)
        invoice = invoice_service.create_invoice(
            lab_id=lab_a.id,
            dentist_id=dentist.id,
            custom_line_items=[{"description": "Repair", "unit_price_cents": 2500}],
            actor_user_id=invoicing_a.id,
        )

        with pytest.raises(NoRecipientError):
            invoice_service.send_invoice_email(invoice_id=invoice.id, lab_id=lab_a.id, actor_user_id=invoicing_a.id)

        assert mailer.sent == []
        assert db.session.query(EmailLog).count() == 0

    def test_second_send_keeps_status(self, mailer, lab_a, dentist_a, invoicing_a, approved_worksheets):
        invoice = _draft(lab_a, dentist_a, approved_worksheets, invoicing_a)

        invoice_service.send_invoice_email(invoice_id=invoice.id, lab_id=lab_a.id, actor_user_id=invoicing_a.id)
        first_sent_at = invoice.sent_at
        invoice_service.send_invoice_email(invoice_id=invoice.id, lab_id=lab_a.id, actor_user_id=invoicing_a.id)

        assert invoice.payment_status == "SENT"
        assert invoice.sent_at == first_sent_at
        assert len(mailer.sent) == 2
        assert db.session.query(EmailLog).filter_by(invoice_id=invoice.id).count() == 2

    def test_finalized_invoice_keeps_status(self, mailer, lab_a, dentist_a, invoicing_a, approved_worksheets):
        invoice = _draft(lab_a, dentist_a, approved_worksheets, invoicing_a, finalize=True)

        invoice_service.send_invoice_email(invoice_id=invoice.id, lab_id=lab_a.id, actor_user_id=invoicing_a.id)

        assert invoice.payment_status == "FINALIZED"
        assert mailer.sent[0].subject.startswith(f"Invoice {invoice.invoice_number} ")

    def test_reference_line_uses_invoice_number(
        self, mailer, lab_a, dentist_a, invoicing_a, approved_worksheets, bank_account_a
    ):
        invoice = _draft(lab_a, dentist_a, approved_worksheets, invoicing_a, finalize=True)

        invoice_service.send_invoice_email(invoice_id=invoice.id, lab_id=lab_a.id, actor_user_id=invoicing_a.id)

        assert f"Reference: {invoice.invoice_number}" in mailer.sent[0].body
        assert "(BIC ZABAHR2X)" in mailer.sent[0].body

    def test_sent_draft_finalizes_keeping_sent(self, mailer, lab_a, dentist_a, invoicing_a, approved_worksheets):
        invoice = _draft(lab_a, dentist_a, approved_worksheets, invoicing_a)
        invoice_service.send_invoice_email(invoice_id=invoice.id, lab_id=lab_a.id, actor_user_id=invoicing_a.id)

        invoice_service.finalize_invoice(invoice_id=invoice.id, lab_id=lab_a.id, actor_user_id=invoicing_a.id)

        assert invoice.is_draft is False
        assert invoice.payment_status == "SENT"
        assert invoice.invoice_number is not None

    def test_dispatch_failure_leaves_invoice_untouched(
        self, mailer, lab_a, dentist_a, invoicing_a, approved_worksheets
    ):
        invoice = _draft(lab_a, dentist_a, approved_worksheets, invoicing_a)
        mailer.fail_with = "Connection refused"

        with pytest.raises(DispatchError):
            invoice_service.send_invoice_email(invoice_id=invoice.id, lab_id=lab_a.id, actor_user_id=invoicing_a.id)

        db.session.expire_all()
        stored = db.session.get(Invoice, invoice.id)
        assert stored.payment_status == "DRAFT"
        assert stored.sent_at is None

        log = db.session.query(EmailLog).filter_by(invoice_id=invoice.id).one()
        assert log.status == "FAILED"
        assert log.error_message == "Connection refused"
        assert db.session.query(AuditLog).filter_by(entity_id=invoice.id, action="EMAIL_SEND").count() == 0


class TestSendRoute:

    def test_send_route_success(self, client, mailer, lab_a, dentist_a, invoicing_a, approved_worksheets):
        invoice = _draft(lab_a, dentist_a, approved_worksheets, invoicing_a)

        resp = client.post(
            f"/api/invoices/{invoice.id}/send-email",
            json={"recipientEmail": "office@smile.test"},
            headers=auth_headers(invoicing_a),
        )

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["sentTo"] == "office@smile.test"
        assert body["messageId"] == "<test-1@labdesk.test>"
        assert body["message"] == "Invoice sent to office@smile.test"

    def test_send_route_without_body_uses_dentist(
        self, client, mailer, lab_a, dentist_a, invoicing_a, approved_worksheets
    ):
        invoice = _draft(lab_a, dentist_a, approved_worksheets, invoicing_a)
        resp = client.post(f"/api/invoices/{invoice.id}/send-email", headers=auth_headers(invoicing_a))
        assert resp.status_code == 200
        assert resp.get_json()["sentTo"] == "ana@smile.test"

    def test_send_route_not_found(self, client, mailer, lab_a, invoicing_a):
        resp = client.post("/api/invoices/99999/send-email", json={}, headers=auth_headers(invoicing_a))
        assert resp.status_code == 404
        assert mailer.sent == []

    def test_send_route_no_recipient(self, client, db_session, mailer, lab_a, invoicing_a):
        dentist = make_dentist(db_session, lab_a, email=None)
        invoice = invoice_service.create_invoice(
            lab_id=lab_a.id,
            dentist_id=dentist.id,
            custom_line_items=[{"description": "Repair", "unit_price_cents": 2500}],
            actor_user_id=invoicing_a.id,
        )
        resp = client.post(f"/api/invoices/{invoice.id}/send-email", json={}, headers=auth_headers(invoicing_a))
        assert resp.status_code == 400

    def test_send_route_dispatch_failure(self, client, mailer, lab_a, dentist_a, invoicing_a, approved_worksheets):
        invoice = _draft(lab_a, dentist_a, approved_worksheets, invoicing_a)
        mailer.fail_with = "SMTP timeout"

        resp = client.post(f"/api/invoices/{invoice.id}/send-email", json={}, headers=auth_headers(invoicing_a))

        assert resp.status_code == 500
        body = resp.get_json()
        assert body["success"] is False
        assert body["error"] == "Failed to send email: SMTP timeout"

    def test_email_history_route(self, client, mailer, lab_a, dentist_a, invoicing_a, approved_worksheets):
        invoice = _draft(lab_a, dentist_a, approved_worksheets, invoicing_a)
        invoice_service.send_invoice_email(invoice_id=invoice.id, lab_id=lab_a.id, actor_user_id=invoicing_a.id)

        resp = client.get(f"/api/invoices/{invoice.id}/emails", headers=auth_headers(invoicing_a))

        assert resp.status_code == 200
        assert resp.get_json()["count"] == 1
        assert resp.get_json()["items"][0]["status"] == "SENT"


class TestSmtpMessage:

    @pytest.mark.parametrize(
        "sender",
        ["invoices@example.com", "LabDesk <invoices@example.com>", '"Smile Lab, Zagreb" <invoices@example.com>'],
    )
    def test_message_id_uses_sender_domain(self, sender):
        dispatcher = SmtpDispatcher(host="smtp.example.com", port=587)

        msg = dispatcher.build_message(
            OutgoingEmail(sender=sender, recipient="petra@bright.test", subject="Invoice", body="Hello")
        )

        assert msg["Message-ID"].endswith("@example.com>")

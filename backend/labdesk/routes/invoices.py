# Overview: Flask API routes for invoices; parses input and returns JSON responses.

"""
Invoice routes.

MULTI-TENANT: Invoices are resolved inside g.lab_id only; an invoice of
another laboratory is reported as not found.

SECURITY:
- Reads require VIEW_INVOICES
- Everything that changes an invoice requires MANAGE_INVOICES

Request bodies accept camelCase or snake_case keys.
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..services import invoice_service, notification_service
from ..services.notification_service import DispatchError
from ..services.worksheet_service import InvalidTransitionError
from ..services.permission_service import PermissionDeniedError
from ..validation import normalize_keys, json_object, ValidationError, ConflictError, NotFoundError
from ..decorators import require_auth, require_permission


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _error_response(exc: Exception, what: str):
    if isinstance(exc, PermissionDeniedError):
        return jsonify({"error": "Permission denied", "message": str(exc)}), 403
    if isinstance(exc, (ValidationError, InvalidTransitionError)):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    current_app.logger.exception("Failed to %s", what)
    return jsonify({"error": "Internal server error"}), 500


def _body() -> dict:
    return normalize_keys(json_object(request.get_json(silent=True)))


@invoices_bp.get("")
@require_auth
@require_permission("VIEW_INVOICES")
def list_invoices_route():
    """
    Query params: payment_status, dentist_id, is_draft, page, per_page
    """
    is_draft = request.args.get("is_draft")
    try:
        result = invoice_service.list_invoices(
            g.lab_id,
            payment_status=request.args.get("payment_status"),
            dentist_id=request.args.get("dentist_id", type=int),
            is_draft=None if is_draft is None else is_draft.lower() == "true",
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(result)


@invoices_bp.get("/<int:invoice_id>")
@require_auth
@require_permission("VIEW_INVOICES")
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id, g.lab_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(invoice.to_dict())


@invoices_bp.get("/<int:invoice_id>/emails")
@require_auth
@require_permission("VIEW_INVOICES")
def list_invoice_emails_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id, g.lab_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    logs = notification_service.list_email_logs(g.lab_id, invoice.id)
    return jsonify({"items": [log.to_dict() for log in logs], "count": len(logs)})


@invoices_bp.post("")
@require_auth
@require_permission("MANAGE_INVOICES")
def create_invoice_route():
    """
    Body: {dentist_id, worksheet_ids?, custom_line_items?, invoice_date?,
           finalize?, notes?}
    """
    try:
        data = _body()
        if data.get("dentist_id") is None:
            raise ValidationError("dentist_id is required")
        invoice = invoice_service.create_invoice(
            lab_id=g.lab_id,
            dentist_id=data["dentist_id"],
            worksheet_ids=data.get("worksheet_ids"),
            custom_line_items=data.get("custom_line_items"),
            invoice_date=data.get("invoice_date"),
            finalize=data.get("finalize", False),
            notes=data.get("notes"),
            actor_user_id=g.current_user.id,
        )
    except Exception as e:
        return _error_response(e, "create invoice")

    return jsonify(invoice.to_dict()), 201


@invoices_bp.patch("/<int:invoice_id>")
@require_auth
@require_permission("MANAGE_INVOICES")
def update_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.update_draft_invoice(
            invoice_id=invoice_id,
            lab_id=g.lab_id,
            patch=_body(),
            actor_user_id=g.current_user.id,
        )
    except Exception as e:
        return _error_response(e, "update invoice")

    return jsonify(invoice.to_dict())


@invoices_bp.post("/<int:invoice_id>/finalize")
@require_auth
@require_permission("MANAGE_INVOICES")
def finalize_invoice_route(invoice_id: int):
    try:
        data = _body()
        invoice = invoice_service.finalize_invoice(
            invoice_id=invoice_id,
            lab_id=g.lab_id,
            invoice_date=data.get("invoice_date"),
            actor_user_id=g.current_user.id,
        )
    except Exception as e:
        return _error_response(e, "finalize invoice")

    return jsonify(invoice.to_dict())


@invoices_bp.post("/<int:invoice_id>/send-email")
@require_auth
@require_permission("MANAGE_INVOICES")
def send_invoice_email_route(invoice_id: int):
    """
    Body: {recipientEmail?}

    Returns {success, message, messageId, sentTo}.
    404 unknown invoice, 400 no recipient, 500 delivery failure.
    """
    try:
        data = _body()
        result = invoice_service.send_invoice_email(
            invoice_id=invoice_id,
            lab_id=g.lab_id,
            recipient_override=data.get("recipient_email"),
            actor_user_id=g.current_user.id,
        )
    except DispatchError as e:
        return jsonify({"success": False, "error": f"Failed to send email: {e}"}), 500
    except Exception as e:
        return _error_response(e, "send invoice email")

    return jsonify({
        "success": True,
        "message": f"Invoice sent to {result['sent_to']}",
        "messageId": result["message_id"],
        "sentTo": result["sent_to"],
    })


@invoices_bp.post("/<int:invoice_id>/payment")
@require_auth
@require_permission("MANAGE_INVOICES")
def update_payment_route(invoice_id: int):
    """Body: {payment_status, payment_method?, paid_at?}"""
    try:
        data = _body()
        if not data.get("payment_status"):
            raise ValidationError("payment_status is required")
        invoice = invoice_service.update_invoice_payment(
            invoice_id=invoice_id,
            lab_id=g.lab_id,
            payment_status=data["payment_status"],
            payment_method=data.get("payment_method"),
            paid_at=data.get("paid_at"),
            actor_user_id=g.current_user.id,
        )
    except Exception as e:
        return _error_response(e, "update invoice payment")

    return jsonify(invoice.to_dict())


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_auth
@require_permission("MANAGE_INVOICES")
def cancel_invoice_route(invoice_id: int):
    try:
        data = _body()
        invoice = invoice_service.cancel_invoice(
            invoice_id=invoice_id,
            lab_id=g.lab_id,
            reason=data.get("reason"),
            actor_user_id=g.current_user.id,
        )
    except Exception as e:
        return _error_response(e, "cancel invoice")

    return jsonify(invoice.to_dict())


@invoices_bp.delete("/<int:invoice_id>")
@require_auth
@require_permission("MANAGE_INVOICES")
def delete_invoice_route(invoice_id: int):
    try:
        invoice_service.delete_draft_invoice(
            invoice_id=invoice_id,
            lab_id=g.lab_id,
            actor_user_id=g.current_user.id,
        )
    except Exception as e:
        return _error_response(e, "delete invoice")

    return jsonify({"ok": True}), 200

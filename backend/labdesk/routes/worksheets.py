# Overview: Flask API routes for worksheets; parses input and returns JSON responses.

"""
Worksheet routes (production workflow).

MULTI-TENANT: Worksheets are resolved inside g.lab_id only.

SECURITY:
- Reads require VIEW_WORKSHEETS
- Create / edit / add products / rollback require MANAGE_PRODUCTION
- Void requires VOID_WORKSHEETS (admin)
- /transition checks the permission of the requested target status inside
  the service (MANAGE_PRODUCTION or PERFORM_QC)
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..services import worksheet_service, permission_service
from ..services.worksheet_service import InvalidTransitionError
from ..services.permission_service import PermissionDeniedError
from ..models import Worksheet
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    normalize_keys,
    json_object,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from ..decorators import require_auth, require_permission, require_any_permission

WORKSHEET_POLICY = ModelValidationPolicy(
    writable_fields=set(worksheet_service.WORKSHEET_MUTABLE_FIELDS),
    required_on_create={"dentist_id"},
)

worksheets_bp = Blueprint("worksheets", __name__, url_prefix="/api/worksheets")


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


def _with_transitions(ws) -> dict:
    data = ws.to_dict()
    permissions = permission_service.get_user_permissions(g.current_user.id)
    data["available_transitions"] = worksheet_service.get_available_transitions(ws.status, permissions)
    return data


@worksheets_bp.get("")
@require_auth
@require_permission("VIEW_WORKSHEETS")
def list_worksheets_route():
    """
    Query params: status, dentist_id, page, per_page
    """
    try:
        result = worksheet_service.list_worksheets(
            g.lab_id,
            status=request.args.get("status"),
            dentist_id=request.args.get("dentist_id", type=int),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(result)


@worksheets_bp.get("/invoiceable")
@require_auth
@require_permission("VIEW_WORKSHEETS")
def list_invoiceable_route():
    dentist_id = request.args.get("dentist_id", type=int)
    if dentist_id is None:
        return jsonify({"error": "dentist_id is required"}), 400
    items = worksheet_service.list_invoiceable_worksheets(g.lab_id, dentist_id)
    return jsonify({"items": [w.to_dict(include_products=False) for w in items], "count": len(items)})


@worksheets_bp.get("/<int:worksheet_id>")
@require_auth
@require_permission("VIEW_WORKSHEETS")
def get_worksheet_route(worksheet_id: int):
    try:
        ws = worksheet_service.get_worksheet(worksheet_id, g.lab_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(_with_transitions(ws))


@worksheets_bp.post("")
@require_auth
@require_permission("MANAGE_PRODUCTION")
def create_worksheet_route():
    try:
        patch = validate_payload(model=Worksheet, payload=_body(), policy=WORKSHEET_POLICY, partial=False)
        ws = worksheet_service.create_worksheet(
            lab_id=g.lab_id,
            dentist_id=patch["dentist_id"],
            patient_name=patch.get("patient_name"),
            technical_notes=patch.get("technical_notes"),
            created_by_user_id=g.current_user.id,
        )
    except Exception as e:
        return _error_response(e, "create worksheet")

    return jsonify(_with_transitions(ws)), 201


@worksheets_bp.patch("/<int:worksheet_id>")
@require_auth
@require_permission("MANAGE_PRODUCTION")
def update_worksheet_route(worksheet_id: int):
    try:
        patch = validate_payload(model=Worksheet, payload=_body(), policy=WORKSHEET_POLICY, partial=True)
        ws = worksheet_service.update_worksheet(
            worksheet_id=worksheet_id,
            lab_id=g.lab_id,
            patch=patch,
            actor_user_id=g.current_user.id,
        )
    except Exception as e:
        return _error_response(e, "update worksheet")

    return jsonify(_with_transitions(ws))


@worksheets_bp.post("/<int:worksheet_id>/products")
@require_auth
@require_permission("MANAGE_PRODUCTION")
def add_product_route(worksheet_id: int):
    """Body: {product_id, quantity?, notes?}"""
    try:
        data = _body()
        if data.get("product_id") is None:
            raise ValidationError("product_id is required")
        worksheet_service.add_worksheet_product(
            worksheet_id=worksheet_id,
            lab_id=g.lab_id,
            product_id=data["product_id"],
            quantity=data.get("quantity", 1),
            notes=data.get("notes"),
            actor_user_id=g.current_user.id,
        )
        ws = worksheet_service.get_worksheet(worksheet_id, g.lab_id)
    except Exception as e:
        return _error_response(e, "add worksheet product")

    return jsonify(_with_transitions(ws)), 201


@worksheets_bp.post("/<int:worksheet_id>/transition")
@require_auth
@require_any_permission("MANAGE_PRODUCTION", "PERFORM_QC")
def transition_worksheet_route(worksheet_id: int):
    """Body: {status}"""
    try:
        to_status = _body().get("status")
        if not isinstance(to_status, str) or not to_status:
            raise ValidationError("status is required")
        ws = worksheet_service.transition_worksheet(
            worksheet_id=worksheet_id,
            lab_id=g.lab_id,
            to_status=to_status,
            actor_user_id=g.current_user.id,
        )
    except Exception as e:
        return _error_response(e, "transition worksheet")

    return jsonify(_with_transitions(ws))


@worksheets_bp.post("/<int:worksheet_id>/rollback")
@require_auth
@require_permission("MANAGE_PRODUCTION")
def rollback_worksheet_route(worksheet_id: int):
    """
    Body: {reason}

    Returns {success, worksheet, message}; 400 on a missing reason or a
    worksheet that is not IN_PRODUCTION, 404 when it does not exist.
    """
    try:
        ws = worksheet_service.rollback_worksheet(
            worksheet_id=worksheet_id,
            lab_id=g.lab_id,
            reason=_body().get("reason"),
            actor_user_id=g.current_user.id,
        )
    except Exception as e:
        return _error_response(e, "roll back worksheet")

    return jsonify({
        "success": True,
        "worksheet": ws.to_dict(),
        "message": f"Worksheet {ws.worksheet_number} has been rolled back to DRAFT",
    })


@worksheets_bp.post("/<int:worksheet_id>/void")
@require_auth
@require_permission("VOID_WORKSHEETS")
def void_worksheet_route(worksheet_id: int):
    """
    Body: {reason}

    Only QC_APPROVED or DELIVERED worksheets can be voided. Returns
    {success, worksheet, message}.
    """
    try:
        ws = worksheet_service.void_worksheet(
            worksheet_id=worksheet_id,
            lab_id=g.lab_id,
            reason=_body().get("reason"),
            actor_user_id=g.current_user.id,
        )
    except Exception as e:
        return _error_response(e, "void worksheet")

    return jsonify({
        "success": True,
        "worksheet": ws.to_dict(),
        "message": f"Worksheet {ws.worksheet_number} has been voided",
    })

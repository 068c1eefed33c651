# Overview: Flask API routes for dentists; parses input and returns JSON responses.

"""
Dentist (customer) routes.

MULTI-TENANT: All dentist operations are scoped to g.lab_id.
- Read operations require VIEW_DENTISTS
- Write operations require MANAGE_DENTISTS
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..services import dentist_service
from ..models import Dentist
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_dentist,
    ValidationError,
    NotFoundError,
)
from ..decorators import require_auth, require_permission

DENTIST_POLICY = ModelValidationPolicy(
    writable_fields=set(dentist_service.DENTIST_MUTABLE_FIELDS),
    required_on_create={"clinic_name", "dentist_name"},
    aliases={"active": "is_active", "name": "dentist_name"},
)

dentists_bp = Blueprint("dentists", __name__, url_prefix="/api/dentists")


@dentists_bp.get("")
@require_auth
@require_permission("VIEW_DENTISTS")
def list_dentists_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    dentists = dentist_service.list_dentists(g.lab_id, include_inactive=include_inactive)
    return jsonify({"items": [d.to_dict() for d in dentists], "count": len(dentists)})


@dentists_bp.get("/<int:dentist_id>")
@require_auth
@require_permission("VIEW_DENTISTS")
def get_dentist_route(dentist_id: int):
    try:
        dentist = dentist_service.get_dentist(dentist_id, g.lab_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(dentist.to_dict())


@dentists_bp.post("")
@require_auth
@require_permission("MANAGE_DENTISTS")
def create_dentist_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Dentist, payload=payload, policy=DENTIST_POLICY, partial=False)
        enforce_rules_dentist(patch)
        dentist = dentist_service.create_dentist(
            lab_id=g.lab_id, patch=patch, actor_user_id=g.current_user.id
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create dentist")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(dentist.to_dict()), 201


@dentists_bp.patch("/<int:dentist_id>")
@require_auth
@require_permission("MANAGE_DENTISTS")
def update_dentist_route(dentist_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Dentist, payload=payload, policy=DENTIST_POLICY, partial=True)
        enforce_rules_dentist(patch)
        dentist = dentist_service.update_dentist(
            dentist_id=dentist_id, lab_id=g.lab_id, patch=patch, actor_user_id=g.current_user.id
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update dentist")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(dentist.to_dict())

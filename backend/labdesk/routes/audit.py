# Overview: Flask API routes for the audit trail; read-only JSON responses.

from flask import Blueprint, jsonify, request, g

from ..decorators import require_auth, require_permission
from ..services.audit_service import list_audit_logs


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit-logs")


@audit_bp.get("")
@require_auth
@require_permission("VIEW_AUDIT_LOG")
def list_audit_logs_route():
    """
    Query params: entity_type, entity_id, action, page, per_page
    """
    result = list_audit_logs(
        g.lab_id,
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id", type=int),
        action=request.args.get("action"),
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", 50, type=int),
    )
    return jsonify(result)

# Overview: Flask API routes for laboratory settings (bank accounts); parses input and returns JSON responses.

from __future__ import annotations

from flask import Blueprint, jsonify, request, current_app, g

from ..decorators import require_auth, require_permission
from ..services import bank_account_service
from ..models import BankAccount
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_bank_account,
    json_object,
    ValidationError,
    ConflictError,
    NotFoundError,
)


BANK_ACCOUNT_POLICY = ModelValidationPolicy(
    writable_fields=set(bank_account_service.BANK_ACCOUNT_MUTABLE_FIELDS),
    required_on_create={"bank_name", "iban"},
    aliases={"active": "is_active", "primary": "is_primary", "swift": "swift_bic", "bic": "swift_bic"},
)

settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


def _json_error(exc: Exception, what: str):
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    current_app.logger.exception("Failed to %s", what)
    return jsonify({"error": "Internal server error"}), 500


@settings_bp.get("/bank-accounts")
@require_auth
@require_permission("MANAGE_SETTINGS")
def list_bank_accounts_route():
    accounts = bank_account_service.list_bank_accounts(g.lab_id)
    return jsonify({"items": [a.to_dict() for a in accounts], "count": len(accounts)})


@settings_bp.post("/bank-accounts")
@require_auth
@require_permission("MANAGE_SETTINGS")
def create_bank_account_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=BankAccount, payload=payload, policy=BANK_ACCOUNT_POLICY, partial=False)
        enforce_rules_bank_account(patch)
        account = bank_account_service.create_bank_account(
            lab_id=g.lab_id, patch=patch, actor_user_id=g.current_user.id
        )
    except Exception as e:
        return _json_error(e, "create bank account")
    return jsonify(account.to_dict()), 201


@settings_bp.patch("/bank-accounts/<int:account_id>")
@require_auth
@require_permission("MANAGE_SETTINGS")
def update_bank_account_route(account_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=BankAccount, payload=payload, policy=BANK_ACCOUNT_POLICY, partial=True)
        enforce_rules_bank_account(patch)
        account = bank_account_service.update_bank_account(
            account_id=account_id, lab_id=g.lab_id, patch=patch, actor_user_id=g.current_user.id
        )
    except Exception as e:
        return _json_error(e, "update bank account")
    return jsonify(account.to_dict())


@settings_bp.delete("/bank-accounts/<int:account_id>")
@require_auth
@require_permission("MANAGE_SETTINGS")
def delete_bank_account_route(account_id: int):
    try:
        bank_account_service.delete_bank_account(
            account_id=account_id, lab_id=g.lab_id, actor_user_id=g.current_user.id
        )
    except Exception as e:
        return _json_error(e, "delete bank account")
    return jsonify({"ok": True})


@settings_bp.post("/bank-accounts/reorder")
@require_auth
@require_permission("MANAGE_SETTINGS")
def reorder_bank_accounts_route():
    """Body: {ids: [...]} listing every account of the lab in display order."""
    try:
        payload = json_object(request.get_json(silent=True))
        accounts = bank_account_service.reorder_bank_accounts(
            lab_id=g.lab_id, ids=payload.get("ids"), actor_user_id=g.current_user.id
        )
    except Exception as e:
        return _json_error(e, "reorder bank accounts")
    return jsonify({"items": [a.to_dict() for a in accounts], "count": len(accounts)})

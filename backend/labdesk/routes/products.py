# Overview: Flask API routes for products operations; parses input and returns JSON responses.

"""
Product catalog routes with multi-tenant support.

MULTI-TENANT: All product operations are scoped to g.lab_id (set by
@require_auth).

SECURITY: All routes require authentication.
- Read operations require VIEW_PRODUCTS
- Single-product writes require MANAGE_PRODUCTS
- Bulk update / bulk delete require MANAGE_PRODUCT_CATALOG (admin)
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..services import products_service
from ..models import Product
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    parse_id_list,
    json_object,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from ..decorators import require_auth, require_permission

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=set(products_service.PRODUCT_MUTABLE_FIELDS),
    required_on_create={"code", "name"},
    aliases={"active": "is_active"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
@require_permission("VIEW_PRODUCTS")
def list_products():
    """
    List products with optional pagination.

    Query params:
    - category: optional category filter
    - include_inactive: "true" to include soft-deleted products
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    try:
        result = products_service.list_products(
            g.lab_id,
            category=request.args.get("category"),
            include_inactive=request.args.get("include_inactive", "false").lower() == "true",
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(result)


@products_bp.post("")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)  # Handles price and category validation
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        created = products_service.create_product(
            lab_id=g.lab_id, patch=patch, actor_user_id=g.current_user.id
        )
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(created), 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        updated = products_service.update_product(
            product_id=product_id, lab_id=g.lab_id, patch=patch, actor_user_id=g.current_user.id
        )
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except NotFoundError:
        return jsonify({"error": "Product not found"}), 404

    return jsonify(updated), 200


@products_bp.delete("/<int:product_id>")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def delete_product_route(product_id: int):
    """Soft delete: the product is deactivated, never removed."""
    try:
        products_service.delete_product(
            product_id=product_id, lab_id=g.lab_id, actor_user_id=g.current_user.id
        )
    except NotFoundError:
        return jsonify({"error": "Product not found"}), 404

    return jsonify({"ok": True}), 200


@products_bp.post("/bulk-update")
@require_auth
@require_permission("MANAGE_PRODUCT_CATALOG")
def bulk_update_route():
    """
    Body: {ids: [...], data: {active?, category?}}

    All-or-nothing: either every listed product is updated or none is.
    """
    try:
        payload = json_object(request.get_json(silent=True))
        ids = parse_id_list(payload.get("ids"))
        patch = products_service.validate_bulk_patch(payload.get("data"))
        count = products_service.bulk_update_products(
            lab_id=g.lab_id, ids=ids, patch=patch, actor_user_id=g.current_user.id
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to bulk update products")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({
        "success": True,
        "count": count,
        "message": f"Successfully updated {count} products",
    })


@products_bp.post("/bulk-delete")
@require_auth
@require_permission("MANAGE_PRODUCT_CATALOG")
def bulk_delete_route():
    """Body: {ids: [...]}; soft delete, all-or-nothing."""
    try:
        payload = json_object(request.get_json(silent=True))
        ids = parse_id_list(payload.get("ids"))
        count = products_service.bulk_delete_products(
            lab_id=g.lab_id, ids=ids, actor_user_id=g.current_user.id
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to bulk delete products")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({
        "success": True,
        "count": count,
        "message": f"Successfully deleted {count} products",
    })

# Overview: Service-layer operations for the product catalog; encapsulates business logic and database work.

"""
Products Service with Multi-Tenant Support

MULTI-TENANT: All product operations are scoped to one laboratory.
- list_products filters on lab_id
- update/delete/bulk operations resolve ids inside the caller's lab only

BULK OPERATIONS:
- bulk_update_products / bulk_delete_products are all-or-nothing: one
  commit for every row and its audit entry, rollback on any failure.
- The caller gets a count of affected rows or a single error, never a
  partial count.
"""
from __future__ import annotations

from ..extensions import db
from ..models import Product
from ..validation import ConflictError, ValidationError, PRODUCT_CATEGORIES, normalize_keys
from .audit_service import record_audit_event, ACTION_CREATE, ACTION_UPDATE, ACTION_DELETE
from .tenant_service import get_in_lab, get_many_in_lab
from labdesk.time_utils import utcnow

PRODUCT_MUTABLE_FIELDS = {"code", "name", "description", "category", "price_cents", "unit", "is_active"}

# Only these keys may be applied to many products at once
BULK_UPDATE_FIELDS = {"is_active", "category"}
BULK_UPDATE_ALIASES = {"active": "is_active"}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _snapshot(p: Product, keys) -> dict:
    return {k: getattr(p, k) for k in sorted(keys)}


def list_products(
    lab_id: int,
    *,
    category: str | None = None,
    include_inactive: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Lab-scoped product listing with optional pagination.

    Args:
        lab_id: Laboratory the caller belongs to
        category: Optional category filter
        include_inactive: Include soft-deleted / deactivated products
        page: Page number (1-indexed). If None, returns all items.
        per_page: Items per page (default 20, max 100)
    """
    base_query = db.session.query(Product).filter(Product.lab_id == lab_id)
    if category is not None:
        if category not in PRODUCT_CATEGORIES:
            raise ValidationError(f"category must be one of: {', '.join(sorted(PRODUCT_CATEGORIES))}")
        base_query = base_query.filter(Product.category == category)
    if not include_inactive:
        base_query = base_query.filter(Product.is_active.is_(True))

    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def _ensure_code_free(lab_id: int, code: str, exclude_id: int | None = None) -> None:
    q = db.session.query(Product).filter(Product.lab_id == lab_id, Product.code == code)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    if q.first():
        raise ConflictError("Product code already exists in this laboratory.")


def create_product(*, lab_id: int, patch: dict, actor_user_id: int | None = None) -> dict:
    """
    Create product using a validated patch dict.

    Raises:
        ConflictError: If the code already exists in the lab
    """
    code = patch.get("code")
    if code is None:
        raise ValidationError("code is required")
    _ensure_code_free(lab_id, code)

    p = Product(lab_id=lab_id)
    apply_product_patch(p, patch)

    try:
        db.session.add(p)
        db.session.flush()  # ensure p.id exists before the audit row

        record_audit_event(
            lab_id=lab_id,
            actor_user_id=actor_user_id,
            action=ACTION_CREATE,
            entity_type="Product",
            entity_id=p.id,
            new_values=_snapshot(p, PRODUCT_MUTABLE_FIELDS),
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return p.to_dict()


def update_product(*, product_id: int, lab_id: int, patch: dict, actor_user_id: int | None = None) -> dict:
    """
    Update a product.

    Raises:
        NotFoundError: If the product is missing or in another lab
        ConflictError: If the new code already exists in the lab
    """
    p = get_in_lab(Product, product_id, lab_id)

    if "code" in patch and patch["code"] != p.code:
        _ensure_code_free(lab_id, patch["code"], exclude_id=p.id)

    old_values = _snapshot(p, patch.keys() & PRODUCT_MUTABLE_FIELDS)
    try:
        apply_product_patch(p, patch)
        if patch.get("is_active") is True:
            p.deleted_at = None
        record_audit_event(
            lab_id=lab_id,
            actor_user_id=actor_user_id,
            action=ACTION_UPDATE,
            entity_type="Product",
            entity_id=p.id,
            old_values=old_values,
            new_values=_snapshot(p, patch.keys() & PRODUCT_MUTABLE_FIELDS),
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return p.to_dict()


def _soft_delete(p: Product, *, actor_user_id: int | None, now) -> None:
    record_audit_event(
        lab_id=p.lab_id,
        actor_user_id=actor_user_id,
        action=ACTION_DELETE,
        entity_type="Product",
        entity_id=p.id,
        old_values={"is_active": p.is_active, "deleted_at": p.deleted_at},
        new_values={"is_active": False, "deleted_at": now},
    )
    p.is_active = False
    p.deleted_at = now


def delete_product(*, product_id: int, lab_id: int, actor_user_id: int | None = None) -> None:
    """
    Soft-delete a product.

    Soft-delete only: preserve ids and historical worksheet references.
    """
    p = get_in_lab(Product, product_id, lab_id)
    if p.deleted_at is not None:
        return

    try:
        _soft_delete(p, actor_user_id=actor_user_id, now=utcnow())
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def validate_bulk_patch(data) -> dict:
    """
    Normalize a bulk-update body: {active?, category?} (is_active accepted).
    """
    if not isinstance(data, dict) or not data:
        raise ValidationError("data must be a non-empty object")
    patch = normalize_keys(data, BULK_UPDATE_ALIASES)

    unknown = sorted(set(patch) - BULK_UPDATE_FIELDS)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    if "is_active" in patch and not isinstance(patch["is_active"], bool):
        raise ValidationError("active must be a boolean")
    if "category" in patch and patch["category"] not in PRODUCT_CATEGORIES:
        raise ValidationError(
            f"category must be one of: {', '.join(sorted(PRODUCT_CATEGORIES))}"
        )
    return patch


def bulk_update_products(*, lab_id: int, ids: list[int], patch: dict, actor_user_id: int | None = None) -> int:
    """
    Apply `patch` (is_active and/or category) to every listed product.

    All ids must resolve inside the lab; otherwise nothing is changed.
    Returns the number of products updated.
    """
    unknown = sorted(set(patch) - BULK_UPDATE_FIELDS)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    products = get_many_in_lab(Product, ids, lab_id, label="Product")

    try:
        for p in products:
            old_values = _snapshot(p, patch.keys())
            apply_product_patch(p, patch)
            if patch.get("is_active") is True:
                p.deleted_at = None
            record_audit_event(
                lab_id=lab_id,
                actor_user_id=actor_user_id,
                action=ACTION_UPDATE,
                entity_type="Product",
                entity_id=p.id,
                old_values=old_values,
                new_values=_snapshot(p, patch.keys()),
                reason="bulk update",
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return len(products)


def bulk_delete_products(*, lab_id: int, ids: list[int], actor_user_id: int | None = None) -> int:
    """
    Soft-delete every listed product in one transaction.

    Returns the number of products deleted.
    """
    products = get_many_in_lab(Product, ids, lab_id, label="Product")
    now = utcnow()

    try:
        for p in products:
            _soft_delete(p, actor_user_id=actor_user_id, now=now)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return len(products)

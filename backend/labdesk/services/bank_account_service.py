# Overview: Service-layer operations for laboratory bank accounts; encapsulates business logic and database work.

"""
Bank accounts printed on invoices (laboratory settings).

- IBAN unique per laboratory (normalized: no spaces, upper case)
- At most one primary account per laboratory; marking one primary clears
  the flag on the others in the same transaction
- display_order is rewritten wholesale by reorder_bank_accounts()
- Every mutation writes an audit row
"""
from __future__ import annotations

from ..extensions import db
from ..models import BankAccount
from ..validation import ConflictError, ValidationError, parse_id_list
from .audit_service import record_audit_event, ACTION_CREATE, ACTION_UPDATE, ACTION_DELETE
from .tenant_service import get_in_lab

BANK_ACCOUNT_MUTABLE_FIELDS = {
    "bank_name",
    "iban",
    "swift_bic",
    "account_type",
    "is_active",
    "is_primary",
    "display_order",
    "notes",
}


def _snapshot(account: BankAccount, keys) -> dict:
    return {k: getattr(account, k) for k in sorted(keys)}


def _ensure_iban_free(lab_id: int, iban: str, exclude_id: int | None = None) -> None:
    q = db.session.query(BankAccount).filter(BankAccount.lab_id == lab_id, BankAccount.iban == iban)
    if exclude_id is not None:
        q = q.filter(BankAccount.id != exclude_id)
    if q.first():
        raise ConflictError("A bank account with this IBAN already exists.")


def _clear_other_primaries(lab_id: int, keep_id: int) -> None:
    others = (
        db.session.query(BankAccount)
        .filter(BankAccount.lab_id == lab_id, BankAccount.id != keep_id, BankAccount.is_primary.is_(True))
        .all()
    )
    for other in others:
        other.is_primary = False


def list_bank_accounts(lab_id: int, *, include_inactive: bool = True) -> list[BankAccount]:
    q = db.session.query(BankAccount).filter(BankAccount.lab_id == lab_id)
    if not include_inactive:
        q = q.filter(BankAccount.is_active.is_(True))
    return q.order_by(BankAccount.display_order.asc(), BankAccount.id.asc()).all()


def create_bank_account(*, lab_id: int, patch: dict, actor_user_id: int | None = None) -> BankAccount:
    if not patch.get("bank_name") or not patch.get("iban"):
        raise ValidationError("bank_name and iban are required")
    _ensure_iban_free(lab_id, patch["iban"])

    account = BankAccount(lab_id=lab_id)
    for k, v in patch.items():
        if k in BANK_ACCOUNT_MUTABLE_FIELDS:
            setattr(account, k, v)

    if "display_order" not in patch:
        current_max = (
            db.session.query(db.func.max(BankAccount.display_order))
            .filter(BankAccount.lab_id == lab_id)
            .scalar()
        )
        account.display_order = 0 if current_max is None else current_max + 1

    try:
        db.session.add(account)
        db.session.flush()
        if account.is_primary:
            _clear_other_primaries(lab_id, account.id)

        record_audit_event(
            lab_id=lab_id,
            actor_user_id=actor_user_id,
            action=ACTION_CREATE,
            entity_type="BankAccount",
            entity_id=account.id,
            new_values=_snapshot(account, BANK_ACCOUNT_MUTABLE_FIELDS),
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return account


def update_bank_account(
    *,
    account_id: int,
    lab_id: int,
    patch: dict,
    actor_user_id: int | None = None,
) -> BankAccount:
    account = get_in_lab(BankAccount, account_id, lab_id, label="Bank account")

    if patch.get("iban") and patch["iban"] != account.iban:
        _ensure_iban_free(lab_id, patch["iban"], exclude_id=account.id)

    keys = patch.keys() & BANK_ACCOUNT_MUTABLE_FIELDS
    old_values = _snapshot(account, keys)
    try:
        for k in keys:
            setattr(account, k, patch[k])
        if patch.get("is_primary") is True:
            _clear_other_primaries(lab_id, account.id)

        record_audit_event(
            lab_id=lab_id,
            actor_user_id=actor_user_id,
            action=ACTION_UPDATE,
            entity_type="BankAccount",
            entity_id=account.id,
            old_values=old_values,
            new_values=_snapshot(account, keys),
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return account


def delete_bank_account(*, account_id: int, lab_id: int, actor_user_id: int | None = None) -> None:
    account = get_in_lab(BankAccount, account_id, lab_id, label="Bank account")
    snapshot = _snapshot(account, BANK_ACCOUNT_MUTABLE_FIELDS)
    try:
        db.session.delete(account)
        record_audit_event(
            lab_id=lab_id,
            actor_user_id=actor_user_id,
            action=ACTION_DELETE,
            entity_type="BankAccount",
            entity_id=account_id,
            old_values=snapshot,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def reorder_bank_accounts(*, lab_id: int, ids, actor_user_id: int | None = None) -> list[BankAccount]:
    """
    Set display_order from the position of each id in `ids`.

    `ids` must list every bank account of the lab exactly once.
    """
    ordered_ids = parse_id_list(ids, field="ids")
    if len(ordered_ids) != len(ids):
        raise ValidationError("ids must not contain duplicates")

    accounts = list_bank_accounts(lab_id)
    by_id = {a.id: a for a in accounts}
    if set(ordered_ids) != set(by_id):
        raise ValidationError("ids must list every bank account of the laboratory exactly once")

    try:
        for position, account_id in enumerate(ordered_ids):
            account = by_id[account_id]
            if account.display_order == position:
                continue
            record_audit_event(
                lab_id=lab_id,
                actor_user_id=actor_user_id,
                action=ACTION_UPDATE,
                entity_type="BankAccount",
                entity_id=account.id,
                old_values={"display_order": account.display_order},
                new_values={"display_order": position},
                reason="reorder",
            )
            account.display_order = position
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return list_bank_accounts(lab_id)

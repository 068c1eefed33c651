# Overview: Service-layer operations for dentists; encapsulates business logic and database work.

"""
Dentist Service

Dentists (clinics) are the laboratory's customers: worksheets are produced
for them and invoices are addressed to them. The e-mail address on the
dentist is the default recipient for invoice e-mails, and
payment_terms_days drives each invoice's due date.

MULTI-TENANT: Dentists are scoped to laboratories via lab_id.
"""

from ..extensions import db
from ..models import Dentist
from .audit_service import record_audit_event, ACTION_CREATE, ACTION_UPDATE
from .tenant_service import get_in_lab

DENTIST_MUTABLE_FIELDS = {
    "clinic_name",
    "dentist_name",
    "email",
    "phone",
    "address",
    "city",
    "postal_code",
    "country",
    "payment_terms_days",
    "is_active",
}


def get_dentist(dentist_id: int, lab_id: int) -> Dentist:
    return get_in_lab(Dentist, dentist_id, lab_id)


def list_dentists(lab_id: int, *, include_inactive: bool = False) -> list[Dentist]:
    q = db.session.query(Dentist).filter(Dentist.lab_id == lab_id)
    if not include_inactive:
        q = q.filter(Dentist.is_active.is_(True))
    return q.order_by(Dentist.clinic_name.asc(), Dentist.id.asc()).all()


def create_dentist(*, lab_id: int, patch: dict, actor_user_id: int | None = None) -> Dentist:
    """
    Create a dentist from a validated patch dict.

    Args:
        lab_id: Laboratory the dentist belongs to
        patch: Validated fields (clinic_name and dentist_name required)
        actor_user_id: User creating the dentist (for audit)
    """
    dentist = Dentist(lab_id=lab_id)
    for k, v in patch.items():
        if k in DENTIST_MUTABLE_FIELDS:
            setattr(dentist, k, v)

    try:
        db.session.add(dentist)
        db.session.flush()

        record_audit_event(
            lab_id=lab_id,
            actor_user_id=actor_user_id,
            action=ACTION_CREATE,
            entity_type="Dentist",
            entity_id=dentist.id,
            new_values={k: getattr(dentist, k) for k in sorted(DENTIST_MUTABLE_FIELDS)},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return dentist


def update_dentist(*, dentist_id: int, lab_id: int, patch: dict, actor_user_id: int | None = None) -> Dentist:
    dentist = get_dentist(dentist_id, lab_id)

    keys = sorted(patch.keys() & DENTIST_MUTABLE_FIELDS)
    old_values = {k: getattr(dentist, k) for k in keys}
    try:
        for k in keys:
            setattr(dentist, k, patch[k])

        record_audit_event(
            lab_id=lab_id,
            actor_user_id=actor_user_id,
            action=ACTION_UPDATE,
            entity_type="Dentist",
            entity_id=dentist.id,
            old_values=old_values,
            new_values={k: getattr(dentist, k) for k in keys},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return dentist

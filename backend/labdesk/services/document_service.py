# Overview: Service-layer operations for document numbering; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(
    *,
    lab_id: int,
    document_type: str,
    prefix: str,
    pad: int = 3,
) -> str:
    """
    Allocate the next document number for a lab/type: "<prefix>-<n>".

    Increments the counter with a single UPDATE so concurrent callers on
    databases with row locking cannot read the same value. Never commits;
    the number is only consumed if the caller's transaction commits.
    """
    if not lab_id:
        raise DocumentSequenceError("lab_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.lab_id == lab_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(lab_id=lab_id, document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        db.session.add(DocumentSequence(lab_id=lab_id, document_type=document_type, next_number=2))
        db.session.flush()
        next_num = 1

    return f"{prefix}-{next_num:0{pad}d}"


def next_worksheet_number(lab_id: int) -> str:
    """WS-001, WS-002, ... per laboratory."""
    return next_document_number(lab_id=lab_id, document_type="WORKSHEET", prefix="WS")


def next_invoice_number(lab_id: int, year: int, prefix: str = "RAC") -> str:
    """RAC-2026-001, RAC-2026-002, ... restarting every invoice year."""
    return next_document_number(
        lab_id=lab_id,
        document_type=f"INVOICE:{year}",
        prefix=f"{prefix}-{year}",
    )

# Overview: Human-readable document numbers (REQ/INV/PAY-YYYY-NNNNN) from a per-year sequence table.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


REQUEST_PREFIX = "REQ"
INVOICE_PREFIX = "INV"
PAYMENT_PREFIX = "PAY"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _current(document_type: str, year: int) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, year=year)
        .scalar()
    )


def next_document_number(*, document_type: str, year: int | None = None, pad: int = 5) -> str:
    """
    Atomically allocate the next number for a document type within a year.

    Runs inside the caller's transaction (the caller owns retry and commit),
    so an aborted workflow operation never consumes a number.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if year is None:
        year = utcnow().year

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.year == year,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current(document_type, year) - 1
    else:
        # First number of the year; a concurrent insert loses the unique
        # constraint and falls back to the increment path.
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, year=year, next_number=2))
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current(document_type, year) - 1

    return f"{document_type}-{year}-{next_num:0{pad}d}"

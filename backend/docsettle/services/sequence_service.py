# Overview: Document numbering. The core only calls next_document_number(); the
# table-backed counter below is the default implementation.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(document_type: str) -> str:
    """
    Return the next number for document_type.

    If the app config carries a DOCUMENT_NUMBERER callable it is used instead
    of the built-in counter, so numbering can be delegated to an external
    series service. Must be called inside the caller's unit of work.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    numberer = current_app.config.get("DOCUMENT_NUMBERER")
    if numberer is not None:
        return numberer(document_type)

    prefixes = current_app.config.get("DOCUMENT_PREFIXES", {})
    prefix = prefixes.get(document_type, document_type[:3])
    pad = current_app.config.get("DOCUMENT_NUMBER_PAD", 6)
    return f"{prefix}-{_allocate(document_type):0{pad}d}"


def _allocate(document_type: str) -> int:
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        return _current(document_type) - 1

    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(document_type=document_type, next_number=2))
        return 1
    except IntegrityError:
        # Another writer created the row first
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        return _current(document_type) - 1


def _current(document_type: str) -> int:
    db.session.flush()
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )

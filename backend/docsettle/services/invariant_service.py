# Overview: Store-wide consistency scan for the quantity and money conservation rules.

from __future__ import annotations

from collections import defaultdict

from ..extensions import db
from ..models import Document, DocumentLine, Knockoff, Payment
from ..models.documents import STATUS_VOID
from ..models.payments import PAYMENT_TYPE_REVERSAL
from .document_service import derive_transfer_status


def _violation(rule: str, message: str, **context) -> dict:
    return {"rule": rule, "message": message, **context}


def check_invariants() -> list[dict]:
    """
    Return every violation found; an empty list means the store is consistent.

    Rules:
    - line_bounds: 0 <= transferred_qty <= ordered_qty
    - transfer_conservation: a line's transferred_qty equals the ordered_qty
      of its non-VOID downstream lines
    - transfer_status: cached transfer_status equals the derived one
    - outstanding_bounds: 0 <= outstanding <= net_total on live settlement documents
    - settlement_conservation: net_total - outstanding equals knockoffs from
      payments minus knockoffs from reversals
    """
    violations: list[dict] = []

    downstream_qty: dict[int, int] = defaultdict(int)
    rows = (
        db.session.query(DocumentLine.source_line_id, DocumentLine.ordered_qty)
        .join(Document, Document.id == DocumentLine.document_id)
        .filter(DocumentLine.source_line_id.isnot(None), Document.status != STATUS_VOID)
        .all()
    )
    for source_line_id, qty in rows:
        downstream_qty[source_line_id] += qty

    for line in db.session.query(DocumentLine).order_by(DocumentLine.id.asc()):
        if line.transferred_qty < 0 or line.transferred_qty > line.ordered_qty:
            violations.append(_violation(
                "line_bounds",
                f"Line {line.id} transferred_qty {line.transferred_qty} outside [0, {line.ordered_qty}]",
                line_id=line.id,
            ))
        expected = downstream_qty.get(line.id, 0)
        if line.transferred_qty != expected:
            violations.append(_violation(
                "transfer_conservation",
                f"Line {line.id} transferred_qty {line.transferred_qty} but live downstream holds {expected}",
                line_id=line.id,
            ))

    knocked: dict[int, int] = defaultdict(int)
    ko_rows = (
        db.session.query(Knockoff.document_id, Knockoff.knockoff_cents, Payment.payment_type)
        .join(Payment, Payment.id == Knockoff.payment_id)
        .all()
    )
    for document_id, amount, payment_type in ko_rows:
        knocked[document_id] += -amount if payment_type == PAYMENT_TYPE_REVERSAL else amount

    for doc in db.session.query(Document).order_by(Document.id.asc()):
        derived = derive_transfer_status(doc)
        if doc.transfer_status != derived:
            violations.append(_violation(
                "transfer_status",
                f"{doc.document_no} caches {doc.transfer_status}, lines say {derived}",
                document_id=doc.id,
            ))

        if doc.is_void or doc.settlement_status is None:
            continue
        if not 0 <= doc.outstanding_cents <= doc.net_total_cents:
            violations.append(_violation(
                "outstanding_bounds",
                f"{doc.document_no} outstanding {doc.outstanding_cents} outside [0, {doc.net_total_cents}]",
                document_id=doc.id,
            ))
        settled = doc.net_total_cents - doc.outstanding_cents
        if settled != knocked.get(doc.id, 0):
            violations.append(_violation(
                "settlement_conservation",
                f"{doc.document_no} settled {settled} but knockoffs net to {knocked.get(doc.id, 0)}",
                document_id=doc.id,
            ))

    return violations

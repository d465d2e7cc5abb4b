# Overview: Outstanding ledger for settlement documents (invoices, notes).

from __future__ import annotations

from datetime import date
from typing import Iterator

from ..extensions import db
from ..errors import DocumentStateError, InvalidAllocationError, InvalidStateError
from ..models import Document
from ..models.documents import (
    KIND_DOMAINS,
    SETTLEMENT_KINDS,
    SETTLEMENT_OPEN,
    SETTLEMENT_PAID,
    SETTLEMENT_PARTIAL,
    STATUS_VOID,
)
from ..time_utils import today
"""
Outstanding ledger invariants

- 0 <= outstanding_cents <= net_total_cents for every posted settlement document.
- post() happens once per document; outstanding starts at net_total.
- Outstanding only decreases, through reduce() called by the allocation
  engine, except when a payment reversal restore()s it.
"""


def post(doc: Document) -> Document:
    """Make a settlement document outstanding for its full net total."""
    if not doc.is_settlement:
        raise DocumentStateError(f"{doc.kind} {doc.document_no} is not a settlement document")
    if doc.is_void:
        raise DocumentStateError(f"Document {doc.document_no} is VOID")
    if doc.settlement_status is not None:
        raise DocumentStateError(f"Document {doc.document_no} is already outstanding")

    doc.outstanding_cents = doc.net_total_cents
    doc.settlement_status = SETTLEMENT_PAID if doc.net_total_cents == 0 else SETTLEMENT_OPEN
    return doc


def reduce(doc: Document, amount_cents: int) -> Document:
    """Knock amount_cents off the document's outstanding. Allocation engine only."""
    _require_live(doc)
    if amount_cents <= 0:
        raise InvalidAllocationError(
            f"Knockoff on {doc.document_no} must be positive, got {amount_cents}",
            {"document_id": doc.id, "amount_cents": amount_cents},
        )
    if amount_cents > doc.outstanding_cents:
        raise InvalidAllocationError(
            f"Knockoff {amount_cents} exceeds outstanding {doc.outstanding_cents} on {doc.document_no}",
            {"document_id": doc.id, "amount_cents": amount_cents, "outstanding_cents": doc.outstanding_cents},
        )

    doc.outstanding_cents -= amount_cents
    doc.settlement_status = SETTLEMENT_PAID if doc.outstanding_cents == 0 else SETTLEMENT_PARTIAL
    return doc


def restore(doc: Document, amount_cents: int) -> Document:
    """Inverse of reduce(); only used when a payment is reversed."""
    _require_live(doc)
    if amount_cents <= 0:
        raise InvalidStateError(f"Restore on {doc.document_no} must be positive, got {amount_cents}")
    restored = doc.outstanding_cents + amount_cents
    if restored > doc.net_total_cents:
        raise InvalidStateError(
            f"Restoring {amount_cents} on {doc.document_no} would exceed net total {doc.net_total_cents}",
            {"document_id": doc.id, "outstanding_cents": doc.outstanding_cents, "amount_cents": amount_cents},
        )

    doc.outstanding_cents = restored
    doc.settlement_status = SETTLEMENT_OPEN if restored == doc.net_total_cents else SETTLEMENT_PARTIAL
    return doc


def _require_live(doc: Document) -> None:
    if doc.is_void:
        raise InvalidAllocationError(f"Document {doc.document_no} is VOID", {"document_id": doc.id})
    if doc.settlement_status is None or doc.outstanding_cents is None:
        raise InvalidAllocationError(
            f"Document {doc.document_no} is not posted as outstanding", {"document_id": doc.id}
        )


# =============================================================================
# Queries
# =============================================================================

class OutstandingDocuments:
    """
    Lazy, restartable view over a party's outstanding settlement documents.

    Each iteration runs a fresh ordered query (document_date, document_no, id)
    and pages through it in fully fetched batches, so callers may stop early
    without leaving a cursor open.
    """

    def __init__(self, party_id: int, domain: str | None = None, batch_size: int = 100):
        self.party_id = party_id
        self.domain = domain
        self.batch_size = batch_size

    def _query(self):
        kinds = [
            k for k in SETTLEMENT_KINDS
            if self.domain is None or KIND_DOMAINS[k] == self.domain
        ]
        return (
            db.session.query(Document)
            .filter(
                Document.party_id == self.party_id,
                Document.kind.in_(kinds),
                Document.status != STATUS_VOID,
                Document.settlement_status.in_([SETTLEMENT_OPEN, SETTLEMENT_PARTIAL]),
            )
            .order_by(Document.document_date.asc(), Document.document_no.asc(), Document.id.asc())
        )

    def __iter__(self) -> Iterator[Document]:
        offset = 0
        while True:
            batch = self._query().offset(offset).limit(self.batch_size).all()
            yield from batch
            if len(batch) < self.batch_size:
                return
            offset += self.batch_size

    def all(self) -> list[Document]:
        return self._query().all()


def list_outstanding(party_id: int, domain: str | None = None) -> OutstandingDocuments:
    return OutstandingDocuments(party_id, domain)


AGING_BUCKETS = ("current", "days_1_30", "days_31_60", "days_61_90", "over_90")


def _bucket(days_overdue: int) -> str:
    if days_overdue <= 0:
        return "current"
    if days_overdue <= 30:
        return "days_1_30"
    if days_overdue <= 60:
        return "days_31_60"
    if days_overdue <= 90:
        return "days_61_90"
    return "over_90"


def aging(party_id: int, domain: str | None = None, as_of: date | None = None) -> dict:
    """
    Age a party's outstanding by due date (document date when no due date).

    Credit-side documents count negative.
    """
    as_of = as_of or today()
    buckets = {name: 0 for name in AGING_BUCKETS}
    documents = []
    for doc in list_outstanding(party_id, domain):
        basis = doc.due_date or doc.document_date
        days = (as_of - basis).days
        signed = -doc.outstanding_cents if doc.is_credit_side else doc.outstanding_cents
        bucket = _bucket(days)
        buckets[bucket] += signed
        documents.append({
            "document_id": doc.id,
            "document_no": doc.document_no,
            "kind": doc.kind,
            "document_date": doc.document_date.isoformat(),
            "due_date": doc.due_date.isoformat() if doc.due_date else None,
            "days_overdue": max(days, 0),
            "bucket": bucket,
            "outstanding_cents": signed,
        })
    return {
        "party_id": party_id,
        "domain": domain,
        "as_of": as_of.isoformat(),
        "buckets": buckets,
        "total_cents": sum(buckets.values()),
        "documents": documents,
    }

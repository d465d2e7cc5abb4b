# Overview: Allocation engine; proposes and commits payment knockoffs against
# outstanding settlement documents, and reverses committed payments.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from flask import current_app

from ..extensions import db
from ..errors import (
    DocumentNotFoundError,
    DocumentStateError,
    InvalidAllocationError,
    RequestValidationError,
    StaleAllocationError,
)
from ..models import Document, Knockoff, Payment
from ..models.documents import DOMAIN_PURCHASE, DOMAIN_SALES, KIND_DOMAINS
from ..models.payments import PAYMENT_METHODS, PAYMENT_TYPE_PAYMENT, PAYMENT_TYPE_REVERSAL
from ..time_utils import today
from . import audit_service, outstanding_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import lock_documents
from .sequence_service import next_document_number
"""
Allocation invariants (checked at commit, against live rows)

- 0 <= knockoff <= outstanding_before for every knockoff.
- outstanding_before equals the target's live outstanding; otherwise the
  whole payment is rejected with StaleAllocationError. Stale proposals are
  never silently retried into success.
- applied = sum(debit-side knockoffs) - sum(credit-side knockoffs) <= amount;
  credit consumed may not exceed debit knocked off. Any shortfall is unapplied.
- Payments and knockoffs are immutable; corrections go through reverse_payment().
"""

VALID_DOMAINS = (DOMAIN_SALES, DOMAIN_PURCHASE)


@dataclass(frozen=True)
class KnockoffProposal:
    document_id: int
    document_no: str
    kind: str
    document_date: date
    outstanding_before_cents: int
    knockoff_cents: int

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "document_no": self.document_no,
            "kind": self.kind,
            "document_date": self.document_date.isoformat(),
            "outstanding_before_cents": self.outstanding_before_cents,
            "knockoff_cents": self.knockoff_cents,
        }

    def as_knockoff(self) -> dict:
        """Shape accepted by commit_payment()."""
        return {
            "document_id": self.document_id,
            "outstanding_before_cents": self.outstanding_before_cents,
            "knockoff_cents": self.knockoff_cents,
        }


def _check_domain(domain: str) -> None:
    if domain not in VALID_DOMAINS:
        raise RequestValidationError(f"Invalid domain: {domain}. Must be one of {VALID_DOMAINS}")


# =============================================================================
# Proposal
# =============================================================================

def auto_distribute(party_id: int, amount_cents: int, domain: str = DOMAIN_SALES) -> list[KnockoffProposal]:
    """
    Greedy oldest-first allocation of amount_cents over the party's outstanding.

    Walks the outstanding listing once, giving each debit-side document
    min(remaining, outstanding). Credit notes are not consumed. Zero
    allocations are omitted, so an amount of 0 proposes nothing. Nothing is
    written.
    """
    _check_domain(domain)
    if amount_cents < 0:
        raise InvalidAllocationError("Amount to distribute cannot be negative", {"amount_cents": amount_cents})

    remaining = amount_cents
    proposals: list[KnockoffProposal] = []
    for doc in outstanding_service.list_outstanding(party_id, domain):
        if remaining == 0:
            break
        if doc.is_credit_side:
            continue
        alloc = min(remaining, doc.outstanding_cents)
        if alloc <= 0:
            continue
        proposals.append(KnockoffProposal(
            document_id=doc.id,
            document_no=doc.document_no,
            kind=doc.kind,
            document_date=doc.document_date,
            outstanding_before_cents=doc.outstanding_cents,
            knockoff_cents=alloc,
        ))
        remaining -= alloc
    return proposals


# =============================================================================
# Commit
# =============================================================================

def _normalize_knockoffs(knockoffs: list[dict]) -> list[dict]:
    seen = set()
    out = []
    for i, ko in enumerate(knockoffs, start=1):
        doc_id = ko.get("document_id")
        before = ko.get("outstanding_before_cents")
        amount = ko.get("knockoff_cents")
        for field, value in (("document_id", doc_id), ("outstanding_before_cents", before), ("knockoff_cents", amount)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidAllocationError(f"Knockoff {i}: {field} must be an integer", {"index": i})
        if doc_id in seen:
            raise InvalidAllocationError(
                f"Document {doc_id} appears more than once in the knockoffs",
                {"document_id": doc_id},
            )
        seen.add(doc_id)
        if amount < 0 or before < 0:
            raise InvalidAllocationError(
                f"Knockoff {i}: amounts cannot be negative",
                {"document_id": doc_id, "knockoff_cents": amount, "outstanding_before_cents": before},
            )
        if amount > before:
            raise InvalidAllocationError(
                f"Knockoff {amount} exceeds outstanding {before} on document {doc_id}",
                {"document_id": doc_id, "knockoff_cents": amount, "outstanding_before_cents": before},
            )
        out.append({"document_id": doc_id, "outstanding_before_cents": before, "knockoff_cents": amount})
    return out


def _check_targets(docs: dict[int, Document], *, party_id: int, domain: str) -> None:
    for doc in docs.values():
        problem = None
        if not doc.is_settlement:
            problem = f"{doc.kind} {doc.document_no} is not a settlement document"
        elif KIND_DOMAINS[doc.kind] != domain:
            problem = f"{doc.document_no} belongs to the {doc.domain} domain, payment is {domain}"
        elif doc.party_id != party_id:
            problem = f"{doc.document_no} belongs to party {doc.party_id}, payment is for party {party_id}"
        elif doc.is_void:
            problem = f"{doc.document_no} is VOID"
        elif doc.settlement_status is None:
            problem = f"{doc.document_no} is not posted"
        if problem:
            raise InvalidAllocationError(problem, {"document_id": doc.id})


def commit_payment(
    *,
    party_id: int,
    amount_cents: int,
    knockoffs: list[dict],
    domain: str = DOMAIN_SALES,
    method: str = "CASH",
    payment_date: date | None = None,
    reference: str | None = None,
    note: str | None = None,
    user_id: int | None = None,
) -> Payment:
    """
    Persist a payment and its knockoffs atomically.

    knockoffs: [{"document_id", "outstanding_before_cents", "knockoff_cents"}]
    as returned by KnockoffProposal.as_knockoff(), or any manual set.

    Raises:
        InvalidAllocationError: structural problem (422)
        StaleAllocationError: a snapshot no longer matches live outstanding (409)
    """
    _check_domain(domain)
    if method not in PAYMENT_METHODS:
        raise RequestValidationError(f"Invalid payment method: {method}. Must be one of {PAYMENT_METHODS}")
    if amount_cents < 0:
        raise InvalidAllocationError("Payment amount cannot be negative", {"amount_cents": amount_cents})

    entries = _normalize_knockoffs(knockoffs or [])
    # Zero entries are snapshot-checked, then left out of the written knockoffs
    applied_entries = [e for e in entries if e["knockoff_cents"] > 0]
    if amount_cents == 0 and not applied_entries:
        raise InvalidAllocationError("Payment has neither an amount nor knockoffs")

    def _op() -> Payment:
        begin_write()
        try:
            docs = lock_documents(e["document_id"] for e in entries)
        except DocumentNotFoundError as exc:
            raise InvalidAllocationError(str(exc), exc.details)
        _check_targets(docs, party_id=party_id, domain=domain)

        debit = sum(e["knockoff_cents"] for e in entries if not docs[e["document_id"]].is_credit_side)
        credit = sum(e["knockoff_cents"] for e in entries if docs[e["document_id"]].is_credit_side)
        if credit > debit:
            raise InvalidAllocationError(
                f"Credit applied ({credit}) exceeds debit knocked off ({debit})",
                {"debit_cents": debit, "credit_cents": credit},
            )
        applied = debit - credit
        if applied > amount_cents:
            raise InvalidAllocationError(
                f"Knockoffs total {applied} exceeds payment amount {amount_cents}",
                {"applied_cents": applied, "amount_cents": amount_cents},
            )

        stale = []
        for e in entries:
            doc = docs[e["document_id"]]
            if doc.outstanding_cents != e["outstanding_before_cents"]:
                stale.append({
                    "document_id": doc.id,
                    "document_no": doc.document_no,
                    "expected_cents": e["outstanding_before_cents"],
                    "live_cents": doc.outstanding_cents,
                })
        if stale:
            raise StaleAllocationError(stale)

        currency = next(iter(docs.values())).currency if docs else current_app.config.get("DEFAULT_CURRENCY", "USD")
        payment = Payment(
            payment_no=next_document_number(PAYMENT_TYPE_PAYMENT),
            payment_type=PAYMENT_TYPE_PAYMENT,
            domain=domain,
            party_id=party_id,
            payment_date=payment_date or today(),
            amount_cents=amount_cents,
            currency=currency,
            method=method,
            reference=reference,
            note=note,
            created_by_user_id=user_id,
        )
        for line_no, e in enumerate(applied_entries, start=1):
            doc = docs[e["document_id"]]
            before = doc.outstanding_cents
            outstanding_service.reduce(doc, e["knockoff_cents"])
            payment.knockoffs.append(Knockoff(
                line_no=line_no,
                document_id=doc.id,
                outstanding_before_cents=before,
                knockoff_cents=e["knockoff_cents"],
                outstanding_after_cents=doc.outstanding_cents,
            ))
        db.session.add(payment)
        db.session.flush()

        audit_service.append_event(
            event_type="PAYMENT_COMMITTED",
            event_category="settlement",
            entity_type="payment",
            entity_id=payment.id,
            payment_id=payment.id,
            actor_user_id=user_id,
            note=payment.payment_no,
            payload={
                "amount_cents": amount_cents,
                "applied_cents": applied,
                "knockoffs": applied_entries,
            },
        )

        db.session.commit()
        current_app.logger.info(
            "Committed payment %s for party %s: amount=%d applied=%d",
            payment.payment_no, party_id, amount_cents, applied,
        )
        return payment

    try:
        return run_with_retry(_op)
    except StaleAllocationError as exc:
        current_app.logger.warning("Rejected stale allocation for party %s: %s", party_id, exc)
        raise


# =============================================================================
# Reversal
# =============================================================================

def reverse_payment(payment_id: int, *, reason: str | None = None, user_id: int | None = None) -> Payment:
    """
    Reverse a committed payment with a mirroring REVERSAL payment.

    Every knocked-off document gets its outstanding restored. A payment can be
    reversed once; reversals themselves cannot be reversed.
    """
    def _op() -> Payment:
        begin_write()
        original = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if not original:
            raise DocumentNotFoundError(f"Payment {payment_id} not found")
        if original.payment_type == PAYMENT_TYPE_REVERSAL:
            raise DocumentStateError(f"{original.payment_no} is a reversal and cannot be reversed")
        existing = db.session.query(Payment).filter_by(reverses_payment_id=original.id).first()
        if existing:
            raise DocumentStateError(
                f"Payment {original.payment_no} was already reversed by {existing.payment_no}",
                {"reversal_payment_id": existing.id},
            )

        docs = lock_documents(k.document_id for k in original.knockoffs)
        reversal = Payment(
            payment_no=next_document_number(PAYMENT_TYPE_REVERSAL),
            payment_type=PAYMENT_TYPE_REVERSAL,
            domain=original.domain,
            party_id=original.party_id,
            payment_date=today(),
            amount_cents=original.amount_cents,
            currency=original.currency,
            method=original.method,
            reference=original.payment_no,
            note=reason,
            reverses_payment_id=original.id,
            created_by_user_id=user_id,
        )
        for k in original.knockoffs:
            doc = docs[k.document_id]
            before = doc.outstanding_cents
            outstanding_service.restore(doc, k.knockoff_cents)
            reversal.knockoffs.append(Knockoff(
                line_no=k.line_no,
                document_id=doc.id,
                outstanding_before_cents=before,
                knockoff_cents=k.knockoff_cents,
                outstanding_after_cents=doc.outstanding_cents,
            ))
        db.session.add(reversal)
        db.session.flush()

        audit_service.append_event(
            event_type="PAYMENT_REVERSED",
            event_category="settlement",
            entity_type="payment",
            entity_id=original.id,
            payment_id=reversal.id,
            actor_user_id=user_id,
            note=reason,
            payload={"original_payment_id": original.id, "reversal_payment_id": reversal.id},
        )

        db.session.commit()
        current_app.logger.info("Reversed payment %s with %s", original.payment_no, reversal.payment_no)
        return reversal

    return run_with_retry(_op)


# =============================================================================
# Queries
# =============================================================================

def get_payment(payment_id: int) -> Payment:
    payment = db.session.query(Payment).filter_by(id=payment_id).first()
    if not payment:
        raise DocumentNotFoundError(f"Payment {payment_id} not found")
    return payment


def list_payments(party_id: int, domain: str | None = None) -> list[Payment]:
    q = db.session.query(Payment).filter(Payment.party_id == party_id)
    if domain is not None:
        q = q.filter(Payment.domain == domain)
    return q.order_by(Payment.payment_date.asc(), Payment.id.asc()).all()

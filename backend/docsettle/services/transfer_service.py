# Overview: Transfer engine; moves line quantities from source documents into a
# new target document and compensates sources when a document is voided.

from __future__ import annotations

from datetime import date

from flask import current_app

from ..extensions import db
from ..errors import (
    DocumentStateError,
    InsufficientQuantityError,
    InvalidTransferError,
)
from ..models import Document, DocumentLine
from ..models.documents import KIND_DOMAINS, SETTLEMENT_VOID, STATUS_VOID
from ..time_utils import utcnow
from . import audit_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import (
    apply_post,
    build_document,
    get_document,
    lock_documents,
    refresh_transfer_status,
    remaining_qty,
)
"""
Transfer engine invariants

- 0 <= transferred_qty <= ordered_qty on every line, after every operation.
- A source line's transferred_qty equals the ordered_qty of its live
  (non-VOID) downstream lines.
- Every request is validated in full before any row is mutated; a failing
  request leaves no trace.
- VOID documents are never transferred from.
"""


def _expand_refs(source_refs: list[dict], docs: dict[int, Document]) -> list[tuple[DocumentLine, int]]:
    """
    Resolve refs into (line, qty) pairs, summing duplicate references to one line.

    A ref without line_id takes every line's full remaining quantity; a ref
    with line_id but no qty takes that line's full remaining quantity.
    """
    requested: dict[int, int] = {}
    lines_by_id: dict[int, DocumentLine] = {}

    for ref in source_refs:
        doc = docs[ref["document_id"]]
        line_id = ref.get("line_id")
        qty = ref.get("qty")

        if line_id is None:
            if qty is not None:
                raise InvalidTransferError(
                    f"qty requires line_id (document {doc.document_no})",
                    {"document_id": doc.id},
                )
            for line in doc.lines:
                remaining = remaining_qty(line)
                if remaining > 0:
                    lines_by_id[line.id] = line
                    requested[line.id] = requested.get(line.id, 0) + remaining
            continue

        line = next((l for l in doc.lines if l.id == line_id), None)
        if line is None:
            raise InvalidTransferError(
                f"Line {line_id} does not belong to document {doc.document_no}",
                {"document_id": doc.id, "line_id": line_id},
            )
        if qty is None:
            qty = remaining_qty(line)
            if qty == 0:
                continue
        elif isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
            raise InvalidTransferError(
                f"Transfer quantity for line {line_id} must be a positive integer",
                {"line_id": line_id, "qty": qty},
            )
        lines_by_id[line.id] = line
        requested[line.id] = requested.get(line.id, 0) + qty

    return [(lines_by_id[line_id], qty) for line_id, qty in requested.items()]


def _check_sources(docs: dict[int, Document], target_kind: str) -> None:
    target_domain = KIND_DOMAINS[target_kind]
    parties = {d.party_id for d in docs.values()}
    currencies = {d.currency for d in docs.values()}

    for doc in docs.values():
        if doc.is_void:
            raise InvalidTransferError(
                f"Document {doc.document_no} is VOID and cannot be transferred from",
                {"document_id": doc.id},
            )
        if doc.domain != target_domain:
            raise InvalidTransferError(
                f"Cannot transfer {doc.kind} {doc.document_no} into {target_kind}: "
                f"{doc.domain} and {target_domain} chains do not mix",
                {"document_id": doc.id, "source_domain": doc.domain, "target_domain": target_domain},
            )
    if len(parties) > 1:
        raise InvalidTransferError("Source documents belong to different parties", {"party_ids": sorted(parties)})
    if len(currencies) > 1:
        raise InvalidTransferError("Source documents use different currencies", {"currencies": sorted(currencies)})


def transfer(
    source_refs: list[dict],
    target_kind: str,
    *,
    post: bool = False,
    document_date: date | None = None,
    due_date: date | None = None,
    reference: str | None = None,
    user_id: int | None = None,
) -> Document:
    """
    Create a target document from quantities drawn off source lines.

    source_refs: [{"document_id": int, "line_id": int | None, "qty": int | None}]

    Raises InsufficientQuantityError listing every short line, or
    InvalidTransferError for structural problems. Nothing is written on error.
    """
    if target_kind not in KIND_DOMAINS:
        raise InvalidTransferError(f"Unknown target kind: {target_kind}")
    if not source_refs:
        raise InvalidTransferError("At least one source reference is required")
    for ref in source_refs:
        if ref.get("document_id") is None:
            raise InvalidTransferError("Each source reference needs a document_id")

    def _op() -> Document:
        begin_write()
        docs = lock_documents(ref["document_id"] for ref in source_refs)
        lock_for_update(
            db.session.query(DocumentLine)
            .filter(DocumentLine.document_id.in_(list(docs)))
            .order_by(DocumentLine.id.asc())
        ).all()

        _check_sources(docs, target_kind)
        pairs = _expand_refs(source_refs, docs)
        if not pairs:
            raise InvalidTransferError("Nothing left to transfer on the referenced lines")

        shortfalls = []
        for line, qty in pairs:
            remaining = remaining_qty(line)
            if qty > remaining:
                shortfalls.append({
                    "document_id": line.document_id,
                    "document_no": line.document.document_no,
                    "line_id": line.id,
                    "line_no": line.line_no,
                    "remaining_qty": remaining,
                    "requested_qty": qty,
                })
        if shortfalls:
            raise InsufficientQuantityError(shortfalls)

        first = docs[pairs[0][0].document_id]
        target = build_document(
            kind=target_kind,
            party_id=first.party_id,
            currency=first.currency,
            document_date=document_date,
            due_date=due_date,
            reference=reference,
            user_id=user_id,
            lines=[
                {
                    "product_id": line.product_id,
                    "description": line.description,
                    "ordered_qty": qty,
                    "unit_price_cents": line.unit_price_cents,
                    "source_line_id": line.id,
                }
                for line, qty in pairs
            ],
        )

        for line, qty in pairs:
            line.transferred_qty = line.transferred_qty + qty

        touched = sorted({line.document_id for line, _ in pairs})
        for doc_id in touched:
            src = docs[doc_id]
            refresh_transfer_status(src)
            audit_service.append_event(
                event_type="DOCUMENT_TRANSFERRED_OUT",
                event_category="transfers",
                entity_type="document",
                entity_id=src.id,
                document_id=src.id,
                actor_user_id=user_id,
                note=f"{src.document_no} -> {target.document_no}",
                payload={"target_document_id": target.id, "transfer_status": src.transfer_status},
            )

        audit_service.append_event(
            event_type="DOCUMENT_CREATED_BY_TRANSFER",
            event_category="transfers",
            entity_type="document",
            entity_id=target.id,
            document_id=target.id,
            actor_user_id=user_id,
            note=target.document_no,
            payload={
                "sources": [
                    {"document_id": line.document_id, "line_id": line.id, "qty": qty}
                    for line, qty in pairs
                ],
            },
        )

        if post:
            apply_post(target, user_id=user_id)

        db.session.commit()
        current_app.logger.info(
            "Transferred %d line(s) from %s into %s %s",
            len(pairs),
            ", ".join(docs[d].document_no for d in touched),
            target_kind,
            target.document_no,
        )
        return target

    return run_with_retry(_op)


def void_document(document_id: int, *, reason: str | None = None, user_id: int | None = None) -> Document:
    """
    Void a document and hand its quantities back to the source lines.

    Idempotent: voiding a VOID document returns it unchanged. Blocked while any
    of the document's quantity lives on in a downstream document, and while a
    settlement document still carries knockoffs.
    """
    def _op() -> Document:
        begin_write()
        doc = get_document(document_id)
        if doc.is_void:
            db.session.commit()
            return doc

        source_doc_ids = {
            line.source_line.document_id for line in doc.lines if line.source_line is not None
        }
        docs = lock_documents({doc.id} | source_doc_ids)
        doc = docs[doc.id]
        if doc.is_void:
            db.session.commit()
            return doc

        feeding = [line for line in doc.lines if line.transferred_qty > 0]
        if feeding:
            downstream = sorted({
                child.document.document_no
                for line in feeding
                for child in line.downstream_lines
                if child.document.status != STATUS_VOID
            })
            raise DocumentStateError(
                f"Document {doc.document_no} feeds live downstream documents; void those first",
                {
                    "document_id": doc.id,
                    "downstream_document_nos": downstream,
                    "line_ids": [line.id for line in feeding],
                },
            )

        if doc.is_settlement and doc.settlement_status is not None and doc.outstanding_cents != doc.net_total_cents:
            raise DocumentStateError(
                f"Document {doc.document_no} has payments knocked off; reverse them first",
                {
                    "document_id": doc.id,
                    "outstanding_cents": doc.outstanding_cents,
                    "net_total_cents": doc.net_total_cents,
                },
            )

        compensated = []
        for line in doc.lines:
            src_line = line.source_line
            if src_line is None:
                continue
            src_line.transferred_qty = src_line.transferred_qty - line.ordered_qty
            compensated.append({"source_line_id": src_line.id, "qty": line.ordered_qty})

        for src_id in sorted(source_doc_ids):
            refresh_transfer_status(docs[src_id])

        doc.status = STATUS_VOID
        doc.voided_at = utcnow()
        doc.voided_by_user_id = user_id
        doc.void_reason = reason
        if doc.settlement_status is not None:
            doc.settlement_status = SETTLEMENT_VOID
            doc.outstanding_cents = 0

        audit_service.append_event(
            event_type="DOCUMENT_VOIDED",
            event_category="documents",
            entity_type="document",
            entity_id=doc.id,
            document_id=doc.id,
            actor_user_id=user_id,
            note=reason,
            payload={"compensated": compensated},
        )

        db.session.commit()
        current_app.logger.info("Voided %s %s", doc.kind, doc.document_no)
        return doc

    return run_with_retry(_op)

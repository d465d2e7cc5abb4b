# Overview: Service-layer operations for documents; creation, posting, derived
# transfer status, and lineage traversal.

from __future__ import annotations

from collections import deque
from datetime import date
from typing import Iterable

from flask import current_app

from ..extensions import db
from ..errors import (
    DocumentNotFoundError,
    DocumentStateError,
    InvalidStateError,
    RequestValidationError,
)
from ..models import Document, DocumentLine
from ..models.documents import (
    KIND_DOMAINS,
    STATUS_OPEN,
    STATUS_POSTED,
    STATUS_PARTIAL,
    STATUS_TRANSFERRED,
    STATUS_VOID,
    TRANSFER_FULL,
    TRANSFER_NONE,
    TRANSFER_PARTIAL,
    TRANSFER_TARGETS,
)
from ..time_utils import today, utcnow
from . import audit_service, outstanding_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .sequence_service import next_document_number


# =============================================================================
# Derived quantities
# =============================================================================

def remaining_qty(line: DocumentLine) -> int:
    """ordered_qty - transferred_qty; negative means stored data is corrupt."""
    remaining = line.ordered_qty - line.transferred_qty
    if remaining < 0:
        raise InvalidStateError(
            f"Line {line.id} has transferred_qty {line.transferred_qty} above ordered_qty {line.ordered_qty}",
            {"line_id": line.id, "ordered_qty": line.ordered_qty, "transferred_qty": line.transferred_qty},
        )
    return remaining


def derive_transfer_status(doc: Document) -> str:
    """
    NONE if nothing moved (including a document with no lines), FULL if every
    line moved completely, PARTIAL otherwise.
    """
    lines = list(doc.lines)
    if all(line.transferred_qty == 0 for line in lines):
        return TRANSFER_NONE
    if all(line.transferred_qty == line.ordered_qty for line in lines):
        return TRANSFER_FULL
    return TRANSFER_PARTIAL


def refresh_transfer_status(doc: Document) -> str:
    """Recompute the cached transfer status and the status that follows from it."""
    status = derive_transfer_status(doc)
    doc.transfer_status = status
    if doc.status != STATUS_VOID:
        if status == TRANSFER_FULL:
            doc.status = STATUS_TRANSFERRED
        elif status == TRANSFER_PARTIAL:
            doc.status = STATUS_PARTIAL
        else:
            doc.status = STATUS_POSTED if doc.posted_at else STATUS_OPEN
    return status


# =============================================================================
# Lookup
# =============================================================================

def get_document(document_id: int) -> Document:
    doc = db.session.query(Document).filter_by(id=document_id).first()
    if not doc:
        raise DocumentNotFoundError(f"Document {document_id} not found")
    return doc


def lock_documents(document_ids: Iterable[int]) -> dict[int, Document]:
    """
    Lock the given documents (ascending id order) and return them by id.

    Raises DocumentNotFoundError naming every missing id.
    """
    ids = sorted(set(document_ids))
    if not ids:
        return {}
    docs = lock_for_update(
        db.session.query(Document).filter(Document.id.in_(ids)).order_by(Document.id.asc())
    ).all()
    found = {d.id: d for d in docs}
    missing = [i for i in ids if i not in found]
    if missing:
        raise DocumentNotFoundError(
            f"Documents not found: {', '.join(str(i) for i in missing)}",
            {"document_ids": missing},
        )
    return found


# =============================================================================
# Creation and posting
# =============================================================================

def build_document(
    *,
    kind: str,
    party_id: int,
    lines: list[dict],
    document_date: date | None = None,
    due_date: date | None = None,
    currency: str | None = None,
    reference: str | None = None,
    description: str | None = None,
    user_id: int | None = None,
) -> Document:
    """
    Add a numbered OPEN document with its lines to the current unit of work.

    Each line dict carries ordered_qty, unit_price_cents and optionally
    product_id, description and source_line_id. Does not commit.
    """
    if kind not in KIND_DOMAINS:
        raise RequestValidationError(f"Unknown document kind: {kind}")

    doc = Document(
        kind=kind,
        document_no=next_document_number(kind),
        document_date=document_date or today(),
        due_date=due_date,
        party_id=party_id,
        status=STATUS_OPEN,
        transfer_status=TRANSFER_NONE,
        currency=currency or current_app.config.get("DEFAULT_CURRENCY", "USD"),
        reference=reference,
        description=description,
        created_by_user_id=user_id,
    )

    net_total = 0
    for line_no, item in enumerate(lines, start=1):
        qty = item["ordered_qty"]
        price = item.get("unit_price_cents", 0)
        if qty < 0:
            raise RequestValidationError(f"Line {line_no}: ordered_qty cannot be negative")
        if price < 0:
            raise RequestValidationError(f"Line {line_no}: unit_price_cents cannot be negative")
        line_total = qty * price
        net_total += line_total
        doc.lines.append(DocumentLine(
            line_no=line_no,
            product_id=item.get("product_id"),
            description=item.get("description"),
            ordered_qty=qty,
            transferred_qty=0,
            unit_price_cents=price,
            line_total_cents=line_total,
            source_line_id=item.get("source_line_id"),
        ))
    doc.net_total_cents = net_total

    db.session.add(doc)
    db.session.flush()
    return doc


def create_document(*, post: bool = False, **fields) -> Document:
    """Create a root document (no upstream source) and optionally post it."""
    def _op() -> Document:
        begin_write()
        doc = build_document(**fields)
        audit_service.append_event(
            event_type="DOCUMENT_CREATED",
            event_category="documents",
            entity_type="document",
            entity_id=doc.id,
            document_id=doc.id,
            actor_user_id=fields.get("user_id"),
            note=doc.document_no,
        )
        if post:
            apply_post(doc, user_id=fields.get("user_id"))
        db.session.commit()
        return doc

    return run_with_retry(_op)


def apply_post(doc: Document, *, user_id: int | None = None) -> Document:
    """OPEN -> POSTED inside the caller's unit of work; settlement kinds become outstanding."""
    if doc.is_void:
        raise DocumentStateError(f"Document {doc.document_no} is VOID and cannot be posted")
    if doc.posted_at is not None:
        raise DocumentStateError(f"Document {doc.document_no} is already posted")

    doc.posted_at = utcnow()
    refresh_transfer_status(doc)
    if doc.is_settlement:
        outstanding_service.post(doc)

    audit_service.append_event(
        event_type="DOCUMENT_POSTED",
        event_category="documents",
        entity_type="document",
        entity_id=doc.id,
        document_id=doc.id,
        actor_user_id=user_id,
        note=doc.document_no,
    )
    return doc


def post_document(document_id: int, *, user_id: int | None = None) -> Document:
    def _op() -> Document:
        begin_write()
        doc = lock_documents([document_id])[document_id]
        apply_post(doc, user_id=user_id)
        db.session.commit()
        return doc

    return run_with_retry(_op)


# =============================================================================
# Read models
# =============================================================================

def get_transferable_lines(document_id: int) -> dict:
    """Lines that still have quantity to move, plus the target kinds offered for this kind."""
    doc = get_document(document_id)
    lines = []
    if not doc.is_void:
        for line in doc.lines:
            remaining = remaining_qty(line)
            if remaining > 0:
                data = line.to_dict()
                data["remaining_qty"] = remaining
                lines.append(data)
    return {
        "document_id": doc.id,
        "document_no": doc.document_no,
        "kind": doc.kind,
        "status": doc.status,
        "transfer_status": doc.transfer_status,
        "target_kinds": list(TRANSFER_TARGETS.get(doc.kind, ())),
        "lines": lines,
    }


def get_lineage(document_id: int) -> dict:
    """
    Walk source_line_id back-pointers in both directions.

    Returns the documents upstream (sources, sources of sources...) and
    downstream (documents created from this one) with their distance.
    """
    doc = get_document(document_id)

    def _walk(start: Document, neighbours) -> list[dict]:
        seen = {start.id}
        out = []
        queue = deque([(start, 0)])
        while queue:
            current, depth = queue.popleft()
            for nxt in neighbours(current):
                if nxt.id in seen:
                    continue
                seen.add(nxt.id)
                out.append({
                    "depth": depth + 1,
                    "id": nxt.id,
                    "kind": nxt.kind,
                    "document_no": nxt.document_no,
                    "status": nxt.status,
                })
                queue.append((nxt, depth + 1))
        return out

    def _upstream(d: Document):
        for line in d.lines:
            if line.source_line is not None:
                yield line.source_line.document

    def _downstream(d: Document):
        for line in d.lines:
            for child in line.downstream_lines:
                yield child.document

    return {
        "document": doc.to_dict(include_lines=False),
        "upstream": _walk(doc, _upstream),
        "downstream": _walk(doc, _downstream),
    }

from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from ..errors import InvalidStateError
from ..time_utils import to_utc_z, to_iso_date


# Domains
DOMAIN_SALES = "SALES"
DOMAIN_PURCHASE = "PURCHASE"

# Kinds
KIND_QUOTATION = "QUOTATION"
KIND_SALES_ORDER = "SALES_ORDER"
KIND_DELIVERY_ORDER = "DELIVERY_ORDER"
KIND_INVOICE = "INVOICE"
KIND_CREDIT_NOTE = "CREDIT_NOTE"
KIND_DEBIT_NOTE = "DEBIT_NOTE"
KIND_PURCHASE_ORDER = "PURCHASE_ORDER"
KIND_GOODS_RECEIPT = "GOODS_RECEIPT"
KIND_PURCHASE_INVOICE = "PURCHASE_INVOICE"
KIND_PURCHASE_CREDIT_NOTE = "PURCHASE_CREDIT_NOTE"
KIND_PURCHASE_DEBIT_NOTE = "PURCHASE_DEBIT_NOTE"

KIND_DOMAINS = {
    KIND_QUOTATION: DOMAIN_SALES,
    KIND_SALES_ORDER: DOMAIN_SALES,
    KIND_DELIVERY_ORDER: DOMAIN_SALES,
    KIND_INVOICE: DOMAIN_SALES,
    KIND_CREDIT_NOTE: DOMAIN_SALES,
    KIND_DEBIT_NOTE: DOMAIN_SALES,
    KIND_PURCHASE_ORDER: DOMAIN_PURCHASE,
    KIND_GOODS_RECEIPT: DOMAIN_PURCHASE,
    KIND_PURCHASE_INVOICE: DOMAIN_PURCHASE,
    KIND_PURCHASE_CREDIT_NOTE: DOMAIN_PURCHASE,
    KIND_PURCHASE_DEBIT_NOTE: DOMAIN_PURCHASE,
}

SETTLEMENT_KINDS = frozenset({
    KIND_INVOICE,
    KIND_CREDIT_NOTE,
    KIND_DEBIT_NOTE,
    KIND_PURCHASE_INVOICE,
    KIND_PURCHASE_CREDIT_NOTE,
    KIND_PURCHASE_DEBIT_NOTE,
})

# Credit-side settlement documents reduce what the party owes
CREDIT_SIDE_KINDS = frozenset({KIND_CREDIT_NOTE, KIND_PURCHASE_CREDIT_NOTE})

# Target kinds offered for each source kind (the engine itself accepts any same-domain pair)
TRANSFER_TARGETS = {
    KIND_QUOTATION: (KIND_SALES_ORDER, KIND_DELIVERY_ORDER, KIND_INVOICE),
    KIND_SALES_ORDER: (KIND_DELIVERY_ORDER, KIND_INVOICE),
    KIND_DELIVERY_ORDER: (KIND_INVOICE,),
    KIND_INVOICE: (KIND_CREDIT_NOTE, KIND_DEBIT_NOTE),
    KIND_PURCHASE_ORDER: (KIND_GOODS_RECEIPT, KIND_PURCHASE_INVOICE),
    KIND_GOODS_RECEIPT: (KIND_PURCHASE_INVOICE,),
    KIND_PURCHASE_INVOICE: (KIND_PURCHASE_CREDIT_NOTE, KIND_PURCHASE_DEBIT_NOTE),
}

# Document status
STATUS_OPEN = "OPEN"
STATUS_POSTED = "POSTED"
STATUS_PARTIAL = "PARTIAL"
STATUS_TRANSFERRED = "TRANSFERRED"
STATUS_VOID = "VOID"

# Derived transfer status
TRANSFER_NONE = "NONE"
TRANSFER_PARTIAL = "PARTIAL"
TRANSFER_FULL = "FULL"

# Settlement status
SETTLEMENT_OPEN = "OPEN"
SETTLEMENT_PARTIAL = "PARTIAL"
SETTLEMENT_PAID = "PAID"
SETTLEMENT_VOID = "VOID"


class Document(db.Model):
    """
    A business document in a SALES or PURCHASE chain.

    LIFECYCLE:
    1. OPEN: created, lines still editable
    2. POSTED: committed; settlement kinds become outstanding
    3. PARTIAL / TRANSFERRED: some / all quantity moved to downstream documents
    4. VOID: reversed through the auditable void operation

    transfer_status is a cache of the value derived from the lines and is
    rewritten by the transfer engine whenever a line's transferred_qty moves.
    outstanding_cents / settlement_status are only populated for settlement
    kinds once posted.
    """
    __tablename__ = "documents"
    __table_args__ = (
        db.UniqueConstraint("kind", "document_no", name="uq_documents_kind_docno"),
        db.Index("ix_documents_party_kind_date", "party_id", "kind", "document_date"),
        db.Index("ix_documents_settlement", "party_id", "settlement_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(32), nullable=False, index=True)

    # Human-readable number from the sequencing collaborator (e.g., "INV-000001")
    document_no = db.Column(db.String(64), nullable=False, index=True)

    document_date = db.Column(db.Date, nullable=False, index=True)
    due_date = db.Column(db.Date, nullable=True)

    # Customer (SALES) or vendor (PURCHASE)
    party_id = db.Column(db.Integer, nullable=False, index=True)

    # OPEN, POSTED, PARTIAL, TRANSFERRED, VOID
    status = db.Column(db.String(16), nullable=False, default=STATUS_OPEN, index=True)
    # NONE, PARTIAL, FULL
    transfer_status = db.Column(db.String(16), nullable=False, default=TRANSFER_NONE)

    currency = db.Column(db.String(3), nullable=False, default="USD")
    net_total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Settlement kinds only
    outstanding_cents = db.Column(db.Integer, nullable=True)
    settlement_status = db.Column(db.String(16), nullable=True, index=True)  # OPEN, PARTIAL, PAID, VOID

    reference = db.Column(db.String(128), nullable=True)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    posted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    voided_by_user_id = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "DocumentLine",
        back_populates="document",
        order_by="DocumentLine.line_no",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def domain(self) -> str:
        return KIND_DOMAINS[self.kind]

    @property
    def is_settlement(self) -> bool:
        return self.kind in SETTLEMENT_KINDS

    @property
    def is_credit_side(self) -> bool:
        return self.kind in CREDIT_SIDE_KINDS

    @property
    def is_void(self) -> bool:
        return self.status == STATUS_VOID

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "kind": self.kind,
            "domain": self.domain,
            "document_no": self.document_no,
            "document_date": to_iso_date(self.document_date),
            "due_date": to_iso_date(self.due_date),
            "party_id": self.party_id,
            "status": self.status,
            "transfer_status": self.transfer_status,
            "currency": self.currency,
            "net_total_cents": self.net_total_cents,
            "outstanding_cents": self.outstanding_cents,
            "settlement_status": self.settlement_status,
            "reference": self.reference,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "posted_at": to_utc_z(self.posted_at) if self.posted_at else None,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
            "created_by_user_id": self.created_by_user_id,
            "voided_by_user_id": self.voided_by_user_id,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class DocumentLine(db.Model):
    """
    A quantity-bearing line.

    source_line_id is a weak back-pointer to the upstream line this one was
    transferred from; the chain of back-pointers forms a DAG. transferred_qty
    counts how much of ordered_qty has moved downstream and stays within
    [0, ordered_qty].
    """
    __tablename__ = "document_lines"
    __table_args__ = (
        db.UniqueConstraint("document_id", "line_no", name="uq_document_lines_doc_lineno"),
        db.CheckConstraint("ordered_qty >= 0", name="ck_document_lines_ordered_nonneg"),
        db.CheckConstraint(
            "transferred_qty >= 0 AND transferred_qty <= ordered_qty",
            name="ck_document_lines_transferred_bounds",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=False, index=True)
    line_no = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, nullable=True, index=True)
    description = db.Column(db.String(255), nullable=True)

    ordered_qty = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False, default=0)

    transferred_qty = db.Column(db.Integer, nullable=False, default=0)

    source_line_id = db.Column(db.Integer, db.ForeignKey("document_lines.id"), nullable=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    document = db.relationship("Document", back_populates="lines")
    source_line = db.relationship(
        "DocumentLine",
        remote_side=[id],
        backref=db.backref("downstream_lines", lazy=True),
    )
    __mapper_args__ = {"version_id_col": version_id}

    @validates("transferred_qty")
    def _validate_transferred_qty(self, key, value):
        if value is None:
            return value
        if value < 0:
            raise InvalidStateError(
                f"Line {self.id}: transferred_qty would become negative ({value})",
                {"line_id": self.id, "transferred_qty": value},
            )
        if self.ordered_qty is not None and value > self.ordered_qty:
            raise InvalidStateError(
                f"Line {self.id}: transferred_qty {value} exceeds ordered_qty {self.ordered_qty}",
                {"line_id": self.id, "transferred_qty": value, "ordered_qty": self.ordered_qty},
            )
        return value

    @validates("ordered_qty")
    def _validate_ordered_qty(self, key, value):
        if value is None or value < 0:
            raise InvalidStateError(f"ordered_qty must be a non-negative integer, got {value}")
        if self.transferred_qty is not None and value < self.transferred_qty:
            raise InvalidStateError(
                f"Line {self.id}: ordered_qty {value} below transferred_qty {self.transferred_qty}",
                {"line_id": self.id, "ordered_qty": value, "transferred_qty": self.transferred_qty},
            )
        return value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "line_no": self.line_no,
            "product_id": self.product_id,
            "description": self.description,
            "ordered_qty": self.ordered_qty,
            "transferred_qty": self.transferred_qty,
            "remaining_qty": self.ordered_qty - self.transferred_qty,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "source_line_id": self.source_line_id,
            "version_id": self.version_id,
        }

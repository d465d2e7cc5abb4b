from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


PAYMENT_TYPE_PAYMENT = "PAYMENT"
PAYMENT_TYPE_REVERSAL = "REVERSAL"

PAYMENT_METHODS = ("CASH", "CHEQUE", "BANK_TRANSFER", "CARD", "OTHER")


class Payment(db.Model):
    """
    A receipt (SALES) or disbursement (PURCHASE) and its knockoffs.

    Immutable once committed. A mistaken payment is corrected by a REVERSAL
    payment that points back through reverses_payment_id and restores the
    outstanding of every document the original knocked off.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("payment_type", "payment_no", name="uq_payments_type_no"),
        db.Index("ix_payments_party_domain_date", "party_id", "domain", "payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_no = db.Column(db.String(64), nullable=False, index=True)

    # PAYMENT, REVERSAL
    payment_type = db.Column(db.String(16), nullable=False, default=PAYMENT_TYPE_PAYMENT, index=True)
    # SALES (receipt from customer) or PURCHASE (payment to vendor)
    domain = db.Column(db.String(16), nullable=False)

    party_id = db.Column(db.Integer, nullable=False, index=True)
    payment_date = db.Column(db.Date, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    method = db.Column(db.String(32), nullable=False, default="CASH")
    reference = db.Column(db.String(128), nullable=True)
    note = db.Column(db.Text, nullable=True)

    # A payment can be reversed at most once
    reverses_payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by_user_id = db.Column(db.Integer, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    knockoffs = db.relationship(
        "Knockoff",
        back_populates="payment",
        order_by="Knockoff.line_no",
        cascade="all, delete-orphan",
    )
    reverses_payment = db.relationship(
        "Payment",
        remote_side=[id],
        backref=db.backref("reversal", uselist=False),
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def applied_cents(self) -> int:
        """Debit-side knockoffs minus credit-side knockoffs."""
        total = 0
        for k in self.knockoffs:
            total += -k.knockoff_cents if k.document.is_credit_side else k.knockoff_cents
        return total

    @property
    def unapplied_cents(self) -> int:
        return self.amount_cents - self.applied_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_no": self.payment_no,
            "payment_type": self.payment_type,
            "domain": self.domain,
            "party_id": self.party_id,
            "payment_date": to_iso_date(self.payment_date),
            "amount_cents": self.amount_cents,
            "applied_cents": self.applied_cents,
            "unapplied_cents": self.unapplied_cents,
            "currency": self.currency,
            "method": self.method,
            "reference": self.reference,
            "note": self.note,
            "reverses_payment_id": self.reverses_payment_id,
            "reversed_by_payment_id": self.reversal.id if self.reversal else None,
            "created_at": to_utc_z(self.created_at),
            "created_by_user_id": self.created_by_user_id,
            "knockoffs": [k.to_dict() for k in self.knockoffs],
        }


class Knockoff(db.Model):
    """
    One allocation of a payment against one settlement document.

    outstanding_before_cents is the snapshot the allocation was computed
    against; commit rejects the payment if it no longer matches.
    """
    __tablename__ = "knockoffs"
    __table_args__ = (
        db.UniqueConstraint("payment_id", "document_id", name="uq_knockoffs_payment_document"),
        db.CheckConstraint("knockoff_cents >= 0", name="ck_knockoffs_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    line_no = db.Column(db.Integer, nullable=False)
    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=False, index=True)

    outstanding_before_cents = db.Column(db.Integer, nullable=False)
    knockoff_cents = db.Column(db.Integer, nullable=False)
    outstanding_after_cents = db.Column(db.Integer, nullable=False)

    payment = db.relationship("Payment", back_populates="knockoffs")
    document = db.relationship("Document", backref=db.backref("knockoffs", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_no": self.line_no,
            "document_id": self.document_id,
            "document_kind": self.document.kind if self.document else None,
            "document_no": self.document.document_no if self.document else None,
            "document_date": to_iso_date(self.document.document_date) if self.document else None,
            "document_amount_cents": self.document.net_total_cents if self.document else None,
            "outstanding_before_cents": self.outstanding_before_cents,
            "knockoff_cents": self.knockoff_cents,
            "outstanding_after_cents": self.outstanding_after_cents,
        }

from datetime import date

import pytest

from docsettle.errors import (
    DocumentStateError,
    InvalidAllocationError,
    RequestValidationError,
    StaleAllocationError,
)
from docsettle.models import Document, Knockoff, Payment
from docsettle.services import allocation_service, outstanding_service, transfer_service


@pytest.fixture
def two_invoices(make_invoice):
    first = make_invoice(100, document_date=date(2026, 1, 1))
    second = make_invoice(150, document_date=date(2026, 2, 1))
    return first, second


class TestAutoDistribute:
    def test_oldest_first(self, two_invoices):
        first, second = two_invoices

        proposals = allocation_service.auto_distribute(1, 120)

        assert [(p.document_id, p.knockoff_cents) for p in proposals] == [(first.id, 100), (second.id, 20)]
        assert [p.outstanding_before_cents for p in proposals] == [100, 150]

    def test_deterministic(self, two_invoices):
        assert allocation_service.auto_distribute(1, 120) == allocation_service.auto_distribute(1, 120)

    def test_amount_larger_than_outstanding(self, two_invoices):
        proposals = allocation_service.auto_distribute(1, 1000)
        assert sum(p.knockoff_cents for p in proposals) == 250

    def test_stops_when_amount_exhausted(self, two_invoices):
        first, _ = two_invoices
        proposals = allocation_service.auto_distribute(1, 100)
        assert [(p.document_id, p.knockoff_cents) for p in proposals] == [(first.id, 100)]

    def test_credit_notes_not_consumed(self, make_invoice):
        invoice = make_invoice(100, document_date=date(2026, 1, 2))
        make_invoice(40, document_date=date(2026, 1, 1), kind="CREDIT_NOTE")

        proposals = allocation_service.auto_distribute(1, 100)

        assert [p.document_id for p in proposals] == [invoice.id]

    def test_nothing_outstanding(self, db_session):
        assert allocation_service.auto_distribute(1, 100) == []

    def test_negative_amount_rejected(self, db_session):
        with pytest.raises(InvalidAllocationError):
            allocation_service.auto_distribute(1, -5)

    def test_zero_amount_proposes_nothing(self, db_session, two_invoices):
        assert allocation_service.auto_distribute(1, 0) == []

    def test_writes_nothing(self, db_session, two_invoices):
        allocation_service.auto_distribute(1, 120)
        assert db_session.query(Payment).count() == 0
        assert {d.outstanding_cents for d in db_session.query(Document)} == {100, 150}


class TestCommitPayment:
    def test_commit_proposal(self, db_session, two_invoices):
        first, second = two_invoices
        proposals = allocation_service.auto_distribute(1, 120)

        payment = allocation_service.commit_payment(
            party_id=1,
            amount_cents=120,
            knockoffs=[p.as_knockoff() for p in proposals],
            method="BANK_TRANSFER",
        )

        assert payment.payment_no == "PAY-000001"
        assert payment.applied_cents == 120
        assert payment.unapplied_cents == 0
        assert [(k.document_id, k.outstanding_before_cents, k.knockoff_cents, k.outstanding_after_cents)
                for k in payment.knockoffs] == [(first.id, 100, 100, 0), (second.id, 150, 20, 130)]

        db_session.refresh(first)
        db_session.refresh(second)
        assert (first.outstanding_cents, first.settlement_status) == (0, "PAID")
        assert (second.outstanding_cents, second.settlement_status) == (130, "PARTIAL")

    def test_unapplied_amount_allowed(self, db_session, make_invoice):
        invoice = make_invoice(100)

        payment = allocation_service.commit_payment(
            party_id=1,
            amount_cents=150,
            knockoffs=[{"document_id": invoice.id, "outstanding_before_cents": 100, "knockoff_cents": 100}],
        )

        assert payment.applied_cents == 100
        assert payment.unapplied_cents == 50

    def test_manual_override_not_greedy(self, db_session, two_invoices):
        first, second = two_invoices

        allocation_service.commit_payment(
            party_id=1,
            amount_cents=150,
            knockoffs=[{"document_id": second.id, "outstanding_before_cents": 150, "knockoff_cents": 150}],
        )

        db_session.refresh(first)
        db_session.refresh(second)
        assert first.outstanding_cents == 100
        assert second.settlement_status == "PAID"

    def test_stale_snapshot_rejected(self, db_session, make_invoice):
        invoice = make_invoice(200)
        snapshot = allocation_service.auto_distribute(1, 200)

        allocation_service.commit_payment(
            party_id=1,
            amount_cents=200,
            knockoffs=[p.as_knockoff() for p in snapshot],
        )

        with pytest.raises(StaleAllocationError) as excinfo:
            allocation_service.commit_payment(
                party_id=1,
                amount_cents=200,
                knockoffs=[p.as_knockoff() for p in snapshot],
            )

        stale = excinfo.value.stale[0]
        assert stale["document_id"] == invoice.id
        assert stale["expected_cents"] == 200
        assert stale["live_cents"] == 0
        assert db_session.query(Payment).count() == 1
        db_session.refresh(invoice)
        assert invoice.outstanding_cents == 0

    def test_stale_rejects_whole_payment(self, db_session, two_invoices):
        first, second = two_invoices
        allocation_service.commit_payment(
            party_id=1,
            amount_cents=50,
            knockoffs=[{"document_id": second.id, "outstanding_before_cents": 150, "knockoff_cents": 50}],
        )

        with pytest.raises(StaleAllocationError):
            allocation_service.commit_payment(
                party_id=1,
                amount_cents=200,
                knockoffs=[
                    {"document_id": first.id, "outstanding_before_cents": 100, "knockoff_cents": 100},
                    {"document_id": second.id, "outstanding_before_cents": 150, "knockoff_cents": 100},
                ],
            )

        db_session.refresh(first)
        assert first.outstanding_cents == 100
        assert db_session.query(Knockoff).count() == 1

    def test_knockoff_above_snapshot_rejected(self, make_invoice):
        invoice = make_invoice(100)
        with pytest.raises(InvalidAllocationError):
            allocation_service.commit_payment(
                party_id=1,
                amount_cents=200,
                knockoffs=[{"document_id": invoice.id, "outstanding_before_cents": 100, "knockoff_cents": 101}],
            )

    def test_over_allocation_rejected(self, db_session, two_invoices):
        first, second = two_invoices
        with pytest.raises(InvalidAllocationError):
            allocation_service.commit_payment(
                party_id=1,
                amount_cents=120,
                knockoffs=[
                    {"document_id": first.id, "outstanding_before_cents": 100, "knockoff_cents": 100},
                    {"document_id": second.id, "outstanding_before_cents": 150, "knockoff_cents": 50},
                ],
            )
        assert db_session.query(Payment).count() == 0

    def test_duplicate_target_rejected(self, make_invoice):
        invoice = make_invoice(100)
        ko = {"document_id": invoice.id, "outstanding_before_cents": 100, "knockoff_cents": 10}
        with pytest.raises(InvalidAllocationError):
            allocation_service.commit_payment(party_id=1, amount_cents=20, knockoffs=[ko, dict(ko)])

    def test_wrong_party_rejected(self, make_invoice):
        invoice = make_invoice(100, party_id=2)
        with pytest.raises(InvalidAllocationError):
            allocation_service.commit_payment(
                party_id=1,
                amount_cents=100,
                knockoffs=[{"document_id": invoice.id, "outstanding_before_cents": 100, "knockoff_cents": 100}],
            )

    def test_non_settlement_target_rejected(self, make_document):
        order = make_document("SALES_ORDER")
        with pytest.raises(InvalidAllocationError):
            allocation_service.commit_payment(
                party_id=1,
                amount_cents=100,
                knockoffs=[{"document_id": order.id, "outstanding_before_cents": 100, "knockoff_cents": 100}],
            )

    def test_wrong_domain_rejected(self, make_document):
        bill = make_document("PURCHASE_INVOICE", lines=((1, 100),))
        with pytest.raises(InvalidAllocationError):
            allocation_service.commit_payment(
                party_id=1,
                amount_cents=100,
                domain="SALES",
                knockoffs=[{"document_id": bill.id, "outstanding_before_cents": 100, "knockoff_cents": 100}],
            )

    def test_purchase_domain_payment(self, db_session, make_document):
        bill = make_document("PURCHASE_INVOICE", lines=((1, 100),))
        payment = allocation_service.commit_payment(
            party_id=1,
            amount_cents=100,
            domain="PURCHASE",
            knockoffs=[{"document_id": bill.id, "outstanding_before_cents": 100, "knockoff_cents": 100}],
        )
        assert payment.domain == "PURCHASE"
        db_session.refresh(bill)
        assert bill.settlement_status == "PAID"

    def test_unknown_target_rejected(self, db_session):
        with pytest.raises(InvalidAllocationError):
            allocation_service.commit_payment(
                party_id=1,
                amount_cents=100,
                knockoffs=[{"document_id": 999, "outstanding_before_cents": 100, "knockoff_cents": 100}],
            )

    def test_zero_knockoffs_dropped(self, db_session, two_invoices):
        first, second = two_invoices
        payment = allocation_service.commit_payment(
            party_id=1,
            amount_cents=100,
            knockoffs=[
                {"document_id": first.id, "outstanding_before_cents": 100, "knockoff_cents": 100},
                {"document_id": second.id, "outstanding_before_cents": 150, "knockoff_cents": 0},
            ],
        )
        assert [k.document_id for k in payment.knockoffs] == [first.id]

    def test_zero_knockoff_with_stale_snapshot_rejected(self, db_session, two_invoices):
        first, second = two_invoices
        with pytest.raises(StaleAllocationError) as excinfo:
            allocation_service.commit_payment(
                party_id=1,
                amount_cents=100,
                knockoffs=[
                    {"document_id": first.id, "outstanding_before_cents": 100, "knockoff_cents": 100},
                    {"document_id": second.id, "outstanding_before_cents": 999, "knockoff_cents": 0},
                ],
            )

        assert [s["document_id"] for s in excinfo.value.stale] == [second.id]
        assert db_session.query(Payment).count() == 0
        db_session.refresh(first)
        assert first.outstanding_cents == 100

    def test_invalid_method_rejected(self, db_session):
        with pytest.raises(RequestValidationError):
            allocation_service.commit_payment(party_id=1, amount_cents=100, knockoffs=[], method="BITCOIN")

    def test_credit_note_consumed_as_credit(self, db_session, make_invoice):
        invoice = make_invoice(1000, document_date=date(2026, 1, 1))
        credit = make_invoice(300, document_date=date(2026, 1, 2), kind="CREDIT_NOTE")

        payment = allocation_service.commit_payment(
            party_id=1,
            amount_cents=700,
            knockoffs=[
                {"document_id": invoice.id, "outstanding_before_cents": 1000, "knockoff_cents": 1000},
                {"document_id": credit.id, "outstanding_before_cents": 300, "knockoff_cents": 300},
            ],
        )

        assert payment.applied_cents == 700
        assert payment.unapplied_cents == 0
        db_session.refresh(credit)
        assert credit.settlement_status == "PAID"

    def test_credit_beyond_debit_rejected(self, make_invoice):
        invoice = make_invoice(100, document_date=date(2026, 1, 1))
        credit = make_invoice(300, document_date=date(2026, 1, 2), kind="CREDIT_NOTE")
        with pytest.raises(InvalidAllocationError):
            allocation_service.commit_payment(
                party_id=1,
                amount_cents=0,
                knockoffs=[
                    {"document_id": invoice.id, "outstanding_before_cents": 100, "knockoff_cents": 100},
                    {"document_id": credit.id, "outstanding_before_cents": 300, "knockoff_cents": 300},
                ],
            )

    def test_purchase_payment_consumes_vendor_credit_note(self, db_session, make_document):
        bill = make_document("PURCHASE_INVOICE", lines=((10, 100),), document_date=date(2026, 1, 1))
        credit = transfer_service.transfer(
            [{"document_id": bill.id, "line_id": bill.lines[0].id, "qty": 3}],
            "PURCHASE_CREDIT_NOTE",
            post=True,
            document_date=date(2026, 1, 5),
        )

        proposals = allocation_service.auto_distribute(1, 1000, "PURCHASE")
        assert [p.document_id for p in proposals] == [bill.id]

        payment = allocation_service.commit_payment(
            party_id=1,
            amount_cents=700,
            domain="PURCHASE",
            knockoffs=[
                {"document_id": bill.id, "outstanding_before_cents": 1000, "knockoff_cents": 1000},
                {"document_id": credit.id, "outstanding_before_cents": 300, "knockoff_cents": 300},
            ],
        )

        assert payment.applied_cents == 700
        assert payment.unapplied_cents == 0
        db_session.refresh(bill)
        db_session.refresh(credit)
        assert bill.settlement_status == "PAID"
        assert credit.settlement_status == "PAID"
        assert outstanding_service.list_outstanding(1, "PURCHASE").all() == []

    def test_knocked_off_total_never_exceeds_net(self, db_session, make_invoice):
        invoice = make_invoice(300)
        for _ in range(3):
            proposals = allocation_service.auto_distribute(1, 100)
            allocation_service.commit_payment(
                party_id=1, amount_cents=100, knockoffs=[p.as_knockoff() for p in proposals]
            )
        assert allocation_service.auto_distribute(1, 100) == []
        total = sum(k.knockoff_cents for k in db_session.query(Knockoff).filter_by(document_id=invoice.id))
        assert total == 300


class TestReversePayment:
    def test_reversal_restores_outstanding(self, db_session, two_invoices):
        first, second = two_invoices
        payment = allocation_service.commit_payment(
            party_id=1,
            amount_cents=120,
            knockoffs=[p.as_knockoff() for p in allocation_service.auto_distribute(1, 120)],
        )

        reversal = allocation_service.reverse_payment(payment.id, reason="Cheque bounced")

        assert reversal.payment_type == "REVERSAL"
        assert reversal.reverses_payment_id == payment.id
        assert reversal.payment_no == "REV-000001"
        db_session.refresh(first)
        db_session.refresh(second)
        assert (first.outstanding_cents, first.settlement_status) == (100, "OPEN")
        assert (second.outstanding_cents, second.settlement_status) == (150, "OPEN")
        assert allocation_service.get_payment(payment.id).to_dict()["reversed_by_payment_id"] == reversal.id

    def test_reverse_twice_rejected(self, make_invoice):
        invoice = make_invoice(100)
        payment = allocation_service.commit_payment(
            party_id=1,
            amount_cents=100,
            knockoffs=[{"document_id": invoice.id, "outstanding_before_cents": 100, "knockoff_cents": 100}],
        )
        allocation_service.reverse_payment(payment.id)

        with pytest.raises(DocumentStateError):
            allocation_service.reverse_payment(payment.id)

    def test_reversal_cannot_be_reversed(self, make_invoice):
        invoice = make_invoice(100)
        payment = allocation_service.commit_payment(
            party_id=1,
            amount_cents=100,
            knockoffs=[{"document_id": invoice.id, "outstanding_before_cents": 100, "knockoff_cents": 100}],
        )
        reversal = allocation_service.reverse_payment(payment.id)

        with pytest.raises(DocumentStateError):
            allocation_service.reverse_payment(reversal.id)

    def test_list_payments(self, db_session, make_invoice):
        invoice = make_invoice(100)
        payment = allocation_service.commit_payment(
            party_id=1,
            amount_cents=100,
            knockoffs=[{"document_id": invoice.id, "outstanding_before_cents": 100, "knockoff_cents": 100}],
        )
        allocation_service.reverse_payment(payment.id)

        assert [p.payment_type for p in allocation_service.list_payments(1)] == ["PAYMENT", "REVERSAL"]
        assert allocation_service.list_payments(2) == []
        assert outstanding_service.list_outstanding(1).all()[0].id == invoice.id

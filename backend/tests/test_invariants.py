from datetime import date

from sqlalchemy import update

from docsettle.models import Document, DocumentLine
from docsettle.services import allocation_service, invariant_service, transfer_service


def _workflow(make_document, make_invoice):
    order = make_document("SALES_ORDER", lines=((10, 100), (5, 40)))
    a, b = order.lines
    delivery = transfer_service.transfer(
        [{"document_id": order.id, "line_id": a.id, "qty": 7}, {"document_id": order.id, "line_id": b.id}],
        "DELIVERY_ORDER",
    )
    invoice = transfer_service.transfer([{"document_id": delivery.id}], "INVOICE", post=True)
    spare = transfer_service.transfer([{"document_id": order.id}], "DELIVERY_ORDER")
    transfer_service.void_document(spare.id)
    make_invoice(500, document_date=date(2025, 12, 1))

    proposals = allocation_service.auto_distribute(1, 800)
    payment = allocation_service.commit_payment(
        party_id=1, amount_cents=800, knockoffs=[p.as_knockoff() for p in proposals]
    )
    allocation_service.reverse_payment(payment.id)
    allocation_service.commit_payment(
        party_id=1,
        amount_cents=100,
        knockoffs=[p.as_knockoff() for p in allocation_service.auto_distribute(1, 100)],
    )
    return order, invoice


def test_clean_store_has_no_violations(db_session, make_document, make_invoice):
    _workflow(make_document, make_invoice)
    assert invariant_service.check_invariants() == []


def test_detects_transfer_conservation_break(db_session, make_document, make_invoice):
    order, _ = _workflow(make_document, make_invoice)
    line_id = order.lines[0].id
    db_session.execute(update(DocumentLine).where(DocumentLine.id == line_id).values(transferred_qty=3))
    db_session.commit()

    rules = {v["rule"] for v in invariant_service.check_invariants()}
    assert "transfer_conservation" in rules


def test_detects_settlement_conservation_break(db_session, make_document, make_invoice):
    _, invoice = _workflow(make_document, make_invoice)
    db_session.execute(update(Document).where(Document.id == invoice.id).values(outstanding_cents=1))
    db_session.commit()

    violations = invariant_service.check_invariants()
    assert [v["rule"] for v in violations] == ["settlement_conservation"]
    assert violations[0]["document_id"] == invoice.id


def test_detects_stale_cached_transfer_status(db_session, make_document, make_invoice):
    order, _ = _workflow(make_document, make_invoice)
    db_session.execute(update(Document).where(Document.id == order.id).values(transfer_status="NONE"))
    db_session.commit()

    rules = [v["rule"] for v in invariant_service.check_invariants()]
    assert rules == ["transfer_status"]


def test_cli_integrity_check(app, db_session, make_document, make_invoice):
    _workflow(make_document, make_invoice)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["integrity", "check"])

    assert result.exit_code == 0
    assert "PASS" in result.output


def test_cli_outstanding_list(app, db_session, make_invoice):
    invoice = make_invoice(4200)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["outstanding", "list", "--party-id", "1"])

    assert result.exit_code == 0
    assert invoice.document_no in result.output

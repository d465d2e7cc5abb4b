import pytest

from docsettle.errors import DocumentStateError, DocumentNotFoundError
from docsettle.models import AuditEvent, DocumentLine
from docsettle.services import allocation_service, transfer_service


def test_void_restores_source_quantities(db_session, make_document):
    order = make_document("SALES_ORDER", lines=((10, 100), (4, 50)))
    a, b = order.lines
    delivery = transfer_service.transfer(
        [
            {"document_id": order.id, "line_id": a.id, "qty": 6},
            {"document_id": order.id, "line_id": b.id, "qty": 4},
        ],
        "DELIVERY_ORDER",
    )
    db_session.refresh(order)
    assert order.status == "PARTIAL"

    voided = transfer_service.void_document(delivery.id, reason="Customer cancelled")

    assert voided.status == "VOID"
    assert voided.void_reason == "Customer cancelled"
    assert voided.voided_at is not None
    db_session.refresh(order)
    assert [l.transferred_qty for l in order.lines] == [0, 0]
    assert order.transfer_status == "NONE"
    assert order.status == "POSTED"


def test_void_is_idempotent(db_session, make_document):
    order = make_document("SALES_ORDER", lines=((10, 100),))
    delivery = transfer_service.transfer(
        [{"document_id": order.id, "line_id": order.lines[0].id, "qty": 4}],
        "DELIVERY_ORDER",
    )

    transfer_service.void_document(delivery.id)
    again = transfer_service.void_document(delivery.id)

    assert again.status == "VOID"
    assert db_session.query(DocumentLine).filter_by(id=order.lines[0].id).one().transferred_qty == 0
    voids = db_session.query(AuditEvent).filter_by(event_type="DOCUMENT_VOIDED", document_id=delivery.id).count()
    assert voids == 1


def test_void_blocked_while_downstream_is_live(db_session, make_document):
    order = make_document("SALES_ORDER", lines=((10, 100),))
    delivery = transfer_service.transfer([{"document_id": order.id}], "DELIVERY_ORDER")
    invoice = transfer_service.transfer([{"document_id": delivery.id}], "INVOICE")

    with pytest.raises(DocumentStateError) as excinfo:
        transfer_service.void_document(delivery.id)
    assert excinfo.value.details["downstream_document_nos"] == [invoice.document_no]

    db_session.refresh(delivery)
    assert delivery.status == "TRANSFERRED"

    transfer_service.void_document(invoice.id)
    voided = transfer_service.void_document(delivery.id)

    assert voided.status == "VOID"
    db_session.refresh(order)
    assert order.lines[0].transferred_qty == 0
    assert order.status == "POSTED"


def test_voided_quantity_can_be_transferred_again(db_session, make_document):
    order = make_document("SALES_ORDER", lines=((10, 100),))
    line_id = order.lines[0].id
    first = transfer_service.transfer([{"document_id": order.id, "line_id": line_id, "qty": 10}], "INVOICE")
    transfer_service.void_document(first.id)

    second = transfer_service.transfer([{"document_id": order.id, "line_id": line_id, "qty": 10}], "INVOICE")

    assert second.lines[0].ordered_qty == 10
    db_session.refresh(order)
    assert order.status == "TRANSFERRED"


def test_void_settlement_document_zeroes_outstanding(make_invoice):
    invoice = make_invoice(5000)

    voided = transfer_service.void_document(invoice.id)

    assert voided.settlement_status == "VOID"
    assert voided.outstanding_cents == 0


def test_void_blocked_while_knockoffs_applied(db_session, make_invoice):
    invoice = make_invoice(5000)
    payment = allocation_service.commit_payment(
        party_id=1,
        amount_cents=2000,
        knockoffs=[{"document_id": invoice.id, "outstanding_before_cents": 5000, "knockoff_cents": 2000}],
    )

    with pytest.raises(DocumentStateError):
        transfer_service.void_document(invoice.id)

    allocation_service.reverse_payment(payment.id, reason="Bounced")
    voided = transfer_service.void_document(invoice.id)
    assert voided.status == "VOID"


def test_void_unknown_document(db_session):
    with pytest.raises(DocumentNotFoundError):
        transfer_service.void_document(999)

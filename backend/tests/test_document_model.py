from types import SimpleNamespace

import pytest

from docsettle.errors import DocumentStateError, InvalidStateError, RequestValidationError
from docsettle.models import Document, DocumentLine
from docsettle.services import document_service, transfer_service


def _doc_with(*pairs):
    doc = Document(kind="SALES_ORDER", document_no="SO-X", party_id=1)
    for i, (ordered, transferred) in enumerate(pairs, start=1):
        doc.lines.append(DocumentLine(line_no=i, ordered_qty=ordered, transferred_qty=transferred))
    return doc


class TestDeriveTransferStatus:
    def test_empty_document_is_none(self):
        assert document_service.derive_transfer_status(_doc_with()) == "NONE"

    def test_untouched_lines_are_none(self):
        assert document_service.derive_transfer_status(_doc_with((10, 0), (4, 0))) == "NONE"

    def test_some_quantity_moved_is_partial(self):
        assert document_service.derive_transfer_status(_doc_with((10, 5), (4, 0))) == "PARTIAL"
        assert document_service.derive_transfer_status(_doc_with((10, 10), (4, 0))) == "PARTIAL"

    def test_everything_moved_is_full(self):
        assert document_service.derive_transfer_status(_doc_with((10, 10), (4, 4))) == "FULL"

    def test_zero_quantity_line_does_not_block_full(self):
        assert document_service.derive_transfer_status(_doc_with((10, 10), (0, 0))) == "FULL"


class TestLineBounds:
    def test_remaining_qty(self):
        line = SimpleNamespace(id=7, ordered_qty=10, transferred_qty=3)
        assert document_service.remaining_qty(line) == 7

    def test_negative_remaining_is_invariant_violation(self):
        line = SimpleNamespace(id=7, ordered_qty=3, transferred_qty=5)
        with pytest.raises(InvalidStateError):
            document_service.remaining_qty(line)

    def test_transferred_above_ordered_rejected(self):
        line = DocumentLine(line_no=1, ordered_qty=5, transferred_qty=0)
        with pytest.raises(InvalidStateError):
            line.transferred_qty = 6

    def test_negative_transferred_rejected(self):
        line = DocumentLine(line_no=1, ordered_qty=5, transferred_qty=2)
        with pytest.raises(InvalidStateError):
            line.transferred_qty = -1

    def test_ordered_below_transferred_rejected(self):
        line = DocumentLine(line_no=1, ordered_qty=5, transferred_qty=4)
        with pytest.raises(InvalidStateError):
            line.ordered_qty = 3


class TestCreateAndPost:
    def test_create_numbers_and_totals(self, make_document):
        doc = make_document("SALES_ORDER", lines=((10, 150), (2, 1000)), post=False)

        assert doc.document_no == "SO-000001"
        assert doc.status == "OPEN"
        assert doc.transfer_status == "NONE"
        assert doc.net_total_cents == 10 * 150 + 2 * 1000
        assert [l.line_no for l in doc.lines] == [1, 2]
        assert doc.outstanding_cents is None

    def test_numbers_are_per_kind(self, make_document):
        make_document("SALES_ORDER")
        second = make_document("SALES_ORDER")
        invoice = make_document("INVOICE")

        assert second.document_no == "SO-000002"
        assert invoice.document_no == "INV-000001"

    def test_post_settlement_document_becomes_outstanding(self, make_document):
        doc = make_document("INVOICE", lines=((2, 500),), post=False)
        posted = document_service.post_document(doc.id)

        assert posted.status == "POSTED"
        assert posted.posted_at is not None
        assert posted.outstanding_cents == 1000
        assert posted.settlement_status == "OPEN"

    def test_post_non_settlement_document_has_no_outstanding(self, make_document):
        doc = make_document("SALES_ORDER", post=False)
        posted = document_service.post_document(doc.id)

        assert posted.status == "POSTED"
        assert posted.outstanding_cents is None
        assert posted.settlement_status is None

    def test_post_twice_rejected(self, make_document):
        doc = make_document("INVOICE")
        with pytest.raises(DocumentStateError):
            document_service.post_document(doc.id)

    def test_unknown_kind_rejected(self, db_session):
        with pytest.raises(RequestValidationError):
            document_service.create_document(kind="RECEIPT", party_id=1, lines=[])
        assert db_session.query(Document).count() == 0

    def test_negative_quantity_rejected(self, db_session):
        with pytest.raises((RequestValidationError, InvalidStateError)):
            document_service.create_document(
                kind="SALES_ORDER",
                party_id=1,
                lines=[{"ordered_qty": -1, "unit_price_cents": 100}],
            )
        assert db_session.query(Document).count() == 0


class TestReadModels:
    def test_transferable_lines_lists_remaining(self, make_document):
        order = make_document("SALES_ORDER", lines=((10, 100), (3, 50)))
        first, second = order.lines
        transfer_service.transfer(
            [{"document_id": order.id, "line_id": second.id, "qty": 3}],
            "DELIVERY_ORDER",
        )

        view = document_service.get_transferable_lines(order.id)

        assert view["target_kinds"] == ["DELIVERY_ORDER", "INVOICE"]
        assert [l["id"] for l in view["lines"]] == [first.id]
        assert view["lines"][0]["remaining_qty"] == 10

    def test_lineage_walks_both_directions(self, make_document):
        order = make_document("SALES_ORDER")
        delivery = transfer_service.transfer([{"document_id": order.id}], "DELIVERY_ORDER")
        invoice = transfer_service.transfer([{"document_id": delivery.id}], "INVOICE")

        from_invoice = document_service.get_lineage(invoice.id)
        assert [(d["depth"], d["id"]) for d in from_invoice["upstream"]] == [(1, delivery.id), (2, order.id)]
        assert from_invoice["downstream"] == []

        from_order = document_service.get_lineage(order.id)
        assert [(d["depth"], d["id"]) for d in from_order["downstream"]] == [(1, delivery.id), (2, invoice.id)]

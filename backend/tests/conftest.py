"""
Pytest fixtures for docsettle backend tests.

Provides the application on an in-memory database, a per-test clean session,
a test client, and small document factories.
"""

from datetime import date

import pytest

from docsettle import create_app
from docsettle.config import TestConfig
from docsettle.extensions import db
from docsettle.services import document_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_document(db_session):
    """
    Factory for root documents.

    lines are (ordered_qty, unit_price_cents) tuples.
    """
    def _make(kind, *, party_id=1, lines=((10, 100),), post=True, document_date=None, due_date=None, currency=None):
        return document_service.create_document(
            kind=kind,
            party_id=party_id,
            document_date=document_date or date(2026, 1, 1),
            due_date=due_date,
            currency=currency,
            lines=[
                {"product_id": i, "description": f"Item {i}", "ordered_qty": qty, "unit_price_cents": price}
                for i, (qty, price) in enumerate(lines, start=1)
            ],
            post=post,
        )
    return _make


@pytest.fixture(scope='function')
def make_invoice(make_document):
    """Posted single-line invoice for the given amount."""
    def _make(amount_cents, *, party_id=1, document_date=None, due_date=None, kind="INVOICE"):
        return make_document(
            kind,
            party_id=party_id,
            lines=((1, amount_cents),),
            document_date=document_date,
            due_date=due_date,
        )
    return _make

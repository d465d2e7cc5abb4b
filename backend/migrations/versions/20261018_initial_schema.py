"""Initial document transfer and settlement schema

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "documents",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("document_no", sa.String(64), nullable=False),
        sa.Column("document_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("party_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="OPEN"),
        sa.Column("transfer_status", sa.String(16), nullable=False, server_default="NONE"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("net_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("outstanding_cents", sa.Integer(), nullable=True),
        sa.Column("settlement_status", sa.String(16), nullable=True),
        sa.Column("reference", sa.String(128), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("voided_by_user_id", sa.Integer(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("kind", "document_no", name="uq_documents_kind_docno"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("documents", schema=None) as batch_op:
        batch_op.create_index("ix_documents_kind", ["kind"], unique=False)
        batch_op.create_index("ix_documents_document_no", ["document_no"], unique=False)
        batch_op.create_index("ix_documents_document_date", ["document_date"], unique=False)
        batch_op.create_index("ix_documents_party_id", ["party_id"], unique=False)
        batch_op.create_index("ix_documents_status", ["status"], unique=False)
        batch_op.create_index("ix_documents_settlement_status", ["settlement_status"], unique=False)
        batch_op.create_index("ix_documents_party_kind_date", ["party_id", "kind", "document_date"], unique=False)
        batch_op.create_index("ix_documents_settlement", ["party_id", "settlement_status"], unique=False)

    op.create_table(
        "document_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("ordered_qty", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("line_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("transferred_qty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("source_line_id", sa.Integer(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("ordered_qty >= 0", name="ck_document_lines_ordered_nonneg"),
        sa.CheckConstraint(
            "transferred_qty >= 0 AND transferred_qty <= ordered_qty",
            name="ck_document_lines_transferred_bounds",
        ),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["source_line_id"], ["document_lines.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_id", "line_no", name="uq_document_lines_doc_lineno"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("document_lines", schema=None) as batch_op:
        batch_op.create_index("ix_document_lines_document_id", ["document_id"], unique=False)
        batch_op.create_index("ix_document_lines_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_document_lines_source_line_id", ["source_line_id"], unique=False)

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_no", sa.String(64), nullable=False),
        sa.Column("payment_type", sa.String(16), nullable=False, server_default="PAYMENT"),
        sa.Column("domain", sa.String(16), nullable=False),
        sa.Column("party_id", sa.Integer(), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("method", sa.String(32), nullable=False, server_default="CASH"),
        sa.Column("reference", sa.String(128), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("reverses_payment_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["reverses_payment_id"], ["payments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_type", "payment_no", name="uq_payments_type_no"),
        sa.UniqueConstraint("reverses_payment_id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("payments", schema=None) as batch_op:
        batch_op.create_index("ix_payments_payment_no", ["payment_no"], unique=False)
        batch_op.create_index("ix_payments_payment_type", ["payment_type"], unique=False)
        batch_op.create_index("ix_payments_party_id", ["party_id"], unique=False)
        batch_op.create_index("ix_payments_party_domain_date", ["party_id", "domain", "payment_date"], unique=False)

    op.create_table(
        "knockoffs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_id", sa.Integer(), nullable=False),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("outstanding_before_cents", sa.Integer(), nullable=False),
        sa.Column("knockoff_cents", sa.Integer(), nullable=False),
        sa.Column("outstanding_after_cents", sa.Integer(), nullable=False),
        sa.CheckConstraint("knockoff_cents >= 0", name="ck_knockoffs_nonneg"),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"]),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_id", "document_id", name="uq_knockoffs_payment_document"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("knockoffs", schema=None) as batch_op:
        batch_op.create_index("ix_knockoffs_payment_id", ["payment_id"], unique=False)
        batch_op.create_index("ix_knockoffs_document_id", ["document_id"], unique=False)

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("event_category", sa.String(32), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("document_id", sa.Integer(), nullable=True),
        sa.Column("payment_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("audit_events", schema=None) as batch_op:
        batch_op.create_index("ix_audit_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_audit_events_event_category", ["event_category"], unique=False)
        batch_op.create_index("ix_audit_events_actor_user_id", ["actor_user_id"], unique=False)
        batch_op.create_index("ix_audit_events_document_id", ["document_id"], unique=False)
        batch_op.create_index("ix_audit_events_payment_id", ["payment_id"], unique=False)
        batch_op.create_index("ix_audit_events_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_audit_events_entity", ["entity_type", "entity_id"], unique=False)

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        sqlite_autoincrement=True,
    )


def downgrade():
    op.drop_table("document_sequences")
    with op.batch_alter_table("audit_events", schema=None) as batch_op:
        batch_op.drop_index("ix_audit_events_entity")
        batch_op.drop_index("ix_audit_events_occurred_at")
        batch_op.drop_index("ix_audit_events_payment_id")
        batch_op.drop_index("ix_audit_events_document_id")
        batch_op.drop_index("ix_audit_events_actor_user_id")
        batch_op.drop_index("ix_audit_events_event_category")
        batch_op.drop_index("ix_audit_events_event_type")
    op.drop_table("audit_events")
    op.drop_table("knockoffs")
    op.drop_table("payments")
    op.drop_table("document_lines")
    op.drop_table("documents")

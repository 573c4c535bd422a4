"""Create claim, invoice, payment, remittance posting and audit tables.

Revision ID: f1a2b3c4d5e6
Revises:
Create Date: 2026-10-19 09:00:00.000000

The unique constraints carry the ERA idempotency guarantees:
  - remittance_postings (practice_id, trace_number): one posting per check/EFT
  - payments (practice_id, reference_number): one payment per ERA CLP loop
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "f1a2b3c4d5e6"
down_revision = None
branch_labels = None
depends_on = None

UUID = postgresql.UUID(as_uuid=True)
GEN_UUID = sa.text("gen_random_uuid()")


def upgrade() -> None:
    op.create_table(
        "claims",
        sa.Column("id", UUID, primary_key=True, server_default=GEN_UUID),
        sa.Column("practice_id", UUID, nullable=False),
        sa.Column("patient_id", UUID, nullable=False),
        sa.Column("claim_number", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="submitted"),
        sa.Column("total_charge_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("allowed_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("paid_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("patient_responsibility", sa.Numeric(10, 2), nullable=True),
        sa.Column("check_number", sa.String(50), nullable=True),
        sa.Column("payment_date", sa.Date, nullable=True),
        sa.Column("era_id", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("practice_id", "claim_number", name="uq_claims_practice_claim_number"),
    )
    op.create_index("ix_claims_practice_patient", "claims", ["practice_id", "patient_id"])

    op.create_table(
        "invoices",
        sa.Column("id", UUID, primary_key=True, server_default=GEN_UUID),
        sa.Column("practice_id", UUID, nullable=False),
        sa.Column("patient_id", UUID, nullable=False),
        sa.Column("invoice_number", sa.String(50), nullable=True),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("amount_paid", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("amount_due", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_invoices_practice_patient_status",
        "invoices",
        ["practice_id", "patient_id", "status"],
    )

    op.create_table(
        "payments",
        sa.Column("id", UUID, primary_key=True, server_default=GEN_UUID),
        sa.Column("practice_id", UUID, nullable=False),
        sa.Column(
            "invoice_id", UUID,
            sa.ForeignKey("invoices.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("method", sa.String(20), nullable=False),
        sa.Column("reference_number", sa.String(120), nullable=True),
        sa.Column("payment_date", sa.Date, nullable=True),
        sa.Column("posted_by", UUID, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("practice_id", "reference_number", name="uq_payments_practice_reference"),
    )
    op.create_index("ix_payments_invoice_id", "payments", ["invoice_id"])

    op.create_table(
        "remittance_postings",
        sa.Column("id", UUID, primary_key=True, server_default=GEN_UUID),
        sa.Column("practice_id", UUID, nullable=False),
        sa.Column("trace_number", sa.String(100), nullable=False),
        sa.Column("transaction_id", sa.String(100), nullable=False),
        sa.Column("payer_name", sa.String(255), nullable=True),
        sa.Column("total_payment_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("processed_by", UUID, nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("practice_id", "trace_number", name="uq_remittance_postings_practice_trace"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", UUID, primary_key=True, server_default=GEN_UUID),
        sa.Column("practice_id", UUID, nullable=True),
        sa.Column("user_id", UUID, nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=True),
        sa.Column("entity_id", UUID, nullable=True),
        sa.Column("old_value", postgresql.JSON, nullable=True),
        sa.Column("new_value", postgresql.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_audit_logs_practice_action_created",
        "audit_logs",
        ["practice_id", "action", sa.text("created_at DESC")],
    )


def downgrade() -> None:
    op.drop_index("ix_audit_logs_practice_action_created", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("remittance_postings")
    op.drop_index("ix_payments_invoice_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_invoices_practice_patient_status", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_claims_practice_patient", table_name="claims")
    op.drop_table("claims")

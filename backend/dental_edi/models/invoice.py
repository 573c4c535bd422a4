from sqlalchemy import Column, ForeignKey, Index, String, Date, DateTime, Numeric, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from dental_edi.database import Base

OPEN_INVOICE_STATUSES = ("sent", "partial", "overdue")


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        Index("ix_invoices_practice_patient_status", "practice_id", "patient_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()"))
    practice_id = Column(UUID(as_uuid=True), nullable=False)
    patient_id = Column(UUID(as_uuid=True), nullable=False)
    invoice_number = Column(String(50), nullable=True)
    total_amount = Column(Numeric(10, 2), nullable=False)
    amount_paid = Column(Numeric(10, 2), nullable=False, server_default="0")
    amount_due = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, server_default="draft")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    payments = relationship("Payment", back_populates="invoice", lazy="select")

    def __repr__(self):
        return f"<Invoice(id={self.id}, status='{self.status}', amount_due={self.amount_due})>"


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        # One posting per (practice, reference): ERA postings use
        # ERA-{trace}-{claim_number}-{clp ordinal}, so a replayed remittance cannot double-post.
        UniqueConstraint("practice_id", "reference_number", name="uq_payments_practice_reference"),
        Index("ix_payments_invoice_id", "invoice_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()"))
    practice_id = Column(UUID(as_uuid=True), nullable=False)
    invoice_id = Column(UUID(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    method = Column(String(20), nullable=False)
    reference_number = Column(String(120), nullable=True)
    payment_date = Column(Date, nullable=True)
    posted_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    invoice = relationship("Invoice", back_populates="payments", lazy="select")

    def __repr__(self):
        return f"<Payment(id={self.id}, amount={self.amount}, reference='{self.reference_number}')>"

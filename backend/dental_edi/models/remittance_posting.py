from sqlalchemy import Column, String, DateTime, Numeric, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from dental_edi.database import Base


class RemittancePosting(Base):
    """Idempotency ledger: one row per ERA check/EFT trace number per practice.

    The row is inserted before any claim is touched.  The unique constraint
    makes the duplicate check and the reservation a single atomic statement.
    """

    __tablename__ = "remittance_postings"
    __table_args__ = (
        UniqueConstraint("practice_id", "trace_number", name="uq_remittance_postings_practice_trace"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()"))
    practice_id = Column(UUID(as_uuid=True), nullable=False)
    trace_number = Column(String(100), nullable=False)
    transaction_id = Column(String(100), nullable=False)
    payer_name = Column(String(255), nullable=True)
    total_payment_amount = Column(Numeric(12, 2), nullable=True)
    processed_by = Column(UUID(as_uuid=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<RemittancePosting(trace='{self.trace_number}', transaction='{self.transaction_id}')>"

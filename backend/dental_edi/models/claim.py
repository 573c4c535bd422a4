from sqlalchemy import Column, Index, String, Date, DateTime, Numeric, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from dental_edi.database import Base


class Claim(Base):
    """Dental claim as seen by the remittance engine.

    The claim lifecycle (creation, 837D submission) belongs to the billing
    workflow; ERA processing only writes the adjudication columns.
    """

    __tablename__ = "claims"
    __table_args__ = (
        UniqueConstraint("practice_id", "claim_number", name="uq_claims_practice_claim_number"),
        Index("ix_claims_practice_patient", "practice_id", "patient_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()"))
    practice_id = Column(UUID(as_uuid=True), nullable=False)
    patient_id = Column(UUID(as_uuid=True), nullable=False)
    claim_number = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, server_default="submitted")
    total_charge_amount = Column(Numeric(10, 2), nullable=True)
    allowed_amount = Column(Numeric(10, 2), nullable=True)
    paid_amount = Column(Numeric(10, 2), nullable=True)
    patient_responsibility = Column(Numeric(10, 2), nullable=True)
    check_number = Column(String(50), nullable=True)
    payment_date = Column(Date, nullable=True)
    era_id = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Claim(id={self.id}, claim_number='{self.claim_number}', status='{self.status}')>"

"""
Shared fixtures: an in-memory RemittanceRepository so the ERA processor can
be exercised without a database.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import pytest

from dental_edi.insurance.repository import (
    AuditEntry,
    ClaimRecord,
    ClaimRemittanceUpdate,
    InvoiceRecord,
    RemittanceRepository,
)
from dental_edi.models.invoice import OPEN_INVOICE_STATUSES


@dataclass
class StoredPayment:
    practice_id: UUID
    invoice_id: UUID
    amount: Decimal
    reference_number: str
    payment_date: date
    posted_by: Optional[UUID]


@dataclass
class StoredClaim:
    record: ClaimRecord
    updates: list = field(default_factory=list)


class FakeRemittanceRepository(RemittanceRepository):
    """Dict-backed repository mirroring the unique constraints of the real tables."""

    def __init__(self):
        self.claims: dict[UUID, StoredClaim] = {}
        self.invoices: dict[UUID, InvoiceRecord] = {}
        self.payments: list[StoredPayment] = []
        self.reservations: dict[tuple[UUID, str], dict] = {}
        self.audit: list[AuditEntry] = []
        self.audit_practices: list[UUID] = []

    # --- seeding helpers ---

    def add_claim(self, practice_id: UUID, claim_number: str, patient_id: Optional[UUID] = None,
                  total_charge: Decimal = Decimal("500.00")) -> ClaimRecord:
        record = ClaimRecord(
            id=uuid4(),
            practice_id=practice_id,
            patient_id=patient_id or uuid4(),
            claim_number=claim_number,
            total_charge_amount=total_charge,
        )
        self.claims[record.id] = StoredClaim(record=record)
        return record

    def add_invoice(self, practice_id: UUID, patient_id: UUID, total: Decimal,
                    status: str = "sent", created_at: Optional[datetime] = None) -> InvoiceRecord:
        invoice = InvoiceRecord(
            id=uuid4(),
            practice_id=practice_id,
            patient_id=patient_id,
            total_amount=total,
            amount_paid=Decimal("0.00"),
            amount_due=total,
            status=status,
            created_at=created_at or datetime.now(timezone.utc),
        )
        self.invoices[invoice.id] = invoice
        return invoice

    # --- RemittanceRepository ---

    async def find_claim_by_number(self, practice_id, claim_number):
        for stored in self.claims.values():
            if stored.record.practice_id == practice_id and stored.record.claim_number == claim_number:
                return stored.record
        return None

    async def find_latest_open_invoice(self, practice_id, patient_id):
        candidates = [
            inv for inv in self.invoices.values()
            if inv.practice_id == practice_id
            and inv.patient_id == patient_id
            and inv.status in OPEN_INVOICE_STATUSES
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda inv: inv.created_at)

    async def update_claim_from_remittance(self, claim_id, update: ClaimRemittanceUpdate):
        stored = self.claims[claim_id]
        stored.updates.append(update)
        stored.record.status = update.status

    async def reserve_remittance(self, practice_id, trace_number, *, transaction_id, payer_name,
                                 total_payment_amount, processed_by=None):
        key = (practice_id, trace_number)
        if key in self.reservations:
            return False
        self.reservations[key] = {
            "transaction_id": transaction_id,
            "payer_name": payer_name,
            "total_payment_amount": total_payment_amount,
            "processed_by": processed_by,
        }
        return True

    async def create_payment(self, practice_id, invoice_id, *, amount, reference_number,
                             payment_date, posted_by=None):
        if any(p.practice_id == practice_id and p.reference_number == reference_number for p in self.payments):
            raise ValueError(f"duplicate payment reference {reference_number}")
        self.payments.append(StoredPayment(
            practice_id=practice_id,
            invoice_id=invoice_id,
            amount=amount,
            reference_number=reference_number,
            payment_date=payment_date,
            posted_by=posted_by,
        ))

    async def sum_invoice_payments(self, invoice_id):
        return sum((p.amount for p in self.payments if p.invoice_id == invoice_id), Decimal("0.00"))

    async def update_invoice_balance(self, invoice_id, *, amount_paid, amount_due, status):
        invoice = self.invoices[invoice_id]
        invoice.amount_paid = amount_paid
        invoice.amount_due = amount_due
        invoice.status = status

    async def append_audit_entry(self, practice_id, user_id, *, action, entity_type, metadata):
        self.audit.append(AuditEntry(
            id=uuid4(),
            action=action,
            created_at=datetime.now(timezone.utc) + timedelta(microseconds=len(self.audit)),
            user_id=user_id,
            entity_type=entity_type,
            metadata=metadata,
        ))
        self.audit_practices.append(practice_id)

    async def list_audit_entries(self, practice_id, *, action, limit, offset):
        matching = [
            entry for entry, owner in zip(self.audit, self.audit_practices)
            if owner == practice_id and entry.action == action
        ]
        matching.sort(key=lambda entry: entry.created_at, reverse=True)
        return matching[offset:offset + limit], len(matching)


@pytest.fixture
def fake_repository():
    return FakeRemittanceRepository()


@pytest.fixture
def practice_id():
    return uuid4()


@pytest.fixture
def user_id():
    return uuid4()

"""
Persistence boundary for remittance posting.

Claims, invoices and payments are owned by the billing side of the platform.
The remittance processor only reads and mutates them through this interface.

Adding a new storage backend requires only implementing
``RemittanceRepository``.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import AsyncIterator, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dental_edi.models.claim import Claim
from dental_edi.models.invoice import OPEN_INVOICE_STATUSES, Invoice, Payment
from dental_edi.models.remittance_posting import RemittancePosting
from dental_edi.services.audit_service import list_audit_entries, log_audit

logger = logging.getLogger(__name__)

INSURANCE_PAYMENT_METHOD = "insurance"


@dataclass
class ClaimRecord:
    id: UUID
    practice_id: UUID
    patient_id: UUID
    claim_number: str
    status: str = "submitted"
    total_charge_amount: Optional[Decimal] = None


@dataclass
class InvoiceRecord:
    id: UUID
    practice_id: UUID
    patient_id: UUID
    total_amount: Decimal
    amount_paid: Decimal
    amount_due: Decimal
    status: str
    created_at: Optional[datetime] = None


@dataclass
class ClaimRemittanceUpdate:
    """Adjudication values written back to a claim from one 835 CLP loop."""

    status: str
    allowed_amount: Decimal
    paid_amount: Decimal
    patient_responsibility: Decimal
    check_number: str
    payment_date: date
    era_id: str


@dataclass
class AuditEntry:
    id: UUID
    action: str
    created_at: Optional[datetime]
    user_id: Optional[UUID] = None
    entity_type: Optional[str] = None
    metadata: dict = field(default_factory=dict)


class RemittanceRepository(ABC):
    """Storage operations the remittance processor depends on.

    Implementations must make ``reserve_remittance`` atomic: two concurrent
    calls for the same (practice, trace number) may not both return True.
    """

    @abstractmethod
    async def find_claim_by_number(self, practice_id: UUID, claim_number: str) -> Optional[ClaimRecord]:
        """Look up a claim by the number we sent as the patient control number."""

    @abstractmethod
    async def find_latest_open_invoice(self, practice_id: UUID, patient_id: UUID) -> Optional[InvoiceRecord]:
        """Most recently created invoice in sent/partial/overdue status."""

    @abstractmethod
    async def update_claim_from_remittance(self, claim_id: UUID, update: ClaimRemittanceUpdate) -> None:
        """Write adjudication results onto the claim."""

    @abstractmethod
    async def reserve_remittance(
        self,
        practice_id: UUID,
        trace_number: str,
        *,
        transaction_id: str,
        payer_name: str,
        total_payment_amount: Decimal,
        processed_by: Optional[UUID] = None,
    ) -> bool:
        """Claim the trace number for processing.

        Returns False when the trace number was already reserved.
        """

    @abstractmethod
    async def create_payment(
        self,
        practice_id: UUID,
        invoice_id: UUID,
        *,
        amount: Decimal,
        reference_number: str,
        payment_date: date,
        posted_by: Optional[UUID] = None,
    ) -> None:
        """Record an insurance payment against an invoice."""

    @abstractmethod
    async def sum_invoice_payments(self, invoice_id: UUID) -> Decimal:
        """Total of every payment ever posted to the invoice."""

    @abstractmethod
    async def update_invoice_balance(
        self, invoice_id: UUID, *, amount_paid: Decimal, amount_due: Decimal, status: str,
    ) -> None:
        """Persist recomputed invoice totals."""

    @abstractmethod
    async def append_audit_entry(
        self,
        practice_id: UUID,
        user_id: Optional[UUID],
        *,
        action: str,
        entity_type: str,
        metadata: dict,
    ) -> None:
        """Append to the audit log.  Never updates or deletes."""

    @abstractmethod
    async def list_audit_entries(
        self, practice_id: UUID, *, action: str, limit: int, offset: int,
    ) -> tuple[list[AuditEntry], int]:
        """One page of audit entries, newest first, plus the total count."""

    @asynccontextmanager
    async def claim_scope(self) -> AsyncIterator[None]:
        """Unit of work for one CLP loop.

        A failure inside the scope must leave storage usable for the next
        claim and must undo only that claim's writes.  Stores without
        partial rollback may keep the default, which does nothing.
        """
        yield


class SqlAlchemyRemittanceRepository(RemittanceRepository):
    """``RemittanceRepository`` over an ``AsyncSession``.

    Only flushes; the caller owns the transaction and commits.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def claim_scope(self) -> AsyncIterator[None]:
        # Savepoint per claim: a failed flush rolls back to here and the session stays usable
        async with self.db.begin_nested():
            yield

    async def find_claim_by_number(self, practice_id: UUID, claim_number: str) -> Optional[ClaimRecord]:
        stmt = select(Claim).where(
            Claim.practice_id == practice_id,
            Claim.claim_number == claim_number,
        ).limit(1)
        result = await self.db.execute(stmt)
        claim = result.scalar_one_or_none()
        if claim is None:
            return None
        return ClaimRecord(
            id=claim.id,
            practice_id=claim.practice_id,
            patient_id=claim.patient_id,
            claim_number=claim.claim_number,
            status=claim.status,
            total_charge_amount=claim.total_charge_amount,
        )

    async def find_latest_open_invoice(self, practice_id: UUID, patient_id: UUID) -> Optional[InvoiceRecord]:
        stmt = (
            select(Invoice)
            .where(
                Invoice.practice_id == practice_id,
                Invoice.patient_id == patient_id,
                Invoice.status.in_(OPEN_INVOICE_STATUSES),
            )
            .order_by(Invoice.created_at.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        invoice = result.scalar_one_or_none()
        if invoice is None:
            return None
        return InvoiceRecord(
            id=invoice.id,
            practice_id=invoice.practice_id,
            patient_id=invoice.patient_id,
            total_amount=Decimal(invoice.total_amount),
            amount_paid=Decimal(invoice.amount_paid or 0),
            amount_due=Decimal(invoice.amount_due),
            status=invoice.status,
            created_at=invoice.created_at,
        )

    async def update_claim_from_remittance(self, claim_id: UUID, update: ClaimRemittanceUpdate) -> None:
        claim = await self.db.get(Claim, claim_id)
        if claim is None:
            raise LookupError(f"Claim {claim_id} disappeared during remittance posting")
        claim.status = update.status
        claim.allowed_amount = update.allowed_amount
        claim.paid_amount = update.paid_amount
        claim.patient_responsibility = update.patient_responsibility
        claim.check_number = update.check_number
        claim.payment_date = update.payment_date
        claim.era_id = update.era_id
        await self.db.flush()

    async def reserve_remittance(
        self,
        practice_id: UUID,
        trace_number: str,
        *,
        transaction_id: str,
        payer_name: str,
        total_payment_amount: Decimal,
        processed_by: Optional[UUID] = None,
    ) -> bool:
        posting = RemittancePosting(
            practice_id=practice_id,
            trace_number=trace_number,
            transaction_id=transaction_id,
            payer_name=payer_name,
            total_payment_amount=total_payment_amount,
            processed_by=processed_by,
        )
        # Savepoint so a duplicate only rolls back the reservation itself
        try:
            async with self.db.begin_nested():
                self.db.add(posting)
                await self.db.flush()
        except IntegrityError:
            logger.info(
                "Remittance trace %s already reserved for practice %s",
                trace_number, practice_id,
            )
            return False
        return True

    async def create_payment(
        self,
        practice_id: UUID,
        invoice_id: UUID,
        *,
        amount: Decimal,
        reference_number: str,
        payment_date: date,
        posted_by: Optional[UUID] = None,
    ) -> None:
        payment = Payment(
            practice_id=practice_id,
            invoice_id=invoice_id,
            amount=amount,
            method=INSURANCE_PAYMENT_METHOD,
            reference_number=reference_number,
            payment_date=payment_date,
            posted_by=posted_by,
        )
        self.db.add(payment)
        await self.db.flush()

    async def sum_invoice_payments(self, invoice_id: UUID) -> Decimal:
        stmt = select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.invoice_id == invoice_id)
        result = await self.db.execute(stmt)
        return Decimal(result.scalar() or 0)

    async def update_invoice_balance(
        self, invoice_id: UUID, *, amount_paid: Decimal, amount_due: Decimal, status: str,
    ) -> None:
        invoice = await self.db.get(Invoice, invoice_id)
        if invoice is None:
            raise LookupError(f"Invoice {invoice_id} disappeared during remittance posting")
        invoice.amount_paid = amount_paid
        invoice.amount_due = amount_due
        invoice.status = status
        await self.db.flush()

    async def append_audit_entry(
        self,
        practice_id: UUID,
        user_id: Optional[UUID],
        *,
        action: str,
        entity_type: str,
        metadata: dict,
    ) -> None:
        await log_audit(
            self.db,
            action=action,
            entity_type=entity_type,
            practice_id=practice_id,
            user_id=user_id,
            new_value=metadata,
        )

    async def list_audit_entries(
        self, practice_id: UUID, *, action: str, limit: int, offset: int,
    ) -> tuple[list[AuditEntry], int]:
        rows, total = await list_audit_entries(
            self.db, practice_id=practice_id, action=action, limit=limit, offset=offset,
        )
        entries = [
            AuditEntry(
                id=row.id,
                action=row.action,
                created_at=row.created_at,
                user_id=row.user_id,
                entity_type=row.entity_type,
                metadata=row.new_value or {},
            )
            for row in rows
        ]
        return entries, total

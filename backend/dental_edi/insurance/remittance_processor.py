"""
835 ERA (Electronic Remittance Advice) processor.

Provides:
  - poll_for_new: list inbound 835s from Stedi since a watermark
  - process: fetch one ERA by transaction id and post it
  - process_transaction: reconcile an ERA against claims and invoices
  - poll_and_process: both of the above for every new ERA
  - get_history: ERA_PROCESSED audit entries for a practice

Posting is idempotent per (practice, check/EFT trace number).  The trace is
reserved in storage before any claim is touched, and processing for one
practice is serialised in-process by an ``asyncio.Lock``.  Claims inside an
ERA are handled strictly in order; a failure on one claim is recorded on
the result and does not stop the others.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from dental_edi.config import get_settings
from dental_edi.insurance.code_tables import describe_claim_status, map_era_status_to_claim_status
from dental_edi.insurance.repository import (
    ClaimRemittanceUpdate,
    RemittanceRepository,
)
from dental_edi.insurance.response_parsers import parse_remittance
from dental_edi.insurance.stedi_client import StediClient, StediError, StediMode
from dental_edi.schemas.remittance import (
    ClaimProcessingDetail,
    PollAndProcessResult,
    ProcessingResult,
    RemittanceAdjustment,
    RemittanceClaim,
    RemittanceHistoryPage,
    RemittanceServiceLine,
    RemittanceTransaction,
)

logger = logging.getLogger(__name__)

ERA_PROCESSED_ACTION = "ERA_PROCESSED"
ERA_ENTITY_TYPE = "ERA"


def _is_inbound_835(entry: dict) -> bool:
    if entry.get("direction") != "INBOUND":
        return False
    x12 = entry.get("x12") or {}
    transaction_set = (
        x12.get("transactionSetIdentifier")
        or ((x12.get("metadata") or {}).get("transaction") or {}).get("transactionSetIdentifier")
    )
    return str(transaction_set) == "835"


def build_mock_remittance() -> RemittanceTransaction:
    """A single-claim ERA used when Stedi is in sandbox mode."""
    now = datetime.now(timezone.utc)
    millis = int(time.time() * 1000)
    return RemittanceTransaction(
        transaction_id=f"MOCK-ERA-{millis}",
        received_date=now,
        payer_name="Mock Insurance Company",
        payer_id="MOCK123",
        check_or_eft_trace_number=f"CHK{millis}",
        payment_method_code="CHK",
        payment_date=now.date(),
        total_payment_amount=Decimal("450.00"),
        is_mock=True,
        claims=[
            RemittanceClaim(
                patient_control_number="CLM-MOCK-001",
                claim_status_code="1",
                claim_status_code_value="Processed as Primary",
                total_claim_charge_amount=Decimal("500.00"),
                claim_payment_amount=Decimal("450.00"),
                patient_responsibility_amount=Decimal("50.00"),
                adjustments=[
                    RemittanceAdjustment(
                        group_code="CO",
                        group_code_value="Contractual Obligations",
                        reason_code="45",
                        reason_code_value="Charge exceeds fee schedule/maximum allowable",
                        amount=Decimal("50.00"),
                    ),
                ],
                service_lines=[
                    RemittanceServiceLine(
                        line_item_control_number="SL-001",
                        procedure_code="D1110",
                        charge_amount=Decimal("125.00"),
                        paid_amount=Decimal("100.00"),
                    ),
                    RemittanceServiceLine(
                        line_item_control_number="SL-002",
                        procedure_code="D0120",
                        charge_amount=Decimal("75.00"),
                        paid_amount=Decimal("75.00"),
                    ),
                ],
            ),
        ],
    )


def _new_era_id() -> str:
    return f"ERA-{uuid4().hex[:12].upper()}"


def payment_reference(trace_number: str, claim_number: str, ordinal: int) -> str:
    """Payment reference for one CLP loop.

    The ordinal is the loop's position in the ERA, so a payer that splits a
    claim into several CLP loops gets one payment per loop.
    """
    return f"ERA-{trace_number}-{claim_number}-{ordinal}"


def _claim_status_description(era_claim: RemittanceClaim) -> str:
    if era_claim.claim_status_code_value:
        return era_claim.claim_status_code_value
    described = describe_claim_status(era_claim.claim_status_code)
    return described if described != "Unknown" else "Denied/Adjusted"


class RemittanceProcessor:
    """Posts 835 remittances for every practice served by this process.

    Per-practice locks live on the instance unless a shared ``locks`` mapping
    is passed in; processors built per request must share one mapping.
    """

    def __init__(
        self,
        repository: RemittanceRepository,
        stedi_client: Optional[StediClient] = None,
        mode: StediMode = StediMode.SANDBOX,
        lookback_hours: Optional[int] = None,
        locks: Optional[dict[UUID, asyncio.Lock]] = None,
    ):
        if mode is StediMode.LIVE and stedi_client is None:
            raise ValueError("A StediClient is required in live mode")
        self.repository = repository
        self.stedi_client = stedi_client
        self.mode = mode
        self.lookback_hours = (
            lookback_hours if lookback_hours is not None else get_settings().ERA_POLL_LOOKBACK_HOURS
        )
        self._locks = locks if locks is not None else {}

    def _practice_lock(self, practice_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(practice_id)
        if lock is None:
            lock = self._locks[practice_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def fetch(self, transaction_id: str) -> RemittanceTransaction:
        """Fetch and parse one 835.  Raises ``StediError`` on failure."""
        if self.mode is StediMode.SANDBOX:
            logger.info("Stedi sandbox mode: returning mock ERA for %s", transaction_id)
            return build_mock_remittance()
        data = await self.stedi_client.fetch_835(transaction_id)
        return parse_remittance(transaction_id, data)

    async def poll_for_new(
        self, practice_id: UUID, since: Optional[datetime] = None,
    ) -> list[RemittanceTransaction]:
        """Inbound 835s received since ``since`` (default: the lookback window).

        Never raises: a failed listing returns [] and a failed fetch skips
        that transaction.
        """
        if since is None:
            since = datetime.now(timezone.utc) - timedelta(hours=self.lookback_hours)
        logger.info("Polling for new ERAs for practice %s since %s", practice_id, since.isoformat())

        if self.mode is StediMode.SANDBOX:
            logger.info("Stedi sandbox mode: returning mock ERA list")
            return [build_mock_remittance()]

        try:
            entries = await self.stedi_client.poll_transactions(since)
        except StediError as exc:
            logger.error("Error polling for ERAs for practice %s: %s", practice_id, exc)
            return []

        eras = []
        for entry in entries:
            if not _is_inbound_835(entry):
                continue
            transaction_id = entry.get("transactionId") or entry.get("id")
            if not transaction_id:
                continue
            try:
                eras.append(await self.fetch(transaction_id))
            except StediError as exc:
                logger.error("Failed to fetch ERA %s: %s", transaction_id, exc)

        logger.info("Found %d new ERA(s) for practice %s", len(eras), practice_id)
        return eras

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    async def process(
        self, practice_id: UUID, user_id: Optional[UUID], transaction_id: str,
    ) -> ProcessingResult:
        """Fetch an ERA by Stedi transaction id and post it."""
        logger.info("Processing ERA transaction %s for practice %s", transaction_id, practice_id)
        try:
            era = await self.fetch(transaction_id)
        except StediError as exc:
            logger.error("Failed to fetch ERA %s: %s", transaction_id, exc)
            return ProcessingResult(
                era_id=_new_era_id(),
                transaction_id=transaction_id,
                processed_at=datetime.now(timezone.utc),
                errors=[f"Failed to fetch ERA {transaction_id}: {exc}"],
            )
        return await self.process_transaction(practice_id, user_id, era)

    async def process_transaction(
        self, practice_id: UUID, user_id: Optional[UUID], era: RemittanceTransaction,
    ) -> ProcessingResult:
        """Reconcile one ERA and post its payments, at most once per trace number."""
        async with self._practice_lock(practice_id):
            return await self._process_locked(practice_id, user_id, era)

    async def _process_locked(
        self, practice_id: UUID, user_id: Optional[UUID], era: RemittanceTransaction,
    ) -> ProcessingResult:
        trace_number = era.check_or_eft_trace_number or era.transaction_id
        if not era.check_or_eft_trace_number:
            logger.warning(
                "ERA %s has no check/EFT trace number; using transaction id as idempotency key",
                era.transaction_id,
            )

        result = ProcessingResult(
            era_id=_new_era_id(),
            transaction_id=era.transaction_id,
            trace_number=trace_number,
            processed_at=datetime.now(timezone.utc),
            total_payment_amount=era.total_payment_amount,
        )

        reserved = await self.repository.reserve_remittance(
            practice_id,
            trace_number,
            transaction_id=era.transaction_id,
            payer_name=era.payer_name,
            total_payment_amount=era.total_payment_amount,
            processed_by=user_id,
        )
        if not reserved:
            logger.warning(
                "Duplicate ERA %s for practice %s: trace %s already processed",
                era.transaction_id, practice_id, trace_number,
            )
            result.duplicate = True
            result.errors.append(
                f"Duplicate ERA detected. Check/EFT trace number {trace_number} already processed."
            )
            return result

        for ordinal, era_claim in enumerate(era.claims, start=1):
            result.claims_processed += 1
            self._cross_check_service_lines(era_claim, result)
            try:
                async with self.repository.claim_scope():
                    detail = await self._process_claim(
                        practice_id, user_id, era, trace_number, era_claim, ordinal,
                    )
            except Exception as exc:
                logger.exception(
                    "Failed to process claim %s on ERA %s",
                    era_claim.patient_control_number, era.transaction_id,
                )
                result.errors.append(
                    f"Failed to process claim {era_claim.patient_control_number}: {exc}"
                )
                detail = ClaimProcessingDetail(
                    patient_control_number=era_claim.patient_control_number,
                    status="error",
                    reason=str(exc) or "Unknown error",
                )
            result.details.append(detail)
            if detail.status == "posted":
                result.payments_posted += 1

        await self._audit(practice_id, user_id, era, result)

        logger.info(
            "ERA %s processed for practice %s: %d claim(s), %d payment(s) posted, %d error(s)",
            era.transaction_id, practice_id, result.claims_processed,
            result.payments_posted, len(result.errors),
        )
        return result

    async def _process_claim(
        self,
        practice_id: UUID,
        user_id: Optional[UUID],
        era: RemittanceTransaction,
        trace_number: str,
        era_claim: RemittanceClaim,
        ordinal: int = 1,
    ) -> ClaimProcessingDetail:
        payment_amount = era_claim.claim_payment_amount

        # The patient control number is our claim number
        claim = await self.repository.find_claim_by_number(practice_id, era_claim.patient_control_number)
        if claim is None:
            return ClaimProcessingDetail(
                patient_control_number=era_claim.patient_control_number,
                status="skipped",
                reason="Claim not found in system",
            )

        invoice = await self.repository.find_latest_open_invoice(practice_id, claim.patient_id)

        new_status = map_era_status_to_claim_status(
            era_claim.claim_status_code,
            payment_amount,
            era_claim.total_claim_charge_amount,
        )
        allowed_amount = payment_amount + sum(
            (adj.amount for adj in era_claim.adjustments), Decimal("0.00"),
        )
        await self.repository.update_claim_from_remittance(
            claim.id,
            ClaimRemittanceUpdate(
                status=new_status,
                allowed_amount=allowed_amount,
                paid_amount=payment_amount,
                patient_responsibility=era_claim.patient_responsibility_amount,
                check_number=trace_number,
                payment_date=era.payment_date,
                era_id=era.transaction_id,
            ),
        )

        if payment_amount > 0 and invoice is not None:
            await self.repository.create_payment(
                practice_id,
                invoice.id,
                amount=payment_amount,
                reference_number=payment_reference(trace_number, claim.claim_number, ordinal),
                payment_date=era.payment_date,
                posted_by=user_id,
            )

            # Recompute from every payment on the invoice, not just this one
            total_paid = await self.repository.sum_invoice_payments(invoice.id)
            amount_due = invoice.total_amount - total_paid
            if amount_due <= 0:
                invoice_status = "paid"
            elif total_paid > 0:
                invoice_status = "partial"
            else:
                invoice_status = invoice.status

            await self.repository.update_invoice_balance(
                invoice.id,
                amount_paid=total_paid,
                amount_due=amount_due,
                status=invoice_status,
            )
            logger.info(
                "Posted %s from ERA %s to claim %s (status=%s), invoice now %s",
                payment_amount, era.transaction_id, claim.claim_number, new_status, invoice_status,
            )
            return ClaimProcessingDetail(
                claim_id=claim.id,
                patient_control_number=era_claim.patient_control_number,
                status="posted",
                payment_amount=payment_amount,
            )

        if payment_amount <= 0:
            return ClaimProcessingDetail(
                claim_id=claim.id,
                patient_control_number=era_claim.patient_control_number,
                status="skipped",
                payment_amount=payment_amount,
                reason=f"No payment: {_claim_status_description(era_claim)}",
            )

        return ClaimProcessingDetail(
            claim_id=claim.id,
            patient_control_number=era_claim.patient_control_number,
            status="partial",
            payment_amount=payment_amount,
            reason="No matching invoice found",
        )

    def _cross_check_service_lines(self, era_claim: RemittanceClaim, result: ProcessingResult) -> None:
        """Warn when SVC paid amounts do not add up to the CLP payment."""
        if not era_claim.service_lines:
            return
        lines_paid = sum((line.paid_amount for line in era_claim.service_lines), Decimal("0.00"))
        if lines_paid != era_claim.claim_payment_amount:
            message = (
                f"Claim {era_claim.patient_control_number}: service line payments {lines_paid} "
                f"do not match claim payment {era_claim.claim_payment_amount}"
            )
            logger.warning(message)
            result.warnings.append(message)

    async def _audit(
        self,
        practice_id: UUID,
        user_id: Optional[UUID],
        era: RemittanceTransaction,
        result: ProcessingResult,
    ) -> None:
        try:
            await self.repository.append_audit_entry(
                practice_id,
                user_id,
                action=ERA_PROCESSED_ACTION,
                entity_type=ERA_ENTITY_TYPE,
                metadata={
                    "eraId": result.era_id,
                    "transactionId": era.transaction_id,
                    "checkNumber": result.trace_number,
                    "payerName": era.payer_name,
                    "totalAmount": str(era.total_payment_amount),
                    "claimsProcessed": result.claims_processed,
                    "paymentsPosted": result.payments_posted,
                    "errors": len(result.errors),
                },
            )
        except Exception:
            # Audit logging must never break posting
            logger.exception("Failed to write ERA audit entry for %s", era.transaction_id)

    # ------------------------------------------------------------------
    # Batch + history
    # ------------------------------------------------------------------

    async def poll_and_process(
        self, practice_id: UUID, user_id: Optional[UUID], since: Optional[datetime] = None,
    ) -> PollAndProcessResult:
        """Post every ERA returned by ``poll_for_new``.  Duplicates are reported, not raised."""
        eras = await self.poll_for_new(practice_id, since)
        results = []
        for era in eras:
            try:
                results.append(await self.process_transaction(practice_id, user_id, era))
            except Exception as exc:
                logger.exception("Failed to process ERA %s", era.transaction_id)
                results.append(ProcessingResult(
                    era_id=_new_era_id(),
                    transaction_id=era.transaction_id,
                    trace_number=era.check_or_eft_trace_number,
                    processed_at=datetime.now(timezone.utc),
                    total_payment_amount=era.total_payment_amount,
                    errors=[str(exc)],
                ))

        return PollAndProcessResult(
            processed=sum(1 for r in results if r.payments_posted > 0),
            results=results,
        )

    async def get_history(
        self, practice_id: UUID, limit: int = 50, offset: int = 0,
    ) -> RemittanceHistoryPage:
        entries, total = await self.repository.list_audit_entries(
            practice_id, action=ERA_PROCESSED_ACTION, limit=limit, offset=offset,
        )
        return RemittanceHistoryPage(
            entries=[
                {
                    "id": str(entry.id),
                    "action": entry.action,
                    "created_at": entry.created_at.isoformat() if entry.created_at else None,
                    "user_id": str(entry.user_id) if entry.user_id else None,
                    "metadata": entry.metadata,
                }
                for entry in entries
            ],
            total=total,
        )

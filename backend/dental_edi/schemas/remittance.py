"""Pydantic schemas for 835 remittance advice and ERA posting results."""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class RemittanceAdjustment(BaseModel):
    group_code: str = ""
    group_code_value: str = ""
    reason_code: str = ""
    reason_code_value: str = ""
    amount: Decimal = Decimal("0.00")


class RemittanceServiceLine(BaseModel):
    line_item_control_number: str = ""
    procedure_code: str = ""
    charge_amount: Decimal = Decimal("0.00")
    paid_amount: Decimal = Decimal("0.00")
    adjustments: list[RemittanceAdjustment] = Field(default_factory=list)


class RemittanceClaim(BaseModel):
    patient_control_number: str = Field("", description="Our claim number, echoed back by the payer")
    claim_status_code: str = ""
    claim_status_code_value: str = ""
    total_claim_charge_amount: Decimal = Decimal("0.00")
    claim_payment_amount: Decimal = Decimal("0.00")
    patient_responsibility_amount: Decimal = Decimal("0.00")
    adjustments: list[RemittanceAdjustment] = Field(default_factory=list)
    service_lines: list[RemittanceServiceLine] = Field(default_factory=list)


class RemittanceTransaction(BaseModel):
    transaction_id: str
    received_date: datetime
    payer_name: str = "Unknown Payer"
    payer_id: str = ""
    check_or_eft_trace_number: str = ""
    payment_method_code: str = "CHK"
    payment_date: date
    total_payment_amount: Decimal = Decimal("0.00")
    claims: list[RemittanceClaim] = Field(default_factory=list)
    is_mock: bool = False


DetailStatus = Literal["posted", "partial", "skipped", "error"]


class ClaimProcessingDetail(BaseModel):
    claim_id: UUID | None = None
    patient_control_number: str
    status: DetailStatus
    payment_amount: Decimal = Decimal("0.00")
    reason: str | None = None


class ProcessingResult(BaseModel):
    era_id: str
    transaction_id: str
    trace_number: str = ""
    processed_at: datetime
    total_payment_amount: Decimal = Decimal("0.00")
    claims_processed: int = 0
    payments_posted: int = 0
    duplicate: bool = False
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    details: list[ClaimProcessingDetail] = Field(default_factory=list)


class RemittanceHistoryPage(BaseModel):
    """A page of ERA_PROCESSED audit entries, newest first."""

    entries: list[dict]
    total: int


class PollAndProcessResult(BaseModel):
    """Outcome of polling the clearinghouse and posting every new ERA."""

    processed: int = Field(0, description="ERAs that posted at least one payment")
    results: list[ProcessingResult] = Field(default_factory=list)

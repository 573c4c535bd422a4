"""Pydantic schemas for 270/271 dental eligibility checks."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field


class EligibilityRequest(BaseModel):
    """Inputs for a single eligibility inquiry."""

    policy_id: str = ""
    payer_id: str = Field(..., min_length=1, description="Stedi trading partner service ID")
    member_id: str = Field(..., min_length=1, max_length=100)
    first_name: str = Field(..., min_length=1, max_length=255)
    last_name: str = Field(..., min_length=1, max_length=255)
    date_of_birth: date
    service_date: date | None = None
    provider_npi: str | None = Field(None, description="Overrides PROVIDER_NPI for this inquiry")
    provider_name: str | None = None


class EligibilityResponse(BaseModel):
    """Normalised dental benefits from a 271 response.

    Coverage percentages are what the plan pays for each procedure class.
    """

    eligible: bool
    shape: Literal["normalized", "stedi_271", "mock"] = "normalized"
    is_mock: bool = False

    plan_name: str | None = None
    group_number: str | None = None
    effective_date: str | None = None
    termination_date: str | None = None

    annual_maximum: Decimal | None = None
    used_benefits: Decimal | None = None
    remaining_benefits: Decimal | None = None

    deductible: Decimal | None = None
    deductible_met: Decimal | None = None

    out_of_pocket_max: Decimal | None = None
    out_of_pocket_met: Decimal | None = None

    preventive_coverage: int | None = None
    basic_coverage: int | None = None
    major_coverage: int | None = None
    orthodontic_coverage: int | None = None

    copay: Decimal | None = None
    coinsurance: Decimal | None = None

    waiting_periods: dict[str, str] = Field(default_factory=dict)
    frequency_limitations: dict[str, str] = Field(default_factory=dict)

    raw_response: Any = None

    model_config = {"frozen": True}


class DegradedResult(BaseModel):
    """Returned instead of an ``EligibilityResponse`` when a live check failed.

    ``fallback`` carries the canned benefits so callers that must show
    something still can, but the failure is never indistinguishable from a
    real payer answer.
    """

    degraded: Literal[True] = True
    reason: Literal["http_error", "timeout", "transport_error", "invalid_response"]
    error: str
    fallback: EligibilityResponse

    model_config = {"frozen": True}


class ClaimStatusResponse(BaseModel):
    """Result of a 276/277 claim status inquiry."""

    control_number: str
    status: str
    status_description: str
    last_updated: datetime
    is_mock: bool = False
    raw_response: Any = None

"""Pydantic schemas for 278 prior-authorization requests and responses.

Request models are deliberately permissive: every field has a default so a
half-filled form can be constructed and handed to ``validate_prior_auth``,
which reports problems as data instead of raising.
"""

from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request parts
# ---------------------------------------------------------------------------


class Address(BaseModel):
    street1: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""


class Submitter(BaseModel):
    """The practice submitting the request."""

    organization_name: str = ""
    tax_id: str = ""
    npi: str = ""
    contact_name: str | None = None
    contact_phone: str | None = None
    contact_email: str | None = None
    contact_fax: str | None = None


class PayerInfo(BaseModel):
    """Utilization management organization (the dental payer)."""

    name: str = ""
    payer_id: str = Field("", description="Stedi trading partner / payer ID")


class RequestingProvider(BaseModel):
    organization_name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    npi: str = ""
    taxonomy_code: str | None = Field(None, description="e.g. 1223D0001X = General Dentist")
    address: Address | None = None
    phone: str | None = None
    fax: str | None = None


class Subscriber(BaseModel):
    member_id: str = ""
    group_number: str | None = None
    first_name: str = ""
    last_name: str = ""
    date_of_birth: str = Field("", description="YYYY-MM-DD")
    gender: str = "U"
    relationship_code: str = "18"
    address: Address | None = None


class DependentPatient(BaseModel):
    """Patient, when different from the subscriber."""

    first_name: str = ""
    last_name: str = ""
    date_of_birth: str = ""
    gender: str = "U"
    relationship_to_subscriber: str = ""
    patient_account_number: str | None = None


class AuthorizationDetails(BaseModel):
    request_id: str = Field("", description="Internal PA id, echoed back as the trace number")
    request_type_code: str = ""
    certification_type_code: str = ""
    service_type_code: str = ""
    level_of_service_code: str | None = None
    service_date: str = Field("", description="YYYY-MM-DD, or a range 'YYYY-MM-DD to YYYY-MM-DD'")
    diagnosis_codes: list[str] = Field(default_factory=list)


class ProcedureLine(BaseModel):
    cdt_code: str = ""
    description: str | None = None
    fee: Decimal | None = None
    quantity: int | None = 1
    tooth_numbers: list[str] = Field(default_factory=list)
    surfaces: list[str] = Field(default_factory=list)
    oral_cavity_code: str | None = None
    date_of_service: str | None = None
    clinical_note: str | None = None


class Attachment(BaseModel):
    type: str = Field("", description="DG=Diagnostic, OZ=Other, DA=Dental models")
    transmission_type: str = Field("", description="EL=Electronic, AA=Available on request, BM=By mail")
    control_number: str | None = None
    description: str | None = None


class RenderingProvider(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    npi: str = ""


class PriorAuthorizationRequest(BaseModel):
    submitter: Submitter = Field(default_factory=Submitter)
    payer: PayerInfo = Field(default_factory=PayerInfo)
    requesting_provider: RequestingProvider = Field(default_factory=RequestingProvider)
    subscriber: Subscriber = Field(default_factory=Subscriber)
    patient: DependentPatient | None = None
    authorization: AuthorizationDetails = Field(default_factory=AuthorizationDetails)
    procedures: list[ProcedureLine] = Field(default_factory=list)
    attachments: list[Attachment] = Field(default_factory=list)
    narrative: str | None = None
    rendering_provider: RenderingProvider | None = None


class PriorAuthValidationError(BaseModel):
    """One problem found by ``validate_prior_auth``."""

    field: str
    message: str


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------

ResponseShape = Literal["stedi_json", "x12_segments", "unrecognized"]


class PriorAuthorizationResponse(BaseModel):
    """Normalised 278 response (HCR decision plus certification window)."""

    shape: ResponseShape
    action_code: str = "IP"
    status: str = "submitted"
    transaction_id: str | None = None
    authorization_number: str | None = None
    certification_start_date: str | None = None
    certification_end_date: str | None = None
    certified_quantity: Decimal | None = None
    reject_reason_code: str | None = None
    additional_reject_reason: str | None = None
    message_text: str | None = None
    raw: Any = None

    model_config = {"frozen": True}


class PriorAuthBuildResult(BaseModel):
    """Either a built 278 payload or the validation errors that stopped it."""

    payload: dict | None = None
    errors: list[PriorAuthValidationError] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.payload is not None and not self.errors

"""
X12 278 (Health Care Services Review - Request) builder for dental prior
authorizations submitted through Stedi.

Provides:
  - validate_prior_auth: field-level checks, returned as data
  - build_prior_auth: the 278 payload (envelope + hierarchical loops)

Format: ANSI ASC X12 5010, implementation guide 005010X217.

Hierarchy produced by the builder:

    HL 1   20  payer (utilization management organization)
    HL 2   21  requester (requesting provider)
    HL 3   22  subscriber
    HL 4   23  dependent (only when the patient is not the subscriber)
    HL 5   EV  patient event (review request, diagnoses, service date)
    HL 6+  SS  one service level per procedure

``build_prior_auth`` never raises on malformed input and does not
re-validate; callers run ``validate_prior_auth`` first.
"""

import logging
import re
import secrets
from datetime import date, datetime
from typing import Optional

from dental_edi.insurance import code_tables
from dental_edi.schemas.prior_auth import (
    PriorAuthorizationRequest,
    PriorAuthValidationError,
)

logger = logging.getLogger(__name__)

IMPLEMENTATION_GUIDE = "005010X217"
MAX_DIAGNOSIS_CODES = 12
OFFICE_FACILITY_CODE = "11"
SERVICE_DATE_QUALIFIER = "472"

_CDT_CODE_RE = re.compile(r"^D\d{4}$")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATE_RANGE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})(?: to |-)(\d{4}-\d{2}-\d{2})$")
_PRIMARY_TOOTH_RE = re.compile(r"^[A-T]$", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _is_valid_date(value: str) -> bool:
    if not value or not _ISO_DATE_RE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _is_valid_service_date(value: str) -> bool:
    if _is_valid_date(value):
        return True
    match = _DATE_RANGE_RE.match(value or "")
    if not match:
        return False
    return _is_valid_date(match.group(1)) and _is_valid_date(match.group(2))


def _is_valid_tooth_number(tooth: str) -> bool:
    """Permanent teeth are 1-32 (Universal), primary teeth A-T."""
    tooth = (tooth or "").strip()
    if tooth.isdigit():
        return 1 <= int(tooth) <= 32
    return bool(_PRIMARY_TOOTH_RE.match(tooth))


def _digits(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def _compact(segment: dict) -> dict:
    """Drop unset elements so the payload only carries what was supplied."""
    return {key: value for key, value in segment.items() if value is not None}


def generate_control_number(now: Optional[datetime] = None) -> str:
    """Last 9 digits of the epoch milliseconds followed by 3 random digits."""
    now = now or datetime.now()
    millis = str(int(now.timestamp() * 1000))[-9:].zfill(9)
    return f"{millis}{secrets.randbelow(1000):03d}"


def build_service_date_segment(service_date: str) -> dict:
    """DTP*472 as a single date (D8) or a range (RD8).

    Ranges are written either as ``YYYY-MM-DD to YYYY-MM-DD`` or as
    ``YYYY-MM-DD-YYYY-MM-DD``.
    """
    service_date = (service_date or "").strip()
    is_range = " to " in service_date or len(service_date.split("-")) > 3

    if is_range:
        parts = re.split(r" to |-(?=\d{4})", service_date)
        start = parts[0].replace("-", "")
        end = parts[1].replace("-", "") if len(parts) > 1 else start
        return {
            "dateTimeQualifier": SERVICE_DATE_QUALIFIER,
            "dateTimePeriodFormatQualifier": "RD8",
            "dateTimePeriod": f"{start}-{end}",
        }

    return {
        "dateTimeQualifier": SERVICE_DATE_QUALIFIER,
        "dateTimePeriodFormatQualifier": "D8",
        "dateTimePeriod": service_date.replace("-", ""),
    }


def calculate_segment_count(request: PriorAuthorizationRequest) -> str:
    """Approximate SE01 from the shape of the request."""
    count = 10      # ST, BHT, SE and envelope
    count += 4      # 2000A payer
    count += 6      # 2000B requester
    count += 8      # 2000C subscriber
    if request.patient:
        count += 6  # 2000D dependent
    count += 8      # 2000E patient event
    count += len(request.procedures) * 5
    count += len(request.attachments) * 2
    return str(count)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_prior_auth(request: PriorAuthorizationRequest) -> list[PriorAuthValidationError]:
    """Check a prior-authorization request before it is built.

    Returns every problem found; an empty list means the request may be
    passed to ``build_prior_auth``.
    """
    errors: list[PriorAuthValidationError] = []

    def fail(field: str, message: str) -> None:
        errors.append(PriorAuthValidationError(field=field, message=message))

    submitter = request.submitter
    if not submitter.organization_name:
        fail("submitter.organization_name", "Submitter organization name is required")
    if not submitter.npi and not submitter.tax_id:
        fail("submitter.npi", "Submitter NPI or Tax ID is required")

    if not request.payer.payer_id:
        fail("payer.payer_id", "Payer ID is required")
    if not request.payer.name:
        fail("payer.name", "Payer name is required")

    provider = request.requesting_provider
    if not provider.npi:
        fail("requesting_provider.npi", "Requesting provider NPI is required")
    if not provider.organization_name and not provider.last_name:
        fail(
            "requesting_provider.name",
            "Requesting provider name (organization or individual) is required",
        )

    subscriber = request.subscriber
    if not subscriber.member_id:
        fail("subscriber.member_id", "Subscriber member ID is required")
    if not subscriber.first_name:
        fail("subscriber.first_name", "Subscriber first name is required")
    if not subscriber.last_name:
        fail("subscriber.last_name", "Subscriber last name is required")
    if not subscriber.date_of_birth:
        fail("subscriber.date_of_birth", "Subscriber date of birth is required")
    elif not _is_valid_date(subscriber.date_of_birth):
        fail("subscriber.date_of_birth", "Subscriber date of birth must be in YYYY-MM-DD format")
    if not code_tables.is_valid_gender(subscriber.gender):
        fail("subscriber.gender", f"Invalid subscriber gender code '{subscriber.gender}'")
    if not code_tables.is_valid_relationship(subscriber.relationship_code):
        fail(
            "subscriber.relationship_code",
            f"Invalid subscriber relationship code '{subscriber.relationship_code}'",
        )

    auth = request.authorization
    if not auth.request_id:
        fail("authorization.request_id", "Authorization request ID is required")
    if auth.request_type_code not in code_tables.REQUEST_TYPE_CODES:
        fail("authorization.request_type_code", "Request type code must be HS, AR, or SC")
    if auth.certification_type_code not in code_tables.CERTIFICATION_TYPE_CODES:
        fail(
            "authorization.certification_type_code",
            "Certification type code must be I, R, E, or A",
        )
    if auth.service_type_code not in code_tables.DENTAL_SERVICE_TYPE_CODES:
        fail(
            "authorization.service_type_code",
            "Service type code must be 35, 36, 37, or 38 for dental",
        )
    if auth.level_of_service_code and auth.level_of_service_code not in code_tables.LEVEL_OF_SERVICE_CODES:
        fail("authorization.level_of_service_code", "Level of service code must be U or E")
    if not auth.service_date:
        fail("authorization.service_date", "Service date is required")
    elif not _is_valid_service_date(auth.service_date):
        fail(
            "authorization.service_date",
            "Service date must be YYYY-MM-DD or a range YYYY-MM-DD to YYYY-MM-DD",
        )

    if not request.procedures:
        fail("procedures", "At least one procedure is required")

    for index, proc in enumerate(request.procedures, start=1):
        prefix = f"procedures[{index - 1}]"
        if not proc.cdt_code:
            fail(f"{prefix}.cdt_code", f"Procedure {index}: CDT code is required")
        elif not _CDT_CODE_RE.match(proc.cdt_code):
            fail(f"{prefix}.cdt_code", f"Procedure {index}: Invalid CDT code format (must be D####)")
        if proc.fee is None or proc.fee <= 0:
            fail(f"{prefix}.fee", f"Procedure {index}: Fee must be greater than zero")
        if proc.quantity is None or proc.quantity <= 0:
            fail(f"{prefix}.quantity", f"Procedure {index}: Quantity must be greater than zero")
        for tooth in proc.tooth_numbers:
            if not _is_valid_tooth_number(tooth):
                fail(
                    f"{prefix}.tooth_numbers",
                    f"Procedure {index}: Invalid tooth number '{tooth}'. Must be 1-32 or A-T",
                )
        for surface in proc.surfaces:
            if surface not in code_tables.TOOTH_SURFACE_CODES:
                fail(f"{prefix}.surfaces", f"Procedure {index}: Invalid surface code '{surface}'")
        if proc.oral_cavity_code and proc.oral_cavity_code not in code_tables.ORAL_CAVITY_CODES:
            fail(
                f"{prefix}.oral_cavity_code",
                f"Procedure {index}: Invalid oral cavity code '{proc.oral_cavity_code}'",
            )

    for index, attachment in enumerate(request.attachments, start=1):
        prefix = f"attachments[{index - 1}]"
        if attachment.type not in code_tables.ATTACHMENT_REPORT_TYPE_CODES:
            fail(f"{prefix}.type", f"Attachment {index}: Report type must be DG, OZ, or DA")
        if attachment.transmission_type not in code_tables.ATTACHMENT_TRANSMISSION_CODES:
            fail(
                f"{prefix}.transmission_type",
                f"Attachment {index}: Transmission type must be EL, AA, or BM",
            )

    patient = request.patient
    if patient is not None:
        if not patient.first_name:
            fail("patient.first_name", "Patient first name is required")
        if not patient.last_name:
            fail("patient.last_name", "Patient last name is required")
        if not patient.date_of_birth:
            fail("patient.date_of_birth", "Patient date of birth is required")
        if not patient.relationship_to_subscriber:
            fail(
                "patient.relationship_to_subscriber",
                "Patient relationship to subscriber is required",
            )
        elif not code_tables.is_valid_relationship(patient.relationship_to_subscriber):
            fail(
                "patient.relationship_to_subscriber",
                f"Invalid patient relationship code '{patient.relationship_to_subscriber}'",
            )
        if not code_tables.is_valid_gender(patient.gender):
            fail("patient.gender", f"Invalid patient gender code '{patient.gender}'")

    return errors


# ---------------------------------------------------------------------------
# Loops
# ---------------------------------------------------------------------------

def _hierarchical_level(hl_id: int, parent_id: Optional[int], level_code: str, has_children: bool) -> dict:
    return {
        "hierarchicalIdNumber": str(hl_id),
        "hierarchicalParentIdNumber": str(parent_id) if parent_id else "",
        "hierarchicalLevelCode": level_code,
        "hierarchicalChildCode": "1" if has_children else "0",
    }


def _sender_id(request: PriorAuthorizationRequest) -> str:
    return request.submitter.npi or _digits(request.submitter.tax_id)


def _build_payer_loop(request: PriorAuthorizationRequest) -> dict:
    """Loop 2000A - utilization management organization."""
    return {
        "hierarchicalLevel": _hierarchical_level(1, None, "20", True),
        "umoName": {
            "entityIdentifierCode": "X3",
            "entityTypeQualifier": "2",
            "organizationName": request.payer.name,
            "identificationCodeQualifier": "PI",
            "identificationCode": request.payer.payer_id,
        },
    }


def _build_requester_loop(request: PriorAuthorizationRequest) -> dict:
    """Loop 2000B - requesting provider."""
    provider = request.requesting_provider
    submitter = request.submitter
    is_organization = bool(provider.organization_name)

    loop = {
        "hierarchicalLevel": _hierarchical_level(2, 1, "21", True),
        "requesterName": _compact({
            "entityIdentifierCode": "1P",
            "entityTypeQualifier": "2" if is_organization else "1",
            "organizationName": provider.organization_name if is_organization else None,
            "lastName": provider.last_name if not is_organization else None,
            "firstName": provider.first_name if not is_organization else None,
            "identificationCodeQualifier": "XX",
            "identificationCode": provider.npi,
        }),
    }

    if submitter.tax_id:
        loop["requesterSupplementalId"] = {
            "referenceIdentificationQualifier": "EI",
            "referenceIdentification": _digits(submitter.tax_id),
        }

    phone = provider.phone or submitter.contact_phone
    if phone:
        loop["requesterContactInfo"] = _compact({
            "contactFunctionCode": "IC",
            "name": submitter.contact_name or provider.organization_name,
            "communicationNumberQualifier1": "TE",
            "communicationNumber1": _digits(phone),
            "communicationNumberQualifier2": "FX" if provider.fax else None,
            "communicationNumber2": _digits(provider.fax) if provider.fax else None,
        })

    if provider.taxonomy_code:
        loop["providerInformation"] = {
            "providerCode": "PE",
            "referenceIdentificationQualifier": "PXC",
            "referenceIdentification": provider.taxonomy_code,
        }

    return loop


def _build_subscriber_loop(request: PriorAuthorizationRequest) -> dict:
    """Loop 2000C - subscriber."""
    subscriber = request.subscriber

    loop = {
        "hierarchicalLevel": _hierarchical_level(3, 2, "22", request.patient is not None),
        "traceNumber": {
            "traceTypeCode": "1",
            "referenceIdentification": request.authorization.request_id,
            "originatingCompanyIdentifier": _sender_id(request),
        },
        "subscriberName": {
            "entityIdentifierCode": "IL",
            "entityTypeQualifier": "1",
            "lastName": subscriber.last_name,
            "firstName": subscriber.first_name,
            "identificationCodeQualifier": "MI",
            "identificationCode": subscriber.member_id,
        },
    }

    if subscriber.group_number:
        loop["subscriberSupplementalId"] = {
            "referenceIdentificationQualifier": "6P",
            "referenceIdentification": subscriber.group_number,
        }

    if subscriber.address:
        loop["subscriberAddress"] = {"addressLine1": subscriber.address.street1}
        loop["subscriberCityStateZip"] = {
            "cityName": subscriber.address.city,
            "stateCode": subscriber.address.state,
            "postalCode": _digits(subscriber.address.zip)[:9],
        }

    loop["subscriberDemographics"] = {
        "dateTimePeriodFormatQualifier": "D8",
        "dateTimePeriod": subscriber.date_of_birth.replace("-", ""),
        "genderCode": subscriber.gender,
    }
    return loop


def _build_dependent_loop(request: PriorAuthorizationRequest) -> dict:
    """Loop 2000D - patient, when not the subscriber."""
    patient = request.patient

    loop = {
        "hierarchicalLevel": _hierarchical_level(4, 3, "23", True),
        "traceNumber": {
            "traceTypeCode": "1",
            "referenceIdentification": request.authorization.request_id,
        },
        "dependentName": {
            "entityIdentifierCode": "QC",
            "entityTypeQualifier": "1",
            "lastName": patient.last_name,
            "firstName": patient.first_name,
        },
    }

    if patient.patient_account_number:
        loop["dependentSupplementalId"] = {
            "referenceIdentificationQualifier": "EJ",
            "referenceIdentification": patient.patient_account_number,
        }

    loop["dependentDemographics"] = {
        "dateTimePeriodFormatQualifier": "D8",
        "dateTimePeriod": patient.date_of_birth.replace("-", ""),
        "genderCode": patient.gender,
    }
    loop["insuranceRelationship"] = {
        "insuredIndicator": "N",
        "relationshipToInsured": patient.relationship_to_subscriber,
    }
    return loop


def _build_patient_event_loop(request: PriorAuthorizationRequest) -> dict:
    """Loop 2000E - the review request itself."""
    auth = request.authorization
    parent_id = 4 if request.patient else 3

    loop = {
        "hierarchicalLevel": _hierarchical_level(5, parent_id, "EV", True),
        "patientEventTraceNumber": {
            "traceTypeCode": "1",
            "referenceIdentification": auth.request_id,
        },
        "healthCareServicesReview": _compact({
            "requestCategoryCode": auth.request_type_code,
            "certificationTypeCode": auth.certification_type_code,
            "serviceTypeCode": auth.service_type_code,
            "facilityTypeCode": OFFICE_FACILITY_CODE if request.requesting_provider.address else None,
            "levelOfServiceCode": auth.level_of_service_code,
        }),
    }

    if auth.diagnosis_codes:
        loop["diagnosisCodes"] = {
            "healthCareCodeInformation": [
                {
                    "diagnosisTypeCode": "ABK",
                    "diagnosisCode": code,
                    "diagnosisPointer": pointer,
                }
                for pointer, code in enumerate(auth.diagnosis_codes[:MAX_DIAGNOSIS_CODES], start=1)
            ],
        }

    loop["serviceDate"] = build_service_date_segment(auth.service_date)

    rendering = request.rendering_provider
    if rendering:
        loop["patientEventProvider"] = _compact({
            "entityIdentifierCode": "1P",
            "entityTypeQualifier": "1",
            "lastName": rendering.last_name,
            "firstName": rendering.first_name,
            "identificationCodeQualifier": "XX",
            "identificationCode": rendering.npi,
        })

    return loop


def _build_service_loops(request: PriorAuthorizationRequest) -> list[dict]:
    """Loop 2000F - one service level per requested procedure."""
    request_id = request.authorization.request_id
    loops = []

    for index, proc in enumerate(request.procedures):
        quantity = proc.quantity if proc.quantity is not None else 1
        loop = {
            "hierarchicalLevel": _hierarchical_level(6 + index, 5, "SS", False),
            "serviceTraceNumber": {
                "traceTypeCode": "1",
                "referenceIdentification": f"{request_id}-{index + 1}",
            },
            "dentalService": _compact({
                "procedureCodeComposite": _compact({
                    "productServiceIdQualifier": "AD",
                    "procedureCode": proc.cdt_code,
                    "description": proc.description,
                }),
                "monetaryAmount": str(proc.fee) if proc.fee is not None else None,
                "unitBasisCode": "UN",
                "quantity": quantity,
                "facilityCode": OFFICE_FACILITY_CODE,
                "oralCavityDesignation": proc.oral_cavity_code,
            }),
        }

        if proc.tooth_numbers:
            loop["toothInformation"] = [
                _compact({
                    "codeListQualifierCode": "JP",
                    "toothCode": tooth,
                    "toothSurfaces": (
                        [{"toothSurfaceCode": surface} for surface in proc.surfaces]
                        if proc.surfaces else None
                    ),
                })
                for tooth in proc.tooth_numbers
            ]

        if quantity > 1:
            loop["servicesDelivery"] = {"quantityQualifier": "UN", "quantity": quantity}

        if request.attachments:
            loop["paperwork"] = [
                _compact({
                    "reportTypeCode": attachment.type,
                    "reportTransmissionCode": attachment.transmission_type,
                    "attachmentControlNumber": attachment.control_number,
                    "attachmentDescription": attachment.description,
                })
                for attachment in request.attachments
            ]

        message = proc.clinical_note or (request.narrative if index == 0 else None)
        if message:
            loop["messageText"] = {"freeFormMessageText": message}

        loops.append(loop)

    return loops


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def build_prior_auth(
    request: PriorAuthorizationRequest,
    now: Optional[datetime] = None,
) -> dict:
    """Build the Stedi 278 request payload.

    Args:
        request: A request that has passed ``validate_prior_auth``.
        now: Timestamp for the envelope dates and control number. Defaults
            to the current local time.

    Returns:
        Dict mirroring the 278 segments, ready to be serialised as JSON.
    """
    now = now or datetime.now()
    control_number = generate_control_number(now)
    sender_id = _sender_id(request)
    request_id = request.authorization.request_id
    st_control_number = request_id[:9]

    payload = {
        "interchangeControlHeader": {
            "authorizationInformationQualifier": "00",
            "authorizationInformation": " " * 10,
            "securityInformationQualifier": "00",
            "securityInformation": " " * 10,
            "senderIdQualifier": "ZZ",
            "senderId": sender_id.ljust(15),
            "receiverIdQualifier": "ZZ",
            "receiverId": request.payer.payer_id.ljust(15),
            "interchangeDate": now.strftime("%y%m%d"),
            "interchangeTime": now.strftime("%H%M"),
            "interchangeControlStandardsIdentifier": "^",
            "interchangeControlVersionNumber": "00501",
            "interchangeControlNumber": control_number[:9],
            "acknowledgmentRequested": "0",
            "usageIndicator": "T",
            "componentElementSeparator": ":",
        },
        "functionalGroupHeader": {
            "functionalIdentifierCode": "HI",
            "applicationSendersCode": sender_id,
            "applicationReceiversCode": request.payer.payer_id,
            "date": now.strftime("%Y%m%d"),
            "time": now.strftime("%H%M"),
            "groupControlNumber": control_number,
            "responsibleAgencyCode": "X",
            "versionReleaseIndustryIdentifierCode": IMPLEMENTATION_GUIDE,
        },
        "transactionSetHeader": {
            "transactionSetIdentifierCode": "278",
            "transactionSetControlNumber": st_control_number,
            "implementationConventionReference": IMPLEMENTATION_GUIDE,
        },
        "beginningOfHierarchicalTransaction": {
            "hierarchicalStructureCode": "0007",
            "transactionSetPurposeCode": "13",
            "referenceIdentification": request_id,
            "date": now.strftime("%Y%m%d"),
            "time": now.strftime("%H%M"),
            "transactionTypeCode": "DG",
        },
        "umo": _build_payer_loop(request),
        "requester": _build_requester_loop(request),
        "subscriber": _build_subscriber_loop(request),
    }

    if request.patient:
        payload["dependent"] = _build_dependent_loop(request)

    payload["patientEvent"] = _build_patient_event_loop(request)
    payload["services"] = _build_service_loops(request)

    payload["transactionSetTrailer"] = {
        "numberOfIncludedSegments": calculate_segment_count(request),
        "transactionSetControlNumber": st_control_number,
    }
    payload["functionalGroupTrailer"] = {
        "numberOfTransactionSetsIncluded": "1",
        "groupControlNumber": control_number,
    }
    payload["interchangeControlTrailer"] = {
        "numberOfIncludedFunctionalGroups": "1",
        "interchangeControlNumber": control_number[:9],
    }

    logger.debug(
        "Built 278 request %s: %d procedure(s), control number %s",
        request_id, len(request.procedures), control_number,
    )
    return payload

"""
Parsers for inbound clearinghouse payloads.

  - parse_prior_auth_response: 278 response (HCR decision)
  - parse_eligibility_response: 271 eligibility benefits
  - parse_remittance: 835 remittance advice report

Each parser accepts whatever JSON the clearinghouse returned and never raises
on missing fields; absent values come back as ``None`` (or zero for money on
the remittance).  The shape that was recognised is reported on the result.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from dental_edi.insurance.code_tables import (
    EB_ACTIVE_COVERAGE,
    EB_COINSURANCE,
    EB_COPAY,
    EB_DEDUCTIBLE,
    EB_LIMITATIONS,
    EB_OUT_OF_POCKET,
    MONETARY_LIMIT_BENEFIT_CODES,
    PERIOD_TOTAL_TIME_PERIODS,
    PROCEDURE_CLASSES,
    REMAINING_TIME_PERIODS,
    SERVICE_TYPE_PROCEDURE_CLASS,
    describe_benefit_type,
    describe_time_period,
    map_action_to_status,
)
from dental_edi.schemas.eligibility import EligibilityResponse
from dental_edi.schemas.prior_auth import PriorAuthorizationResponse
from dental_edi.schemas.remittance import (
    RemittanceAdjustment,
    RemittanceClaim,
    RemittanceServiceLine,
    RemittanceTransaction,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

CERTIFICATION_EFFECTIVE_QUALIFIER = "607"
CERTIFICATION_EXPIRATION_QUALIFIER = "609"

# Coverage percentages assumed when the payer does not report a class
DEFAULT_COVERAGE = {
    "preventive": 100,
    "basic": 80,
    "major": 50,
    "orthodontic": None,
}

_STEDI_278_KEYS = ("healthCareServicesReview", "traceNumber", "dates", "messageText")
_X12_278_KEYS = ("HCR", "TRN", "DTP", "MSG")
_STEDI_271_KEYS = ("benefitsInformation", "planStatus", "planDateInformation")


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def to_money(value: Any) -> Optional[Decimal]:
    """Parse an amount into a Decimal quantized to cents, or None."""
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value)).quantize(CENTS)
    except (InvalidOperation, ValueError, TypeError):
        logger.warning("Could not parse monetary amount: %s", value)
        return None


def _money_or_zero(value: Any) -> Decimal:
    amount = to_money(value)
    return amount if amount is not None else Decimal("0.00")


def _to_percent(value: Any) -> Optional[int]:
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError, OverflowError):
        logger.warning("Could not parse coverage percent: %s", value)
        return None


def normalize_x12_date(value: Any) -> Optional[str]:
    """CCYYMMDD -> YYYY-MM-DD; anything else is returned unchanged."""
    if not value:
        return None
    value = str(value).strip()
    if len(value) == 8 and value.isdigit():
        return f"{value[:4]}-{value[4:6]}-{value[6:]}"
    return value


def _parse_date(value: Any) -> Optional[date]:
    normalized = normalize_x12_date(value)
    if not normalized:
        return None
    try:
        return date.fromisoformat(normalized[:10])
    except ValueError:
        logger.warning("Could not parse date: %s", value)
        return None


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _first(*values: Any) -> Any:
    """First value that is neither None nor an empty string."""
    for value in values:
        if value is not None and value != "":
            return value
    return None


def _text(*values: Any) -> Optional[str]:
    value = _first(*values)
    return str(value) if value is not None else None


# ---------------------------------------------------------------------------
# 278 response
# ---------------------------------------------------------------------------

def _extract_certification_date(dtp: Any, qualifier: str) -> Optional[str]:
    for entry in _as_list(dtp):
        if not isinstance(entry, dict):
            continue
        if entry.get("dateTimeQualifier") == qualifier or entry.get("DTP01") == qualifier:
            return normalize_x12_date(_first(entry.get("dateTimePeriod"), entry.get("DTP03")))
    return None


def _detect_278_shape(raw: Any) -> str:
    if not isinstance(raw, dict):
        return "unrecognized"
    if any(key in raw for key in _STEDI_278_KEYS):
        return "stedi_json"
    if any(key in raw for key in _X12_278_KEYS):
        return "x12_segments"
    return "unrecognized"


def parse_prior_auth_response(raw: Any) -> PriorAuthorizationResponse:
    """Normalise a 278 response.

    Two shapes are understood: Stedi's JSON rendering
    (``healthCareServicesReview``, ``traceNumber``, ``dates``,
    ``messageText``) and raw segments keyed by segment id with positional
    element names (``HCR01``, ``TRN02``, ``DTP03``, ``MSG01``).  Anything
    else yields the ``unrecognized`` shape with the action code defaulted to
    ``IP``.
    """
    shape = _detect_278_shape(raw)
    if shape == "unrecognized":
        logger.warning("Unrecognized 278 response shape: %s", type(raw).__name__)
        return PriorAuthorizationResponse(
            shape="unrecognized",
            action_code="IP",
            status=map_action_to_status("IP"),
            raw=raw,
        )

    hcr = _as_dict(raw.get("healthCareServicesReview") or raw.get("HCR"))
    trn = _as_dict(raw.get("traceNumber") or raw.get("TRN"))
    dtp = raw.get("dates") or raw.get("DTP")
    msg = _as_dict(raw.get("messageText") or raw.get("MSG"))

    action_code = str(_first(hcr.get("actionCode"), hcr.get("HCR01")) or "IP").strip().upper()

    certified_quantity = None
    if hcr.get("quantity") is not None:
        try:
            certified_quantity = Decimal(str(hcr["quantity"]))
        except (InvalidOperation, ValueError):
            logger.warning("Could not parse certified quantity: %s", hcr["quantity"])

    response = PriorAuthorizationResponse(
        shape=shape,
        action_code=action_code,
        status=map_action_to_status(action_code),
        transaction_id=_text(trn.get("referenceIdentification"), trn.get("TRN02")),
        authorization_number=_text(hcr.get("authorizationNumber"), hcr.get("HCR02")),
        certification_start_date=_extract_certification_date(dtp, CERTIFICATION_EFFECTIVE_QUALIFIER),
        certification_end_date=_extract_certification_date(dtp, CERTIFICATION_EXPIRATION_QUALIFIER),
        certified_quantity=certified_quantity,
        reject_reason_code=_text(hcr.get("rejectReasonCode"), hcr.get("HCR03")),
        additional_reject_reason=_text(hcr.get("additionalRejectReason"), hcr.get("HCR04")),
        message_text=_text(msg.get("freeFormMessageText"), msg.get("MSG01")),
        raw=raw,
    )

    logger.info(
        "Parsed 278 response (%s): action=%s status=%s trace=%s",
        shape, response.action_code, response.status, response.transaction_id,
    )
    return response


# ---------------------------------------------------------------------------
# 271 eligibility
# ---------------------------------------------------------------------------

def _parse_normalized_eligibility(data: dict) -> EligibilityResponse:
    benefits = [b for b in _as_list(data.get("benefits")) if isinstance(b, dict)]

    dental = next((b for b in benefits if str(b.get("serviceTypeCode")) == "35"), {})
    by_class = {}
    for benefit in benefits:
        procedure_class = benefit.get("procedureClass")
        if procedure_class in PROCEDURE_CLASSES and procedure_class not in by_class:
            by_class[procedure_class] = benefit

    coverage = {}
    for procedure_class in PROCEDURE_CLASSES:
        percent = (by_class.get(procedure_class) or {}).get("coveragePercent")
        coverage[procedure_class] = (
            _to_percent(percent) if percent is not None else DEFAULT_COVERAGE[procedure_class]
        )

    plan_maximum = _as_dict(dental.get("planMaximum"))
    deductible_info = _as_dict(dental.get("deductible"))
    out_of_pocket = _as_dict(data.get("outOfPocketMax"))

    deductible = to_money(deductible_info.get("amount"))
    deductible_met = to_money(deductible_info.get("met"))
    if deductible_met is None and deductible is not None:
        remaining = to_money(deductible_info.get("remaining"))
        if remaining is not None:
            deductible_met = deductible - remaining

    limitations = _as_dict(data.get("limitations"))
    waiting_periods = {
        str(wp["procedureClass"]): f"{wp.get('months')} months"
        for wp in _as_list(limitations.get("waitingPeriods"))
        if isinstance(wp, dict) and wp.get("procedureClass")
    }
    frequency_limitations = {
        str(freq["procedureCode"]): str(freq.get("description") or "")
        for freq in _as_list(limitations.get("frequencies"))
        if isinstance(freq, dict) and freq.get("procedureCode")
    }

    return EligibilityResponse(
        eligible=str(data.get("status") or "").lower() == "active",
        shape="normalized",
        plan_name=_text(data.get("planName")),
        group_number=_text(data.get("groupNumber")),
        effective_date=normalize_x12_date(data.get("effectiveDate")),
        termination_date=normalize_x12_date(data.get("terminationDate")),
        annual_maximum=to_money(_first(plan_maximum.get("amount"), dental.get("benefitAmount"))),
        used_benefits=_money_or_zero(plan_maximum.get("used")),
        remaining_benefits=to_money(plan_maximum.get("remaining")),
        deductible=deductible,
        deductible_met=deductible_met,
        out_of_pocket_max=to_money(out_of_pocket.get("amount")),
        out_of_pocket_met=to_money(out_of_pocket.get("met")),
        preventive_coverage=coverage["preventive"],
        basic_coverage=coverage["basic"],
        major_coverage=coverage["major"],
        orthodontic_coverage=coverage["orthodontic"],
        copay=to_money(_as_dict(dental.get("copay")).get("amount")),
        coinsurance=to_money(_as_dict(dental.get("coinsurance")).get("percent")),
        waiting_periods=waiting_periods,
        frequency_limitations=frequency_limitations,
        raw_response=data,
    )


def _benefit_description(benefit: dict) -> Optional[str]:
    for info in _as_list(benefit.get("additionalInformation")):
        if isinstance(info, dict) and info.get("description"):
            return str(info["description"])
    return None


def _procedure_classes(benefit: dict) -> list[str]:
    classes = []
    for code in _as_list(benefit.get("serviceTypeCodes")):
        procedure_class = SERVICE_TYPE_PROCEDURE_CLASS.get(str(code))
        if procedure_class and procedure_class not in classes:
            classes.append(procedure_class)
    return classes


def _prefer_in_network(benefits: list[dict]) -> list[dict]:
    """In-network entries first, preserving payer order otherwise."""
    return sorted(
        benefits,
        key=lambda b: 0 if str(b.get("inPlanNetworkIndicatorCode") or "").upper() == "Y" else 1,
    )


def _parse_stedi_271(data: dict) -> EligibilityResponse:
    plan_statuses = [s for s in _as_list(data.get("planStatus")) if isinstance(s, dict)]
    benefits = _prefer_in_network(
        [b for b in _as_list(data.get("benefitsInformation")) if isinstance(b, dict)]
    )

    eligible = False
    plan_name = None
    if plan_statuses:
        first_status = plan_statuses[0]
        status_text = str(first_status.get("status") or "").lower()
        eligible = str(first_status.get("statusCode") or "") == EB_ACTIVE_COVERAGE or (
            "active" in status_text and "inactive" not in status_text
        )
        plan_name = _text(first_status.get("planDetails"))
    else:
        eligible = any(str(b.get("code") or "") == EB_ACTIVE_COVERAGE for b in benefits)

    if plan_name is None:
        plan_name = next((_text(b["planDetails"]) for b in benefits if b.get("planDetails")), None)

    subscriber = _as_dict(data.get("subscriber"))
    plan_information = _as_dict(data.get("planInformation"))
    group_number = _text(subscriber.get("groupNumber"), plan_information.get("groupNumber"))

    dates = _as_dict(data.get("planDateInformation"))
    effective_date = normalize_x12_date(_first(dates.get("planBegin"), dates.get("eligibilityBegin")))
    termination_date = normalize_x12_date(_first(dates.get("planEnd"), dates.get("eligibilityEnd")))
    if dates.get("plan") and "-" in str(dates["plan"]):
        begin, _, end = str(dates["plan"]).partition("-")
        effective_date = effective_date or normalize_x12_date(begin)
        termination_date = termination_date or normalize_x12_date(end)

    totals: dict[str, Optional[Decimal]] = dict.fromkeys(MONETARY_LIMIT_BENEFIT_CODES)
    remaining: dict[str, Optional[Decimal]] = dict.fromkeys(MONETARY_LIMIT_BENEFIT_CODES)
    copay = None
    coinsurance = None
    coverage = {}
    waiting_periods = {}
    frequency_limitations = {}

    for benefit in benefits:
        code = str(benefit.get("code") or "").upper()
        time_qualifier = str(benefit.get("timeQualifierCode") or "")
        amount = to_money(benefit.get("benefitAmount"))
        description = _benefit_description(benefit)
        logger.debug(
            "271 benefit %s (%s), period %s (%s), amount %s",
            code, describe_benefit_type(code),
            time_qualifier, describe_time_period(time_qualifier), amount,
        )

        if code in totals and amount is not None:
            if time_qualifier in REMAINING_TIME_PERIODS:
                if remaining[code] is None:
                    remaining[code] = amount
            elif time_qualifier in PERIOD_TOTAL_TIME_PERIODS or not time_qualifier:
                if totals[code] is None:
                    totals[code] = amount

        elif code == EB_COPAY and copay is None and amount is not None:
            copay = amount

        elif code == EB_COINSURANCE and benefit.get("benefitPercent") is not None:
            try:
                patient_share = Decimal(str(benefit["benefitPercent"])) * 100
            except (InvalidOperation, ValueError):
                logger.warning("Could not parse coinsurance percent: %s", benefit["benefitPercent"])
                continue
            classes = _procedure_classes(benefit)
            if not classes and coinsurance is None:
                coinsurance = patient_share.quantize(CENTS)
            for procedure_class in classes:
                coverage.setdefault(procedure_class, int(100 - patient_share))

        procedure = _text(_as_dict(benefit.get("compositeMedicalProcedureIdentifier")).get("procedureCode"))
        if procedure and description and procedure not in frequency_limitations:
            frequency_limitations[procedure] = description

        if description and "waiting" in description.lower():
            for procedure_class in _procedure_classes(benefit):
                waiting_periods.setdefault(procedure_class, description)

    if coinsurance is None and coverage.get("basic") is not None:
        coinsurance = Decimal(100 - coverage["basic"]).quantize(CENTS)

    annual_maximum = totals[EB_LIMITATIONS]
    remaining_benefits = remaining[EB_LIMITATIONS]
    used_benefits = None
    if annual_maximum is not None and remaining_benefits is not None:
        used_benefits = annual_maximum - remaining_benefits

    deductible = totals[EB_DEDUCTIBLE]
    deductible_met = None
    if deductible is not None and remaining[EB_DEDUCTIBLE] is not None:
        deductible_met = deductible - remaining[EB_DEDUCTIBLE]

    out_of_pocket_max = totals[EB_OUT_OF_POCKET]
    out_of_pocket_met = None
    if out_of_pocket_max is not None and remaining[EB_OUT_OF_POCKET] is not None:
        out_of_pocket_met = out_of_pocket_max - remaining[EB_OUT_OF_POCKET]

    for procedure_class in PROCEDURE_CLASSES:
        coverage.setdefault(procedure_class, DEFAULT_COVERAGE[procedure_class])

    return EligibilityResponse(
        eligible=eligible,
        shape="stedi_271",
        plan_name=plan_name,
        group_number=group_number,
        effective_date=effective_date,
        termination_date=termination_date,
        annual_maximum=annual_maximum,
        used_benefits=used_benefits,
        remaining_benefits=remaining_benefits,
        deductible=deductible,
        deductible_met=deductible_met,
        out_of_pocket_max=out_of_pocket_max,
        out_of_pocket_met=out_of_pocket_met,
        preventive_coverage=coverage["preventive"],
        basic_coverage=coverage["basic"],
        major_coverage=coverage["major"],
        orthodontic_coverage=coverage["orthodontic"],
        copay=copay,
        coinsurance=coinsurance,
        waiting_periods=waiting_periods,
        frequency_limitations=frequency_limitations,
        raw_response=data,
    )


def parse_eligibility_response(data: dict) -> EligibilityResponse:
    """Normalise a 271 response.

    Stedi's raw 271 JSON (``planStatus`` / ``benefitsInformation``) is
    recognised by its keys; everything else is read as the normalized
    benefits shape (``status`` / ``benefits`` / ``limitations``).
    """
    data = data if isinstance(data, dict) else {}
    if any(key in data for key in _STEDI_271_KEYS):
        response = _parse_stedi_271(data)
    else:
        response = _parse_normalized_eligibility(data)

    logger.info(
        "Parsed 271 response (%s): eligible=%s remaining=%s",
        response.shape, response.eligible, response.remaining_benefits,
    )
    return response


# ---------------------------------------------------------------------------
# 835 remittance
# ---------------------------------------------------------------------------

def _parse_adjustments(groups: Any) -> list[RemittanceAdjustment]:
    adjustments = []
    for group in _as_list(groups):
        if not isinstance(group, dict):
            continue
        for item in _as_list(group.get("adjustments")):
            if not isinstance(item, dict):
                continue
            adjustments.append(RemittanceAdjustment(
                group_code=group.get("claimAdjustmentGroupCode") or "",
                group_code_value=group.get("claimAdjustmentGroupCodeValue") or "",
                reason_code=item.get("adjustmentReasonCode") or "",
                reason_code_value=item.get("adjustmentReasonCodeValue") or "",
                amount=_money_or_zero(item.get("adjustmentAmount")),
            ))
    return adjustments


def _parse_service_lines(lines: Any) -> list[RemittanceServiceLine]:
    parsed = []
    for line in _as_list(lines):
        if not isinstance(line, dict):
            continue
        service = _as_dict(line.get("servicePaymentInformation"))
        parsed.append(RemittanceServiceLine(
            line_item_control_number=line.get("lineItemControlNumber") or "",
            procedure_code=(
                line.get("assignedNumber")
                or line.get("productOrServiceId")
                or service.get("adjudicatedProcedureCode")
                or ""
            ),
            charge_amount=_money_or_zero(
                _first(line.get("lineItemChargeAmount"), service.get("lineItemChargeAmount"))
            ),
            paid_amount=_money_or_zero(
                _first(line.get("lineItemProviderPaymentAmount"), service.get("lineItemProviderPaymentAmount"))
            ),
            adjustments=_parse_adjustments(line.get("serviceAdjustments")),
        ))
    return parsed


def _payer_identification(transaction: dict) -> dict:
    payer = transaction.get("payer")
    if isinstance(payer, dict):
        return _as_dict(payer.get("payerIdentification")) or payer
    payers = _as_list(transaction.get("payers"))
    if payers and isinstance(payers[0], dict):
        return _as_dict(payers[0].get("payerIdentification")) or payers[0]
    return {}


def parse_remittance(transaction_id: str, data: dict) -> RemittanceTransaction:
    """Read a Stedi 835 report into a ``RemittanceTransaction``.

    Only the first transaction of the report is used.  Claims are taken from
    every ``detailInfo[].paymentInfo[]`` entry in payer order.
    """
    data = data if isinstance(data, dict) else {}
    transactions = _as_list(data.get("transactions"))
    transaction = transactions[0] if transactions and isinstance(transactions[0], dict) else {}

    financial = _as_dict(transaction.get("financialInformation"))
    reassociation = _as_dict(transaction.get("paymentAndRemitReassociationDetails"))
    payer = _payer_identification(transaction)

    claims = []
    for detail in _as_list(transaction.get("detailInfo")):
        if not isinstance(detail, dict):
            continue
        for payment in _as_list(detail.get("paymentInfo")):
            if not isinstance(payment, dict):
                continue
            claim_info = _as_dict(payment.get("claimPaymentInfo"))
            claims.append(RemittanceClaim(
                patient_control_number=claim_info.get("patientControlNumber") or "",
                claim_status_code=str(claim_info.get("claimStatusCode") or ""),
                claim_status_code_value=claim_info.get("claimStatusCodeValue") or "",
                total_claim_charge_amount=_money_or_zero(claim_info.get("totalClaimChargeAmount")),
                claim_payment_amount=_money_or_zero(claim_info.get("claimPaymentAmount")),
                patient_responsibility_amount=_money_or_zero(
                    claim_info.get("patientResponsibilityAmount")
                ),
                adjustments=_parse_adjustments(
                    _first(payment.get("claimAdjustments"), claim_info.get("claimAdjustments"))
                ),
                service_lines=_parse_service_lines(payment.get("serviceLines")),
            ))

    received_at = datetime.now(timezone.utc)
    payment_date = _parse_date(financial.get("paymentDate")) or received_at.date()

    era = RemittanceTransaction(
        transaction_id=transaction_id,
        received_date=received_at,
        payer_name=payer.get("payerName") or payer.get("name") or "Unknown Payer",
        payer_id=payer.get("payerIdentificationNumber") or payer.get("payerId") or "",
        check_or_eft_trace_number=(
            reassociation.get("checkOrEFTTraceNumber")
            or reassociation.get("checkOrEftTraceNumber")
            or ""
        ),
        payment_method_code=financial.get("paymentMethodCode") or "CHK",
        payment_date=payment_date,
        total_payment_amount=_money_or_zero(financial.get("totalPaymentAmount")),
        claims=claims,
    )

    logger.info(
        "Parsed 835 %s: payer=%s trace=%s claims=%d total=%s",
        transaction_id, era.payer_name, era.check_or_eft_trace_number,
        len(era.claims), era.total_payment_amount,
    )
    return era

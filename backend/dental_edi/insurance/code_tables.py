"""
X12 code tables used by the 278 builder, the 271/278/835 parsers and the
ERA processor.

All lookups are total: unknown codes fall back to a documented default and
never raise.
"""

from decimal import Decimal

# ---------------------------------------------------------------------------
# 278 request codes
# ---------------------------------------------------------------------------

# UM01 - Request category
REQUEST_TYPE_CODES = {
    "HS": "Health Services Review Request",
    "AR": "Admission Review",
    "SC": "Specialty Care Review",
}

# UM02 - Certification type
CERTIFICATION_TYPE_CODES = {
    "I": "Initial",
    "R": "Renewal",
    "E": "Extension",
    "A": "Appeal",
}

# UM03 - Service type, dental subset
DENTAL_SERVICE_TYPE_CODES = {
    "35": "Dental Care",
    "36": "Dental Crowns",
    "37": "Dental Accident",
    "38": "Orthodontics",
}

# UM06 - Level of service
LEVEL_OF_SERVICE_CODES = {
    "U": "Urgent",     # 72-hour CMS turnaround
    "E": "Elective",   # 7 calendar days
}

# SV304 - Oral cavity designation
ORAL_CAVITY_CODES = {
    "00": "Entire Oral Cavity",
    "01": "Maxillary Area",
    "02": "Mandibular Area",
    "10": "Upper Right Quadrant",
    "20": "Upper Left Quadrant",
    "30": "Lower Left Quadrant",
    "40": "Lower Right Quadrant",
}

# TOO03 - Tooth surface
TOOTH_SURFACE_CODES = {
    "M": "Mesial",
    "O": "Occlusal",
    "D": "Distal",
    "B": "Buccal",
    "L": "Lingual",
    "I": "Incisal",
    "F": "Facial",
}

# PWK01 / PWK02 - Attachments
ATTACHMENT_REPORT_TYPE_CODES = {
    "DG": "Diagnostic Report",
    "OZ": "Support Data for Claim",
    "DA": "Dental Models",
}
ATTACHMENT_TRANSMISSION_CODES = {
    "EL": "Electronically Only",
    "AA": "Available on Request at Provider Site",
    "BM": "By Mail",
}

GENDER_CODES = {
    "M": "Male",
    "F": "Female",
    "U": "Unknown",
}

# INS02 / PAT01 - Individual relationship
RELATIONSHIP_CODES = {
    "18": "Self",
    "01": "Spouse",
    "19": "Child",
    "20": "Employee",
    "21": "Unknown",
    "39": "Organ Donor",
    "40": "Cadaver Donor",
    "53": "Life Partner",
}

# ---------------------------------------------------------------------------
# 278 response: HCR01 action code -> internal prior-authorization status
# ---------------------------------------------------------------------------

ACTION_CODES = {
    "A1": "Certified in total",
    "A2": "Certified - partial",
    "A3": "Not certified",
    "A4": "Pended",
    "A6": "Modified",
    "C": "Cancelled",
    "CT": "Contact payer",
    "D": "Deferred",
    "IP": "In process",
    "NA": "No action required",
}

_ACTION_TO_PA_STATUS = {
    "A1": "approved",
    "A2": "partially_approved",
    "A3": "denied",
    "A4": "pending_info",
    "A6": "approved",
    "C": "cancelled",
    "CT": "pending",
    "D": "submitted",
    "IP": "submitted",
    "NA": "not_required",
}

DEFAULT_PA_STATUS = "pending"


def map_action_to_status(action_code: str | None) -> str:
    """Map an HCR01 action code to the prior-authorization status."""
    if not action_code:
        return DEFAULT_PA_STATUS
    return _ACTION_TO_PA_STATUS.get(action_code.strip().upper(), DEFAULT_PA_STATUS)


# ---------------------------------------------------------------------------
# 835: CLP02 claim status codes
# ---------------------------------------------------------------------------

CLAIM_STATUS_CODES = {
    "1": "Processed as Primary",
    "2": "Processed as Secondary",
    "3": "Processed as Tertiary",
    "4": "Denied",
    "19": "Processed as Primary, Forwarded to Additional Payer(s)",
    "20": "Processed as Secondary, Forwarded to Additional Payer(s)",
    "21": "Processed as Tertiary, Forwarded to Additional Payer(s)",
    "22": "Reversal of Previous Payment",
    "23": "Not Our Claim, Forwarded to Additional Payer(s)",
    "25": "Predetermination Pricing Only - No Payment",
}

DENIAL_STATUS_CODES = frozenset({"4", "22"})


def describe_claim_status(code: str | None) -> str:
    return CLAIM_STATUS_CODES.get((code or "").strip(), "Unknown")


def map_era_status_to_claim_status(
    status_code: str | None,
    paid_amount: Decimal,
    charge_amount: Decimal,
) -> str:
    """Derive the internal claim status from an 835 CLP segment.

    Pure function of the status code and the two amounts:

        status 4 (denied) or 22 (reversal)   -> denied
        paid == 0                            -> denied
        paid >= charge                       -> paid
        0 < paid < charge                    -> partially_paid
        anything else (negative paid)        -> pending
    """
    if (status_code or "").strip() in DENIAL_STATUS_CODES:
        return "denied"
    if paid_amount == 0:
        return "denied"
    if paid_amount >= charge_amount:
        return "paid"
    if 0 < paid_amount < charge_amount:
        return "partially_paid"
    return "pending"


# CAS01 - Claim adjustment group codes
ADJUSTMENT_GROUP_CODES = {
    "CO": "Contractual Obligations",
    "CR": "Correction and Reversals",
    "OA": "Other Adjustments",
    "PI": "Payor Initiated Reductions",
    "PR": "Patient Responsibility",
}

# CAS02 - Claim adjustment reason codes most often seen on dental ERAs
ADJUSTMENT_REASON_CODES = {
    "1": "Deductible Amount",
    "2": "Coinsurance Amount",
    "3": "Co-payment Amount",
    "45": "Charge exceeds fee schedule/maximum allowable",
    "96": "Non-covered charge(s)",
    "97": "Payment is included in the allowance for another service",
    "119": "Benefit maximum for this time period has been reached",
    "151": "Payment adjusted because the payer deems the information submitted does not support this many/frequency of services",
    "204": "This service/equipment/drug is not covered under the patient's current benefit plan",
}

# BPR04 - Payment method
PAYMENT_METHOD_CODES = {
    "CHK": "Check",
    "ACH": "Automated Clearing House",
    "BOP": "Financial Institution Option",
    "FWT": "Federal Reserve Funds/Wire Transfer",
    "NON": "Non-Payment Data",
}

# ---------------------------------------------------------------------------
# 271: EB01 benefit information codes and EB06 time period qualifiers
# ---------------------------------------------------------------------------

BENEFIT_TYPE_CODES = {
    "1": "Active Coverage",
    "6": "Inactive",
    "A": "Co-Insurance",
    "B": "Co-Payment",
    "C": "Deductible",
    "D": "Benefit Description",
    "F": "Limitations",
    "G": "Out of Pocket (Stop Loss)",
    "I": "Non-Covered",
}

TIME_PERIOD_CODES = {
    "6": "Hour",
    "7": "Day",
    "21": "Years",
    "22": "Service Year",
    "23": "Calendar Year",
    "24": "Year to Date",
    "25": "Contract",
    "26": "Episode",
    "27": "Visit",
    "29": "Remaining",
    "32": "Lifetime",
    "33": "Lifetime Remaining",
}

EB_ACTIVE_COVERAGE = "1"
EB_COINSURANCE = "A"
EB_COPAY = "B"
EB_DEDUCTIBLE = "C"
EB_LIMITATIONS = "F"
EB_OUT_OF_POCKET = "G"

# Benefit types whose EB07 amount is a plan total or a remainder
MONETARY_LIMIT_BENEFIT_CODES = (EB_LIMITATIONS, EB_DEDUCTIBLE, EB_OUT_OF_POCKET)

# EB06 qualifiers that describe a plan-period total rather than a remainder
PERIOD_TOTAL_TIME_PERIODS = frozenset({"21", "22", "23", "25", "32"})
REMAINING_TIME_PERIODS = frozenset({"29", "33"})


def describe_benefit_type(code: str | None) -> str:
    return BENEFIT_TYPE_CODES.get((code or "").strip().upper(), "Unknown")


def describe_time_period(code: str | None) -> str:
    return TIME_PERIOD_CODES.get((code or "").strip(), "Unknown")


def is_valid_gender(code: str | None) -> bool:
    return (code or "") in GENDER_CODES


def is_valid_relationship(code: str | None) -> bool:
    return (code or "") in RELATIONSHIP_CODES

# EB03 dental service types grouped into the classes the UI shows
SERVICE_TYPE_PROCEDURE_CLASS = {
    "23": "preventive",   # Diagnostic Dental
    "41": "preventive",   # Routine (Preventive) Dental
    "25": "basic",        # Restorative
    "26": "basic",        # Endodontics
    "24": "basic",        # Periodontics
    "40": "basic",        # Oral Surgery
    "36": "major",        # Dental Crowns
    "39": "major",        # Prosthodontics
    "27": "major",        # Maxillofacial Prosthetics
    "38": "orthodontic",  # Orthodontics
}

PROCEDURE_CLASSES = ("preventive", "basic", "major", "orthodontic")

# ---------------------------------------------------------------------------
# 277: claim status category -> internal claim submission status
# ---------------------------------------------------------------------------

_CLAIM_INQUIRY_STATUS = {
    "A1": "acknowledged",
    "A2": "pending",
    "A3": "accepted",
    "A4": "rejected",
    "P1": "paid",
    "P2": "partially_paid",
    "D1": "denied",
}


def map_claim_inquiry_status(status_code: str | None) -> str:
    if not status_code:
        return "pending"
    return _CLAIM_INQUIRY_STATUS.get(status_code.strip().upper(), "pending")

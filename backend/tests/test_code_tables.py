"""
Tests for the X12 code tables and the status mappings derived from them.

Covers:
  - HCR01 action code -> prior-authorization status
  - CLP02 status + amounts -> internal claim status
  - 277 status category -> claim submission status
"""

from decimal import Decimal

import pytest

from dental_edi.insurance import code_tables


# ===================================================================
# Action codes
# ===================================================================


class TestActionCodes:
    @pytest.mark.parametrize("code,status", [
        ("A1", "approved"),
        ("A2", "partially_approved"),
        ("A3", "denied"),
        ("A4", "pending_info"),
        ("A6", "approved"),
        ("C", "cancelled"),
        ("CT", "pending"),
        ("D", "submitted"),
        ("IP", "submitted"),
        ("NA", "not_required"),
    ])
    def test_known_codes(self, code, status):
        assert code_tables.map_action_to_status(code) == status

    def test_every_action_code_is_mapped(self):
        for code in code_tables.ACTION_CODES:
            assert code_tables.map_action_to_status(code) != "", code

    def test_lowercase_and_padded_codes(self):
        assert code_tables.map_action_to_status(" a1 ") == "approved"

    @pytest.mark.parametrize("code", [None, "", "ZZ", "A5"])
    def test_unknown_codes_default_to_pending(self, code):
        assert code_tables.map_action_to_status(code) == code_tables.DEFAULT_PA_STATUS == "pending"


# ===================================================================
# 835 claim status
# ===================================================================


class TestEraClaimStatus:
    def test_denial_code_wins_over_payment(self):
        assert code_tables.map_era_status_to_claim_status("4", Decimal("100"), Decimal("100")) == "denied"
        assert code_tables.map_era_status_to_claim_status("22", Decimal("50"), Decimal("100")) == "denied"

    def test_zero_payment_is_denied(self):
        assert code_tables.map_era_status_to_claim_status("1", Decimal("0"), Decimal("100")) == "denied"

    def test_full_and_over_payment_are_paid(self):
        assert code_tables.map_era_status_to_claim_status("1", Decimal("100"), Decimal("100")) == "paid"
        assert code_tables.map_era_status_to_claim_status("2", Decimal("120"), Decimal("100")) == "paid"

    def test_partial_payment(self):
        assert code_tables.map_era_status_to_claim_status("1", Decimal("450"), Decimal("500")) == "partially_paid"

    def test_negative_payment_is_pending(self):
        assert code_tables.map_era_status_to_claim_status("1", Decimal("-25"), Decimal("100")) == "pending"

    def test_describe_claim_status(self):
        assert code_tables.describe_claim_status("1") == "Processed as Primary"
        assert code_tables.describe_claim_status("99") == "Unknown"
        assert code_tables.describe_claim_status(None) == "Unknown"


# ===================================================================
# 277 claim inquiry
# ===================================================================


class TestClaimInquiryStatus:
    @pytest.mark.parametrize("code,status", [
        ("A1", "acknowledged"),
        ("A3", "accepted"),
        ("A4", "rejected"),
        ("P1", "paid"),
        ("p2", "partially_paid"),
        ("D1", "denied"),
        ("F9", "pending"),
        (None, "pending"),
    ])
    def test_mapping(self, code, status):
        assert code_tables.map_claim_inquiry_status(code) == status


class TestDentalCodeSets:
    def test_dental_service_types(self):
        assert set(code_tables.DENTAL_SERVICE_TYPE_CODES) == {"35", "36", "37", "38"}

    def test_tooth_surfaces(self):
        assert set(code_tables.TOOTH_SURFACE_CODES) == set("MODBLIF")

    def test_service_type_procedure_classes(self):
        assert code_tables.SERVICE_TYPE_PROCEDURE_CLASS["23"] == "preventive"
        assert code_tables.SERVICE_TYPE_PROCEDURE_CLASS["25"] == "basic"
        assert code_tables.SERVICE_TYPE_PROCEDURE_CLASS["36"] == "major"
        assert code_tables.SERVICE_TYPE_PROCEDURE_CLASS["38"] == "orthodontic"


class TestEligibilityAndDemographicCodes:
    def test_benefit_type_descriptions(self):
        assert code_tables.describe_benefit_type(code_tables.EB_LIMITATIONS) == "Limitations"
        assert code_tables.describe_benefit_type("c") == "Deductible"
        assert code_tables.describe_benefit_type("Z") == "Unknown"

    def test_time_period_descriptions(self):
        assert code_tables.describe_time_period("29") == "Remaining"
        assert code_tables.describe_time_period(None) == "Unknown"

    def test_total_and_remaining_periods_are_disjoint(self):
        assert not code_tables.PERIOD_TOTAL_TIME_PERIODS & code_tables.REMAINING_TIME_PERIODS
        assert code_tables.REMAINING_TIME_PERIODS <= set(code_tables.TIME_PERIOD_CODES)

    @pytest.mark.parametrize("code,valid", [("M", True), ("F", True), ("U", True), ("X", False), ("", False)])
    def test_gender(self, code, valid):
        assert code_tables.is_valid_gender(code) is valid

    @pytest.mark.parametrize("code,valid", [("18", True), ("19", True), ("01", True), ("1", False), (None, False)])
    def test_relationship(self, code, valid):
        assert code_tables.is_valid_relationship(code) is valid

"""
Tests for the 270/271 eligibility client: sandbox mock data, live parsing,
and degraded results when the clearinghouse fails.
"""
import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import patch, AsyncMock, MagicMock


def _request(**overrides):
    from dental_edi.schemas.eligibility import EligibilityRequest
    data = dict(
        policy_id="POL-1",
        payer_id="DDCA1",
        member_id=" M123456 ",
        first_name="Jane",
        last_name="Doe",
        date_of_birth=date(1985, 4, 12),
    )
    data.update(overrides)
    return EligibilityRequest(**data)


def _live_client(stedi):
    from dental_edi.insurance.eligibility_client import EligibilityClient
    from dental_edi.insurance.stedi_client import StediMode
    return EligibilityClient(StediMode.LIVE, stedi_client=stedi, provider_npi="1234567893",
                             provider_name="Bright Smiles")


# ---------------------------------------------------------------------------
# Sandbox
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sandbox_returns_mock_without_calling_stedi():
    from dental_edi.insurance.eligibility_client import EligibilityClient
    from dental_edi.insurance.stedi_client import StediMode

    stedi = MagicMock()
    stedi.post_eligibility = AsyncMock()
    client = EligibilityClient(StediMode.SANDBOX, stedi_client=stedi)

    result = await client.check_eligibility(_request())

    stedi.post_eligibility.assert_not_awaited()
    assert result.is_mock is True
    assert result.shape == "mock"
    assert result.eligible is True
    assert result.annual_maximum == Decimal("1500.00")
    assert result.remaining_benefits == Decimal("1050.00")
    assert result.preventive_coverage == 100
    assert result.basic_coverage == 80
    assert result.major_coverage == 50


def test_live_mode_requires_stedi_client():
    from dental_edi.insurance.eligibility_client import EligibilityClient
    from dental_edi.insurance.stedi_client import StediMode

    with pytest.raises(ValueError):
        EligibilityClient(StediMode.LIVE)


def test_from_settings_uses_sandbox_for_test_key():
    from dental_edi.insurance.eligibility_client import EligibilityClient
    from dental_edi.insurance.stedi_client import StediMode

    mock_settings = MagicMock()
    mock_settings.STEDI_MODE = ""
    mock_settings.STEDI_API_KEY = "test_abc"
    mock_settings.PROVIDER_NPI = "1234567893"
    mock_settings.PROVIDER_ORGANIZATION_NAME = "Bright Smiles"

    client = EligibilityClient.from_settings(mock_settings)

    assert client.mode is StediMode.SANDBOX
    assert client.stedi_client is None
    assert client.provider_npi == "1234567893"


# ---------------------------------------------------------------------------
# Live
# ---------------------------------------------------------------------------

def test_build_payload():
    client = _live_client(MagicMock())

    payload = client.build_payload(_request(service_date=date(2024, 4, 1)))

    assert payload["tradingPartnerServiceId"] == "DDCA1"
    assert payload["provider"] == {"organizationName": "Bright Smiles", "npi": "1234567893"}
    assert payload["subscriber"]["memberId"] == "M123456"
    assert payload["subscriber"]["dateOfBirth"] == "19850412"
    assert payload["encounter"]["serviceTypeCodes"] == ["35"]
    assert payload["encounter"]["dateOfService"] == "20240401"
    assert len(payload["controlNumber"]) == 9


@pytest.mark.asyncio
async def test_live_check_parses_271():
    stedi = MagicMock()
    stedi.post_eligibility = AsyncMock(return_value={
        "planStatus": [{"statusCode": "1", "status": "Active Coverage", "planDetails": "Delta PPO"}],
        "benefitsInformation": [
            {"code": "F", "timeQualifierCode": "23", "benefitAmount": "2000"},
            {"code": "F", "timeQualifierCode": "29", "benefitAmount": "1750"},
        ],
    })

    result = await _live_client(stedi).check_eligibility(_request())

    assert result.is_mock is False
    assert result.shape == "stedi_271"
    assert result.eligible is True
    assert result.plan_name == "Delta PPO"
    assert result.annual_maximum == Decimal("2000.00")
    assert result.used_benefits == Decimal("250.00")


@pytest.mark.asyncio
async def test_live_check_with_scalar_plan_maximum_does_not_raise():
    stedi = MagicMock()
    stedi.post_eligibility = AsyncMock(return_value={
        "status": "active",
        "benefits": [{"serviceTypeCode": "35", "planMaximum": 1500}],
        "limitations": [],
    })

    result = await _live_client(stedi).check_eligibility(_request())

    assert result.shape == "normalized"
    assert result.eligible is True
    assert result.annual_maximum is None
    assert result.preventive_coverage == 100


@pytest.mark.asyncio
@pytest.mark.parametrize("error,reason", [
    ("api", "http_error"),
    ("timeout", "timeout"),
    ("transport", "transport_error"),
    ("response", "invalid_response"),
])
async def test_live_failure_is_degraded(error, reason):
    from dental_edi.insurance.eligibility_client import is_degraded
    from dental_edi.insurance.stedi_client import StediAPIError, StediResponseError, StediTransportError

    errors = {
        "api": StediAPIError(502, "bad gateway"),
        "timeout": StediTransportError("timed out", timed_out=True),
        "transport": StediTransportError("connection reset"),
        "response": StediResponseError("not json"),
    }
    stedi = MagicMock()
    stedi.post_eligibility = AsyncMock(side_effect=errors[error])

    result = await _live_client(stedi).check_eligibility(_request())

    assert is_degraded(result)
    assert result.degraded is True
    assert result.reason == reason
    assert result.error
    assert result.fallback.is_mock is True
    assert result.fallback.annual_maximum == Decimal("1500.00")


@pytest.mark.asyncio
async def test_service_check_eligibility_builds_client_from_settings():
    """The facade builds a client from settings when none is supplied."""
    mock_settings = MagicMock()
    mock_settings.STEDI_MODE = "sandbox"
    mock_settings.STEDI_API_KEY = ""
    mock_settings.PROVIDER_NPI = "1999999984"
    mock_settings.PROVIDER_ORGANIZATION_NAME = "Dental Practice"

    with patch("dental_edi.insurance.eligibility_client.get_settings", return_value=mock_settings):
        from dental_edi.insurance.service import check_eligibility
        result = await check_eligibility(_request())

    assert result.is_mock is True

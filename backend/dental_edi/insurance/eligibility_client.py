"""
Dental eligibility (270/271) client.

The operating mode is fixed when the client is built:

  - SANDBOX: no clearinghouse call is made; the canned benefits below are
    returned with ``is_mock=True``.
  - LIVE: the inquiry goes to Stedi.  A transport or API failure is logged
    and returned as a ``DegradedResult`` carrying the canned benefits as
    ``fallback``, so a failed live check is never mistaken for a real answer.
"""

import logging
from decimal import Decimal
from typing import Optional, Union

from dental_edi.config import Settings, get_settings
from dental_edi.insurance.response_parsers import parse_eligibility_response
from dental_edi.insurance.stedi_client import (
    StediAPIError,
    StediClient,
    StediError,
    StediMode,
    StediTransportError,
    generate_control_number,
    resolve_stedi_mode,
)
from dental_edi.schemas.eligibility import (
    DegradedResult,
    EligibilityRequest,
    EligibilityResponse,
)

logger = logging.getLogger(__name__)

DENTAL_SERVICE_TYPE_CODE = "35"


def build_mock_eligibility_response() -> EligibilityResponse:
    """Canned benefits for a typical PPO dental plan."""
    return EligibilityResponse(
        eligible=True,
        shape="mock",
        is_mock=True,
        effective_date="2024-01-01",
        termination_date="2026-12-31",
        annual_maximum=Decimal("1500.00"),
        used_benefits=Decimal("450.00"),
        remaining_benefits=Decimal("1050.00"),
        deductible=Decimal("50.00"),
        deductible_met=Decimal("50.00"),
        out_of_pocket_max=Decimal("2000.00"),
        out_of_pocket_met=Decimal("500.00"),
        preventive_coverage=100,
        basic_coverage=80,
        major_coverage=50,
        orthodontic_coverage=50,
        copay=Decimal("0.00"),
        coinsurance=Decimal("20.00"),
        waiting_periods={
            "basic": "6 months",
            "major": "12 months",
        },
        frequency_limitations={
            "D1110": "2 per year",
            "D0120": "2 per year",
            "D0274": "1 per 3 years",
        },
        raw_response={
            "mock": True,
            "message": "This is mock data. Configure STEDI_API_KEY to use real eligibility checks.",
        },
    )


class EligibilityClient:
    def __init__(
        self,
        mode: StediMode,
        stedi_client: Optional[StediClient] = None,
        provider_npi: str = "1999999984",
        provider_name: str = "Dental Practice",
    ):
        if mode is StediMode.LIVE and stedi_client is None:
            raise ValueError("A StediClient is required in live mode")
        self.mode = mode
        self.stedi_client = stedi_client
        self.provider_npi = provider_npi
        self.provider_name = provider_name

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        stedi_client: Optional[StediClient] = None,
    ) -> "EligibilityClient":
        settings = settings or get_settings()
        mode = resolve_stedi_mode(settings)
        if mode is StediMode.LIVE and stedi_client is None:
            stedi_client = StediClient.from_settings(settings)
        logger.info("Eligibility client using Stedi %s mode", mode.value.upper())
        return cls(
            mode=mode,
            stedi_client=stedi_client,
            provider_npi=settings.PROVIDER_NPI,
            provider_name=settings.PROVIDER_ORGANIZATION_NAME,
        )

    def build_payload(self, request: EligibilityRequest) -> dict:
        """270 inquiry body for Stedi's eligibility v3 endpoint."""
        payload = {
            "controlNumber": generate_control_number(),
            "tradingPartnerServiceId": request.payer_id,
            "provider": {
                "organizationName": request.provider_name or self.provider_name,
                "npi": request.provider_npi or self.provider_npi,
            },
            "subscriber": {
                "memberId": request.member_id.strip(),
                "firstName": request.first_name.strip(),
                "lastName": request.last_name.strip(),
                "dateOfBirth": request.date_of_birth.strftime("%Y%m%d"),
            },
            "encounter": {
                "serviceTypeCodes": [DENTAL_SERVICE_TYPE_CODE],
            },
        }
        if request.service_date:
            payload["encounter"]["dateOfService"] = request.service_date.strftime("%Y%m%d")
        return payload

    async def check_eligibility(
        self, request: EligibilityRequest,
    ) -> Union[EligibilityResponse, DegradedResult]:
        """Check a subscriber's dental benefits.

        Never raises for clearinghouse failures: in live mode those come back
        as a ``DegradedResult``.
        """
        logger.info(
            "Checking eligibility for policy %s (payer=%s, mode=%s)",
            request.policy_id or "-", request.payer_id, self.mode.value,
        )

        if self.mode is StediMode.SANDBOX:
            logger.info("Stedi sandbox mode: returning mock eligibility data")
            return build_mock_eligibility_response()

        payload = self.build_payload(request)
        logger.debug("Stedi eligibility request payload: %s", payload)

        try:
            data = await self.stedi_client.post_eligibility(payload)
        except StediAPIError as exc:
            return self._degraded("http_error", exc)
        except StediTransportError as exc:
            return self._degraded("timeout" if exc.timed_out else "transport_error", exc)
        except StediError as exc:
            return self._degraded("invalid_response", exc)

        logger.debug("Stedi eligibility response: %s", data)
        return parse_eligibility_response(data)

    def _degraded(self, reason: str, exc: Exception) -> DegradedResult:
        logger.error("Live eligibility check failed (%s): %s", reason, exc)
        logger.warning("Returning degraded eligibility result with mock fallback")
        return DegradedResult(
            reason=reason,
            error=str(exc),
            fallback=build_mock_eligibility_response(),
        )


def is_degraded(result: Union[EligibilityResponse, DegradedResult]) -> bool:
    return isinstance(result, DegradedResult)

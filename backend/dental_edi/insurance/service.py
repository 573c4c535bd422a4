"""
Dental insurance EDI service: the entry points the rest of the platform calls.

Prior authorization (278):
  - validate_prior_auth / build_prior_auth / parse_prior_auth_response

Eligibility (270/271):
  - check_eligibility

Remittance (835):
  - poll_remittances / process_remittance / poll_and_process_remittances
  - get_remittance_history

Claim status (276/277):
  - check_claim_status

Remittance functions take the caller's ``AsyncSession`` and only flush; the
caller commits.  All operations are practice-scoped.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from dental_edi.config import get_settings
from dental_edi.insurance import prior_auth_builder
from dental_edi.insurance.code_tables import map_claim_inquiry_status
from dental_edi.insurance.eligibility_client import EligibilityClient
from dental_edi.insurance.remittance_processor import RemittanceProcessor
from dental_edi.insurance.repository import RemittanceRepository, SqlAlchemyRemittanceRepository
from dental_edi.insurance.response_parsers import parse_prior_auth_response as _parse_prior_auth_response
from dental_edi.insurance.stedi_client import StediClient, StediMode, resolve_stedi_mode
from dental_edi.schemas.eligibility import (
    ClaimStatusResponse,
    DegradedResult,
    EligibilityRequest,
    EligibilityResponse,
)
from dental_edi.schemas.prior_auth import (
    PriorAuthBuildResult,
    PriorAuthorizationRequest,
    PriorAuthorizationResponse,
    PriorAuthValidationError,
)
from dental_edi.schemas.remittance import (
    PollAndProcessResult,
    ProcessingResult,
    RemittanceHistoryPage,
    RemittanceTransaction,
)

logger = logging.getLogger(__name__)

# Shared by every processor built in this process so that concurrent
# requests for one practice post ERAs one at a time.
_practice_locks: dict[UUID, asyncio.Lock] = {}


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def _stedi_client_for(mode: StediMode) -> Optional[StediClient]:
    return StediClient.from_settings() if mode is StediMode.LIVE else None


def get_remittance_processor(
    db: Optional[AsyncSession] = None,
    *,
    repository: Optional[RemittanceRepository] = None,
    stedi_client: Optional[StediClient] = None,
    mode: Optional[StediMode] = None,
) -> RemittanceProcessor:
    """Build a processor over the caller's session (or an explicit repository)."""
    if repository is None:
        if db is None:
            raise ValueError("Either db or repository is required")
        repository = SqlAlchemyRemittanceRepository(db)
    mode = mode or resolve_stedi_mode()
    if stedi_client is None:
        stedi_client = _stedi_client_for(mode)
    return RemittanceProcessor(
        repository,
        stedi_client=stedi_client,
        mode=mode,
        lookback_hours=get_settings().ERA_POLL_LOOKBACK_HOURS,
        locks=_practice_locks,
    )


# ---------------------------------------------------------------------------
# 1. Prior authorization (278)
# ---------------------------------------------------------------------------

def validate_prior_auth(request: PriorAuthorizationRequest) -> list[PriorAuthValidationError]:
    return prior_auth_builder.validate_prior_auth(request)


def build_prior_auth(
    request: PriorAuthorizationRequest,
    now: Optional[datetime] = None,
) -> PriorAuthBuildResult:
    """Validate, then build.  An invalid request is never built."""
    errors = prior_auth_builder.validate_prior_auth(request)
    if errors:
        logger.info(
            "Prior auth %s failed validation with %d error(s)",
            request.authorization.request_id or "-", len(errors),
        )
        return PriorAuthBuildResult(errors=errors)
    return PriorAuthBuildResult(payload=prior_auth_builder.build_prior_auth(request, now=now))


def parse_prior_auth_response(raw: Any) -> PriorAuthorizationResponse:
    return _parse_prior_auth_response(raw)


# ---------------------------------------------------------------------------
# 2. Eligibility (270/271)
# ---------------------------------------------------------------------------

async def check_eligibility(
    request: EligibilityRequest,
    client: Optional[EligibilityClient] = None,
) -> Union[EligibilityResponse, DegradedResult]:
    client = client or EligibilityClient.from_settings()
    return await client.check_eligibility(request)


# ---------------------------------------------------------------------------
# 3. Remittance (835)
# ---------------------------------------------------------------------------

async def poll_remittances(
    db: AsyncSession,
    practice_id: UUID,
    since: Optional[datetime] = None,
    processor: Optional[RemittanceProcessor] = None,
) -> list[RemittanceTransaction]:
    processor = processor or get_remittance_processor(db)
    return await processor.poll_for_new(practice_id, since)


async def process_remittance(
    db: AsyncSession,
    practice_id: UUID,
    user_id: Optional[UUID],
    transaction_id: str,
    processor: Optional[RemittanceProcessor] = None,
) -> ProcessingResult:
    processor = processor or get_remittance_processor(db)
    return await processor.process(practice_id, user_id, transaction_id)


async def poll_and_process_remittances(
    db: AsyncSession,
    practice_id: UUID,
    user_id: Optional[UUID],
    since: Optional[datetime] = None,
    processor: Optional[RemittanceProcessor] = None,
) -> PollAndProcessResult:
    logger.info("Polling and processing ERAs for practice %s", practice_id)
    processor = processor or get_remittance_processor(db)
    return await processor.poll_and_process(practice_id, user_id, since)


async def get_remittance_history(
    db: AsyncSession,
    practice_id: UUID,
    limit: int = 50,
    offset: int = 0,
    processor: Optional[RemittanceProcessor] = None,
) -> RemittanceHistoryPage:
    processor = processor or get_remittance_processor(db)
    return await processor.get_history(practice_id, limit=limit, offset=offset)


# ---------------------------------------------------------------------------
# 4. Claim status (276/277)
# ---------------------------------------------------------------------------

def _mock_claim_status() -> ClaimStatusResponse:
    return ClaimStatusResponse(
        control_number="MOCK-CONTROL-NUMBER",
        status="pending",
        status_description="Claim received and pending adjudication",
        last_updated=datetime.now(timezone.utc),
        is_mock=True,
        raw_response={
            "mock": True,
            "message": "This is mock claim status. Configure STEDI_API_KEY for real status checks.",
        },
    )


def _extract_claim_status(data: dict) -> tuple[Optional[str], Optional[str]]:
    """Status category code and description from a 277 response."""
    if data.get("statusCode"):
        return data["statusCode"], data.get("statusDescription")
    for claim in data.get("claims") or []:
        status = (claim or {}).get("claimStatus") or {}
        if status.get("statusCategoryCode"):
            return status["statusCategoryCode"], status.get("statusCategoryCodeValue")
    return None, None


async def check_claim_status(
    claim_control_number: str,
    payer_id: str,
    stedi_client: Optional[StediClient] = None,
    mode: Optional[StediMode] = None,
) -> ClaimStatusResponse:
    """Ask the payer where a submitted claim stands.

    Raises ``StediError`` when a live inquiry fails.
    """
    mode = mode or resolve_stedi_mode()
    logger.info("Checking claim status for control number %s (mode=%s)", claim_control_number, mode.value)

    if mode is StediMode.SANDBOX:
        return _mock_claim_status()

    settings = get_settings()
    stedi_client = stedi_client or StediClient.from_settings(settings)
    data = await stedi_client.check_claim_status(
        claim_control_number,
        payer_id,
        provider_npi=settings.PROVIDER_NPI,
        provider_name=settings.PROVIDER_ORGANIZATION_NAME,
    )

    status_code, description = _extract_claim_status(data)
    return ClaimStatusResponse(
        control_number=claim_control_number,
        status=map_claim_inquiry_status(status_code),
        status_description=description or "Claim submitted",
        last_updated=datetime.now(timezone.utc),
        raw_response=data,
    )

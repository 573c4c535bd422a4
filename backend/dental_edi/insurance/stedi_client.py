"""
Stedi clearinghouse transport.

Thin async wrapper over the Stedi healthcare API:

  POST {base}/change/medicalnetwork/eligibility/v3          270/271
  GET  {base}/polling/transactions?startDateTime=...        inbound listing
  GET  {base}/change/medicalnetwork/reports/v2/{id}/835     835 report
  POST {base}/change/medicalnetwork/claimstatus/v2          276/277

Every call carries a hard timeout and is retried with exponential backoff on
timeouts, transport errors, HTTP 429 and 5xx.  Other 4xx responses are
permanent and raised immediately.  Failures surface as ``StediError``
subclasses; callers decide whether to degrade or skip.
"""

import asyncio
import enum
import logging
import secrets
from datetime import date, datetime, timezone
from typing import Any, Optional

import httpx

from dental_edi.config import SANDBOX_KEY_PREFIX, Settings, get_settings
from dental_edi.utils.http_client import get_http_client

logger = logging.getLogger(__name__)

ELIGIBILITY_PATH = "/change/medicalnetwork/eligibility/v3"
POLLING_PATH = "/polling/transactions"
REPORT_835_PATH = "/change/medicalnetwork/reports/v2/{transaction_id}/835"
CLAIM_STATUS_PATH = "/change/medicalnetwork/claimstatus/v2"


class StediMode(str, enum.Enum):
    LIVE = "live"
    SANDBOX = "sandbox"


def resolve_stedi_mode(settings: Optional[Settings] = None) -> StediMode:
    """STEDI_MODE when set, otherwise sandbox for a missing or ``test_`` key."""
    settings = settings or get_settings()
    explicit = settings.STEDI_MODE.strip().lower()
    if explicit:
        return StediMode(explicit)
    api_key = settings.STEDI_API_KEY
    if not api_key or api_key.startswith(SANDBOX_KEY_PREFIX):
        return StediMode.SANDBOX
    return StediMode.LIVE


class StediError(Exception):
    """Base class for clearinghouse failures."""


class StediAPIError(StediError):
    """Stedi answered with a non-success HTTP status."""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Stedi API returned HTTP {status_code}: {body[:200]}")


class StediTransportError(StediError):
    """The request never produced an HTTP response (timeout, DNS, reset)."""

    def __init__(self, message: str, timed_out: bool = False):
        self.timed_out = timed_out
        super().__init__(message)


class StediResponseError(StediError):
    """Stedi answered 2xx but the body was not a JSON object."""


def generate_control_number() -> str:
    """9-digit control number for 270/276 inquiries."""
    return str(secrets.randbelow(10**9)).zfill(9)


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class StediClient:
    """Async client for the Stedi healthcare endpoints.

    ``http_client`` defaults to the process-wide shared client; tests pass an
    ``AsyncMock(spec=httpx.AsyncClient)``.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://healthcare.us.stedi.com/2024-04-01",
        timeout: float = 15.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = httpx.Timeout(timeout, connect=min(5.0, timeout))
        self.max_retries = max(0, max_retries)
        self.backoff_seconds = backoff_seconds
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "StediClient":
        settings = settings or get_settings()
        return cls(
            api_key=settings.STEDI_API_KEY,
            base_url=settings.STEDI_BASE_URL,
            timeout=settings.STEDI_TIMEOUT_SECONDS,
            max_retries=settings.STEDI_MAX_RETRIES,
            backoff_seconds=settings.STEDI_RETRY_BACKOFF_SECONDS,
            **kwargs,
        )

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._http_client or get_http_client()

    def _headers(self) -> dict:
        return {
            "Authorization": f"Key {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        attempts = self.max_retries + 1
        last_error: Optional[StediError] = None

        for attempt in range(attempts):
            try:
                response = await self.http_client.request(
                    method,
                    url,
                    json=json,
                    params=params,
                    headers=self._headers(),
                    timeout=self.timeout,
                )
            except httpx.TimeoutException as exc:
                last_error = StediTransportError(f"Stedi request timed out: {method} {path}", timed_out=True)
                logger.warning(
                    "Stedi %s %s timed out (attempt %d/%d): %s",
                    method, path, attempt + 1, attempts, type(exc).__name__,
                )
            except httpx.HTTPError as exc:
                last_error = StediTransportError(f"Stedi transport error: {exc}")
                logger.warning(
                    "Stedi %s %s transport error (attempt %d/%d): %s",
                    method, path, attempt + 1, attempts, exc,
                )
            else:
                logger.debug("Stedi %s %s -> %s", method, path, response.status_code)

                if response.is_success:
                    try:
                        return response.json()
                    except ValueError as exc:
                        raise StediResponseError(f"Stedi returned a non-JSON body for {path}") from exc

                last_error = StediAPIError(response.status_code, response.text)
                if not _is_retryable_status(response.status_code):
                    # Other 4xx client errors are permanent; don't retry
                    logger.error(
                        "Stedi %s %s returned %d: %s",
                        method, path, response.status_code, response.text[:200],
                    )
                    raise last_error
                logger.warning(
                    "Stedi %s %s returned %d (attempt %d/%d)",
                    method, path, response.status_code, attempt + 1, attempts,
                )

            # Exponential back-off before retry (1s, 2s, 4s, ...)
            if attempt < attempts - 1:
                await asyncio.sleep(self.backoff_seconds * (2 ** attempt))

        logger.error("Stedi %s %s failed after %d attempts: %s", method, path, attempts, last_error)
        raise last_error

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def post_eligibility(self, payload: dict) -> dict:
        """Send a 270 inquiry and return Stedi's 271 JSON."""
        data = await self._request("POST", ELIGIBILITY_PATH, json=payload)
        if not isinstance(data, dict):
            raise StediResponseError("Eligibility response was not a JSON object")
        return data

    async def poll_transactions(self, start_datetime: datetime) -> list[dict]:
        """List transactions processed since ``start_datetime``."""
        if start_datetime.tzinfo is None:
            start_datetime = start_datetime.replace(tzinfo=timezone.utc)
        data = await self._request(
            "GET",
            POLLING_PATH,
            params={"startDateTime": start_datetime.isoformat()},
        )
        if not isinstance(data, dict):
            raise StediResponseError("Polling response was not a JSON object")
        return [tx for tx in data.get("items") or data.get("transactions") or [] if isinstance(tx, dict)]

    async def fetch_835(self, transaction_id: str) -> dict:
        """Fetch the 835 report JSON for one inbound transaction."""
        data = await self._request("GET", REPORT_835_PATH.format(transaction_id=transaction_id))
        if not isinstance(data, dict):
            raise StediResponseError(f"835 report for {transaction_id} was not a JSON object")
        return data

    async def check_claim_status(
        self,
        claim_control_number: str,
        payer_id: str,
        provider_npi: Optional[str] = None,
        provider_name: Optional[str] = None,
    ) -> dict:
        """Send a 276 claim status inquiry and return Stedi's 277 JSON."""
        payload = {
            "controlNumber": generate_control_number(),
            "tradingPartnerServiceId": payer_id,
            "claimControlNumber": claim_control_number,
            "submissionDate": date.today().strftime("%Y%m%d"),
        }
        if provider_npi:
            payload["providers"] = [{
                "organizationName": provider_name,
                "npi": provider_npi,
                "providerType": "BillingProvider",
            }]
        data = await self._request("POST", CLAIM_STATUS_PATH, json=payload)
        if not isinstance(data, dict):
            raise StediResponseError("Claim status response was not a JSON object")
        return data

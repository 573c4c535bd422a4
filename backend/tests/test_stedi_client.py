"""
Tests for the Stedi transport: retry policy, error classification and endpoint payloads.
The HTTP client is an AsyncMock(spec=httpx.AsyncClient); back-off sleeps are patched out.
"""
import pytest
from datetime import datetime
from unittest.mock import patch, AsyncMock, MagicMock
import httpx

SLEEP_TARGET = "dental_edi.insurance.stedi_client.asyncio.sleep"


def _response(status_code, json=None, text=None):
    kwargs = {"json": json} if json is not None else {"text": text or ""}
    return httpx.Response(status_code, request=httpx.Request("POST", "https://example.com"), **kwargs)


def _client(mock_http, **kwargs):
    from dental_edi.insurance.stedi_client import StediClient
    kwargs.setdefault("max_retries", 3)
    kwargs.setdefault("backoff_seconds", 1.0)
    return StediClient(api_key="live_key_123", base_url="https://stedi.test/2024-04-01",
                       http_client=mock_http, **kwargs)


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_success_on_first_attempt():
    mock_http = AsyncMock(spec=httpx.AsyncClient)
    mock_http.request.return_value = _response(200, json={"planStatus": []})

    with patch(SLEEP_TARGET, new_callable=AsyncMock) as mock_sleep:
        data = await _client(mock_http).post_eligibility({"controlNumber": "123456789"})

    assert data == {"planStatus": []}
    assert mock_http.request.await_count == 1
    mock_sleep.assert_not_awaited()

    args, kwargs = mock_http.request.call_args
    assert args == ("POST", "https://stedi.test/2024-04-01/change/medicalnetwork/eligibility/v3")
    assert kwargs["headers"]["Authorization"] == "Key live_key_123"
    assert kwargs["json"] == {"controlNumber": "123456789"}


@pytest.mark.asyncio
async def test_retries_503_with_exponential_backoff():
    mock_http = AsyncMock(spec=httpx.AsyncClient)
    mock_http.request.side_effect = [
        _response(503, text="unavailable"),
        _response(503, text="unavailable"),
        _response(200, json={"ok": True}),
    ]

    with patch(SLEEP_TARGET, new_callable=AsyncMock) as mock_sleep:
        data = await _client(mock_http).post_eligibility({})

    assert data == {"ok": True}
    assert mock_http.request.await_count == 3
    assert [c.args[0] for c in mock_sleep.await_args_list] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retries_429_then_gives_up():
    from dental_edi.insurance.stedi_client import StediAPIError

    mock_http = AsyncMock(spec=httpx.AsyncClient)
    mock_http.request.return_value = _response(429, text="slow down")

    with patch(SLEEP_TARGET, new_callable=AsyncMock) as mock_sleep:
        with pytest.raises(StediAPIError) as exc_info:
            await _client(mock_http, max_retries=2).post_eligibility({})

    assert exc_info.value.status_code == 429
    assert mock_http.request.await_count == 3
    assert [c.args[0] for c in mock_sleep.await_args_list] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_client_error_is_not_retried():
    from dental_edi.insurance.stedi_client import StediAPIError

    mock_http = AsyncMock(spec=httpx.AsyncClient)
    mock_http.request.return_value = _response(400, text="bad payer id")

    with patch(SLEEP_TARGET, new_callable=AsyncMock) as mock_sleep:
        with pytest.raises(StediAPIError) as exc_info:
            await _client(mock_http).post_eligibility({})

    assert exc_info.value.status_code == 400
    assert "bad payer id" in exc_info.value.body
    assert mock_http.request.await_count == 1
    mock_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_timeout_retried_then_raised_as_transport_error():
    from dental_edi.insurance.stedi_client import StediTransportError

    mock_http = AsyncMock(spec=httpx.AsyncClient)
    mock_http.request.side_effect = httpx.ReadTimeout("timed out")

    with patch(SLEEP_TARGET, new_callable=AsyncMock):
        with pytest.raises(StediTransportError) as exc_info:
            await _client(mock_http, max_retries=1).post_eligibility({})

    assert exc_info.value.timed_out is True
    assert mock_http.request.await_count == 2


@pytest.mark.asyncio
async def test_connection_error_recovers():
    mock_http = AsyncMock(spec=httpx.AsyncClient)
    mock_http.request.side_effect = [
        httpx.ConnectError("connection refused"),
        _response(200, json={"ok": True}),
    ]

    with patch(SLEEP_TARGET, new_callable=AsyncMock):
        data = await _client(mock_http).post_eligibility({})

    assert data == {"ok": True}


@pytest.mark.asyncio
async def test_non_json_body_raises_response_error():
    from dental_edi.insurance.stedi_client import StediResponseError

    mock_http = AsyncMock(spec=httpx.AsyncClient)
    mock_http.request.return_value = _response(200, text="<html>gateway</html>")

    with pytest.raises(StediResponseError):
        await _client(mock_http).post_eligibility({})


@pytest.mark.asyncio
async def test_non_object_eligibility_body_rejected():
    from dental_edi.insurance.stedi_client import StediResponseError

    mock_http = AsyncMock(spec=httpx.AsyncClient)
    mock_http.request.return_value = _response(200, json=[1, 2, 3])

    with pytest.raises(StediResponseError):
        await _client(mock_http).post_eligibility({})


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_poll_transactions_passes_start_time():
    mock_http = AsyncMock(spec=httpx.AsyncClient)
    mock_http.request.return_value = _response(200, json={"items": [{"transactionId": "TX-1"}, "junk"]})

    items = await _client(mock_http).poll_transactions(datetime(2024, 3, 1, 12, 0))

    assert items == [{"transactionId": "TX-1"}]
    args, kwargs = mock_http.request.call_args
    assert args == ("GET", "https://stedi.test/2024-04-01/polling/transactions")
    assert kwargs["params"] == {"startDateTime": "2024-03-01T12:00:00+00:00"}


@pytest.mark.asyncio
async def test_fetch_835_url():
    mock_http = AsyncMock(spec=httpx.AsyncClient)
    mock_http.request.return_value = _response(200, json={"transactions": []})

    await _client(mock_http).fetch_835("TX-9")

    args, _ = mock_http.request.call_args
    assert args == ("GET", "https://stedi.test/2024-04-01/change/medicalnetwork/reports/v2/TX-9/835")


@pytest.mark.asyncio
async def test_claim_status_payload():
    mock_http = AsyncMock(spec=httpx.AsyncClient)
    mock_http.request.return_value = _response(200, json={"claims": []})

    await _client(mock_http).check_claim_status("CLM-001", "DDCA1", provider_npi="1234567893",
                                                provider_name="Bright Smiles")

    payload = mock_http.request.call_args.kwargs["json"]
    assert payload["tradingPartnerServiceId"] == "DDCA1"
    assert payload["claimControlNumber"] == "CLM-001"
    assert len(payload["controlNumber"]) == 9
    assert payload["providers"][0]["npi"] == "1234567893"


def test_generate_control_number_is_nine_digits():
    from dental_edi.insurance.stedi_client import generate_control_number
    for _ in range(20):
        number = generate_control_number()
        assert len(number) == 9 and number.isdigit()


# ---------------------------------------------------------------------------
# Mode resolution
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("mode,key,expected", [
    ("", "", "sandbox"),
    ("", "test_abc", "sandbox"),
    ("", "live_abc", "live"),
    ("sandbox", "live_abc", "sandbox"),
    ("LIVE", "live_abc", "live"),
])
def test_resolve_stedi_mode(mode, key, expected):
    from dental_edi.insurance.stedi_client import resolve_stedi_mode

    mock_settings = MagicMock()
    mock_settings.STEDI_MODE = mode
    mock_settings.STEDI_API_KEY = key
    assert resolve_stedi_mode(mock_settings).value == expected


def test_from_settings_reads_timeouts():
    from dental_edi.insurance.stedi_client import StediClient

    mock_settings = MagicMock()
    mock_settings.STEDI_API_KEY = "live_abc"
    mock_settings.STEDI_BASE_URL = "https://stedi.test/"
    mock_settings.STEDI_TIMEOUT_SECONDS = 8.0
    mock_settings.STEDI_MAX_RETRIES = 2
    mock_settings.STEDI_RETRY_BACKOFF_SECONDS = 0.5

    client = StediClient.from_settings(mock_settings)

    assert client.base_url == "https://stedi.test"
    assert client.timeout.read == 8.0
    assert client.max_retries == 2
    assert client.backoff_seconds == 0.5


# ---------------------------------------------------------------------------
# Shared HTTP client
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_shared_http_client_reused_until_closed():
    from dental_edi.utils.http_client import close_http_client, get_http_client

    first = get_http_client()
    assert get_http_client() is first

    await close_http_client()
    assert first.is_closed

    second = get_http_client()
    assert second is not first
    await close_http_client()


def test_stedi_client_defaults_to_shared_http_client():
    from dental_edi.insurance.stedi_client import StediClient
    from dental_edi.utils.http_client import get_http_client

    client = StediClient(api_key="live_abc")
    assert client.http_client is get_http_client()

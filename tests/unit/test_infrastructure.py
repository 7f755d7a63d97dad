"""Unit tests for the infrastructure layer: HTTP client, retry, SMS and email."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from config import EmailSettings, SmsSettings
from errors import ConfigurationError
from infrastructure.email.zeptomail import ZeptoMailProvider
from infrastructure.http_client import HttpClient, is_success
from infrastructure.retry import backoff_delay, retry_with_backoff
from infrastructure.sms.textpe import TextPeSmsProvider
from schemas.models.otp import OtpPurpose


# ── Helpers ───────────────────────────────────────────────────────────────────


class _Sleeper:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _sms_settings(**overrides) -> SmsSettings:
    base = dict(
        smartping_api_key="test-key",
        dispatch_max_attempts=3,
        dispatch_base_delay_seconds=1.0,
        dispatch_max_delay_seconds=5.0,
    )
    base.update(overrides)
    return SmsSettings(**base)


# ── HttpClient ────────────────────────────────────────────────────────────────


class TestHttpClient:
    async def test_post_delegates_to_httpx(self, mocker):
        client = HttpClient()
        fake_resp = MagicMock(status_code=200)
        mocker.patch.object(client._client, "post", return_value=fake_resp)
        resp = await client.post("http://example.com")
        assert resp.status_code == 200
        await client.aclose()

    async def test_get_delegates_to_httpx(self, mocker):
        client = HttpClient()
        fake_resp = MagicMock(status_code=200)
        mocker.patch.object(client._client, "get", return_value=fake_resp)
        resp = await client.get("http://example.com")
        assert resp.status_code == 200
        await client.aclose()

    async def test_get_propagates_exception(self, mocker):
        client = HttpClient()
        mocker.patch.object(
            client._client, "get", side_effect=httpx.ConnectTimeout("timeout")
        )
        with pytest.raises(httpx.ConnectTimeout, match="timeout"):
            await client.get("http://example.com")
        await client.aclose()

    async def test_context_manager(self):
        async with HttpClient(timeout=10.0) as client:
            assert client.timeout == 10.0

    @pytest.mark.parametrize(
        "status, expected", [(200, True), (201, True), (302, False), (500, False)]
    )
    def test_is_success(self, status, expected):
        assert is_success(httpx.Response(status)) is expected


# ── Retry ─────────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "attempt, expected", [(1, 1.0), (2, 2.0), (3, 4.0), (4, 5.0), (10, 5.0)]
)
def test_backoff_delay_is_capped_exponential(attempt, expected):
    assert backoff_delay(attempt, base_delay=1.0, max_delay=5.0) == expected


class TestRetryWithBackoff:
    async def test_first_success_does_not_sleep(self):
        sleep = _Sleeper()
        fn = AsyncMock(return_value=True)
        ok = await retry_with_backoff(
            fn, max_attempts=3, base_delay=1, max_delay=5, operation="t", sleep=sleep
        )
        assert ok is True
        fn.assert_awaited_once_with(1)
        assert sleep.delays == []

    async def test_succeeds_on_third_attempt(self):
        sleep = _Sleeper()
        fn = AsyncMock(side_effect=[False, False, True])
        ok = await retry_with_backoff(
            fn, max_attempts=3, base_delay=1, max_delay=5, operation="t", sleep=sleep
        )
        assert ok is True
        assert fn.await_count == 3
        assert sleep.delays == [1, 2]

    async def test_exhausted_returns_false_without_trailing_sleep(self):
        sleep = _Sleeper()
        fn = AsyncMock(return_value=False)
        ok = await retry_with_backoff(
            fn, max_attempts=4, base_delay=1, max_delay=3, operation="t", sleep=sleep
        )
        assert ok is False
        assert fn.await_count == 4
        assert sleep.delays == [1, 2, 3]

    async def test_exception_counts_as_failed_attempt(self):
        sleep = _Sleeper()
        fn = AsyncMock(side_effect=[httpx.ReadTimeout("slow"), True])
        ok = await retry_with_backoff(
            fn, max_attempts=2, base_delay=1, max_delay=5, operation="t", sleep=sleep
        )
        assert ok is True
        assert sleep.delays == [1]

    async def test_exception_on_every_attempt_never_escapes(self):
        fn = AsyncMock(side_effect=httpx.ConnectError("down"))
        ok = await retry_with_backoff(
            fn, max_attempts=3, base_delay=0, max_delay=0, operation="t", sleep=_Sleeper()
        )
        assert ok is False


# ── TextPeSmsProvider ─────────────────────────────────────────────────────────


class TestTextPeSmsProvider:
    def _make(self, handler, **overrides):
        calls: list[httpx.Request] = []

        def recording(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return handler(request)

        http = HttpClient(timeout=10.0, transport=httpx.MockTransport(recording))
        sleep = _Sleeper()
        provider = TextPeSmsProvider(
            _sms_settings(**overrides), http, validity_minutes=10, sleep=sleep
        )
        return provider, calls, sleep

    def test_message_template(self):
        provider, _, _ = self._make(lambda r: httpx.Response(200))
        assert provider.render_message("482913") == (
            "Your OTP for verification with Colourstop Solutions is 482913. "
            "Do not share this code. It is valid for 10 minutes only."
        )

    async def test_sends_gateway_parameters(self):
        provider, calls, sleep = self._make(lambda r: httpx.Response(200, text="OK"))
        assert await provider.send_otp("+91 98765-43210", "482913") is True
        assert len(calls) == 1
        request = calls[0]
        assert request.method == "GET"
        assert request.url.host == "sms.textpe.in"
        params = request.url.params
        assert params["APIKey"] == "test-key"
        assert params["senderid"] == "CSPLSC"
        assert params["channel"] == "2"
        assert params["DCS"] == "0"
        assert params["flashsms"] == "0"
        assert params["route"] == "clickhere"
        assert params["number"] == "919876543210"
        assert "482913" in params["text"]
        assert sleep.delays == []

    async def test_retries_non_2xx_then_succeeds(self):
        responses = iter([httpx.Response(503), httpx.Response(200)])
        provider, calls, sleep = self._make(lambda r: next(responses))
        assert await provider.send_otp("9876543210", "111111") is True
        assert len(calls) == 2
        assert sleep.delays == [1.0]

    async def test_returns_false_after_all_attempts(self):
        provider, calls, sleep = self._make(lambda r: httpx.Response(500))
        assert await provider.send_otp("9876543210", "111111") is False
        assert len(calls) == 3
        assert sleep.delays == [1.0, 2.0]

    async def test_transport_error_is_a_failed_attempt(self):
        def boom(request):
            raise httpx.ConnectError("refused", request=request)

        provider, calls, _ = self._make(boom, dispatch_max_attempts=2)
        assert await provider.send_otp("9876543210", "111111") is False
        assert len(calls) == 2

    async def test_missing_api_key_raises_configuration_error(self):
        provider, calls, _ = self._make(
            lambda r: httpx.Response(200), smartping_api_key=""
        )
        with pytest.raises(ConfigurationError):
            await provider.send_otp("9876543210", "111111")
        assert calls == []


# ── ZeptoMailProvider ─────────────────────────────────────────────────────────


class TestZeptoMailProvider:
    def _make(self, token="test-token", attempts=3):
        settings = EmailSettings(
            zepto_api_token=token,
            zepto_from_email="noreply@scan2card.com",
            zepto_from_name="Scan2Card",
            email_max_attempts=attempts,
        )
        http = MagicMock()
        sleep = _Sleeper()
        provider = ZeptoMailProvider(
            settings=settings, http_client=http, validity_minutes=10, sleep=sleep
        )
        return provider, http, sleep

    async def test_send_otp_email_makes_post(self):
        provider, http, _ = self._make()
        http.post = AsyncMock(return_value=MagicMock(status_code=200))
        result = await provider.send_otp_email(
            "user@example.com", "Alice", "123456", OtpPurpose.LOGIN
        )
        assert result is True
        http.post.assert_awaited_once()
        _, kwargs = http.post.call_args
        payload = kwargs["json"]
        assert payload["to"][0]["email_address"]["address"] == "user@example.com"
        assert "123456" in payload["htmlbody"]
        assert "123456" in payload["textbody"]

    @pytest.mark.parametrize(
        "purpose, subject",
        [
            (OtpPurpose.FORGOT_PASSWORD, "Scan2Card - Password Reset OTP"),
            (OtpPurpose.VERIFICATION, "Scan2Card - Verify your account"),
            (OtpPurpose.LOGIN, "Scan2Card - Your login code"),
        ],
    )
    def test_subject_per_purpose(self, purpose, subject):
        provider, _, _ = self._make()
        rendered_subject, html, _ = provider.render_otp_email("Bob", "654321", purpose)
        assert rendered_subject == subject
        assert "654321" in html
        assert "Valid for 10 minutes" in html

    def test_user_name_is_escaped(self):
        provider, _, _ = self._make()
        _, html, _ = provider.render_otp_email("<b>x</b>", "654321", OtpPurpose.LOGIN)
        assert "<b>x</b>" not in html
        assert "&lt;b&gt;" in html

    async def test_missing_token_raises_configuration_error(self):
        provider, http, _ = self._make(token="")
        http.post = AsyncMock()
        with pytest.raises(ConfigurationError):
            await provider.send_otp_email("u@e.com", None, "000000", OtpPurpose.LOGIN)
        http.post.assert_not_awaited()

    async def test_returns_false_on_non_2xx_after_retries(self):
        provider, http, sleep = self._make(attempts=2)
        http.post = AsyncMock(return_value=MagicMock(status_code=422, text="Unprocessable"))
        assert (
            await provider.send_otp_email("u@e.com", None, "000000", OtpPurpose.LOGIN)
            is False
        )
        assert http.post.await_count == 2
        assert sleep.delays == [1.0]

    async def test_returns_false_on_exception(self):
        provider, http, _ = self._make(attempts=1)
        http.post = AsyncMock(side_effect=httpx.ReadTimeout("timeout"))
        assert (
            await provider.send_otp_email("u@e.com", None, "000000", OtpPurpose.LOGIN)
            is False
        )

    async def test_auth_header_prepends_prefix(self):
        provider, http, _ = self._make(token="rawtoken")
        http.post = AsyncMock(return_value=MagicMock(status_code=200))
        await provider.send_otp_email("u@e.com", "Alice", "123456", OtpPurpose.LOGIN)
        _, kwargs = http.post.call_args
        assert kwargs["headers"]["Authorization"] == "Zoho-enczapikey rawtoken"

    async def test_auth_header_not_double_prefixed(self):
        provider, http, _ = self._make(token="Zoho-enczapikey alreadyprefixed")
        http.post = AsyncMock(return_value=MagicMock(status_code=201))
        await provider.send_otp_email("u@e.com", None, "654321", OtpPurpose.FORGOT_PASSWORD)
        _, kwargs = http.post.call_args
        assert kwargs["headers"]["Authorization"].count("Zoho-enczapikey") == 1

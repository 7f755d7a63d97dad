"""TextPe (SmartPing) implementation of SmsProvider.

The gateway is a single HTTP GET carrying the API key, DLT sender routing
parameters and the message text as query parameters. The message text must
match the template registered with the regulator byte for byte, so only the
code, brand and validity window are interpolated.

Delivery failures (non-2xx, transport errors, timeouts) are retried with
capped exponential backoff and reported as False. A missing API key is a
deployment defect and raises ConfigurationError instead.
"""

from __future__ import annotations

import asyncio

from config import SmsSettings
from errors import ConfigurationError
from infrastructure.http_client import HttpClient, is_success
from infrastructure.retry import Sleep, retry_with_backoff
from shared.logging import get_logger
from shared.validators import normalize_phone_number

log = get_logger(__name__)

OTP_SMS_TEMPLATE = (
    "Your OTP for verification with {brand} is {otp_code}. "
    "Do not share this code. It is valid for {minutes} minutes only."
)


class TextPeSmsProvider:
    def __init__(
        self,
        settings: SmsSettings,
        http_client: HttpClient,
        validity_minutes: int = 10,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._http = http_client
        self._validity_minutes = validity_minutes
        self._sleep = sleep

    def render_message(self, otp_code: str) -> str:
        return OTP_SMS_TEMPLATE.format(
            brand=self._settings.sms_brand_name,
            otp_code=otp_code,
            minutes=self._validity_minutes,
        )

    def _build_params(self, destination: str, text: str) -> dict[str, str]:
        s = self._settings
        return {
            "APIKey": s.smartping_api_key,
            "senderid": s.sms_sender_id,
            "channel": s.sms_channel,
            "DCS": s.sms_dcs,
            "flashsms": s.sms_flash,
            "number": destination,
            "text": text,
            "route": s.sms_route,
        }

    async def send_otp(self, phone_number: str, otp_code: str) -> bool:
        if not self._settings.is_configured:
            log.error("sms_send_failed", reason="api_key_not_configured")
            raise ConfigurationError(
                "SMS gateway is not configured (SMARTPING_APIKEY missing)"
            )

        destination = normalize_phone_number(
            phone_number, self._settings.sms_country_code
        )
        params = self._build_params(destination, self.render_message(otp_code))
        max_attempts = self._settings.dispatch_max_attempts

        async def attempt(n: int) -> bool:
            log.debug(
                "sms_send_attempt",
                destination=destination,
                attempt=n,
                max_attempts=max_attempts,
            )
            response = await self._http.get(self._settings.sms_api_url, params=params)
            if is_success(response):
                log.info("sms_sent_success", destination=destination, attempt=n)
                return True
            log.warning(
                "sms_send_rejected",
                destination=destination,
                attempt=n,
                status_code=response.status_code,
                response=response.text[:200],
            )
            return False

        return await retry_with_backoff(
            attempt,
            max_attempts=max_attempts,
            base_delay=self._settings.dispatch_base_delay_seconds,
            max_delay=self._settings.dispatch_max_delay_seconds,
            operation="sms_send",
            sleep=self._sleep,
        )

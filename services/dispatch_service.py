"""
Dispatch gateway: routes an OTP to the phone or email provider.

Returns the provider's boolean delivery result. The only exception that
leaves this layer is ConfigurationError, for a channel without a provider
or without credentials.
"""

from __future__ import annotations

from typing import Optional

from errors import ConfigurationError
from infrastructure.email.protocol import EmailProvider
from infrastructure.sms.protocol import SmsProvider
from schemas.models.otp import OtpChannel, OtpPurpose
from shared.logging import get_logger

log = get_logger(__name__)


class OtpDispatcher:
    def __init__(
        self,
        sms_provider: Optional[SmsProvider] = None,
        email_provider: Optional[EmailProvider] = None,
    ) -> None:
        self._sms = sms_provider
        self._email = email_provider

    async def send(
        self,
        channel: OtpChannel,
        destination: str,
        otp_code: str,
        purpose: OtpPurpose,
        user_name: Optional[str] = None,
    ) -> bool:
        match OtpChannel(channel):
            case OtpChannel.PHONE:
                if self._sms is None:
                    raise ConfigurationError("No SMS provider configured")
                delivered = await self._sms.send_otp(destination, otp_code)
            case OtpChannel.EMAIL:
                if self._email is None:
                    raise ConfigurationError("No email provider configured")
                delivered = await self._email.send_otp_email(
                    destination, user_name, otp_code, OtpPurpose(purpose)
                )

        log.info(
            "otp_dispatched" if delivered else "otp_dispatch_failed",
            channel=OtpChannel(channel).value,
            purpose=OtpPurpose(purpose).value,
            destination=destination,
        )
        return delivered

"""SmsProvider protocol: services depend on this, not the concrete implementation."""

from typing import Protocol


class SmsProvider(Protocol):
    async def send_otp(self, phone_number: str, otp_code: str) -> bool: ...

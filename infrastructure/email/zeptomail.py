"""ZeptoMail implementation of EmailProvider.

- async httpx via HttpClient, one request per attempt
- injected EmailSettings, no module-level os.getenv
- HTML body rendered from templates/emails/otp.html with Jinja2, plaintext
  body built inline for clients without HTML support
- own retry policy (email_max_attempts), independent of the SMS channel
"""

from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import EmailSettings
from errors import ConfigurationError
from infrastructure.http_client import HttpClient, is_success
from infrastructure.retry import Sleep, retry_with_backoff
from schemas.models.otp import OtpPurpose
from shared.logging import get_logger

log = get_logger(__name__)

_ZEPTO_API_URL = "https://api.zeptomail.in/v1.1/email"
_DEFAULT_TEMPLATE_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
    "templates",
    "emails",
)

# (subject, heading, intro line) per purpose
_PURPOSE_COPY: dict[OtpPurpose, tuple[str, str, str]] = {
    OtpPurpose.LOGIN: (
        "Your login code",
        "Login Verification",
        "Use the following code to finish signing in:",
    ),
    OtpPurpose.VERIFICATION: (
        "Verify your account",
        "Account Verification",
        "Use the following code to verify your account:",
    ),
    OtpPurpose.FORGOT_PASSWORD: (
        "Password Reset OTP",
        "Password Reset",
        "You have requested to reset your password. "
        "Please use the following code to verify your identity:",
    ),
    OtpPurpose.ENABLE_2FA: (
        "Enable two-factor authentication",
        "Two-Factor Authentication",
        "Use the following code to enable two-factor authentication:",
    ),
    OtpPurpose.DISABLE_2FA: (
        "Disable two-factor authentication",
        "Two-Factor Authentication",
        "Use the following code to disable two-factor authentication:",
    ),
}


class ZeptoMailProvider:
    def __init__(
        self,
        settings: EmailSettings,
        http_client: HttpClient,
        validity_minutes: int = 10,
        template_dir: str = _DEFAULT_TEMPLATE_DIR,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._http = http_client
        self._validity_minutes = validity_minutes
        self._sleep = sleep
        self._jinja = Environment(
            loader=FileSystemLoader(template_dir),
            autoescape=select_autoescape(["html", "xml"]),
        )

    def _build_payload(
        self,
        to_email: str,
        to_name: Optional[str],
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> dict:
        payload: dict = {
            "from": {
                "address": self._settings.zepto_from_email,
                "name": self._settings.zepto_from_name,
            },
            "to": [
                {
                    "email_address": {
                        "address": to_email,
                        "name": to_name or to_email,
                    }
                }
            ],
            "subject": subject,
            "htmlbody": html_body,
        }
        if text_body:
            payload["textbody"] = text_body
        return payload

    def _auth_header(self) -> str:
        token = self._settings.zepto_api_token
        if not token.startswith("Zoho-enczapikey "):
            token = f"Zoho-enczapikey {token}"
        return token

    async def send(
        self,
        to_email: str,
        to_name: Optional[str],
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> bool:
        if not self._settings.zepto_api_token:
            log.error("email_send_failed", reason="token_not_configured")
            raise ConfigurationError(
                "Email transport is not configured (ZEPTO_API_TOKEN missing)"
            )

        payload = self._build_payload(to_email, to_name, subject, html_body, text_body)
        headers = {"Authorization": self._auth_header(), "Content-Type": "application/json"}

        async def attempt(n: int) -> bool:
            response = await self._http.post(_ZEPTO_API_URL, json=payload, headers=headers)
            if is_success(response):
                log.info("email_sent_success", to_email=to_email, subject=subject, attempt=n)
                return True
            log.warning(
                "email_send_rejected",
                to_email=to_email,
                subject=subject,
                attempt=n,
                status_code=response.status_code,
                response=response.text[:200],
            )
            return False

        return await retry_with_backoff(
            attempt,
            max_attempts=self._settings.email_max_attempts,
            base_delay=self._settings.email_base_delay_seconds,
            max_delay=self._settings.email_max_delay_seconds,
            operation="email_send",
            sleep=self._sleep,
        )

    def render_otp_email(
        self, user_name: Optional[str], otp_code: str, purpose: OtpPurpose
    ) -> tuple[str, str, str]:
        """Return (subject, html_body, text_body) for an OTP email."""
        subject, heading, intro = _PURPOSE_COPY[OtpPurpose(purpose)]
        brand = self._settings.zepto_from_name
        year = datetime.now(timezone.utc).year

        template = self._jinja.get_template("otp.html")
        html_body = template.render(
            brand=brand,
            heading=heading,
            intro=intro,
            otp_code=otp_code,
            user_name=user_name,
            validity_minutes=self._validity_minutes,
            year=year,
        )
        text_body = (
            f"{brand} - {heading}\n\n"
            f"Hello{f' {user_name}' if user_name else ''},\n\n"
            f"{intro}\n\n"
            f"Your One-Time Password (OTP): {otp_code}\n\n"
            f"This code is valid for {self._validity_minutes} minutes.\n\n"
            f"Do not share this code with anyone. If you didn't request this "
            f"code, please ignore this email.\n\n"
            f"© {year} {brand}. All rights reserved."
        )
        return f"{brand} - {subject}", html_body, text_body

    async def send_otp_email(
        self,
        email: str,
        user_name: Optional[str],
        otp_code: str,
        purpose: OtpPurpose,
    ) -> bool:
        subject, html_body, text_body = self.render_otp_email(user_name, otp_code, purpose)
        return await self.send(email, user_name, subject, html_body, text_body)

"""
Verification router: one entry point for every verifiable OTP purpose.

login            → LoginVerified; the caller issues the session tokens
verification     → user marked verified (idempotent) → AccountVerified
forgot_password  → reset-verification token attached to the consumed
                   record → PasswordResetVerified; password unchanged
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from bson import ObjectId

from errors import ValidationError
from repositories.otp_repository import OtpRepository
from repositories.user_repository import UserRepository
from schemas.dto.responses.auth import (
    AccountVerified,
    LoginVerified,
    PasswordResetVerified,
    VerificationResult,
)
from schemas.models.otp import VERIFIABLE_PURPOSES, OtpPurpose
from services.otp_service import OtpService, OtpVerification
from services.token_service import TokenService
from shared.datetime_utils import utc_now
from shared.logging import get_logger

log = get_logger(__name__)


def parse_purpose(value: str) -> OtpPurpose:
    """Map a caller-supplied purpose onto one the router can verify."""
    try:
        purpose = OtpPurpose(value)
    except ValueError:
        raise ValidationError(f"Invalid verification type: {value}", field="type")
    if purpose not in VERIFIABLE_PURPOSES:
        raise ValidationError(f"Invalid verification type: {value}", field="type")
    return purpose


class VerificationService:
    def __init__(
        self,
        otp_service: OtpService,
        token_service: TokenService,
        user_repo: UserRepository,
        otp_repo: OtpRepository,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._otp = otp_service
        self._tokens = token_service
        self._users = user_repo
        self._otps = otp_repo
        self._clock = clock

    async def verify(
        self, user_id: ObjectId, code: str, purpose: str
    ) -> VerificationResult:
        purpose = parse_purpose(purpose)
        outcome = await self._otp.verify(user_id, purpose, code)

        match purpose:
            case OtpPurpose.LOGIN:
                result = LoginVerified(user_id=str(user_id))
            case OtpPurpose.VERIFICATION:
                await self._users.mark_verified(user_id, self._clock())
                result = AccountVerified(user_id=str(user_id))
            case OtpPurpose.FORGOT_PASSWORD:
                result = await self._bridge_to_reset(user_id, outcome)
            case _:
                raise ValidationError(f"Unhandled verification type: {purpose.value}")

        log.info(
            "verification_completed",
            user_id=str(user_id),
            purpose=purpose.value,
            via_master=outcome.via_master,
        )
        return result

    async def _bridge_to_reset(
        self, user_id: ObjectId, outcome: OtpVerification
    ) -> PasswordResetVerified:
        record = outcome.record
        if record is None:
            # Master code consumed nothing; give the token a record to live on
            record = await self._otp.create_consumed_record(
                user_id, OtpPurpose.FORGOT_PASSWORD
            )

        token, expires_at = self._tokens.mint_reset_verification_token(user_id)
        await self._otps.attach_verification_token(record.id, token, expires_at)
        log.info("reset_token_attached", user_id=str(user_id), otp_id=str(record.id))
        return PasswordResetVerified(
            user_id=str(user_id),
            verification_token=token,
            expires_at=expires_at,
        )

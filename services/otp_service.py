"""
OTP issuance and verification.

issue()  - pick a channel, produce a code (generated, or the fixed dummy code
           in testing mode), dispatch it, persist a fresh unused record.
verify() - master override first, then the most recent record for
           (user, purpose): exists → not replayed → unexpired → matches → claimed.

The master code never reads or writes an OTP record.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from bson import ObjectId

from config import OtpSettings
from errors import (
    AlreadyUsedError,
    DeliveryError,
    ExpiredError,
    MismatchError,
    NotFoundError,
    ValidationError,
)
from repositories.otp_repository import OtpRepository
from schemas.models.otp import OtpChannel, OtpPurpose, OtpRecordDoc
from schemas.models.user import UserDoc
from services.dispatch_service import OtpDispatcher
from shared.datetime_utils import ensure_utc, utc_now
from shared.generators import generate_otp_code
from shared.logging import get_logger
from shared.validators import is_valid_otp_code

log = get_logger(__name__)


@dataclass(frozen=True)
class OtpIssueResult:
    record: OtpRecordDoc
    sent_to: str
    channel: OtpChannel


@dataclass(frozen=True)
class OtpVerification:
    """Successful verification. record is None when the master code was used."""

    record: Optional[OtpRecordDoc]

    @property
    def via_master(self) -> bool:
        return self.record is None


def resolve_destination(
    user: UserDoc, channel: Optional[OtpChannel] = None
) -> tuple[OtpChannel, str]:
    """Pick where to send a code for *user*.

    An explicit *channel* must have a destination on the user. Without one,
    phone is preferred and email is the fallback.
    """
    if channel is not None:
        channel = OtpChannel(channel)
        destination = user.phone_number if channel is OtpChannel.PHONE else user.email
        if not destination:
            raise ValidationError(
                f"User does not have a {'phone number' if channel is OtpChannel.PHONE else 'email'}",
                field="channel",
            )
        return channel, destination
    if user.phone_number:
        return OtpChannel.PHONE, user.phone_number
    if user.email:
        return OtpChannel.EMAIL, user.email
    raise ValidationError("User does not have a valid phone number or email")


class OtpService:
    def __init__(
        self,
        otp_repo: OtpRepository,
        dispatcher: OtpDispatcher,
        settings: OtpSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repo = otp_repo
        self._dispatcher = dispatcher
        self._settings = settings
        self._clock = clock

    @property
    def validity(self) -> timedelta:
        return timedelta(minutes=self._settings.otp_validity_minutes)

    async def issue(
        self,
        user: UserDoc,
        purpose: OtpPurpose,
        channel: Optional[OtpChannel] = None,
    ) -> OtpIssueResult:
        purpose = OtpPurpose(purpose)
        channel, destination = resolve_destination(user, channel)

        if self._settings.use_dummy_otp:
            otp_code = self._settings.dummy_otp
            delivered = True
            log.info(
                "otp_dummy_mode",
                user_id=str(user.id),
                purpose=purpose.value,
                channel=channel.value,
            )
        else:
            otp_code = generate_otp_code(self._settings.otp_length)
            user_name = " ".join(p for p in (user.first_name, user.last_name) if p) or None
            delivered = await self._dispatcher.send(
                channel, destination, otp_code, purpose, user_name=user_name
            )

        if not delivered:
            log.error(
                "otp_issue_failed",
                user_id=str(user.id),
                purpose=purpose.value,
                channel=channel.value,
                reason="delivery_failed",
            )
            raise DeliveryError("Failed to send OTP. Please try again.")

        now = self._clock()
        record = await self._repo.insert(
            OtpRecordDoc(
                user_id=user.id,
                code=otp_code,
                purpose=purpose,
                channel=channel,
                expires_at=now + self.validity,
                used=False,
                created_at=now,
            )
        )
        log.info(
            "otp_issued",
            user_id=str(user.id),
            otp_id=str(record.id),
            purpose=purpose.value,
            channel=channel.value,
        )
        return OtpIssueResult(record=record, sent_to=destination, channel=channel)

    async def verify(
        self, user_id: ObjectId, purpose: OtpPurpose, code: str
    ) -> OtpVerification:
        purpose = OtpPurpose(purpose)
        candidate = (code or "").strip()

        if self._settings.master_otp and secrets.compare_digest(
            candidate.encode(), self._settings.master_otp.encode()
        ):
            log.info("otp_master_override_used", user_id=str(user_id), purpose=purpose.value)
            return OtpVerification(record=None)

        if not is_valid_otp_code(candidate):
            raise ValidationError("OTP must be 4 to 6 digits", field="otp")

        record = await self._repo.find_latest(user_id, purpose)
        if record is None:
            self._log_failure(user_id, purpose, "not_found")
            raise NotFoundError("No OTP found. Please request a new OTP.")

        matches = secrets.compare_digest(record.code.encode(), candidate.encode())
        if record.used and matches:
            self._log_failure(user_id, purpose, "already_used", record)
            raise AlreadyUsedError("OTP has already been used. Please request a new OTP.")

        now = self._clock()
        if now > ensure_utc(record.expires_at):
            self._log_failure(user_id, purpose, "expired", record)
            raise ExpiredError("OTP has expired. Please request a new OTP.")

        # A used latest record with a different candidate is an old or wrong code
        if not matches or record.used:
            self._log_failure(user_id, purpose, "mismatch", record)
            raise MismatchError("Invalid OTP. Please try again.")

        claimed = await self._repo.claim(record.id, now)
        if claimed is None:
            # Lost the race against a concurrent verification of the same record
            self._log_failure(user_id, purpose, "claim_lost", record)
            raise AlreadyUsedError("OTP has already been used. Please request a new OTP.")

        log.info(
            "otp_verified",
            user_id=str(user_id),
            otp_id=str(claimed.id),
            purpose=purpose.value,
        )
        return OtpVerification(record=claimed)

    async def create_consumed_record(
        self, user_id: ObjectId, purpose: OtpPurpose
    ) -> OtpRecordDoc:
        """Insert an already-used record with no channel.

        Carries post-verification state (the reset-verification token) when a
        verification succeeded through the master code and so consumed nothing.
        """
        now = self._clock()
        record = await self._repo.insert(
            OtpRecordDoc(
                user_id=user_id,
                code=self._settings.master_otp,
                purpose=OtpPurpose(purpose),
                channel=None,
                expires_at=now + self.validity,
                used=True,
                used_at=now,
                created_at=now,
            )
        )
        log.info("otp_bridge_record_created", user_id=str(user_id), otp_id=str(record.id))
        return record

    def _log_failure(
        self,
        user_id: ObjectId,
        purpose: OtpPurpose,
        reason: str,
        record: Optional[OtpRecordDoc] = None,
    ) -> None:
        log.warning(
            "otp_verification_failed",
            user_id=str(user_id),
            purpose=purpose.value,
            reason=reason,
            otp_id=str(record.id) if record else None,
        )

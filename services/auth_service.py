"""
Auth flows built on the OTP store, the verification router and the token issuer.

This is the surface an HTTP layer calls. Every method takes plain values,
returns a response DTO and raises AppError subclasses; nothing here knows
about requests or cookies.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional, Union

from bson import ObjectId

from config import OtpSettings
from errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from repositories.user_repository import UserRepository
from schemas.dto.responses.auth import (
    AuthTokensResponse,
    MessageResponse,
    OtpDispatchResponse,
    PasswordResetResponse,
    PasswordResetVerified,
    TwoFactorRequiredResponse,
    UserProfileResponse,
)
from schemas.models.otp import OtpChannel, OtpPurpose
from schemas.models.user import UserDoc
from services.otp_service import OtpService
from services.token_service import TokenService
from services.verification_service import VerificationService
from shared.crypto import hash_password, verify_password
from shared.datetime_utils import utc_now
from shared.logging import get_logger
from shared.validators import validate_password

log = get_logger(__name__)

# Phone login is only offered to end users (mobile app)
PHONE_LOGIN_ROLE = "ENDUSER"


class AuthService:
    def __init__(
        self,
        user_repo: UserRepository,
        otp_service: OtpService,
        verification_service: VerificationService,
        token_service: TokenService,
        settings: OtpSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._users = user_repo
        self._otp = otp_service
        self._verification = verification_service
        self._tokens = token_service
        self._settings = settings
        self._clock = clock

    # ── OTP issuance ─────────────────────────────────────────────────────────

    async def request_otp(
        self,
        user_id: ObjectId,
        purpose: OtpPurpose,
        channel: Optional[OtpChannel] = None,
    ) -> OtpDispatchResponse:
        user = await self._require_user(user_id)
        issued = await self._otp.issue(user, purpose, channel)
        return OtpDispatchResponse(
            user_id=str(user.id), sent_to=issued.sent_to, channel=issued.channel
        )

    async def send_login_otp(self, user_id: ObjectId) -> TwoFactorRequiredResponse:
        user = await self._require_user(user_id)
        return await self._send_two_factor(user)

    async def send_verification_otp(
        self, user_id: ObjectId, phone_number: Optional[str] = None
    ) -> OtpDispatchResponse:
        """Send an account-verification code, optionally to a new phone number."""
        user = await self._require_user(user_id)
        if user.is_verified:
            raise ConflictError("User is already verified")

        if phone_number and phone_number != user.phone_number:
            await self._users.set_phone_number(user.id, phone_number, self._clock())
            user = user.model_copy(update={"phone_number": phone_number})
            log.info("phone_number_updated", user_id=str(user.id))

        issued = await self._otp.issue(user, OtpPurpose.VERIFICATION)
        return OtpDispatchResponse(
            user_id=str(user.id), sent_to=issued.sent_to, channel=issued.channel
        )

    async def send_forgot_password_otp(
        self, email: Optional[str] = None, phone_number: Optional[str] = None
    ) -> OtpDispatchResponse:
        if not email and not phone_number:
            raise ValidationError("Email or phone number is required")
        user = await self._users.find_by_contact(email=email, phone_number=phone_number)
        if user is None:
            raise NotFoundError("User with this email or phone number does not exist")
        issued = await self._otp.issue(user, OtpPurpose.FORGOT_PASSWORD)
        return OtpDispatchResponse(
            user_id=str(user.id), sent_to=issued.sent_to, channel=issued.channel
        )

    # ── Login / verification ─────────────────────────────────────────────────

    async def login(
        self,
        password: str,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        active_role: Optional[str] = None,
    ) -> Union[AuthTokensResponse, TwoFactorRequiredResponse]:
        """Password login. Returns tokens, or a 2FA challenge when enabled."""
        user = await self._find_login_account(email, phone_number, active_role)
        if user is None:
            log.warning("login_failed", reason="unknown_account")
            raise AuthenticationError("Invalid credentials")
        if not user.is_active:
            log.warning("login_failed", user_id=str(user.id), reason="inactive")
            raise ForbiddenError("Your account has been deactivated")
        if not verify_password(password or "", user.password_hash or ""):
            log.warning("login_failed", user_id=str(user.id), reason="bad_password")
            raise AuthenticationError("Invalid credentials")

        if user.two_factor_enabled:
            return await self._send_two_factor(user)

        tokens = await self._tokens.issue_token_pair(user, user.role)
        log.info("login_success", user_id=str(user.id), method="password")
        return AuthTokensResponse(tokens=tokens, user=UserProfileResponse.from_user(user))

    async def verify_otp(
        self, user_id: ObjectId, code: str, purpose: str
    ) -> Union[AuthTokensResponse, PasswordResetVerified]:
        """Unified OTP verification.

        login and verification end in a fresh token pair; forgot_password ends
        in a reset-verification token and leaves the password untouched.
        """
        result = await self._verification.verify(user_id, code, purpose)
        if isinstance(result, PasswordResetVerified):
            return result

        user = await self._require_user(user_id)
        tokens = await self._tokens.issue_token_pair(user, user.role)
        log.info("login_success", user_id=str(user.id), method=result.type)
        return AuthTokensResponse(tokens=tokens, user=UserProfileResponse.from_user(user))

    # ── Sessions ─────────────────────────────────────────────────────────────

    async def refresh(self, refresh_token: str) -> AuthTokensResponse:
        tokens, user = await self._tokens.refresh_access_token(refresh_token)
        return AuthTokensResponse(tokens=tokens, user=UserProfileResponse.from_user(user))

    async def logout(self, user_id: ObjectId) -> MessageResponse:
        await self._require_user(user_id)
        await self._tokens.revoke(user_id)
        log.info("logout", user_id=str(user_id))
        return MessageResponse(success=True, message="Logged out successfully")

    async def delete_account(self, user_id: ObjectId) -> MessageResponse:
        """Soft-delete: anonymise personal data and revoke the session."""
        await self._require_user(user_id)
        deleted = await self._users.anonymize(user_id, self._clock())
        if not deleted:
            raise NotFoundError("User not found")
        log.info("account_deleted", user_id=str(user_id))
        return MessageResponse(success=True, message="Account deleted successfully")

    # ── Password reset ───────────────────────────────────────────────────────

    async def reset_password(
        self, user_id: ObjectId, verification_token: str, new_password: str
    ) -> PasswordResetResponse:
        """Complete a reset started by a verified forgot_password OTP.

        The reset token is burned before the password is written, so a second
        call with the same token, concurrent or not, fails with ExpiredError.
        """
        record = await self._tokens.validate_reset_verification_token(
            verification_token, user_id
        )
        self._check_password(new_password)
        user = await self._require_user(user_id)

        await self._tokens.burn_reset_verification_token(record.id, verification_token)
        await self._users.update_password(user.id, hash_password(new_password), self._clock())
        log.info("password_reset", user_id=str(user.id), method="verification_token")
        return PasswordResetResponse(success=True, email=user.email)

    async def reset_password_with_otp(
        self, user_id: ObjectId, code: str, new_password: str
    ) -> PasswordResetResponse:
        """One-step reset: verify the forgot_password code and set the password."""
        self._check_password(new_password)
        await self._otp.verify(user_id, OtpPurpose.FORGOT_PASSWORD, code)
        user = await self._require_user(user_id)

        await self._users.update_password(user.id, hash_password(new_password), self._clock())
        log.info("password_reset", user_id=str(user.id), method="otp")
        return PasswordResetResponse(success=True, email=user.email)

    # ── Internals ────────────────────────────────────────────────────────────

    async def _require_user(self, user_id: ObjectId) -> UserDoc:
        user = await self._users.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def _find_login_account(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        active_role: Optional[str],
    ) -> Optional[UserDoc]:
        if email:
            # One email may hold one account per role
            matches = await self._users.find_many_by_email(email, role=active_role)
            if len(matches) > 1:
                raise ValidationError(
                    "Multiple accounts found for this email. Please provide "
                    "activeRole (e.g. TEAMMANAGER or ENDUSER) to specify which "
                    "account to log into.",
                    field="active_role",
                )
            return matches[0] if matches else None
        if phone_number:
            return await self._users.find_by_phone(phone_number, PHONE_LOGIN_ROLE)
        raise ValidationError("Email or phone number must be provided")

    async def _send_two_factor(self, user: UserDoc) -> TwoFactorRequiredResponse:
        issued = await self._otp.issue(user, OtpPurpose.LOGIN)
        log.info("two_factor_challenge_sent", user_id=str(user.id), channel=issued.channel.value)
        return TwoFactorRequiredResponse(
            user_id=str(user.id), sent_to=issued.sent_to, channel=issued.channel
        )

    def _check_password(self, new_password: str) -> None:
        if not validate_password(new_password, self._settings.password_min_length):
            raise ValidationError(
                f"Password must be at least {self._settings.password_min_length} "
                "characters long",
                field="new_password",
            )

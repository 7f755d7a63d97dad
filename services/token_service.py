"""
Token issuer: access tokens, rotating refresh tokens, reset-verification tokens.

Three secrets, three token kinds:

- access  - jwt_secret, claims sub/email/active_role, iss + aud checked
- refresh - jwt_refresh_secret, claim type="refresh", iss + aud checked
- reset   - jwt_secret + "_VOT", claim purpose="password_reset_verified"

The refresh token stored on the user is the single point of revocation.
Refresh rotates it through a compare-and-swap, so a superseded token fails
even while its signature is still valid, and two concurrent refreshes with
the same token produce exactly one new pair.

A reset token is only honoured together with the used forgot_password record
it was attached to. Burning is a conditional update on the still-live token,
so two concurrent resets with one token yield exactly one password change.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import jwt
from bson import ObjectId

from config import JWTSettings
from errors import AuthenticationError, ConfigurationError, ExpiredError, NotFoundError
from repositories.otp_repository import OtpRepository
from repositories.user_repository import UserRepository
from schemas.dto.responses.auth import TokenPair
from schemas.models.base import parse_object_id
from schemas.models.otp import OtpRecordDoc
from schemas.models.user import UserDoc
from shared.datetime_utils import ensure_utc, utc_now
from shared.generators import generate_secure_token
from shared.logging import get_logger, log_with_context

log = get_logger(__name__)

ALGORITHM = "HS256"
REFRESH_TYPE = "refresh"
RESET_PURPOSE = "password_reset_verified"


class TokenService:
    def __init__(
        self,
        user_repo: UserRepository,
        otp_repo: OtpRepository,
        settings: JWTSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._users = user_repo
        self._otps = otp_repo
        self._settings = settings
        self._clock = clock

    # ── Session tokens ───────────────────────────────────────────────────────

    async def issue_token_pair(
        self, user: UserDoc, role: Optional[str] = None
    ) -> TokenPair:
        """Sign an access + refresh pair and make the refresh token the current one.

        Any previously stored refresh token for the user stops working.
        """
        self._require_session_secrets()
        now = self._clock()
        access_token = self._sign_access(user, role or user.role, now)
        refresh_token, refresh_expires_at = self._sign_refresh(user.id, now)

        await self._users.set_refresh_token(user.id, refresh_token, refresh_expires_at, now)
        log.info("token_pair_issued", user_id=str(user.id), active_role=role or user.role)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self._settings.access_token_ttl_seconds,
            refresh_token_expires_at=refresh_expires_at,
        )

    async def refresh_access_token(self, token: str) -> tuple[TokenPair, UserDoc]:
        """Exchange the current refresh token for a new pair.

        Returns the new pair and the user it belongs to.
        """
        self._require_session_secrets()
        try:
            claims = jwt.decode(
                token,
                self._settings.jwt_refresh_secret,
                algorithms=[ALGORITHM],
                audience=self._settings.jwt_audience,
                issuer=self._settings.jwt_issuer,
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Refresh token has expired. Please login again.")
        except jwt.InvalidTokenError:
            raise AuthenticationError("Invalid or expired refresh token")

        if claims.get("type") != REFRESH_TYPE:
            raise AuthenticationError("Invalid or expired refresh token")
        user_id = self._subject(claims)
        rlog = log_with_context(log, user_id=str(user_id))

        user = await self._users.find_by_id(user_id)
        # Superseded tokens fail here, before any expiry check
        if user is None or not user.refresh_token or user.refresh_token != token:
            rlog.warning("refresh_rejected", reason="not_current")
            raise NotFoundError("Invalid refresh token or user not found")

        now = self._clock()
        stored_expiry = ensure_utc(user.refresh_token_expiry)
        if stored_expiry is None or now > stored_expiry:
            rlog.warning("refresh_rejected", reason="expired")
            raise AuthenticationError("Refresh token has expired. Please login again.")

        if not user.is_active:
            raise AuthenticationError("Account is deactivated")

        access_token = self._sign_access(user, user.role, now)
        new_refresh, refresh_expires_at = self._sign_refresh(user.id, now)
        swapped = await self._users.swap_refresh_token(
            user.id, token, new_refresh, refresh_expires_at
        )
        if not swapped:
            rlog.warning("refresh_rejected", reason="lost_race")
            raise NotFoundError("Invalid refresh token or user not found")

        rlog.info("refresh_token_rotated")
        pair = TokenPair(
            access_token=access_token,
            refresh_token=new_refresh,
            expires_in=self._settings.access_token_ttl_seconds,
            refresh_token_expires_at=refresh_expires_at,
        )
        return pair, user

    def verify_access_token(self, token: str) -> dict[str, Any]:
        """Decode an access token. Raises AuthenticationError on any failure."""
        self._require_session_secrets()
        try:
            return jwt.decode(
                token,
                self._settings.jwt_secret,
                algorithms=[ALGORITHM],
                audience=self._settings.jwt_audience,
                issuer=self._settings.jwt_issuer,
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Access token has expired")
        except jwt.InvalidTokenError:
            raise AuthenticationError("Invalid or expired token")

    async def revoke(self, user_id: ObjectId) -> None:
        await self._users.clear_refresh_token(user_id)
        log.info("refresh_token_revoked", user_id=str(user_id))

    # ── Reset-verification tokens ────────────────────────────────────────────

    def mint_reset_verification_token(self, user_id: ObjectId) -> tuple[str, datetime]:
        if not self._settings.jwt_secret:
            raise ConfigurationError("JWT_SECRET is not configured")
        now = self._clock()
        expires_at = now + timedelta(seconds=self._settings.reset_token_ttl_seconds)
        claims = {
            "sub": str(user_id),
            "purpose": RESET_PURPOSE,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": generate_secure_token(16),
        }
        token = jwt.encode(claims, self._settings.reset_token_secret, algorithm=ALGORITHM)
        return token, expires_at

    async def validate_reset_verification_token(
        self, token: str, expected_user_id: ObjectId
    ) -> OtpRecordDoc:
        """Check signature, purpose and subject, then the originating record.

        Returns the used forgot_password record that carries *token*.
        """
        if not self._settings.jwt_secret:
            raise ConfigurationError("JWT_SECRET is not configured")
        try:
            claims = jwt.decode(
                token,
                self._settings.reset_token_secret,
                algorithms=[ALGORITHM],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise ExpiredError("Verification token has expired. Please verify OTP again.")
        except jwt.InvalidTokenError:
            raise AuthenticationError(
                "Verification token is invalid or expired. Please verify OTP again."
            )

        if claims.get("purpose") != RESET_PURPOSE:
            raise AuthenticationError("Invalid verification token")
        if claims.get("sub") != str(expected_user_id):
            raise AuthenticationError("Verification token does not match user")

        record = await self._otps.find_by_verification_token(expected_user_id, token)
        if record is None:
            raise NotFoundError("Verification token not found. Please verify OTP again.")

        expiry = ensure_utc(record.verification_token_expiry)
        if expiry is None or self._clock() > expiry:
            log.warning(
                "reset_token_rejected",
                user_id=str(expected_user_id),
                otp_id=str(record.id),
                reason="expired",
            )
            raise ExpiredError("Verification token has expired. Please verify OTP again.")
        return record

    async def burn_reset_verification_token(self, record_id: ObjectId, token: str) -> None:
        """Consume *token*. Raises ExpiredError if it was already consumed or lapsed."""
        now = self._clock()
        burned = await self._otps.burn_verification_token(
            record_id, token, now, now - timedelta(seconds=1)
        )
        if not burned:
            log.warning("reset_token_rejected", otp_id=str(record_id), reason="already_burned")
            raise ExpiredError("Verification token has expired. Please verify OTP again.")
        log.info("reset_token_burned", otp_id=str(record_id))

    # ── Internals ────────────────────────────────────────────────────────────

    def _require_session_secrets(self) -> None:
        if not self._settings.jwt_secret or not self._settings.jwt_refresh_secret:
            raise ConfigurationError("JWT_SECRET and JWT_REFRESH_SECRET must be set")

    def _sign_access(self, user: UserDoc, active_role: str, now: datetime) -> str:
        ttl = timedelta(seconds=self._settings.access_token_ttl_seconds)
        claims = {
            "iss": self._settings.jwt_issuer,
            "aud": self._settings.jwt_audience,
            "sub": str(user.id),
            "email": user.email,
            "active_role": active_role,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            "jti": generate_secure_token(16),
        }
        return jwt.encode(claims, self._settings.jwt_secret, algorithm=ALGORITHM)

    def _sign_refresh(self, user_id: ObjectId, now: datetime) -> tuple[str, datetime]:
        expires_at = now + timedelta(seconds=self._settings.refresh_token_ttl_seconds)
        claims = {
            "iss": self._settings.jwt_issuer,
            "aud": self._settings.jwt_audience,
            "sub": str(user_id),
            "type": REFRESH_TYPE,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": generate_secure_token(16),
        }
        token = jwt.encode(claims, self._settings.jwt_refresh_secret, algorithm=ALGORITHM)
        return token, expires_at

    @staticmethod
    def _subject(claims: dict[str, Any]) -> ObjectId:
        try:
            return parse_object_id(claims.get("sub"))
        except ValueError:
            raise AuthenticationError("Invalid or expired refresh token")

"""
Response DTOs for the OTP / session-token flows.

UserProfileResponse        - public user shape attached to token responses
TokenPair                  - access + refresh token pair
OtpDispatchResponse        - where an OTP was sent
LoginVerified              - verification router result, purpose=login
AccountVerified            - verification router result, purpose=verification
PasswordResetVerified      - verification router result, purpose=forgot_password
AuthTokensResponse         - login / verify-otp / refresh success
TwoFactorRequiredResponse  - password accepted, login OTP dispatched
PasswordResetResponse      - password changed
MessageResponse            - logout / delete-account
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict

from schemas.models.otp import OtpChannel
from schemas.models.user import UserDoc


class UserProfileResponse(BaseModel):
    """Public user shape. Never carries password hash or refresh token."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    email: Optional[str] = None
    phone_number: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    active_role: str
    is_verified: bool
    two_factor_enabled: bool

    @classmethod
    def from_user(
        cls, user: UserDoc, active_role: Optional[str] = None
    ) -> "UserProfileResponse":
        return cls(
            id=str(user.id),
            email=user.email,
            phone_number=user.phone_number,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            active_role=active_role or user.role,
            is_verified=user.is_verified,
            two_factor_enabled=user.two_factor_enabled,
        )


class TokenPair(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime, seconds
    refresh_token_expires_at: datetime


class OtpDispatchResponse(BaseModel):
    """Where a freshly issued OTP was sent."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str
    sent_to: str
    channel: OtpChannel


class LoginVerified(BaseModel):
    type: Literal["login"] = "login"
    user_id: str


class AccountVerified(BaseModel):
    type: Literal["verification"] = "verification"
    user_id: str
    is_verified: bool = True


class PasswordResetVerified(BaseModel):
    """The OTP is consumed; the password is NOT changed yet.

    verification_token bridges to AuthService.reset_password.
    """

    type: Literal["forgot_password"] = "forgot_password"
    user_id: str
    verification_token: str
    expires_at: datetime


VerificationResult = Union[LoginVerified, AccountVerified, PasswordResetVerified]


class AuthTokensResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tokens: TokenPair
    user: UserProfileResponse


class TwoFactorRequiredResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    requires_2fa: Literal[True] = True
    user_id: str
    sent_to: str
    channel: OtpChannel


class PasswordResetResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    email: Optional[str] = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str

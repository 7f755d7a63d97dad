"""
One-time passcode document model.

Maps to the `otps` MongoDB collection.

One document per issued code. Several unused documents may coexist for the
same (user_id, purpose): a resend does not invalidate the previous code.
Verification always targets the most recently created document, so only the
newest code for a (user_id, purpose) can succeed.

used flips false → true exactly once (see OtpRepository.claim). After that the
only permitted mutation is attaching or burning the reset-verification token
of a forgot_password record.

expires_at carries a TTL index, so expired documents are purged by MongoDB.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from schemas.models.base import MongoBaseModel, PyObjectId


class OtpPurpose(str, Enum):
    LOGIN = "login"
    VERIFICATION = "verification"
    FORGOT_PASSWORD = "forgot_password"
    # Reserved; stored values are accepted but the verification router rejects them
    ENABLE_2FA = "enable_2fa"
    DISABLE_2FA = "disable_2fa"


# Purposes a caller may verify through the unified verification flow
VERIFIABLE_PURPOSES = (
    OtpPurpose.LOGIN,
    OtpPurpose.VERIFICATION,
    OtpPurpose.FORGOT_PASSWORD,
)


class OtpChannel(str, Enum):
    PHONE = "phone"
    EMAIL = "email"


class OtpRecordDoc(MongoBaseModel):
    """Document model for the `otps` collection."""

    user_id: PyObjectId
    code: str = Field(min_length=4, max_length=6, pattern=r"^\d+$")
    purpose: OtpPurpose
    channel: Optional[OtpChannel] = None
    expires_at: datetime
    used: bool = False
    used_at: Optional[datetime] = None
    verification_token: Optional[str] = Field(default=None, max_length=1000)
    verification_token_expiry: Optional[datetime] = None
    created_at: Optional[datetime] = None

"""
User document model.

Maps to the `users` MongoDB collection.

Only the fields the OTP/session subsystem reads or writes are modelled; the
collection is owned by the wider account service and carries more.

refresh_token holds the single live refresh token for the user. Writing it
rotates (every previously issued refresh token stops working); unsetting it
revokes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from schemas.models.base import MongoBaseModel


class UserDoc(MongoBaseModel):
    """
    Document model for the `users` collection.

    role values: SUPERADMIN, EXHIBITOR, TEAMMANAGER, ENDUSER
    """

    email: Optional[str] = None
    phone_number: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    password_hash: Optional[str] = None
    role: str = "ENDUSER"
    is_verified: bool = False
    two_factor_enabled: bool = False
    is_active: bool = True
    is_deleted: bool = False
    refresh_token: Optional[str] = None
    refresh_token_expiry: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

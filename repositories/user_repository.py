"""
Repository for the `users` collection (subset used by the auth subsystem).

The refresh_token field is the single point of revocation: set_refresh_token
rotates it unconditionally (last write wins), swap_refresh_token rotates it
only if the caller still holds the current value, clear_refresh_token revokes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from bson import ObjectId
from pymongo import ASCENDING
from pymongo.asynchronous.collection import AsyncCollection

from schemas.models.user import UserDoc
from shared.logging import get_logger

log = get_logger(__name__)

_LIVE = {"is_deleted": {"$ne": True}}


class UserRepository:
    def __init__(self, collection: AsyncCollection) -> None:
        self._col = collection

    async def find_by_id(self, user_id: ObjectId) -> Optional[UserDoc]:
        doc = await self._col.find_one({"_id": user_id, **_LIVE})
        return UserDoc.from_mongo(doc)

    async def find_by_contact(
        self, email: Optional[str] = None, phone_number: Optional[str] = None
    ) -> Optional[UserDoc]:
        """Find a live user by email, phone number, or either when both are given."""
        clauses = []
        if email:
            clauses.append({"email": email})
        if phone_number:
            clauses.append({"phone_number": phone_number})
        if not clauses:
            return None
        query = {**_LIVE, **(clauses[0] if len(clauses) == 1 else {"$or": clauses})}
        doc = await self._col.find_one(query)
        return UserDoc.from_mongo(doc)

    async def find_many_by_email(
        self, email: str, role: Optional[str] = None, limit: int = 2
    ) -> list[UserDoc]:
        """Live users with *email*, optionally restricted to one role.

        The same email may exist once per role, so callers inspect the length.
        """
        query: dict = {"email": email, **_LIVE}
        if role:
            query["role"] = role
        cursor = self._col.find(query).limit(limit)
        return [UserDoc.from_mongo(doc) async for doc in cursor]

    async def find_by_phone(self, phone_number: str, role: str) -> Optional[UserDoc]:
        doc = await self._col.find_one(
            {"phone_number": phone_number, "role": role, **_LIVE}
        )
        return UserDoc.from_mongo(doc)

    async def mark_verified(self, user_id: ObjectId, at: datetime) -> bool:
        result = await self._col.update_one(
            {"_id": user_id},
            {"$set": {"is_verified": True, "updated_at": at}},
        )
        return result.matched_count == 1

    async def set_phone_number(
        self, user_id: ObjectId, phone_number: str, at: datetime
    ) -> None:
        await self._col.update_one(
            {"_id": user_id},
            {"$set": {"phone_number": phone_number, "updated_at": at}},
        )

    async def update_password(
        self, user_id: ObjectId, password_hash: str, at: datetime
    ) -> bool:
        result = await self._col.update_one(
            {"_id": user_id},
            {"$set": {"password_hash": password_hash, "updated_at": at}},
        )
        return result.matched_count == 1

    async def set_refresh_token(
        self, user_id: ObjectId, token: str, expires_at: datetime, at: datetime
    ) -> None:
        await self._col.update_one(
            {"_id": user_id},
            {
                "$set": {
                    "refresh_token": token,
                    "refresh_token_expiry": expires_at,
                    "last_login_at": at,
                }
            },
        )

    async def swap_refresh_token(
        self,
        user_id: ObjectId,
        expected_token: str,
        new_token: str,
        expires_at: datetime,
    ) -> bool:
        """Replace the stored refresh token only if it still equals *expected_token*."""
        result = await self._col.update_one(
            {"_id": user_id, "refresh_token": expected_token},
            {
                "$set": {
                    "refresh_token": new_token,
                    "refresh_token_expiry": expires_at,
                }
            },
        )
        return result.modified_count == 1

    async def clear_refresh_token(self, user_id: ObjectId) -> bool:
        result = await self._col.update_one(
            {"_id": user_id},
            {"$unset": {"refresh_token": "", "refresh_token_expiry": ""}},
        )
        return result.matched_count == 1

    async def anonymize(self, user_id: ObjectId, at: datetime) -> bool:
        """Soft-delete: scrub PII, deactivate, revoke the refresh token."""
        stamp = int(at.timestamp() * 1000)
        result = await self._col.update_one(
            {"_id": user_id, **_LIVE},
            {
                "$set": {
                    "first_name": "Deleted",
                    "last_name": "User",
                    "email": f"deleted_{stamp}_{user_id}@deleted.invalid",
                    "phone_number": f"deleted_{stamp}_{user_id}",
                    "is_active": False,
                    "is_deleted": True,
                    "two_factor_enabled": False,
                    "updated_at": at,
                },
                "$unset": {"refresh_token": "", "refresh_token_expiry": ""},
            },
        )
        return result.matched_count == 1

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("email", ASCENDING), ("role", ASCENDING)])
        await self._col.create_index([("phone_number", ASCENDING)], sparse=True)
        await self._col.create_index([("refresh_token", ASCENDING)], sparse=True)
        log.info("user_indexes_ensured")

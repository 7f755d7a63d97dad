"""
Repository for the `otps` collection.

Ordering contract: "the active code" for (user, purpose) is the document
with the greatest created_at (ties broken by _id, which is also monotonic per
process), used or not. Older unused documents are left alone: a resend does
not touch them, they simply stop being selectable once a newer document
exists, and the TTL index purges them.

Marking a record used goes through claim(), a conditional update that only
matches while used is still False, so two concurrent verifications of the
same record cannot both succeed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.asynchronous.collection import AsyncCollection

from schemas.models.otp import OtpPurpose, OtpRecordDoc
from shared.logging import get_logger

log = get_logger(__name__)

_NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


class OtpRepository:
    def __init__(self, collection: AsyncCollection) -> None:
        self._col = collection

    async def insert(self, record: OtpRecordDoc) -> OtpRecordDoc:
        result = await self._col.insert_one(record.to_mongo())
        return record.model_copy(update={"id": result.inserted_id})

    async def find_latest(
        self, user_id: ObjectId, purpose: OtpPurpose
    ) -> Optional[OtpRecordDoc]:
        doc = await self._col.find_one(
            {"user_id": user_id, "purpose": OtpPurpose(purpose).value},
            sort=_NEWEST_FIRST,
        )
        return OtpRecordDoc.from_mongo(doc)

    async def claim(self, record_id: ObjectId, used_at: datetime) -> Optional[OtpRecordDoc]:
        """Flip used False → True. Returns None when someone else got there first."""
        doc = await self._col.find_one_and_update(
            {"_id": record_id, "used": False},
            {"$set": {"used": True, "used_at": used_at}},
            return_document=ReturnDocument.AFTER,
        )
        return OtpRecordDoc.from_mongo(doc)

    async def attach_verification_token(
        self, record_id: ObjectId, token: str, expires_at: datetime
    ) -> bool:
        result = await self._col.update_one(
            {
                "_id": record_id,
                "purpose": OtpPurpose.FORGOT_PASSWORD.value,
                "used": True,
            },
            {
                "$set": {
                    "verification_token": token,
                    "verification_token_expiry": expires_at,
                },
                # keep the TTL index from purging the record before the token expires
                "$max": {"expires_at": expires_at},
            },
        )
        return result.matched_count == 1

    async def find_by_verification_token(
        self, user_id: ObjectId, token: str
    ) -> Optional[OtpRecordDoc]:
        doc = await self._col.find_one(
            {
                "user_id": user_id,
                "purpose": OtpPurpose.FORGOT_PASSWORD.value,
                "used": True,
                "verification_token": token,
            },
            sort=_NEWEST_FIRST,
        )
        return OtpRecordDoc.from_mongo(doc)

    async def burn_verification_token(
        self, record_id: ObjectId, token: str, now: datetime, expired_at: datetime
    ) -> bool:
        """Move the reset token's expiry into the past, once.

        Only matches while *token* is still live, so of two concurrent burns
        exactly one returns True.
        """
        result = await self._col.update_one(
            {
                "_id": record_id,
                "verification_token": token,
                "verification_token_expiry": {"$gt": now},
            },
            {"$set": {"verification_token_expiry": expired_at}},
        )
        return result.modified_count == 1

    async def ensure_indexes(self) -> None:
        await self._col.create_index(
            [
                ("user_id", ASCENDING),
                ("purpose", ASCENDING),
                ("created_at", DESCENDING),
            ]
        )
        await self._col.create_index(
            [("verification_token", ASCENDING)], sparse=True
        )
        # TTL: MongoDB removes the document once expires_at passes
        await self._col.create_index([("expires_at", ASCENDING)], expireAfterSeconds=0)
        log.info("otp_indexes_ensured")

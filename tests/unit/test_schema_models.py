"""Unit tests for MongoDB document models."""

from datetime import datetime, timezone

import pytest
from bson import ObjectId
from pydantic import ValidationError

from schemas.models.base import MongoBaseModel, PyObjectId, parse_object_id
from schemas.models.otp import (
    VERIFIABLE_PURPOSES,
    OtpChannel,
    OtpPurpose,
    OtpRecordDoc,
)
from schemas.models.user import UserDoc


# ── Helpers ───────────────────────────────────────────────────────────────────

def now():
    return datetime.now(timezone.utc)


def oid():
    return ObjectId()


def _otp(**overrides) -> OtpRecordDoc:
    fields = dict(
        user_id=oid(),
        code="482913",
        purpose=OtpPurpose.LOGIN,
        channel=OtpChannel.PHONE,
        expires_at=now(),
    )
    fields.update(overrides)
    return OtpRecordDoc(**fields)


# ── PyObjectId ────────────────────────────────────────────────────────────────

class TestPyObjectId:
    def test_accepts_objectid_instance(self):
        o = oid()
        assert parse_object_id(o) is o

    def test_accepts_hex_string(self):
        o = oid()
        assert parse_object_id(str(o)) == o

    @pytest.mark.parametrize("value", ["not-an-id", "", None, 123])
    def test_rejects_invalid(self, value):
        with pytest.raises(ValueError):
            parse_object_id(value)

    def test_json_serializes_to_str(self):
        class M(MongoBaseModel):
            ref: PyObjectId

        o = oid()
        m = M(ref=o)
        assert m.model_dump(mode="json")["ref"] == str(o)
        # python mode keeps the native BSON type for pymongo
        assert m.model_dump()["ref"] == o


# ── MongoBaseModel ────────────────────────────────────────────────────────────

class TestMongoBaseModel:
    def test_to_mongo_drops_missing_id(self):
        assert "_id" not in _otp().to_mongo()

    def test_to_mongo_uses_underscore_id(self):
        record = _otp(_id=oid())
        assert record.to_mongo()["_id"] == record.id

    def test_from_mongo_none(self):
        assert OtpRecordDoc.from_mongo(None) is None


# ── OtpRecordDoc ──────────────────────────────────────────────────────────────

class TestOtpRecordDoc:
    def test_enums_stored_by_value(self):
        data = _otp(purpose=OtpPurpose.FORGOT_PASSWORD, channel=OtpChannel.EMAIL).to_mongo()
        assert data["purpose"] == "forgot_password"
        assert data["channel"] == "email"

    def test_defaults(self):
        record = _otp()
        assert record.used is False
        assert record.used_at is None
        assert record.verification_token is None
        assert record.verification_token_expiry is None

    @pytest.mark.parametrize("code", ["123", "1234567", "12a4", "abcdef"])
    def test_code_must_be_4_to_6_digits(self, code):
        with pytest.raises(ValidationError):
            _otp(code=code)

    @pytest.mark.parametrize("code", ["1234", "12345", "000000"])
    def test_code_accepted(self, code):
        assert _otp(code=code).code == code

    def test_unknown_purpose_rejected(self):
        with pytest.raises(ValidationError):
            _otp(purpose="signup")

    def test_bridge_record_has_no_channel(self):
        assert _otp(channel=None, used=True).channel is None

    def test_round_trip_from_mongo(self):
        doc = {
            "_id": oid(),
            "user_id": oid(),
            "code": "654321",
            "purpose": "verification",
            "channel": "phone",
            "expires_at": now(),
            "used": True,
            "used_at": now(),
        }
        record = OtpRecordDoc.from_mongo(doc)
        assert record.id == doc["_id"]
        assert record.purpose == OtpPurpose.VERIFICATION


def test_reserved_purposes_not_verifiable():
    assert OtpPurpose.ENABLE_2FA not in VERIFIABLE_PURPOSES
    assert OtpPurpose.DISABLE_2FA not in VERIFIABLE_PURPOSES
    assert len(VERIFIABLE_PURPOSES) == 3


# ── UserDoc ───────────────────────────────────────────────────────────────────

class TestUserDoc:
    def test_defaults(self):
        user = UserDoc()
        assert user.role == "ENDUSER"
        assert user.is_active is True
        assert user.is_deleted is False
        assert user.two_factor_enabled is False
        assert user.refresh_token is None

    def test_ignores_unmodelled_fields(self):
        user = UserDoc.from_mongo({"_id": oid(), "email": "a@b.com", "fcm_tokens": ["x"]})
        assert user.email == "a@b.com"
        assert not hasattr(user, "fcm_tokens")

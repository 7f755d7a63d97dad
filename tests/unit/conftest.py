"""
Unit test configuration.

Patches dotenv so pydantic-settings never reads the project's real .env file
during unit tests. Tests control config exclusively through monkeypatch.setenv()
or explicit constructor arguments.

Also provides in-memory stand-ins for the two repositories, so the service
tests exercise real OtpService / TokenService / VerificationService /
AuthService logic end to end without a database.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional
from unittest.mock import AsyncMock

import pytest
from bson import ObjectId

from config import JWTSettings, OtpSettings
from schemas.models.otp import OtpPurpose, OtpRecordDoc
from schemas.models.user import UserDoc
from services.auth_service import AuthService
from services.dispatch_service import OtpDispatcher
from services.otp_service import OtpService
from services.token_service import TokenService
from services.verification_service import VerificationService
from shared.crypto import hash_password
from shared.datetime_utils import ensure_utc, utc_now

USER_PASSWORD = "correct-horse"


@pytest.fixture(autouse=True)
def disable_dotenv_loading(monkeypatch):
    """Prevent pydantic-settings from loading .env files in all unit tests."""
    import pydantic_settings.sources.providers.dotenv as ps_dotenv

    monkeypatch.setattr(ps_dotenv, "dotenv_values", lambda *a, **kw: {})


# ── In-memory repositories ────────────────────────────────────────────────────


class FakeClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or utc_now()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class InMemoryOtpRepository:
    def __init__(self) -> None:
        self.records: list[OtpRecordDoc] = []

    def _replace(self, record_id: ObjectId, **changes) -> OtpRecordDoc:
        for i, record in enumerate(self.records):
            if record.id == record_id:
                self.records[i] = record.model_copy(update=changes)
                return self.records[i]
        raise KeyError(record_id)

    def get(self, record_id: ObjectId) -> Optional[OtpRecordDoc]:
        return next((r for r in self.records if r.id == record_id), None)

    async def insert(self, record: OtpRecordDoc) -> OtpRecordDoc:
        saved = record.model_copy(update={"id": ObjectId()})
        self.records.append(saved)
        return saved

    async def find_latest(self, user_id, purpose) -> Optional[OtpRecordDoc]:
        matching = [
            r for r in self.records
            if r.user_id == user_id and r.purpose == OtpPurpose(purpose).value
        ]
        if not matching:
            return None
        return max(matching, key=lambda r: (r.created_at, r.id))

    async def claim(self, record_id, used_at) -> Optional[OtpRecordDoc]:
        record = self.get(record_id)
        if record is None or record.used:
            return None
        return self._replace(record_id, used=True, used_at=used_at)

    async def attach_verification_token(self, record_id, token, expires_at) -> bool:
        record = self.get(record_id)
        if (
            record is None
            or not record.used
            or record.purpose != OtpPurpose.FORGOT_PASSWORD.value
        ):
            return False
        self._replace(
            record_id,
            verification_token=token,
            verification_token_expiry=expires_at,
            expires_at=max(ensure_utc(record.expires_at), expires_at),
        )
        return True

    async def find_by_verification_token(self, user_id, token) -> Optional[OtpRecordDoc]:
        matching = [
            r for r in self.records
            if r.user_id == user_id
            and r.purpose == OtpPurpose.FORGOT_PASSWORD.value
            and r.used
            and r.verification_token == token
        ]
        return max(matching, key=lambda r: (r.created_at, r.id)) if matching else None

    async def burn_verification_token(self, record_id, token, now, expired_at) -> bool:
        record = self.get(record_id)
        if (
            record is None
            or record.verification_token != token
            or record.verification_token_expiry is None
            or ensure_utc(record.verification_token_expiry) <= now
        ):
            return False
        self._replace(record_id, verification_token_expiry=expired_at)
        return True


class InMemoryUserRepository:
    def __init__(self) -> None:
        self.users: dict[ObjectId, UserDoc] = {}

    def add(self, **fields) -> UserDoc:
        user = UserDoc(id=ObjectId(), **fields)
        self.users[user.id] = user
        return user

    def get(self, user_id: ObjectId) -> UserDoc:
        return self.users[user_id]

    def _update(self, user_id: ObjectId, **changes) -> None:
        self.users[user_id] = self.users[user_id].model_copy(update=changes)

    def _live(self):
        return [u for u in self.users.values() if not u.is_deleted]

    async def find_by_id(self, user_id) -> Optional[UserDoc]:
        user = self.users.get(user_id)
        return None if user is None or user.is_deleted else user

    async def find_by_contact(self, email=None, phone_number=None) -> Optional[UserDoc]:
        if not email and not phone_number:
            return None
        for user in self._live():
            if (email and user.email == email) or (
                phone_number and user.phone_number == phone_number
            ):
                return user
        return None

    async def find_many_by_email(self, email, role=None, limit=2) -> list[UserDoc]:
        found = [
            u for u in self._live()
            if u.email == email and (role is None or u.role == role)
        ]
        return found[:limit]

    async def find_by_phone(self, phone_number, role) -> Optional[UserDoc]:
        return next(
            (u for u in self._live() if u.phone_number == phone_number and u.role == role),
            None,
        )

    async def mark_verified(self, user_id, at) -> bool:
        if user_id not in self.users:
            return False
        self._update(user_id, is_verified=True, updated_at=at)
        return True

    async def set_phone_number(self, user_id, phone_number, at) -> None:
        self._update(user_id, phone_number=phone_number, updated_at=at)

    async def update_password(self, user_id, password_hash, at) -> bool:
        if user_id not in self.users:
            return False
        self._update(user_id, password_hash=password_hash, updated_at=at)
        return True

    async def set_refresh_token(self, user_id, token, expires_at, at) -> None:
        self._update(
            user_id, refresh_token=token, refresh_token_expiry=expires_at, last_login_at=at
        )

    async def swap_refresh_token(self, user_id, expected_token, new_token, expires_at) -> bool:
        user = self.users.get(user_id)
        if user is None or user.refresh_token != expected_token:
            return False
        self._update(user_id, refresh_token=new_token, refresh_token_expiry=expires_at)
        return True

    async def clear_refresh_token(self, user_id) -> bool:
        if user_id not in self.users:
            return False
        self._update(user_id, refresh_token=None, refresh_token_expiry=None)
        return True

    async def anonymize(self, user_id, at) -> bool:
        user = self.users.get(user_id)
        if user is None or user.is_deleted:
            return False
        self._update(
            user_id,
            first_name="Deleted",
            last_name="User",
            email=f"deleted_{user_id}@deleted.invalid",
            phone_number=f"deleted_{user_id}",
            is_active=False,
            is_deleted=True,
            two_factor_enabled=False,
            refresh_token=None,
            refresh_token_expiry=None,
            updated_at=at,
        )
        return True


# ── Service fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def otp_settings():
    return OtpSettings(
        use_dummy_otp=False,
        dummy_otp="000000",
        master_otp="987651",
        otp_validity_minutes=10,
        otp_length=6,
        password_min_length=6,
    )


@pytest.fixture
def jwt_settings():
    return JWTSettings(
        jwt_secret="test-secret",
        jwt_refresh_secret="test-refresh-secret",
        jwt_issuer="scan2card",
        jwt_audience="scan2card.api",
    )


@pytest.fixture
def otp_repo():
    return InMemoryOtpRepository()


@pytest.fixture
def user_repo():
    return InMemoryUserRepository()


@pytest.fixture
def sms_provider():
    provider = AsyncMock()
    provider.send_otp.return_value = True
    return provider


@pytest.fixture
def email_provider():
    provider = AsyncMock()
    provider.send_otp_email.return_value = True
    return provider


@pytest.fixture
def dispatcher(sms_provider, email_provider):
    return OtpDispatcher(sms_provider=sms_provider, email_provider=email_provider)


@pytest.fixture
def otp_service(otp_repo, dispatcher, otp_settings, clock):
    return OtpService(otp_repo, dispatcher, otp_settings, clock=clock)


@pytest.fixture
def token_service(user_repo, otp_repo, jwt_settings):
    # Real clock: PyJWT validates iat/exp against wall time
    return TokenService(user_repo, otp_repo, jwt_settings)


@pytest.fixture
def verification_service(otp_service, token_service, user_repo, otp_repo, clock):
    return VerificationService(otp_service, token_service, user_repo, otp_repo, clock=clock)


@pytest.fixture
def auth_service(user_repo, otp_service, verification_service, token_service, otp_settings, clock):
    return AuthService(
        user_repo, otp_service, verification_service, token_service, otp_settings, clock=clock
    )


@pytest.fixture
def user(user_repo):
    return user_repo.add(
        email="alice@example.com",
        phone_number="919876543210",
        first_name="Alice",
        last_name="Rao",
        password_hash=hash_password(USER_PASSWORD),
        role="ENDUSER",
        is_verified=False,
    )


@pytest.fixture
def email_only_user(user_repo):
    return user_repo.add(
        email="bob@example.com",
        first_name="Bob",
        password_hash=hash_password(USER_PASSWORD),
        role="EXHIBITOR",
    )

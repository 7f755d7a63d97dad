"""
FastAPI application factory.
create_app() is the single entry point for building the app.

The app is the composition root for the OTP / session-token services: it
builds the Mongo client, repositories, delivery providers and services once
in the lifespan and parks them on app.state for dependencies.py.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import sentry_sdk
from fastapi import FastAPI
from pymongo.asynchronous.mongo_client import AsyncMongoClient

from config import AppSettings
from errors import register_error_handlers
from infrastructure.email.zeptomail import ZeptoMailProvider
from infrastructure.http_client import HttpClient
from infrastructure.sms.textpe import TextPeSmsProvider
from repositories.otp_repository import OtpRepository
from repositories.user_repository import UserRepository
from routes.health_routes import router as health_router
from services.auth_service import AuthService
from services.dispatch_service import OtpDispatcher
from services.otp_service import OtpService
from services.token_service import TokenService
from services.verification_service import VerificationService
from shared.logging import get_logger, setup_logging

log = get_logger(__name__)


def build_services(app: FastAPI, db, settings: AppSettings) -> list[HttpClient]:
    """Wire repositories, providers and services onto app.state.

    Returns the HTTP clients so the caller can close them on shutdown.
    """
    otp_repo = OtpRepository(db["otps"])
    user_repo = UserRepository(db["users"])

    # Each provider gets its own client so per-attempt timeouts stay independent
    sms_http = HttpClient(timeout=settings.sms.sms_timeout_seconds)
    email_http = HttpClient(timeout=settings.email.email_timeout_seconds)
    validity = settings.otp.otp_validity_minutes
    dispatcher = OtpDispatcher(
        sms_provider=TextPeSmsProvider(settings.sms, sms_http, validity_minutes=validity),
        email_provider=ZeptoMailProvider(
            settings.email, email_http, validity_minutes=validity
        ),
    )

    otp_service = OtpService(otp_repo, dispatcher, settings.otp)
    token_service = TokenService(user_repo, otp_repo, settings.jwt)
    verification_service = VerificationService(
        otp_service, token_service, user_repo, otp_repo
    )

    app.state.otp_repo = otp_repo
    app.state.user_repo = user_repo
    app.state.otp_service = otp_service
    app.state.token_service = token_service
    app.state.verification_service = verification_service
    app.state.auth_service = AuthService(
        user_repo, otp_service, verification_service, token_service, settings.otp
    )
    return [sms_http, email_http]


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Create and return a fully configured FastAPI application."""
    if settings is None:
        settings = AppSettings()

    setup_logging(settings.logging, settings.env)

    # Initialise Sentry before anything else so it captures startup errors
    if settings.sentry.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry.sentry_dsn,
            send_default_pii=settings.sentry.sentry_send_pii,
            traces_sample_rate=settings.sentry.sentry_traces_sample_rate,
            profiles_sample_rate=settings.sentry.sentry_profile_sample_rate,
        )

    if settings.otp.use_dummy_otp:
        log.warning("otp_dummy_mode_enabled", env=settings.env)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # ── Startup ──────────────────────────────────────────────────────────
        mongo_client: AsyncMongoClient = AsyncMongoClient(
            settings.db.mongodb_uri, tz_aware=True
        )
        app.state.mongo_client = mongo_client
        app.state.db = mongo_client[settings.db.db_name]
        app.state.settings = settings

        http_clients = build_services(app, app.state.db, settings)
        await app.state.otp_repo.ensure_indexes()
        await app.state.user_repo.ensure_indexes()
        log.info("app_started", app_name=settings.app_name, env=settings.env)

        yield

        # ── Shutdown ─────────────────────────────────────────────────────────
        for client in http_clients:
            await client.aclose()
        await mongo_client.close()

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        docs_url=settings.docs_url,
        redoc_url=None,
        lifespan=lifespan,
    )

    register_error_handlers(app)
    app.include_router(health_router)

    return app

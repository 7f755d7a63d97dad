"""
FastAPI dependency providers.

All injectable dependencies are defined here as plain functions used with
FastAPI's Depends() system. Everything they return is built once in
app.create_app() and stored on app.state.
"""

from __future__ import annotations

from fastapi import Request

from config import AppSettings
from services.auth_service import AuthService
from services.otp_service import OtpService
from services.token_service import TokenService
from services.verification_service import VerificationService


def get_settings(request: Request) -> AppSettings:
    """Return the AppSettings instance stored on app.state."""
    return request.app.state.settings


async def get_db(request: Request):
    """Return the async MongoDB database from app.state."""
    return request.app.state.db


def get_otp_service(request: Request) -> OtpService:
    return request.app.state.otp_service


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_verification_service(request: Request) -> VerificationService:
    return request.app.state.verification_service


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service

"""
Health check endpoint.

GET /health - checks MongoDB connectivity and reports OTP delivery mode.
Rules:
- MongoDB failure → "unhealthy" (503), the app cannot function without it.
- Dummy OTP mode or an unconfigured SMS gateway → "degraded" (200).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from config import AppSettings
from dependencies import get_db, get_settings
from shared.logging import get_logger

log = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(
    db=Depends(get_db),
    settings: AppSettings = Depends(get_settings),
) -> JSONResponse:
    checks: dict[str, str] = {}
    overall = "healthy"

    try:
        await db.client.admin.command("ping")
        checks["mongodb"] = "ok"
    except PyMongoError as exc:
        log.error("health_mongodb_failed", error=str(exc))
        checks["mongodb"] = "error"
        overall = "unhealthy"

    if settings.otp.use_dummy_otp:
        checks["otp_delivery"] = "dummy"
    elif not settings.sms.is_configured:
        checks["otp_delivery"] = "sms_not_configured"
    else:
        checks["otp_delivery"] = "ok"
    if checks["otp_delivery"] != "ok" and overall == "healthy":
        overall = "degraded"

    status_code = 503 if overall == "unhealthy" else 200
    return JSONResponse(
        status_code=status_code,
        content={"status": overall, "checks": checks},
    )

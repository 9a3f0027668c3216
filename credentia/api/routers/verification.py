"""
Credentia — Public Verification Router

The only endpoint anonymous callers can reach. Negative answers are
deliberately generic: the body never says why a lookup failed.

Endpoints:
  POST /api/v1/verify  — {token | code [+ id], password?} → certificate view,
                         or 404 / 410 / 401 / 403

``id`` and ``code`` are the two query parameters of a certificate's
verification URL (and QR payload); ``code`` alone is what a person types in.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from credentia.systems.verification.types import VerificationOutcome

logger = structlog.get_logger("credentia.api.verification")

router = APIRouter()

_GENERIC_FAILURE = "Certificate could not be verified"

_NEGATIVE_RESPONSES: dict[VerificationOutcome, tuple[int, str]] = {
    VerificationOutcome.NOT_FOUND: (404, _GENERIC_FAILURE),
    VerificationOutcome.EXPIRED: (410, _GENERIC_FAILURE),
    VerificationOutcome.PASSWORD_REQUIRED: (401, "Password required"),
    VerificationOutcome.INVALID_PASSWORD: (403, _GENERIC_FAILURE),
}


class VerifyPayload(BaseModel):
    token: str = Field(default="", max_length=256)
    code: str = Field(default="", max_length=64)
    id: str | None = Field(default=None, max_length=256)
    password: str | None = Field(default=None, repr=False)


@router.post("/api/v1/verify", response_model=None)
async def verify_certificate(payload: VerifyPayload, request: Request) -> dict[str, Any] | JSONResponse:
    service = request.app.state.verification
    if payload.code.strip() and not payload.token.strip():
        result = await service.verify_code(payload.code, payload.password, certificate_id=payload.id)
    else:
        result = await service.verify(payload.token, payload.password)

    if result.outcome is VerificationOutcome.VERIFIED:
        return {"status": "verified", "data": result.certificate}

    status_code, message = _NEGATIVE_RESPONSES[result.outcome]
    return JSONResponse(
        status_code=status_code,
        content={"status": result.outcome.value, "error": message},
    )

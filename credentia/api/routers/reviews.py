"""
Credentia — Template Review REST Router

Reviewer-facing endpoints. Errors from the workflow propagate to the
application's exception handlers, which map them to status codes.

Endpoints:
  POST /api/v1/templates/{template_id}/decision  — Approve, reject or request revision
  GET  /api/v1/templates/pending                 — Templates awaiting review
  GET  /api/v1/templates/{template_id}/reviews   — Decision history for a template
  GET  /api/v1/certificates/unclaimed            — Placeholder certificates awaiting a recipient
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from credentia.systems.issuance.types import IssuerIdentity, ReviewDecision

logger = structlog.get_logger("credentia.api.reviews")

router = APIRouter()


class DecisionPayload(BaseModel):
    decision: ReviewDecision
    comment: str = ""
    reviewer: IssuerIdentity
    access_password: str | None = Field(default=None, repr=False)


@router.post("/api/v1/templates/{template_id}/decision")
async def submit_decision(template_id: str, payload: DecisionPayload, request: Request) -> dict[str, Any]:
    """Apply a reviewer decision. Resubmitting the same decision is a no-op."""
    workflow = request.app.state.workflow
    result = await workflow.submit_decision(
        template_id,
        payload.decision,
        payload.comment,
        payload.reviewer,
        access_password=payload.access_password,
    )

    certificate = result.certificate
    return {
        "status": "ok",
        "data": {
            "template_id": result.template.id,
            "template_status": result.template.status.value,
            "decision": result.decision.value,
            "review_id": result.review.id if result.review else None,
            "certificate": (
                {
                    "id": certificate.id,
                    "verification_id": certificate.verification_id,
                    "verification_code": certificate.verification_code,
                    "verification_url": certificate.verification_url,
                    "recipient_name": certificate.recipient_name,
                    "needs_claiming": certificate.needs_claiming,
                }
                if certificate
                else None
            ),
            "resolution": result.resolution.value if result.resolution else None,
            "degraded": result.degraded,
            "replayed": result.replayed,
        },
    }


@router.get("/api/v1/templates/pending")
async def list_pending_templates(request: Request) -> dict[str, Any]:
    templates = await request.app.state.workflow.pending_templates()
    return {
        "status": "ok",
        "data": [t.model_dump(mode="json") for t in templates],
    }


@router.get("/api/v1/templates/{template_id}/reviews")
async def get_review_history(template_id: str, request: Request) -> dict[str, Any]:
    reviews = await request.app.state.workflow.review_history(template_id)
    return {
        "status": "ok",
        "data": [r.model_dump(mode="json") for r in reviews],
    }


@router.get("/api/v1/certificates/unclaimed")
async def list_unclaimed_certificates(request: Request) -> dict[str, Any]:
    """Certificates issued to a placeholder recipient, for reconciliation."""
    certificates = await request.app.state.workflow.unclaimed_certificates()
    return {
        "status": "ok",
        "data": [
            c.model_dump(mode="json", exclude={"access_password_hash"}) for c in certificates
        ],
    }

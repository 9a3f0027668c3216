"""
Credentia — Verification Service

Public authenticity checks. A certificate is looked up either by its
opaque verification token (``verification_id``) or by the short
human-shareable verification code, optionally pinned to a certificate id
as carried in the QR payload. Then:

  no issued certificate for the lookup       → NOT_FOUND
  past its expiry                            → EXPIRED
  protected certificate, no password given   → PASSWORD_REQUIRED
  password given, hash does not match        → INVALID_PASSWORD
  otherwise                                  → VERIFIED + public view

Every call appends exactly one activity record. The certificate itself is
never written. Negative outcomes carry no certificate fields, internal ids
or hints about why the lookup failed.
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from credentia.clients.store import Collection
from credentia.primitives.records import (
    ActivityRecord,
    ActivityType,
    Certificate,
    CertificateStatus,
)
from credentia.systems.verification.passwords import verify_password
from credentia.systems.verification.types import VerificationOutcome, VerificationResult

if TYPE_CHECKING:
    from credentia.clients.store import DocumentStore

logger = structlog.get_logger("credentia.verification.service")


class VerificationService:
    """Read-only apart from audit writes; safe to call concurrently."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._logger = logger.bind(component="verification_service")

    async def verify(self, token: str, password: str | None = None) -> VerificationResult:
        """Verify by the opaque ``verification_id`` token."""
        token = (token or "").strip()
        certificate = await self._lookup({"verification_id": token}) if token else None
        return await self._evaluate(certificate, password, {"verification_id": token})

    async def verify_code(
        self,
        code: str,
        password: str | None = None,
        certificate_id: str | None = None,
    ) -> VerificationResult:
        """
        Verify by the human-shareable code.

        With ``certificate_id`` (the ``id`` half of a verification URL) the
        code must belong to that certificate; a mismatch reads as NOT_FOUND.
        """
        code = (code or "").strip().upper()
        certificate = await self._lookup({"verification_code": code}) if code else None
        if certificate is not None and certificate_id is not None:
            if not secrets.compare_digest(certificate.id, certificate_id.strip()):
                certificate = None
        return await self._evaluate(certificate, password, {"verification_code": code})

    async def _evaluate(
        self,
        certificate: Certificate | None,
        password: str | None,
        lookup: dict[str, Any],
    ) -> VerificationResult:
        password = (password or "").strip()

        if certificate is None:
            await self._audit(
                ActivityType.CERTIFICATE_VERIFICATION_FAILED,
                lookup,
                details={"reason": "not_found"},
            )
            return VerificationResult(outcome=VerificationOutcome.NOT_FOUND)

        if certificate.is_expired:
            await self._audit(ActivityType.CERTIFICATE_EXPIRED, lookup, certificate)
            self._logger.info("verification_expired", certificate_id=certificate.id)
            return VerificationResult(outcome=VerificationOutcome.EXPIRED)

        if not password:
            if certificate.password_protected:
                await self._audit(ActivityType.CERTIFICATE_PASSWORD_REQUIRED, lookup, certificate)
                return VerificationResult(outcome=VerificationOutcome.PASSWORD_REQUIRED)
            await self._audit(ActivityType.CERTIFICATE_VERIFIED, lookup, certificate)
            return VerificationResult(
                outcome=VerificationOutcome.VERIFIED,
                certificate=certificate.public_view(),
            )

        if not verify_password(password, certificate.access_password_hash):
            await self._audit(ActivityType.CERTIFICATE_PASSWORD_FAILED, lookup, certificate)
            self._logger.info("verification_password_mismatch", certificate_id=certificate.id)
            return VerificationResult(outcome=VerificationOutcome.INVALID_PASSWORD)

        await self._audit(ActivityType.CERTIFICATE_PASSWORD_VERIFIED, lookup, certificate)
        return VerificationResult(
            outcome=VerificationOutcome.VERIFIED,
            certificate=certificate.public_view(),
        )

    async def _lookup(self, filters: dict[str, Any]) -> Certificate | None:
        matches = await self._store.query(
            Collection.CERTIFICATES,
            {**filters, "status": CertificateStatus.ISSUED.value},
            limit=1,
        )
        if not matches:
            return None
        try:
            return Certificate.model_validate(matches[0])
        except PydanticValidationError:
            self._logger.error("malformed_certificate_record", certificate_id=matches[0].get("id"))
            return None

    async def _audit(
        self,
        activity_type: ActivityType,
        lookup: dict[str, Any],
        certificate: Certificate | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record the attempt. A failed audit write never changes the answer."""
        payload: dict[str, Any] = {**lookup, **(details or {})}
        if certificate is not None:
            payload["recipient_name"] = certificate.recipient_name
        activity = ActivityRecord(
            type=activity_type,
            certificate_id=certificate.id if certificate else None,
            template_id=certificate.template_id if certificate else None,
            details=payload,
        )
        try:
            await self._store.put(Collection.ACTIVITIES, activity.id, activity.model_dump(mode="json"))
        except Exception:
            self._logger.error(
                "verification_audit_failed",
                activity_type=activity_type.value,
                exc_info=True,
            )
            return

        self._logger.debug(
            "verification_attempt",
            outcome=activity_type.value,
            certificate_id=activity.certificate_id,
        )

"""
Credentia — Persisted Records

The documents this core reads and writes in the external store:
templates (externally owned), the documents and users it resolves
recipients from, append-only review and activity records, and
immutable certificates.

All records round-trip through ``model_dump(mode="json")`` /
``model_validate`` so any document store that speaks JSON can hold them.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import Field, model_validator

from credentia.primitives.common import CredentiaBaseModel, Identified, new_id, utc_now


# ─── Templates ────────────────────────────────────────────────────


class TemplateStatus(enum.StrEnum):
    """Review state of a template. Only PENDING_REVIEW accepts a decision."""

    PENDING_REVIEW = "pending_review"
    CLIENT_APPROVED = "client_approved"
    CLIENT_REJECTED = "client_rejected"
    NEEDS_REVISION = "needs_revision"


class Template(CredentiaBaseModel):
    """
    An authored credential description awaiting review.

    Created by the authoring flow; this core only moves its status and
    stamps the review fields.
    """

    id: str
    name: str = ""
    type: str = "completion"
    description: str = ""
    institution: str = ""
    course: str = ""
    recipient_name: str = ""
    status: TemplateStatus = TemplateStatus.PENDING_REVIEW
    created_by: str | None = None
    based_on_document_id: str | None = None

    # -- Review stamps --
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_comments: str = ""
    issued_certificate_id: str | None = None
    review_ids: list[str] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class DocumentRecord(CredentiaBaseModel):
    """An uploaded source document a template may have been built from."""

    id: str
    name: str = ""
    uploader_id: str | None = None


class UserRecord(CredentiaBaseModel):
    """A durable user identity."""

    id: str
    email: str = ""
    display_name: str = ""
    organization_id: str | None = None
    organization_name: str | None = None


# ─── Reviews ──────────────────────────────────────────────────────


class ReviewAction(enum.StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"
    REVISION_REQUESTED = "revision_requested"


class ReviewRecord(Identified):
    """One reviewer decision. Append-only."""

    template_id: str
    template_name: str = ""
    reviewer_id: str
    reviewer_name: str = ""
    reviewer_role: str = "client"
    action: ReviewAction
    comments: str = ""
    created_at: datetime = Field(default_factory=utc_now)


# ─── Activity Log ─────────────────────────────────────────────────


class ActivityType(enum.StrEnum):
    TEMPLATE_APPROVED = "template_approved_by_client"
    TEMPLATE_REJECTED = "template_rejected_by_client"
    TEMPLATE_REVISION_REQUESTED = "template_revision_requested"
    CERTIFICATE_AUTO_CREATED = "certificate_auto_created"
    CERTIFICATE_FALLBACK_CREATED = "certificate_fallback_created"  # degraded success
    CERTIFICATE_VERIFIED = "certificate_verified"
    CERTIFICATE_PASSWORD_VERIFIED = "certificate_password_verified"
    CERTIFICATE_VERIFICATION_FAILED = "certificate_verification_failed"
    CERTIFICATE_PASSWORD_REQUIRED = "certificate_password_required"
    CERTIFICATE_PASSWORD_FAILED = "certificate_password_failed"
    CERTIFICATE_EXPIRED = "certificate_expired"


class ActivityRecord(CredentiaBaseModel):
    """Generic audit trail entry. Append-only."""

    id: str = Field(default_factory=new_id)
    type: ActivityType
    actor_id: str | None = None
    template_id: str | None = None
    certificate_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)


# ─── Certificates ─────────────────────────────────────────────────


class CertificateCategory(enum.StrEnum):
    ACADEMIC = "academic"
    PROFESSIONAL = "professional"
    ACHIEVEMENT = "achievement"
    COMPLETION = "completion"
    PARTICIPATION = "participation"
    RECOGNITION = "recognition"
    CUSTOM = "custom"

    @classmethod
    def from_template_type(cls, raw: str | None) -> CertificateCategory:
        """Map a free-form template type onto a category. Unknown → COMPLETION."""
        if raw:
            try:
                return cls(raw.strip().lower())
            except ValueError:
                pass
        return cls.COMPLETION


class CertificateStatus(enum.StrEnum):
    ISSUED = "issued"
    REVOKED = "revoked"  # set by downstream tooling, never by this core


class CertificateMetadata(CredentiaBaseModel):
    """Provenance carried on every certificate."""

    model_config = {"frozen": True}

    version: str = "1.0"
    source_template_id: str
    auto_created: bool = True
    approved_by: str
    needs_claiming: bool = False
    resolution: str = ""
    issuer_type: str = "client"
    # Tamper-evidence fingerprint over (certificate id, issuer id, mint time).
    # Not a signature.
    issuer_fingerprint: str = ""
    institution: str = ""
    course: str = ""
    based_on_document_id: str | None = None


class Certificate(CredentiaBaseModel):
    """
    An issued credential bound to one recipient. Immutable.

    ``verification_id`` is the opaque public lookup key;
    ``verification_code`` is the short human-shareable code. They are
    generated independently and never equal.
    """

    model_config = {"frozen": True}

    id: str
    template_id: str

    # -- Issuer --
    issuer_id: str
    issuer_name: str
    organization_id: str
    organization_name: str

    # -- Recipient --
    recipient_id: str
    recipient_name: str
    recipient_email: str

    # -- Content --
    title: str
    description: str = ""
    category: CertificateCategory = CertificateCategory.COMPLETION
    status: CertificateStatus = CertificateStatus.ISSUED

    # -- Verification artifacts --
    verification_code: str
    verification_id: str
    content_hash: str
    verification_url: str
    qr_payload: str

    # -- Validity --
    issued_at: datetime
    expires_at: datetime | None = None

    # -- Access control --
    password_protected: bool = False
    access_password_hash: str | None = None

    metadata: CertificateMetadata

    @model_validator(mode="after")
    def _check_invariants(self) -> Certificate:
        if not self.recipient_email and not self.metadata.needs_claiming:
            raise ValueError("recipient_email is required unless the certificate needs claiming")
        if self.verification_code == self.verification_id:
            raise ValueError("verification_code and verification_id must differ")
        if self.password_protected and not self.access_password_hash:
            raise ValueError("password_protected certificates need an access_password_hash")
        return self

    @property
    def needs_claiming(self) -> bool:
        return self.metadata.needs_claiming

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and utc_now() >= self.expires_at

    def public_view(self) -> dict[str, Any]:
        """What the anonymous verification endpoint may show."""
        view = self.model_dump(mode="json", exclude={"access_password_hash"})
        view["metadata"].pop("resolution", None)
        view["metadata"].pop("based_on_document_id", None)
        return view

"""
Credentia — Certificate Minter

Builds a complete, immutable Certificate from a template, a resolved
recipient, and the approving issuer. Minting is pure: nothing is
persisted here. The caller puts the returned record into its own write set,
together with the unique-key records that make the store reject a
repeated code or token.

Generated artifacts:
  id                 UUIDv4
  verification_code  short human-shareable code (8 chars from A-Z0-9)
  verification_id    separate UUIDv4, the opaque public lookup key
  content_hash       SHA-256 over id, code and mint time
  verification_url   base URL parameterized by id and code (also the QR payload)

The content hash and the issuer fingerprint are tamper-evidence
fingerprints. Neither is a signature and neither proves who issued the
certificate.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta
from urllib.parse import urlencode

import structlog

from credentia.config import IssuanceConfig, VerificationConfig
from credentia.primitives.common import epoch_millis, new_uuid, utc_now
from credentia.primitives.records import (
    Certificate,
    CertificateCategory,
    CertificateMetadata,
    CertificateStatus,
    Template,
)
from credentia.systems.issuance.types import (
    IssuerIdentity,
    RecipientIdentity,
    ResolutionKind,
)
from credentia.systems.verification.passwords import hash_password

logger = structlog.get_logger("credentia.issuance.minter")

VERIFICATION_CODE_LENGTH = 8


def generate_verification_code(length: int, alphabet: str) -> str:
    """Random code from ``alphabet``. Uniqueness is the store's job, not ours."""
    return "".join(secrets.choice(alphabet) for _ in range(length))


def compute_content_hash(certificate_id: str, verification_code: str, minted_at: datetime) -> str:
    payload = f"{certificate_id}:{verification_code}:{epoch_millis(minted_at)}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def compute_issuer_fingerprint(certificate_id: str, issuer_id: str, minted_at: datetime) -> str:
    payload = f"{certificate_id}:{issuer_id}:{epoch_millis(minted_at)}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class CertificateMinter:
    """
    Stateless certificate factory.

    Safe to share across concurrent approvals: every call draws its own
    ids and randomness and touches no instance state.
    """

    def __init__(
        self,
        config: IssuanceConfig,
        verification_config: VerificationConfig | None = None,
    ) -> None:
        self._config = config
        self._verification_config = verification_config or VerificationConfig()
        self._logger = logger.bind(component="certificate_minter")

    def verification_url(self, certificate_id: str, verification_code: str) -> str:
        query = urlencode({"id": certificate_id, "code": verification_code})
        return f"{self._config.verification_base_url}?{query}"

    def mint(
        self,
        template: Template,
        recipient: RecipientIdentity,
        issuer: IssuerIdentity,
        *,
        resolution: ResolutionKind = ResolutionKind.CONFIDENT,
        access_password: str | None = None,
        now: datetime | None = None,
    ) -> Certificate:
        minted_at = now or utc_now()
        certificate_id = new_uuid()
        verification_id = new_uuid()
        code = generate_verification_code(VERIFICATION_CODE_LENGTH, self._config.code_alphabet)
        url = self.verification_url(certificate_id, code)

        expires_at = None
        if self._config.validity_days is not None:
            expires_at = minted_at + timedelta(days=self._config.validity_days)

        password_hash = None
        if access_password and access_password.strip():
            password_hash = hash_password(access_password, self._verification_config)

        certificate = Certificate(
            id=certificate_id,
            template_id=template.id,
            issuer_id=issuer.id,
            issuer_name=issuer.display_name or self._config.default_issuer_name,
            organization_id=issuer.organization_id or self._config.default_organization_id,
            organization_name=issuer.organization_name or self._config.default_organization_name,
            recipient_id=recipient.id,
            recipient_name=recipient.display_name,
            recipient_email=recipient.email,
            title=template.name,
            description=template.description,
            category=CertificateCategory.from_template_type(template.type),
            status=CertificateStatus.ISSUED,
            verification_code=code,
            verification_id=verification_id,
            content_hash=compute_content_hash(certificate_id, code, minted_at),
            verification_url=url,
            qr_payload=url,
            issued_at=minted_at,
            expires_at=expires_at,
            password_protected=password_hash is not None,
            access_password_hash=password_hash,
            metadata=CertificateMetadata(
                source_template_id=template.id,
                auto_created=True,
                approved_by=issuer.id,
                needs_claiming=recipient.needs_claiming,
                resolution=resolution.value,
                issuer_fingerprint=compute_issuer_fingerprint(certificate_id, issuer.id, minted_at),
                institution=template.institution,
                course=template.course,
                based_on_document_id=template.based_on_document_id,
            ),
        )

        self._logger.debug(
            "certificate_minted",
            certificate_id=certificate.id,
            template_id=template.id,
            category=certificate.category.value,
            needs_claiming=recipient.needs_claiming,
            password_protected=certificate.password_protected,
        )
        return certificate

"""
Unit tests for the Certificate Minter.

Verification artifact formats, category mapping, provenance metadata,
expiry, access passwords, and statistical uniqueness of verification ids.
"""

from __future__ import annotations

import hashlib
import re
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from credentia.config import IssuanceConfig, VerificationConfig
from credentia.primitives.common import epoch_millis
from credentia.primitives.records import CertificateCategory, CertificateStatus, Template
from credentia.systems.issuance.minter import (
    VERIFICATION_CODE_LENGTH,
    CertificateMinter,
    compute_content_hash,
    generate_verification_code,
)
from credentia.systems.issuance.types import IssuerIdentity, RecipientIdentity, ResolutionKind
from credentia.systems.verification.passwords import verify_password

_FAST_SCRYPT = VerificationConfig(scrypt_n=2**10)


def _make_template(**overrides) -> Template:
    fields = {
        "id": "tpl-1",
        "name": "Advanced Python",
        "type": "professional",
        "description": "Completed the advanced track",
        "institution": "Open University",
        "course": "PY-401",
        "recipient_name": "Jane Doe",
    }
    fields.update(overrides)
    return Template(**fields)


def _make_recipient(**overrides) -> RecipientIdentity:
    fields = {"id": "U1", "email": "jane@x.edu", "display_name": "Jane Doe"}
    fields.update(overrides)
    return RecipientIdentity(**fields)


def _make_issuer(**overrides) -> IssuerIdentity:
    fields = {"id": "reviewer-1", "display_name": "Prof. Smith"}
    fields.update(overrides)
    return IssuerIdentity(**fields)


def _make_minter(**config) -> CertificateMinter:
    return CertificateMinter(IssuanceConfig(**config), _FAST_SCRYPT)


# ─── Verification Artifacts ─────────────────────────────────────


class TestVerificationArtifacts:
    def test_code_format(self):
        minter = _make_minter()
        for _ in range(200):
            cert = minter.mint(_make_template(), _make_recipient(), _make_issuer())
            assert re.fullmatch(r"^[A-Z0-9]{8}$", cert.verification_code)
            assert cert.verification_id != cert.verification_code

    def test_verification_ids_unique_across_10000_mints(self):
        minter = _make_minter()
        template, recipient, issuer = _make_template(), _make_recipient(), _make_issuer()

        ids = {minter.mint(template, recipient, issuer).verification_id for _ in range(10_000)}

        assert len(ids) == 10_000

    def test_certificate_id_and_verification_id_differ(self):
        cert = _make_minter().mint(_make_template(), _make_recipient(), _make_issuer())
        assert cert.id != cert.verification_id

    def test_content_hash_binds_id_code_and_time(self):
        now = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
        cert = _make_minter().mint(_make_template(), _make_recipient(), _make_issuer(), now=now)

        expected = hashlib.sha256(
            f"{cert.id}:{cert.verification_code}:{epoch_millis(now)}".encode()
        ).hexdigest()
        assert cert.content_hash == expected
        assert cert.issued_at == now

    def test_content_hash_changes_with_timestamp(self):
        t0 = datetime(2025, 3, 1, tzinfo=UTC)
        assert compute_content_hash("c", "CODE1234", t0) != compute_content_hash(
            "c", "CODE1234", t0 + timedelta(milliseconds=1)
        )

    def test_qr_payload_is_verification_url(self):
        cert = _make_minter(verification_base_url="https://verify.test/check").mint(
            _make_template(), _make_recipient(), _make_issuer()
        )

        assert cert.qr_payload == cert.verification_url
        parsed = urlparse(cert.verification_url)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://verify.test/check"
        query = parse_qs(parsed.query)
        assert query["id"] == [cert.id]
        assert query["code"] == [cert.verification_code]

    def test_custom_code_alphabet(self):
        code = generate_verification_code(12, "AB")
        assert len(code) == 12
        assert set(code) <= {"A", "B"}

    def test_configured_alphabet_keeps_eight_character_codes(self):
        cert = _make_minter(code_alphabet="XYZ789").mint(
            _make_template(), _make_recipient(), _make_issuer()
        )
        assert re.fullmatch(r"^[XYZ789]{8}$", cert.verification_code)
        assert VERIFICATION_CODE_LENGTH == 8

    def test_blank_access_password_is_ignored(self):
        cert = _make_minter().mint(
            _make_template(), _make_recipient(), _make_issuer(), access_password="  "
        )
        assert cert.password_protected is False
        assert cert.access_password_hash is None


# ─── Content & Metadata ─────────────────────────────────────────


class TestContent:
    def test_fields_from_template_and_identities(self):
        cert = _make_minter().mint(
            _make_template(based_on_document_id="D1"),
            _make_recipient(),
            _make_issuer(organization_id="org-9", organization_name="Open University"),
            resolution=ResolutionKind.CONFIDENT,
        )

        assert cert.template_id == "tpl-1"
        assert cert.title == "Advanced Python"
        assert cert.description == "Completed the advanced track"
        assert cert.category == CertificateCategory.PROFESSIONAL
        assert cert.status == CertificateStatus.ISSUED
        assert cert.recipient_id == "U1"
        assert cert.recipient_email == "jane@x.edu"
        assert cert.issuer_id == "reviewer-1"
        assert cert.issuer_name == "Prof. Smith"
        assert cert.organization_id == "org-9"
        assert cert.metadata.source_template_id == "tpl-1"
        assert cert.metadata.auto_created is True
        assert cert.metadata.approved_by == "reviewer-1"
        assert cert.metadata.needs_claiming is False
        assert cert.metadata.resolution == "confident"
        assert cert.metadata.institution == "Open University"
        assert cert.metadata.course == "PY-401"
        assert cert.metadata.based_on_document_id == "D1"
        assert len(cert.metadata.issuer_fingerprint) == 64

    def test_issuer_defaults(self):
        cert = _make_minter().mint(_make_template(), _make_recipient(), IssuerIdentity(id="r1"))

        assert cert.issuer_name == "Certificate Authority"
        assert cert.organization_id == "default_org"
        assert cert.organization_name == "Certificate Authority"

    @pytest.mark.parametrize(
        ("raw_type", "expected"),
        [
            ("academic", CertificateCategory.ACADEMIC),
            ("Achievement", CertificateCategory.ACHIEVEMENT),
            (" recognition ", CertificateCategory.RECOGNITION),
            ("hackathon", CertificateCategory.COMPLETION),
            ("", CertificateCategory.COMPLETION),
        ],
    )
    def test_category_mapping_never_throws(self, raw_type, expected):
        cert = _make_minter().mint(_make_template(type=raw_type), _make_recipient(), _make_issuer())
        assert cert.category == expected

    def test_placeholder_recipient_marks_needs_claiming(self):
        recipient = _make_recipient(
            id="pending_abc", email="unknown@example.com", needs_claiming=True
        )
        cert = _make_minter().mint(
            _make_template(), recipient, _make_issuer(), resolution=ResolutionKind.PLACEHOLDER
        )

        assert cert.needs_claiming is True
        assert cert.recipient_email == "unknown@example.com"
        assert cert.metadata.resolution == "placeholder"

    def test_minting_is_pure(self):
        template = _make_template()
        before = template.model_dump()
        _make_minter().mint(template, _make_recipient(), _make_issuer())
        assert template.model_dump() == before


# ─── Validity & Access ──────────────────────────────────────────


class TestValidityAndAccess:
    def test_non_expiring_by_default(self):
        cert = _make_minter().mint(_make_template(), _make_recipient(), _make_issuer())
        assert cert.expires_at is None
        assert cert.is_expired is False

    def test_validity_days_sets_expiry(self):
        now = datetime(2025, 1, 1, tzinfo=UTC)
        cert = _make_minter(validity_days=365).mint(
            _make_template(), _make_recipient(), _make_issuer(), now=now
        )
        assert cert.expires_at == now + timedelta(days=365)

    def test_access_password_is_hashed(self):
        cert = _make_minter().mint(
            _make_template(), _make_recipient(), _make_issuer(), access_password="s3cret"
        )

        assert cert.password_protected is True
        assert cert.access_password_hash is not None
        assert "s3cret" not in cert.access_password_hash
        assert verify_password("s3cret", cert.access_password_hash)
        assert "access_password_hash" not in cert.public_view()

    def test_public_view_hides_internal_provenance(self):
        cert = _make_minter().mint(
            _make_template(based_on_document_id="D1"), _make_recipient(), _make_issuer()
        )
        view = cert.public_view()

        assert "resolution" not in view["metadata"]
        assert "based_on_document_id" not in view["metadata"]
        assert view["verification_id"] == cert.verification_id

"""
Credentia — Verification

The anonymous read path: given an opaque verification token (and an
optional access password), prove a certificate is authentic. Every attempt
is audited.
"""

from credentia.systems.verification.passwords import hash_password, verify_password
from credentia.systems.verification.service import VerificationService
from credentia.systems.verification.types import VerificationOutcome, VerificationResult

__all__ = [
    "VerificationOutcome",
    "VerificationResult",
    "VerificationService",
    "hash_password",
    "verify_password",
]

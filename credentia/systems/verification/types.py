"""
Credentia — Verification Type Definitions
"""

from __future__ import annotations

import enum
from typing import Any

from credentia.primitives.common import CredentiaBaseModel


class VerificationOutcome(enum.StrEnum):
    VERIFIED = "verified"
    NOT_FOUND = "not_found"
    PASSWORD_REQUIRED = "password_required"
    INVALID_PASSWORD = "invalid_password"
    EXPIRED = "expired"


class VerificationResult(CredentiaBaseModel):
    """
    Answer to one verification request.

    ``certificate`` holds the public certificate view and is only set
    when the outcome is VERIFIED. Negative outcomes carry nothing else.
    """

    outcome: VerificationOutcome
    certificate: dict[str, Any] | None = None

    @property
    def verified(self) -> bool:
        return self.outcome is VerificationOutcome.VERIFIED

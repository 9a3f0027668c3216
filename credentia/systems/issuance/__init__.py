"""
Credentia — Issuance

Reviewer decisions on credential templates and the certificates they
produce. ApprovalWorkflow drives the flow; IdentityResolver decides who a
certificate is for; CertificateMinter builds the record.
"""

from credentia.systems.issuance.minter import CertificateMinter
from credentia.systems.issuance.resolver import IdentityResolver
from credentia.systems.issuance.types import (
    DecisionResult,
    IssuerIdentity,
    RecipientIdentity,
    ResolutionKind,
    ResolutionOutcome,
    ReviewDecision,
)
from credentia.systems.issuance.workflow import ApprovalWorkflow

__all__ = [
    "ApprovalWorkflow",
    "CertificateMinter",
    "DecisionResult",
    "IdentityResolver",
    "IssuerIdentity",
    "RecipientIdentity",
    "ResolutionKind",
    "ResolutionOutcome",
    "ReviewDecision",
]

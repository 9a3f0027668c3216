"""
Credentia — Issuance Type Definitions

Identities, resolution outcomes, review decisions, and the result object
returned to reviewers.
"""

from __future__ import annotations

import enum

from pydantic import Field

from credentia.primitives.common import CredentiaBaseModel
from credentia.primitives.records import (
    ActivityType,
    Certificate,
    ReviewAction,
    ReviewRecord,
    Template,
    TemplateStatus,
)


# ─── Identities ───────────────────────────────────────────────────


class IssuerIdentity(CredentiaBaseModel):
    """The reviewer approving a template. Becomes the certificate issuer."""

    id: str
    display_name: str = ""
    organization_id: str | None = None
    organization_name: str | None = None


class RecipientIdentity(CredentiaBaseModel):
    """Who a certificate is for."""

    id: str
    email: str
    display_name: str
    needs_claiming: bool = False


# ─── Resolution ───────────────────────────────────────────────────


class ResolutionKind(enum.StrEnum):
    """Which strategy produced the recipient. Ordered by confidence."""

    CONFIDENT = "confident"  # document uploader with an email
    NAME_MATCH = "name_match"  # single display-name match with an email
    PLACEHOLDER = "placeholder"  # nobody found; certificate needs claiming


class ResolutionOutcome(CredentiaBaseModel):
    kind: ResolutionKind
    recipient: RecipientIdentity
    # Human-readable trail of the strategies tried, for reconciliation logs.
    trail: list[str] = Field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.kind is ResolutionKind.PLACEHOLDER


# ─── Decisions ────────────────────────────────────────────────────


class ReviewDecision(enum.StrEnum):
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_REVISION = "request_revision"

    @property
    def target_status(self) -> TemplateStatus:
        return _TARGET_STATUS[self]

    @property
    def review_action(self) -> ReviewAction:
        return _REVIEW_ACTION[self]

    @property
    def activity_type(self) -> ActivityType:
        return _ACTIVITY_TYPE[self]

    @property
    def requires_comment(self) -> bool:
        return self is not ReviewDecision.APPROVE


_TARGET_STATUS = {
    ReviewDecision.APPROVE: TemplateStatus.CLIENT_APPROVED,
    ReviewDecision.REJECT: TemplateStatus.CLIENT_REJECTED,
    ReviewDecision.REQUEST_REVISION: TemplateStatus.NEEDS_REVISION,
}

_REVIEW_ACTION = {
    ReviewDecision.APPROVE: ReviewAction.APPROVED,
    ReviewDecision.REJECT: ReviewAction.REJECTED,
    ReviewDecision.REQUEST_REVISION: ReviewAction.REVISION_REQUESTED,
}

_ACTIVITY_TYPE = {
    ReviewDecision.APPROVE: ActivityType.TEMPLATE_APPROVED,
    ReviewDecision.REJECT: ActivityType.TEMPLATE_REJECTED,
    ReviewDecision.REQUEST_REVISION: ActivityType.TEMPLATE_REVISION_REQUESTED,
}


class DecisionResult(CredentiaBaseModel):
    """
    What submit_decision did.

    ``replayed`` is True when the template already held the decision's
    target state and nothing new was written. ``degraded`` is True when
    the certificate is a placeholder awaiting claim (nobody resolved, or
    the template-only fallback ran), or when no certificate could be
    issued at all (``certificate`` is then None).
    """

    template: Template
    decision: ReviewDecision
    review: ReviewRecord | None = None
    certificate: Certificate | None = None
    resolution: ResolutionKind | None = None
    degraded: bool = False
    replayed: bool = False

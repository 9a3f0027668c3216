"""
Credentia — Approval Workflow

The review state machine for credential templates:

  pending_review ──approve──────────▶ client_approved   (+ certificate)
                 ──reject───────────▶ client_rejected
                 ──request_revision─▶ needs_revision

Every decision is committed as one write set: the review record, the
certificate and its activity (approve only), the decision activity, and
finally the template update guarded on ``status == pending_review``. The
guard serializes racing reviewers; the loser gets InvalidTransition and
nothing it staged is written. A certificate also claims its verification
code and token as unique keys in the same set; a collision re-mints a
bounded number of times.

Approval is never blocked by recipient trouble. If resolution or minting
fails, the transition is committed without a certificate and a second,
template-only fallback mint issues a placeholder certificate, recorded
with its own degraded-success activity. Resubmitting a decision the
template already reflects is a no-op replay.

Notifications to the template author are fire-and-forget background
tasks. A failed send is logged and counted, never raised.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from credentia.clients.store import Collection, WriteSet
from credentia.errors import (
    InvalidTransition,
    PreconditionFailed,
    StoreUnavailable,
    TemplateNotFound,
    ValidationError,
)
from credentia.primitives.common import utc_now
from credentia.primitives.records import (
    ActivityRecord,
    ActivityType,
    Certificate,
    ReviewRecord,
    Template,
    TemplateStatus,
)
from credentia.systems.issuance.types import (
    DecisionResult,
    IssuerIdentity,
    ResolutionKind,
    ResolutionOutcome,
    ReviewDecision,
)

if TYPE_CHECKING:
    from datetime import datetime

    from credentia.clients.notifications import NotificationSender
    from credentia.clients.store import DocumentStore
    from credentia.config import IssuanceConfig
    from credentia.systems.issuance.minter import CertificateMinter
    from credentia.systems.issuance.resolver import IdentityResolver

logger = structlog.get_logger("credentia.issuance.workflow")

DEFAULT_APPROVAL_COMMENT = "Template meets all requirements and is approved for use"

# Template fields stamped by a decision.
_REVIEW_STAMP_FIELDS = (
    "status",
    "reviewed_by",
    "reviewed_at",
    "review_comments",
    "issued_certificate_id",
    "updated_at",
)


class ApprovalWorkflow:
    """
    Entry point for reviewers.

    All dependencies are injected; the workflow keeps no per-request state
    beyond the set of in-flight notification tasks.
    """

    def __init__(
        self,
        store: DocumentStore,
        resolver: IdentityResolver,
        minter: CertificateMinter,
        notifier: NotificationSender,
        config: IssuanceConfig,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._minter = minter
        self._notifier = notifier
        self._config = config
        self._logger = logger.bind(component="approval_workflow")

        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._notification_failures: int = 0

    @property
    def notification_failures(self) -> int:
        return self._notification_failures

    # ─── Decisions ────────────────────────────────────────────────

    async def submit_decision(
        self,
        template_id: str,
        decision: ReviewDecision | str,
        comment: str | None,
        reviewer: IssuerIdentity,
        *,
        access_password: str | None = None,
    ) -> DecisionResult:
        """
        Apply a reviewer decision to a pending template.

        Raises:
            ValidationError: unknown decision, missing comment for reject or
                request_revision, missing reviewer, or a password on a
                non-approve decision.
            TemplateNotFound: no template with ``template_id``.
            InvalidTransition: the template is in some other terminal state,
                or another reviewer committed first.
            StoreUnavailable: the store stayed unreachable through every
                bounded retry. Nothing was left half-written.
        """
        access_password = (access_password or "").strip() or None
        decision = self._validate(template_id, decision, comment, reviewer, access_password)
        comment = (comment or "").strip()

        retries = self._config.commit_retry_attempts
        attempt = 0
        while True:
            template = await self._load_template(template_id)
            if template.status is not TemplateStatus.PENDING_REVIEW:
                return await self._replay(template, decision, reviewer, access_password)

            try:
                return await self._apply(template, decision, comment, reviewer, access_password)
            except StoreUnavailable:
                if attempt >= retries:
                    self._logger.error(
                        "decision_commit_failed",
                        template_id=template_id,
                        decision=decision.value,
                        attempts=attempt + 1,
                    )
                    raise
                attempt += 1
                self._logger.warning(
                    "decision_commit_retry",
                    template_id=template_id,
                    decision=decision.value,
                    attempt=attempt,
                    max_retries=retries,
                )

    def _validate(
        self,
        template_id: str,
        decision: ReviewDecision | str,
        comment: str | None,
        reviewer: IssuerIdentity,
        access_password: str | None,
    ) -> ReviewDecision:
        if not template_id:
            raise ValidationError("template_id is required")
        try:
            parsed = ReviewDecision(decision)
        except ValueError:
            raise ValidationError(f"Unknown decision: {decision}", decision=str(decision)) from None
        if parsed.requires_comment and not (comment or "").strip():
            raise ValidationError(f"A comment is required to {parsed.value}", decision=parsed.value)
        if not reviewer.id:
            raise ValidationError("Reviewer id is required")
        if access_password and parsed is not ReviewDecision.APPROVE:
            raise ValidationError("access_password only applies to approve", decision=parsed.value)
        return parsed

    async def _apply(
        self,
        template: Template,
        decision: ReviewDecision,
        comment: str,
        reviewer: IssuerIdentity,
        access_password: str | None,
    ) -> DecisionResult:
        now = utc_now()
        if decision is ReviewDecision.APPROVE and not comment:
            comment = DEFAULT_APPROVAL_COMMENT

        review = ReviewRecord(
            template_id=template.id,
            template_name=template.name,
            reviewer_id=reviewer.id,
            reviewer_name=reviewer.display_name,
            action=decision.review_action,
            comments=comment,
            created_at=now,
        )

        certificate: Certificate | None = None
        outcome: ResolutionOutcome | None = None
        resolution: ResolutionKind | None = None
        mint_error: str = ""
        if decision is ReviewDecision.APPROVE:
            try:
                outcome = await self._resolver.resolve(template)
                certificate = self._minter.mint(
                    template,
                    outcome.recipient,
                    reviewer,
                    resolution=outcome.kind,
                    access_password=access_password,
                    now=now,
                )
                resolution = outcome.kind
            except Exception as exc:
                # Approval goes ahead; the fallback mint runs after commit.
                mint_error = f"{type(exc).__name__}: {exc}"
                self._logger.warning(
                    "certificate_mint_failed",
                    template_id=template.id,
                    error=mint_error,
                )

        collisions = 0
        while True:
            updated, write_set = self._decision_write_set(
                template, decision, review, comment, reviewer, certificate, resolution, now
            )
            try:
                await self._store.commit(write_set)
                break
            except PreconditionFailed as exc:
                if exc.collection != Collection.UNIQUE_KEYS or outcome is None:
                    current = await self._current_status(template.id)
                    self._logger.warning(
                        "review_race_lost",
                        template_id=template.id,
                        decision=decision.value,
                        current_status=current,
                    )
                    raise InvalidTransition(template.id, current, decision.value) from exc

                collisions += 1
                self._logger.warning(
                    "verification_key_collision",
                    template_id=template.id,
                    key=exc.doc_id,
                    attempt=collisions,
                )
                if collisions > self._config.mint_collision_retries:
                    # Commit the decision alone; the fallback mint tries again.
                    certificate, resolution = None, None
                    mint_error = "verification_key_collision"
                    continue
                certificate = self._minter.mint(
                    template,
                    outcome.recipient,
                    reviewer,
                    resolution=outcome.kind,
                    access_password=access_password,
                    now=now,
                )

        self._logger.info(
            "decision_committed",
            template_id=template.id,
            decision=decision.value,
            reviewer_id=reviewer.id,
            certificate_id=certificate.id if certificate else None,
            resolution=resolution.value if resolution else None,
        )

        degraded = resolution is ResolutionKind.PLACEHOLDER
        if decision is ReviewDecision.APPROVE and certificate is None:
            degraded = True
            certificate = await self._fallback_mint(updated, reviewer, mint_error, access_password)
            if certificate is not None:
                updated = updated.model_copy(update={"issued_certificate_id": certificate.id})
                resolution = ResolutionKind.PLACEHOLDER

        self._notify(updated, decision, comment)
        return DecisionResult(
            template=updated,
            decision=decision,
            review=review,
            certificate=certificate,
            resolution=resolution,
            degraded=degraded,
        )

    def _decision_write_set(
        self,
        template: Template,
        decision: ReviewDecision,
        review: ReviewRecord,
        comment: str,
        reviewer: IssuerIdentity,
        certificate: Certificate | None,
        resolution: ResolutionKind | None,
        now: datetime,
    ) -> tuple[Template, WriteSet]:
        updated = template.model_copy(
            update={
                "status": decision.target_status,
                "reviewed_by": reviewer.id,
                "reviewed_at": now,
                "review_comments": comment,
                "issued_certificate_id": certificate.id if certificate else None,
                "updated_at": now,
                "review_ids": [*template.review_ids, review.id],
            }
        )

        write_set = WriteSet()
        write_set.put(Collection.REVIEWS, review.id, review.model_dump(mode="json"))
        if certificate is not None:
            _stage_certificate(write_set, certificate)
            self._put_activity(
                write_set,
                ActivityRecord(
                    type=ActivityType.CERTIFICATE_AUTO_CREATED,
                    actor_id=reviewer.id,
                    template_id=template.id,
                    certificate_id=certificate.id,
                    details={
                        "recipient_id": certificate.recipient_id,
                        "recipient_name": certificate.recipient_name,
                        "resolution": resolution.value if resolution else "",
                        "needs_claiming": certificate.needs_claiming,
                    },
                    timestamp=now,
                ),
            )
        self._put_activity(
            write_set,
            ActivityRecord(
                type=decision.activity_type,
                actor_id=reviewer.id,
                template_id=template.id,
                certificate_id=certificate.id if certificate else None,
                details={"template_name": template.name, "comments": comment, "review_id": review.id},
                timestamp=now,
            ),
        )
        # Template last: a partially applied set never shows a decided
        # template without its records.
        write_set.update(
            Collection.TEMPLATES,
            template.id,
            _stamp_changes(updated),
            expected={"status": TemplateStatus.PENDING_REVIEW.value},
            appends={"review_ids": review.id},
        )
        return updated, write_set

    async def _replay(
        self,
        template: Template,
        decision: ReviewDecision,
        reviewer: IssuerIdentity,
        access_password: str | None,
    ) -> DecisionResult:
        """Resubmission of a decision the template already reflects."""
        if template.status is not decision.target_status:
            self._logger.info(
                "decision_rejected",
                template_id=template.id,
                decision=decision.value,
                current_status=template.status.value,
            )
            raise InvalidTransition(template.id, template.status.value, decision.value)

        certificate: Certificate | None = None
        degraded = False
        if decision is ReviewDecision.APPROVE:
            certificate = await self._find_certificate(template)
            if certificate is None:
                # An earlier approval committed but its fallback mint never landed.
                self._logger.warning("approved_template_without_certificate", template_id=template.id)
                degraded = True
                certificate = await self._fallback_mint(
                    template, reviewer, "missing_on_replay", access_password
                )
                if certificate is not None:
                    template = template.model_copy(update={"issued_certificate_id": certificate.id})
            else:
                degraded = certificate.needs_claiming

        self._logger.info(
            "decision_replayed",
            template_id=template.id,
            decision=decision.value,
            certificate_id=certificate.id if certificate else None,
        )
        return DecisionResult(
            template=template,
            decision=decision,
            certificate=certificate,
            resolution=_resolution_of(certificate),
            degraded=degraded,
            replayed=True,
        )

    async def _fallback_mint(
        self,
        template: Template,
        reviewer: IssuerIdentity,
        reason: str,
        access_password: str | None,
    ) -> Certificate | None:
        """
        Issue a placeholder certificate from template data alone.

        Committed separately from the decision, guarded on the template
        still being approved and holding no certificate. Returns None if
        even this fails; the approval itself stands.
        """
        recipient = self._resolver.placeholder(template)
        for attempt in range(self._config.mint_collision_retries + 1):
            now = utc_now()
            try:
                certificate = self._minter.mint(
                    template,
                    recipient,
                    reviewer,
                    resolution=ResolutionKind.PLACEHOLDER,
                    access_password=access_password,
                    now=now,
                )
                write_set = WriteSet()
                _stage_certificate(write_set, certificate)
                self._put_activity(
                    write_set,
                    ActivityRecord(
                        type=ActivityType.CERTIFICATE_FALLBACK_CREATED,
                        actor_id=reviewer.id,
                        template_id=template.id,
                        certificate_id=certificate.id,
                        details={
                            "reason": reason,
                            "recipient_id": certificate.recipient_id,
                            "recipient_name": certificate.recipient_name,
                            "needs_claiming": True,
                        },
                        timestamp=now,
                    ),
                )
                write_set.update(
                    Collection.TEMPLATES,
                    template.id,
                    _stamp_changes(
                        template.model_copy(
                            update={"issued_certificate_id": certificate.id, "updated_at": now}
                        ),
                        ("issued_certificate_id", "updated_at"),
                    ),
                    expected={
                        "status": TemplateStatus.CLIENT_APPROVED.value,
                        "issued_certificate_id": None,
                    },
                )
                await self._store.commit(write_set)
            except PreconditionFailed as exc:
                if exc.collection == Collection.UNIQUE_KEYS:
                    self._logger.warning(
                        "verification_key_collision",
                        template_id=template.id,
                        key=exc.doc_id,
                        attempt=attempt + 1,
                    )
                    continue
                self._logger.warning("fallback_mint_superseded", template_id=template.id)
                return await self._find_certificate(template)
            except Exception:
                self._logger.error(
                    "fallback_mint_failed",
                    template_id=template.id,
                    reason=reason,
                    exc_info=True,
                )
                return None

            self._logger.warning(
                "certificate_fallback_created",
                template_id=template.id,
                certificate_id=certificate.id,
                reason=reason,
            )
            return certificate

        self._logger.error(
            "fallback_mint_failed",
            template_id=template.id,
            reason="verification_key_collision",
        )
        return None

    # ─── Read Paths ───────────────────────────────────────────────

    async def get_template(self, template_id: str) -> Template:
        return await self._load_template(template_id)

    async def pending_templates(self) -> list[Template]:
        raw = await self._store.query(
            Collection.TEMPLATES, {"status": TemplateStatus.PENDING_REVIEW.value}
        )
        templates = [_parse(Template, doc) for doc in raw]
        return sorted(
            (t for t in templates if t is not None),
            key=lambda t: t.created_at,
        )

    async def review_history(self, template_id: str) -> list[ReviewRecord]:
        """All decisions ever recorded for a template, oldest first."""
        await self._load_template(template_id)
        raw = await self._store.query(Collection.REVIEWS, {"template_id": template_id})
        reviews = [_parse(ReviewRecord, doc) for doc in raw]
        return sorted(
            (r for r in reviews if r is not None),
            key=lambda r: r.created_at,
        )

    async def unclaimed_certificates(self) -> list[Certificate]:
        """Placeholder certificates still waiting for a real recipient."""
        raw = await self._store.query(
            Collection.CERTIFICATES,
            {"metadata.needs_claiming": True, "status": "issued"},
        )
        certificates = [_parse(Certificate, doc) for doc in raw]
        return sorted(
            (c for c in certificates if c is not None),
            key=lambda c: c.issued_at,
        )

    # ─── Notifications ────────────────────────────────────────────

    def _notify(self, template: Template, decision: ReviewDecision, comment: str) -> None:
        if not template.created_by:
            self._logger.debug("notification_skipped_no_author", template_id=template.id)
            return

        title, body, data = _notification_content(template, decision, comment)
        self._spawn_tracked_task(
            self._notifier.send(template.created_by, title, body, data),
            name=f"notify_{decision.value}_{template.id}",
        )

    async def drain(self) -> None:
        """Wait for every in-flight notification. Failures are already logged."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    def _spawn_tracked_task(self, coro: Any, name: str = "") -> asyncio.Task[Any]:
        """
        Spawn a background task with lifecycle tracking.

        Keeps a strong reference so the task isn't garbage-collected, and
        logs failures instead of dropping them.
        """
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_task_done)
        return task

    def _on_background_task_done(self, task: asyncio.Task[Any]) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._notification_failures += 1
            self._logger.warning(
                "notification_failed",
                task_name=task.get_name(),
                error=str(exc),
            )

    # ─── Helpers ──────────────────────────────────────────────────

    async def _load_template(self, template_id: str) -> Template:
        raw = await self._store.get(Collection.TEMPLATES, template_id)
        if raw is None:
            raise TemplateNotFound(template_id)
        try:
            return Template.model_validate(raw)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Template {template_id} is malformed", template_id=template_id
            ) from exc

    async def _current_status(self, template_id: str) -> str:
        raw = await self._store.get(Collection.TEMPLATES, template_id)
        if raw is None:
            return "missing"
        return str(raw.get("status", "unknown"))

    async def _find_certificate(self, template: Template) -> Certificate | None:
        raw: dict[str, Any] | None = None
        if template.issued_certificate_id:
            raw = await self._store.get(Collection.CERTIFICATES, template.issued_certificate_id)
        if raw is None:
            matches = await self._store.query(
                Collection.CERTIFICATES, {"template_id": template.id}, limit=1
            )
            raw = matches[0] if matches else None
        return _parse(Certificate, raw) if raw is not None else None

    @staticmethod
    def _put_activity(write_set: WriteSet, activity: ActivityRecord) -> None:
        write_set.put(Collection.ACTIVITIES, activity.id, activity.model_dump(mode="json"))


# ─── Module Helpers ───────────────────────────────────────────────


def _stamp_changes(
    template: Template, fields: tuple[str, ...] = _REVIEW_STAMP_FIELDS
) -> dict[str, Any]:
    dumped = template.model_dump(mode="json")
    return {name: dumped[name] for name in fields}


def _stage_certificate(write_set: WriteSet, certificate: Certificate) -> None:
    """Put the certificate plus the unique-key records that claim its code and token."""
    write_set.put(Collection.CERTIFICATES, certificate.id, certificate.model_dump(mode="json"))
    for kind, value in (
        ("verification_code", certificate.verification_code),
        ("verification_id", certificate.verification_id),
    ):
        key = f"{kind}:{value}"
        write_set.put(
            Collection.UNIQUE_KEYS,
            key,
            {"id": key, "kind": kind, "value": value, "certificate_id": certificate.id},
        )


def _parse(model: Any, raw: dict[str, Any]) -> Any:
    try:
        return model.model_validate(raw)
    except PydanticValidationError:
        logger.warning("malformed_record_skipped", model=model.__name__, record_id=raw.get("id"))
        return None


def _resolution_of(certificate: Certificate | None) -> ResolutionKind | None:
    if certificate is None or not certificate.metadata.resolution:
        return None
    try:
        return ResolutionKind(certificate.metadata.resolution)
    except ValueError:
        return None


def _notification_content(
    template: Template, decision: ReviewDecision, comment: str
) -> tuple[str, str, dict[str, Any]]:
    if decision is ReviewDecision.APPROVE:
        return (
            "Template Approved",
            f'Your template "{template.name}" has been approved by client review.',
            {"type": "template_approval", "template_id": template.id},
        )
    if decision is ReviewDecision.REJECT:
        return (
            "Template Rejected",
            f'Your template "{template.name}" has been rejected. Reason: {comment}',
            {"type": "template_rejection", "template_id": template.id, "reason": comment},
        )
    return (
        "Template Revision Requested",
        f'Revision requested for template "{template.name}". Comments: {comment}',
        {"type": "template_revision", "template_id": template.id, "comments": comment},
    )

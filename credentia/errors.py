"""
Credentia -- Error Hierarchy

All exceptions raised by the issuance core and its store clients.

Reviewer-facing operations surface these unchanged so callers can give
actionable messages. The public verification path never raises them for
lookup misses; it returns a VerificationOutcome instead.

Severity guide:
  ValidationError     caller's fault, no state change
  NotFoundError       referenced entity absent
  InvalidTransition   state machine violation (includes losing a review race)
  StoreUnavailable    infrastructure fault, safe to retry
  PreconditionFailed  store-level guard failed, nothing written
"""

from __future__ import annotations

from typing import Any


class CredentiaError(Exception):
    """Base for all Credentia errors."""

    code: str = "ERROR"

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra


class ValidationError(CredentiaError):
    """Bad input. No state was changed."""

    code = "VALIDATION_ERROR"


class NotFoundError(CredentiaError):
    code = "NOT_FOUND"


class TemplateNotFound(NotFoundError):
    code = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str) -> None:
        super().__init__(f"Template not found: {template_id}", template_id=template_id)
        self.template_id = template_id


class InvalidTransition(CredentiaError):
    """The template is not in a state that accepts this decision."""

    code = "INVALID_TRANSITION"

    def __init__(self, template_id: str, current_status: str, decision: str) -> None:
        super().__init__(
            f"Template {template_id} is {current_status}; cannot apply {decision}",
            template_id=template_id,
            current_status=current_status,
            decision=decision,
        )
        self.template_id = template_id
        self.current_status = current_status
        self.decision = decision


class StoreUnavailable(CredentiaError):
    """
    The external store could not be reached or timed out.

    Recovery: bounded retry by the caller. Any write set that raised this
    either committed fully or not at all.
    """

    code = "STORE_UNAVAILABLE"


class PreconditionFailed(CredentiaError):
    """A guarded write found the record in an unexpected state. Nothing was written."""

    code = "PRECONDITION_FAILED"

    def __init__(self, collection: str, doc_id: str, field: str | None = None) -> None:
        detail = f" ({field})" if field else ""
        super().__init__(
            f"Precondition failed on {collection}/{doc_id}{detail}",
            collection=collection,
            doc_id=doc_id,
            field=field,
        )
        self.collection = collection
        self.doc_id = doc_id
        self.field = field

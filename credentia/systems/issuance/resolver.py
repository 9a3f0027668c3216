"""
Credentia — Identity Resolver

Decides who a certificate is for. Templates are often authored without a
verified link back to the person they describe (legacy data, manual entry,
a deleted source document), so resolution walks an ordered list of
strategies and stops at the first confident match:

  1. document_uploader  template → source document → uploader → user with email
  2. display_name       exactly one user whose display name equals the
                        template's recipient name, and who has an email
  3. placeholder        a fresh ``pending_`` id, the sentinel email, and the
                        template's recipient name verbatim

"Not found" is never an error here; each miss falls through to the next
strategy. Only genuine backend faults (StoreUnavailable) propagate.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

import structlog
from pydantic import ValidationError as PydanticValidationError

from credentia.clients.store import Collection
from credentia.primitives.common import new_uuid
from credentia.primitives.records import DocumentRecord, Template, UserRecord
from credentia.systems.issuance.types import (
    RecipientIdentity,
    ResolutionKind,
    ResolutionOutcome,
)

if TYPE_CHECKING:
    from credentia.clients.store import DocumentStore
    from credentia.config import IssuanceConfig

logger = structlog.get_logger("credentia.issuance.resolver")


class StrategyAttempt:
    """Result of one strategy: an identity, or the reason it missed."""

    __slots__ = ("identity", "reason")

    def __init__(self, identity: RecipientIdentity | None = None, reason: str = "matched") -> None:
        self.identity = identity
        self.reason = reason

    @classmethod
    def miss(cls, reason: str) -> StrategyAttempt:
        return cls(None, reason)


class ResolutionStrategy(Protocol):
    name: str
    kind: ResolutionKind

    async def attempt(self, template: Template) -> StrategyAttempt: ...


def _parse_user(raw: dict[str, Any] | None) -> UserRecord | None:
    if raw is None:
        return None
    try:
        return UserRecord.model_validate(raw)
    except PydanticValidationError:
        logger.warning("malformed_user_record", user_id=raw.get("id"))
        return None


class DocumentUploaderStrategy:
    """Follow the template's source document back to whoever uploaded it."""

    name = "document_uploader"
    kind = ResolutionKind.CONFIDENT

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def attempt(self, template: Template) -> StrategyAttempt:
        if not template.based_on_document_id:
            return StrategyAttempt.miss("no_document_reference")

        raw_doc = await self._store.get(Collection.DOCUMENTS, template.based_on_document_id)
        if raw_doc is None:
            return StrategyAttempt.miss("document_missing")
        try:
            document = DocumentRecord.model_validate(raw_doc)
        except PydanticValidationError:
            return StrategyAttempt.miss("document_malformed")
        if not document.uploader_id:
            return StrategyAttempt.miss("uploader_missing")

        user = _parse_user(await self._store.get(Collection.USERS, document.uploader_id))
        if user is None:
            return StrategyAttempt.miss("uploader_not_found")
        if not user.email.strip():
            return StrategyAttempt.miss("uploader_has_no_email")

        return StrategyAttempt(
            RecipientIdentity(
                id=user.id,
                email=user.email.strip(),
                display_name=user.display_name or template.recipient_name,
            )
        )


class DisplayNameStrategy:
    """Last-resort search by the recipient name written on the template."""

    name = "display_name"
    kind = ResolutionKind.NAME_MATCH

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def attempt(self, template: Template) -> StrategyAttempt:
        name = template.recipient_name.strip()
        if not name:
            return StrategyAttempt.miss("no_recipient_name")

        # Two is enough to tell "unique" from "ambiguous".
        candidates = await self._store.query(Collection.USERS, {"display_name": name}, limit=2)
        if not candidates:
            return StrategyAttempt.miss("no_name_match")
        if len(candidates) > 1:
            return StrategyAttempt.miss("ambiguous_name_match")

        user = _parse_user(candidates[0])
        if user is None or not user.email.strip():
            return StrategyAttempt.miss("name_match_has_no_email")

        return StrategyAttempt(
            RecipientIdentity(id=user.id, email=user.email.strip(), display_name=user.display_name)
        )


class IdentityResolver:
    """
    Tries each strategy in order and falls back to a placeholder identity.

    Holds no per-call state; one instance can serve concurrent resolutions.
    """

    def __init__(
        self,
        store: DocumentStore,
        config: IssuanceConfig,
        strategies: list[ResolutionStrategy] | None = None,
    ) -> None:
        self._config = config
        self._strategies: list[ResolutionStrategy] = (
            strategies
            if strategies is not None
            else [DocumentUploaderStrategy(store), DisplayNameStrategy(store)]
        )
        self._logger = logger.bind(component="identity_resolver")

    async def resolve(self, template: Template) -> ResolutionOutcome:
        trail: list[str] = []
        for strategy in self._strategies:
            attempt = await strategy.attempt(template)
            trail.append(f"{strategy.name}:{attempt.reason}")
            if attempt.identity is None:
                continue

            log = self._logger.info if strategy.kind is ResolutionKind.CONFIDENT else self._logger.warning
            log(
                "identity_resolved",
                template_id=template.id,
                step=strategy.name,
                kind=strategy.kind.value,
                recipient_id=attempt.identity.id,
                trail=trail,
            )
            return ResolutionOutcome(kind=strategy.kind, recipient=attempt.identity, trail=trail)

        recipient = self.placeholder(template)
        trail.append("placeholder:issued")
        self._logger.warning(
            "identity_unresolved",
            template_id=template.id,
            step="placeholder",
            recipient_id=recipient.id,
            trail=trail,
        )
        return ResolutionOutcome(kind=ResolutionKind.PLACEHOLDER, recipient=recipient, trail=trail)

    def placeholder(self, template: Template) -> RecipientIdentity:
        """An identity pending manual claim. Needs no store access."""
        return RecipientIdentity(
            id=f"{self._config.placeholder_id_prefix}{new_uuid()}",
            email=self._config.placeholder_email,
            display_name=template.recipient_name,
            needs_claiming=True,
        )

"""
Credentia — Document Store Contract

The issuance core talks to its external store only through the
``DocumentStore`` protocol: get-by-id, field-equality queries,
conditional updates, atomic multi-record commits, and append-to-set.

A ``WriteSet`` is an ordered list of ``Put`` and ``Update`` operations
committed as one unit. Guards (``Put.create_only`` and
``Update.expected``) are evaluated against the state the set itself has
built up so far, so a later operation sees the effect of an earlier one.
If any guard fails the store raises ``PreconditionFailed`` and writes
nothing.
"""

from __future__ import annotations

import copy
import enum
from dataclasses import dataclass, field
from typing import Any, Protocol

from credentia.errors import PreconditionFailed


class Collection(enum.StrEnum):
    TEMPLATES = "templates"
    DOCUMENTS = "documents"
    USERS = "users"
    REVIEWS = "reviews"
    CERTIFICATES = "certificates"
    ACTIVITIES = "activities"
    # One record per unique value (verification code, verification token).
    # Written with create_only, so a repeated value fails the write set.
    UNIQUE_KEYS = "unique_keys"


# ─── Write Operations ─────────────────────────────────────────────


@dataclass(frozen=True)
class Put:
    """Write a whole document. With ``create_only`` the id must be unused."""

    collection: str
    doc_id: str
    data: dict[str, Any]
    create_only: bool = True


@dataclass(frozen=True)
class Update:
    """
    Merge ``changes`` into an existing document.

    ``expected`` maps dotted field paths to the value they must currently
    hold (None matches a missing or null field). ``appends`` adds values
    to list fields, skipping values already present.
    """

    collection: str
    doc_id: str
    changes: dict[str, Any] = field(default_factory=dict)
    expected: dict[str, Any] = field(default_factory=dict)
    appends: dict[str, Any] = field(default_factory=dict)


WriteOperation = Put | Update


class WriteSet:
    """An ordered group of writes that must all succeed or all fail."""

    def __init__(self) -> None:
        self._operations: list[WriteOperation] = []

    def put(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        *,
        create_only: bool = True,
    ) -> WriteSet:
        self._operations.append(Put(collection, doc_id, data, create_only))
        return self

    def update(
        self,
        collection: str,
        doc_id: str,
        changes: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
        appends: dict[str, Any] | None = None,
    ) -> WriteSet:
        self._operations.append(
            Update(collection, doc_id, changes, expected or {}, appends or {})
        )
        return self

    @property
    def operations(self) -> tuple[WriteOperation, ...]:
        return tuple(self._operations)

    def touched(self) -> list[tuple[str, str]]:
        """Distinct (collection, doc_id) pairs in first-seen order."""
        seen: dict[tuple[str, str], None] = {}
        for op in self._operations:
            seen.setdefault((op.collection, op.doc_id), None)
        return list(seen)

    def __len__(self) -> int:
        return len(self._operations)


# ─── Protocol ─────────────────────────────────────────────────────


class DocumentStore(Protocol):
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None: ...

    async def update_if(
        self,
        collection: str,
        doc_id: str,
        expected: dict[str, Any],
        changes: dict[str, Any],
    ) -> bool: ...

    async def commit(self, write_set: WriteSet) -> None: ...

    async def append_to_set(
        self, collection: str, doc_id: str, field_path: str, value: Any
    ) -> None: ...

    async def health_check(self) -> dict[str, Any]: ...


# ─── Shared Document Helpers ──────────────────────────────────────

_MISSING = object()


def lookup_path(doc: dict[str, Any], path: str) -> Any:
    """Read a dotted path. Missing segments read as None."""
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part, _MISSING)
        if current is _MISSING:
            return None
    return current


def set_path(doc: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        nxt = target.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            target[part] = nxt
        target = nxt
    target[parts[-1]] = value


def matches(doc: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    if not filters:
        return True
    return all(lookup_path(doc, path) == value for path, value in filters.items())


def apply_operation(current: dict[str, Any] | None, op: WriteOperation) -> dict[str, Any]:
    """
    Return the document that results from applying ``op`` to ``current``.

    Raises PreconditionFailed when a guard does not hold. Never mutates
    ``current``.
    """
    if isinstance(op, Put):
        if op.create_only and current is not None:
            raise PreconditionFailed(op.collection, op.doc_id, field="id")
        return copy.deepcopy(op.data)

    if current is None:
        raise PreconditionFailed(op.collection, op.doc_id)
    for path, value in op.expected.items():
        if lookup_path(current, path) != value:
            raise PreconditionFailed(op.collection, op.doc_id, field=path)

    updated = copy.deepcopy(current)
    for path, value in op.changes.items():
        set_path(updated, path, copy.deepcopy(value))
    for path, value in op.appends.items():
        existing = lookup_path(updated, path)
        items = list(existing) if isinstance(existing, list) else []
        if value not in items:
            items.append(copy.deepcopy(value))
        set_path(updated, path, items)
    return updated

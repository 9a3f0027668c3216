"""
Credentia — In-Memory Document Store

Process-local DocumentStore for development and tests. Writes are
serialized by a single asyncio lock, so commits are atomic with respect
to every other operation on the same store. Documents are deep-copied on
the way in and out; callers never share mutable state with the store.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any

import structlog

from credentia.clients.store import (
    Update,
    WriteSet,
    apply_operation,
    lookup_path,
    matches,
)

logger = structlog.get_logger("credentia.clients.memory_store")


class InMemoryDocumentStore:
    """Dict-backed store. Insertion order is preserved within a collection."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    def _bucket(self, collection: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        doc = self._bucket(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        results: list[dict[str, Any]] = []
        for doc in self._bucket(collection).values():
            if matches(doc, filters):
                results.append(copy.deepcopy(doc))
                if limit is not None and len(results) >= limit:
                    break
        return results

    async def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        async with self._lock:
            self._bucket(collection)[doc_id] = copy.deepcopy(data)

    async def update_if(
        self,
        collection: str,
        doc_id: str,
        expected: dict[str, Any],
        changes: dict[str, Any],
    ) -> bool:
        async with self._lock:
            bucket = self._bucket(collection)
            current = bucket.get(doc_id)
            if current is None:
                return False
            if any(lookup_path(current, p) != v for p, v in expected.items()):
                return False
            bucket[doc_id] = apply_operation(current, Update(collection, doc_id, changes))
            return True

    async def commit(self, write_set: WriteSet) -> None:
        async with self._lock:
            staged: dict[tuple[str, str], dict[str, Any]] = {}
            for op in write_set.operations:
                key = (op.collection, op.doc_id)
                current = staged.get(key, self._bucket(op.collection).get(op.doc_id))
                staged[key] = apply_operation(current, op)

            for (collection, doc_id), doc in staged.items():
                self._bucket(collection)[doc_id] = doc

        logger.debug("write_set_committed", operations=len(write_set))

    async def append_to_set(
        self, collection: str, doc_id: str, field_path: str, value: Any
    ) -> None:
        async with self._lock:
            bucket = self._bucket(collection)
            bucket[doc_id] = apply_operation(
                bucket.get(doc_id),
                Update(collection, doc_id, appends={field_path: value}),
            )

    async def health_check(self) -> dict[str, Any]:
        return {
            "status": "connected",
            "backend": "memory",
            "collections": {name: len(docs) for name, docs in self._collections.items()},
        }

    def count(self, collection: str, filters: dict[str, Any] | None = None) -> int:
        return sum(1 for doc in self._bucket(collection).values() if matches(doc, filters))

"""
Credentia — Redis Client and Document Store

Async Redis connection management, plus a DocumentStore on top of it.

Layout (all keys carry the configured prefix):
  doc:{collection}:{id}                 JSON document
  members:{collection}                  sorted set of ids, scored by insert time
  idx:{collection}:{field}:{json value} set of ids with that field value

Conditional updates and write sets use optimistic WATCH/MULTI/EXEC
transactions. A concurrent write to a watched key aborts the
transaction and surfaces as PreconditionFailed; nothing is retried here,
the caller owns the (bounded) retry policy.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import orjson
import structlog
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from credentia.clients.store import (
    Collection,
    WriteSet,
    apply_operation,
    lookup_path,
    matches,
)
from credentia.config import RedisConfig
from credentia.errors import PreconditionFailed, StoreUnavailable

logger = structlog.get_logger("credentia.clients.redis")


# Fields each collection can be queried by. Queries on other fields are rejected.
INDEXED_FIELDS: dict[str, tuple[str, ...]] = {
    Collection.TEMPLATES: ("status", "created_by"),
    Collection.DOCUMENTS: ("uploader_id",),
    Collection.USERS: ("display_name", "email"),
    Collection.REVIEWS: ("template_id",),
    Collection.CERTIFICATES: (
        "template_id",
        "verification_id",
        "verification_code",
        "status",
        "recipient_id",
        "metadata.needs_claiming",
    ),
    Collection.ACTIVITIES: ("type", "template_id", "certificate_id"),
    Collection.UNIQUE_KEYS: ("certificate_id",),
}


class RedisClient:
    """
    Async Redis client with key prefixing for multi-instance support.
    """

    def __init__(self, config: RedisConfig) -> None:
        self._config = config
        self._client: Redis | None = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        self._client = Redis.from_url(
            self._config.full_url,
            decode_responses=True,
        )
        # Verify connectivity
        await self._client.ping()
        logger.info("redis_connected", prefix=self._config.prefix)

    async def close(self) -> None:
        """Close the connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._client is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    def key(self, key: str) -> str:
        """Prefix a key with the instance prefix."""
        return f"{self._config.prefix}:{key}"

    async def health_check(self) -> dict[str, Any]:
        """Check connectivity."""
        try:
            started = time.perf_counter()
            await self.client.ping()
            latency_ms = round((time.perf_counter() - started) * 1000, 2)
            return {"status": "connected", "latency_ms": latency_ms}
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e))
            return {"status": "disconnected", "error": str(e)}


def _index_token(value: Any) -> str:
    return orjson.dumps(value).decode()


@asynccontextmanager
async def _store_errors() -> AsyncIterator[None]:
    """Translate transport failures into StoreUnavailable."""
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
        logger.warning("redis_store_unavailable", error=str(exc))
        raise StoreUnavailable(f"Redis unavailable: {exc}") from exc


class RedisDocumentStore:
    """DocumentStore backed by Redis strings, sets and sorted sets."""

    def __init__(
        self,
        redis: RedisClient,
        indexes: dict[str, tuple[str, ...]] | None = None,
    ) -> None:
        self._redis = redis
        self._indexes = indexes if indexes is not None else INDEXED_FIELDS
        self._logger = logger.bind(component="redis_document_store")

    # --- Key Layout -----------------------------------------------------------

    def _doc_key(self, collection: str, doc_id: str) -> str:
        return self._redis.key(f"doc:{collection}:{doc_id}")

    def _members_key(self, collection: str) -> str:
        return self._redis.key(f"members:{collection}")

    def _index_key(self, collection: str, field_path: str, value: Any) -> str:
        return self._redis.key(f"idx:{collection}:{field_path}:{_index_token(value)}")

    # --- Reads ----------------------------------------------------------------

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        async with _store_errors():
            raw = await self._redis.client.get(self._doc_key(collection, doc_id))
        return orjson.loads(raw) if raw is not None else None

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        indexed = self._indexes.get(collection, ())
        unindexed = [path for path in (filters or {}) if path not in indexed]
        if unindexed:
            raise ValueError(f"Cannot query {collection} by unindexed fields: {unindexed}")

        async with _store_errors():
            if filters:
                ordered_ids = await self._ordered_matches(collection, filters)
            else:
                ordered_ids = await self._redis.client.zrange(
                    self._members_key(collection), 0, -1
                )
            if not ordered_ids:
                return []
            raws = await self._redis.client.mget(
                [self._doc_key(collection, doc_id) for doc_id in ordered_ids]
            )

        results: list[dict[str, Any]] = []
        for raw in raws:
            if raw is None:
                continue
            doc = orjson.loads(raw)
            if matches(doc, filters):
                results.append(doc)
                if limit is not None and len(results) >= limit:
                    break
        return results

    async def _ordered_matches(self, collection: str, filters: dict[str, Any]) -> list[str]:
        """Ids in every filter's index set, in insertion order."""
        keys = [self._index_key(collection, p, v) for p, v in filters.items()]
        candidates = sorted(await self._redis.client.sinter(keys))
        if not candidates:
            return []
        scores = await self._redis.client.zmscore(self._members_key(collection), candidates)
        scored = [
            (score, doc_id) for doc_id, score in zip(candidates, scores) if score is not None
        ]
        return [doc_id for _, doc_id in sorted(scored)]

    # --- Writes ---------------------------------------------------------------

    async def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        write_set = WriteSet().put(collection, doc_id, data, create_only=False)
        await self.commit(write_set)

    async def update_if(
        self,
        collection: str,
        doc_id: str,
        expected: dict[str, Any],
        changes: dict[str, Any],
    ) -> bool:
        write_set = WriteSet().update(collection, doc_id, changes, expected=expected)
        try:
            await self.commit(write_set)
        except PreconditionFailed:
            return False
        return True

    async def append_to_set(
        self, collection: str, doc_id: str, field_path: str, value: Any
    ) -> None:
        await self.commit(WriteSet().update(collection, doc_id, {}, appends={field_path: value}))

    async def commit(self, write_set: WriteSet) -> None:
        touched = write_set.touched()
        if not touched:
            return
        doc_keys = [self._doc_key(c, d) for c, d in touched]

        async with _store_errors():
            async with self._redis.client.pipeline(transaction=True) as pipe:
                await pipe.watch(*doc_keys)
                raws = await pipe.mget(doc_keys)
                before: dict[tuple[str, str], dict[str, Any] | None] = {
                    pair: (orjson.loads(raw) if raw is not None else None)
                    for pair, raw in zip(touched, raws)
                }

                staged: dict[tuple[str, str], dict[str, Any]] = {}
                for op in write_set.operations:
                    pair = (op.collection, op.doc_id)
                    current = staged[pair] if pair in staged else before[pair]
                    staged[pair] = apply_operation(current, op)

                pipe.multi()
                now = time.time()
                for (collection, doc_id), doc in staged.items():
                    previous = before[(collection, doc_id)]
                    pipe.set(self._doc_key(collection, doc_id), orjson.dumps(doc).decode())
                    if previous is None:
                        pipe.zadd(self._members_key(collection), {doc_id: now})
                    self._queue_index_updates(pipe, collection, doc_id, previous, doc)
                try:
                    await pipe.execute()
                except WatchError as exc:
                    collection, doc_id = touched[0]
                    self._logger.info("write_set_conflict", collection=collection, doc_id=doc_id)
                    raise PreconditionFailed(collection, doc_id, field="concurrent_write") from exc

        self._logger.debug("write_set_committed", operations=len(write_set))

    def _queue_index_updates(
        self,
        pipe: Any,
        collection: str,
        doc_id: str,
        previous: dict[str, Any] | None,
        current: dict[str, Any],
    ) -> None:
        for field_path in self._indexes.get(collection, ()):
            new_value = lookup_path(current, field_path)
            old_value = lookup_path(previous, field_path) if previous is not None else None
            if previous is not None and old_value == new_value:
                continue
            if previous is not None:
                pipe.srem(self._index_key(collection, field_path, old_value), doc_id)
            pipe.sadd(self._index_key(collection, field_path, new_value), doc_id)

    async def health_check(self) -> dict[str, Any]:
        health = await self._redis.health_check()
        health["backend"] = "redis"
        return health

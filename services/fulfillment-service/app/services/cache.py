"""
Fulfillment Service — Read-through / write-invalidate cache

Keys embed generation counters held in one Redis hash per entity type:

    {prefix}:{entity}:gen        hash  {_epoch, _list, <id>...}
    {prefix}:{entity}:e{epoch}:{id}:g{gen}:{view}
    {prefix}:{entity}:e{epoch}:l{list}:page:{page}-{size}

Invalidating an id is an HINCRBY on its generation (and on the list
generation), so the very next read computes a new key and misses. A reader
that loaded a value before a concurrent mutation can only store it under the
obsolete key, which nobody reads again and which expires after the TTL.

If Redis fails during invalidation the entity type is marked unsynced and all
reads for it go straight to the loader until an epoch bump succeeds, which
retires every key of that type at once.
"""
import logging
from typing import Awaitable, Callable, TypeVar

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

BOOKING = "booking"
DELIVERY = "delivery"
INVENTORY = "inventory"

_EPOCH = "_epoch"
_LIST = "_list"


class CacheCoordinator:
    def __init__(
        self,
        redis: aioredis.Redis | None,
        ttl_seconds: int = 300,
        prefix: str = "fuelnexus",
    ):
        self._redis = redis
        self._ttl = ttl_seconds
        self._prefix = prefix
        self._unsynced: set[str] = set()

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    def is_bypassed(self, entity: str) -> bool:
        return not self.enabled or entity in self._unsynced

    def _gen_key(self, entity: str) -> str:
        return f"{self._prefix}:{entity}:gen"

    # ── Reads ────────────────────────────────────────────────

    async def get(
        self,
        entity: str,
        entity_id: str,
        schema: type[M],
        loader: Callable[[], Awaitable[M]],
        view: str = "detail",
    ) -> M:
        """Return the cached ``view`` of one entity, loading it on a miss."""
        if not await self._usable(entity):
            return await loader()
        try:
            epoch, gen = await self._redis.hmget(self._gen_key(entity), _EPOCH, entity_id)
            key = f"{self._prefix}:{entity}:e{epoch or 0}:{entity_id}:g{gen or 0}:{view}"
            cached = await self._redis.get(key)
        except RedisError as exc:
            logger.warning("Cache read failed for %s %s, bypassing: %s", entity, entity_id, exc)
            return await loader()

        if cached is not None:
            return schema.model_validate_json(cached)
        value = await loader()
        await self._store(key, value)
        return value

    async def get_page(
        self,
        entity: str,
        page: int,
        size: int,
        schema: type[M],
        loader: Callable[[], Awaitable[M]],
    ) -> M:
        """Return a cached list page keyed by page number and page size."""
        if not await self._usable(entity):
            return await loader()
        try:
            epoch, list_gen = await self._redis.hmget(self._gen_key(entity), _EPOCH, _LIST)
            key = f"{self._prefix}:{entity}:e{epoch or 0}:l{list_gen or 0}:page:{page}-{size}"
            cached = await self._redis.get(key)
        except RedisError as exc:
            logger.warning("Cache page read failed for %s, bypassing: %s", entity, exc)
            return await loader()

        if cached is not None:
            return schema.model_validate_json(cached)
        value = await loader()
        await self._store(key, value)
        return value

    async def _store(self, key: str, value: BaseModel) -> None:
        try:
            await self._redis.setex(key, self._ttl, value.model_dump_json())
        except RedisError as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)

    # ── Invalidation ─────────────────────────────────────────

    async def invalidate(self, entity: str, *entity_ids: str) -> None:
        """
        Retire every cached view of the given ids and every list page of the
        entity type. Called after commit and before the mutation returns.
        """
        if not self.enabled:
            return
        if not await self._resync(entity):
            return
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for entity_id in entity_ids:
                    pipe.hincrby(self._gen_key(entity), entity_id, 1)
                pipe.hincrby(self._gen_key(entity), _LIST, 1)
                await pipe.execute()
        except RedisError as exc:
            logger.warning(
                "Cache invalidation failed for %s %s, bypassing cache until resynced: %s",
                entity, ", ".join(entity_ids), exc,
            )
            self._unsynced.add(entity)

    async def _usable(self, entity: str) -> bool:
        return self.enabled and await self._resync(entity)

    async def _resync(self, entity: str) -> bool:
        if entity not in self._unsynced:
            return True
        try:
            await self._redis.hincrby(self._gen_key(entity), _EPOCH, 1)
        except RedisError as exc:
            logger.debug("Cache still unavailable for %s: %s", entity, exc)
            return False
        self._unsynced.discard(entity)
        logger.info("Cache resynced for %s", entity)
        return True

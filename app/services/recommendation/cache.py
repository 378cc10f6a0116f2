"""
Cache-aside storage for generated recommendations.

Two levels:
- L1: in-process TTLCache (short TTL, bounded size), avoids repeat lookups within one worker.
- L2: a pluggable `CacheBackend` (process memory, Redis, or the recommendation_cache table).

Entries are keyed by user id and carry their own `expires_at`; an entry past it is never served.
Invalidation is explicit and happens whenever a user's follow/favourite graph changes.
"""

import math
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from cachetools import TTLCache
from loguru import logger

from app.core.config import settings
from app.core.constants import CACHE_ENTRY_VERSION
from app.core.security import redact_user_id
from app.models.recommendation import CacheOptions, RecommendationCacheEntry, RecommendedItem
from app.services.recommendation.scoring import parse_timestamp
from app.services.redis_service import RedisService, redis_service


class CacheBackend(ABC):
    """Key-value storage for cache entries, keyed by user id."""

    @abstractmethod
    async def get(self, user_id: str) -> RecommendationCacheEntry | None:
        pass

    @abstractmethod
    async def set(self, entry: RecommendationCacheEntry) -> None:
        pass

    @abstractmethod
    async def delete(self, user_id: str) -> None:
        """Remove the entry. Must be a no-op when there is none."""
        pass


class MemoryCacheBackend(CacheBackend):
    def __init__(self):
        self._entries: dict[str, RecommendationCacheEntry] = {}

    async def get(self, user_id: str) -> RecommendationCacheEntry | None:
        return self._entries.get(user_id)

    async def set(self, entry: RecommendationCacheEntry) -> None:
        self._entries[entry.user_id] = entry

    async def delete(self, user_id: str) -> None:
        self._entries.pop(user_id, None)


class RedisCacheBackend(CacheBackend):
    def __init__(self, redis: RedisService, key_prefix: str = "my10:recommendations:"):
        self.redis = redis
        self.key_prefix = key_prefix

    def _key(self, user_id: str) -> str:
        return f"{self.key_prefix}{user_id}"

    async def get(self, user_id: str) -> RecommendationCacheEntry | None:
        raw = await self.redis.get(self._key(user_id))
        if not raw:
            return None
        try:
            return RecommendationCacheEntry.model_validate_json(raw)
        except ValueError as e:
            logger.warning(f"Failed to decode cached recommendations for {redact_user_id(user_id)}: {e}")
            return None

    async def set(self, entry: RecommendationCacheEntry) -> None:
        ttl = math.ceil((entry.expires_at - datetime.now(timezone.utc)).total_seconds())
        if ttl <= 0:
            return
        await self.redis.set(self._key(entry.user_id), entry.model_dump_json(by_alias=True), ttl)

    async def delete(self, user_id: str) -> None:
        await self.redis.delete(self._key(user_id))


class TableCacheBackend(CacheBackend):
    """The recommendation_cache table, one row per user, upserted on user_id."""

    def __init__(self, store):
        self.store = store

    async def get(self, user_id: str) -> RecommendationCacheEntry | None:
        row = await self.store.get_cache_row(user_id)
        if not row:
            return None

        expires_at = parse_timestamp(row.get("expires_at"))
        scores = row.get("scores")
        if expires_at is None or not isinstance(scores, list):
            return None

        return RecommendationCacheEntry(
            user_id=user_id,
            items=[RecommendedItem.model_validate(item) for item in scores],
            generated_at=parse_timestamp(row.get("generated_at")) or expires_at,
            expires_at=expires_at,
            version=row.get("version") or CACHE_ENTRY_VERSION,
        )

    async def set(self, entry: RecommendationCacheEntry) -> None:
        await self.store.upsert_cache_row(
            {
                "user_id": entry.user_id,
                "recommended_item_ids": [item.item_id for item in entry.items],
                "scores": [item.model_dump(mode="json", by_alias=True) for item in entry.items],
                "generated_at": entry.generated_at.isoformat(),
                "expires_at": entry.expires_at.isoformat(),
                "version": entry.version,
            }
        )

    async def delete(self, user_id: str) -> None:
        await self.store.delete_cache_row(user_id)


def filter_items(
    items: Iterable[RecommendedItem],
    min_score: float = 0.0,
    exclude_item_ids: Iterable[str] = (),
    limit: int | None = None,
) -> list[RecommendedItem]:
    """Apply the per-request view (score floor, exclusions, limit) to a full result list."""
    exclude = set(exclude_item_ids)
    result = [item for item in items if item.final_score >= min_score and item.item_id not in exclude]
    return result if limit is None else result[:limit]


class RecommendationCache:
    def __init__(
        self,
        backend: CacheBackend,
        memory_ttl_seconds: int = 900,
        memory_max_entries: int = 100,
    ):
        self.backend = backend
        self._memory: TTLCache = TTLCache(maxsize=memory_max_entries, ttl=memory_ttl_seconds)

    async def get(self, user_id: str, now: datetime | None = None) -> RecommendationCacheEntry | None:
        """Return the unexpired entry for a user, checking L1 then the backend."""
        now = now or datetime.now(timezone.utc)

        entry = self._memory.get(user_id)
        if entry is not None:
            if not entry.is_expired(now):
                return entry
            self._memory.pop(user_id, None)

        try:
            entry = await self.backend.get(user_id)
        except Exception as e:
            logger.warning(f"[{redact_user_id(user_id)}] Recommendation cache read failed: {e}")
            return None

        if entry is None:
            return None
        if entry.is_expired(now):
            await self._delete_from_backend(user_id)
            return None

        self._memory[user_id] = entry
        return entry

    async def set(
        self,
        user_id: str,
        items: list[RecommendedItem],
        options: CacheOptions | None = None,
        now: datetime | None = None,
    ) -> RecommendationCacheEntry:
        """Store the full (unfiltered, untruncated) result list for a user."""
        options = options or CacheOptions()
        now = now or datetime.now(timezone.utc)
        entry = RecommendationCacheEntry(
            user_id=user_id,
            items=items,
            generated_at=now,
            expires_at=now + timedelta(hours=options.ttl_hours),
            version=CACHE_ENTRY_VERSION,
        )

        self._memory[user_id] = entry
        try:
            await self.backend.set(entry)
            logger.debug(f"[{redact_user_id(user_id)}] Cached {len(items)} recommendations for {options.ttl_hours}h")
        except Exception as e:
            logger.warning(f"[{redact_user_id(user_id)}] Recommendation cache write skipped: {e}")
        return entry

    async def invalidate(self, user_id: str) -> None:
        """Drop a user's entry from both levels. Missing entries are fine."""
        self._memory.pop(user_id, None)
        await self._delete_from_backend(user_id)
        logger.debug(f"[{redact_user_id(user_id)}] Invalidated recommendation cache")

    async def _delete_from_backend(self, user_id: str) -> None:
        try:
            await self.backend.delete(user_id)
        except Exception as e:
            logger.warning(f"[{redact_user_id(user_id)}] Recommendation cache delete failed: {e}")


def build_cache_backend(kind: str, store=None) -> CacheBackend:
    if kind == "memory":
        return MemoryCacheBackend()
    if kind == "redis":
        return RedisCacheBackend(redis_service, key_prefix=settings.REDIS_KEY_PREFIX)
    if kind == "table":
        if store is None:
            raise ValueError("The table cache backend needs a store")
        return TableCacheBackend(store)
    raise ValueError(f"Unknown recommendation cache backend: {kind}")

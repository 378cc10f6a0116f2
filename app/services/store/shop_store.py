import asyncio
import functools
from collections import Counter
from collections.abc import Iterable
from typing import Any

from loguru import logger

from app.core.config import settings
from app.core.constants import ITEM_SELECT, RECOMMENDATION_CACHE_TABLE
from app.services.store.client import PostgrestClient, eq, gte, neq


class ShopStore:
    """
    Read access to the My10 tables used by the recommendation pipeline.

    Every method maps onto one or a few batched PostgREST queries. The only write
    access is to the recommendation cache table.
    """

    def __init__(self, client: PostgrestClient):
        self.client = client

    async def close(self):
        await self.client.close()

    # Favourites and keeps

    async def get_favorite_item_ids(self, user_id: str) -> list[str]:
        rows = await self.client.select("item_favorites", "item_id", [("user_id", eq(user_id))])
        return [r["item_id"] for r in rows]

    async def get_keep_item_ids(self, user_id: str) -> list[str]:
        folders = await self.client.select("keep_folders", "id", [("user_id", eq(user_id))])
        if not folders:
            return []
        rows = await self.client.select_in("keep_folder_items", "item_id", "folder_id", [f["id"] for f in folders])
        return [r["item_id"] for r in rows]

    async def get_known_item_ids(self, user_id: str) -> set[str]:
        """Items the user already favourited or kept."""
        favorites, kept = await asyncio.gather(self.get_favorite_item_ids(user_id), self.get_keep_item_ids(user_id))
        return set(favorites) | set(kept)

    async def get_co_favorites(self, item_ids: Iterable[str], exclude_user_id: str) -> list[dict[str, Any]]:
        """(user_id, item_id) favourite rows of other users on the given items."""
        return await self.client.select_in(
            "item_favorites", "user_id, item_id", "item_id", item_ids, [("user_id", neq(exclude_user_id))]
        )

    async def get_favorites_by_users(self, user_ids: Iterable[str]) -> list[dict[str, Any]]:
        return await self.client.select_in("item_favorites", "item_id, user_id", "user_id", user_ids)

    async def count_favorites(self, item_ids: Iterable[str]) -> Counter:
        rows = await self.client.select_in("item_favorites", "item_id", "item_id", item_ids)
        return Counter(r["item_id"] for r in rows)

    async def count_keeps(self, item_ids: Iterable[str]) -> Counter:
        rows = await self.client.select_in("keep_folder_items", "item_id", "item_id", item_ids)
        return Counter(r["item_id"] for r in rows)

    # Follows

    async def get_followed_shop_ids(self, user_id: str) -> list[str]:
        rows = await self.client.select("shop_follows", "shop_id", [("user_id", eq(user_id))])
        return [r["shop_id"] for r in rows]

    async def get_followed_user_ids(self, user_id: str) -> list[str]:
        rows = await self.client.select("user_follows", "followee_id", [("follower_id", eq(user_id))])
        return [r["followee_id"] for r in rows]

    async def get_shop_ids_by_owners(self, owner_ids: Iterable[str]) -> list[str]:
        rows = await self.client.select_in("shops", "id", "owner_id", owner_ids)
        return [r["id"] for r in rows]

    # Items

    async def get_items_by_ids(self, item_ids: Iterable[str]) -> list[dict[str, Any]]:
        return await self.client.select_in("items", ITEM_SELECT, "id", item_ids)

    async def get_items_by_shops(self, shop_ids: Iterable[str]) -> list[dict[str, Any]]:
        return await self.client.select_in("items", ITEM_SELECT, "shop_id", shop_ids)

    async def get_items_created_since(self, since_iso: str) -> list[dict[str, Any]]:
        return await self.client.select("items", ITEM_SELECT, [("created_at", gte(since_iso))], order="created_at.desc")

    async def get_latest_items(self, limit: int) -> list[dict[str, Any]]:
        return await self.client.select("items", ITEM_SELECT, order="created_at.desc", limit=limit)

    # Recommendation cache table

    async def get_cache_row(self, user_id: str) -> dict[str, Any] | None:
        rows = await self.client.select(
            RECOMMENDATION_CACHE_TABLE,
            "user_id, scores, generated_at, expires_at, version",
            [("user_id", eq(user_id))],
            limit=1,
        )
        return rows[0] if rows else None

    async def upsert_cache_row(self, row: dict[str, Any]) -> None:
        await self.client.upsert(RECOMMENDATION_CACHE_TABLE, row, on_conflict="user_id")

    async def delete_cache_row(self, user_id: str) -> None:
        await self.client.delete_where(RECOMMENDATION_CACHE_TABLE, [("user_id", eq(user_id))])


@functools.lru_cache(maxsize=1)
def get_shop_store() -> ShopStore:
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be configured")

    logger.info("Creating PostgREST client for ShopStore")
    client = PostgrestClient(
        url=settings.SUPABASE_URL,
        api_key=settings.SUPABASE_SERVICE_ROLE_KEY,
        timeout=settings.STORE_TIMEOUT_SECONDS,
        max_retries=settings.STORE_MAX_RETRIES,
        batch_size=settings.STORE_BATCH_SIZE,
    )
    return ShopStore(client)

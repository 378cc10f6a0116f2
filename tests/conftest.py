"""
Shared pytest fixtures for the test suite.

`FakeShopStore` mirrors the query surface of `ShopStore` over in-memory tables so the
pipeline can be exercised without a database.
"""

from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest

from app.models.recommendation import CandidateItem, RecommendedItem, ScoreBreakdown
from app.services.recommendation.cache import MemoryCacheBackend, RecommendationCache

NOW = datetime.now(timezone.utc)


def days_ago(days: float) -> str:
    return (NOW - timedelta(days=days)).isoformat()


class FakeShopStore:
    def __init__(self):
        self.shops: dict[str, dict] = {}
        self.items: dict[str, dict] = {}
        self.favorites: list[tuple[str, str]] = []  # (user_id, item_id)
        self.keep_folders: dict[str, str] = {}  # folder_id -> user_id
        self.keep_items: list[tuple[str, str]] = []  # (folder_id, item_id)
        self.shop_follows: list[tuple[str, str]] = []  # (user_id, shop_id)
        self.user_follows: list[tuple[str, str]] = []  # (follower_id, followee_id)
        self.cache_rows: dict[str, dict] = {}
        self.calls: Counter = Counter()

    # Fixture helpers

    def add_shop(self, shop_id: str, owner_id: str = "owner", name: str | None = None, theme: str = "default"):
        self.shops[shop_id] = {"id": shop_id, "owner_id": owner_id, "name": name or f"Shop {shop_id}", "theme": theme}

    def add_item(self, item_id: str, shop_id: str, created_at: str | None = None):
        if shop_id not in self.shops:
            self.add_shop(shop_id)
        self.items[item_id] = {
            "id": item_id,
            "name": f"Item {item_id}",
            "image_url": f"https://img.example/{item_id}.png",
            "shop_id": shop_id,
            "created_at": created_at or days_ago(3),
        }

    def _row(self, item: dict) -> dict:
        shop = self.shops[item["shop_id"]]
        return {**item, "shops": {"name": shop["name"], "theme": shop["theme"]}}

    # ShopStore surface

    async def get_favorite_item_ids(self, user_id):
        self.calls["get_favorite_item_ids"] += 1
        return [i for u, i in self.favorites if u == user_id]

    async def get_keep_item_ids(self, user_id):
        folders = {f for f, u in self.keep_folders.items() if u == user_id}
        return [i for f, i in self.keep_items if f in folders]

    async def get_known_item_ids(self, user_id):
        self.calls["get_known_item_ids"] += 1
        return set(await self.get_favorite_item_ids(user_id)) | set(await self.get_keep_item_ids(user_id))

    async def get_co_favorites(self, item_ids, exclude_user_id):
        ids = set(item_ids)
        return [{"user_id": u, "item_id": i} for u, i in self.favorites if i in ids and u != exclude_user_id]

    async def get_favorites_by_users(self, user_ids):
        users = set(user_ids)
        return [{"user_id": u, "item_id": i} for u, i in self.favorites if u in users]

    async def count_favorites(self, item_ids):
        self.calls["count_favorites"] += 1
        ids = set(item_ids)
        return Counter(i for _, i in self.favorites if i in ids)

    async def count_keeps(self, item_ids):
        self.calls["count_keeps"] += 1
        ids = set(item_ids)
        return Counter(i for _, i in self.keep_items if i in ids)

    async def get_followed_shop_ids(self, user_id):
        return [s for u, s in self.shop_follows if u == user_id]

    async def get_followed_user_ids(self, user_id):
        return [f for u, f in self.user_follows if u == user_id]

    async def get_shop_ids_by_owners(self, owner_ids):
        owners = set(owner_ids)
        return [s["id"] for s in self.shops.values() if s["owner_id"] in owners]

    async def get_items_by_ids(self, item_ids):
        return [self._row(self.items[i]) for i in item_ids if i in self.items]

    async def get_items_by_shops(self, shop_ids):
        shops = set(shop_ids)
        return [self._row(it) for it in self.items.values() if it["shop_id"] in shops]

    async def get_items_created_since(self, since_iso):
        self.calls["get_items_created_since"] += 1
        since = datetime.fromisoformat(since_iso)
        rows = [self._row(it) for it in self.items.values() if datetime.fromisoformat(it["created_at"]) >= since]
        return sorted(rows, key=lambda r: r["created_at"], reverse=True)

    async def get_latest_items(self, limit):
        self.calls["get_latest_items"] += 1
        rows = sorted((self._row(it) for it in self.items.values()), key=lambda r: r["created_at"], reverse=True)
        return rows[:limit]

    async def get_cache_row(self, user_id):
        return self.cache_rows.get(user_id)

    async def upsert_cache_row(self, row):
        self.cache_rows[row["user_id"]] = row

    async def delete_cache_row(self, user_id):
        self.cache_rows.pop(user_id, None)

    async def close(self):
        pass


@pytest.fixture
def store():
    return FakeShopStore()


@pytest.fixture
def memory_cache():
    return RecommendationCache(MemoryCacheBackend())


@pytest.fixture
def make_candidate():
    def _make(item_id: str, shop_id: str = "s1", score: float = 1.0, created_at: str | None = None, sources=None):
        return CandidateItem(
            item_id=item_id,
            name=f"Item {item_id}",
            shop_id=shop_id,
            shop_name=f"Shop {shop_id}",
            total_score=score,
            created_at=created_at or days_ago(3),
            sources=sources or ["item_collab"],
        )

    return _make


@pytest.fixture
def make_recommended():
    def _make(item_id: str, shop_id: str, score: float = 0.5):
        return RecommendedItem(
            item_id=item_id,
            name=f"Item {item_id}",
            shop_id=shop_id,
            final_score=score,
            score_breakdown=ScoreBreakdown(popularity=score),
        )

    return _make

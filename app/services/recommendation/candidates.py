import asyncio
import math
from collections import Counter, defaultdict
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from loguru import logger

from app.core.constants import (
    COLD_START_WINDOW_DAYS,
    ITEM_COLLAB_MAX_ITEMS,
    ITEM_COLLAB_MAX_SIMILAR_USERS,
    ITEM_COLLAB_STRICT_OVERLAP_MIN_FAVORITES,
    SHOP_BASED_BASE_SCORE,
    SHOP_BASED_MAX_ITEMS,
    SHOP_BASED_POPULARITY_FACTOR,
    USER_BASED_BASE_SCORE,
    USER_BASED_MAX_ITEMS,
    USER_BASED_POPULARITY_FACTOR,
)
from app.core.security import redact_user_id
from app.models.recommendation import CandidateItem, CandidateSource
from app.services.recommendation.scoring import RecommendationScoring


def candidate_from_row(row: dict[str, Any], score: float, source: CandidateSource) -> CandidateItem:
    """Build a candidate from an `items` row with its embedded `shops` record."""
    shop = row.get("shops") or {}
    return CandidateItem(
        item_id=row["id"],
        name=row.get("name") or "",
        image_url=row.get("image_url"),
        shop_id=row["shop_id"],
        shop_name=shop.get("name") or "",
        shop_theme=shop.get("theme") or "",
        total_score=score,
        created_at=row.get("created_at") or "",
        sources=[source],
    )


def merge_candidates(*strategy_results: Iterable[CandidateItem]) -> dict[str, CandidateItem]:
    """
    Union the output of several strategies.

    An item nominated more than once keeps its highest raw score and the union of its sources.
    """
    merged: dict[str, CandidateItem] = {}
    for candidates in strategy_results:
        for candidate in candidates:
            existing = merged.get(candidate.item_id)
            if existing is None:
                merged[candidate.item_id] = candidate.model_copy(update={"sources": list(candidate.sources)})
                continue
            existing.total_score = max(existing.total_score, candidate.total_score)
            for source in candidate.sources:
                if source not in existing.sources:
                    existing.sources.append(source)
    return merged


class CandidateGenerator:
    """
    Phase 1 of the pipeline: nominate items from three independent strategies.

    1. item_collab: "people who favourited what you favourited also favourited..."
    2. shop_based: other items of shops the user follows
    3. user_based: items of shops owned by users the user follows
    """

    def __init__(self, store: Any):
        self.store = store

    async def generate(
        self,
        user_id: str,
        exclude_item_ids: Iterable[str] = (),
        candidate_limit: int = 1000,
    ) -> list[CandidateItem]:
        known = await self.store.get_known_item_ids(user_id)
        exclude = set(known) | set(exclude_item_ids)

        item_collab, shop_based, user_based = await asyncio.gather(
            self._item_collab_candidates(user_id, exclude),
            self._shop_based_candidates(user_id, exclude),
            self._user_based_candidates(user_id, exclude),
        )

        merged = merge_candidates(item_collab, shop_based, user_based)
        candidates = sorted(
            (c for c in merged.values() if c.item_id not in exclude),
            key=lambda c: (c.total_score, c.source_diversity),
            reverse=True,
        )[:candidate_limit]

        logger.info(
            f"[{redact_user_id(user_id)}] Generated {len(candidates)} candidates "
            f"(item_collab={len(item_collab)}, shop_based={len(shop_based)}, user_based={len(user_based)})"
        )
        return candidates

    async def _item_collab_candidates(self, user_id: str, exclude: set[str]) -> list[CandidateItem]:
        """Co-occurrence over favourites, weighted by how many favourites the co-user shares."""
        favorite_ids = await self.store.get_favorite_item_ids(user_id)
        if not favorite_ids:
            return []

        co_favorites = await self.store.get_co_favorites(favorite_ids, exclude_user_id=user_id)
        if not co_favorites:
            return []

        overlap = Counter(row["user_id"] for row in co_favorites)
        min_overlap = 2 if len(favorite_ids) >= ITEM_COLLAB_STRICT_OVERLAP_MIN_FAVORITES else 1
        similar_users = [uid for uid, count in overlap.most_common() if count >= min_overlap]
        similar_users = similar_users[:ITEM_COLLAB_MAX_SIMILAR_USERS]
        if not similar_users:
            return []

        neighbour_favorites = await self.store.get_favorites_by_users(similar_users)
        item_scores: dict[str, float] = defaultdict(float)
        for row in neighbour_favorites:
            if row["item_id"] in exclude:
                continue
            item_scores[row["item_id"]] += overlap.get(row["user_id"], 0)

        top_items = sorted(item_scores.items(), key=lambda x: x[1], reverse=True)[:ITEM_COLLAB_MAX_ITEMS]
        if not top_items:
            return []

        rows = await self.store.get_items_by_ids([item_id for item_id, _ in top_items])
        rows_by_id = {row["id"]: row for row in rows}
        return [
            candidate_from_row(rows_by_id[item_id], score, "item_collab")
            for item_id, score in top_items
            if item_id in rows_by_id
        ]

    async def _shop_based_candidates(self, user_id: str, exclude: set[str]) -> list[CandidateItem]:
        shop_ids = await self.store.get_followed_shop_ids(user_id)
        if not shop_ids:
            return []
        rows = await self.store.get_items_by_shops(shop_ids)
        return await self._score_by_favorites(
            rows,
            exclude,
            base=SHOP_BASED_BASE_SCORE,
            factor=SHOP_BASED_POPULARITY_FACTOR,
            limit=SHOP_BASED_MAX_ITEMS,
            source="shop_based",
        )

    async def _user_based_candidates(self, user_id: str, exclude: set[str]) -> list[CandidateItem]:
        followee_ids = await self.store.get_followed_user_ids(user_id)
        if not followee_ids:
            return []
        shop_ids = await self.store.get_shop_ids_by_owners(followee_ids)
        if not shop_ids:
            return []
        rows = await self.store.get_items_by_shops(shop_ids)
        return await self._score_by_favorites(
            rows,
            exclude,
            base=USER_BASED_BASE_SCORE,
            factor=USER_BASED_POPULARITY_FACTOR,
            limit=USER_BASED_MAX_ITEMS,
            source="user_based",
        )

    async def _score_by_favorites(
        self,
        rows: list[dict[str, Any]],
        exclude: set[str],
        base: float,
        factor: float,
        limit: int,
        source: CandidateSource,
    ) -> list[CandidateItem]:
        """score = base + ln(1 + favourites) * factor"""
        rows = [row for row in rows if row["id"] not in exclude]
        if not rows:
            return []

        favorites = await self.store.count_favorites([row["id"] for row in rows])
        candidates = [
            candidate_from_row(row, base + math.log1p(favorites.get(row["id"], 0)) * factor, source) for row in rows
        ]
        candidates.sort(key=lambda c: c.total_score, reverse=True)
        return candidates[:limit]

    async def cold_start(self, limit: int = 50, now: datetime | None = None) -> list[CandidateItem]:
        """
        Popular recent items for users without a personalisation signal.

        Items from the last 90 days, or the newest `limit * 2` items when none are that recent.
        """
        now = now or datetime.now(timezone.utc)
        since = (now - timedelta(days=COLD_START_WINDOW_DAYS)).isoformat()

        rows = await self.store.get_items_created_since(since)
        if not rows:
            rows = await self.store.get_latest_items(limit * 2)
        if not rows:
            return []

        metrics = await RecommendationScoring.get_popularity_metrics(self.store, [row["id"] for row in rows])
        candidates = []
        for row in rows:
            m = metrics[row["id"]]
            engagement = RecommendationScoring.engagement(m.favorite_count, m.keep_count)
            # +1 keeps every cold-start score above zero
            candidates.append(candidate_from_row(row, math.log1p(engagement) + 1, "cold_start"))

        candidates.sort(key=lambda c: c.total_score, reverse=True)
        return candidates[:limit]

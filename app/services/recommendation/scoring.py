import asyncio
import math
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from app.core.constants import (
    FAVORITE_WEIGHT,
    FRESHNESS_BUCKETS,
    FRESHNESS_FLOOR,
    KEEP_WEIGHT,
    POPULARITY_LOG_DIVISOR,
)
from app.models.recommendation import CandidateItem, PopularityMetrics


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp as stored by Postgres. Naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RecommendationScoring:
    """
    Popularity and freshness signals for ranking.
    """

    @staticmethod
    def engagement(favorite_count: int, keep_count: int) -> int:
        """Raw engagement. A keep is a stronger signal than a favourite."""
        return favorite_count * FAVORITE_WEIGHT + keep_count * KEEP_WEIGHT

    @staticmethod
    def popularity_from_counts(favorite_count: int, keep_count: int) -> float:
        """ln(1 + fav*2 + keep*3) / 10, capped at 1.0."""
        raw = RecommendationScoring.engagement(favorite_count, keep_count)
        return min(math.log1p(raw) / POPULARITY_LOG_DIVISOR, 1.0)

    @staticmethod
    async def get_popularity_metrics(store: Any, item_ids: Iterable[str]) -> dict[str, PopularityMetrics]:
        """Favourite and keep counts for every item, in two batched lookups."""
        ids = list(dict.fromkeys(item_ids))
        if not ids:
            return {}

        favorites, keeps = await asyncio.gather(store.count_favorites(ids), store.count_keeps(ids))
        return {
            item_id: PopularityMetrics(
                item_id=item_id,
                favorite_count=favorites.get(item_id, 0),
                keep_count=keeps.get(item_id, 0),
            )
            for item_id in ids
        }

    @staticmethod
    async def get_popularity_scores(store: Any, item_ids: Iterable[str]) -> dict[str, float]:
        metrics = await RecommendationScoring.get_popularity_metrics(store, item_ids)
        return {
            item_id: RecommendationScoring.popularity_from_counts(m.favorite_count, m.keep_count)
            for item_id, m in metrics.items()
        }

    @staticmethod
    def calculate_freshness_score(created_at: str | None, now: datetime | None = None) -> float | None:
        """
        Step-decay freshness of an item.

        7 days or less: 1.0, 30 days: 0.7, 90 days: 0.4, older: 0.1.
        Returns None when the timestamp cannot be parsed.
        """
        created = parse_timestamp(created_at)
        if created is None:
            return None

        now = now or datetime.now(timezone.utc)
        age_days = (now - created).total_seconds() / 86400
        for max_days, score in FRESHNESS_BUCKETS:
            if age_days <= max_days:
                return score
        return FRESHNESS_FLOOR

    @staticmethod
    def get_freshness_scores(candidates: Iterable[CandidateItem], now: datetime | None = None) -> dict[str, float]:
        now = now or datetime.now(timezone.utc)
        scores = {}
        for candidate in candidates:
            score = RecommendationScoring.calculate_freshness_score(candidate.created_at, now)
            if score is not None:
                scores[candidate.item_id] = score
        return scores

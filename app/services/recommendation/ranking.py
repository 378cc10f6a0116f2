from datetime import datetime
from typing import Any

from loguru import logger

from app.core.constants import DEFAULT_FRESHNESS_SCORE, DEFAULT_POPULARITY_SCORE
from app.models.recommendation import (
    DEFAULT_RANKING_WEIGHTS,
    CandidateItem,
    RankingWeights,
    RecommendedItem,
    ScoreBreakdown,
)
from app.services.recommendation.scoring import RecommendationScoring


def normalize_scores(values: list[float]) -> list[float]:
    """
    Min-max normalise to [0, 1].

    When every value is equal the range is taken as 1, so all values normalise to 0.
    """
    if not values:
        return []
    low, high = min(values), max(values)
    spread = (high - low) or 1.0
    return [(v - low) / spread for v in values]


def score_candidates(
    candidates: list[CandidateItem],
    weights: RankingWeights,
    popularity: dict[str, float],
    freshness: dict[str, float],
) -> list[RecommendedItem]:
    """Blend the three signals into a final score and sort descending (stable for ties)."""
    if not candidates:
        return []

    normalized_cf = normalize_scores([c.total_score for c in candidates])

    ranked = []
    for candidate, cf in zip(candidates, normalized_cf):
        breakdown = ScoreBreakdown(
            collaborative_filtering=cf * weights.collaborative_filtering,
            popularity=popularity.get(candidate.item_id, DEFAULT_POPULARITY_SCORE) * weights.popularity,
            freshness=freshness.get(candidate.item_id, DEFAULT_FRESHNESS_SCORE) * weights.freshness,
        )
        ranked.append(
            RecommendedItem(
                item_id=candidate.item_id,
                name=candidate.name,
                image_url=candidate.image_url,
                shop_id=candidate.shop_id,
                shop_name=candidate.shop_name,
                shop_theme=candidate.shop_theme,
                final_score=breakdown.total,
                score_breakdown=breakdown,
                sources=list(candidate.sources),
            )
        )

    ranked.sort(key=lambda x: x.final_score, reverse=True)
    return ranked


class Ranker:
    """
    Assigns every candidate a comparable final score.

    final = normalized_cf * w_cf + popularity * w_pop + freshness * w_fresh
    """

    def __init__(self, store: Any):
        self.store = store

    async def rank_candidates(
        self,
        candidates: list[CandidateItem],
        weights: RankingWeights = DEFAULT_RANKING_WEIGHTS,
        now: datetime | None = None,
    ) -> list[RecommendedItem]:
        if not candidates:
            return []

        # One batched lookup per signal, never one per item
        popularity = await RecommendationScoring.get_popularity_scores(self.store, [c.item_id for c in candidates])
        freshness = RecommendationScoring.get_freshness_scores(candidates, now)

        ranked = score_candidates(candidates, weights, popularity, freshness)
        logger.debug(f"Ranked {len(ranked)} candidates (top score {ranked[0].final_score:.4f})")
        return ranked

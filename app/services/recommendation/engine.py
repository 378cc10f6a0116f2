import functools
from typing import Any

from loguru import logger

from app.core.config import settings
from app.core.constants import COLD_START_POOL_SIZE, MIN_PERSONALISED_CANDIDATES
from app.core.security import redact_user_id
from app.models.recommendation import (
    COLD_START_RANKING_WEIGHTS,
    DEFAULT_DIVERSITY_OPTIONS,
    DEFAULT_RANKING_WEIGHTS,
    CacheOptions,
    DiversityOptions,
    RecommendationOptions,
    RecommendedItem,
)
from app.services.recommendation.cache import RecommendationCache, build_cache_backend, filter_items
from app.services.recommendation.candidates import CandidateGenerator
from app.services.recommendation.diversity import apply_diversity_constraints
from app.services.recommendation.ranking import Ranker
from app.services.store.shop_store import get_shop_store


class RecommendationEngine:
    """
    Main orchestration: cache, candidate generation, ranking, diversity, cache write-through.
    """

    def __init__(
        self,
        store: Any,
        cache: RecommendationCache,
        diversity: DiversityOptions = DEFAULT_DIVERSITY_OPTIONS,
        candidate_limit: int = 1000,
        cache_ttl_hours: float = 12,
        cold_start_cache_ttl_hours: float = 6,
    ):
        self.store = store
        self.cache = cache
        self.diversity = diversity
        self.candidate_limit = candidate_limit
        self.cache_ttl_hours = cache_ttl_hours
        self.cold_start_cache_ttl_hours = cold_start_cache_ttl_hours

        self.candidate_generator = CandidateGenerator(store)
        self.ranker = Ranker(store)

    async def generate_recommendations(
        self, user_id: str | None, options: RecommendationOptions | None = None
    ) -> list[RecommendedItem]:
        options = options or RecommendationOptions()
        tag = redact_user_id(user_id)

        if not user_id:
            cold = await self._cold_start_ranked(options.exclude_item_ids)
            diversified = apply_diversity_constraints(cold, self.diversity).items
            return filter_items(diversified, options.min_score, options.exclude_item_ids, options.limit)

        if options.use_cache:
            cached = await self.cache.get(user_id)
            if cached is not None:
                logger.info(f"[{tag}] Serving {len(cached.items)} cached recommendations")
                return filter_items(cached.items, options.min_score, options.exclude_item_ids, options.limit)

        candidates = await self.candidate_generator.generate(
            user_id, options.exclude_item_ids, candidate_limit=self.candidate_limit
        )

        if len(candidates) < MIN_PERSONALISED_CANDIDATES:
            logger.info(f"[{tag}] Only {len(candidates)} candidates, augmenting with cold-start items")
            blended = await self._cold_start_ranked(options.exclude_item_ids)
            if candidates:
                # personalised items lead; the diversity pass keeps that order while spacing out shops
                personalised = await self.ranker.rank_candidates(candidates, DEFAULT_RANKING_WEIGHTS)
                present = {item.item_id for item in personalised}
                blended = personalised + [item for item in blended if item.item_id not in present]
            full = apply_diversity_constraints(blended, self.diversity).items
            ttl_hours = self.cold_start_cache_ttl_hours
        else:
            ranked = await self.ranker.rank_candidates(candidates, DEFAULT_RANKING_WEIGHTS)
            full = apply_diversity_constraints(ranked, self.diversity).items
            ttl_hours = self.cache_ttl_hours

        if options.use_cache:
            await self.cache.set(user_id, full, CacheOptions(ttl_hours=ttl_hours))

        result = filter_items(full, options.min_score, options.exclude_item_ids, options.limit)
        logger.info(f"[{tag}] Returning {len(result)} recommendations")
        return result

    async def _cold_start_ranked(self, exclude_item_ids: list[str]) -> list[RecommendedItem]:
        """
        Popular recent items ranked with cold-start weights, not yet diversified.

        The pool size does not depend on the request, so the result can be cached and served
        to later requests with any limit.
        """
        exclude = set(exclude_item_ids)
        candidates = await self.candidate_generator.cold_start(COLD_START_POOL_SIZE)
        candidates = [c for c in candidates if c.item_id not in exclude]
        if not candidates:
            return []
        return await self.ranker.rank_candidates(candidates, COLD_START_RANKING_WEIGHTS)

    async def invalidate_cache(self, user_id: str) -> None:
        await self.cache.invalidate(user_id)


@functools.lru_cache(maxsize=1)
def get_recommendation_engine() -> RecommendationEngine:
    store = get_shop_store()
    backend = build_cache_backend(settings.RECOMMENDATION_CACHE_BACKEND, store)
    cache = RecommendationCache(
        backend,
        memory_ttl_seconds=settings.MEMORY_CACHE_TTL_SECONDS,
        memory_max_entries=settings.MEMORY_CACHE_MAX_ENTRIES,
    )
    return RecommendationEngine(
        store,
        cache,
        candidate_limit=settings.CANDIDATE_LIMIT,
        cache_ttl_hours=settings.RECOMMENDATION_CACHE_TTL_HOURS,
        cold_start_cache_ttl_hours=settings.COLD_START_CACHE_TTL_HOURS,
    )

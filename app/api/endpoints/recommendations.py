from fastapi import APIRouter, Query
from loguru import logger

from app.core.config import settings
from app.core.security import redact_user_id
from app.models.recommendation import RecommendationOptions, RecommendedItem
from app.services.recommendation.engine import get_recommendation_engine

router = APIRouter(tags=["recommendations"])


async def _recommend(user_id: str | None, options: RecommendationOptions) -> list[dict]:
    """
    Run the pipeline for one request.

    Recommendations are an optional part of a page, so any failure degrades to an empty list.
    """
    try:
        engine = get_recommendation_engine()
        items = await engine.generate_recommendations(user_id, options)
    except Exception as e:
        logger.exception(f"[{redact_user_id(user_id)}] Failed to get recommendations: {e}")
        return []
    return [item.model_dump(by_alias=True) for item in items]


@router.get("/recommendations", summary="Recommendations for anonymous visitors")
async def get_anonymous_recommendations(
    limit: int = Query(default=settings.DEFAULT_RECOMMENDATION_LIMIT, ge=1, le=200),
    exclude: list[str] | None = Query(default=None),
) -> list[dict]:
    return await _recommend(None, RecommendationOptions(limit=limit, exclude_item_ids=exclude or [], use_cache=False))


@router.get("/users/{user_id}/recommendations", summary="Personalised recommendations")
async def get_user_recommendations(
    user_id: str,
    limit: int = Query(default=settings.DEFAULT_RECOMMENDATION_LIMIT, ge=1, le=200),
    exclude: list[str] | None = Query(default=None),
    min_score: float = Query(default=0.0, ge=0.0),
    use_cache: bool = True,
) -> list[dict]:
    options = RecommendationOptions(
        limit=limit, exclude_item_ids=exclude or [], use_cache=use_cache, min_score=min_score
    )
    return await _recommend(user_id, options)


@router.delete("/users/{user_id}/recommendations/cache", summary="Invalidate cached recommendations")
async def refresh_recommendations(user_id: str) -> dict[str, str]:
    """Called after a follow, unfollow or favourite so the next request recomputes."""
    try:
        await get_recommendation_engine().invalidate_cache(user_id)
    except Exception as e:
        logger.error(f"[{redact_user_id(user_id)}] Failed to refresh recommendations: {e}")
        return {"status": "error"}
    return {"status": "ok"}

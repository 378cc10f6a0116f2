from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CandidateSource = Literal["item_collab", "shop_based", "user_based", "cold_start"]


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys, matching the web client payloads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CandidateItem(CamelModel):
    """
    An item nominated for recommendation, before ranking and diversity are applied.

    `total_score` is the raw collaborative score. When several strategies nominate the same
    item it holds the highest of their scores and `sources` holds every strategy that did.
    """

    item_id: str
    name: str
    image_url: str | None = None
    shop_id: str
    shop_name: str = ""
    shop_theme: str = ""
    total_score: float = 0.0
    created_at: str
    sources: list[CandidateSource] = Field(default_factory=list)

    @property
    def source_diversity(self) -> int:
        return len(self.sources)


class ScoreBreakdown(CamelModel):
    """Weighted contribution of each ranking signal. Retained for diagnostics."""

    collaborative_filtering: float = Field(default=0.0, ge=0.0)
    popularity: float = Field(default=0.0, ge=0.0)
    freshness: float = Field(default=0.0, ge=0.0)

    @property
    def total(self) -> float:
        return self.collaborative_filtering + self.popularity + self.freshness


class RecommendedItem(CamelModel):
    """A ranked, display-ready recommendation."""

    item_id: str
    name: str
    image_url: str | None = None
    shop_id: str
    shop_name: str = ""
    shop_theme: str = ""
    final_score: float
    score_breakdown: ScoreBreakdown
    sources: list[CandidateSource] = Field(default_factory=list)


class RankingWeights(CamelModel):
    """Weights of the three ranking signals. Conventionally sum to about 1."""

    collaborative_filtering: float = Field(default=0.4, ge=0.0)
    popularity: float = Field(default=0.3, ge=0.0)
    freshness: float = Field(default=0.2, ge=0.0)


DEFAULT_RANKING_WEIGHTS = RankingWeights()
# Cold start has no collaborative signal worth trusting, so proven popularity leads
COLD_START_RANKING_WEIGHTS = RankingWeights(collaborative_filtering=0.2, popularity=0.5, freshness=0.3)


class DiversityOptions(CamelModel):
    max_items_per_shop: int = Field(default=3, ge=1, description="Cap on items from one shop in a single list")
    no_consecutive_shops: bool = Field(default=True, description="Forbid two adjacent items from the same shop")


DEFAULT_DIVERSITY_OPTIONS = DiversityOptions()


class DiversityResult(BaseModel):
    """Output of the diversity pass, with the number of items it had to give up."""

    items: list[RecommendedItem] = Field(default_factory=list)
    dropped_over_cap: int = 0
    dropped_unplaceable: int = 0

    @property
    def dropped(self) -> int:
        return self.dropped_over_cap + self.dropped_unplaceable


class CacheOptions(CamelModel):
    ttl_hours: float = Field(default=12, gt=0)


class RecommendationCacheEntry(CamelModel):
    user_id: str
    items: list[RecommendedItem] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime
    version: int = 1

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= now


class RecommendationOptions(CamelModel):
    limit: int = Field(default=50, ge=0)
    exclude_item_ids: list[str] = Field(default_factory=list)
    use_cache: bool = True
    min_score: float = 0.0


class PopularityMetrics(CamelModel):
    item_id: str
    favorite_count: int = 0
    keep_count: int = 0

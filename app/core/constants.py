"""
Core constants used across the recommendation pipeline. Keep these simple and documented.
"""

# Candidate generation
ITEM_COLLAB_MAX_SIMILAR_USERS: int = 100
ITEM_COLLAB_MAX_ITEMS: int = 500
# Users with at least this many favourites need 2 shared favourites to count as similar
ITEM_COLLAB_STRICT_OVERLAP_MIN_FAVORITES: int = 3
SHOP_BASED_BASE_SCORE: float = 50.0
SHOP_BASED_POPULARITY_FACTOR: float = 5.0
SHOP_BASED_MAX_ITEMS: int = 300
USER_BASED_BASE_SCORE: float = 40.0
USER_BASED_POPULARITY_FACTOR: float = 3.0
USER_BASED_MAX_ITEMS: int = 300

# Cold start
COLD_START_WINDOW_DAYS: int = 90
# Cold-start items ranked per request, independent of the requested limit (matches the API max limit)
COLD_START_POOL_SIZE: int = 200
# Below this many personalised candidates the result is topped up with cold-start items
MIN_PERSONALISED_CANDIDATES: int = 10

# Popularity: keeps are a stronger signal than favourites
FAVORITE_WEIGHT: int = 2
KEEP_WEIGHT: int = 3
POPULARITY_LOG_DIVISOR: float = 10.0

# Freshness buckets: (max age in days, score)
FRESHNESS_BUCKETS: tuple[tuple[int, float], ...] = ((7, 1.0), (30, 0.7), (90, 0.4))
FRESHNESS_FLOOR: float = 0.1

# Ranking defaults for signals that could not be computed
DEFAULT_POPULARITY_SCORE: float = 0.0
DEFAULT_FRESHNESS_SCORE: float = 0.1

CACHE_ENTRY_VERSION: int = 1
RECOMMENDATION_CACHE_TABLE: str = "recommendation_cache"

# PostgREST embed used whenever item rows are loaded with their shop
ITEM_SELECT: str = "id, name, image_url, shop_id, created_at, shops!items_shop_id_fkey(name, theme)"

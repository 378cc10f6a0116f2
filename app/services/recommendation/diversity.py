from collections import defaultdict

from loguru import logger

from app.models.recommendation import DiversityOptions, DiversityResult, RecommendedItem


def _find_gap(result: list[RecommendedItem], shop_id: str) -> int | None:
    """First index where inserting an item of `shop_id` leaves no same-shop neighbour."""
    for i in range(len(result)):
        prev_shop = result[i - 1].shop_id if i > 0 else None
        if prev_shop != shop_id and result[i].shop_id != shop_id:
            return i
    return None


def apply_diversity_constraints(items: list[RecommendedItem], options: DiversityOptions) -> DiversityResult:
    """
    Re-order a ranked list so no shop exceeds `max_items_per_shop` and, optionally,
    no two adjacent items share a shop.

    Pass 1 walks the ranked list: items over the shop cap are dropped, items that would
    sit next to their own shop are deferred. Pass 2 first-fit inserts each deferred item
    into a gap between two other shops, else appends it when the tail is another shop,
    else gives it up. Greedy, so the arrangement is valid but not optimal.
    """
    cap = options.max_items_per_shop
    result: list[RecommendedItem] = []
    deferred: list[RecommendedItem] = []
    shop_counts: dict[str, int] = defaultdict(int)
    dropped_over_cap = 0
    dropped_unplaceable = 0
    last_shop: str | None = None

    for item in items:
        if shop_counts[item.shop_id] >= cap:
            dropped_over_cap += 1
            continue

        if options.no_consecutive_shops and item.shop_id == last_shop:
            deferred.append(item)
            continue

        result.append(item)
        shop_counts[item.shop_id] += 1
        last_shop = item.shop_id

    for item in deferred:
        if shop_counts[item.shop_id] >= cap:
            dropped_over_cap += 1
            continue

        gap = _find_gap(result, item.shop_id)
        if gap is not None:
            result.insert(gap, item)
        elif not result or result[-1].shop_id != item.shop_id:
            result.append(item)
        else:
            dropped_unplaceable += 1
            continue
        shop_counts[item.shop_id] += 1

    if dropped_over_cap or dropped_unplaceable:
        logger.debug(
            f"Diversity pass kept {len(result)}/{len(items)} items "
            f"(over cap: {dropped_over_cap}, unplaceable: {dropped_unplaceable})"
        )

    return DiversityResult(
        items=result,
        dropped_over_cap=dropped_over_cap,
        dropped_unplaceable=dropped_unplaceable,
    )

"""
Alternatives and personalized recommendations

Purpose: rank catalog items for the "alternatives" view of a single item and
the "recommended for you" view of a user, on top of similarity.py.

Input: catalog items (both kinds) and, for users, their past orders.

Output: ranked ScoredItem lists.

Notes: pure functions; the caller fetches the catalog and order history.
"""
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

import config
from schemas import CatalogItem, ScoredItem
from similarity import rank_candidates, similarity_score

logger = logging.getLogger(__name__)


def candidate_pool(
    items: Iterable[CatalogItem],
    now: Optional[datetime] = None,
    exclude_ids: Optional[Set[str]] = None,
) -> List[CatalogItem]:
    """In-stock, non-expired items whose id is not excluded."""
    now = now or datetime.now(timezone.utc)
    exclude_ids = exclude_ids or set()
    return [
        item for item in items
        if item.in_stock and not item.is_expired(now) and item.id not in exclude_ids
    ]


def find_alternatives(
    base: CatalogItem,
    catalog: Iterable[CatalogItem],
    max_results: int = config.ALTERNATIVES_LIMIT,
    prefer_cheaper: bool = True,
    now: Optional[datetime] = None,
) -> List[ScoredItem]:
    scored = []
    for candidate in candidate_pool(catalog, now=now, exclude_ids={base.id}):
        score = similarity_score(base, candidate)
        if score > 0:
            scored.append(ScoredItem(item=candidate, score=score))
    return rank_candidates(scored, prefer_cheaper=prefer_cheaper, max_results=max_results)


def purchase_frequency(orders: Iterable[Mapping[str, Any]]) -> Dict[str, int]:
    """Total quantity bought per item id across every past order."""
    frequency: Counter = Counter()
    for order in orders:
        for line in order.get("items") or []:
            item_id = line.get("id")
            if not item_id:
                continue
            try:
                quantity = int(line.get("quantity", 1))
            except (TypeError, ValueError):
                quantity = 1
            frequency[str(item_id)] += max(quantity, 0)
    return dict(frequency)


def select_anchors(
    frequency: Mapping[str, int],
    catalog: Iterable[CatalogItem],
    count: int = config.ANCHOR_COUNT,
) -> List[CatalogItem]:
    """The user's most frequently bought items that still exist in the catalog."""
    by_id = {item.id: item for item in catalog}
    ordered = sorted(frequency.items(), key=lambda kv: (-kv[1], kv[0]))
    anchors = []
    for item_id, _ in ordered:
        if len(anchors) >= count:
            break
        item = by_id.get(item_id)
        if item is not None:
            anchors.append(item)
    return anchors


def cheapest_in_stock(
    catalog: Iterable[CatalogItem],
    max_results: int = config.RECOMMENDATIONS_LIMIT,
    exclude_ids: Optional[Set[str]] = None,
    now: Optional[datetime] = None,
) -> List[ScoredItem]:
    pool = sorted(candidate_pool(catalog, now=now, exclude_ids=exclude_ids), key=lambda item: item.price)
    return [ScoredItem(item=item, score=0.0) for item in pool[:max(max_results, 0)]]


def recommend_for_user(
    orders: Iterable[Mapping[str, Any]],
    catalog: Iterable[CatalogItem],
    max_results: int = config.RECOMMENDATIONS_LIMIT,
    now: Optional[datetime] = None,
) -> List[ScoredItem]:
    catalog = list(catalog)
    frequency = purchase_frequency(orders)
    if not frequency:
        logger.debug("No purchase history, using cold-start list")
        return cheapest_in_stock(catalog, max_results=max_results, now=now)

    purchased = set(frequency)
    anchors = select_anchors(frequency, catalog)

    scored = []
    for candidate in candidate_pool(catalog, now=now, exclude_ids=purchased):
        # best match against any liked item, not the sum
        best = max((similarity_score(anchor, candidate) for anchor in anchors), default=0.0)
        if best > 0:
            scored.append(ScoredItem(item=candidate, score=best))

    if not scored:
        logger.debug("History produced no positive matches, falling back to cheapest items")
        return cheapest_in_stock(catalog, max_results=max_results, exclude_ids=purchased, now=now)
    return rank_candidates(scored, prefer_cheaper=True, max_results=max_results)

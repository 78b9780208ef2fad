"""
Content-based similarity between catalog items

Purpose: score how well a candidate medicine/product substitutes for (or
resembles) a base item, from its text attributes, price and prescription flag.

Input: two CatalogItem records.

Output: a non-negative float; higher is more similar.

Example: two paracetamol pain-relief medicines from different manufacturers,
priced 50 and 52, both OTC -> 5 + 3 + 1 + 1 = 10.

Notes: pure functions, no I/O. Partially populated records never raise; a
missing or malformed field simply contributes 0.
"""
import math
from typing import Any, Iterable, List, Optional, Tuple

from schemas import CatalogItem, ScoredItem

# generic name dominates; the prescription flag is only a tie-breaker
TEXT_WEIGHTS: Tuple[Tuple[str, float], ...] = (
    ("generic_name", 5.0),
    ("category", 3.0),
    ("manufacturer", 2.0),
    ("dosage", 1.5),
    ("side_effects", 1.0),
)
PRESCRIPTION_MATCH_WEIGHT = 1.0

EXACT_MATCH = 1.0
PARTIAL_MATCH = 0.8


def _normalize_text(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def _as_price(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(price) or math.isinf(price):
        return None
    return price


def text_match_score(a: Any, b: Any) -> float:
    """Case-insensitive match: 1 exact, 0.8 substring either way, else 0."""
    a, b = _normalize_text(a), _normalize_text(b)
    if not a or not b:
        return 0.0
    if a == b:
        return EXACT_MATCH
    if a in b or b in a:
        return PARTIAL_MATCH
    return 0.0


def price_similarity(base_price: Any, other_price: Any) -> float:
    a, b = _as_price(base_price), _as_price(other_price)
    if not a or not b:
        return 0.0
    mean = (a + b) / 2
    if mean <= 0:
        return 0.0
    ratio = abs(a - b) / mean
    if ratio < 0.10:
        return 1.0
    if ratio < 0.25:
        return 0.6
    if ratio < 0.50:
        return 0.3
    return 0.0


def prescription_match(base: CatalogItem, candidate: CatalogItem) -> float:
    # products carry no flag; treat that as "not prescription-only"
    same = bool(base.requires_prescription) == bool(candidate.requires_prescription)
    return PRESCRIPTION_MATCH_WEIGHT if same else 0.0


def similarity_score(base: CatalogItem, candidate: CatalogItem) -> float:
    if base.id == candidate.id:
        return 0.0
    score = 0.0
    for field, weight in TEXT_WEIGHTS:
        score += weight * text_match_score(getattr(base, field, None), getattr(candidate, field, None))
    score += price_similarity(base.price, candidate.price)
    score += prescription_match(base, candidate)
    return score


def rank_candidates(
    scored: Iterable[ScoredItem],
    prefer_cheaper: bool = True,
    max_results: Optional[int] = None,
) -> List[ScoredItem]:
    """Score descending; equal scores go cheapest first when prefer_cheaper.

    The sort is stable, so without prefer_cheaper ties keep their input order.
    """
    if prefer_cheaper:
        key = lambda s: (-s.score, s.item.price)
    else:
        key = lambda s: -s.score
    ranked = sorted(scored, key=key)
    if max_results is not None:
        ranked = ranked[:max(max_results, 0)]
    return ranked

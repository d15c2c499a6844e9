# cartmerge/core/similarity.py
from __future__ import annotations

import math
from typing import Collection, List, Optional, Sequence

from .models import Cart, MergeablePair, MergeSuggestion

HIGH_OVERLAP = 0.7
FEW_ITEMS = 3

REASON_OVERLAP = "High product overlap"
REASON_NAMES = "Similar names"
REASON_FEW_ITEMS = "Both carts have few items"


def similarity(cart_a: Cart, cart_b: Cart) -> Optional[float]:
    """
    Jaccard index over the distinct product ids of two carts; quantities are
    ignored. None when neither cart holds any product.
    """
    a, b = cart_a.product_ids(), cart_b.product_ids()
    union = a | b
    if not union:
        return None
    return len(a & b) / len(union)


def _names_overlap(cart_a: Cart, cart_b: Cart) -> bool:
    na, nb = cart_a.normalized_name(), cart_b.normalized_name()
    return na in nb or nb in na


def merge_reason(cart_a: Cart, cart_b: Cart, score: float) -> Optional[str]:
    if score > HIGH_OVERLAP:
        return REASON_OVERLAP
    if _names_overlap(cart_a, cart_b):
        return REASON_NAMES
    if len(cart_a.items) < FEW_ITEMS and len(cart_b.items) < FEW_ITEMS:
        return REASON_FEW_ITEMS
    return None


def find_mergeable_pairs(carts: Sequence[Cart]) -> List[MergeablePair]:
    """
    All pairs (i < j, in input order) worth merging, most similar first.
    The sort is stable, so equal scores keep enumeration order.
    """
    pairs: List[MergeablePair] = []
    for i, cart_a in enumerate(carts):
        for cart_b in carts[i + 1:]:
            score = similarity(cart_a, cart_b)
            if score is None:
                continue
            reason = merge_reason(cart_a, cart_b, score)
            if reason:
                pairs.append(MergeablePair(cart_a=cart_a, cart_b=cart_b, similarity=score, reason=reason))
    return sorted(pairs, key=lambda p: p.similarity, reverse=True)


def confidence(score: float) -> int:
    """Integer percentage, halves rounded up."""
    return int(math.floor(score * 100 + 0.5))


def merge_benefit(cart_a: Cart, cart_b: Cart) -> str:
    total_items = len(cart_a.items) + len(cart_b.items)
    if total_items < 5:
        return "Low impact"
    if total_items < 10:
        return "Medium impact"
    return "High impact — significant consolidation"


def get_merge_suggestions(
    carts: Sequence[Cart],
    dismissed: Collection[str] = (),
) -> List[MergeSuggestion]:
    """Ranked suggestions; `dismissed` holds pair keys ("<idA>-<idB>") to hide."""
    out: List[MergeSuggestion] = []
    for pair in find_mergeable_pairs(carts):
        if pair.key() in dismissed:
            continue
        out.append(MergeSuggestion(
            cart_a=pair.cart_a,
            cart_b=pair.cart_b,
            similarity=pair.similarity,
            reason=pair.reason,
            confidence=confidence(pair.similarity),
            estimated_benefit=merge_benefit(pair.cart_a, pair.cart_b),
        ))
    return out

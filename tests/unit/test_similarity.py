import itertools

import pytest

from cartmerge.core.models import Cart, CartItem
from cartmerge.core.similarity import (
    confidence,
    find_mergeable_pairs,
    get_merge_suggestions,
    merge_benefit,
    similarity,
)


def _cart(cid, name, *pids):
    items = [CartItem(product_id=p, price=1, quantity=1, added_by="alice") for p in pids]
    return Cart(id=cid, name=name, items=items)


def test_jaccard_over_distinct_products():
    a = _cart("a", "Shirts", "p1", "p2")
    b = _cart("b", "Pants", "p1", "p2", "p3")
    assert similarity(a, b) == pytest.approx(2 / 3)


def test_quantities_and_repeats_are_ignored():
    a = _cart("a", "A", "p1", "p1", "p1")
    b = _cart("b", "B", "p1")
    assert similarity(a, b) == 1.0


def test_similarity_with_self_is_one():
    a = _cart("a", "A", "p1", "p2")
    assert similarity(a, a) == 1.0


def test_two_empty_carts_are_undefined():
    assert similarity(_cart("a", "A"), _cart("b", "B")) is None


def test_similarity_is_bounded():
    carts = [
        _cart("a", "A", "p1"),
        _cart("b", "B", "p2", "p3"),
        _cart("c", "C", "p1", "p3", "p4"),
        _cart("d", "D"),
    ]
    for x, y in itertools.product(carts, repeat=2):
        s = similarity(x, y)
        assert s is None or 0 <= s <= 1


def test_high_overlap_reason():
    a = _cart("a", "Shirts", "p1", "p2", "p3", "p4")
    b = _cart("b", "Linen", "p1", "p2", "p3", "p4", "p5")
    [pair] = find_mergeable_pairs([a, b])
    assert pair.reason == "High product overlap"
    assert pair.similarity == pytest.approx(0.8)


def test_name_containment_reason():
    a = _cart("a", "Uniforms", "p1", "p2", "p3")
    b = _cart("b", "  uniforms extra", "p4", "p5", "p6")
    [pair] = find_mergeable_pairs([a, b])
    assert pair.reason == "Similar names"
    assert pair.similarity == 0


def test_two_thirds_overlap_is_not_high_but_few_items_can_qualify():
    a = _cart("a", "Shirts", "p1", "p2")
    b = _cart("b", "Pants", "p1", "p2", "p3")
    # b has 3 items, so neither heuristic applies
    assert find_mergeable_pairs([a, b]) == []

    c = _cart("c", "Pants", "p1")
    [pair] = find_mergeable_pairs([a, c])
    assert pair.reason == "Both carts have few items"


def test_pair_of_empty_carts_is_excluded():
    assert find_mergeable_pairs([_cart("a", "Cart"), _cart("b", "Cart 2")]) == []


def test_unrelated_carts_are_not_paired():
    a = _cart("a", "Shirts", "p1", "p2", "p3")
    b = _cart("b", "Towels", "p4", "p5", "p6")
    assert find_mergeable_pairs([a, b]) == []


def test_pairs_sorted_by_similarity_with_stable_ties():
    a = _cart("a", "One", "p1")
    b = _cart("b", "Two", "p2")
    c = _cart("c", "Three", "p1")
    d = _cart("d", "Four", "p3")
    pairs = find_mergeable_pairs([a, b, c, d])
    assert pairs[0].key() == "a-c"
    zero = [p.key() for p in pairs if p.similarity == 0]
    assert zero == ["a-b", "a-d", "b-c", "b-d", "c-d"]


def test_analyzer_does_not_mutate():
    a = _cart("a", "A", "p1")
    b = _cart("b", "B", "p1")
    before = (a.model_dump(), b.model_dump())
    get_merge_suggestions([a, b])
    assert (a.model_dump(), b.model_dump()) == before


@pytest.mark.parametrize("score, expected", [(0.0, 0), (2 / 3, 67), (0.875, 88), (0.5, 50), (1.0, 100)])
def test_confidence_is_rounded_percentage(score, expected):
    assert confidence(score) == expected


@pytest.mark.parametrize("n_a, n_b, label", [
    (2, 2, "Low impact"),
    (3, 2, "Medium impact"),
    (5, 4, "Medium impact"),
    (5, 5, "High impact — significant consolidation"),
])
def test_merge_benefit(n_a, n_b, label):
    a = _cart("a", "A", *[f"p{i}" for i in range(n_a)])
    b = _cart("b", "B", *[f"q{i}" for i in range(n_b)])
    assert merge_benefit(a, b) == label


def test_suggestions_carry_confidence_and_benefit():
    a = _cart("a", "Shirts", "p1", "p2", "p3", "p4")
    b = _cart("b", "Linen", "p1", "p2", "p3", "p4", "p5")
    [s] = get_merge_suggestions([a, b])
    assert s.confidence == 80
    assert s.estimated_benefit == "Medium impact"


def test_dismissed_suggestions_are_hidden():
    a = _cart("a", "A", "p1")
    b = _cart("b", "B", "p1")
    c = _cart("c", "C", "p1")
    keys = [s.key() for s in get_merge_suggestions([a, b, c], dismissed={"a-b"})]
    assert keys == ["a-c", "b-c"]

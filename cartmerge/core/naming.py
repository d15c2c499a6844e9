# cartmerge/core/naming.py
from __future__ import annotations

from typing import Callable, List, Optional, Sequence

from .errors import EmptyNameError, OperationCancelled
from .models import Cart, Decision, NameResolution

ConflictHandler = Callable[[Cart], Decision]


def normalize_name(name: str) -> str:
    """Comparison key for cart names: trimmed and case-folded."""
    return name.strip().casefold()


def find_duplicate_carts(
    name: str,
    carts: Sequence[Cart],
    exclude_id: Optional[str] = None,
) -> List[Cart]:
    key = normalize_name(name)
    return [c for c in carts if c.id != exclude_id and c.normalized_name() == key]


def disambiguate_name(
    name: str,
    carts: Sequence[Cart],
    exclude_id: Optional[str] = None,
) -> str:
    """
    Lowest free "<name> (N)" with N >= 2, checked against the whole set
    (numbered variants included), so the choice is deterministic.
    """
    base = name.strip()
    taken = {c.normalized_name() for c in carts if c.id != exclude_id}
    suffix = 2
    candidate = f"{base} ({suffix})"
    while normalize_name(candidate) in taken:
        suffix += 1
        candidate = f"{base} ({suffix})"
    return candidate


def conflict_prompt(existing: Cart) -> str:
    return (
        f'A cart named "{existing.name}" already exists.\n\n'
        "Merge into the existing cart instead of creating a separate one?"
    )


def resolve_name(
    desired_name: str,
    carts: Sequence[Cart],
    on_conflict: Optional[ConflictHandler] = None,
    cart_id: Optional[str] = None,
) -> NameResolution:
    """
    Decide what a create/rename to `desired_name` should do.

    `cart_id` is the cart being renamed (None when creating); its own name never
    collides. On collision `on_conflict` picks: YES merges into the existing
    cart, NO creates a separately numbered name, CANCEL aborts. Without a
    handler the numbered name is used.
    """
    name = desired_name.strip() if desired_name else ""
    if not name:
        raise EmptyNameError("Cart name cannot be empty")

    duplicates = find_duplicate_carts(name, carts, exclude_id=cart_id)
    if not duplicates:
        return NameResolution(final_name=name)

    existing = duplicates[0]
    decision = on_conflict(existing) if on_conflict is not None else Decision.NO
    if decision == Decision.YES:
        return NameResolution(merge_target_id=existing.id)
    if decision == Decision.CANCEL:
        raise OperationCancelled(f"Name conflict with cart {existing.id!r} was cancelled")
    return NameResolution(final_name=disambiguate_name(name, carts, exclude_id=cart_id))

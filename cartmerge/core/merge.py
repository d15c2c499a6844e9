# cartmerge/core/merge.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence

from .errors import CartNotFoundError, EmptyNameError, SelfMergeError
from .models import Cart, CartItem, new_cart_id, utcnow


def stamp_edited(item: CartItem, acting_user: str, now: datetime) -> CartItem:
    """Copy of `item` carrying merge provenance. Original authorship is kept."""
    return item.model_copy(update={"edited_by": acting_user, "edited_at": now})


def _touch(cart: Cart, acting_user: str, now: datetime, **changes) -> Cart:
    changes.update(needs_reprint=True, last_modified_at=now, last_modified_by=acting_user)
    return cart.model_copy(update=changes)


def _index_of(carts: Sequence[Cart], cart_id: str) -> int:
    for i, c in enumerate(carts):
        if c.id == cart_id:
            return i
    return -1


def merge_carts(
    carts: Sequence[Cart],
    source_id: str,
    target_id: str,
    acting_user: str,
    now: Optional[datetime] = None,
) -> List[Cart]:
    """
    Fold the source cart into the target cart and return a **new** cart list.

    Rules:
    - Target keeps its items first; source items are appended in their original
      order, each stamped with edited_by/edited_at. Nothing is grouped, so two
      lines for the same product stay two lines.
    - Target is stamped modified and flagged for reprint, even when the source
      was empty.
    - The source disappears; every other cart keeps its position.

    Raises SelfMergeError when both ids match, CartNotFoundError when either is
    missing. The input sequence and its carts are never mutated.
    """
    if source_id == target_id:
        raise SelfMergeError(f"Cannot merge cart {source_id!r} into itself")

    si, ti = _index_of(carts, source_id), _index_of(carts, target_id)
    missing = [cid for cid, idx in ((source_id, si), (target_id, ti)) if idx == -1]
    if missing:
        raise CartNotFoundError(*missing)

    now = now or utcnow()
    source, target = carts[si], carts[ti]
    merged_items = list(target.items) + [stamp_edited(it, acting_user, now) for it in source.items]
    merged_target = _touch(target, acting_user, now, items=merged_items)

    out: List[Cart] = []
    for c in carts:
        if c.id == source_id:
            continue
        out.append(merged_target if c.id == target_id else c)
    return out


# ---------- Single-cart mutations ----------
# Names passed here are expected to be resolved already (see naming.resolve_name).

def create_cart(
    carts: Sequence[Cart],
    name: str,
    acting_user: str,
    now: Optional[datetime] = None,
    cart_id: Optional[str] = None,
) -> List[Cart]:
    if not name or not name.strip():
        raise EmptyNameError("Cart name cannot be empty")
    now = now or utcnow()
    cart = Cart(
        id=cart_id or new_cart_id(),
        name=name,
        created_at=now,
        created_by=acting_user,
    )
    return [*carts, cart]


def rename_cart(
    carts: Sequence[Cart],
    cart_id: str,
    new_name: str,
    acting_user: str,
    now: Optional[datetime] = None,
) -> List[Cart]:
    if not new_name or not new_name.strip():
        raise EmptyNameError("Cart name cannot be empty")
    idx = _index_of(carts, cart_id)
    if idx == -1:
        raise CartNotFoundError(cart_id)
    out = list(carts)
    out[idx] = _touch(out[idx], acting_user, now or utcnow(), name=new_name.strip())
    return out


def delete_cart(carts: Sequence[Cart], cart_id: str) -> List[Cart]:
    if _index_of(carts, cart_id) == -1:
        raise CartNotFoundError(cart_id)
    return [c for c in carts if c.id != cart_id]


def add_item(
    carts: Sequence[Cart],
    cart_id: str,
    item: CartItem,
    acting_user: str,
    now: Optional[datetime] = None,
) -> List[Cart]:
    """Append `item` as a discrete line, even if an identical line exists."""
    idx = _index_of(carts, cart_id)
    if idx == -1:
        raise CartNotFoundError(cart_id)
    out = list(carts)
    target = out[idx]
    out[idx] = _touch(target, acting_user, now or utcnow(), items=[*target.items, item])
    return out

# cartmerge/core/automerge.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from .merge import merge_carts
from .models import Cart, MergeConfig, MergeStrategy, utcnow
from .similarity import get_merge_suggestions

logger = logging.getLogger(__name__)

AUTO_MERGE_USER = "Smart Auto-merge"


def auto_merge_by_rules(
    carts: Sequence[Cart],
    config: Optional[MergeConfig] = None,
    acting_user: str = AUTO_MERGE_USER,
    now: Optional[datetime] = None,
) -> List[Cart]:
    """
    One unattended consolidation pass over an order's carts.

    Suggestions above `config.min_confidence` are applied in ranked order to a
    working copy, first pair member into the second. A pair is skipped when an
    earlier merge in the same pass already removed one of its carts. Scores are
    not recomputed between merges. The result is not persisted here.
    """
    config = config or MergeConfig()
    if not config.enable_auto_merge:
        return list(carts)
    if config.merge_strategy != MergeStrategy.BY_PRODUCT:
        logger.debug("merge_strategy=%s has no dedicated scorer; using product overlap",
                     config.merge_strategy.value)

    now = now or utcnow()
    working = list(carts)
    qualifying = [s for s in get_merge_suggestions(working) if s.confidence > config.min_confidence]

    for s in qualifying:
        present = {c.id for c in working}
        if s.cart_a.id not in present or s.cart_b.id not in present:
            logger.debug("auto-merge skip %s: cart already consolidated", s.key())
            continue
        working = merge_carts(working, s.cart_a.id, s.cart_b.id, acting_user, now=now)
        logger.info("auto-merged cart %s into %s (confidence %d%%, %s)",
                    s.cart_a.id, s.cart_b.id, s.confidence, s.reason)

    return working

from __future__ import annotations


class ConsolidationError(ValueError):
    """Base class for errors raised by the consolidation engine."""
    user_message = "Cart operation failed"


class EmptyNameError(ConsolidationError):
    """Desired cart name is empty after trimming."""
    user_message = "Cart name cannot be empty"


class SelfMergeError(ConsolidationError):
    """A cart was asked to merge into itself. Indicates a caller defect."""
    user_message = "A cart cannot be merged into itself"


class CartNotFoundError(ConsolidationError):
    """Snapshot is stale: a referenced cart id is not in the order."""
    user_message = "Source or target cart not found"

    def __init__(self, *cart_ids: str):
        self.cart_ids = cart_ids
        super().__init__(f"Cart(s) not found: {', '.join(cart_ids)}")


class OperationCancelled(ConsolidationError):
    """The human decision was to abandon the operation."""
    user_message = "Operation cancelled"

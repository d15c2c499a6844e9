from __future__ import annotations

from typing import Optional


class ServiceError(RuntimeError):
    """Base class for service-layer errors."""

class RepoError(ServiceError):
    """Errors from repositories (I/O, parse, schema)."""

class PersistenceError(ServiceError):
    """Persisting an order's carts failed; wraps the collaborator's error."""

    def __init__(
        self,
        message: str,
        order_id: str,
        source_id: Optional[str] = None,
        target_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.order_id = order_id
        self.source_id = source_id
        self.target_id = target_id

    @property
    def context(self) -> dict:
        return {"orderId": self.order_id, "sourceId": self.source_id, "targetId": self.target_id}

class PersistenceTimeout(PersistenceError):
    """The persist call did not finish in time; the write may still land."""

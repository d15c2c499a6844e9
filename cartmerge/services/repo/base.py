from __future__ import annotations
from abc import ABC, abstractmethod
from typing import List
from cartmerge.core.models import Cart, CartEvent, Order

class CartStore(ABC):
    """Persistence collaborator: coherent snapshots, whole-collection writes."""
    @abstractmethod
    def fetch_carts(self, order_id: str) -> List[Cart]: ...
    @abstractmethod
    def persist_carts(self, order_id: str, carts: List[Cart]) -> None: ...

    def load_order(self, order_id: str) -> Order:
        return Order(id=order_id, carts=self.fetch_carts(order_id))

class EventRepo(ABC):
    @abstractmethod
    def append(self, event: CartEvent) -> None: ...

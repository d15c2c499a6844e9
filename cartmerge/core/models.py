# cartmerge/core/models.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Literal, Optional

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_cart_id() -> str:
    return uuid.uuid4().hex


def cart_total(items: Iterable["CartItem"]) -> float:
    return sum(it.line_total() for it in items)


# ---------- Core value objects ----------

class CartItem(BaseModel):
    """A single appended purchase line. Never grouped with other lines."""
    product_id: str = Field(..., min_length=1)
    product_name: str = ""
    price: float = Field(..., ge=0)
    quantity: float = Field(..., gt=0)

    added_at: datetime = Field(default_factory=utcnow)
    added_by: str = Field(..., description="Who first put the item into any cart")

    # Provenance of the last merge that carried this item into another cart
    edited_by: Optional[str] = None
    edited_at: Optional[datetime] = None

    @field_validator("added_by")
    @classmethod
    def _added_by_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("CartItem.added_by cannot be blank")
        return v

    def line_total(self) -> float:
        return self.price * self.quantity


class Cart(BaseModel):
    id: str = Field(default_factory=new_cart_id)
    name: str = Field(..., min_length=1)
    items: List[CartItem] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utcnow)
    created_by: str = "Unknown"
    last_modified_at: Optional[datetime] = None
    last_modified_by: Optional[str] = None
    needs_reprint: bool = False

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Cart.name cannot be blank")
        return v

    @computed_field  # type: ignore[misc]
    @property
    def total(self) -> float:
        return cart_total(self.items)

    def product_ids(self) -> set[str]:
        return {it.product_id for it in self.items}

    def normalized_name(self) -> str:
        return self.name.strip().casefold()


class Order(BaseModel):
    """An order (invoice) and its cart collection, as persisted."""
    id: str
    carts: List[Cart] = Field(default_factory=list)


# ---------- Decisions / configuration ----------

class Decision(str, Enum):
    """Outcome of a human confirmation prompt."""
    YES = "yes"
    NO = "no"
    CANCEL = "cancel"

    @classmethod
    def from_bool(cls, value: Optional[bool]) -> "Decision":
        if value is None:
            return cls.CANCEL
        return cls.YES if value else cls.NO


class MergeStrategy(str, Enum):
    """
    Similarity dimension for automatic consolidation.
    Only BY_PRODUCT has behaviour today; the others are reserved and
    currently score exactly like BY_PRODUCT.
    """
    BY_PRODUCT = "by_product"
    BY_TIME = "by_time"
    MANUAL = "manual"


class MergeTrigger(str, Enum):
    MANUAL = "manual"
    DRAG_DROP = "drag_drop"
    CONTEXT_MENU = "context_menu"


AUTO_MERGE_MIN_CONFIDENCE = 85


class MergeConfig(BaseModel):
    enable_auto_merge: bool = True
    # Advisory: number of similar items that should trigger a merge. Not part
    # of the qualifying filter, which is driven by min_confidence.
    auto_merge_threshold: int = Field(3, ge=0)
    min_confidence: int = Field(AUTO_MERGE_MIN_CONFIDENCE, ge=0, le=100)
    merge_strategy: MergeStrategy = MergeStrategy.BY_PRODUCT


# ---------- Analyzer / resolver outputs ----------

class MergeablePair(BaseModel):
    cart_a: Cart
    cart_b: Cart
    similarity: float = Field(..., ge=0, le=1)
    reason: str

    def key(self) -> str:
        return f"{self.cart_a.id}-{self.cart_b.id}"


class MergeSuggestion(MergeablePair):
    confidence: int = Field(..., ge=0, le=100)
    estimated_benefit: str


class NameResolution(BaseModel):
    """Exactly one of final_name / merge_target_id is set."""
    final_name: Optional[str] = None
    merge_target_id: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one(self) -> "NameResolution":
        if (self.final_name is None) == (self.merge_target_id is None):
            raise ValueError("NameResolution needs exactly one of final_name or merge_target_id")
        return self

    @property
    def is_merge(self) -> bool:
        return self.merge_target_id is not None


# ---------- Coordinator results ----------

class MergeState(str, Enum):
    IDLE = "idle"
    CONFIRMING = "confirming"
    EXECUTING = "executing"
    SETTLED = "settled"
    FAILED = "failed"
    CANCELLED = "cancelled"
    # Persist timed out; the write may or may not have landed
    UNKNOWN = "unknown"


class OperationResult(BaseModel):
    status: Literal["success", "failed", "cancelled", "unknown"]
    state: MergeState
    order: Optional[Order] = None
    cart_id: Optional[str] = Field(None, description="Cart created, renamed, or receiving a merge")
    message: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


# ---------- Auditing / events ----------

class CartEvent(BaseModel):
    ts: datetime = Field(default_factory=utcnow)
    type: Literal["create", "rename", "delete", "add_item", "merge", "auto_merge"]
    order_id: str
    actor: str
    payload: dict = Field(default_factory=dict)
    schema_version: int = 1

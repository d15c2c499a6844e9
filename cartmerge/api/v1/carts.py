from __future__ import annotations

from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, Field

from cartmerge.config import Settings
from cartmerge.core.models import (
    CartItem,
    Decision,
    MergeConfig,
    MergeSuggestion,
    MergeTrigger,
    OperationResult,
    Order,
)
from cartmerge.core.similarity import get_merge_suggestions
from cartmerge.services.coordinator import MergeCoordinator
from cartmerge.services.exceptions import RepoError
from cartmerge.services.metrics import MetricsLogger
from cartmerge.services.repo.json_repo import JSONCartStore, JSONEventRepo

router = APIRouter(prefix="/api/v1/orders/{order_id}/carts", tags=["carts"])

# ---- DI helpers --------------------------------------------------------------

def get_settings() -> Settings:
    return Settings()

def get_store(settings: Settings = Depends(get_settings)) -> JSONCartStore:
    return JSONCartStore(settings)

CoordinatorFactory = Callable[[Optional[Decision]], MergeCoordinator]

def get_coordinator_factory(
    settings: Settings = Depends(get_settings),
    store: JSONCartStore = Depends(get_store),
) -> CoordinatorFactory:
    events = JSONEventRepo(settings)
    metrics = MetricsLogger(settings)

    def make(decision: Optional[Decision]) -> MergeCoordinator:
        # HTTP callers answer any prompt up front; None means no decision wired
        confirm = (lambda _prompt: decision) if decision is not None else None
        return MergeCoordinator(store, events=events, confirm=confirm, settings=settings, metrics=metrics)

    return make

def acting_user(x_user_name: Optional[str] = Header(None)) -> Optional[str]:
    return x_user_name

# ---- Models ------------------------------------------------------------------

class CreateCartRequest(BaseModel):
    name: str
    on_conflict: Optional[Decision] = Field(None, description="yes = merge into existing, no = numbered name")

class RenameCartRequest(BaseModel):
    name: str
    on_conflict: Optional[Decision] = None

class NewItemRequest(BaseModel):
    product_id: str = Field(..., min_length=1)
    product_name: str = ""
    price: float = Field(..., ge=0)
    quantity: float = Field(..., gt=0)

class MergeRequest(BaseModel):
    source_id: str
    target_id: str
    trigger: MergeTrigger = MergeTrigger.MANUAL
    confirmed: bool = Field(False, description="Answer to the merge confirmation prompt")

# ---- Result mapping ----------------------------------------------------------

_ERROR_STATUS = {
    "EmptyNameError": status.HTTP_400_BAD_REQUEST,
    "SelfMergeError": status.HTTP_400_BAD_REQUEST,
    "CartNotFoundError": status.HTTP_404_NOT_FOUND,
    "PersistenceError": status.HTTP_502_BAD_GATEWAY,
    "PersistenceTimeout": status.HTTP_504_GATEWAY_TIMEOUT,
}

def _unwrap(result: OperationResult) -> OperationResult:
    if result.status == "cancelled":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.message)
    if result.status in ("failed", "unknown"):
        code = _ERROR_STATUS.get(result.error_type or "", status.HTTP_500_INTERNAL_SERVER_ERROR)
        raise HTTPException(status_code=code, detail=result.message)
    return result

# ---- Routes ------------------------------------------------------------------

@router.get("", response_model=Order)
def list_carts(order_id: str, store: JSONCartStore = Depends(get_store)):
    try:
        return store.load_order(order_id)
    except RepoError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("", response_model=OperationResult, status_code=status.HTTP_201_CREATED)
async def create_cart(
    order_id: str,
    body: CreateCartRequest,
    make: CoordinatorFactory = Depends(get_coordinator_factory),
    user: Optional[str] = Depends(acting_user),
):
    return _unwrap(await make(body.on_conflict).create_cart(order_id, body.name, user))


@router.patch("/{cart_id}", response_model=OperationResult)
async def rename_cart(
    order_id: str,
    cart_id: str,
    body: RenameCartRequest,
    make: CoordinatorFactory = Depends(get_coordinator_factory),
    user: Optional[str] = Depends(acting_user),
):
    return _unwrap(await make(body.on_conflict).rename_cart(order_id, cart_id, body.name, user))


@router.delete("/{cart_id}", response_model=OperationResult)
async def delete_cart(
    order_id: str,
    cart_id: str,
    confirm: bool = Query(False, description="Deletion must be confirmed explicitly"),
    make: CoordinatorFactory = Depends(get_coordinator_factory),
    user: Optional[str] = Depends(acting_user),
):
    return _unwrap(await make(Decision.from_bool(confirm)).delete_cart(order_id, cart_id, user))


@router.post("/{cart_id}/items", response_model=OperationResult)
async def add_item(
    order_id: str,
    cart_id: str,
    body: NewItemRequest,
    settings: Settings = Depends(get_settings),
    make: CoordinatorFactory = Depends(get_coordinator_factory),
    user: Optional[str] = Depends(acting_user),
):
    item = CartItem(**body.model_dump(), added_by=(user or "").strip() or settings.default_user)
    return _unwrap(await make(None).add_item(order_id, cart_id, item, user))


@router.post("/merge", response_model=OperationResult)
async def merge_carts(
    order_id: str,
    body: MergeRequest,
    make: CoordinatorFactory = Depends(get_coordinator_factory),
    user: Optional[str] = Depends(acting_user),
):
    coordinator = make(Decision.from_bool(body.confirmed))
    return _unwrap(await coordinator.request_merge(order_id, body.source_id, body.target_id, user, body.trigger))


@router.get("/suggestions", response_model=List[MergeSuggestion])
def merge_suggestions(
    order_id: str,
    dismissed: Optional[List[str]] = Query(None, description="Pair keys '<idA>-<idB>' to hide"),
    limit: Optional[int] = Query(None, ge=1),
    store: JSONCartStore = Depends(get_store),
):
    try:
        carts = store.fetch_carts(order_id)
    except RepoError as e:
        raise HTTPException(status_code=500, detail=str(e))
    suggestions = get_merge_suggestions(carts, dismissed=set(dismissed or ()))
    return suggestions[:limit] if limit else suggestions


@router.post("/auto-merge", response_model=OperationResult)
async def auto_merge(
    order_id: str,
    config: Optional[MergeConfig] = None,
    settings: Settings = Depends(get_settings),
    make: CoordinatorFactory = Depends(get_coordinator_factory),
):
    return _unwrap(await make(None).auto_consolidate(order_id, config or settings.merge_config()))

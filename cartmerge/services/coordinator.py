from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Union

from opentelemetry import trace as trace_api

from cartmerge.config import Settings
from cartmerge.core import merge as ops
from cartmerge.core.automerge import AUTO_MERGE_USER, auto_merge_by_rules
from cartmerge.core.errors import (
    CartNotFoundError,
    ConsolidationError,
    OperationCancelled,
    SelfMergeError,
)
from cartmerge.core.models import (
    Cart,
    CartEvent,
    CartItem,
    Decision,
    MergeConfig,
    MergeState,
    MergeTrigger,
    OperationResult,
    Order,
)
from cartmerge.core.naming import conflict_prompt, find_duplicate_carts, resolve_name
from cartmerge.services.exceptions import PersistenceError, PersistenceTimeout, RepoError
from cartmerge.services.metrics import MetricsLogger
from cartmerge.services.repo.base import CartStore, EventRepo

logger = logging.getLogger(__name__)
tracer = trace_api.get_tracer(__name__)

DecisionLike = Union[Decision, bool, None]
ConfirmFn = Callable[[str], Union[DecisionLike, Awaitable[DecisionLike]]]
UpdateFn = Callable[[Order], Union[None, Awaitable[None]]]


@dataclass
class _Change:
    """What an operation wants persisted. carts=None means nothing to write."""
    carts: Optional[List[Cart]]
    cart_id: Optional[str]
    event_type: str
    payload: dict = field(default_factory=dict)


def merge_prompt(trigger: MergeTrigger, source: Cart, target: Cart) -> str:
    if trigger == MergeTrigger.DRAG_DROP:
        return f'Merge cart items into "{target.name}"?\n\nThe source cart will be removed.'
    return (
        f'Merge "{source.name}" ({len(source.items)} items) into "{target.name}"?\n\n'
        f'"{source.name}" will be removed. This cannot be undone.'
    )


def delete_prompt(cart: Cart) -> str:
    return f'Delete cart "{cart.name}" and its {len(cart.items)} items? This cannot be undone.'


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class MergeCoordinator:
    """
    Runs one user-initiated cart operation for an order end to end:
    fetch snapshot -> (confirm) -> compute on the copy -> persist -> publish.

    Nothing is published through `on_update` unless persistence succeeded, so a
    failure at any step leaves the caller's view of the order untouched. Two
    concurrent operations on the same order are not serialized; the later
    successful write wins.
    """

    def __init__(
        self,
        store: CartStore,
        events: Optional[EventRepo] = None,
        confirm: Optional[ConfirmFn] = None,
        on_update: Optional[UpdateFn] = None,
        settings: Optional[Settings] = None,
        metrics: Optional[MetricsLogger] = None,
    ):
        self.store = store
        self.events = events
        self.confirm = confirm
        self.on_update = on_update
        self.settings = settings or Settings()
        self.metrics = metrics

    # ---- Public operations ---------------------------------------------------

    async def merge_carts_direct(
        self, order_id: str, source_id: str, target_id: str, acting_user: Optional[str] = None
    ) -> OperationResult:
        """Merge without asking; used once the caller already has consent."""
        user = self._user(acting_user)

        async def build(carts: List[Cart]) -> _Change:
            return self._merge_change(carts, source_id, target_id, user)

        return await self._run("merge", order_id, user, build, source_id=source_id, target_id=target_id)

    async def request_merge(
        self,
        order_id: str,
        source_id: str,
        target_id: str,
        acting_user: Optional[str] = None,
        trigger: MergeTrigger = MergeTrigger.MANUAL,
    ) -> OperationResult:
        """Merge after a confirmation. Drag-and-drop confirms too; anything but YES cancels."""
        user = self._user(acting_user)

        async def build(carts: List[Cart]) -> _Change:
            if source_id == target_id:
                raise SelfMergeError(f"Cannot merge cart {source_id!r} into itself")
            source, target = self._require(carts, source_id), self._require(carts, target_id)
            if await self._decide(merge_prompt(trigger, source, target)) != Decision.YES:
                raise OperationCancelled("Merge not confirmed")
            change = self._merge_change(carts, source_id, target_id, user)
            change.payload["trigger"] = trigger.value
            return change

        return await self._run("merge", order_id, user, build, source_id=source_id, target_id=target_id)

    async def rename_cart(
        self, order_id: str, cart_id: str, new_name: str, acting_user: Optional[str] = None
    ) -> OperationResult:
        """
        Rename a cart. If the new name collides with another cart and the user
        chooses to merge, the renamed cart is folded into the existing one.
        """
        user = self._user(acting_user)

        async def build(carts: List[Cart]) -> _Change:
            current = self._require(carts, cart_id)
            resolution = await self._resolve(new_name, carts, cart_id=cart_id)
            if resolution.is_merge:
                change = self._merge_change(carts, cart_id, resolution.merge_target_id, user)
                change.payload["via"] = "rename"
                return change
            if resolution.final_name == current.name:
                return _Change(None, cart_id, "rename")
            return _Change(
                ops.rename_cart(carts, cart_id, resolution.final_name, user),
                cart_id,
                "rename",
                {"cart_id": cart_id, "old_name": current.name, "new_name": resolution.final_name},
            )

        return await self._run("rename", order_id, user, build, source_id=cart_id)

    async def create_cart(
        self, order_id: str, name: str, acting_user: Optional[str] = None
    ) -> OperationResult:
        """
        Create an empty cart. On a name collision with a "merge" decision no
        cart is created and the existing cart is reported instead.
        """
        user = self._user(acting_user)

        async def build(carts: List[Cart]) -> _Change:
            resolution = await self._resolve(name, carts)
            if resolution.is_merge:
                return _Change(None, resolution.merge_target_id, "create")
            updated = ops.create_cart(carts, resolution.final_name, user)
            created = updated[-1]
            return _Change(updated, created.id, "create", {"cart_id": created.id, "name": created.name})

        return await self._run("create", order_id, user, build)

    async def delete_cart(
        self, order_id: str, cart_id: str, acting_user: Optional[str] = None
    ) -> OperationResult:
        """Always confirmed; deletion is the only non-merge way a cart disappears."""
        user = self._user(acting_user)

        async def build(carts: List[Cart]) -> _Change:
            cart = self._require(carts, cart_id)
            if await self._decide(delete_prompt(cart)) != Decision.YES:
                raise OperationCancelled("Delete not confirmed")
            return _Change(
                ops.delete_cart(carts, cart_id),
                cart_id,
                "delete",
                {"cart_id": cart_id, "name": cart.name, "items": len(cart.items), "total": cart.total},
            )

        return await self._run("delete", order_id, user, build, source_id=cart_id)

    async def add_item(
        self, order_id: str, cart_id: str, item: CartItem, acting_user: Optional[str] = None
    ) -> OperationResult:
        user = self._user(acting_user)

        async def build(carts: List[Cart]) -> _Change:
            return _Change(
                ops.add_item(carts, cart_id, item, user),
                cart_id,
                "add_item",
                {"cart_id": cart_id, "product_id": item.product_id, "quantity": item.quantity},
            )

        return await self._run("add_item", order_id, user, build, target_id=cart_id)

    async def auto_consolidate(
        self,
        order_id: str,
        config: Optional[MergeConfig] = None,
        acting_user: str = AUTO_MERGE_USER,
    ) -> OperationResult:
        """Run one auto-merge pass and persist it like any interactive merge."""
        config = config or self.settings.merge_config()

        async def build(carts: List[Cart]) -> _Change:
            merged = auto_merge_by_rules(carts, config, acting_user=acting_user)
            before = {c.id for c in carts}
            after = {c.id for c in merged}
            if before == after:
                return _Change(None, None, "auto_merge")
            return _Change(merged, None, "auto_merge", {"removed": sorted(before - after)})

        return await self._run("auto_merge", order_id, acting_user, build)

    # ---- Internals -----------------------------------------------------------

    def _user(self, acting_user: Optional[str]) -> str:
        return (acting_user or "").strip() or self.settings.default_user

    @staticmethod
    def _require(carts: List[Cart], cart_id: str) -> Cart:
        cart = next((c for c in carts if c.id == cart_id), None)
        if cart is None:
            raise CartNotFoundError(cart_id)
        return cart

    @staticmethod
    def _merge_change(carts: List[Cart], source_id: str, target_id: str, user: str) -> _Change:
        merged = ops.merge_carts(carts, source_id, target_id, user)
        moved = next(c for c in carts if c.id == source_id)
        return _Change(
            merged,
            target_id,
            "merge",
            {"source_id": source_id, "target_id": target_id, "source_name": moved.name,
             "items_moved": len(moved.items)},
        )

    async def _decide(self, prompt: str) -> Decision:
        logger.debug("%s -> %s: %s", MergeState.IDLE.value, MergeState.CONFIRMING.value,
                     prompt.splitlines()[0])
        if self.confirm is None:
            return Decision.CANCEL
        answer = await _maybe_await(self.confirm(prompt))
        if isinstance(answer, Decision):
            return answer
        return Decision.from_bool(answer)

    async def _resolve(self, name: str, carts: List[Cart], cart_id: Optional[str] = None):
        decision = Decision.NO
        duplicates = find_duplicate_carts(name, carts, exclude_id=cart_id) if name and name.strip() else []
        if duplicates and self.confirm is not None:
            decision = await self._decide(conflict_prompt(duplicates[0]))
        return resolve_name(name, carts, on_conflict=lambda _existing: decision, cart_id=cart_id)

    async def _fetch(self, order_id: str) -> List[Cart]:
        try:
            return await asyncio.to_thread(self.store.fetch_carts, order_id)
        except RepoError:
            raise
        except Exception as e:
            raise RepoError(f"Failed to load carts for order {order_id}: {e}") from e

    async def _persist(
        self, order_id: str, carts: List[Cart],
        source_id: Optional[str] = None, target_id: Optional[str] = None,
    ) -> None:
        timeout = self.settings.persist_timeout_seconds
        try:
            await asyncio.wait_for(asyncio.to_thread(self.store.persist_carts, order_id, carts), timeout)
        except asyncio.TimeoutError as e:
            raise PersistenceTimeout(
                f"Saving carts for order {order_id} timed out after {timeout:g}s; "
                "the save may have completed, refetch the order before retrying",
                order_id, source_id, target_id,
            ) from e
        except Exception as e:
            raise PersistenceError(str(e), order_id, source_id, target_id) from e

    def _record(self, order_id: str, actor: str, change: _Change) -> None:
        if self.events is None:
            return
        try:
            self.events.append(CartEvent(type=change.event_type, order_id=order_id, actor=actor,
                                         payload=change.payload))
        except RepoError as e:
            # Carts are already persisted; a lost audit line must not fail the operation.
            logger.warning("audit event %s for order %s not recorded: %s", change.event_type, order_id, e)

    async def _run(
        self,
        name: str,
        order_id: str,
        actor: str,
        build: Callable[[List[Cart]], Awaitable[_Change]],
        source_id: Optional[str] = None,
        target_id: Optional[str] = None,
    ) -> OperationResult:
        with tracer.start_as_current_span(f"cartmerge.{name}") as span:
            span.set_attribute("cartmerge.order_id", order_id)
            try:
                if self.metrics is not None:
                    with self.metrics.timed(name, order_id=order_id):
                        return await self._execute(name, order_id, actor, build, source_id, target_id)
                return await self._execute(name, order_id, actor, build, source_id, target_id)
            except OperationCancelled as e:
                logger.info("%s on order %s cancelled: %s", name, order_id, e)
                return OperationResult(status="cancelled", state=MergeState.CANCELLED,
                                       message=e.user_message, error_type=type(e).__name__)
            except SelfMergeError as e:
                logger.error("%s on order %s rejected (caller defect): %s", name, order_id, e)
                return self._failed(e, e.user_message)
            except ConsolidationError as e:
                logger.warning("%s on order %s failed: %s", name, order_id, e)
                return self._failed(e, e.user_message)
            except PersistenceTimeout as e:
                # The worker thread keeps running, so the outcome is not known
                logger.error("%s on order %s outcome unknown %s: %s", name, order_id, e.context, e)
                span.record_exception(e)
                return OperationResult(status="unknown", state=MergeState.UNKNOWN,
                                       message=str(e), error_type=type(e).__name__)
            except PersistenceError as e:
                logger.error("%s on order %s not persisted %s: %s", name, order_id, e.context, e)
                span.record_exception(e)
                return self._failed(e, f"Failed to save carts: {e}")
            except RepoError as e:
                logger.error("%s on order %s could not load carts: %s", name, order_id, e)
                return self._failed(e, f"Could not load carts for order {order_id}: {e}")

    async def _execute(self, name, order_id, actor, build, source_id, target_id) -> OperationResult:
        logger.debug("%s %s: %s -> %s", name, order_id, MergeState.IDLE.value, MergeState.EXECUTING.value)
        snapshot = await self._fetch(order_id)
        change = await build(list(snapshot))

        if change.carts is None:
            return OperationResult(status="success", state=MergeState.SETTLED,
                                   order=Order(id=order_id, carts=snapshot), cart_id=change.cart_id)

        await self._persist(order_id, change.carts, source_id, target_id)
        order = Order(id=order_id, carts=change.carts)
        self._record(order_id, actor, change)
        if self.on_update is not None:
            try:
                await _maybe_await(self.on_update(order))
            except Exception as e:
                # Carts are durable at this point; only the subscriber's view is stale
                logger.error("%s on order %s saved but not published: %s", name, order_id, e)
                return OperationResult(status="success", state=MergeState.SETTLED, order=order,
                                       cart_id=change.cart_id, error_type="PublishError",
                                       message=f"Carts saved, but refreshing the view failed: {e}")
        logger.info("%s on order %s settled (%d carts)", name, order_id, len(order.carts))
        return OperationResult(status="success", state=MergeState.SETTLED, order=order, cart_id=change.cart_id)

    @staticmethod
    def _failed(exc: Exception, message: str) -> OperationResult:
        return OperationResult(status="failed", state=MergeState.FAILED, message=message,
                               error_type=type(exc).__name__)

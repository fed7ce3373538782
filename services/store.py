# services/store.py
"""
EntityStore: the in-memory collections the app reads, and every mutation
the app may perform on them.

Startup:
  1. hydrate()                 -> last cached snapshot, synchronously
  2. start_background_load()   -> authoritative load from Supabase
  3. RealtimeListener          -> reload(entity) on remote changes

Mutations are optimistic: the local collection changes first, the remote
write follows, and the touched record is restored if the write fails.
The failure is always re-raised to the caller.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from data_integrator import RemoteSyncClient
from domain.errors import EntityNotFoundError, RemoteStoreError
from domain.models import (
    CUSTOMERS,
    ENTITY_NAMES,
    INVENTORY,
    MEMBERS,
    ORDERS,
    PRODUCTS,
    WORKFLOWS,
    Customer,
    InventoryItem,
    Member,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    TechnicalLogEntry,
    WorkflowDefinition,
)
from services import workflow_service
from services.cache_service import CachePersistence, CacheSnapshot
from services.optimistic import OptimisticCoordinator

logger = logging.getLogger("atelier.store")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _display_timestamp(now_ms: int) -> str:
    return datetime.fromtimestamp(now_ms / 1000).strftime("%H:%M:%S %d/%m/%Y")


class EntityStore:
    def __init__(
        self,
        remote: RemoteSyncClient,
        cache: CachePersistence,
        clock: Callable[[], int] = _now_ms,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self._remote = remote
        self._cache = cache
        self._clock = clock
        self._new_id = id_factory
        self._coordinator = OptimisticCoordinator(self)

        self.orders: List[Order] = []
        self.inventory: List[InventoryItem] = []
        self.members: List[Member] = []
        self.products: List[Product] = []
        self.customers: List[Customer] = []
        self.workflows: List[WorkflowDefinition] = []

        # service id -> workflow id, refreshed with every orders load
        self.service_workflows: Dict[str, str] = {}
        self.is_loading = True

    # --------------------------------------------------------
    # Collections
    # --------------------------------------------------------

    def records(self, entity: str) -> List[Any]:
        return getattr(self, entity)

    def set_records(self, entity: str, records: List[Any]) -> None:
        if entity not in ENTITY_NAMES:
            raise ValueError(f"Unknown entity: {entity}")
        setattr(self, entity, list(records))
        self._schedule_persist()

    def snapshot(self) -> CacheSnapshot:
        return CacheSnapshot(**{entity: list(self.records(entity)) for entity in ENTITY_NAMES})

    def _schedule_persist(self) -> None:
        self._cache.schedule_persist(self.snapshot)

    def find(self, entity: str, record_id: str):
        return next((r for r in self.records(entity) if r.id == record_id), None)

    def _require(self, entity: str, record_id: str):
        record = self.find(entity, record_id)
        if record is None:
            raise EntityNotFoundError(entity, record_id)
        return record

    def _replace_record(self, entity: str, record) -> None:
        self.set_records(entity, [record if r.id == record.id else r for r in self.records(entity)])

    def _remove_record(self, entity: str, record_id: str) -> None:
        self.set_records(entity, [r for r in self.records(entity) if r.id != record_id])

    def _prepend_record(self, entity: str, record) -> None:
        self.set_records(entity, [record] + [r for r in self.records(entity) if r.id != record.id])

    # --------------------------------------------------------
    # Loading
    # --------------------------------------------------------

    def hydrate(self) -> CacheSnapshot:
        """Fill the collections from the local cache; the UI can render right after."""
        snapshot = self._cache.hydrate()
        for entity in ENTITY_NAMES:
            records = snapshot.get(entity)
            if records:
                setattr(self, entity, list(records))
        self.is_loading = False
        return snapshot

    async def bootstrap(self) -> None:
        """Load all six collections from Supabase; one failing table doesn't stop the rest."""
        orders_load, collections = await self._remote.load_all()
        self.service_workflows = orders_load.service_workflows
        self.set_records(ORDERS, orders_load.orders)
        for entity, records in collections.items():
            self.set_records(entity, records)
        self.is_loading = False

    def start_background_load(self) -> asyncio.Task:
        return asyncio.ensure_future(self.bootstrap())

    async def reload(self, entity: str) -> None:
        if entity == ORDERS:
            orders_load = await self._remote.load_orders()
            self.service_workflows = orders_load.service_workflows or self.service_workflows
            self.set_records(ORDERS, orders_load.orders)
            return
        self.set_records(entity, await self._remote.load(entity))

    # --------------------------------------------------------
    # Orders
    # --------------------------------------------------------

    async def add_order(self, order: Order) -> Order:
        """
        Save a new order and deduct the materials its workflows consume.

        Items without a workflow inherit the one of their service; that link
        is saved with the item. The stored order (database ids) is put at the
        head of `orders`. Inventory write failures are logged, not raised.
        """
        items = workflow_service.with_resolved_workflows(order.items, self.service_workflows)
        order = replace(order, items=items)

        saved = await self._remote.add_order(order)
        self._prepend_record(ORDERS, saved)
        logger.info("Order %s created with %d items", saved.id, len(saved.items))

        await self._deduct_materials(items)
        return saved

    async def _deduct_materials(self, items: Iterable[OrderItem]) -> None:
        updates = workflow_service.compute_material_deductions(items, self.workflows, self.inventory)
        if not updates:
            return

        item_ids = list(updates.keys())
        results = await asyncio.gather(
            *(self._remote.update_inventory_quantity(i, updates[i]) for i in item_ids),
            return_exceptions=True,
        )

        applied: Dict[str, float] = {}
        for item_id, result in zip(item_ids, results):
            if isinstance(result, BaseException):
                logger.error("Error updating inventory item %s: %s", item_id, result)
            else:
                applied[item_id] = updates[item_id]

        if applied:
            self.set_records(
                INVENTORY,
                [replace(i, quantity=applied[i.id]) if i.id in applied else i for i in self.inventory],
            )
            logger.info("Updated %d inventory items", len(applied))

    async def update_order(self, order_id: str, order: Order) -> None:
        self._require(ORDERS, order_id)
        order = replace(order, id=order_id)
        await self._coordinator.run(
            ORDERS,
            order_id,
            apply=lambda: self._replace_record(ORDERS, order),
            confirm=lambda: self._remote.update_order(order_id, order),
        )

    async def delete_order(self, order_id: str) -> None:
        self._require(ORDERS, order_id)
        await self._coordinator.run(
            ORDERS,
            order_id,
            apply=lambda: self._remove_record(ORDERS, order_id),
            confirm=lambda: self._remote.delete_order(order_id),
        )

    async def delete_order_item(self, order_id: str, item_id: str) -> None:
        """Remove one line item and recompute the order total from what is left."""
        order = self._require(ORDERS, order_id)
        if order.find_item(item_id) is None:
            raise EntityNotFoundError("order items", item_id)

        remaining = [i for i in order.items if i.id != item_id]
        total = sum(i.price * (i.quantity or 1) for i in remaining)
        updated = replace(order, items=remaining, total_amount=total)

        await self._coordinator.run(
            ORDERS,
            order_id,
            apply=lambda: self._replace_record(ORDERS, updated),
            confirm=lambda: self._remote.delete_order_item(order_id, item_id, total),
        )

    # --------------------------------------------------------
    # Workflow progress
    # --------------------------------------------------------

    async def advance_item(
        self,
        order_id: str,
        item_id: str,
        new_stage: str,
        performed_by: str,
        note: Optional[str] = None,
    ) -> Order:
        """
        Move one line item to `new_stage` and keep the order status in step.

        The order status is guessed locally from the items we hold; once
        Supabase has the item, it is derived again from every item of the
        order as stored remotely and corrected if the guess was wrong.
        A failed order-status write is logged; the item move stays committed.
        Returns the order as it stands afterwards.
        """
        order = self._require(ORDERS, order_id)
        item = order.find_item(item_id)
        if item is None:
            raise EntityNotFoundError("order items", item_id)

        now = self._clock()
        advanced = workflow_service.advance_item(
            item,
            new_stage,
            performed_by,
            now,
            note=note,
            log_id=self._new_id(),
            timestamp=_display_timestamp(now),
            workflows=self.workflows,
        )
        updated = replace(order, items=[advanced if i.id == item_id else i for i in order.items])
        updated = replace(updated, status=workflow_service.recompute_order_status(updated, self.workflows))

        await self._coordinator.run(
            ORDERS,
            order_id,
            apply=lambda: self._replace_record(ORDERS, updated),
            confirm=lambda: self._remote.update_item_progress(order_id, advanced),
        )

        await self._confirm_order_status(order_id, order.status)
        return self.find(ORDERS, order_id)

    async def _confirm_order_status(self, order_id: str, previous: OrderStatus) -> None:
        try:
            stored = await self._remote.fetch_item_statuses(order_id)
        except Exception as e:
            logger.warning("Could not re-check status of order %s: %s", order_id, e)
            return

        statuses = [status for status, is_product in stored if not is_product]
        authoritative = workflow_service.derive_order_status(previous, statuses, self.workflows)

        if authoritative != previous:
            logger.info("Auto-updating order %s status: %s -> %s", order_id, previous.value, authoritative.value)
            try:
                await self._remote.update_order_status(order_id, authoritative)
            except RemoteStoreError as e:
                logger.warning("Could not save status of order %s: %s", order_id, e)

        current = self.find(ORDERS, order_id)
        if current is not None and current.status != authoritative:
            self._replace_record(ORDERS, replace(current, status=authoritative))

    async def add_technician_note(self, order_id: str, item_id: str, content: str, author: str) -> TechnicalLogEntry:
        order = self._require(ORDERS, order_id)
        item = order.find_item(item_id)
        if item is None:
            raise EntityNotFoundError("order items", item_id)

        now = self._clock()
        entry = TechnicalLogEntry(
            id=self._new_id(),
            content=content,
            author=author,
            timestamp=_display_timestamp(now),
            stage=item.status,
        )
        noted = replace(item, technical_log=item.technical_log + [entry])
        updated = replace(order, items=[noted if i.id == item_id else i for i in order.items])

        await self._coordinator.run(
            ORDERS,
            order_id,
            apply=lambda: self._replace_record(ORDERS, updated),
            confirm=lambda: self._remote.append_technical_log(order_id, item_id, entry),
        )
        return entry

    # --------------------------------------------------------
    # Flat entities
    # --------------------------------------------------------

    async def _add(self, entity: str, record):
        saved = await self._remote.add(entity, record)
        self._prepend_record(entity, saved)
        return saved

    async def _update(self, entity: str, record_id: str, record) -> None:
        self._require(entity, record_id)
        record = replace(record, id=record_id)
        await self._coordinator.run(
            entity,
            record_id,
            apply=lambda: self._replace_record(entity, record),
            confirm=lambda: self._remote.update(entity, record_id, record),
        )

    async def _delete(self, entity: str, record_id: str) -> None:
        self._require(entity, record_id)
        await self._coordinator.run(
            entity,
            record_id,
            apply=lambda: self._remove_record(entity, record_id),
            confirm=lambda: self._remote.delete(entity, record_id),
        )

    async def add_customer(self, customer: Customer) -> Customer:
        return await self._add(CUSTOMERS, customer)

    async def update_customer(self, customer_id: str, customer: Customer) -> None:
        await self._update(CUSTOMERS, customer_id, customer)

    async def delete_customer(self, customer_id: str) -> None:
        await self._delete(CUSTOMERS, customer_id)

    async def add_member(self, member: Member) -> Member:
        return await self._add(MEMBERS, member)

    async def update_member(self, member_id: str, member: Member) -> None:
        await self._update(MEMBERS, member_id, member)

    async def delete_member(self, member_id: str) -> None:
        await self._delete(MEMBERS, member_id)

    async def add_product(self, product: Product) -> Product:
        return await self._add(PRODUCTS, product)

    async def update_product(self, product_id: str, product: Product) -> None:
        await self._update(PRODUCTS, product_id, product)

    async def delete_product(self, product_id: str) -> None:
        await self._delete(PRODUCTS, product_id)

    async def add_inventory_item(self, item: InventoryItem) -> InventoryItem:
        return await self._add(INVENTORY, item)

    async def update_inventory_item(self, item_id: str, item: InventoryItem) -> None:
        await self._update(INVENTORY, item_id, item)

    async def delete_inventory_item(self, item_id: str) -> None:
        await self._delete(INVENTORY, item_id)

    async def update_inventory(self, items: Iterable[InventoryItem]) -> None:
        """Batch update; stops at the first failure, earlier writes stay applied."""
        for item in items:
            await self._update(INVENTORY, item.id, item)

    def workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return workflow_service.find_workflow(workflow_id, self.workflows)

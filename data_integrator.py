import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import config
from domain.errors import RemoteStoreError
from domain.models import (
    CUSTOMERS,
    INVENTORY,
    MEMBERS,
    ORDERS,
    PRODUCTS,
    WORKFLOWS,
    Order,
    OrderItem,
    OrderStatus,
    TechnicalLogEntry,
)
from utils import row_mapping

logger = logging.getLogger("atelier.sync")

TABLE_ORDERS = "don_hang"
TABLE_ORDER_ITEMS = "hang_muc_dich_vu"
TABLE_SERVICES = "dich_vu"
TABLE_WORKFLOWS = "quy_trinh"
TABLE_INVENTORY = "kho_vat_tu"
TABLE_MEMBERS = "nhan_su"
TABLE_PRODUCTS = "san_pham"
TABLE_CUSTOMERS = "khach_hang"

ORDER_COLUMNS = (
    "id, id_khach_hang, ten_khach_hang, tong_tien, tien_coc, trang_thai, ngay_du_kien_giao, "
    "ghi_chu, ngay_tao, giam_gia, phi_phat_sinh, loai_giam_gia, ly_do_phu_phi"
)
ORDER_ITEM_COLUMNS = (
    "id, id_don_hang, ten_hang_muc, loai, don_gia, so_luong, trang_thai, id_ky_thuat_vien, "
    "la_san_pham, id_dich_vu_goc, id_quy_trinh, anh_truoc, anh_sau, lich_su_thuc_hien, "
    "nhat_ky_ky_thuat, cap_nhat_cuoi, phan_cong_tasks, gan_nhan_vien_theo_buoc, "
    "nhan_vien_phu_trach, hoa_hong, ghi_chu"
)
WORKFLOW_COLUMNS = """
    *,
    cac_buoc_quy_trinh (
        id,
        id_quy_trinh,
        ten_buoc,
        thu_tu,
        chi_tiet,
        tieu_chuan,
        mau_sac,
        nhan_vien_duoc_giao
    )
"""


@dataclass(frozen=True)
class EntityTable:
    """How one flat entity collection is read and written."""
    table: str
    columns: str
    order_by: Optional[str]
    from_row: Callable[[Dict[str, Any]], Any]
    to_row: Optional[Callable[[Any], Dict[str, Any]]] = None
    limit: int = config.DEFAULT_LIMIT
    descending: bool = False


ENTITY_TABLES: Dict[str, EntityTable] = {
    INVENTORY: EntityTable(
        table=TABLE_INVENTORY,
        columns="*",
        order_by="ten_vat_tu",
        from_row=row_mapping.inventory_from_row,
        to_row=row_mapping.inventory_to_row,
    ),
    MEMBERS: EntityTable(
        table=TABLE_MEMBERS,
        # password column is never selected
        columns="id, ho_ten, vai_tro, sdt, email, trang_thai, anh_dai_dien, phong_ban, chuyen_mon",
        order_by="ho_ten",
        from_row=row_mapping.member_from_row,
        to_row=row_mapping.member_to_row,
    ),
    PRODUCTS: EntityTable(
        table=TABLE_PRODUCTS,
        columns="id, ten_san_pham, danh_muc, gia_ban, ton_kho, anh_san_pham, mo_ta",
        order_by="ten_san_pham",
        from_row=row_mapping.product_from_row,
        to_row=row_mapping.product_to_row,
    ),
    CUSTOMERS: EntityTable(
        table=TABLE_CUSTOMERS,
        columns=(
            "id, ten, sdt, email, dia_chi, hang_thanh_vien, tong_chi_tieu, lan_cuoi_ghe, ghi_chu, "
            "nguon_khach, trang_thai, id_nhan_vien_phu_trach, so_lan_tuong_tac, nhom_khach"
        ),
        order_by="ten",
        from_row=row_mapping.customer_from_row,
        to_row=row_mapping.customer_to_row,
    ),
    WORKFLOWS: EntityTable(
        table=TABLE_WORKFLOWS,
        columns=WORKFLOW_COLUMNS,
        order_by="ten_quy_trinh",
        from_row=row_mapping.workflow_from_row,
    ),
}

# remote table -> entity collection reloaded when it changes
REALTIME_TABLES: Dict[str, str] = {
    TABLE_ORDERS: ORDERS,
    TABLE_ORDER_ITEMS: ORDERS,
    TABLE_WORKFLOWS: WORKFLOWS,
    TABLE_INVENTORY: INVENTORY,
    TABLE_MEMBERS: MEMBERS,
    TABLE_PRODUCTS: PRODUCTS,
    TABLE_CUSTOMERS: CUSTOMERS,
}


@dataclass
class OrdersLoad:
    orders: List[Order]
    service_workflows: Dict[str, str]


class RemoteSyncClient:
    """
    Reads and writes the business tables on Supabase.

    load_* never raises: a failed read is logged and yields an empty
    collection so one broken table doesn't block the others.
    Mutations (add_*, update_*, delete_*) raise RemoteStoreError.
    """

    def __init__(self, client, schema: str = config.SCHEMA):
        self._client = client
        self._schema = schema

    def _table(self, name: str):
        return self._client.schema(self._schema).table(name)

    async def _execute(self, query, entity: str, operation: str):
        try:
            resp = await query.execute()
        except RemoteStoreError:
            raise
        except Exception as e:
            raise RemoteStoreError(f"{operation} {entity} failed: {e}", entity, operation) from e

        if getattr(resp, "error", None):
            raise RemoteStoreError(f"{operation} {entity} failed: {resp.error}", entity, operation)
        return resp

    # --------------------------------------------------------
    # Loading
    # --------------------------------------------------------

    async def load(self, entity: str) -> Any:
        if entity == ORDERS:
            result = await self.load_orders()
            return result.orders
        mapping = ENTITY_TABLES[entity]
        try:
            query = self._table(mapping.table).select(mapping.columns)
            if mapping.order_by:
                query = query.order(mapping.order_by, desc=mapping.descending)
            resp = await self._execute(query.limit(mapping.limit), entity, "load")
            return [mapping.from_row(r) for r in resp.data or []]
        except Exception as e:
            logger.error("Error loading %s: %s", entity, e)
            return []

    async def load_orders(self) -> OrdersLoad:
        """
        Orders, their line items and the service catalog are read separately
        and joined here: items are grouped by order id, and items without a
        workflow link inherit the one of their service.
        """
        try:
            orders_resp = await self._execute(
                self._table(TABLE_ORDERS)
                .select(ORDER_COLUMNS)
                .order("ngay_tao", desc=True)
                .limit(config.ORDERS_LIMIT),
                ORDERS,
                "load",
            )
        except Exception as e:
            logger.error("Error loading orders: %s", e)
            return OrdersLoad(orders=[], service_workflows={})

        item_rows: List[Dict[str, Any]] = []
        try:
            items_resp = await self._execute(
                self._table(TABLE_ORDER_ITEMS).select(ORDER_ITEM_COLUMNS).limit(config.ORDER_ITEMS_LIMIT),
                "order items",
                "load",
            )
            item_rows = items_resp.data or []
        except Exception as e:
            logger.warning("Error loading order items, continuing without items: %s", e)

        service_workflows: Dict[str, str] = {}
        try:
            services_resp = await self._execute(
                self._table(TABLE_SERVICES).select("*").limit(config.SERVICES_LIMIT),
                "services",
                "load",
            )
            service_workflows = row_mapping.service_workflow_map(services_resp.data or [])
        except Exception as e:
            logger.warning("Error loading services for workflow linking: %s", e)

        items_by_order: Dict[str, List[Dict[str, Any]]] = {}
        for row in item_rows:
            if not row.get("id_quy_trinh"):
                linked = service_workflows.get(str(row.get("id_dich_vu_goc")))
                if linked:
                    row = {**row, "id_quy_trinh": linked}
            order_id = row.get("id_don_hang")
            if order_id:
                items_by_order.setdefault(str(order_id), []).append(row)

        orders: List[Order] = []
        for row in orders_resp.data or []:
            try:
                orders.append(row_mapping.order_from_row(row, items_by_order.get(str(row["id"]), [])))
            except Exception as e:
                logger.error("Error mapping order %s: %s", row.get("id"), e)

        return OrdersLoad(orders=orders, service_workflows=service_workflows)

    async def load_all(self) -> Tuple[OrdersLoad, Dict[str, List[Any]]]:
        """
        Load every collection concurrently and wait for all of them.
        Returns (orders_load, {entity: records}) for the flat entities.
        """
        start = time.perf_counter()
        entities = list(ENTITY_TABLES.keys())
        results = await asyncio.gather(
            self.load_orders(),
            *(self.load(e) for e in entities),
            return_exceptions=True,
        )

        orders_result = results[0]
        if isinstance(orders_result, BaseException):
            logger.error("Error loading orders: %s", orders_result)
            orders_result = OrdersLoad(orders=[], service_workflows={})

        collections: Dict[str, List[Any]] = {}
        for entity, result in zip(entities, results[1:]):
            if isinstance(result, BaseException):
                logger.error("Error loading %s: %s", entity, result)
                result = []
            collections[entity] = result

        logger.info("All data loading completed in %.2fms", (time.perf_counter() - start) * 1000)
        return orders_result, collections

    # --------------------------------------------------------
    # Orders
    # --------------------------------------------------------

    async def add_order(self, order: Order) -> Order:
        """
        Insert the order, then its items in one batch. Ids come from the database.
        Returns the order as stored.
        """
        resp = await self._execute(self._table(TABLE_ORDERS).insert(row_mapping.order_to_row(order)), ORDERS, "add")
        if not resp.data:
            raise RemoteStoreError("Insert order failed: no data returned", ORDERS, "add")
        saved = resp.data[0]
        order_id = saved.get("id")
        if not order_id:
            raise RemoteStoreError("Insert order failed: no id returned", ORDERS, "add")

        item_rows: List[Dict[str, Any]] = []
        if order.items:
            items_resp = await self._execute(
                self._table(TABLE_ORDER_ITEMS).insert(
                    [row_mapping.item_to_row(item, order_id) for item in order.items]
                ),
                "order items",
                "add",
            )
            item_rows = items_resp.data or []
        else:
            logger.warning("Order %s saved without items", order_id)

        return row_mapping.order_from_row(saved, item_rows)

    async def update_order(self, order_id: str, order: Order) -> None:
        """
        Update the order row and reconcile its items:
          - items with an id are upserted, keeping remote history/log/notes
            the updated item doesn't carry
          - items without an id are inserted
          - remote items no longer in the order are deleted
        """
        await self._execute(
            self._table(TABLE_ORDERS).update(row_mapping.order_to_row(order)).eq("id", order_id),
            ORDERS,
            "update",
        )

        if not order.items:
            await self._execute(
                self._table(TABLE_ORDER_ITEMS).delete().eq("id_don_hang", order_id),
                "order items",
                "delete",
            )
            return

        existing_resp = await self._execute(
            self._table(TABLE_ORDER_ITEMS)
            .select("id, " + ", ".join(row_mapping.PRESERVED_ITEM_COLUMNS))
            .eq("id_don_hang", order_id),
            "order items",
            "load",
        )
        existing = {str(r["id"]): r for r in existing_resp.data or []}

        to_upsert: List[Dict[str, Any]] = []
        to_insert: List[Dict[str, Any]] = []
        for item in order.items:
            if item.id and item.id.strip():
                row = row_mapping.item_to_row(item, order_id, include_id=True)
                previous = existing.get(item.id)
                if previous:
                    for col in row_mapping.PRESERVED_ITEM_COLUMNS:
                        if not row.get(col) and previous.get(col):
                            row[col] = previous[col]
                to_upsert.append(row)
            else:
                to_insert.append(row_mapping.item_to_row(item, order_id))

        if to_upsert:
            await self._execute(
                self._table(TABLE_ORDER_ITEMS).upsert(to_upsert, on_conflict="id"),
                "order items",
                "update",
            )
        if to_insert:
            await self._execute(self._table(TABLE_ORDER_ITEMS).insert(to_insert), "order items", "add")

        keep = {item.id for item in order.items if item.id}
        stale = [item_id for item_id in existing if item_id not in keep]
        if stale:
            await self._execute(
                self._table(TABLE_ORDER_ITEMS).delete().in_("id", stale),
                "order items",
                "delete",
            )

    async def delete_order(self, order_id: str) -> None:
        # items go with the order (ON DELETE CASCADE)
        await self._execute(self._table(TABLE_ORDERS).delete().eq("id", order_id), ORDERS, "delete")

    async def delete_order_item(self, order_id: str, item_id: str, new_total: float) -> None:
        await self._execute(
            self._table(TABLE_ORDER_ITEMS).delete().eq("id", item_id).eq("id_don_hang", order_id),
            "order items",
            "delete",
        )
        await self._execute(
            self._table(TABLE_ORDERS).update(row_mapping.order_total_to_row(new_total)).eq("id", order_id),
            ORDERS,
            "update",
        )

    async def update_order_status(self, order_id: str, status: OrderStatus) -> None:
        await self._execute(
            self._table(TABLE_ORDERS).update(row_mapping.order_status_to_row(status)).eq("id", order_id),
            ORDERS,
            "update",
        )

    async def update_item_progress(self, order_id: str, item: OrderItem) -> None:
        """Write status, stage history and technical log of one item."""
        await self._execute(
            self._table(TABLE_ORDER_ITEMS)
            .update(row_mapping.item_progress_to_row(item))
            .eq("id", item.id)
            .eq("id_don_hang", order_id),
            "order items",
            "update",
        )

    async def fetch_item_statuses(self, order_id: str) -> List[Tuple[Optional[str], bool]]:
        """Returns [(status, is_product), ...] for every item of the order as stored remotely."""
        resp = await self._execute(
            self._table(TABLE_ORDER_ITEMS).select("trang_thai, la_san_pham").eq("id_don_hang", order_id),
            "order items",
            "load",
        )
        return [(r.get("trang_thai"), bool(r.get("la_san_pham"))) for r in resp.data or []]

    async def append_technical_log(self, order_id: str, item_id: str, entry: TechnicalLogEntry) -> None:
        """Re-read the item's log from the database, add `entry` and write it back."""
        resp = await self._execute(
            self._table(TABLE_ORDER_ITEMS)
            .select("id, trang_thai, nhat_ky_ky_thuat")
            .eq("id", item_id)
            .eq("id_don_hang", order_id)
            .limit(1),
            "order items",
            "load",
        )
        if not resp.data:
            raise RemoteStoreError(f"Order item not found: {item_id}", "order items", "update")

        current = row_mapping.log_from_json(resp.data[0].get("nhat_ky_ky_thuat"))
        await self._execute(
            self._table(TABLE_ORDER_ITEMS)
            .update({"nhat_ky_ky_thuat": row_mapping.log_to_json(current + [entry])})
            .eq("id", item_id)
            .eq("id_don_hang", order_id),
            "order items",
            "update",
        )

    # --------------------------------------------------------
    # Flat entities
    # --------------------------------------------------------

    async def add(self, entity: str, record) -> Any:
        """Insert a record (no id: the database assigns one) and return it as stored."""
        mapping = ENTITY_TABLES[entity]
        resp = await self._execute(self._table(mapping.table).insert(mapping.to_row(record)), entity, "add")
        if not resp.data:
            raise RemoteStoreError(f"Insert {entity} failed: no data returned", entity, "add")
        return mapping.from_row(resp.data[0])

    async def update(self, entity: str, record_id: str, record) -> None:
        mapping = ENTITY_TABLES[entity]
        await self._execute(
            self._table(mapping.table).update(mapping.to_row(record)).eq("id", record_id),
            entity,
            "update",
        )

    async def delete(self, entity: str, record_id: str) -> None:
        mapping = ENTITY_TABLES[entity]
        await self._execute(self._table(mapping.table).delete().eq("id", record_id), entity, "delete")

    async def update_inventory_quantity(self, item_id: str, quantity: float) -> None:
        await self._execute(
            self._table(TABLE_INVENTORY).update(row_mapping.inventory_quantity_to_row(quantity)).eq("id", item_id),
            INVENTORY,
            "update",
        )

    # --------------------------------------------------------
    # Realtime
    # --------------------------------------------------------

    def open_channel(self, topic: str = config.REALTIME_CHANNEL):
        return self._client.channel(topic)

    async def close_channel(self, channel) -> None:
        await self._client.remove_channel(channel)

    @property
    def schema(self) -> str:
        return self._schema

    @staticmethod
    def realtime_tables() -> Dict[str, str]:
        return dict(REALTIME_TABLES)

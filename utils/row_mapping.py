# utils/row_mapping.py
"""
Row <-> record mapping. This is the only place that knows the database
column names; everything above data_integrator works with domain models.
"""

from typing import Any, Dict, Iterable, List, Optional

from domain.models import (
    Customer,
    DiscountType,
    InventoryItem,
    Member,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    StageHistoryEntry,
    TechnicalLogEntry,
    WorkflowDefinition,
    WorkflowMaterial,
    WorkflowStage,
    WorkflowTodo,
)
from utils import naming
from utils.formatting import format_date_for_db


def _first(row: Dict[str, Any], *keys, default=None):
    """First non-empty value among `keys` (older rows used other column names)."""
    for k in keys:
        val = row.get(k)
        if val is not None and val != "":
            return val
    return default


def _str_id(val) -> Optional[str]:
    return None if val is None else str(val)


# ---------------------------------------------------------------------------
# Stage history / technical log (stored as JSON arrays on the item row)
# ---------------------------------------------------------------------------

def history_from_json(entries: Optional[Iterable[Dict[str, Any]]]) -> List[StageHistoryEntry]:
    result: List[StageHistoryEntry] = []
    for e in entries or []:
        result.append(
            StageHistoryEntry(
                stage_id=str(e.get("stageId")),
                stage_name=e.get("stageName") or str(e.get("stageId")),
                entered_at=int(e.get("enteredAt") or 0),
                performed_by=e.get("performedBy") or "",
                left_at=e.get("leftAt"),
                duration=e.get("duration"),
            )
        )
    return result


def history_to_json(history: Iterable[StageHistoryEntry]) -> List[Dict[str, Any]]:
    out = []
    for h in history:
        entry = {
            "stageId": h.stage_id,
            "stageName": h.stage_name,
            "enteredAt": h.entered_at,
            "performedBy": h.performed_by,
        }
        if h.left_at is not None:
            entry["leftAt"] = h.left_at
            entry["duration"] = h.duration
        out.append(entry)
    return out


def log_from_json(entries: Optional[Iterable[Dict[str, Any]]]) -> List[TechnicalLogEntry]:
    return [
        TechnicalLogEntry(
            id=str(e.get("id")),
            content=e.get("content") or "",
            author=e.get("author") or "",
            timestamp=e.get("timestamp") or "",
            stage=e.get("stage"),
        )
        for e in entries or []
    ]


def log_to_json(log: Iterable[TechnicalLogEntry]) -> List[Dict[str, Any]]:
    return [
        {
            "id": t.id,
            "content": t.content,
            "author": t.author,
            "timestamp": t.timestamp,
            "stage": t.stage,
        }
        for t in log
    ]


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

def item_from_row(row: Dict[str, Any]) -> OrderItem:
    return OrderItem(
        id=_str_id(_first(row, "id", "ma_item")),
        name=_first(row, "ten_hang_muc", "ten", default=""),
        service_type=naming.service_type.from_remote(_first(row, "loai", "loai_dich_vu")),
        price=float(_first(row, "don_gia", "gia", default=0)),
        quantity=int(_first(row, "so_luong", default=1)),
        status=row.get("trang_thai"),
        is_product=bool(row.get("la_san_pham") or False),
        technician_id=row.get("id_ky_thuat_vien"),
        before_image=row.get("anh_truoc"),
        after_image=row.get("anh_sau"),
        service_id=_str_id(row.get("id_dich_vu_goc")),
        workflow_id=_str_id(row.get("id_quy_trinh")),
        history=history_from_json(row.get("lich_su_thuc_hien")),
        technical_log=log_from_json(row.get("nhat_ky_ky_thuat")),
        last_updated=row.get("cap_nhat_cuoi"),
        notes=row.get("ghi_chu") or None,
        assigned_members=list(row.get("nhan_vien_phu_trach") or []),
        commissions=row.get("hoa_hong"),
        stage_assignments=row.get("gan_nhan_vien_theo_buoc"),
    )


def item_to_row(item: OrderItem, order_id: str, include_id: bool = False) -> Dict[str, Any]:
    """
    Build a hang_muc_dich_vu row. Optional columns are only sent when set,
    so an update never blanks out data another client wrote.
    """
    row: Dict[str, Any] = {
        "id_don_hang": order_id,
        "ten_hang_muc": item.name,
        "loai": naming.service_type.to_remote(item.service_type),
        "don_gia": item.price,
        "so_luong": item.quantity or 1,
        "trang_thai": item.status or "cho_xu_ly",
        "la_san_pham": bool(item.is_product),
    }
    if include_id and item.id:
        row["id"] = item.id

    if item.technician_id:
        row["id_ky_thuat_vien"] = item.technician_id
    if item.before_image:
        row["anh_truoc"] = item.before_image
    if item.after_image:
        row["anh_sau"] = item.after_image
    if item.service_id:
        row["id_dich_vu_goc"] = item.service_id
    if item.workflow_id:
        row["id_quy_trinh"] = item.workflow_id
    if item.history:
        row["lich_su_thuc_hien"] = history_to_json(item.history)
    if item.last_updated:
        row["cap_nhat_cuoi"] = item.last_updated
    if item.technical_log:
        row["nhat_ky_ky_thuat"] = log_to_json(item.technical_log)
    if item.notes:
        row["ghi_chu"] = item.notes
    if item.assigned_members:
        row["nhan_vien_phu_trach"] = list(item.assigned_members)
    if item.commissions:
        row["hoa_hong"] = item.commissions
    if item.stage_assignments:
        row["gan_nhan_vien_theo_buoc"] = item.stage_assignments
    return row


def item_progress_to_row(item: OrderItem) -> Dict[str, Any]:
    return {
        "trang_thai": item.status,
        "lich_su_thuc_hien": history_to_json(item.history),
        "cap_nhat_cuoi": item.last_updated,
        "nhat_ky_ky_thuat": log_to_json(item.technical_log),
    }


# columns kept from the existing row when an updated item leaves them empty
PRESERVED_ITEM_COLUMNS = (
    "lich_su_thuc_hien",
    "nhat_ky_ky_thuat",
    "cap_nhat_cuoi",
    "phan_cong_tasks",
    "ghi_chu",
    "nhan_vien_phu_trach",
    "hoa_hong",
)


def order_from_row(row: Dict[str, Any], item_rows: Iterable[Dict[str, Any]] = ()) -> Order:
    discount_type = row.get("loai_giam_gia") or DiscountType.MONEY.value
    return Order(
        id=_str_id(_first(row, "id", "ma_don_hang")),
        customer_id=_str_id(_first(row, "id_khach_hang", "ma_khach_hang", default="")),
        customer_name=row.get("ten_khach_hang") or "",
        items=[item_from_row(r) for r in item_rows],
        total_amount=float(row.get("tong_tien") or 0),
        deposit=float(_first(row, "tien_coc", "dat_coc", default=0)),
        status=naming.order_status.from_remote(row.get("trang_thai")),
        created_at=row.get("ngay_tao"),
        expected_delivery=_first(row, "ngay_du_kien_giao", "ngay_giao_du_kien", default=""),
        notes=row.get("ghi_chu"),
        discount=float(row.get("giam_gia") or 0),
        discount_type=DiscountType(discount_type) if discount_type in ("money", "percent") else DiscountType.MONEY,
        additional_fees=float(row.get("phi_phat_sinh") or 0),
        surcharge_reason=row.get("ly_do_phu_phi") or "",
    )


def order_to_row(order: Order) -> Dict[str, Any]:
    return {
        "id_khach_hang": order.customer_id,
        "ten_khach_hang": order.customer_name,
        "tong_tien": order.total_amount,
        "tien_coc": order.deposit or 0,
        "trang_thai": naming.order_status.to_remote(order.status),
        "ngay_du_kien_giao": format_date_for_db(order.expected_delivery),
        "ghi_chu": order.notes or "",
        "giam_gia": order.discount or 0,
        "loai_giam_gia": (order.discount_type or DiscountType.MONEY).value,
        "phi_phat_sinh": order.additional_fees or 0,
        "ly_do_phu_phi": order.surcharge_reason or "",
    }


def order_status_to_row(status: OrderStatus) -> Dict[str, Any]:
    return {"trang_thai": naming.order_status.to_remote(status)}


def order_total_to_row(total: float) -> Dict[str, Any]:
    return {"tong_tien": total}


# ---------------------------------------------------------------------------
# Service catalog -> workflow link
# ---------------------------------------------------------------------------

def service_workflow_map(service_rows: Iterable[Dict[str, Any]]) -> Dict[str, str]:
    """
    Map each service id to the workflow its items should follow.

    Priority per service row:
      1. `workflows` list -> entry with the lowest `order`
      2. `id_quy_trinh` column
      3. first entry of `cac_buoc_quy_trinh`
      4. legacy `workflowId` (string or list)
    Services with no link are left out.
    """
    result: Dict[str, str] = {}

    for service in service_rows or []:
        service_id = _first(service, "id", "ma_dich_vu")
        if not service_id:
            continue

        workflow_id = None
        workflows = service.get("workflows")
        steps = service.get("cac_buoc_quy_trinh")
        legacy = service.get("workflowId")

        if isinstance(workflows, list) and workflows:
            first = sorted(workflows, key=lambda w: w.get("order") or 0)[0]
            workflow_id = first.get("id")
        elif service.get("id_quy_trinh"):
            workflow_id = service["id_quy_trinh"]
        elif isinstance(steps, list) and steps:
            workflow_id = steps[0].get("id") or steps[0].get("id_quy_trinh")
        elif isinstance(legacy, str) and legacy:
            workflow_id = legacy
        elif isinstance(legacy, list) and legacy:
            workflow_id = legacy[0]

        if workflow_id:
            result[str(service_id)] = str(workflow_id)

    return result


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------

def stage_from_row(row: Dict[str, Any]) -> WorkflowStage:
    return WorkflowStage(
        id=str(row.get("id")),
        name=_first(row, "ten_buoc", "name", default="Bước"),
        order=int(_first(row, "thu_tu", "order", default=0)),
        color=_first(row, "mau_sac", "color", default="#666"),
        details=row.get("chi_tiet") or None,
        standards=row.get("tieu_chuan") or None,
        assigned_members=list(row.get("nhan_vien_duoc_giao") or []),
        todos=[
            WorkflowTodo(
                id=str(t.get("id")),
                title=_first(t, "tieu_de", "title", default=""),
                required=bool(_first(t, "bat_buoc", "required", default=False)),
            )
            for t in row.get("cac_task_quy_trinh") or []
        ],
    )


def workflow_from_row(row: Dict[str, Any]) -> WorkflowDefinition:
    stage_rows = sorted(row.get("cac_buoc_quy_trinh") or [], key=lambda s: s.get("thu_tu") or 0)

    types = row.get("loai_ap_dung") or row.get("loai_dich_vu") or []
    if isinstance(types, str):
        types = [types]

    materials = []
    for m in row.get("vat_tu_can_thiet") or []:
        inventory_item_id = _first(m, "inventoryItemId", "itemId")
        if inventory_item_id is None:
            continue
        materials.append(
            WorkflowMaterial(inventory_item_id=str(inventory_item_id), quantity=float(m.get("quantity") or 0))
        )

    return WorkflowDefinition(
        id=str(row.get("id")),
        label=_first(row, "ten_quy_trinh", "label", default="Quy trình"),
        description=_first(row, "mo_ta", "description", default=""),
        department=naming.department.from_remote(_first(row, "phong_ban", "bo_phan")) or "Kỹ Thuật",
        color=_first(row, "mau_sac", "color", default="#3b82f6"),
        types=[naming.service_type.from_remote(t) for t in types],
        stages=[stage_from_row(s) for s in stage_rows],
        materials=materials,
    )


# ---------------------------------------------------------------------------
# Flat entities
# ---------------------------------------------------------------------------

def customer_from_row(row: Dict[str, Any]) -> Customer:
    return Customer(
        id=_str_id(_first(row, "id", "ma_khach_hang")),
        name=_first(row, "ten", "ho_ten", default=""),
        phone=_first(row, "sdt", "so_dien_thoai"),
        email=row.get("email") or "",
        address=row.get("dia_chi"),
        tier=naming.customer_tier.from_remote(_first(row, "hang_thanh_vien", "hang_khach")),
        total_spent=float(row.get("tong_chi_tieu") or 0),
        last_visit=_first(row, "lan_cuoi_ghe", "lan_ghe_gan_nhat", default=""),
        notes=row.get("ghi_chu"),
        source=row.get("nguon_khach"),
        status=row.get("trang_thai"),
        assignee_id=row.get("id_nhan_vien_phu_trach"),
        interaction_count=int(row.get("so_lan_tuong_tac") or 0),
        group=row.get("nhom_khach"),
    )


def customer_to_row(customer: Customer) -> Dict[str, Any]:
    return {
        "ten": customer.name,
        "sdt": customer.phone,
        "email": customer.email or None,
        "dia_chi": customer.address or None,
        "hang_thanh_vien": naming.customer_tier.to_remote(customer.tier),
        "tong_chi_tieu": customer.total_spent or 0,
        "lan_cuoi_ghe": format_date_for_db(customer.last_visit),
        "ghi_chu": customer.notes or None,
        "nguon_khach": customer.source or None,
        "trang_thai": customer.status or None,
        "id_nhan_vien_phu_trach": customer.assignee_id or None,
        "so_lan_tuong_tac": customer.interaction_count or 0,
        "nhom_khach": customer.group or None,
    }


def inventory_from_row(row: Dict[str, Any]) -> InventoryItem:
    return InventoryItem(
        id=_str_id(_first(row, "id", "ma_vat_tu")),
        sku=_first(row, "ma_sku", "sku"),
        name=_first(row, "ten_vat_tu", "name", default=""),
        category=naming.inventory_category.from_remote(row.get("danh_muc")),
        quantity=float(_first(row, "so_luong_ton", "so_luong", default=0)),
        unit=_first(row, "don_vi_tinh", "don_vi"),
        min_threshold=float(row.get("nguong_toi_thieu") or 0),
        import_price=float(row.get("gia_nhap") or 0),
        supplier=row.get("nha_cung_cap"),
        last_import=_first(row, "lan_nhap_cuoi", "ngay_nhap_gan_nhat"),
        image=_first(row, "anh_vat_tu", "hinh_anh"),
    )


def inventory_to_row(item: InventoryItem) -> Dict[str, Any]:
    return {
        "ma_sku": item.sku,
        "ten_vat_tu": item.name,
        "danh_muc": naming.inventory_category.to_remote(item.category),
        "so_luong_ton": item.quantity,
        "don_vi_tinh": item.unit,
        "nguong_toi_thieu": item.min_threshold or 0,
        "gia_nhap": item.import_price or 0,
        "nha_cung_cap": item.supplier or None,
        "lan_nhap_cuoi": format_date_for_db(item.last_import),
        "anh_vat_tu": item.image or None,
    }


def inventory_quantity_to_row(quantity: float) -> Dict[str, Any]:
    return {"so_luong_ton": quantity}


def member_from_row(row: Dict[str, Any]) -> Member:
    return Member(
        id=_str_id(_first(row, "id", "ma_nhan_vien")),
        name=_first(row, "ho_ten", "name", default=""),
        role=naming.role.from_remote(row.get("vai_tro")),
        phone=_first(row, "sdt", "so_dien_thoai"),
        email=row.get("email") or "",
        status=naming.member_status.from_remote(row.get("trang_thai")),
        avatar=row.get("anh_dai_dien"),
        specialty=row.get("chuyen_mon"),
        department=naming.department.from_remote(row.get("phong_ban")),
    )


def member_to_row(member: Member) -> Dict[str, Any]:
    return {
        "ho_ten": member.name,
        "vai_tro": naming.role.to_remote(member.role),
        "sdt": member.phone,
        "email": member.email or None,
        "trang_thai": naming.member_status.to_remote(member.status),
        "anh_dai_dien": member.avatar or None,
        "phong_ban": naming.department.to_remote(member.department),
    }


def product_from_row(row: Dict[str, Any]) -> Product:
    return Product(
        id=_str_id(_first(row, "id", "ma_san_pham")),
        name=_first(row, "ten_san_pham", "name", default=""),
        category=row.get("danh_muc"),
        price=float(row.get("gia_ban") or 0),
        stock=int(row.get("ton_kho") or 0),
        image=_first(row, "anh_san_pham", "hinh_anh"),
        desc=row.get("mo_ta"),
    )


def product_to_row(product: Product) -> Dict[str, Any]:
    return {
        "ten_san_pham": product.name,
        "danh_muc": product.category,
        "gia_ban": product.price,
        "ton_kho": product.stock,
        "anh_san_pham": product.image or None,
        "mo_ta": product.desc or None,
    }

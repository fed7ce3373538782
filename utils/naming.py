# utils/naming.py
"""
Translation between the app's display vocabulary and the database's
snake_case Vietnamese wire values.

Closed vocabularies (order status, service type, tier, member status,
inventory category) are plain lookup tables with a default on each side.
Open vocabularies (department, role) fall back to slugify on the way out
and to title-casing on the way in, so values the table does not know
still round-trip.
"""

from enum import Enum
from typing import Dict, Generic, Optional, TypeVar

from domain.models import (
    CustomerTier,
    InventoryCategory,
    MemberStatus,
    OrderStatus,
    ServiceType,
)
from utils.formatting import slugify, title_case_token

E = TypeVar("E", bound=Enum)


class EnumTranslator(Generic[E]):
    def __init__(
        self,
        to_db: Dict[E, str],
        default: E,
        case_insensitive: bool = False,
    ):
        self._to_db = dict(to_db)
        self._from_db = {v: k for k, v in to_db.items()}
        self._default = default
        self._case_insensitive = case_insensitive

    @property
    def values(self):
        return list(self._to_db.keys())

    def to_remote(self, value) -> str:
        if value is None:
            return self._to_db[self._default]
        key = value.value if isinstance(value, Enum) else value
        for member, wire in self._to_db.items():
            if member.value == key:
                return wire
        return self._to_db[self._default]

    def from_remote(self, wire: Optional[str]) -> E:
        if not wire:
            return self._default
        if self._case_insensitive:
            wire = wire.lower()
        return self._from_db.get(wire, self._default)


class OpenVocabularyTranslator:
    def __init__(self, to_db: Dict[str, str], empty_display: Optional[str] = None):
        self._to_db = dict(to_db)
        self._from_db = {v: k for k, v in to_db.items()}
        self._empty_display = empty_display

    @property
    def values(self):
        return list(self._to_db.keys())

    def to_remote(self, value: Optional[str]) -> Optional[str]:
        if not value or not value.strip():
            return None
        if value in self._to_db:
            return self._to_db[value]
        return slugify(value) or None

    def from_remote(self, wire: Optional[str]) -> Optional[str]:
        if not wire:
            return self._empty_display
        if wire in self._from_db:
            return self._from_db[wire]
        return title_case_token(wire)


order_status = EnumTranslator(
    {
        OrderStatus.PENDING: "cho_xu_ly",
        OrderStatus.CONFIRMED: "da_xac_nhan",
        OrderStatus.PROCESSING: "dang_xu_ly",
        OrderStatus.DONE: "hoan_thanh",
        OrderStatus.DELIVERED: "da_giao",
        OrderStatus.CANCELLED: "huy",
    },
    default=OrderStatus.PENDING,
)

service_type = EnumTranslator(
    {
        ServiceType.REPAIR: "sua_chua",
        ServiceType.CLEANING: "ve_sinh",
        ServiceType.PLATING: "xi_ma",
        ServiceType.DYEING: "nhuom",
        ServiceType.CUSTOM: "custom",
        ServiceType.PRODUCT: "san_pham",
    },
    default=ServiceType.CUSTOM,
)

customer_tier = EnumTranslator(
    {
        CustomerTier.STANDARD: "thuong",
        CustomerTier.VIP: "vip",
        CustomerTier.VVIP: "vvip",
    },
    default=CustomerTier.STANDARD,
    case_insensitive=True,
)

member_status = EnumTranslator(
    {
        MemberStatus.ACTIVE: "hoat_dong",
        MemberStatus.OFF: "nghi",
    },
    default=MemberStatus.ACTIVE,
)

inventory_category = EnumTranslator(
    {
        InventoryCategory.CHEMICAL: "hoa_chat",
        InventoryCategory.ACCESSORY: "phu_kien",
        InventoryCategory.TOOL: "dung_cu",
        InventoryCategory.CONSUMABLE: "vat_tu_tieu_hao",
    },
    default=InventoryCategory.CONSUMABLE,
)

department = OpenVocabularyTranslator(
    {
        "Kỹ Thuật": "ky_thuat",
        "Spa": "spa",
        "QA/QC": "qc",
        "Hậu Cần": "hau_can",
        "Quản Lý": "quan_ly",
        "Kinh Doanh": "kinh_doanh",
    },
)

role = OpenVocabularyTranslator(
    {
        "Quản lý": "quan_ly",
        "Tư vấn viên": "tu_van",
        "Kỹ thuật viên": "ky_thuat",
        "QC": "qc",
    },
    empty_display="Tư vấn viên",
)
